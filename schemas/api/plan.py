"""Pydantic schemas for the plan catalog, organisation plans and support requests."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

BillingPeriodValue = Literal["monthly", "yearly"]
PlanActionValue = Literal["current", "upgrade", "downgrade", "contact", "none"]


class PlanPricingSchema(BaseModel):
    id: str
    billingPeriod: BillingPeriodValue
    price: str = Field(..., description="Decimal price rendered as a string to keep precision.")
    currency: str
    displayPrice: str = Field(..., description="Human readable price, e.g. '$29' or 'Free'.")


class PlanSchema(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    maxUsers: Optional[int] = Field(default=None, description="Null means unlimited.")
    maxApps: Optional[int] = Field(default=None, description="Null means unlimited.")
    maxStorageBytes: Optional[int] = Field(default=None, description="Null means unlimited.")
    storageLabel: str = Field(..., description="Human readable storage ceiling, e.g. '500GB'.")
    isDefault: bool = False
    isActive: bool = True
    sortOrder: int = 0
    pricings: List[PlanPricingSchema] = Field(default_factory=list)


class PlanListResponse(BaseModel):
    plans: List[PlanSchema] = Field(default_factory=list)


class PlanUsageSchema(BaseModel):
    users: int
    apps: int
    usersRemaining: Optional[int] = None
    appsRemaining: Optional[int] = None
    withinLimits: bool = True


class OrganizationPlanResponse(BaseModel):
    orgId: str
    orgName: str
    plan: PlanSchema
    usage: PlanUsageSchema


class PlanOptionSchema(BaseModel):
    plan: PlanSchema
    action: PlanActionValue
    pricing: Optional[PlanPricingSchema] = Field(
        default=None,
        description="Pricing for the selected billing period. Null means 'contact us'.",
    )
    exceededLimits: List[str] = Field(
        default_factory=list,
        description="Ceilings of this plan the organisation's current usage would exceed.",
    )


class PlanOptionsResponse(BaseModel):
    orgId: str
    period: BillingPeriodValue
    currentPlanId: str
    options: List[PlanOptionSchema] = Field(default_factory=list)


class PlanContactRequest(BaseModel):
    planId: str = Field(..., description="Plan the organisation wants to move to.")
    period: BillingPeriodValue = "monthly"


class ContactTicketResponse(BaseModel):
    kind: Literal["downgrade", "contact_sales"]
    supportEmail: str
    subject: str
    body: str
    mailtoUrl: str
    orgId: str
    currentPlan: str
    requestedPlan: str
