"""Domain errors raised by the plan switch flow and mapped onto HTTP details by routers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict


@dataclass(eq=False)
class UpgradeError(RuntimeError):
    """Base error carrying a stable ``code`` plus a user-facing message."""

    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    status_code: ClassVar[int] = 400

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        detail.update(self.context)
        return detail


class PlanNotFoundError(UpgradeError):
    status_code = 404

    def __init__(self, message: str = "The requested plan does not exist.", **context: Any) -> None:
        super().__init__("plans.not_found", message, context)


class OrganizationNotFoundError(UpgradeError):
    status_code = 404

    def __init__(self, message: str = "The organization does not exist.", **context: Any) -> None:
        super().__init__("orgs.not_found", message, context)


class NoUpgradeAvailableError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "The selected plan is not an upgrade.", **context: Any) -> None:
        super().__init__("plans.no_upgrade", message, context)


class DowngradeRequiresContactError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "Downgrades are handled by our support team.", **context: Any) -> None:
        super().__init__("plans.downgrade_requires_contact", message, context)


class ContactSalesRequiredError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "This plan is available through our sales team.", **context: Any) -> None:
        super().__init__("plans.contact_sales", message, context)


class UpgradeInProgressError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "Another plan change is already in progress.", **context: Any) -> None:
        super().__init__("payments.upgrade_in_progress", message, context)


class InvalidPricingError(UpgradeError):
    status_code = 400

    def __init__(self, message: str = "The plan pricing cannot be charged.", **context: Any) -> None:
        super().__init__("payments.invalid_pricing", message, context)


class OrderCreationError(UpgradeError):
    """The gateway could not mint an order. Safe to retry; nothing was stored."""

    status_code = 502

    def __init__(self, message: str = "The payment order could not be created.", **context: Any) -> None:
        super().__init__("payments.order_creation_failed", message, context)


class OrderNotFoundError(UpgradeError):
    status_code = 404

    def __init__(self, message: str = "The payment order does not exist.", **context: Any) -> None:
        super().__init__("payments.order_not_found", message, context)


class InvalidTransitionError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "The payment order cannot move to that state.", **context: Any) -> None:
        super().__init__("payments.invalid_transition", message, context)


class NotADowngradeError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "The selected plan is not a downgrade.", **context: Any) -> None:
        super().__init__("plans.not_a_downgrade", message, context)


class ContactTicketError(UpgradeError):
    status_code = 500

    def __init__(self, message: str = "The support request could not be prepared.", **context: Any) -> None:
        super().__init__("plans.contact_ticket_failed", message, context)


class ReconciliationError(UpgradeError):
    status_code = 409

    def __init__(self, message: str = "The order cannot be reconciled in its current state.", **context: Any) -> None:
        super().__init__("payments.reconciliation_refused", message, context)


__all__ = [
    "ContactSalesRequiredError",
    "ContactTicketError",
    "DowngradeRequiresContactError",
    "InvalidPricingError",
    "InvalidTransitionError",
    "NoUpgradeAvailableError",
    "NotADowngradeError",
    "OrderCreationError",
    "OrderNotFoundError",
    "OrganizationNotFoundError",
    "PlanNotFoundError",
    "ReconciliationError",
    "UpgradeError",
    "UpgradeInProgressError",
]
