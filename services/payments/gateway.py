"""Gateway-neutral order minting interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol


class PaymentGatewayError(RuntimeError):
    """Raised when the payment gateway rejects a call or cannot be reached."""

    def __init__(self, status_code: int, message: str, *, payload: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def transient(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


@dataclass(frozen=True, slots=True)
class GatewayOrder:
    """The gateway's echo of a freshly minted order."""

    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, str],
    ) -> GatewayOrder:
        ...


__all__ = ["GatewayOrder", "PaymentGateway", "PaymentGatewayError"]
