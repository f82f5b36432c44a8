"""Checkout outcomes and the adapter that waits for one per order."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, Union

from services.payments.order_service import OrderHandle
from services.payments.order_store import order_ttl
from services.payments.verifier import PaymentConfirmation

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutAuthorized(PaymentConfirmation):
    """The payer completed checkout; the triple still has to be verified."""


@dataclass(frozen=True, slots=True)
class CheckoutFailed:
    reason: str
    code: Optional[str] = None
    payment_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CheckoutDismissed:
    expired: bool = False


CheckoutOutcome = Union[CheckoutAuthorized, CheckoutFailed, CheckoutDismissed]


class CheckoutAdapter(Protocol):
    async def open(self, handle: OrderHandle, options: Optional[Mapping[str, Any]] = None) -> CheckoutOutcome:
        ...


def parse_checkout_outcome(payload: Mapping[str, Any]) -> CheckoutOutcome:
    """Turn a checkout widget callback payload into an outcome.

    Accepts the ``handler`` response (``razorpay_order_id``, ``razorpay_payment_id``,
    ``razorpay_signature``), the ``payment.failed`` response (``error`` object) and
    a dismissal marker (``dismissed``/``expired``).
    """
    error = payload.get("error")
    if isinstance(error, Mapping):
        metadata = error.get("metadata") if isinstance(error.get("metadata"), Mapping) else {}
        return CheckoutFailed(
            reason=str(error.get("description") or error.get("reason") or "Payment could not be processed"),
            code=error.get("code"),
            payment_id=metadata.get("payment_id"),
        )
    if payload.get("expired"):
        return CheckoutDismissed(expired=True)
    if payload.get("dismissed"):
        return CheckoutDismissed()
    keys = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
    if any(key in payload for key in keys):
        order_id, payment_id, signature = (str(payload.get(key) or "").strip() for key in keys)
        return CheckoutAuthorized(order_id=order_id, payment_id=payment_id, signature=signature)
    raise ValueError("Unrecognised checkout outcome payload.")


class CallbackCheckoutAdapter:
    """Resolves ``open`` when a callback for the same gateway order arrives.

    The first outcome delivered for an order wins; later ones are ignored. An
    outcome that arrives before ``open`` is kept for at most the adapter timeout.
    Must be driven from the event loop that awaits ``open``.
    """

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds if timeout_seconds is not None else order_ttl().total_seconds()
        self._clock = clock
        self._waiters: Dict[str, asyncio.Future] = {}
        self._early: Dict[str, Tuple[float, CheckoutOutcome]] = {}

    def _prune_early(self) -> None:
        now = self._clock()
        for key in [key for key, (deadline, _) in self._early.items() if deadline <= now]:
            del self._early[key]
            logger.info("Dropped unclaimed checkout outcome for gateway order %s.", key)

    async def open(self, handle: OrderHandle, options: Optional[Mapping[str, Any]] = None) -> CheckoutOutcome:
        key = handle.gateway_order_id
        self._prune_early()
        if key in self._early:
            return self._early.pop(key)[1]
        future = asyncio.get_running_loop().create_future()
        self._waiters[key] = future
        try:
            return await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.info("Checkout for gateway order %s timed out.", key)
            return CheckoutDismissed(expired=True)
        finally:
            self._waiters.pop(key, None)

    def deliver(self, gateway_order_id: str, outcome: CheckoutOutcome) -> bool:
        future = self._waiters.get(gateway_order_id)
        if future is None:
            self._prune_early()
            if gateway_order_id in self._early:
                return False
            self._early[gateway_order_id] = (self._clock() + self._timeout, outcome)
            return True
        if future.done():
            return False
        future.set_result(outcome)
        return True

    def authorize(self, order_id: str, payment_id: str, signature: str) -> bool:
        return self.deliver(order_id, CheckoutAuthorized(order_id=order_id, payment_id=payment_id, signature=signature))

    def fail(self, gateway_order_id: str, reason: str, *, code: Optional[str] = None) -> bool:
        return self.deliver(gateway_order_id, CheckoutFailed(reason=reason, code=code))

    def dismiss(self, gateway_order_id: str) -> bool:
        return self.deliver(gateway_order_id, CheckoutDismissed())


__all__ = [
    "CallbackCheckoutAdapter",
    "CheckoutAdapter",
    "CheckoutAuthorized",
    "CheckoutDismissed",
    "CheckoutFailed",
    "CheckoutOutcome",
    "parse_checkout_outcome",
]
