"""CLI helpers to inspect and settle payment orders flagged for reconciliation."""

from __future__ import annotations

import argparse
import logging
import uuid
from typing import Optional

from scripts._path import add_root

add_root()

from core.env import load_dotenv_if_available  # noqa: E402

load_dotenv_if_available()

from database import SessionLocal  # noqa: E402
from services.payments.errors import UpgradeError  # noqa: E402
from services.payments.reconciliation import list_flagged_orders, mark_reconciled, retry_apply  # noqa: E402
from services.payments.upgrade_orchestrator import UpgradeAttempt  # noqa: E402

logger = logging.getLogger(__name__)


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid id '{value}'.") from exc


def _format_attempt(attempt: UpgradeAttempt) -> str:
    return (
        f"{attempt.order_id} | {attempt.state.value.upper():<19} | org={attempt.org_id} "
        f"| plan={attempt.plan_id} | payment={attempt.payment_id or '-'} | reason={attempt.reason or '-'}"
    )


def cmd_list(org_id: Optional[uuid.UUID], limit: int) -> int:
    session = SessionLocal()
    try:
        attempts = list_flagged_orders(session, org_id=org_id, limit=limit)
    finally:
        session.close()
    if not attempts:
        print("No payment orders need reconciliation.")
        return 0
    for attempt in attempts:
        print(_format_attempt(attempt))
    return 0


def cmd_retry(order_id: uuid.UUID, rebase: bool) -> int:
    session = SessionLocal()
    try:
        attempt = retry_apply(session, order_id, rebase=rebase)
    except UpgradeError as exc:
        print(f"Refused: {exc.code} - {exc.message}")
        return 1
    finally:
        session.close()
    print(_format_attempt(attempt))
    return 0 if attempt.succeeded else 1


def cmd_resolve(order_id: uuid.UUID, note: str) -> int:
    session = SessionLocal()
    try:
        attempt = mark_reconciled(session, order_id, note=note)
    except UpgradeError as exc:
        print(f"Refused: {exc.code} - {exc.message}")
        return 1
    finally:
        session.close()
    print(_format_attempt(attempt))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list", help="List flagged payment orders.")
    list_parser.add_argument("--org", type=_parse_uuid, default=None, help="Only orders for this organisation.")
    list_parser.add_argument("--limit", type=int, default=100)

    retry_parser = sub.add_parser("retry", help="Re-run the plan apply step for a captured payment.")
    retry_parser.add_argument("order_id", type=_parse_uuid)
    retry_parser.add_argument(
        "--rebase",
        action="store_true",
        help="Apply against the organisation's current plan instead of the plan recorded on the order.",
    )

    resolve_parser = sub.add_parser("resolve", help="Clear the reconciliation flag after manual handling.")
    resolve_parser.add_argument("order_id", type=_parse_uuid)
    resolve_parser.add_argument("--note", required=True, help="What was done (refund id, ticket, ...).")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    if args.command == "list":
        return cmd_list(args.org, args.limit)
    if args.command == "retry":
        return cmd_retry(args.order_id, args.rebase)
    return cmd_resolve(args.order_id, args.note)


if __name__ == "__main__":
    raise SystemExit(main())
