"""Create the plan/payment tables and optionally seed the default plan catalog."""

from __future__ import annotations

import argparse
import logging
import time
from decimal import Decimal
from typing import Callable

from scripts._path import add_root

add_root()

from core.env import load_dotenv_if_available  # noqa: E402

load_dotenv_if_available()

from sqlalchemy import select  # noqa: E402
from sqlalchemy.exc import OperationalError  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from database import init_schema, session_scope  # noqa: E402
from models.plan import Plan, PlanPricing  # noqa: E402

logger = logging.getLogger(__name__)

_GB = 1024**3

DEFAULT_CATALOG = (
    {
        "slug": "free",
        "name": "Free",
        "description": "For small teams getting started.",
        "max_users": 5,
        "max_apps": 3,
        "max_storage_bytes": 5 * _GB,
        "is_default": True,
        "sort_order": 0,
        "pricings": (),
    },
    {
        "slug": "professional",
        "name": "Professional",
        "description": "For growing organisations.",
        "max_users": 50,
        "max_apps": 25,
        "max_storage_bytes": 500 * _GB,
        "is_default": False,
        "sort_order": 1,
        "pricings": (("monthly", Decimal("1999.00")), ("yearly", Decimal("19990.00"))),
    },
    {
        "slug": "enterprise",
        "name": "Enterprise",
        "description": "Unlimited usage with dedicated support.",
        "max_users": None,
        "max_apps": None,
        "max_storage_bytes": None,
        "is_default": False,
        "sort_order": 2,
        "pricings": (),
    },
)


def _retry(operation: Callable[[], None], *, retries: int = 7, delay: float = 3.0) -> None:
    for attempt in range(1, retries + 1):
        try:
            operation()
            return
        except OperationalError as exc:
            if attempt == retries:
                raise
            logger.warning(
                "Database not ready yet (attempt %d/%d). Retrying in %.1f seconds: %s",
                attempt,
                retries,
                delay,
                exc,
            )
            time.sleep(delay)


def seed_catalog(session: Session, *, currency: str = "INR") -> int:
    """Insert the default plans that are missing; existing slugs are left untouched."""
    created = 0
    for entry in DEFAULT_CATALOG:
        if session.scalars(select(Plan).where(Plan.slug == entry["slug"])).first() is not None:
            continue
        plan = Plan(
            slug=entry["slug"],
            name=entry["name"],
            description=entry["description"],
            max_users=entry["max_users"],
            max_apps=entry["max_apps"],
            max_storage_bytes=entry["max_storage_bytes"],
            is_default=entry["is_default"],
            sort_order=entry["sort_order"],
        )
        plan.pricings = [
            PlanPricing(billing_period=period, price=price, currency=currency)
            for period, price in entry["pricings"]
        ]
        session.add(plan)
        created += 1
    session.commit()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", action="store_true", help="Insert the default Free/Professional/Enterprise plans.")
    parser.add_argument("--currency", default="INR", help="Currency used for seeded pricings.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    _retry(init_schema)
    logger.info("Database schema is up to date.")
    if args.seed:
        with session_scope() as session:
            created = seed_catalog(session, currency=args.currency.upper())
        logger.info("Seeded %d plan(s).", created)


if __name__ == "__main__":
    main()
