import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Generator, Iterator

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import UUID  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

import database as database_module  # noqa: E402
from database import Base, IS_POSTGRES  # noqa: E402
from models.plan import Plan, PlanPricing  # noqa: E402
from payment_fakes import TEST_KEY_ID, TEST_KEY_SECRET, TEST_WEBHOOK_SECRET, FakeGateway  # noqa: E402
from services.payments.upgrade_orchestrator import UpgradeOrchestrator  # noqa: E402
from services.payments.verifier import PaymentVerifier  # noqa: E402
from services.plan_assignment_service import register_organization  # noqa: E402

# Provide a fallback for the PostgreSQL-only UUID column type when using SQLite.
if not IS_POSTGRES:
    @compiles(UUID, "sqlite")  # type: ignore[misc]
    def _compile_uuid_sqlite(_element, _compiler, **_kw):  # pragma: no cover - sqlite compat
        return "TEXT"


_GB = 1024**3


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    import models  # noqa: F401

    test_engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'planswitch.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=test_engine)
    factory = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)
    original_session_local = database_module.SessionLocal
    original_engine = database_module.engine
    database_module.SessionLocal = factory
    database_module.engine = test_engine
    try:
        yield test_engine
    finally:
        database_module.SessionLocal = original_session_local
        database_module.engine = original_engine
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return database_module.SessionLocal


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def payment_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    audit_path = tmp_path / "payment_audit.jsonl"
    monkeypatch.setenv("PAYMENT_AUDIT_LOG_FILE", str(audit_path))
    monkeypatch.setenv("RAZORPAY_KEY_ID", TEST_KEY_ID)
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", TEST_KEY_SECRET)
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.delenv("PLAN_TIER_ORDER", raising=False)
    monkeypatch.delenv("PAYMENT_ORDER_TTL_MINUTES", raising=False)
    monkeypatch.delenv("SUPPORT_EMAIL", raising=False)
    monkeypatch.delenv("CHECKOUT_BRAND_NAME", raising=False)
    return audit_path


@pytest.fixture()
def catalog(db_session: Session) -> Dict[str, Plan]:
    """Free (default), Professional ($29/$290) and Enterprise (contact sales)."""
    free = Plan(
        slug="free",
        name="Free",
        max_users=5,
        max_apps=3,
        max_storage_bytes=5 * _GB,
        is_default=True,
        sort_order=0,
    )
    professional = Plan(
        slug="professional",
        name="Professional",
        max_users=50,
        max_apps=25,
        max_storage_bytes=500 * _GB,
        sort_order=1,
    )
    professional.pricings = [
        PlanPricing(billing_period="monthly", price=Decimal("29.00"), currency="USD"),
        PlanPricing(billing_period="yearly", price=Decimal("290.00"), currency="USD"),
    ]
    enterprise = Plan(slug="enterprise", name="Enterprise", sort_order=2)
    db_session.add_all([free, professional, enterprise])
    db_session.commit()
    return {"free": free, "professional": professional, "enterprise": enterprise}


@pytest.fixture()
def org(db_session: Session, catalog: Dict[str, Plan]):
    created = register_organization(db_session, name="Acme Labs", slug="acme", user_count=2, app_count=1)
    db_session.commit()
    return created


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def orchestrator(gateway: FakeGateway) -> UpgradeOrchestrator:
    return UpgradeOrchestrator(
        gateway,
        PaymentVerifier(TEST_KEY_SECRET),
        key_id=TEST_KEY_ID,
        apply_retry_delay=0.0,
    )
