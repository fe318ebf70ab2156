import os
import sys
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from types import ModuleType

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

# Create a test engine BEFORE any app imports
_test_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Create a mock for the app.db module that uses our test engine
class TestBase(DeclarativeBase):
    pass


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)


@contextmanager
def _session_scope(factory=None):
    session = (factory or _TestSessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# Create a mock db module
mock_db_module = ModuleType('app.db')
mock_db_module.Base = TestBase
mock_db_module.SessionLocal = _TestSessionLocal
mock_db_module.get_engine = lambda: _test_engine
mock_db_module.session_scope = _session_scope

# Also mock app.config to prevent .env loading
mock_config_module = ModuleType('app.config')


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    redis_url = "redis://localhost:6379/0"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    jwt_secret = "test-secret"
    jwt_algorithm = "HS256"
    payment_gateway_backend = "stub"
    mercadopago_access_token = "TEST-access-token"
    mercadopago_base_url = "https://api.mercadopago.test"
    mercadopago_webhook_secret = "webhook-secret"
    gateway_timeout_seconds = 5.0
    gateway_read_retries = 2
    billing_currency = "BRL"
    billing_timezone = "America/Sao_Paulo"
    invoice_due_days = 7
    access_grace_days = 7
    access_suspension_days = 15
    subscription_max_failures = 3
    invoice_cycle_workers = 1
    job_lease_ttl_seconds = 3600
    cors_origins = ""


mock_config_module.settings = MockSettings()
mock_config_module.Settings = MockSettings
mock_config_module.validate_settings = lambda s: []

# Insert mocks before any app imports
sys.modules['app.config'] = mock_config_module
sys.modules['app.db'] = mock_db_module

# Set environment variables
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

# Now import the models - they'll use our mocked db module
from app.models.billing import (  # noqa: E402
    AppFee,
    Credit,
    CreditStatus,
    FrequencyType,
    Invoice,
    PaymentStatus,
    Plan,
)
from app.models.partner import Partner  # noqa: E402
from app.models.scheduler import JobLease  # noqa: E402,F401
from app.services import payment_gateway as payment_gateway_module  # noqa: E402
from app.services.payment_gateway import StubGateway  # noqa: E402

# Create all tables
TestBase.metadata.create_all(_test_engine)

# Re-export Base for compatibility
Base = TestBase


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    """Create a database session for testing.

    Uses the same connection as the StaticPool engine to ensure
    all operations see the same data.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clean_tables(engine):
    """Every test starts from empty tables."""
    yield
    with engine.begin() as connection:
        for table in reversed(TestBase.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture()
def gateway(monkeypatch):
    """A fresh stub gateway, also served by ``get_payment_gateway()``."""
    stub = StubGateway()
    monkeypatch.setattr(payment_gateway_module, "stub_gateway", stub)
    return stub


def _unique_email() -> str:
    return f"partner-{uuid.uuid4().hex}@example.com"


def _make_partner(db_session, **kwargs) -> Partner:
    partner = Partner(
        name=kwargs.pop("name", "Loja Teste"),
        email=kwargs.pop("email", _unique_email()),
        document=kwargs.pop("document", "12345678000190"),
        **kwargs,
    )
    db_session.add(partner)
    db_session.commit()
    db_session.refresh(partner)
    return partner


def _make_fee(db_session, partner, value: int, order_date: datetime, **kwargs) -> AppFee:
    fee = AppFee(
        partner_id=partner.id,
        order_id=kwargs.pop("order_id", f"order-{uuid.uuid4().hex[:8]}"),
        store_id=kwargs.pop("store_id", "store-1"),
        customer_id=kwargs.pop("customer_id", "customer-1"),
        payment_method=kwargs.pop("payment_method", "pix"),
        order_base_value=kwargs.pop("order_base_value", value * 10),
        order_total_price=kwargs.pop("order_total_price", value * 10),
        fee_percentage=kwargs.pop("fee_percentage", 10.0),
        fee_value=value,
        is_premium_rate=kwargs.pop("is_premium_rate", False),
        settled=kwargs.pop("settled", False),
        order_date=order_date,
        completed_at=kwargs.pop("completed_at", order_date),
        **kwargs,
    )
    db_session.add(fee)
    db_session.commit()
    db_session.refresh(fee)
    return fee


def _make_credit(db_session, partner, value: int, created_at: datetime, **kwargs) -> Credit:
    credit = Credit(
        partner_id=partner.id,
        value=value,
        status=kwargs.pop("status", CreditStatus.pending),
        coupon_code=kwargs.pop("coupon_code", None),
        created_at=created_at,
        **kwargs,
    )
    db_session.add(credit)
    db_session.commit()
    db_session.refresh(credit)
    return credit


def _make_invoice(db_session, partner, total: int, due_date: datetime, **kwargs) -> Invoice:
    invoice = Invoice(
        partner_id=partner.id,
        reference_date=kwargs.pop("reference_date", due_date - timedelta(days=37)),
        due_date=due_date,
        total_amount=total,
        original_amount=kwargs.pop("original_amount", total),
        applied_credits_amount=kwargs.pop("applied_credits_amount", 0),
        details=kwargs.pop("details", []),
        partner_info=kwargs.pop(
            "partner_info", {"name": partner.name, "email": partner.email}
        ),
        total_orders=kwargs.pop("total_orders", 0),
        payment_status=kwargs.pop("payment_status", PaymentStatus.pending),
        **kwargs,
    )
    db_session.add(invoice)
    db_session.commit()
    db_session.refresh(invoice)
    return invoice


def _make_plan(db_session, **kwargs) -> Plan:
    plan = Plan(
        name=kwargs.pop("name", f"Plano {uuid.uuid4().hex[:6]}"),
        price=kwargs.pop("price", 4990),
        currency="BRL",
        frequency=kwargs.pop("frequency", 1),
        frequency_type=kwargs.pop("frequency_type", FrequencyType.months),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


# ============ Factory Fixtures ============


@pytest.fixture()
def make_partner(db_session):
    return lambda **kwargs: _make_partner(db_session, **kwargs)


@pytest.fixture()
def make_fee(db_session):
    return lambda partner, value, order_date, **kwargs: _make_fee(
        db_session, partner, value, order_date, **kwargs
    )


@pytest.fixture()
def make_credit(db_session):
    return lambda partner, value, created_at, **kwargs: _make_credit(
        db_session, partner, value, created_at, **kwargs
    )


@pytest.fixture()
def make_invoice(db_session):
    return lambda partner, total, due_date, **kwargs: _make_invoice(
        db_session, partner, total, due_date, **kwargs
    )


@pytest.fixture()
def make_plan(db_session):
    return lambda **kwargs: _make_plan(db_session, **kwargs)


@pytest.fixture()
def partner(db_session):
    return _make_partner(db_session)


@pytest.fixture()
def other_partner(db_session):
    return _make_partner(db_session, name="Outra Loja")


@pytest.fixture()
def plan(db_session):
    return _make_plan(db_session, name="Plano Mensal")


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session, gateway):
    """Create a test client with database dependency override."""
    from app.api.deps import get_db as api_get_db
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[api_get_db] = override_get_db

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def create_access_token(subject: str, roles: list[str] | None = None) -> str:
    """Create a JWT access token for testing."""
    secret = os.getenv("JWT_SECRET", "test-secret")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    now = datetime.now(UTC)
    expire = now + timedelta(minutes=15)
    payload = {
        "sub": subject,
        "roles": roles or [],
        "typ": "access",
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture()
def partner_token(partner):
    return create_access_token(str(partner.id))


@pytest.fixture()
def partner_headers(partner_token):
    """Return authorization headers for the partner's own requests."""
    return {"Authorization": f"Bearer {partner_token}"}


@pytest.fixture()
def admin_headers():
    """Return authorization headers for admin requests."""
    token = create_access_token(str(uuid.uuid4()), roles=["admin"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_partner_headers(other_partner):
    return {"Authorization": f"Bearer {create_access_token(str(other_partner.id))}"}
