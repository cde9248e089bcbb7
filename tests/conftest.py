import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["ENV"] = "test"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["PAYMENT_SANDBOX"] = "true"
os.environ["PAYMENT_SANDBOX_OUTCOME"] = "pending"
os.environ["AUTHORITY_NOTIFY_EMAIL"] = "council@example.lk"

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from app.db.session import Base, make_engine
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.bill import Bill  # noqa: F401
from app.models.checkout_session import CheckoutSession  # noqa: F401
from app.models.email_log import EmailLog  # noqa: F401
from app.models.slot_bucket import SlotBucket  # noqa: F401
from app.models.slot_reservation import SlotReservation  # noqa: F401
from app.models.special_collection_request import SpecialCollectionRequest  # noqa: F401
from app.models.user import User
from app.schemas.special_collection import ConfirmBookingRequest
from app.services import payment_gateway
from app.services.payment_gateway import SandboxPaymentGateway

# Monday 2030-01-07, 05:30 in Colombo
NOW = datetime(2030, 1, 7, 0, 0, tzinfo=timezone.utc)
SLOT_ID = "furniture:2030-01-08:1000"
# 2030-01-08 10:00 Asia/Colombo
SLOT_START = datetime(2030, 1, 8, 4, 30, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def gateway(monkeypatch):
    gw = SandboxPaymentGateway(default_outcome="pending")
    monkeypatch.setattr(payment_gateway, "_sandbox", gw)
    return gw


def make_user(db, email):
    u = User(id=str(uuid.uuid4()), email=email, full_name=email.split("@")[0], role="resident", is_active=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def resident(db):
    return make_user(db, "nimal@example.lk")


@pytest.fixture
def other_resident(db):
    return make_user(db, "kamala@example.lk")


def booking_body(**overrides) -> ConfirmBookingRequest:
    body = dict(
        itemType="furniture",
        quantity=1,
        weightPerItem=50,
        slotId=SLOT_ID,
        paymentChoice="payNow",
        residentName="Nimal Perera",
        address="12 Lake Road",
        district="Colombo",
        email="nimal@example.lk",
        phone="+94771234567",
    )
    body.update(overrides)
    return ConfirmBookingRequest(**body)
