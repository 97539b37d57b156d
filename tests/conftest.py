import hashlib
import hmac
import json
import os
import time
import uuid
from decimal import Decimal

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["JWT_ISSUER"] = "gritsync-test"
os.environ["STRIPE_API_KEY"] = "sk_test_fake_key_for_testing"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fake_secret"
os.environ["RESEND_API_KEY"] = "re_test_fake_key"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import gritsync.models  # noqa: F401
from gritsync.core.security import make_access_token
from gritsync.db.base import Base
from gritsync.db.session import get_db
from gritsync.main import app as fastapi_app
from gritsync.models.payment import Payment
from gritsync.models.setting import AppSetting
from gritsync.models.user import User
from gritsync.services.email import get_email_sender

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeEmailSender:
    def __init__(self):
        self.sent = []
        self.error = None
        self.calls = 0

    async def send(self, to, subject, html_body, from_=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html_body, "from": from_})
        return f"email_{len(self.sent)}"


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={signature}"


def intent_event(
    event_type: str,
    payment_id: str | None,
    amount_cents: int,
    event_id: str = "evt_test_1",
    intent_id: str = "pi_test_1",
) -> dict:
    metadata = {"payment_id": payment_id} if payment_id else {}
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount_cents,
                "amount_received": amount_cents,
                "currency": "usd",
                "metadata": metadata,
            }
        },
    }


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def client(email_sender):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_email_sender] = lambda: email_sender
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


def _add_user(db, email: str, role: str = "client") -> User:
    user = User(email=email, full_name="Maria Santos" if role == "client" else "Admin", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return _add_user(db, "maria@example.com")


@pytest.fixture
def other_user(db):
    return _add_user(db, "someone@example.com")


@pytest.fixture
def admin(db):
    return _add_user(db, "admin@gritsync.com", role="admin")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {make_access_token(str(user.id))}"}


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {make_access_token(str(admin.id))}"}


@pytest.fixture
def make_payment(db, user):
    application_id = uuid.uuid4()

    def _make(
        amount: str = "267.99",
        payment_type: str = "step1",
        status: str = "pending",
        owner: User | None = None,
        application=None,
        **extra,
    ) -> Payment:
        payment = Payment(
            application_id=application or application_id,
            user_id=(owner or user).id,
            amount=Decimal(amount),
            payment_type=payment_type,
            status=status,
            **extra,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return _make


@pytest.fixture
def set_settings(db):
    def _set(**values: str):
        for key, value in values.items():
            db.add(AppSetting(key=key, value=value))
        db.commit()

    return _set


@pytest.fixture
def post_event(client):
    def _post(event: dict, secret: str = WEBHOOK_SECRET, signature: str | None = None):
        payload = json.dumps(event)
        return client.post(
            "/webhooks/stripe",
            content=payload,
            headers={
                "content-type": "application/json",
                "stripe-signature": signature or sign(payload, secret),
            },
        )

    return _post
