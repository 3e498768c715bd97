import hashlib
import hmac
import json
import os
import time

os.environ["DATABASE_URL"] = "sqlite:///./test_delish.db"
os.environ["JWT_SECRET"] = "test-unlock-secret"
os.environ["AUTH_JWT_SECRET"] = "test-auth-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["RESEND_API_KEY"] = "re_test"
os.environ["APP_URL"] = "https://delish.test"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from delish.config import get_settings
from delish.database import Base, SessionLocal, engine
from delish.main import app as fastapi_app
from delish.models import AccessGrant, MapList, Order, SessionToken, User
from delish.tokens import TokenService


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def tokens(settings):
    return TokenService(settings.jwt_secret)


@pytest.fixture
def client():
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def make_list(db):
    def _make_list(list_id="L1", slug="best-tacos", price_cents=500, published=True,
                   owner_id="user_1", stripe_account="acct_1"):
        owner = db.get(User, owner_id)
        if owner is None:
            owner = User(id=owner_id, email=f"{owner_id}@example.com", name="Ana",
                         stripe_account=stripe_account)
            db.add(owner)
        map_list = MapList(
            id=list_id,
            owner_id=owner_id,
            slug=slug,
            title="Best Tacos in Austin",
            maps_list_url="https://www.google.com/maps/@/data=!3m1!4b1!4m2!11m1!2sabc",
            price_cents=price_cents,
            currency="usd",
            published=published,
        )
        db.add(map_list)
        db.commit()
        return map_list

    return _make_list


@pytest.fixture
def purchase(db, tokens, make_list):
    """A paid order with its grant and a freshly issued unlock token."""

    def _purchase(email="a@example.com", session_id="S1", payment_id="pi_1", map_list=None):
        map_list = map_list or make_list()
        order = Order(
            buyer_email=email,
            list_id=map_list.id,
            amount_cents=map_list.price_cents,
            currency="usd",
            stripe_session_id=session_id,
            stripe_payment_id=payment_id,
            status="PAID",
        )
        db.add(order)
        db.flush()
        grant = AccessGrant(order_id=order.id, list_id=map_list.id, buyer_email=email)
        db.add(grant)
        issued = tokens.issue(order.id, map_list.id, email)
        db.add(SessionToken(id=issued.jti, order_id=order.id, expires_at=issued.expires_at))
        db.commit()
        return order, grant, issued

    return _purchase


def stripe_signature(payload: str, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def post_event(client, settings):
    def _post_event(event: dict, secret: str | None = None):
        body = json.dumps(event)
        return client.post(
            "/webhooks/stripe",
            content=body,
            headers={"stripe-signature": stripe_signature(body, secret or settings.stripe_webhook_secret)},
        )

    return _post_event


@pytest.fixture
def auth_headers(settings):
    def _auth_headers(sub="user_1", email="user_1@example.com"):
        token = jwt.encode({"sub": sub, "email": email, "name": "Ana"}, settings.auth_jwt_secret, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
