"""Shared test fixtures for the social + marketplace API test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake provider keys)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: two users, a post and a marketplace listing
- auth_headers / as_user: bearer headers with the identity provider patched
- post_event: sends a properly signed Stripe webhook delivery
"""

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest

from socialmarket import create_app
from socialmarket.extensions import db as _db
from socialmarket.extensions import identity, limiter, rate_limiter
from socialmarket.models.marketplace import MarketplaceItem
from socialmarket.models.post import Post
from socialmarket.models.user import User
from socialmarket.services.identity_service import Identity

WEBHOOK_SECRET = "whsec_test_fake"
WEBHOOK_URL = "/api/v1/stripe/webhooks"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    # Flask-Limiter only creates its storage when enabled at init_app time;
    # start disabled and let the rate_limiting fixture enable it per test.
    app.config["RATELIMIT_ENABLED"] = False
    limiter.enabled = False
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_rate_limiter(app):
    """Rate-limit counters never leak between tests."""
    rate_limiter.reset()
    limiter.reset()
    yield
    rate_limiter.reset()
    limiter.reset()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed a buyer, a seller, a post by the seller and one listing.

    Returns plain IDs so tests can use them after the session expires
    the objects.
    """
    buyer = User(id="user-buyer-0001", email="buyer@example.com",
                 username="buyer", display_name="Buyer")
    seller = User(id="user-seller-0002", email="seller@example.com",
                  username="seller", display_name="Seller")
    _db.session.add_all([buyer, seller])
    _db.session.flush()

    post = Post(user_id=seller.id, content="Hello world")
    _db.session.add(post)

    item = MarketplaceItem(
        seller_id=seller.id,
        title="Handmade mug",
        description="Glazed stoneware",
        price=Decimal("12.50"),
        currency="cad",
    )
    _db.session.add(item)
    _db.session.commit()

    return {
        "buyer_id": buyer.id,
        "buyer_email": buyer.email,
        "seller_id": seller.id,
        "seller_email": seller.email,
        "post_id": post.id,
        "item_id": item.id,
    }


@pytest.fixture
def as_user():
    """Patch the identity provider so any bearer token resolves to a user.

    Usage:
        headers = as_user("user-1", "a@example.com")
    """
    patcher = patch.object(identity, "verify_token")
    mock_verify = patcher.start()

    def _login(user_id, email="user@example.com"):
        mock_verify.return_value = Identity(id=user_id, email=email)
        mock_verify.side_effect = None
        return {"Authorization": "Bearer test-access-token"}

    _login.mock = mock_verify
    yield _login
    patcher.stop()


@pytest.fixture
def auth_headers(seed_data, as_user):
    """Bearer headers for the seeded buyer."""
    return as_user(seed_data["buyer_id"], seed_data["buyer_email"])


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header value for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _make_event(event_type, obj, event_id=None, created=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()) if created is None else created,
        "data": {"object": obj},
    }


@pytest.fixture
def post_event(client):
    """POST a signed webhook delivery. Returns the response."""

    def _post(event, secret=WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(event)
        return client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret, timestamp)},
        )

    return _post


@pytest.fixture
def make_event():
    """Factory for a Stripe event envelope: make_event(type, obj, event_id=, created=)."""
    return _make_event
