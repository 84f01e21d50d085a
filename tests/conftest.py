"""Shared test fixtures for the billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off, sandbox PayPal)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: plan catalog, users and business 42 awaiting payment
- login: helper to log a seeded user in through /auth/login
"""

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from app.extensions import db as _db
from app.models.business import Business
from app.models.plan import SubscriptionPlan
from app.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed plans (free / standard / premium), users and a business.

    PayPal plan IDs are stored in the sandbox slots because TestConfig runs
    in sandbox mode. P_YEARLY_2 exists only in a yearly slot.

    Returns a dict of plain IDs so tests can use them across app contexts.
    """
    with app.app_context():
        # --- Plans ---
        free = SubscriptionPlan(
            name="Free", slug="free", price_monthly=0, price_yearly=0,
            display_order=0,
        )
        standard = SubscriptionPlan(
            name="Standard", slug="standard",
            price_monthly=15, price_yearly=150,
            paypal_plan_id_monthly_sandbox="P_MONTHLY_1",
            paypal_plan_id_yearly_sandbox="P_YEARLY_1",
            paypal_plan_id_monthly="P_LIVE_MONTHLY_1",
            display_order=1,
        )
        premium = SubscriptionPlan(
            name="Premium", slug="premium",
            price_monthly=35, price_yearly=350,
            paypal_plan_id_monthly_sandbox="P_MONTHLY_2",
            paypal_plan_id_yearly_sandbox="P_YEARLY_2",
            display_order=2,
        )
        _db.session.add_all([free, standard, premium])
        _db.session.flush()

        # --- Users ---
        admin = User(
            email="admin@frumtoronto.local",
            password_hash=generate_password_hash("admin123"),
            full_name="Admin User",
            is_admin=True,
        )
        owner = User(
            email="owner@bakery.test",
            password_hash=generate_password_hash("ownerpass123"),
            full_name="Bakery Owner",
        )
        stranger = User(
            email="stranger@example.test",
            password_hash=generate_password_hash("strangerpass123"),
            full_name="Someone Else",
        )
        _db.session.add_all([admin, owner, stranger])
        _db.session.flush()

        # --- Business awaiting payment ---
        business = Business(
            id=42,
            user_id=owner.id,
            name="Kosher Corner Bakery",
            slug="kosher-corner-bakery",
            email="hello@bakery.test",
            approval_status="pending_payment",
            subscription_plan_id=free.id,
        )
        _db.session.add(business)
        _db.session.commit()

        return {
            "free_plan_id": free.id,
            "standard_plan_id": standard.id,
            "premium_plan_id": premium.id,
            "admin_id": admin.id,
            "owner_id": owner.id,
            "stranger_id": stranger.id,
            "business_id": business.id,
        }


CREDENTIALS = {
    "admin": ("admin@frumtoronto.local", "admin123"),
    "owner": ("owner@bakery.test", "ownerpass123"),
    "stranger": ("stranger@example.test", "strangerpass123"),
}


@pytest.fixture
def login(client):
    """Log in as one of the seeded users: login("owner")."""

    def _login(who):
        email, password = CREDENTIALS[who]
        resp = client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp

    return _login
