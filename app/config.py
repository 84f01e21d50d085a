import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")

    # --- PayPal ---
    # PAYPAL_MODE picks both the credential pair and the API host.
    PAYPAL_MODE = os.environ.get("PAYPAL_MODE", "sandbox")
    PAYPAL_SANDBOX_CLIENT_ID = os.environ.get("PAYPAL_SANDBOX_CLIENT_ID")
    PAYPAL_SANDBOX_CLIENT_SECRET = os.environ.get("PAYPAL_SANDBOX_CLIENT_SECRET")
    PAYPAL_LIVE_CLIENT_ID = os.environ.get("PAYPAL_LIVE_CLIENT_ID")
    PAYPAL_LIVE_CLIENT_SECRET = os.environ.get("PAYPAL_LIVE_CLIENT_SECRET")
    PAYPAL_WEBHOOK_ID = os.environ.get("PAYPAL_WEBHOOK_ID")
    # Signature verification gate for /paypal/webhook. Off outside production
    # so local tunnels and replayed payloads can be tested.
    PAYPAL_VERIFY_WEBHOOKS = _env_flag("PAYPAL_VERIFY_WEBHOOKS")
    PAYPAL_HTTP_TIMEOUT = float(os.environ.get("PAYPAL_HTTP_TIMEOUT", 15))
    PAYPAL_BRAND_NAME = os.environ.get("PAYPAL_BRAND_NAME", "FrumToronto")
    PAYPAL_CURRENCY = os.environ.get("PAYPAL_CURRENCY", "CAD")
    PAYPAL_PRODUCT_NAME = os.environ.get(
        "PAYPAL_PRODUCT_NAME", "FrumToronto Business Listing"
    )
    PAYPAL_PRODUCT_DESCRIPTION = os.environ.get(
        "PAYPAL_PRODUCT_DESCRIPTION",
        "Business directory listing subscription for FrumToronto",
    )

    # Slug of the plan businesses fall back to on cancel / expiry.
    FREE_PLAN_SLUG = os.environ.get("FREE_PLAN_SLUG", "free")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "FrumToronto")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "APP_BASE_URL",
        ]
        mode = os.environ.get("PAYPAL_MODE", "sandbox")
        if mode not in ("sandbox", "live"):
            raise RuntimeError(
                f"PAYPAL_MODE must be 'sandbox' or 'live', got '{mode}'"
            )
        prefix = "PAYPAL_SANDBOX" if mode == "sandbox" else "PAYPAL_LIVE"
        required += [f"{prefix}_CLIENT_ID", f"{prefix}_CLIENT_SECRET"]
        # Verification needs the webhook id to compare against
        if _env_flag("PAYPAL_VERIFY_WEBHOOKS"):
            required.append("PAYPAL_WEBHOOK_ID")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled, sandbox PayPal."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = "http://localhost:3000"
    PAYPAL_MODE = "sandbox"
    PAYPAL_SANDBOX_CLIENT_ID = "sb_client_fake"
    PAYPAL_SANDBOX_CLIENT_SECRET = "sb_secret_fake"
    PAYPAL_LIVE_CLIENT_ID = None
    PAYPAL_LIVE_CLIENT_SECRET = None
    PAYPAL_WEBHOOK_ID = "WH-TEST-FAKE"
    PAYPAL_VERIFY_WEBHOOKS = False  # override per-test as needed
    MAIL_USERNAME = None
    MAIL_PASSWORD = None
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    PAYPAL_VERIFY_WEBHOOKS = _env_flag("PAYPAL_VERIFY_WEBHOOKS", "true")


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
