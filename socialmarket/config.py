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

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    STRIPE_PRICE_SUPPORTER = os.environ.get("STRIPE_PRICE_SUPPORTER", "")
    STRIPE_PRICE_VIP = os.environ.get("STRIPE_PRICE_VIP", "")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # Billing period stamped on a fresh checkout (Stripe sends the real
    # bounds later with invoice.payment_succeeded).
    SUBSCRIPTION_PERIOD_DAYS = int(os.environ.get("SUBSCRIPTION_PERIOD_DAYS", 30))

    # --- Supabase Auth (identity provider) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")            # e.g. https://xyz.supabase.co
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")  # sent as the apikey header
    SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", 10))

    # --- AI provider (any OpenAI-compatible API) ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_CHAT_MODEL = os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    OPENAI_EMBEDDING_MODEL = os.environ.get(
        "OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"
    )
    OPENAI_IMAGE_MODEL = os.environ.get("OPENAI_IMAGE_MODEL", "dall-e-3")
    OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT", 60))

    # --- Rate limiting ---
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")
    # tier name -> (limit, window in milliseconds)
    RATE_LIMIT_TIERS = {
        "auth": (5, 60_000),
        "ai_chat": (10, 60_000),
        "ai_image": (3, 60_000),   # expensive
        "api": (60, 60_000),
        "search": (20, 60_000),
    }
    RATELIMIT_EXEMPT_PREFIXES = [
        "/api/v1/stripe/webhooks",
        "/api/health",
    ]

    # --- Auth gate ---
    PROTECTED_PREFIXES = [
        "/api/v1/posts",
        "/api/v1/comments",
        "/api/v1/stories",
        "/api/v1/reactions",
        "/api/v1/follows",
        "/api/v1/users",
        "/api/v1/marketplace",
        "/api/v1/billing",
        "/api/v1/ai",
        "/api/v1/auth/session",
    ]
    PUBLIC_PREFIXES = [
        "/api/v1/auth/login",
        "/api/v1/auth/signup",
        "/api/v1/auth/refresh",
        "/api/v1/auth/callback",
        "/api/health",
    ]

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "SUPABASE_URL",
            "SUPABASE_ANON_KEY",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake provider credentials."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_PUBLISHABLE_KEY = "pk_test_fake"
    STRIPE_PRICE_SUPPORTER = "price_supporter_test"
    STRIPE_PRICE_VIP = "price_vip_test"
    APP_BASE_URL = "http://localhost:5000"
    SUPABASE_URL = "https://supabase.test"
    SUPABASE_ANON_KEY = "anon_test_fake"
    OPENAI_API_KEY = "sk-openai-test-fake"
    OPENAI_BASE_URL = "https://ai.test/v1"
    RATELIMIT_ENABLED = True  # initializes Flask-Limiter; conftest disables it, enabled per-test where exercised

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
