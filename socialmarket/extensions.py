"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter

from socialmarket.services.ai_service import OpenAIProvider
from socialmarket.services.identity_service import SupabaseIdentityProvider
from socialmarket.services.rate_limiter import RateLimiter, caller_key

db = SQLAlchemy()
migrate = Migrate()
rate_limiter = RateLimiter()
limiter = Limiter(
    key_func=caller_key,
    default_limits=[],  # Per-route tiers only; the "api" tier runs in middleware
    storage_uri="memory://",
    strategy="fixed-window",
    headers_enabled=True,
)
identity = SupabaseIdentityProvider()
ai_provider = OpenAIProvider()
