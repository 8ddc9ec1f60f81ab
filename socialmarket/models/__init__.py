# Models package — import all models here so Alembic can discover them.

from socialmarket.models.user import User  # noqa: F401
from socialmarket.models.billing import Subscription  # noqa: F401
from socialmarket.models.stripe_event import StripeEvent  # noqa: F401
from socialmarket.models.marketplace import MarketplaceItem, Order  # noqa: F401
from socialmarket.models.post import Post, Comment  # noqa: F401
from socialmarket.models.moderation import ModerationLog  # noqa: F401
