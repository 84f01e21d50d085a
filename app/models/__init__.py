# Models package — import all models here so Alembic can discover them.

from app.models.user import User  # noqa: F401
from app.models.plan import SubscriptionPlan  # noqa: F401
from app.models.business import Business  # noqa: F401
from app.models.billing import BusinessSubscription  # noqa: F401
from app.models.paypal_event import PayPalEvent  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
from app.models.site_setting import SiteSetting  # noqa: F401
