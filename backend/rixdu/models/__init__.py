from rixdu.models.user import User, PushToken
from rixdu.models.store import Store
from rixdu.models.category import Category
from rixdu.models.listing import Listing, ListingCategoryPath
from rixdu.models.notification import Notification, NotificationPreference
from rixdu.models.profile import Profile, Application
from rixdu.models.subscription import Subscription
from rixdu.models.price_plan import PricePlan
from rixdu.models.pending_payment import PendingPayment
from rixdu.models.webhook_event import WebhookEvent
from rixdu.models.report import Report
from rixdu.models.rating import Rating

__all__ = [
    "User",
    "PushToken",
    "Store",
    "Category",
    "Listing",
    "ListingCategoryPath",
    "Notification",
    "NotificationPreference",
    "Profile",
    "Application",
    "Subscription",
    "PricePlan",
    "PendingPayment",
    "WebhookEvent",
    "Report",
    "Rating",
]
