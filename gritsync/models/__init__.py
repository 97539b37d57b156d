# Import every model so Base.metadata knows all tables.
from gritsync.models.user import User
from gritsync.models.payment import Payment
from gritsync.models.timeline_step import TimelineStep
from gritsync.models.receipt import Receipt
from gritsync.models.notification import Notification
from gritsync.models.setting import AppSetting
from gritsync.models.stripe_event import StripeWebhookEvent

__all__ = [
    "User",
    "Payment",
    "TimelineStep",
    "Receipt",
    "Notification",
    "AppSetting",
    "StripeWebhookEvent",
]
