from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import Depends
from sqlalchemy.orm import Session

from gritsync.core.config import settings
from gritsync.db.session import get_db
from gritsync.models.setting import AppSetting

EMAIL_NOTIFICATIONS_ENABLED = "emailNotificationsEnabled"
EMAIL_PAYMENT_UPDATES = "emailPaymentUpdates"
EMAIL_FROM = "emailFrom"
EMAIL_FROM_NAME = "emailFromName"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_bool(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


@dataclass(frozen=True)
class SettingsSnapshot:
    """
    Read-once view of the settings table.
    Handed to services at construction so they never read global state mid-flight.
    """

    values: dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str = "") -> str:
        value = self.values.get(key)
        return value if value else default

    def flag(self, key: str) -> bool:
        return _as_bool(self.values.get(key))

    @property
    def email_notifications_enabled(self) -> bool:
        return self.flag(EMAIL_NOTIFICATIONS_ENABLED)

    @property
    def email_payment_updates(self) -> bool:
        return self.flag(EMAIL_PAYMENT_UPDATES)

    @property
    def payment_emails_enabled(self) -> bool:
        return self.email_notifications_enabled and self.email_payment_updates

    @property
    def email_from(self) -> str:
        return self.get(EMAIL_FROM, settings.EMAIL_FROM)

    @property
    def email_from_name(self) -> str:
        return self.get(EMAIL_FROM_NAME, settings.EMAIL_FROM_NAME)


def load_settings_snapshot(db: Session) -> SettingsSnapshot:
    rows = db.query(AppSetting.key, AppSetting.value).all()
    return SettingsSnapshot(values={k: v for k, v in rows if v is not None})


def get_settings_snapshot(db: Session = Depends(get_db)) -> SettingsSnapshot:
    return load_settings_snapshot(db)
