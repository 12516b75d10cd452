"""Notification preferences as an explicit value object with a load/save boundary."""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

import pytz

from models import db, NotificationSetting
from services.validation_service import parse_bool, parse_int_list

PERMISSION_DEFAULT = 'default'
PERMISSION_GRANTED = 'granted'
PERMISSION_DENIED = 'denied'
PERMISSION_UNSUPPORTED = 'unsupported'
PERMISSION_STATES = (PERMISSION_DEFAULT, PERMISSION_GRANTED, PERMISSION_DENIED, PERMISSION_UNSUPPORTED)

DEFAULT_LEAD_MINUTES = (0, 5)
MAX_LEAD_MINUTES = 24 * 60
FALLBACK_TIMEZONE = 'America/New_York'


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool = True
    reminders_enabled: bool = True
    push_enabled: bool = False
    push_permission: str = PERMISSION_DEFAULT
    # Empty tuple: no reminders at all.
    lead_minutes: Tuple[int, ...] = DEFAULT_LEAD_MINUTES
    repeat_until_complete: bool = True
    repeat_interval_minutes: int = 5
    repeat_max_count: int = 12
    # None: repeat for every category.
    repeat_categories: Optional[Tuple[str, ...]] = None
    timezone: str = FALLBACK_TIMEZONE
    extra: Dict = field(default_factory=dict, compare=False)

    @property
    def reminders_active(self) -> bool:
        return self.enabled and self.reminders_enabled and bool(self.lead_minutes)

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def repeats_for(self, activity: Dict) -> bool:
        if not self.repeat_until_complete or self.repeat_interval_minutes <= 0:
            return False
        if self.repeat_categories is None:
            return True
        return (activity or {}).get('category') in self.repeat_categories

    def updated(self, data: Dict) -> 'NotificationSettings':
        """Copy with fields from a request payload applied and validated."""
        changes = {}
        for key in ('enabled', 'reminders_enabled', 'repeat_until_complete'):
            if key in data:
                changes[key] = parse_bool(data.get(key), default=getattr(self, key))
        if 'lead_minutes' in data:
            changes['lead_minutes'] = parse_int_list(data.get('lead_minutes'), minimum=0, maximum=MAX_LEAD_MINUTES)
        for key in ('repeat_interval_minutes', 'repeat_max_count'):
            if key in data:
                try:
                    value = int(data.get(key))
                except (TypeError, ValueError):
                    raise ValueError(f"{key} must be an integer")
                if value < 0:
                    raise ValueError(f"{key} must not be negative")
                changes[key] = value
        if 'repeat_categories' in data:
            raw = data.get('repeat_categories')
            if raw is None:
                changes['repeat_categories'] = None
            else:
                if isinstance(raw, str):
                    raw = raw.split(',')
                changes['repeat_categories'] = tuple(str(c).strip() for c in raw if str(c).strip())
        if 'timezone' in data:
            tz_name = str(data.get('timezone') or '').strip()
            if tz_name not in pytz.all_timezones_set:
                raise ValueError(f"Unknown timezone: {tz_name!r}")
            changes['timezone'] = tz_name
        return replace(self, **changes)

    def to_dict(self):
        return {
            'enabled': self.enabled,
            'reminders_enabled': self.reminders_enabled,
            'push_enabled': self.push_enabled,
            'push_permission': self.push_permission,
            'lead_minutes': list(self.lead_minutes),
            'repeat_until_complete': self.repeat_until_complete,
            'repeat_interval_minutes': self.repeat_interval_minutes,
            'repeat_max_count': self.repeat_max_count,
            'repeat_categories': list(self.repeat_categories) if self.repeat_categories is not None else None,
            'timezone': self.timezone,
        }


def get_or_create_notification_setting(user_id):
    prefs = NotificationSetting.query.filter_by(user_id=user_id).first()
    if not prefs:
        prefs = NotificationSetting(user_id=user_id)
        db.session.add(prefs)
        db.session.commit()
    return prefs


def load_notification_settings(user_id, default_timezone: str = FALLBACK_TIMEZONE) -> NotificationSettings:
    prefs = NotificationSetting.query.filter_by(user_id=user_id).first()
    if not prefs:
        return NotificationSettings(timezone=default_timezone)
    categories = None
    if prefs.repeat_categories is not None:
        categories = tuple(c.strip() for c in prefs.repeat_categories.split(',') if c.strip())
    return NotificationSettings(
        enabled=bool(prefs.enabled),
        reminders_enabled=bool(prefs.reminders_enabled),
        push_enabled=bool(prefs.push_enabled),
        push_permission=prefs.push_permission or PERMISSION_DEFAULT,
        lead_minutes=parse_int_list(prefs.lead_minutes, minimum=0, maximum=MAX_LEAD_MINUTES),
        repeat_until_complete=bool(prefs.repeat_until_complete),
        repeat_interval_minutes=prefs.repeat_interval_minutes if prefs.repeat_interval_minutes is not None else 5,
        repeat_max_count=prefs.repeat_max_count if prefs.repeat_max_count is not None else 12,
        repeat_categories=categories,
        timezone=prefs.timezone or default_timezone,
    )


def save_notification_settings(user_id, settings: NotificationSettings) -> NotificationSettings:
    prefs = get_or_create_notification_setting(user_id)
    prefs.enabled = settings.enabled
    prefs.reminders_enabled = settings.reminders_enabled
    prefs.push_enabled = settings.push_enabled
    prefs.push_permission = settings.push_permission
    prefs.lead_minutes = ','.join(str(m) for m in settings.lead_minutes)
    prefs.repeat_until_complete = settings.repeat_until_complete
    prefs.repeat_interval_minutes = settings.repeat_interval_minutes
    prefs.repeat_max_count = settings.repeat_max_count
    prefs.repeat_categories = ','.join(settings.repeat_categories) if settings.repeat_categories is not None else None
    prefs.timezone = settings.timezone
    db.session.commit()
    return settings


def record_push_state(user_id, permission: Optional[str] = None, push_enabled: Optional[bool] = None):
    """Persist the device permission outcome and push toggle without touching other prefs."""
    prefs = get_or_create_notification_setting(user_id)
    if permission is not None:
        prefs.push_permission = permission
    if push_enabled is not None:
        prefs.push_enabled = push_enabled
    db.session.commit()
    return prefs
