"""Single entry point the routes and background jobs use for schedule work.

Wires the local store, sync engine, reminder scheduler, push manager and
clone engine together so that every write path gives the same result:
local save first, then reminders, then a best-effort remote push.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from backend.calendar_utils import add_weeks, month_grid, week_days
from backend.clone_engine import CloneEngine
from backend.local_store import LocalScheduleStore
from backend.notification_settings import (
    NotificationSettings,
    load_notification_settings,
    save_notification_settings,
)
from backend.push_subscription import PushSubscriptionManager
from backend.reminder_scheduler import ReminderScheduler
from backend.schedule_records import normalize_record, utc_now
from backend.sync_engine import DEFAULT_WINDOW_BUFFER_DAYS, SYNC_LOCAL_ONLY, SyncEngine
from models import db, PendingReminder

logger = logging.getLogger(__name__)


class ScheduleService:
    def __init__(
        self,
        remote=None,
        push: Optional[PushSubscriptionManager] = None,
        reminders: Optional[ReminderScheduler] = None,
        default_timezone: str = 'America/New_York',
        window_buffer_days: int = DEFAULT_WINDOW_BUFFER_DAYS,
        store_factory=LocalScheduleStore,
    ):
        self.default_timezone = default_timezone
        self.store_factory = store_factory
        self.sync = SyncEngine(
            remote=remote,
            window_buffer_days=window_buffer_days,
            on_local_change=self._on_local_change,
            store_factory=store_factory,
        )
        self.push = push or PushSubscriptionManager(remote=remote)
        self.reminders = reminders or ReminderScheduler(store_factory=store_factory)
        self.cloner = CloneEngine(self)
        self.last_sync: Dict = {}

    @property
    def remote(self):
        return self.sync.remote

    def store(self, user_id) -> LocalScheduleStore:
        return self.store_factory(user_id)

    def load_settings(self, user_id) -> NotificationSettings:
        return load_notification_settings(user_id, self.default_timezone)

    def today_for(self, user_id, settings: Optional[NotificationSettings] = None) -> date:
        settings = settings or self.load_settings(user_id)
        return datetime.now(settings.tz).date()

    # --- Reads ---

    def get_schedule_for_date(self, user_id, day: date) -> Optional[Dict]:
        return self.store(user_id).get(day)

    def list_dates_with_schedules(self, user_id, year: int, month: int) -> List[date]:
        return sorted(self.store(user_id).list_dates_with_schedules(year, month))

    def month_calendar(self, user_id, year: int, month: int, today: Optional[date] = None) -> List[Dict]:
        today = today or self.today_for(user_id)
        with_schedule = self.store(user_id).list_dates_with_schedules(year, month)
        cells = month_grid(year, month, today)
        for cell in cells:
            cell['has_schedule'] = cell['date'] in with_schedule
        return cells

    def week_calendar(self, user_id, day: date, today: Optional[date] = None) -> Dict:
        today = today or self.today_for(user_id)
        store = self.store(user_id)
        days = week_days(day, today)
        for cell in days:
            cell['has_schedule'] = store.get(cell['date']) is not None
        return {
            'days': days,
            'previous': add_weeks(days[0]['date'], -1),
            'next': add_weeks(days[0]['date'], 1),
        }

    # --- Writes ---

    def save_schedule_to_date(self, user_id, day: date, raw: Dict) -> Tuple[Dict, str]:
        """Save locally (raises SerializationFailure when that fails), then reminders, then remote."""
        record = self.store(user_id).put(normalize_record(day, raw))
        self._refresh_reminders(user_id, day, record)
        status = self.sync.push_local(user_id, record)
        if status != SYNC_LOCAL_ONLY:
            self.push.retry_unmirrored(user_id)
        return record, status

    def delete_schedule(self, user_id, day: date) -> Tuple[bool, Optional[str]]:
        deleted = self.store(user_id).delete(day)
        if not deleted:
            return False, None
        self.reminders.cancel_day(user_id, day)
        return True, self.sync.push_delete(user_id, day)

    def set_activity_completed(self, user_id, day: date, activity_id: str, completed: bool = True):
        record = self.get_schedule_for_date(user_id, day)
        if record is None:
            return None
        activities = [dict(a) for a in record['activities']]
        match = next((a for a in activities if a.get('id') == activity_id), None)
        if match is None:
            return None
        match['completed'] = completed
        if completed:
            self.reminders.cancel_activity(user_id, activity_id, reason='completed')
        return self.save_schedule_to_date(user_id, day, {'name': record['name'], 'activities': activities})

    def clone_to_dates(self, user_id, source_day: date, target_days):
        return self.cloner.clone_to_dates(user_id, source_day, target_days)

    def clone_by_recurrence(self, user_id, source_day: date, rule: str, until: Optional[date] = None):
        return self.cloner.clone_by_recurrence(user_id, source_day, rule, until, today=self.today_for(user_id))

    # --- Sync ---

    def sync_date(self, user_id, day: date, cancel_event=None) -> str:
        return self.sync.sync_date(user_id, day, cancel_event)

    def full_sync(self, user_id, today: Optional[date] = None, cancel_event=None) -> Dict:
        summary = self.sync.full_sync(user_id, today or self.today_for(user_id), cancel_event)
        if self.sync.is_active(user_id) and not (cancel_event is not None and cancel_event.is_set()):
            summary['subscriptions_mirrored'] = self.push.retry_unmirrored(user_id)
        summary['finished_at'] = utc_now().isoformat()
        self.last_sync[user_id] = summary
        return summary

    def drain_pending(self, user_id, cancel_event=None) -> Dict:
        return self.sync.drain_pending(user_id, cancel_event)

    def sync_status(self, user_id) -> Dict:
        return {
            'active': self.sync.is_active(user_id),
            'pending': [change.to_dict() for change in self.store(user_id).pending_changes()],
            'last_sync': self.last_sync.get(user_id),
        }

    # --- Reminders ---

    def _refresh_reminders(self, user_id, day: date, record: Optional[Dict], settings=None):
        if record is None:
            self.reminders.cancel_day(user_id, day)
            return []
        settings = settings or self.load_settings(user_id)
        return self.reminders.reschedule_day(user_id, day, record['activities'], settings)

    def _on_local_change(self, user_id, day: date, record: Optional[Dict]):
        self._refresh_reminders(user_id, day, record)

    def refresh_future_reminders(self, user_id, settings: Optional[NotificationSettings] = None) -> int:
        settings = settings or self.load_settings(user_id)
        today = self.today_for(user_id, settings)
        store = self.store(user_id)
        days = [d for d in store.all_dates() if d >= today]
        for day in days:
            self._refresh_reminders(user_id, day, store.get(day), settings)
        return len(days)

    def save_settings(self, user_id, settings: NotificationSettings) -> NotificationSettings:
        save_notification_settings(user_id, settings)
        self.refresh_future_reminders(user_id, settings)
        return settings

    def upcoming_reminders(self, user_id, days: int = 7) -> List[PendingReminder]:
        return self.reminders.upcoming(user_id, utc_now(), days)

    def fire_reminder(self, reminder_id, now: Optional[datetime] = None):
        reminder = db.session.get(PendingReminder, reminder_id)
        if reminder is None:
            return None
        settings = self.load_settings(reminder.user_id)

        def deliver(r):
            if not settings.push_enabled:
                return 0
            return self.push.send_push_to_user(
                r.user_id,
                r.title,
                r.body,
                link=f"/schedule?day={r.day.isoformat()}",
                data={'reminder_id': r.id, 'activity_id': r.activity_id, 'date': r.day.isoformat()},
                urgent=True,
                topic=r.activity_id,
            )

        return self.reminders.fire(reminder_id, deliver, now=now, settings=settings)
