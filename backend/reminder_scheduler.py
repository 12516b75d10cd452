"""Reminder state machine for timed schedule activities.

Each timed, notify-enabled activity moves through
``none -> scheduled -> fired (-> repeating) -> retired``. Reminder rows are
the durable state; APScheduler 'date' jobs are only the wake-up calls and
are rebuilt from the rows on startup.
"""

import logging
import random
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError

from backend.local_store import LocalScheduleStore
from backend.notification_settings import NotificationSettings
from backend.schedule_records import find_activity, is_reminder_eligible, utc_now
from models import db, PendingReminder

logger = logging.getLogger(__name__)

REMINDER_PENDING = 'pending'
REMINDER_FIRED = 'fired'
REMINDER_CANCELLED = 'cancelled'

DEFAULT_GRACE_MINUTES = 5

ENCOURAGING_MESSAGES = [
    ("🌟 You've got this!", "Time for {activity}. I believe in you!"),
    ("⭐ Almost time!", "{activity} is coming up. You're doing amazing today!"),
    ("🎈 Friendly reminder!", "It's nearly time for {activity}. You're a superstar!"),
    ("🌈 Hey there, friend!", "{activity} is next. Take your time, you're wonderful!"),
    ("💪 You can do it!", "Getting ready for {activity}. One step at a time!"),
    ("🎉 Great job today!", "{activity} is coming up soon. Keep being awesome!"),
    ("🦋 Gentle reminder", "Time to get ready for {activity}. You're doing so well!"),
    ("🌻 Hello sunshine!", "{activity} is almost here. I'm proud of you!"),
    ("🐢 No rush!", "{activity} is next when you're ready. Take a deep breath!"),
    ("💖 You matter!", "Time for {activity}. Remember, you're loved and capable!"),
]

REPEAT_MESSAGES = [
    "Still on your list - take your time! 💙",
    "Gentle nudge! Whenever you're ready. 🌸",
    "No rush at all - just a friendly reminder! 🐌",
    "Checking in with love! You've got this! 💝",
    "Still here for you! One step at a time. 🌿",
    "Remember this one? I know you can do it! ⭐",
    "Just a soft reminder - you're doing great! 🦋",
    "Hey friend! This is still waiting for you. 🌼",
    "Sending encouragement your way! 🌈",
    "You haven't forgotten - and neither have I! 🤗",
]


def activity_fire_time(day: date, time_value: str, tz) -> datetime:
    """Local wall-clock time of an activity as naive UTC."""
    hour, minute = (int(part) for part in time_value.split(':'))
    local_dt = tz.localize(datetime(day.year, day.month, day.day, hour, minute))
    return local_dt.astimezone(pytz.UTC).replace(tzinfo=None)


def reminder_text(label: str, offset_minutes: int, choose=random.choice):
    label = label or 'Activity'
    title, body = choose(ENCOURAGING_MESSAGES)
    body = body.format(activity=label)
    if offset_minutes > 0:
        body = f"{label} in {offset_minutes} minutes! {body}"
    return title, body


def repeat_text(label: str, choose=random.choice):
    return f"🔔 {label or 'Activity'}", choose(REPEAT_MESSAGES)


class ReminderJobs:
    """Registers one APScheduler 'date' job per pending reminder."""

    def __init__(self, scheduler=None, callback: Optional[Callable] = None):
        self.scheduler = scheduler
        self.callback = callback

    def attach(self, scheduler, callback=None):
        self.scheduler = scheduler
        if callback is not None:
            self.callback = callback

    def add(self, reminder: PendingReminder):
        if not self.scheduler or not self.callback:
            return
        # A date job in the past would be dropped as a misfire.
        run_at = max(reminder.fire_at, utc_now())
        self.scheduler.add_job(
            self.callback,
            'date',
            run_date=pytz.UTC.localize(run_at),
            args=[reminder.id],
            id=reminder.job_id,
            replace_existing=True,
        )

    def remove(self, job_id: str):
        if not self.scheduler:
            return
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Reminder job %s was not scheduled", job_id)


class ReminderScheduler:
    def __init__(self, jobs: Optional[ReminderJobs] = None, store_factory=LocalScheduleStore, choose=random.choice):
        self.jobs = jobs or ReminderJobs()
        self.store_factory = store_factory
        self.choose = choose

    # --- Queries ---

    def _live(self, user_id, **filters):
        return PendingReminder.query.filter_by(user_id=user_id, status=REMINDER_PENDING, **filters)

    def upcoming(self, user_id, now: Optional[datetime] = None, days: int = 7) -> List[PendingReminder]:
        now = now or utc_now()
        return self._live(user_id).filter(
            PendingReminder.fire_at >= now,
            PendingReminder.fire_at <= now + timedelta(days=days),
        ).order_by(PendingReminder.fire_at.asc()).all()

    # --- Transitions ---

    def _cancel(self, reminder: PendingReminder, reason: str, now: datetime):
        reminder.status = REMINDER_CANCELLED
        reminder.cancel_reason = reason
        reminder.cancelled_at = now
        self.jobs.remove(reminder.job_id)

    def _create(self, user_id, day, activity, offset, occurrence, fire_at, title, body, repeat, interval):
        reminder = PendingReminder(
            user_id=user_id,
            day=day,
            activity_id=activity['id'],
            activity_time=activity['time'],
            offset_minutes=offset,
            occurrence=occurrence,
            fire_at=fire_at,
            status=REMINDER_PENDING,
            repeat_until_complete=repeat,
            repeat_interval_minutes=interval,
            title=title,
            body=body,
            delivered_count=0,
        )
        db.session.add(reminder)
        db.session.flush()
        return reminder

    def reschedule_day(
        self,
        user_id,
        day: date,
        activities: List[Dict],
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> List[PendingReminder]:
        """Bring the reminders for one date in line with its activities.

        Stale reminders are cancelled before any new one is created, so a
        moved activity never has reminders for both its old and new time.
        """
        now = now or utc_now()
        eligible = {}
        if settings.reminders_active:
            eligible = {a['id']: a for a in activities or [] if is_reminder_eligible(a)}

        live = self._live(user_id, day=day).all()
        kept = []
        for reminder in live:
            activity = eligible.get(reminder.activity_id)
            if activity is None:
                self._cancel(reminder, 'removed', now)
            elif activity['time'] != reminder.activity_time:
                self._cancel(reminder, 'time_changed', now)
            elif reminder.occurrence == 0 and reminder.offset_minutes not in settings.lead_minutes:
                self._cancel(reminder, 'settings_changed', now)
            elif reminder.occurrence > 0 and not settings.repeats_for(activity):
                self._cancel(reminder, 'settings_changed', now)
            else:
                kept.append(reminder)
        db.session.flush()

        existing = {(r.activity_id, r.activity_time, r.offset_minutes) for r in kept if r.occurrence == 0}
        created = []
        tz = settings.tz
        for activity in eligible.values():
            at = activity_fire_time(day, activity['time'], tz)
            repeat = settings.repeats_for(activity)
            for offset in settings.lead_minutes:
                if (activity['id'], activity['time'], offset) in existing:
                    continue
                fire_at = at - timedelta(minutes=offset)
                if fire_at <= now:
                    continue
                title, body = reminder_text(activity.get('label'), offset, self.choose)
                created.append(self._create(
                    user_id, day, activity, offset, 0, fire_at, title, body,
                    repeat and offset == 0,
                    settings.repeat_interval_minutes if repeat and offset == 0 else None,
                ))
        db.session.commit()
        for reminder in created:
            self.jobs.add(reminder)
        if created:
            logger.info("Scheduled %s reminders for user %s on %s", len(created), user_id, day)
        return created

    def cancel_day(self, user_id, day: date, reason: str = 'deleted') -> int:
        now = utc_now()
        live = self._live(user_id, day=day).all()
        for reminder in live:
            self._cancel(reminder, reason, now)
        db.session.commit()
        return len(live)

    def cancel_activity(self, user_id, activity_id: str, reason: str = 'completed') -> int:
        now = utc_now()
        live = self._live(user_id, activity_id=activity_id).all()
        for reminder in live:
            self._cancel(reminder, reason, now)
        db.session.commit()
        return len(live)

    def fire(
        self,
        reminder_id,
        deliver: Callable[[PendingReminder], int],
        now: Optional[datetime] = None,
        settings: Optional[NotificationSettings] = None,
    ) -> Optional[PendingReminder]:
        """Deliver one reminder if its activity still wants it, then queue the repeat tail."""
        now = now or utc_now()
        settings = settings or NotificationSettings()
        reminder = db.session.get(PendingReminder, reminder_id)
        if reminder is None or reminder.status != REMINDER_PENDING:
            return None

        record = self.store_factory(reminder.user_id).get(reminder.day)
        activity = find_activity(record, reminder.activity_id)
        if not is_reminder_eligible(activity) or activity['time'] != reminder.activity_time:
            reason = 'completed' if activity and activity.get('completed') else 'stale'
            self._cancel(reminder, reason, now)
            db.session.commit()
            return None
        if not settings.reminders_active:
            self._cancel(reminder, 'disabled', now)
            db.session.commit()
            return None

        try:
            delivered = deliver(reminder) or 0
        except Exception:
            logger.exception("Delivery of reminder %s failed", reminder.id)
            delivered = 0
        reminder.delivered_count = delivered
        reminder.status = REMINDER_FIRED
        reminder.fired_at = now

        tail = None
        interval = reminder.repeat_interval_minutes or 0
        if (
            reminder.offset_minutes == 0
            and reminder.repeat_until_complete
            and interval > 0
            and reminder.occurrence < settings.repeat_max_count
        ):
            next_at = reminder.fire_at + timedelta(minutes=interval)
            if next_at <= now:
                next_at = now + timedelta(minutes=interval)
            title, body = repeat_text(activity.get('label'), self.choose)
            tail = self._create(
                reminder.user_id, reminder.day, activity, 0, reminder.occurrence + 1,
                next_at, title, body, True, interval,
            )
        db.session.commit()
        if tail is not None:
            self.jobs.add(tail)
        logger.info(
            "Reminder %s fired for activity %s (occurrence %s, delivered %s)",
            reminder.id, reminder.activity_id, reminder.occurrence, reminder.delivered_count,
        )
        return reminder

    def restore_jobs(self, now: Optional[datetime] = None, grace_minutes: int = DEFAULT_GRACE_MINUTES) -> Dict:
        """Re-register jobs after a restart; late reminders inside the grace window still go out."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=grace_minutes)
        summary = {'scheduled': 0, 'late': 0, 'expired': 0}
        for reminder in PendingReminder.query.filter_by(status=REMINDER_PENDING).all():
            if reminder.fire_at < cutoff:
                self._cancel(reminder, 'expired', now)
                summary['expired'] += 1
                continue
            if reminder.fire_at <= now:
                summary['late'] += 1
            else:
                summary['scheduled'] += 1
            self.jobs.add(reminder)
        db.session.commit()
        return summary

    def purge_retired(self, before: datetime) -> int:
        deleted = PendingReminder.query.filter(
            PendingReminder.status.in_([REMINDER_FIRED, REMINDER_CANCELLED]),
            PendingReminder.fire_at < before,
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted
