from datetime import date, datetime, timedelta

import pytz

from backend.local_store import LocalScheduleStore
from backend.notification_settings import NotificationSettings
from backend.reminder_scheduler import (
    REMINDER_CANCELLED,
    REMINDER_FIRED,
    REMINDER_PENDING,
    ReminderScheduler,
    activity_fire_time,
    reminder_text,
)
from backend.schedule_records import normalize_record
from models import PendingReminder

DAY = date(2024, 6, 3)
SEVEN_AM = datetime(2024, 6, 3, 7, 0)
SETTINGS = NotificationSettings(timezone='UTC')


def _activities(*specs):
    return [{'id': activity_id, 'label': label, 'time': time_value, 'notify': True, 'completed': False}
            for activity_id, label, time_value in specs]


def _scheduler(jobs):
    return ReminderScheduler(jobs=jobs, choose=lambda options: options[0])


def _pending(activity_id=None):
    query = PendingReminder.query.filter_by(status=REMINDER_PENDING)
    if activity_id:
        query = query.filter_by(activity_id=activity_id)
    return query.order_by(PendingReminder.fire_at.asc()).all()


def test_one_reminder_per_future_lead_offset(app_ctx, jobs):
    created = _scheduler(jobs).reschedule_day(None, DAY, _activities(('a1', 'Breakfast', '08:00')), SETTINGS, now=SEVEN_AM)

    assert sorted((r.offset_minutes, r.fire_at) for r in created) == [
        (0, datetime(2024, 6, 3, 8, 0)),
        (5, datetime(2024, 6, 3, 7, 55)),
    ]
    assert len(jobs.added) == 2


def test_past_offsets_are_skipped(app_ctx, jobs):
    created = _scheduler(jobs).reschedule_day(
        None, DAY, _activities(('a1', 'Breakfast', '08:00')), SETTINGS, now=datetime(2024, 6, 3, 7, 57),
    )
    assert [r.offset_minutes for r in created] == [0]


def test_time_edit_cancels_old_reminder_before_new_one(app_ctx, jobs):
    scheduler = _scheduler(jobs)
    scheduler.reschedule_day(None, DAY, _activities(('a1', 'Breakfast', '08:00')), SETTINGS, now=SEVEN_AM)
    original = [r for r in _pending('a1') if r.offset_minutes == 0][0]

    scheduler.reschedule_day(None, DAY, _activities(('a1', 'Breakfast', '08:30')), SETTINGS, now=SEVEN_AM)

    zero_offset = [r for r in _pending('a1') if r.offset_minutes == 0]
    assert len(zero_offset) == 1
    assert zero_offset[0].fire_at == datetime(2024, 6, 3, 8, 30)
    assert zero_offset[0].activity_time == '08:30'
    assert original.status == REMINDER_CANCELLED
    assert original.cancel_reason == 'time_changed'
    assert original.job_id in jobs.removed


def test_reorder_alone_changes_nothing(app_ctx, jobs):
    scheduler = _scheduler(jobs)
    activities = _activities(('a1', 'Breakfast', '08:00'), ('a2', 'School', '09:00'))
    scheduler.reschedule_day(None, DAY, activities, SETTINGS, now=SEVEN_AM)

    created = scheduler.reschedule_day(None, DAY, list(reversed(activities)), SETTINGS, now=SEVEN_AM)
    assert created == []
    assert jobs.removed == []
    assert len(_pending()) == 4


def test_removed_untimed_and_muted_activities_lose_reminders(app_ctx, jobs):
    scheduler = _scheduler(jobs)
    scheduler.reschedule_day(
        None, DAY, _activities(('a1', 'Breakfast', '08:00'), ('a2', 'School', '09:00')), SETTINGS, now=SEVEN_AM,
    )
    muted = _activities(('a2', 'School', '09:00'))
    muted[0]['notify'] = False

    scheduler.reschedule_day(None, DAY, muted, SETTINGS, now=SEVEN_AM)
    assert _pending() == []


def test_disabled_reminders_schedule_nothing(app_ctx, jobs):
    settings = NotificationSettings(timezone='UTC', reminders_enabled=False)
    created = _scheduler(jobs).reschedule_day(None, DAY, _activities(('a1', 'Breakfast', '08:00')), settings, now=SEVEN_AM)
    assert created == []


def _store_day(activities):
    LocalScheduleStore(None).put(normalize_record(DAY, {'activities': activities}))


def test_fire_delivers_and_queues_repeat_tail(app_ctx, jobs):
    activities = _activities(('a1', 'Breakfast', '08:00'))
    _store_day(activities)
    scheduler = _scheduler(jobs)
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,), repeat_interval_minutes=5)
    primary = scheduler.reschedule_day(None, DAY, activities, settings, now=SEVEN_AM)[0]
    delivered = []

    fired = scheduler.fire(primary.id, lambda r: delivered.append(r.id) or 1, now=datetime(2024, 6, 3, 8, 0), settings=settings)

    assert fired.status == REMINDER_FIRED
    assert fired.delivered_count == 1
    assert delivered == [primary.id]
    tail = _pending('a1')
    assert len(tail) == 1
    assert tail[0].occurrence == 1
    assert tail[0].fire_at == datetime(2024, 6, 3, 8, 5)
    assert tail[0].title == '🔔 Breakfast'


def test_delivery_failure_still_retires_and_queues_the_tail(app_ctx, jobs):
    activities = _activities(('a1', 'Breakfast', '08:00'))
    _store_day(activities)
    scheduler = _scheduler(jobs)
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,), repeat_interval_minutes=5)
    primary = scheduler.reschedule_day(None, DAY, activities, settings, now=SEVEN_AM)[0]

    def offline(reminder):
        raise ConnectionError("network down")

    fired = scheduler.fire(primary.id, offline, now=datetime(2024, 6, 3, 8, 0), settings=settings)

    assert fired.status == REMINDER_FIRED
    assert fired.delivered_count == 0
    assert [(r.occurrence, r.fire_at) for r in _pending('a1')] == [(1, datetime(2024, 6, 3, 8, 5))]


def test_late_fire_bumps_the_tail_from_now(app_ctx, jobs):
    activities = _activities(('a1', 'Breakfast', '08:00'))
    _store_day(activities)
    scheduler = _scheduler(jobs)
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,), repeat_interval_minutes=5)
    primary = scheduler.reschedule_day(None, DAY, activities, settings, now=SEVEN_AM)[0]

    scheduler.fire(primary.id, lambda r: 0, now=datetime(2024, 6, 3, 8, 20), settings=settings)
    assert _pending('a1')[0].fire_at == datetime(2024, 6, 3, 8, 25)


def test_repeats_stop_at_max_count(app_ctx, jobs):
    activities = _activities(('a1', 'Breakfast', '08:00'))
    _store_day(activities)
    scheduler = _scheduler(jobs)
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,), repeat_interval_minutes=5, repeat_max_count=1)
    primary = scheduler.reschedule_day(None, DAY, activities, settings, now=SEVEN_AM)[0]

    scheduler.fire(primary.id, lambda r: 1, now=datetime(2024, 6, 3, 8, 0), settings=settings)
    tail = _pending('a1')[0]
    scheduler.fire(tail.id, lambda r: 1, now=datetime(2024, 6, 3, 8, 5), settings=settings)
    assert _pending('a1') == []


def test_completed_activity_is_not_delivered(app_ctx, jobs):
    activities = _activities(('a1', 'Breakfast', '08:00'))
    _store_day(activities)
    scheduler = _scheduler(jobs)
    primary = scheduler.reschedule_day(None, DAY, activities, SETTINGS, now=SEVEN_AM)[0]
    activities[0]['completed'] = True
    _store_day(activities)

    result = scheduler.fire(primary.id, lambda r: 1 / 0, now=datetime(2024, 6, 3, 8, 0), settings=SETTINGS)
    assert result is None
    assert primary.status == REMINDER_CANCELLED
    assert primary.cancel_reason == 'completed'


def test_repeats_only_for_listed_categories(app_ctx, jobs):
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,), repeat_categories=('meds',))
    activities = _activities(('a1', 'Pills', '08:00'), ('a2', 'Park', '09:00'))
    activities[0]['category'] = 'meds'
    created = {r.activity_id: r for r in _scheduler(jobs).reschedule_day(None, DAY, activities, settings, now=SEVEN_AM)}
    assert created['a1'].repeat_until_complete is True
    assert created['a2'].repeat_until_complete is False


def test_restore_jobs_expires_stale_and_keeps_grace_window(app_ctx, jobs):
    scheduler = _scheduler(jobs)
    activities = _activities(('a1', 'Early', '06:50'), ('a2', 'Just missed', '06:58'), ('a3', 'Later', '07:30'))
    settings = NotificationSettings(timezone='UTC', lead_minutes=(0,))
    scheduler.reschedule_day(None, DAY, activities, settings, now=datetime(2024, 6, 3, 6, 0))
    jobs.added.clear()

    summary = scheduler.restore_jobs(now=SEVEN_AM, grace_minutes=5)

    assert summary == {'scheduled': 1, 'late': 1, 'expired': 1}
    assert len(jobs.added) == 2
    expired = PendingReminder.query.filter_by(activity_id='a1').one()
    assert expired.cancel_reason == 'expired'


def test_upcoming_and_purge(app_ctx, jobs):
    scheduler = _scheduler(jobs)
    scheduler.reschedule_day(None, DAY, _activities(('a1', 'Breakfast', '08:00')), SETTINGS, now=SEVEN_AM)
    assert [r.offset_minutes for r in scheduler.upcoming(None, now=SEVEN_AM)] == [5, 0]

    scheduler.cancel_day(None, DAY)
    assert scheduler.upcoming(None, now=SEVEN_AM) == []
    assert scheduler.purge_retired(SEVEN_AM + timedelta(days=1)) == 2
    assert PendingReminder.query.count() == 0


def test_fire_time_uses_the_profile_timezone():
    tz = pytz.timezone('America/New_York')
    assert activity_fire_time(DAY, '08:00', tz) == datetime(2024, 6, 3, 12, 0)


def test_reminder_text_mentions_lead_time():
    title, body = reminder_text('Breakfast', 5, choose=lambda options: options[0])
    assert title == "🌟 You've got this!"
    assert body == "Breakfast in 5 minutes! Time for Breakfast. I believe in you!"
