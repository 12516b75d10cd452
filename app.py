import os
from datetime import timedelta

import pytz
from dotenv import load_dotenv
from flask import Flask, request, jsonify, session

load_dotenv()

from models import db, User, PendingChange
from apscheduler.schedulers.background import BackgroundScheduler
from backend.push_subscription import PushSubscriptionManager
from backend.reminder_scheduler import DEFAULT_GRACE_MINUTES, ReminderJobs, ReminderScheduler
from backend.remote_store import DEFAULT_TIMEOUT_SECONDS, RemoteScheduleStore
from backend.schedule_records import utc_now
from backend.schedule_service import ScheduleService
from backend.sync_engine import DEFAULT_WINDOW_BUFFER_DAYS
from services import notification_routes, push_routes, schedule_routes, sync_routes, user_routes

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///schedule.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'America/New_York')
app.config['REMOTE_STORE_URL'] = os.environ.get('REMOTE_STORE_URL')
app.config['REMOTE_STORE_KEY'] = os.environ.get('REMOTE_STORE_KEY')
app.config['REMOTE_TIMEOUT_SECONDS'] = float(os.environ.get('REMOTE_TIMEOUT_SECONDS', DEFAULT_TIMEOUT_SECONDS))
app.config['SYNC_WINDOW_BUFFER_DAYS'] = int(os.environ.get('SYNC_WINDOW_BUFFER_DAYS', DEFAULT_WINDOW_BUFFER_DAYS))
app.config['SYNC_DRAIN_MINUTES'] = int(os.environ.get('SYNC_DRAIN_MINUTES', 15))
app.config['REMINDER_GRACE_MINUTES'] = int(os.environ.get('REMINDER_GRACE_MINUTES', DEFAULT_GRACE_MINUTES))
app.config['VAPID_PUBLIC_KEY'] = os.environ.get('VAPID_PUBLIC_KEY')
app.config['VAPID_PRIVATE_KEY'] = os.environ.get('VAPID_PRIVATE_KEY')
app.config['VAPID_SUBJECT'] = os.environ.get('VAPID_SUBJECT', 'admin@example.com')

db.init_app(app)
scheduler = None

remote_store = None
if app.config['REMOTE_STORE_URL']:
    remote_store = RemoteScheduleStore(
        app.config['REMOTE_STORE_URL'],
        api_key=app.config['REMOTE_STORE_KEY'],
        timeout=app.config['REMOTE_TIMEOUT_SECONDS'],
    )

reminder_jobs = ReminderJobs()
schedule_service = ScheduleService(
    remote=remote_store,
    push=PushSubscriptionManager(
        remote=remote_store,
        vapid_public_key=app.config['VAPID_PUBLIC_KEY'],
        vapid_private_key=app.config['VAPID_PRIVATE_KEY'],
        vapid_subject=app.config['VAPID_SUBJECT'],
    ),
    reminders=ReminderScheduler(jobs=reminder_jobs),
    default_timezone=app.config['DEFAULT_TIMEZONE'],
    window_buffer_days=app.config['SYNC_WINDOW_BUFFER_DAYS'],
)


def get_current_user():
    """Resolve the signed-in user from the session; None means the guest profile."""
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def current_user_id():
    user = get_current_user()
    return user.id if user else None


with app.app_context():
    db.create_all()


def _fire_reminder(reminder_id):
    """APScheduler job: deliver one reminder."""
    with app.app_context():
        try:
            schedule_service.fire_reminder(reminder_id)
        except Exception:
            app.logger.exception("Error firing reminder %s", reminder_id)


def _drain_pending_changes():
    """Retry remote writes that failed while offline."""
    with app.app_context():
        user_ids = [row[0] for row in db.session.query(PendingChange.user_id).distinct().all()]
        for user_id in user_ids:
            try:
                results = schedule_service.drain_pending(user_id)
            except Exception:
                app.logger.exception("Error draining pending changes for user %s", user_id)
                continue
            if results:
                app.logger.info("Drained %s pending changes for user %s", len(results), user_id)


def _purge_retired_reminders():
    with app.app_context():
        deleted = schedule_service.reminders.purge_retired(utc_now() - timedelta(days=7))
        app.logger.info("Purged %s retired reminders", deleted)


def _start_scheduler():
    """Start background scheduler for reminders, the pending-change drain and cleanup."""
    global scheduler
    if os.environ.get('ENABLE_SCHEDULE_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    scheduler = BackgroundScheduler(timezone=pytz.timezone(app.config['DEFAULT_TIMEZONE']))
    reminder_jobs.attach(scheduler, _fire_reminder)
    if remote_store is not None:
        scheduler.add_job(
            _drain_pending_changes,
            'interval',
            minutes=app.config['SYNC_DRAIN_MINUTES'],
            id='drain_pending_changes',
            replace_existing=True
        )
    scheduler.add_job(
        _purge_retired_reminders,
        'cron',
        hour=0,
        minute=20,
        id='purge_retired_reminders',
        replace_existing=True
    )
    scheduler.start()

    with app.app_context():
        summary = schedule_service.reminders.restore_jobs(grace_minutes=app.config['REMINDER_GRACE_MINUTES'])
    app.logger.info(
        "Restored reminder jobs: %s scheduled, %s late, %s expired",
        summary['scheduled'], summary['late'], summary['expired'],
    )


_jobs_bootstrapped = False


@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped and scheduler and scheduler.running:
        return
    _start_scheduler()
    _jobs_bootstrapped = True


# Start scheduler on process startup (not request-dependent).
# Can be disabled for tooling/scripts that only need app context.
if os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') == '1':
    try:
        _start_scheduler()
        _jobs_bootstrapped = bool(scheduler and scheduler.running)
    except Exception as e:
        app.logger.error("Error starting scheduler on startup: %s", e)


# User selection
app.add_url_rule('/api/current-user', view_func=user_routes.current_user_info)
app.add_url_rule('/api/create-user', view_func=user_routes.create_user, methods=['POST'])
app.add_url_rule('/api/set-user/<int:user_id>', view_func=user_routes.set_user, methods=['POST'])
app.add_url_rule('/api/sign-out', view_func=user_routes.sign_out, methods=['POST'])

# Schedules
app.add_url_rule('/api/schedules', view_func=schedule_routes.list_schedule_dates)
app.add_url_rule(
    '/api/schedules/<day_str>',
    view_func=schedule_routes.schedule_day,
    methods=['GET', 'PUT', 'DELETE'],
)
app.add_url_rule(
    '/api/schedules/<day_str>/activities/<activity_id>/complete',
    view_func=schedule_routes.complete_activity,
    methods=['POST'],
)
app.add_url_rule('/api/schedules/<day_str>/clone', view_func=schedule_routes.clone_schedule, methods=['POST'])
app.add_url_rule('/api/calendar/month', view_func=schedule_routes.calendar_month)
app.add_url_rule('/api/calendar/week', view_func=schedule_routes.calendar_week)

# Sync
app.add_url_rule('/api/sync', view_func=sync_routes.sync_all, methods=['POST'])
app.add_url_rule('/api/sync/status', view_func=sync_routes.sync_status)
app.add_url_rule('/api/sync/cancel', view_func=sync_routes.cancel_sync, methods=['POST'])
app.add_url_rule('/api/sync/<day_str>', view_func=sync_routes.sync_day, methods=['POST'])

# Push + notifications
app.add_url_rule('/api/push/vapid-public-key', view_func=push_routes.api_push_public_key)
app.add_url_rule('/api/push/subscribe', view_func=push_routes.api_push_subscribe, methods=['POST'])
app.add_url_rule('/api/push/unsubscribe', view_func=push_routes.api_push_unsubscribe, methods=['POST'])
app.add_url_rule('/api/push/subscriptions', view_func=push_routes.api_push_list)
app.add_url_rule('/api/push/test', view_func=push_routes.api_push_test, methods=['POST'])
app.add_url_rule(
    '/api/notifications/settings',
    view_func=notification_routes.notification_settings,
    methods=['GET', 'PUT'],
)
app.add_url_rule('/api/reminders/upcoming', view_func=notification_routes.upcoming_reminders)


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
