"""Remote sync routes."""

from backend.sync_engine import SYNC_LOCAL_ONLY
from background_jobs import cancel_job, job_running, start_cancellable_job
from services.validation_service import parse_bool, parse_day_value


def full_sync_job_key(user_id):
    return f"full_sync:{user_id}"


def start_full_sync(user_id):
    """Kick off a cancellable background full sync for a user."""
    import app as a

    app = a.app
    service = a.schedule_service

    if not service.sync.is_active(user_id):
        return False

    def _on_error(exc):
        app.logger.error("Background full sync for user %s failed: %s", user_id, exc)

    start_cancellable_job(
        app,
        full_sync_job_key(user_id),
        service.full_sync,
        args=(user_id,),
        on_error=_on_error,
    )
    return True


def sync_all():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    if not service.sync.is_active(user.id):
        return jsonify({'status': SYNC_LOCAL_ONLY})

    data = request.get_json(silent=True) or {}
    if parse_bool(data.get('background'), default=False):
        start_full_sync(user.id)
        return jsonify({'status': 'started'}), 202
    return jsonify(service.full_sync(user.id))


def sync_day(day_str):
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    day = parse_day_value(day_str)
    if not day:
        return jsonify({'error': 'Invalid date, expected YYYY-MM-DD'}), 400
    return jsonify({'date': day.isoformat(), 'status': service.sync_date(user.id, day)})


def sync_status():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    status = service.sync_status(user.id)
    status['running'] = job_running(full_sync_job_key(user.id))
    return jsonify(status)


def cancel_sync():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    return jsonify({'cancelled': cancel_job(full_sync_job_key(user.id))})
