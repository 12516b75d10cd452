"""Schedule, calendar and clone routes."""

from backend.calendar_utils import RECURRENCE_RULES, format_display_date
from backend.errors import SerializationFailure
from backend.schedule_records import serialize_record
from services.validation_service import parse_bool, parse_day_list, parse_day_value, parse_month_value


def _not_saved(app, jsonify, exc):
    app.logger.error("Schedule write failed: %s", exc)
    return jsonify({'error': 'Schedule was not saved on this device', 'detail': str(exc)}), 500


def schedule_day(day_str):
    import app as a

    app = a.app
    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    day = parse_day_value(day_str)
    if not day:
        return jsonify({'error': 'Invalid date, expected YYYY-MM-DD'}), 400
    user_id = current_user_id()

    if request.method == 'GET':
        try:
            record = service.get_schedule_for_date(user_id, day)
        except SerializationFailure as exc:
            app.logger.error("Schedule read failed for %s: %s", day, exc)
            return jsonify({'error': 'Schedule could not be read', 'detail': str(exc)}), 500
        return jsonify({
            'date': day.isoformat(),
            'display_date': format_display_date(day),
            'schedule': serialize_record(record),
        })

    if request.method == 'DELETE':
        try:
            deleted, status = service.delete_schedule(user_id, day)
        except SerializationFailure as exc:
            return _not_saved(app, jsonify, exc)
        if not deleted:
            return jsonify({'error': 'No schedule for this date'}), 404
        return jsonify({'deleted': True, 'date': day.isoformat(), 'sync_status': status})

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'JSON body required'}), 400
    activities = data.get('activities', data.get('items'))
    if activities is not None and not isinstance(activities, list):
        return jsonify({'error': 'activities must be a list'}), 400
    try:
        record, status = service.save_schedule_to_date(user_id, day, data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    except SerializationFailure as exc:
        return _not_saved(app, jsonify, exc)
    return jsonify({'schedule': serialize_record(record), 'sync_status': status})


def list_schedule_dates():
    import app as a

    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    parsed = parse_month_value(request.args.get('month'))
    if not parsed:
        return jsonify({'error': 'month=YYYY-MM is required'}), 400
    year, month = parsed
    days = service.list_dates_with_schedules(current_user_id(), year, month)
    return jsonify({'month': f"{year:04d}-{month:02d}", 'dates': [d.isoformat() for d in days]})


def calendar_month():
    import app as a

    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user_id = current_user_id()
    today = service.today_for(user_id)
    try:
        year = int(request.args.get('year', today.year))
        month = int(request.args.get('month', today.month))
    except (TypeError, ValueError):
        return jsonify({'error': 'year and month must be integers'}), 400
    if not 1 <= month <= 12:
        return jsonify({'error': 'month must be 1-12'}), 400

    cells = service.month_calendar(user_id, year, month, today)
    for cell in cells:
        cell['date'] = cell['date'].isoformat()
    return jsonify({'year': year, 'month': month, 'days': cells})


def calendar_week():
    import app as a

    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user_id = current_user_id()
    raw = request.args.get('day')
    day = parse_day_value(raw) if raw else service.today_for(user_id)
    if not day:
        return jsonify({'error': 'Invalid date, expected YYYY-MM-DD'}), 400

    week = service.week_calendar(user_id, day)
    for cell in week['days']:
        cell['display_date'] = format_display_date(cell['date'])
        cell['date'] = cell['date'].isoformat()
    return jsonify({
        'days': week['days'],
        'previous': week['previous'].isoformat(),
        'next': week['next'].isoformat(),
    })


def complete_activity(day_str, activity_id):
    import app as a

    app = a.app
    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    day = parse_day_value(day_str)
    if not day:
        return jsonify({'error': 'Invalid date, expected YYYY-MM-DD'}), 400
    data = request.get_json(silent=True) or {}
    completed = parse_bool(data.get('completed'), default=True)
    try:
        result = service.set_activity_completed(current_user_id(), day, activity_id, completed)
    except SerializationFailure as exc:
        return _not_saved(app, jsonify, exc)
    if result is None:
        return jsonify({'error': 'Activity not found'}), 404
    record, status = result
    return jsonify({'schedule': serialize_record(record), 'sync_status': status})


def clone_schedule(day_str):
    import app as a

    app = a.app
    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    source_day = parse_day_value(day_str)
    if not source_day:
        return jsonify({'error': 'Invalid date, expected YYYY-MM-DD'}), 400
    user_id = current_user_id()
    data = request.get_json(silent=True) or {}

    try:
        if data.get('dates') is not None:
            if not isinstance(data.get('dates'), list):
                return jsonify({'error': 'dates must be a list'}), 400
            targets, invalid = parse_day_list(data.get('dates'))
            if invalid:
                return jsonify({'error': 'Invalid dates', 'invalid': invalid}), 400
            today = service.today_for(user_id)
            past = [d.isoformat() for d in targets if d < today]
            if past:
                return jsonify({'error': 'Cannot clone onto past dates', 'invalid': past}), 400
            results = service.clone_to_dates(user_id, source_day, targets)
        else:
            rule = (data.get('rule') or '').strip().lower()
            if rule not in RECURRENCE_RULES:
                return jsonify({'error': f"rule must be one of {', '.join(RECURRENCE_RULES)}"}), 400
            until = None
            if data.get('until'):
                until = parse_day_value(data.get('until'))
                if not until:
                    return jsonify({'error': 'Invalid until date'}), 400
            results = service.clone_by_recurrence(user_id, source_day, rule, until)
    except SerializationFailure as exc:
        return _not_saved(app, jsonify, exc)

    if results is None:
        return jsonify({'error': 'No schedule on the source date'}), 404
    app.logger.info("Cloned %s to %s dates", source_day, len(results))
    return jsonify({'source': source_day.isoformat(), 'cloned': results, 'count': len(results)})
