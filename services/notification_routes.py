"""Notification preference and upcoming-reminder routes."""


def notification_settings():
    import app as a

    app = a.app
    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user_id = current_user_id()
    settings = service.load_settings(user_id)
    if request.method == 'GET':
        return jsonify(settings.to_dict())

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'JSON body required'}), 400
    try:
        settings = settings.updated(data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    service.save_settings(user_id, settings)
    app.logger.info("Notification settings updated for user %s", user_id)
    return jsonify(settings.to_dict())


def upcoming_reminders():
    """Pending reminders in the next few days, for the page to schedule locally."""
    import app as a

    current_user_id = a.current_user_id
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    try:
        days = int(request.args.get('days', 7))
    except (TypeError, ValueError):
        return jsonify({'error': 'days must be an integer'}), 400
    days = max(1, min(days, 31))
    reminders = service.upcoming_reminders(current_user_id(), days)
    return jsonify({'reminders': [r.to_dict() for r in reminders]})
