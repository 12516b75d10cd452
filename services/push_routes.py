"""Push subscription routes."""

from backend.errors import PermissionDenied, Unsupported
from backend.push_subscription import BrowserReportedDevice
from services.validation_service import parse_bool


def api_push_public_key():
    import app as a

    app = a.app
    jsonify = a.jsonify

    public_key = app.config.get('VAPID_PUBLIC_KEY')
    if not public_key:
        return jsonify({'error': 'Push is not configured'}), 404
    return jsonify({'publicKey': public_key})


def api_push_subscribe():
    import app as a

    app = a.app
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    device = BrowserReportedDevice.from_request_data(data)
    user_initiated = parse_bool(data.get('user_initiated'), default=True)
    try:
        sub = service.push.ensure_subscription(user.id, device, user_initiated=user_initiated)
    except PermissionDenied as exc:
        return jsonify({'error': str(exc), 'permission': 'denied'}), 403
    except Unsupported as exc:
        return jsonify({'error': str(exc), 'permission': 'unsupported'}), 501
    except ValueError as exc:
        app.logger.warning("Push subscribe for user %s rejected: %s", user.id, exc)
        return jsonify({'error': 'Invalid subscription'}), 400
    app.logger.info("Push subscribe for user %s endpoint %s", user.id, sub.endpoint)
    return jsonify({'status': 'subscribed', 'subscription': sub.to_dict()})


def api_push_unsubscribe():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    data = request.get_json(silent=True) or {}
    endpoint = data.get('endpoint') or (data.get('subscription') or {}).get('endpoint')
    if not endpoint:
        return jsonify({'error': 'endpoint required'}), 400
    removed = service.push.revoke_subscription(user.id, endpoint=endpoint)
    return jsonify({'status': 'unsubscribed', 'removed': removed})


def api_push_list():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    return jsonify([s.to_dict() for s in service.push.live_subscriptions(user.id)])


def api_push_test():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    service = a.schedule_service

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    sent = service.push.send_push_to_user(
        user.id,
        'Test push',
        'This is a test push notification.',
        link='/',
    )
    return jsonify({'sent': sent})
