"""User/session routes extracted from app.py for readability."""

from background_jobs import cancel_job
from services.sync_routes import full_sync_job_key, start_full_sync


def set_user(user_id):
    import app as a

    User = a.User
    db = a.db
    jsonify = a.jsonify
    session = a.session

    user = db.get_or_404(User, user_id)
    session['user_id'] = user.id
    session.permanent = True
    # Reconcile this device with the remote copy in the background.
    sync_started = start_full_sync(user.id)
    return jsonify({'success': True, 'username': user.username, 'user_id': user.id, 'sync_started': sync_started})


def create_user():
    import app as a

    User = a.User
    db = a.db
    jsonify = a.jsonify
    request = a.request
    session = a.session

    data = request.get_json(silent=True) or {}
    username = str(data.get('username', '')).strip()

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username)
    db.session.add(user)
    db.session.commit()

    session['user_id'] = user.id
    session.permanent = True

    return jsonify({'success': True, 'user_id': user.id, 'username': user.username})


def current_user_info():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    service = a.schedule_service

    user = get_current_user()
    if user:
        return jsonify({'user_id': user.id, 'username': user.username, 'sync_active': service.sync.is_active(user.id)})
    return jsonify({'user_id': None, 'username': None, 'sync_active': False})


def sign_out():
    import app as a

    get_current_user = a.get_current_user
    jsonify = a.jsonify
    session = a.session

    user = get_current_user()
    if user:
        cancel_job(full_sync_job_key(user.id))
    session.pop('user_id', None)
    return jsonify({'success': True})
