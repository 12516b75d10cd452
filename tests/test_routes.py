from datetime import date, timedelta

from backend.errors import SerializationFailure


def _sign_in(client, username='caregiver-2'):
    resp = client.post('/api/create-user', json={'username': username})
    assert resp.status_code == 200
    return resp.get_json()['user_id']


def _future(days=3):
    return (date.today() + timedelta(days=days)).isoformat()


def test_guest_can_save_and_read_a_schedule(client):
    day = _future()
    resp = client.put(f'/api/schedules/{day}', json={'activities': [{'label': 'Breakfast', 'time': '08:00'}]})
    assert resp.status_code == 200
    assert resp.get_json()['sync_status'] == 'local_only'

    body = client.get(f'/api/schedules/{day}').get_json()
    assert body['schedule']['activities'][0]['label'] == 'Breakfast'


def test_missing_schedule_reads_as_null(client):
    body = client.get('/api/schedules/2024-06-03').get_json()
    assert body == {'date': '2024-06-03', 'display_date': 'Monday, June 3', 'schedule': None}


def test_bad_input_is_rejected(client):
    assert client.get('/api/schedules/June-3').status_code == 400
    assert client.put('/api/schedules/2024-06-03', json={'activities': 'nope'}).status_code == 400
    assert client.get('/api/schedules').status_code == 400


def test_malformed_activities_and_names_are_rejected(client):
    day = _future()
    assert client.put(f'/api/schedules/{day}', json={'activities': ['Breakfast']}).status_code == 400
    assert client.put(f'/api/schedules/{day}', json={'name': 5, 'activities': []}).status_code == 400
    resp = client.put(f'/api/schedules/{day}', json={'activities': [{'label': 7}]})
    assert resp.status_code == 400
    assert 'label' in resp.get_json()['error']
    assert client.get(f'/api/schedules/{day}').get_json()['schedule'] is None


def test_signed_in_save_syncs_to_remote(client, remote):
    user_id = _sign_in(client)
    day = _future()
    resp = client.put(f'/api/schedules/{day}', json={'activities': [{'label': 'School'}]})
    assert resp.get_json()['sync_status'] == 'synced'
    assert any(uid == user_id for uid, _day in remote.rows)


def test_local_write_failure_reports_not_saved(client, monkeypatch):
    def broken_put(self, record):
        raise SerializationFailure("disk full")

    monkeypatch.setattr('backend.local_store.LocalScheduleStore.put', broken_put)
    resp = client.put('/api/schedules/2024-06-03', json={'activities': []})
    assert resp.status_code == 500
    assert 'not saved' in resp.get_json()['error']


def test_month_listing_and_calendar(client):
    client.put('/api/schedules/2024-06-03', json={'activities': [{'label': 'Bath'}]})

    listing = client.get('/api/schedules?month=2024-06').get_json()
    assert listing == {'month': '2024-06', 'dates': ['2024-06-03']}

    grid = client.get('/api/calendar/month?year=2024&month=6').get_json()
    assert len(grid['days']) == 42
    flagged = [cell['date'] for cell in grid['days'] if cell['has_schedule']]
    assert flagged == ['2024-06-03']


def test_complete_and_delete(client):
    day = _future()
    saved = client.put(f'/api/schedules/{day}', json={'activities': [{'label': 'Meds', 'time': '09:00'}]}).get_json()
    activity_id = saved['schedule']['activities'][0]['id']

    resp = client.post(f'/api/schedules/{day}/activities/{activity_id}/complete', json={})
    assert resp.get_json()['schedule']['activities'][0]['completed'] is True
    assert client.post(f'/api/schedules/{day}/activities/missing/complete').status_code == 404

    assert client.delete(f'/api/schedules/{day}').status_code == 200
    assert client.delete(f'/api/schedules/{day}').status_code == 404


def test_clone_by_dates_and_rule(client):
    source = _future(1)
    client.put(f'/api/schedules/{source}', json={'activities': [{'label': 'Breakfast', 'time': '08:00'}]})

    by_dates = client.post(f'/api/schedules/{source}/clone', json={'dates': [_future(2), _future(3)]}).get_json()
    assert by_dates['count'] == 2

    by_rule = client.post(f'/api/schedules/{source}/clone', json={'rule': 'weekly', 'until': _future(15)}).get_json()
    assert by_rule['count'] == 2


def test_clone_rejects_bad_requests(client):
    source = _future(1)
    client.put(f'/api/schedules/{source}', json={'activities': [{'label': 'Breakfast'}]})
    assert client.post(f'/api/schedules/{source}/clone', json={'rule': 'hourly'}).status_code == 400
    assert client.post(f'/api/schedules/{source}/clone', json={'dates': ['2000-01-01']}).status_code == 400
    assert client.post(f'/api/schedules/{source}/clone', json={'dates': ['nope']}).status_code == 400
    assert client.post(f'/api/schedules/{_future(40)}/clone', json={'dates': [_future(41)]}).status_code == 404


def test_sync_routes_require_a_user(client):
    assert client.post('/api/sync').status_code == 401
    assert client.get('/api/sync/status').status_code == 401


def test_sync_routes_for_signed_in_user(client, remote):
    _sign_in(client)
    remote.fail = True
    day = _future()
    client.put(f'/api/schedules/{day}', json={'activities': [{'label': 'Bath'}]})

    status = client.get('/api/sync/status').get_json()
    assert [p['date'] for p in status['pending']] == [day]

    remote.fail = False
    summary = client.post('/api/sync', json={}).get_json()
    assert summary['status'] == 'synced'
    assert client.post(f'/api/sync/{day}').get_json() == {'date': day, 'status': 'synced'}
    assert client.get('/api/sync/status').get_json()['pending'] == []
    assert client.post('/api/sync/cancel').get_json() == {'cancelled': False}


def test_push_subscribe_flow(client, remote):
    user_id = _sign_in(client)
    subscription = {'endpoint': 'https://push.example/1', 'keys': {'p256dh': 'k', 'auth': 'a'}}

    resp = client.post('/api/push/subscribe', json={'permission': 'granted', 'subscription': subscription})
    assert resp.status_code == 200
    assert (user_id, 'https://push.example/1') in remote.subscriptions
    assert len(client.get('/api/push/subscriptions').get_json()) == 1

    resp = client.post('/api/push/unsubscribe', json={'endpoint': 'https://push.example/1'})
    assert resp.get_json() == {'status': 'unsubscribed', 'removed': True}
    assert client.get('/api/push/subscriptions').get_json() == []


def test_push_subscribe_errors(client):
    _sign_in(client)
    assert client.post('/api/push/subscribe', json={'permission': 'denied'}).status_code == 403
    assert client.post('/api/push/subscribe', json={'permission': 'unsupported'}).status_code == 501
    bad = {'permission': 'granted', 'subscription': {'endpoint': 'https://push.example/1'}}
    assert client.post('/api/push/subscribe', json=bad).status_code == 400
    assert client.get('/api/push/vapid-public-key').status_code == 404


def test_notification_settings_round_trip(client):
    assert client.get('/api/notifications/settings').get_json()['lead_minutes'] == [0, 5]

    resp = client.put('/api/notifications/settings', json={'lead_minutes': [10, 0], 'repeat_interval_minutes': 3})
    assert resp.get_json()['lead_minutes'] == [0, 10]
    assert client.get('/api/notifications/settings').get_json()['repeat_interval_minutes'] == 3

    assert client.put('/api/notifications/settings', json={'timezone': 'Mars/Base'}).status_code == 400
    assert client.put('/api/notifications/settings', json={'repeat_max_count': 'lots'}).status_code == 400


def test_upcoming_reminders(client):
    day = _future(1)
    client.put(f'/api/schedules/{day}', json={'activities': [{'label': 'Meds', 'time': '09:00'}]})
    reminders = client.get('/api/reminders/upcoming?days=3').get_json()['reminders']
    assert sorted(r['offset_minutes'] for r in reminders) == [0, 5]
    assert {r['activity_time_display'] for r in reminders} == {'9:00 AM'}
    assert client.get('/api/reminders/upcoming?days=x').status_code == 400


def test_identity_shim(client, monkeypatch):
    started = []
    monkeypatch.setattr('services.user_routes.start_full_sync', lambda uid: started.append(uid) or True)
    assert client.get('/api/current-user').get_json()['user_id'] is None
    user_id = _sign_in(client)
    assert client.get('/api/current-user').get_json()['user_id'] == user_id
    assert client.post(f'/api/set-user/{user_id}').get_json()['success'] is True
    assert started == [user_id]
    assert client.post('/api/create-user', json={'username': 'caregiver-2'}).status_code == 400
    client.post('/api/sign-out')
    assert client.get('/api/current-user').get_json()['user_id'] is None


def test_week_view_flags_days_with_schedules(client):
    client.put('/api/schedules/2024-06-05', json={'activities': [{'label': 'Swim'}]})

    week = client.get('/api/calendar/week?day=2024-06-05').get_json()

    assert [cell['date'] for cell in week['days']][0] == '2024-06-02'
    assert [cell['date'] for cell in week['days'] if cell['has_schedule']] == ['2024-06-05']
    assert week['days'][3]['display_date'] == 'Wednesday, June 5'
    assert (week['previous'], week['next']) == ('2024-05-26', '2024-06-09')
    assert client.get('/api/calendar/week?day=soon').status_code == 400
