import copy
import os

# Configure before app.py is imported anywhere.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['BOOTSTRAP_JOBS_ON_IMPORT'] = '0'
os.environ['ENABLE_SCHEDULE_JOBS'] = '0'
os.environ['REMOTE_STORE_URL'] = ''
os.environ['VAPID_PUBLIC_KEY'] = ''
os.environ['VAPID_PRIVATE_KEY'] = ''

import pytest

import app as app_module
from backend.errors import RemoteUnavailable
from backend.push_subscription import PushDevice, PushSubscriptionManager
from backend.reminder_scheduler import ReminderJobs, ReminderScheduler
from backend.schedule_service import ScheduleService
from models import db, User


class InMemoryRemoteStore:
    """Remote store double keeping rows in dicts and counting writes."""

    def __init__(self):
        self.rows = {}
        self.subscriptions = {}
        self.writes = 0
        self.deletes = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise RemoteUnavailable("remote offline")

    def fetch(self, user_id, day):
        self._check()
        return copy.deepcopy(self.rows.get((user_id, day)))

    def fetch_range(self, user_id, start, end):
        self._check()
        return [
            copy.deepcopy(record)
            for (uid, day), record in sorted(self.rows.items(), key=lambda kv: kv[0][1])
            if uid == user_id and start <= day <= end
        ]

    def upsert(self, user_id, record):
        self._check()
        self.writes += 1
        self.rows[(user_id, record['date'])] = copy.deepcopy(record)

    def delete(self, user_id, day):
        self._check()
        self.deletes += 1
        self.rows.pop((user_id, day), None)

    def upsert_subscription(self, user_id, subscription):
        self._check()
        self.subscriptions[(user_id, subscription['endpoint'])] = dict(subscription)

    def touch_subscription(self, user_id, endpoint, when):
        self._check()
        self.subscriptions[(user_id, endpoint)]['last_used_at'] = when

    def delete_subscription(self, user_id, endpoint):
        self._check()
        self.subscriptions.pop((user_id, endpoint), None)


class FakeDevice(PushDevice):
    def __init__(self, permission='default', prompt_result='granted', endpoint='https://push.example/abc'):
        self.permission = permission
        self.prompt_result = prompt_result
        self.prompts = 0
        self.endpoint = endpoint
        self.subscription = None
        self.label = 'Test phone'

    def permission_state(self):
        return self.permission

    def request_permission(self):
        self.prompts += 1
        self.permission = self.prompt_result
        return self.permission

    def current_subscription(self):
        return self.subscription

    def subscribe(self, application_server_key):
        self.subscription = {'endpoint': self.endpoint, 'keys': {'p256dh': 'p256-key', 'auth': 'auth-secret'}}
        return self.subscription

    def unsubscribe(self):
        had = self.subscription is not None
        self.subscription = None
        return had


class RecordingJobs(ReminderJobs):
    def __init__(self):
        super().__init__()
        self.added = []
        self.removed = []

    def add(self, reminder):
        self.added.append(reminder.job_id)

    def remove(self, job_id):
        self.removed.append(job_id)


@pytest.fixture
def app_ctx():
    flask_app = app_module.app
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def user_id(app_ctx):
    user = User(username='caregiver')
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def jobs():
    return RecordingJobs()


@pytest.fixture
def service(app_ctx, remote, jobs):
    return ScheduleService(
        remote=remote,
        push=PushSubscriptionManager(remote=remote),
        reminders=ReminderScheduler(jobs=jobs, choose=lambda options: options[0]),
        default_timezone='UTC',
    )


@pytest.fixture
def client(app_ctx, service, monkeypatch):
    monkeypatch.setattr(app_module, 'schedule_service', service)
    return app_ctx.test_client()


@pytest.fixture
def make_device():
    return FakeDevice
