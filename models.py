from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

from backend.calendar_utils import format_time_12h

db = SQLAlchemy()


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    schedules = db.relationship('ScheduleDay', backref='owner', lazy=True, cascade="all, delete-orphan")
    notification_settings = db.relationship('NotificationSetting', backref='user', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ScheduleDay(db.Model):
    """
    One caregiver schedule per (user, calendar date). A NULL user_id is the
    guest/local-only profile. Activities are stored in display order as JSON.
    updated_at is naive UTC and drives last-writer-wins sync.
    """
    __table_args__ = (db.UniqueConstraint('user_id', 'day', name='uq_schedule_user_day'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    day = db.Column(db.Date, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    activities = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_record(self):
        return {
            'date': self.day,
            'name': self.name,
            'activities': list(self.activities or []),
            'updated_at': self.updated_at,
        }

    def to_dict(self):
        return {
            'date': self.day.isoformat(),
            'name': self.name,
            'activities': list(self.activities or []),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class PendingChange(db.Model):
    """Durable per-date dirty marker for remote writes that did not go through."""
    __table_args__ = (db.UniqueConstraint('user_id', 'day', name='uq_pending_change_user_day'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    day = db.Column(db.Date, nullable=False)
    action = db.Column(db.String(10), nullable=False, default='save')  # save | delete
    attempts = db.Column(db.Integer, default=0)
    last_error = db.Column(db.String(300), nullable=True)
    queued_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'date': self.day.isoformat(),
            'action': self.action,
            'attempts': self.attempts or 0,
            'last_error': self.last_error,
            'queued_at': self.queued_at.isoformat() if self.queued_at else None,
        }


class PendingReminder(db.Model):
    """One reminder per (activity, lead-time offset, occurrence). fire_at is naive UTC."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    day = db.Column(db.Date, nullable=False, index=True)
    activity_id = db.Column(db.String(64), nullable=False, index=True)
    activity_time = db.Column(db.String(5), nullable=False)  # HH:MM the reminder was computed from
    offset_minutes = db.Column(db.Integer, nullable=False, default=0)
    occurrence = db.Column(db.Integer, nullable=False, default=0)  # 0 = primary, n = n-th repeat
    fire_at = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending | fired | cancelled
    repeat_until_complete = db.Column(db.Boolean, default=False)
    repeat_interval_minutes = db.Column(db.Integer, nullable=True)
    title = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(40), nullable=True)
    delivered_count = db.Column(db.Integer, default=0)
    fired_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def job_id(self):
        return f"reminder_{self.id}"

    def to_dict(self):
        return {
            'id': self.id,
            'day': self.day.isoformat() if self.day else None,
            'activity_id': self.activity_id,
            'activity_time': self.activity_time,
            'activity_time_display': format_time_12h(self.activity_time),
            'offset_minutes': self.offset_minutes,
            'occurrence': self.occurrence,
            'fire_at': self.fire_at.isoformat() if self.fire_at else None,
            'status': self.status,
            'repeat_until_complete': bool(self.repeat_until_complete),
            'title': self.title,
            'body': self.body,
            'cancel_reason': self.cancel_reason,
        }


class NotificationSetting(db.Model):
    """Per-user notification preferences (NULL user_id for the guest profile)."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, unique=True)
    enabled = db.Column(db.Boolean, default=True)
    reminders_enabled = db.Column(db.Boolean, default=True)
    push_enabled = db.Column(db.Boolean, default=False)
    push_permission = db.Column(db.String(20), default='default')  # default | granted | denied | unsupported
    lead_minutes = db.Column(db.String(100), default='0,5')
    repeat_until_complete = db.Column(db.Boolean, default=True)
    repeat_interval_minutes = db.Column(db.Integer, default=5)
    repeat_max_count = db.Column(db.Integer, default=12)
    repeat_categories = db.Column(db.String(300), nullable=True)  # NULL = every category
    timezone = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PushSubscription(db.Model):
    """Local mirror of a device's Web Push subscription (VAPID)."""
    __table_args__ = (db.UniqueConstraint('user_id', 'endpoint', name='uq_push_user_endpoint'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    endpoint = db.Column(db.String(500), nullable=False)
    p256dh = db.Column(db.String(255), nullable=False)
    auth = db.Column(db.String(255), nullable=False)
    device_label = db.Column(db.String(80), nullable=True)
    remote_synced = db.Column(db.Boolean, default=False)
    revoked = db.Column(db.Boolean, default=False)
    last_used_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def subscription_info(self):
        return {'endpoint': self.endpoint, 'keys': {'p256dh': self.p256dh, 'auth': self.auth}}

    def to_dict(self):
        return {
            'id': self.id,
            'endpoint': self.endpoint,
            'p256dh': self.p256dh,
            'auth': self.auth,
            'device_label': self.device_label,
            'remote_synced': bool(self.remote_synced),
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
