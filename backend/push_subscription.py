"""Web Push subscription lifecycle and delivery.

The browser owns the actual subscription; this module keeps the local mirror
(``PushSubscription`` rows) and the remote registry copy in step with it, and
sends notifications through pywebpush using the VAPID key pair.
"""

import json
import logging
import re
from typing import Dict, Optional

from pywebpush import webpush, WebPushException

from backend.errors import PermissionDenied, RemoteUnavailable, Unsupported
from backend.notification_settings import (
    PERMISSION_DEFAULT,
    PERMISSION_DENIED,
    PERMISSION_GRANTED,
    PERMISSION_UNSUPPORTED,
    get_or_create_notification_setting,
    record_push_state,
)
from backend.schedule_records import utc_now
from models import db, PushSubscription

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 32


def push_topic(key) -> str:
    """Web Push Topic for one activity: URL-safe characters, at most 32 of them."""
    cleaned = re.sub(r'[^A-Za-z0-9_-]', '', str(key or ''))
    return ('r' + cleaned)[:MAX_TOPIC_LENGTH]


class PushDevice:
    """Permission and subscription handshake for one device."""

    label: Optional[str] = None

    def permission_state(self) -> str:
        raise NotImplementedError

    def request_permission(self) -> str:
        raise NotImplementedError

    def current_subscription(self) -> Optional[Dict]:
        raise NotImplementedError

    def subscribe(self, application_server_key: Optional[str]) -> Dict:
        raise NotImplementedError

    def unsubscribe(self) -> bool:
        raise NotImplementedError


class BrowserReportedDevice(PushDevice):
    """A device whose handshake already happened in the browser.

    The page runs ``Notification.requestPermission()`` and
    ``pushManager.subscribe()`` itself and posts the outcome here, so every
    call just replays what the browser reported.
    """

    def __init__(self, permission: Optional[str] = None, subscription: Optional[Dict] = None, label=None):
        self.permission = (permission or (PERMISSION_GRANTED if subscription else PERMISSION_DEFAULT)).lower()
        self.subscription = subscription
        self.label = label

    @classmethod
    def from_request_data(cls, data: Dict) -> 'BrowserReportedDevice':
        return cls(
            permission=data.get('permission'),
            subscription=data.get('subscription') or None,
            label=(data.get('device_label') or data.get('deviceName') or None),
        )

    def permission_state(self) -> str:
        return self.permission

    def request_permission(self) -> str:
        return self.permission

    def current_subscription(self) -> Optional[Dict]:
        return self.subscription

    def subscribe(self, application_server_key: Optional[str]) -> Dict:
        if not self.subscription:
            raise Unsupported("Browser did not report a push subscription")
        return self.subscription

    def unsubscribe(self) -> bool:
        had = self.subscription is not None
        self.subscription = None
        return had


def _subscription_fields(subscription: Dict):
    subscription = subscription or {}
    keys = subscription.get('keys') or {}
    endpoint = subscription.get('endpoint')
    p256dh = keys.get('p256dh') or subscription.get('p256dh')
    auth = keys.get('auth') or subscription.get('auth')
    if not endpoint or not p256dh or not auth:
        raise ValueError("Invalid subscription: endpoint and keys are required")
    return endpoint, p256dh, auth


def _mirror_payload(sub: PushSubscription) -> Dict:
    return {
        'endpoint': sub.endpoint,
        'p256dh': sub.p256dh,
        'auth': sub.auth,
        'device_label': sub.device_label,
        'last_used_at': sub.last_used_at,
    }


class PushSubscriptionManager:
    def __init__(self, remote=None, vapid_public_key=None, vapid_private_key=None, vapid_subject=None):
        self.remote = remote
        self.vapid_public_key = vapid_public_key
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject or 'admin@example.com'

    @property
    def vapid_claims(self):
        subject = self.vapid_subject
        if not subject.startswith(('mailto:', 'https:')):
            subject = f"mailto:{subject}"
        return {'sub': subject}

    def ensure_subscription(self, user_id, device: PushDevice, user_initiated: bool = True) -> Optional[PushSubscription]:
        """Make sure this device has a live subscription mirrored locally and remotely.

        Raises PermissionDenied or Unsupported for the terminal permission
        outcomes. A denial already on record is only re-asked when the user
        explicitly started the flow.
        """
        if user_id is None:
            return None

        recorded = get_or_create_notification_setting(user_id).push_permission
        if not user_initiated:
            if recorded == PERMISSION_DENIED:
                raise PermissionDenied("Notification permission was denied on this device")
            if recorded == PERMISSION_UNSUPPORTED:
                raise Unsupported("Push notifications are not supported on this device")

        state = device.permission_state()
        if state == PERMISSION_DEFAULT:
            state = device.request_permission()
        if state == PERMISSION_DENIED:
            record_push_state(user_id, permission=PERMISSION_DENIED, push_enabled=False)
            raise PermissionDenied("Notification permission was denied on this device")
        if state != PERMISSION_GRANTED:
            record_push_state(user_id, permission=PERMISSION_UNSUPPORTED, push_enabled=False)
            raise Unsupported("Push notifications are not supported on this device")

        subscription = device.current_subscription() or device.subscribe(self.vapid_public_key)
        endpoint, p256dh, auth = _subscription_fields(subscription)

        sub = PushSubscription.query.filter_by(user_id=user_id, endpoint=endpoint).first()
        now = utc_now()
        if sub and not sub.revoked and sub.remote_synced and sub.p256dh == p256dh and sub.auth == auth:
            sub.last_used_at = now
            db.session.commit()
            self._touch_remote(user_id, sub)
            record_push_state(user_id, permission=PERMISSION_GRANTED, push_enabled=True)
            return sub

        if sub is None:
            sub = PushSubscription(user_id=user_id, endpoint=endpoint)
            db.session.add(sub)
        sub.p256dh = p256dh
        sub.auth = auth
        sub.device_label = device.label or sub.device_label
        sub.revoked = False
        sub.remote_synced = False
        sub.last_used_at = now
        db.session.commit()
        logger.info("Push subscription stored for user %s endpoint %s", user_id, endpoint)

        self._mirror(user_id, sub)
        record_push_state(user_id, permission=PERMISSION_GRANTED, push_enabled=True)
        return sub

    def _touch_remote(self, user_id, sub):
        if self.remote is None:
            return
        try:
            self.remote.touch_subscription(user_id, sub.endpoint, sub.last_used_at)
        except RemoteUnavailable as exc:
            logger.warning("Could not refresh remote subscription for user %s: %s", user_id, exc)

    def _mirror(self, user_id, sub) -> bool:
        if self.remote is None:
            return False
        try:
            self.remote.upsert_subscription(user_id, _mirror_payload(sub))
        except RemoteUnavailable as exc:
            # The device stays subscribed; retry_unmirrored picks this up later.
            logger.warning("Remote subscription mirror failed for user %s: %s", user_id, exc)
            return False
        sub.remote_synced = True
        db.session.commit()
        return True

    def revoke_subscription(self, user_id, device: Optional[PushDevice] = None, endpoint: Optional[str] = None) -> bool:
        if user_id is None:
            return False
        if endpoint is None and device is not None:
            current = device.current_subscription()
            endpoint = (current or {}).get('endpoint')
        if device is not None:
            device.unsubscribe()
        if not endpoint:
            return False

        sub = PushSubscription.query.filter_by(user_id=user_id, endpoint=endpoint).first()
        if sub is None:
            return False
        self._retire(user_id, sub)
        if not self.has_live_subscription(user_id):
            record_push_state(user_id, push_enabled=False)
        return True

    def _retire(self, user_id, sub):
        if self.remote is not None:
            try:
                self.remote.delete_subscription(user_id, sub.endpoint)
            except RemoteUnavailable as exc:
                logger.warning("Remote subscription delete failed for user %s, keeping tombstone: %s", user_id, exc)
                sub.revoked = True
                sub.remote_synced = False
                db.session.commit()
                return
        db.session.delete(sub)
        db.session.commit()

    def retry_unmirrored(self, user_id) -> int:
        """Push pending mirror writes and tombstones to the remote registry."""
        if user_id is None or self.remote is None:
            return 0
        fixed = 0
        rows = PushSubscription.query.filter_by(user_id=user_id, remote_synced=False).all()
        for sub in rows:
            try:
                if sub.revoked:
                    self.remote.delete_subscription(user_id, sub.endpoint)
                    db.session.delete(sub)
                else:
                    self.remote.upsert_subscription(user_id, _mirror_payload(sub))
                    sub.remote_synced = True
            except RemoteUnavailable as exc:
                logger.warning("Subscription mirror retry failed for user %s: %s", user_id, exc)
                break
            db.session.commit()
            fixed += 1
        return fixed

    def live_subscriptions(self, user_id):
        if user_id is None:
            return []
        return PushSubscription.query.filter_by(user_id=user_id, revoked=False).all()

    def has_live_subscription(self, user_id) -> bool:
        return bool(self.live_subscriptions(user_id))

    def send_push_to_user(self, user_id, title, body=None, link=None, data=None, urgent=False, topic=None) -> int:
        if not self.vapid_public_key or not self.vapid_private_key:
            return 0
        subs = self.live_subscriptions(user_id)
        if not subs:
            return 0
        logger.info("Sending push to %s subs for user %s", len(subs), user_id)

        payload_data = {'title': title, 'body': body or '', 'data': {'url': link or '/'}}
        payload_data['data'].update(data or {})
        payload = json.dumps(payload_data)
        # High urgency so reminders arrive on mobile with the screen off
        headers = {'Urgency': 'high'} if urgent else {}
        if topic:
            headers['Topic'] = push_topic(topic)
        sent = 0
        for sub in subs:
            try:
                webpush(
                    subscription_info=sub.subscription_info(),
                    data=payload,
                    vapid_private_key=self.vapid_private_key,
                    vapid_claims=dict(self.vapid_claims),
                    headers=headers,
                )
            except WebPushException as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status in (404, 410):
                    logger.warning("Deleting invalid push subscription %s due to %s", sub.endpoint, status)
                    self._retire(user_id, sub)
                else:
                    logger.warning("Push send to %s failed: %s", sub.endpoint, exc)
                continue
            except Exception:
                logger.exception("Push send to %s failed", sub.endpoint)
                continue
            sub.last_used_at = utc_now()
            db.session.commit()
            sent += 1
        return sent
