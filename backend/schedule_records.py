"""Normalization of schedule records and activity entries.

Schedules travel as plain dicts between the stores, the routes and the
remote service::

    {'date': date, 'name': str, 'activities': [activity, ...], 'updated_at': datetime}

Activity dicts carry ``id``, ``label``, ``icon``, ``image``, ``color``,
``time`` ('HH:MM' or None), ``completed``, ``notify`` and ``category``.
Older clients sent ``name``/``emoji``/``customImage`` and sometimes
``items`` instead of ``activities``; those aliases are accepted here.
"""

import hashlib
import json
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

import pytz

from services.validation_service import normalize_time_value, parse_bool

DEFAULT_COLOR = '#4A9FD4'

ACTIVITY_FIELDS = ('id', 'label', 'icon', 'image', 'color', 'time', 'completed', 'notify', 'category')


def utc_now() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def new_activity_id() -> str:
    return uuid.uuid4().hex


def default_schedule_name(day: date) -> str:
    return f"Schedule for {day.isoformat()}"


def normalize_activity(raw: Dict) -> Dict:
    """Return a canonical activity dict, minting an id when the entry has none.

    Raises ValueError when the entry is not a mapping.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Activity must be an object, got {type(raw).__name__}")
    time_value = normalize_time_value(raw.get('time'))
    notify_raw = raw.get('notify', raw.get('notify_enabled'))
    label = raw.get('label') if raw.get('label') is not None else raw.get('name')
    if label is not None and not isinstance(label, str):
        raise ValueError("Activity label must be a string")
    return {
        'id': str(raw.get('id') or raw.get('activityId') or new_activity_id()),
        'label': (label or '').strip(),
        'icon': raw.get('icon') or raw.get('emoji'),
        'image': raw.get('image') or raw.get('customImage'),
        'color': raw.get('color') or DEFAULT_COLOR,
        'time': time_value,
        'completed': parse_bool(raw.get('completed'), default=False),
        # Default on only makes sense when there is a time to remind at.
        'notify': parse_bool(notify_raw, default=time_value is not None),
        'category': (raw.get('category') or None),
    }


def normalize_activities(raw_list) -> List[Dict]:
    if raw_list is not None and not isinstance(raw_list, list):
        raise ValueError("activities must be a list")
    activities = []
    seen_ids = set()
    for raw in raw_list or []:
        activity = normalize_activity(raw)
        if activity['id'] in seen_ids:
            activity['id'] = new_activity_id()
        seen_ids.add(activity['id'])
        activities.append(activity)
    return activities


def normalize_record(day: date, raw: Optional[Dict]) -> Dict:
    raw = raw or {}
    activities = raw.get('activities')
    if activities is None:
        activities = raw.get('items')
    name = raw.get('name')
    if name is not None and not isinstance(name, str):
        raise ValueError("Schedule name must be a string")
    name = (name or '').strip() or default_schedule_name(day)
    return {
        'date': day,
        'name': name,
        'activities': normalize_activities(activities),
        'updated_at': raw.get('updated_at'),
    }


def record_fingerprint(record: Optional[Dict]) -> Optional[str]:
    """Content hash of a record (name + activities) ignoring its timestamp."""
    if record is None:
        return None
    payload = json.dumps(
        {'name': record.get('name'), 'activities': record.get('activities') or []},
        sort_keys=True,
        separators=(',', ':'),
    )
    return hashlib.sha1(payload.encode('utf-8')).hexdigest()  # nosec B324


def find_activity(record: Optional[Dict], activity_id: str) -> Optional[Dict]:
    if not record:
        return None
    for activity in record.get('activities') or []:
        if activity.get('id') == activity_id:
            return activity
    return None


def is_reminder_eligible(activity: Optional[Dict]) -> bool:
    return bool(
        activity
        and activity.get('time')
        and activity.get('notify', True)
        and not activity.get('completed')
    )


def cloned_activities(activities: List[Dict]) -> List[Dict]:
    """Copies for another date: fresh ids, nothing completed."""
    copies = []
    for activity in activities or []:
        copy = dict(activity)
        copy['id'] = new_activity_id()
        copy['completed'] = False
        copies.append(copy)
    return copies


def serialize_record(record: Optional[Dict]) -> Optional[Dict]:
    if record is None:
        return None
    updated_at = record.get('updated_at')
    return {
        'date': record['date'].isoformat(),
        'name': record.get('name'),
        'activities': list(record.get('activities') or []),
        'updated_at': updated_at.isoformat() if isinstance(updated_at, datetime) else updated_at,
    }
