"""HTTP client for the remote schedule store and push-subscription registry.

The remote side is a PostgREST-style REST API (Supabase conventions): one
``calendar_schedules`` row per (user_id, schedule_date) and one
``push_subscriptions`` row per (user_id, endpoint).
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional

import pytz
import requests

from backend.errors import RemoteUnavailable
from backend.schedule_records import normalize_record

logger = logging.getLogger(__name__)

SCHEDULES_TABLE = 'calendar_schedules'
SUBSCRIPTIONS_TABLE = 'push_subscriptions'
DEFAULT_TIMEOUT_SECONDS = 10


def format_remote_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC).isoformat()


def parse_remote_timestamp(value) -> Optional[datetime]:
    """ISO timestamp from the remote into naive UTC; None when missing or unreadable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
    return parsed


def to_remote_row(user_id, record: Dict) -> Dict:
    return {
        'user_id': user_id,
        'schedule_date': record['date'].isoformat(),
        'name': record.get('name'),
        'activities': record.get('activities') or [],
        'updated_at': format_remote_timestamp(record.get('updated_at')),
    }


def from_remote_row(row: Dict) -> Dict:
    day = datetime.strptime(row['schedule_date'], '%Y-%m-%d').date()
    return normalize_record(day, {
        'name': row.get('name'),
        'activities': row.get('activities') or [],
        'updated_at': parse_remote_timestamp(row.get('updated_at')),
    })


class RemoteScheduleStore:
    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout=DEFAULT_TIMEOUT_SECONDS, session=None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, prefer=None):
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if self.api_key:
            headers['apikey'] = self.api_key
            headers['Authorization'] = f"Bearer {self.api_key}"
        if prefer:
            headers['Prefer'] = prefer
        return headers

    def _request(self, method, table, params=None, payload=None, prefer=None):
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(prefer),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise RemoteUnavailable(f"{method} {table} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise RemoteUnavailable(f"{method} {table} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteUnavailable(
                f"{method} {table} failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _json_rows(self, response, table) -> List[Dict]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise RemoteUnavailable(f"Unreadable response from {table}") from exc
        if not isinstance(rows, list):
            raise RemoteUnavailable(f"Unexpected response shape from {table}")
        return rows

    def _records(self, rows) -> List[Dict]:
        try:
            return [from_remote_row(row) for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteUnavailable(f"Malformed schedule row from {SCHEDULES_TABLE}: {exc}") from exc

    # --- Schedules ---

    def fetch(self, user_id, day: date) -> Optional[Dict]:
        params = [
            ('select', '*'),
            ('user_id', f"eq.{user_id}"),
            ('schedule_date', f"eq.{day.isoformat()}"),
        ]
        rows = self._json_rows(self._request('GET', SCHEDULES_TABLE, params=params), SCHEDULES_TABLE)
        records = self._records(rows[:1])
        return records[0] if records else None

    def fetch_range(self, user_id, start: date, end: date) -> List[Dict]:
        params = [
            ('select', '*'),
            ('user_id', f"eq.{user_id}"),
            ('schedule_date', f"gte.{start.isoformat()}"),
            ('schedule_date', f"lte.{end.isoformat()}"),
            ('order', 'schedule_date.asc'),
        ]
        rows = self._json_rows(self._request('GET', SCHEDULES_TABLE, params=params), SCHEDULES_TABLE)
        return self._records(rows)

    def upsert(self, user_id, record: Dict) -> None:
        self._request(
            'POST',
            SCHEDULES_TABLE,
            params={'on_conflict': 'user_id,schedule_date'},
            payload=to_remote_row(user_id, record),
            prefer='resolution=merge-duplicates,return=minimal',
        )

    def delete(self, user_id, day: date) -> None:
        self._request(
            'DELETE',
            SCHEDULES_TABLE,
            params=[('user_id', f"eq.{user_id}"), ('schedule_date', f"eq.{day.isoformat()}")],
        )

    # --- Push subscription registry ---

    def upsert_subscription(self, user_id, subscription: Dict) -> None:
        self._request(
            'POST',
            SUBSCRIPTIONS_TABLE,
            params={'on_conflict': 'user_id,endpoint'},
            payload={
                'user_id': user_id,
                'endpoint': subscription['endpoint'],
                'p256dh': subscription['p256dh'],
                'auth': subscription['auth'],
                'device_name': subscription.get('device_label'),
                'last_used_at': format_remote_timestamp(subscription.get('last_used_at')),
            },
            prefer='resolution=merge-duplicates,return=minimal',
        )

    def touch_subscription(self, user_id, endpoint: str, when: datetime) -> None:
        self._request(
            'PATCH',
            SUBSCRIPTIONS_TABLE,
            params=[('user_id', f"eq.{user_id}"), ('endpoint', f"eq.{endpoint}")],
            payload={'last_used_at': format_remote_timestamp(when)},
            prefer='return=minimal',
        )

    def delete_subscription(self, user_id, endpoint: str) -> None:
        self._request(
            'DELETE',
            SUBSCRIPTIONS_TABLE,
            params=[('user_id', f"eq.{user_id}"), ('endpoint', f"eq.{endpoint}")],
        )
