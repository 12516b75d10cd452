"""Reconciles the local and remote schedule stores.

Conflict policy is whole-record last-writer-wins on ``updated_at``; on an
exact tie the local copy wins. Remote failures never propagate out of this
module: they resolve to a status string and leave the Local Store as it was.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from backend.calendar_utils import month_bounds
from backend.errors import ConflictResolved, RemoteUnavailable
from backend.local_store import ACTION_DELETE, ACTION_SAVE, LocalScheduleStore
from backend.schedule_records import normalize_record, record_fingerprint

logger = logging.getLogger(__name__)

SYNC_SYNCED = 'synced'
SYNC_PENDING = 'pending'
SYNC_ERROR = 'error'
SYNC_LOCAL_ONLY = 'local_only'

DEFAULT_WINDOW_BUFFER_DAYS = 31

_EPOCH = datetime(1970, 1, 1)


class SyncEngine:
    def __init__(
        self,
        remote=None,
        window_buffer_days: int = DEFAULT_WINDOW_BUFFER_DAYS,
        on_local_change: Optional[Callable] = None,
        store_factory=LocalScheduleStore,
    ):
        self.remote = remote
        self.window_buffer_days = window_buffer_days
        self.on_local_change = on_local_change
        self.store_factory = store_factory

    def is_active(self, user_id) -> bool:
        return self.remote is not None and user_id is not None

    @staticmethod
    def _cancelled(cancel_event) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _notify_local_change(self, user_id, day, record):
        if not self.on_local_change:
            return
        try:
            self.on_local_change(user_id, day, record)
        except Exception:
            logger.exception("Local change hook failed for user %s on %s", user_id, day)

    # --- Write path after a caregiver edit ---

    def push_local(self, user_id, record: Dict) -> str:
        """Best-effort remote write of a record that is already saved locally."""
        if not self.is_active(user_id):
            return SYNC_LOCAL_ONLY
        store = self.store_factory(user_id)
        day = record['date']
        try:
            self.remote.upsert(user_id, record)
        except RemoteUnavailable as exc:
            logger.warning("Remote save failed for user %s on %s, queued for retry: %s", user_id, day, exc)
            store.mark_dirty(day, ACTION_SAVE, str(exc))
            return SYNC_PENDING
        store.clear_dirty(day)
        return SYNC_SYNCED

    def push_delete(self, user_id, day: date) -> str:
        if not self.is_active(user_id):
            return SYNC_LOCAL_ONLY
        store = self.store_factory(user_id)
        try:
            self.remote.delete(user_id, day)
        except RemoteUnavailable as exc:
            logger.warning("Remote delete failed for user %s on %s, queued for retry: %s", user_id, day, exc)
            store.mark_dirty(day, ACTION_DELETE, str(exc))
            return SYNC_PENDING
        store.clear_dirty(day)
        return SYNC_SYNCED

    # --- Reconciliation ---

    def sync_date(self, user_id, day: date, cancel_event=None) -> str:
        status, _action, _conflict = self._sync_date(user_id, day, cancel_event)
        return status

    def _sync_date(self, user_id, day, cancel_event=None):
        """Returns (status, action, conflict) where action is pushed/pulled/deleted/unchanged."""
        if not self.is_active(user_id):
            return SYNC_LOCAL_ONLY, None, None
        if self._cancelled(cancel_event):
            return SYNC_PENDING, None, None

        store = self.store_factory(user_id)
        local = store.get(day)
        pending = store.pending_change(day)

        try:
            if local is None and pending is not None and pending.action == ACTION_DELETE:
                if self._cancelled(cancel_event):
                    return SYNC_PENDING, None, None
                self.remote.delete(user_id, day)
                store.clear_dirty(day)
                return SYNC_SYNCED, 'deleted', None

            remote = self.remote.fetch(user_id, day)
        except RemoteUnavailable as exc:
            logger.warning("Sync of %s for user %s failed: %s", day, user_id, exc)
            return SYNC_ERROR, None, None

        if remote is not None:
            try:
                remote = normalize_record(day, remote)
            except ValueError as exc:
                logger.warning("Remote schedule for %s (user %s) is malformed: %s", day, user_id, exc)
                return SYNC_ERROR, None, None

        if self._cancelled(cancel_event):
            return SYNC_PENDING, None, None

        if local is None and remote is None:
            store.clear_dirty(day)
            return SYNC_SYNCED, 'unchanged', None

        if remote is None:
            return self._push(store, user_id, local, None)

        if local is None:
            store.replace(remote)
            self._notify_local_change(user_id, day, remote)
            return SYNC_SYNCED, 'pulled', None

        same_content = record_fingerprint(local) == record_fingerprint(remote)
        local_ts = local.get('updated_at') or _EPOCH
        remote_ts = remote.get('updated_at') or _EPOCH
        if same_content and local_ts == remote_ts:
            store.clear_dirty(day)
            return SYNC_SYNCED, 'unchanged', None

        if local_ts >= remote_ts:
            conflict = None if same_content else ConflictResolved(day, 'local', local_ts, remote_ts)
            return self._push(store, user_id, local, conflict)

        conflict = None if same_content else ConflictResolved(day, 'remote', local_ts, remote_ts)
        store.replace(remote)
        store.clear_dirty(day)
        if conflict:
            logger.info("Conflict resolved for user %s: %s", user_id, conflict)
            self._notify_local_change(user_id, day, remote)
        return SYNC_SYNCED, 'pulled', conflict

    def _push(self, store, user_id, local, conflict):
        day = local['date']
        try:
            self.remote.upsert(user_id, local)
        except RemoteUnavailable as exc:
            logger.warning("Sync push of %s for user %s failed: %s", day, user_id, exc)
            store.mark_dirty(day, ACTION_SAVE, str(exc))
            return SYNC_ERROR, None, None
        store.clear_dirty(day)
        if conflict:
            logger.info("Conflict resolved for user %s: %s", user_id, conflict)
        return SYNC_SYNCED, 'pushed', conflict

    def sync_window(self, today: date):
        first, last = month_bounds(today.year, today.month)
        buffer = timedelta(days=self.window_buffer_days)
        return first - buffer, last + buffer

    def full_sync(self, user_id, today: Optional[date] = None, cancel_event=None) -> Dict:
        """Reconcile every local date plus remote dates in the lookback window."""
        summary = {
            'status': SYNC_SYNCED,
            'dates': {},
            'pulled': 0,
            'pushed': 0,
            'deleted': 0,
            'unchanged': 0,
            'conflicts': [],
            'errors': 0,
        }
        if not self.is_active(user_id):
            summary['status'] = SYNC_LOCAL_ONLY
            return summary

        store = self.store_factory(user_id)
        today = today or date.today()
        start, end = self.sync_window(today)
        try:
            remote_records = self.remote.fetch_range(user_id, start, end)
        except RemoteUnavailable as exc:
            logger.warning("Full sync for user %s could not list remote schedules: %s", user_id, exc)
            summary['status'] = SYNC_ERROR
            summary['errors'] += 1
            return summary

        # Dirty dates first so queued deletes land before anything is pulled back.
        ordered = [change.day for change in store.pending_changes()]
        ordered += store.all_dates()
        ordered += [record['date'] for record in remote_records]
        seen = set()
        for day in ordered:
            if day in seen:
                continue
            seen.add(day)
            if self._cancelled(cancel_event):
                summary['status'] = SYNC_PENDING
                break
            status, action, conflict = self._sync_date(user_id, day, cancel_event)
            summary['dates'][day.isoformat()] = status
            if status == SYNC_ERROR:
                summary['errors'] += 1
            elif action in ('pulled', 'pushed', 'deleted', 'unchanged'):
                summary[action] += 1
            if conflict:
                summary['conflicts'].append(conflict.to_dict())

        if summary['status'] == SYNC_SYNCED and summary['errors']:
            summary['status'] = SYNC_ERROR
        logger.info(
            "Full sync for user %s: status=%s pulled=%s pushed=%s deleted=%s unchanged=%s errors=%s",
            user_id,
            summary['status'],
            summary['pulled'],
            summary['pushed'],
            summary['deleted'],
            summary['unchanged'],
            summary['errors'],
        )
        return summary

    def drain_pending(self, user_id, cancel_event=None) -> Dict:
        """Retry every date queued after a failed remote write."""
        results = {}
        if not self.is_active(user_id):
            return results
        days = [change.day for change in self.store_factory(user_id).pending_changes()]
        for day in days:
            if self._cancelled(cancel_event):
                break
            results[day.isoformat()] = self.sync_date(user_id, day, cancel_event)
        return results
