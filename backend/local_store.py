"""On-device persistence of per-date schedule records (SQLite via Flask-SQLAlchemy)."""

import json
import logging
from datetime import date
from typing import Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from backend.calendar_utils import month_bounds
from backend.errors import SerializationFailure
from backend.schedule_records import default_schedule_name, utc_now
from models import db, PendingChange, ScheduleDay

logger = logging.getLogger(__name__)

ACTION_SAVE = 'save'
ACTION_DELETE = 'delete'


class LocalScheduleStore:
    """Schedule records for one profile on this device.

    ``user_id`` None is the guest profile. Every write commits before
    returning, so a read straight after a write sees it. Failures roll the
    session back and raise SerializationFailure.
    """

    def __init__(self, user_id=None, session=None):
        self.user_id = user_id
        self.session = session or db.session

    def _row(self, day: date) -> Optional[ScheduleDay]:
        return self.session.query(ScheduleDay).filter_by(user_id=self.user_id, day=day).first()

    def _commit(self, what):
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Local store %s failed for user %s", what, self.user_id)
            raise SerializationFailure(f"Could not {what}: {exc}") from exc

    def get(self, day: date) -> Optional[Dict]:
        try:
            row = self._row(day)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise SerializationFailure(f"Could not read schedule for {day.isoformat()}: {exc}") from exc
        return row.to_record() if row else None

    def put(self, record: Dict) -> Dict:
        """Overwrite the record for ``record['date']`` and stamp updated_at with now."""
        return self._write(record, utc_now())

    def replace(self, record: Dict) -> Dict:
        """Write a record keeping its own updated_at (used when a remote copy wins)."""
        return self._write(record, record.get('updated_at') or utc_now())

    def _write(self, record: Dict, updated_at) -> Dict:
        day = record['date']
        activities = list(record.get('activities') or [])
        try:
            # Fail before touching the session when the payload cannot be stored.
            json.dumps(activities)
        except (TypeError, ValueError) as exc:
            raise SerializationFailure(f"Schedule for {day.isoformat()} is not serializable: {exc}") from exc

        try:
            row = self._row(day)
            if row is None:
                row = ScheduleDay(user_id=self.user_id, day=day)
                self.session.add(row)
            row.name = record.get('name') or default_schedule_name(day)
            row.activities = activities
            row.updated_at = updated_at
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise SerializationFailure(f"Could not save schedule for {day.isoformat()}: {exc}") from exc
        self._commit(f"save schedule for {day.isoformat()}")
        return row.to_record()

    def delete(self, day: date) -> bool:
        try:
            row = self._row(day)
            if not row:
                return False
            self.session.delete(row)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise SerializationFailure(f"Could not delete schedule for {day.isoformat()}: {exc}") from exc
        self._commit(f"delete schedule for {day.isoformat()}")
        return True

    def all_dates(self) -> List[date]:
        rows = self.session.query(ScheduleDay.day).filter_by(user_id=self.user_id).order_by(ScheduleDay.day.asc()).all()
        return [r[0] for r in rows]

    def list_dates_with_schedules(self, year: int, month: int) -> Set[date]:
        start, end = month_bounds(year, month)
        rows = self.session.query(ScheduleDay).filter(
            ScheduleDay.user_id == self.user_id,  # None compiles to IS NULL
            ScheduleDay.day >= start,
            ScheduleDay.day <= end,
        ).all()
        return {row.day for row in rows if row.activities}

    # --- Dirty queue ---

    def mark_dirty(self, day: date, action: str = ACTION_SAVE, error: Optional[str] = None):
        if self.user_id is None:
            return None
        change = self.session.query(PendingChange).filter_by(user_id=self.user_id, day=day).first()
        if change is None:
            change = PendingChange(user_id=self.user_id, day=day, attempts=0)
            self.session.add(change)
        change.action = action
        change.attempts = (change.attempts or 0) + 1
        change.last_error = (error or '')[:300] or None
        change.queued_at = utc_now()
        self._commit(f"queue {action} for {day.isoformat()}")
        return change

    def clear_dirty(self, day: date) -> bool:
        if self.user_id is None:
            return False
        deleted = self.session.query(PendingChange).filter_by(user_id=self.user_id, day=day).delete()
        if deleted:
            self._commit(f"clear pending change for {day.isoformat()}")
        return bool(deleted)

    def pending_change(self, day: date) -> Optional[PendingChange]:
        if self.user_id is None:
            return None
        return self.session.query(PendingChange).filter_by(user_id=self.user_id, day=day).first()

    def pending_changes(self) -> List[PendingChange]:
        if self.user_id is None:
            return []
        return self.session.query(PendingChange).filter_by(user_id=self.user_id).order_by(
            PendingChange.queued_at.asc()
        ).all()
