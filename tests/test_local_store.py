from datetime import date, datetime

import pytest
from sqlalchemy.exc import OperationalError

from backend.errors import SerializationFailure
from backend.local_store import ACTION_DELETE, LocalScheduleStore
from backend.schedule_records import normalize_record


def _record(day, *labels):
    return normalize_record(day, {'activities': [{'label': label, 'time': '08:00'} for label in labels]})


def test_put_then_get_round_trips_and_stamps_updated_at(app_ctx):
    store = LocalScheduleStore()
    saved = store.put(_record(date(2024, 6, 3), 'Breakfast'))

    loaded = store.get(date(2024, 6, 3))
    assert loaded['activities'][0]['label'] == 'Breakfast'
    assert loaded['name'] == 'Schedule for 2024-06-03'
    assert loaded['updated_at'] == saved['updated_at']


def test_replace_keeps_the_incoming_timestamp(app_ctx):
    store = LocalScheduleStore()
    record = _record(date(2024, 6, 3), 'School')
    record['updated_at'] = datetime(2024, 6, 1, 12, 0)
    assert store.replace(record)['updated_at'] == datetime(2024, 6, 1, 12, 0)


def test_profiles_are_isolated(app_ctx, user_id):
    LocalScheduleStore(user_id).put(_record(date(2024, 6, 3), 'Mine'))
    assert LocalScheduleStore(None).get(date(2024, 6, 3)) is None


def test_unserializable_activities_fail_without_writing(app_ctx):
    store = LocalScheduleStore()
    record = {'date': date(2024, 6, 3), 'name': 'Bad', 'activities': [{'id': 'x', 'when': object()}]}
    with pytest.raises(SerializationFailure):
        store.put(record)
    assert store.get(date(2024, 6, 3)) is None


def test_list_dates_with_schedules_ignores_empty_days(app_ctx):
    store = LocalScheduleStore()
    store.put(_record(date(2024, 6, 3), 'Breakfast'))
    store.put(_record(date(2024, 6, 4)))
    store.put(_record(date(2024, 7, 1), 'Park'))
    assert store.list_dates_with_schedules(2024, 6) == {date(2024, 6, 3)}


def test_delete_reports_whether_anything_was_removed(app_ctx):
    store = LocalScheduleStore()
    store.put(_record(date(2024, 6, 3), 'Breakfast'))
    assert store.delete(date(2024, 6, 3)) is True
    assert store.delete(date(2024, 6, 3)) is False


def test_delete_read_failure_surfaces_as_serialization_failure(app_ctx, monkeypatch):
    store = LocalScheduleStore()
    store.put(_record(date(2024, 6, 3), 'Breakfast'))

    def broken_row(self, day):
        raise OperationalError('SELECT', {}, Exception('database is locked'))

    monkeypatch.setattr(LocalScheduleStore, '_row', broken_row)
    with pytest.raises(SerializationFailure):
        store.delete(date(2024, 6, 3))


def test_dirty_queue_keeps_one_entry_per_date(app_ctx, user_id):
    store = LocalScheduleStore(user_id)
    store.mark_dirty(date(2024, 6, 3), error='timeout')
    store.mark_dirty(date(2024, 6, 3), ACTION_DELETE, error='timeout again')

    changes = store.pending_changes()
    assert len(changes) == 1
    assert changes[0].action == ACTION_DELETE
    assert changes[0].attempts == 2
    assert store.clear_dirty(date(2024, 6, 3)) is True
    assert store.pending_changes() == []


def test_guest_profile_has_no_dirty_queue(app_ctx):
    store = LocalScheduleStore()
    assert store.mark_dirty(date(2024, 6, 3)) is None
    assert store.pending_changes() == []
