"""Copy a day's schedule onto other dates, explicitly or by recurrence rule."""

import logging
from datetime import date
from typing import Dict, Iterable, Optional

from backend.calendar_utils import expand_recurrence, format_date
from backend.schedule_records import cloned_activities

logger = logging.getLogger(__name__)


class CloneEngine:
    """Writes copies through ``service.save_schedule_to_date`` so every target
    gets the same local write, remote push and reminder refresh as an edit."""

    def __init__(self, service):
        self.service = service

    def clone_to_dates(self, user_id, source_day: date, target_days: Iterable[date]) -> Optional[Dict[str, str]]:
        source = self.service.get_schedule_for_date(user_id, source_day)
        if source is None:
            return None

        results = {}
        for target in sorted(set(target_days)):
            if target == source_day:
                continue
            record = {
                'date': target,
                'name': source.get('name'),
                'activities': cloned_activities(source.get('activities')),
            }
            _saved, status = self.service.save_schedule_to_date(user_id, target, record)
            results[format_date(target)] = status
        logger.info("Cloned %s onto %s dates for user %s", source_day, len(results), user_id)
        return results

    def clone_by_recurrence(
        self,
        user_id,
        source_day: date,
        rule: str,
        until: Optional[date] = None,
        today: Optional[date] = None,
    ) -> Optional[Dict[str, str]]:
        today = today or date.today()
        targets = [d for d in expand_recurrence(source_day, rule, until) if d >= today]
        return self.clone_to_dates(user_id, source_day, targets)
