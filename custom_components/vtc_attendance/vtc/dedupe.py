"""Corrective sweep for rows that slipped past the uniqueness rules."""

import logging
from typing import Any, List, Optional

from .models import DedupeResult
from .store import AttendanceStore, last_touched, EPOCH
from .utils import error_text

_LOGGER = logging.getLogger(__name__)


def _recency(row: Any) -> tuple:
	return (last_touched(row), row.created_at or EPOCH, row.id or "")


def pick_survivor(rows: List[Any]) -> Any:
	"""The row a duplicate group keeps: most recently modified."""
	return max(rows, key=_recency)


def losers(rows: List[Any]) -> List[Any]:
	survivor = pick_survivor(rows)
	return [row for row in rows if row is not survivor]


class DeduplicationSweeper:
	"""Deletes all but the newest row of every duplicate event or rollup group."""

	def __init__(self, store: AttendanceStore) -> None:
		self.store = store

	async def dedupe(self, student_id: Optional[str]) -> DedupeResult:
		if not student_id:
			return DedupeResult(error="No student to deduplicate")

		try:
			event_ids: List[str] = []
			for group in await self.store.duplicate_event_groups(student_id):
				doomed = losers(group)
				_LOGGER.debug(f"Event {group[0].natural_key} has {len(group)} copies, dropping {len(doomed)}")
				event_ids.extend(row.id for row in doomed)

			rollup_ids: List[str] = []
			for group in await self.store.duplicate_rollup_groups(student_id):
				doomed = losers(group)
				_LOGGER.debug(f"Rollup {group[0].course_code} has {len(group)} copies, dropping {len(doomed)}")
				rollup_ids.extend(row.id for row in doomed)

			events_deleted = await self.store.delete_events(event_ids) if event_ids else 0
			rollups_deleted = await self.store.delete_rollups(rollup_ids) if rollup_ids else 0
		except Exception as e:
			_LOGGER.error(f"Deduplication for {student_id} failed: {e}")
			return DedupeResult(error=error_text(e))

		if events_deleted or rollups_deleted:
			_LOGGER.info(f"Removed {events_deleted} duplicate events and {rollups_deleted} duplicate rollups")
		return DedupeResult(events_deleted=events_deleted, rollups_deleted=rollups_deleted)
