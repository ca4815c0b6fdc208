"""Minute-weighted attendance projections.

The rollup says how many classes were attended; the timetable says how long
every class is and which ones are still to come. Combining the two gives a
rate weighted by class length and a recovery outlook for the rest of the term.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .clock import Clock, SystemClock
from .models import (
	EVENT_CANCELED, RECOVERY_FAILED, RECOVERY_GRACE, RECOVERY_RECOVERABLE, RECOVERY_SAFE,
	AttendanceRollup, HybridAttendanceStats, ScheduledEvent, StatsResult,
)
from .store import AttendanceStore
from .utils import error_text, percentage, round_half_up

_LOGGER = logging.getLogger(__name__)

REQUIRED_RATE = 80
GRACE_PROGRESS = 0.15

# (course code, term)
CourseKey = Tuple[str, str]


def classify_recovery(attended_minutes: float, conducted_minutes: float, total_minutes: float) -> str:
	"""safe, recoverable, failed or grace for a course's minute totals.

	The rates are compared as reported, rounded to one decimal.
	"""
	if total_minutes <= 0:
		return RECOVERY_GRACE

	remaining_minutes = max(0.0, total_minutes - conducted_minutes)
	max_possible = percentage(attended_minutes + remaining_minutes, total_minutes)
	if max_possible < REQUIRED_RATE:
		return RECOVERY_FAILED

	rate = percentage(attended_minutes, conducted_minutes)
	if rate >= REQUIRED_RATE:
		return RECOVERY_SAFE

	if conducted_minutes / total_minutes < GRACE_PROGRESS:
		return RECOVERY_GRACE
	return RECOVERY_RECOVERABLE


def required_classes(total: int) -> int:
	"""ceil(total * 0.8) without float error."""
	return -(-total * REQUIRED_RATE // 100)


def course_events(rollup: AttendanceRollup, events: Iterable[ScheduledEvent]) -> List[ScheduledEvent]:
	codes = {rollup.course_code, rollup.base_course_code or rollup.course_code}
	return [event for event in events if event.course_code in codes and event.status != EVENT_CANCELED]


def compute_course_stats(rollup: AttendanceRollup, events: Iterable[ScheduledEvent], now: datetime) -> HybridAttendanceStats:
	"""Project one rollup against the student's timetable as of ``now``."""
	conducted = []
	remaining = []
	for event in course_events(rollup, events):
		(conducted if event.end_time < now else remaining).append(event)

	conducted_count = len(conducted)
	remaining_count = len(remaining)
	total_count = conducted_count + remaining_count
	conducted_minutes = sum(event.duration_minutes for event in conducted)
	remaining_minutes = sum(event.duration_minutes for event in remaining)
	total_minutes = conducted_minutes + remaining_minutes

	# The rollup can be ahead of the timetable (extra sessions, unsynced months)
	attended = min(rollup.attended, conducted_count)
	attended_minutes = conducted_minutes * attended / conducted_count if conducted_count else 0.0

	safe_to_skip_minutes = max(0, math.floor(round_half_up(attended_minutes + remaining_minutes - total_minutes * 0.8, 6)))

	return HybridAttendanceStats(
		course_code=rollup.course_code,
		course_name=rollup.course_name or rollup.course_code,
		term=rollup.term,
		base_course_code=rollup.base_course_code or rollup.course_code,
		is_follow_up=rollup.is_follow_up,
		status=rollup.status,
		attended=attended,
		conducted_class_count=conducted_count,
		remaining_class_count=remaining_count,
		total_class_count=total_count,
		conducted_minutes=int(round_half_up(conducted_minutes)),
		remaining_minutes=int(round_half_up(remaining_minutes)),
		total_minutes=int(round_half_up(total_minutes)),
		attended_minutes=int(round_half_up(attended_minutes)),
		current_rate=percentage(attended, conducted_count),
		max_possible_rate=percentage(attended + remaining_count, total_count),
		minutes_rate=percentage(attended_minutes, conducted_minutes),
		max_possible_minutes_rate=percentage(attended_minutes + remaining_minutes, total_minutes),
		safe_to_skip_count=max(0, attended + remaining_count - required_classes(total_count)),
		safe_to_skip_minutes=safe_to_skip_minutes,
		recovery_status=classify_recovery(attended_minutes, conducted_minutes, total_minutes),
	)


class HybridStatsCalculator:
	"""One HybridAttendanceStats per stored rollup."""

	def __init__(self, store: AttendanceStore, clock: Optional[Clock] = None) -> None:
		self.store = store
		self.clock = clock or SystemClock()

	async def compute_hybrid(self, student_id: Optional[str]) -> StatsResult:
		if not student_id:
			return StatsResult(success=False, error="No student to compute statistics for")
		try:
			rollups = await self.store.list_rollups(student_id)
			events = await self.store.list_events(student_id, include_canceled=False)
		except Exception as e:
			_LOGGER.error(f"Loading attendance for {student_id} failed: {e}")
			return StatsResult(success=False, error=error_text(e))

		now = self.clock.now()
		stats = [compute_course_stats(rollup, events, now) for rollup in rollups]
		_LOGGER.debug(f"Computed hybrid stats for {len(stats)} courses")
		return StatsResult(success=True, stats=stats)


def index_stats(stats: Iterable[HybridAttendanceStats]) -> Dict[CourseKey, HybridAttendanceStats]:
	"""Stats keyed by (course code, term); a code can have a rollup in more than one term."""
	return {(item.course_code, item.term): item for item in stats}
