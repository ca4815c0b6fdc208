"""Composite natural keys for fetched timetable rows.

The upstream per-call ``id`` is not stable across repeated fetches of the same
class meeting, so identity is derived from content instead.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .models import RawEvent

_LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("course_code", "week_num", "start_time", "end_time")


def missing_fields(event: RawEvent) -> List[str]:
	"""Names of the key fields that are absent or blank."""
	missing = []
	for name in REQUIRED_FIELDS:
		value = getattr(event, name)
		if value is None or (isinstance(value, str) and not value.strip()):
			missing.append(name)
	return missing


def derive_key(event: RawEvent) -> Optional[str]:
	"""``{courseCode}-{weekNum}-{startTime}-{endTime}``, or None when a field is missing."""
	if missing_fields(event):
		return None
	return f"{event.course_code}-{event.week_num}-{event.start_time}-{event.end_time}"


def tag_events(events: Iterable[RawEvent]) -> List[Tuple[str, RawEvent]]:
	"""Pair each event with its natural key, dropping malformed rows with a warning.

	A key seen twice in the same batch is kept once.
	"""
	tagged: List[Tuple[str, RawEvent]] = []
	seen = set()
	for event in events:
		missing = missing_fields(event)
		if missing:
			_LOGGER.warning(f"Skipping timetable row {event.id!r}: missing {', '.join(missing)}")
			continue
		key = derive_key(event)
		if key in seen:
			_LOGGER.debug(f"Ignoring repeated row {key} within one fetch")
			continue
		seen.add(key)
		tagged.append((key, event))
	return tagged
