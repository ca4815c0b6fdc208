"""Selection of a term's events for calendar export."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import EVENT_CANCELED, ScheduledEvent
from .store import AttendanceStore
from .terms import is_term_tag, term_tag

_LOGGER = logging.getLogger(__name__)

UID_DOMAIN = "vtc-timetable"


@dataclass
class ExportEntry:
	"""One calendar entry as the calendar-file encoder consumes it."""
	uid: str
	title: str
	start: datetime
	end: datetime
	location: Optional[str] = None
	description: str = ""
	categories: List[str] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"uid": self.uid,
			"title": self.title,
			"start": self.start.isoformat(),
			"end": self.end.isoformat(),
			"location": self.location,
			"description": self.description,
			"categories": list(self.categories),
		}


def normalize_term(term: Union[int, str]) -> str:
	"""Accept 1-3, "1"-"3" or a stored tag such as "SEM 2"; raise ValueError otherwise."""
	if isinstance(term, str):
		if is_term_tag(term):
			return term
		if term.strip().isdigit():
			return term_tag(int(term.strip()))
		raise ValueError(f"Invalid term {term!r}. Use 'SEM 1', 'SEM 2' or 'SEM 3'.")
	return term_tag(term)


async def list_events_for_term(store: AttendanceStore, student_id: str, term: Union[int, str]) -> List[ScheduledEvent]:
	"""The student's events of one term, ordered by start."""
	tag = normalize_term(term)
	events = await store.list_events(student_id, term=tag)
	_LOGGER.debug(f"{len(events)} events stored for {tag}")
	return events


def export_entry(event: ScheduledEvent) -> ExportEntry:
	description = [
		f"Type: {event.lesson_type}" if event.lesson_type else "",
		f"Lecturer: {event.lecturer_name}" if event.lecturer_name else "",
		f"Semester: {event.term}",
	]
	return ExportEntry(
		uid=f"{event.natural_key}@{UID_DOMAIN}",
		title=f"{event.course_title} ({event.course_code})",
		start=event.start_time,
		end=event.end_time,
		location=event.location or None,
		description="\n".join(line for line in description if line),
		categories=[event.course_code, event.term],
	)


def build_export_entries(events: Iterable[ScheduledEvent]) -> List[ExportEntry]:
	"""Calendar entries for every event that still takes place."""
	return [export_entry(event) for event in events if event.status != EVENT_CANCELED]
