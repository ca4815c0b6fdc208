"""Attendance store: three keyed collections (events, rollups, students).

``AttendanceStore`` is the interface the sync, reconcile, dedupe and stats
components talk to. ``MemoryStore`` keeps everything in process and can be
snapshotted to plain dicts; the Home Assistant layer persists that snapshot.
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from .clock import Clock, SystemClock
from .exceptions import DuplicateKeyError, StoreError, VersionConflictError
from .models import AttendanceRollup, ScheduledEvent, StudentRecord, EVENT_CANCELED
from .utils import serialize

_LOGGER = logging.getLogger(__name__)

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def last_touched(row: Any) -> datetime:
	"""Most recent write time of a stored row."""
	return row.modified_at or row.created_at or EPOCH


class AttendanceStore(ABC):
	"""Keyed persistence used by every component."""

	# events
	@abstractmethod
	async def find_existing_event_keys(self, student_id: str, natural_keys: Iterable[str]) -> Set[str]:
		"""Subset of ``natural_keys`` already stored for this student (any term)."""

	@abstractmethod
	async def insert_events(self, events: List[ScheduledEvent]) -> int:
		"""Insert all rows that do not violate uniqueness.

		Raises DuplicateKeyError carrying the number of rows that did land when
		some rows conflict.
		"""

	@abstractmethod
	async def get_event(self, event_id: str) -> Optional[ScheduledEvent]:
		...

	@abstractmethod
	async def update_event(self, event: ScheduledEvent) -> ScheduledEvent:
		...

	@abstractmethod
	async def list_events(
		self,
		student_id: str,
		term: Optional[str] = None,
		course_codes: Optional[Iterable[str]] = None,
		include_canceled: bool = True,
	) -> List[ScheduledEvent]:
		"""Events ordered by start time."""

	@abstractmethod
	async def latest_term_for_course(self, student_id: str, course_code: str) -> Optional[str]:
		"""Term of the course's latest-starting event, None if it has none."""

	@abstractmethod
	async def delete_events(self, event_ids: Iterable[str]) -> int:
		...

	# rollups
	@abstractmethod
	async def get_rollup(self, course_code: str, student_id: str, term: str) -> Optional[AttendanceRollup]:
		...

	@abstractmethod
	async def upsert_rollup(self, rollup: AttendanceRollup) -> bool:
		"""Write by (course code, student, term). Returns True when a new row was created."""

	@abstractmethod
	async def replace_rollup(self, rollup: AttendanceRollup, expected_version: int) -> AttendanceRollup:
		"""Overwrite a rollup only if its stored version still equals ``expected_version``.

		Raises VersionConflictError otherwise.
		"""

	@abstractmethod
	async def list_rollups(self, student_id: str) -> List[AttendanceRollup]:
		...

	@abstractmethod
	async def delete_rollups(self, rollup_ids: Iterable[str]) -> int:
		...

	# students
	@abstractmethod
	async def get_student(self, local_id: str) -> Optional[StudentRecord]:
		...

	@abstractmethod
	async def upsert_student(self, record: StudentRecord) -> StudentRecord:
		...

	# aggregation
	@abstractmethod
	async def duplicate_event_groups(self, student_id: str) -> List[List[ScheduledEvent]]:
		"""Groups of more than one event sharing (natural key, student, term)."""

	@abstractmethod
	async def duplicate_rollup_groups(self, student_id: str) -> List[List[AttendanceRollup]]:
		"""Groups of more than one rollup sharing (course code, student, term)."""


class MemoryStore(AttendanceStore):
	"""In-process store.

	``enforce_unique=False`` admits rows that break the uniqueness rules, the
	way data written before the unique indexes existed (or through the
	check-then-insert window) looks; the dedupe sweep cleans that up.
	"""

	def __init__(self, clock: Optional[Clock] = None, enforce_unique: bool = True) -> None:
		self.clock = clock or SystemClock()
		self.enforce_unique = enforce_unique
		self._lock = asyncio.Lock()
		self._events: Dict[str, ScheduledEvent] = {}
		self._rollups: Dict[str, AttendanceRollup] = {}
		self._students: Dict[str, StudentRecord] = {}

	async def _commit(self) -> None:
		"""Called after every successful write; persistent subclasses hook in here."""

	@staticmethod
	def _new_id() -> str:
		return uuid.uuid4().hex

	# events

	async def find_existing_event_keys(self, student_id: str, natural_keys: Iterable[str]) -> Set[str]:
		wanted = set(natural_keys)
		if not wanted:
			return set()
		async with self._lock:
			return {
				event.natural_key
				for event in self._events.values()
				if event.student_id == student_id and event.natural_key in wanted
			}

	async def insert_events(self, events: List[ScheduledEvent]) -> int:
		inserted = 0
		duplicates: List[str] = []
		async with self._lock:
			taken = {
				(event.natural_key, event.student_id, event.term)
				for event in self._events.values()
			}
			now = self.clock.now()
			for event in events:
				key = (event.natural_key, event.student_id, event.term)
				if self.enforce_unique and key in taken:
					duplicates.append(event.natural_key)
					continue
				row = copy.deepcopy(event)
				row.id = row.id if row.id and row.id not in self._events else self._new_id()
				row.created_at = row.created_at or now
				row.modified_at = row.modified_at or now
				self._events[row.id] = row
				taken.add(key)
				inserted += 1
		if inserted:
			await self._commit()
		if duplicates:
			raise DuplicateKeyError(inserted, duplicates)
		return inserted

	async def get_event(self, event_id: str) -> Optional[ScheduledEvent]:
		async with self._lock:
			event = self._events.get(event_id)
			return copy.deepcopy(event) if event else None

	async def update_event(self, event: ScheduledEvent) -> ScheduledEvent:
		async with self._lock:
			if not event.id or event.id not in self._events:
				raise StoreError(f"Event {event.id!r} does not exist")
			row = copy.deepcopy(event)
			row.modified_at = self.clock.now()
			self._events[row.id] = row
		await self._commit()
		return copy.deepcopy(row)

	async def list_events(
		self,
		student_id: str,
		term: Optional[str] = None,
		course_codes: Optional[Iterable[str]] = None,
		include_canceled: bool = True,
	) -> List[ScheduledEvent]:
		codes = set(course_codes) if course_codes is not None else None
		async with self._lock:
			rows = [
				copy.deepcopy(event)
				for event in self._events.values()
				if event.student_id == student_id
				and (term is None or event.term == term)
				and (codes is None or event.course_code in codes)
				and (include_canceled or event.status != EVENT_CANCELED)
			]
		rows.sort(key=lambda event: (event.start_time, event.natural_key))
		return rows

	async def latest_term_for_course(self, student_id: str, course_code: str) -> Optional[str]:
		async with self._lock:
			candidates = [
				event for event in self._events.values()
				if event.student_id == student_id and event.course_code == course_code
			]
		if not candidates:
			return None
		latest = max(
			candidates,
			key=lambda event: (event.start_time, event.natural_key),
		)
		return latest.term

	async def delete_events(self, event_ids: Iterable[str]) -> int:
		deleted = 0
		async with self._lock:
			for event_id in event_ids:
				if self._events.pop(event_id, None) is not None:
					deleted += 1
		if deleted:
			await self._commit()
		return deleted

	# rollups

	def _matching_rollups(self, course_code: str, student_id: str, term: str) -> List[AttendanceRollup]:
		return [
			rollup for rollup in self._rollups.values()
			if rollup.course_code == course_code and rollup.student_id == student_id and rollup.term == term
		]

	@staticmethod
	def _newest(rows: List[Any]) -> Any:
		return max(rows, key=lambda row: (last_touched(row), row.created_at or EPOCH))

	async def get_rollup(self, course_code: str, student_id: str, term: str) -> Optional[AttendanceRollup]:
		async with self._lock:
			matches = self._matching_rollups(course_code, student_id, term)
			return copy.deepcopy(self._newest(matches)) if matches else None

	async def upsert_rollup(self, rollup: AttendanceRollup) -> bool:
		async with self._lock:
			now = self.clock.now()
			matches = self._matching_rollups(rollup.course_code, rollup.student_id, rollup.term)
			row = copy.deepcopy(rollup)
			if matches:
				current = self._newest(matches)
				row.id = current.id
				row.created_at = current.created_at
				row.version = current.version + 1
				created = False
			else:
				row.id = self._new_id()
				row.created_at = now
				row.version = 1
				created = True
			row.modified_at = now
			self._rollups[row.id] = row
		await self._commit()
		return created

	async def replace_rollup(self, rollup: AttendanceRollup, expected_version: int) -> AttendanceRollup:
		async with self._lock:
			now = self.clock.now()
			current = self._rollups.get(rollup.id) if rollup.id else None
			if current is None:
				if expected_version != 0:
					raise VersionConflictError(f"Rollup {rollup.course_code} vanished before update")
				if self.enforce_unique and self._matching_rollups(rollup.course_code, rollup.student_id, rollup.term):
					raise VersionConflictError(f"Rollup {rollup.course_code} was created concurrently")
				row = copy.deepcopy(rollup)
				row.id = self._new_id()
				row.created_at = now
			else:
				if current.version != expected_version:
					raise VersionConflictError(
						f"Rollup {rollup.course_code} is at version {current.version}, expected {expected_version}"
					)
				row = copy.deepcopy(rollup)
				row.created_at = current.created_at
			row.version = expected_version + 1
			row.modified_at = now
			self._rollups[row.id] = row
		await self._commit()
		return copy.deepcopy(row)

	async def list_rollups(self, student_id: str) -> List[AttendanceRollup]:
		async with self._lock:
			rows = [copy.deepcopy(r) for r in self._rollups.values() if r.student_id == student_id]
		rows.sort(key=lambda rollup: (rollup.course_code, rollup.term))
		return rows

	async def delete_rollups(self, rollup_ids: Iterable[str]) -> int:
		deleted = 0
		async with self._lock:
			for rollup_id in rollup_ids:
				if self._rollups.pop(rollup_id, None) is not None:
					deleted += 1
		if deleted:
			await self._commit()
		return deleted

	# students

	async def get_student(self, local_id: str) -> Optional[StudentRecord]:
		async with self._lock:
			record = self._students.get(local_id)
			return copy.deepcopy(record) if record else None

	async def upsert_student(self, record: StudentRecord) -> StudentRecord:
		async with self._lock:
			now = self.clock.now()
			row = copy.deepcopy(record)
			existing = self._students.get(record.local_id)
			row.created_at = existing.created_at if existing else (row.created_at or now)
			row.modified_at = now
			self._students[row.local_id] = row
		await self._commit()
		return copy.deepcopy(row)

	# aggregation

	async def duplicate_event_groups(self, student_id: str) -> List[List[ScheduledEvent]]:
		groups: Dict[tuple, List[ScheduledEvent]] = defaultdict(list)
		async with self._lock:
			for event in self._events.values():
				if event.student_id == student_id:
					groups[(event.natural_key, event.student_id, event.term)].append(copy.deepcopy(event))
		return [rows for rows in groups.values() if len(rows) > 1]

	async def duplicate_rollup_groups(self, student_id: str) -> List[List[AttendanceRollup]]:
		groups: Dict[tuple, List[AttendanceRollup]] = defaultdict(list)
		async with self._lock:
			for rollup in self._rollups.values():
				if rollup.student_id == student_id:
					groups[rollup.key].append(copy.deepcopy(rollup))
		return [rows for rows in groups.values() if len(rows) > 1]

	# snapshots

	def to_dict(self) -> Dict[str, Any]:
		"""JSON-safe snapshot of every collection."""
		return {
			"events": serialize(list(self._events.values())),
			"rollups": serialize(list(self._rollups.values())),
			"students": serialize(list(self._students.values())),
		}

	def load_dict(self, data: Optional[Dict[str, Any]]) -> None:
		"""Replace the contents with a snapshot produced by ``to_dict``.

		Rows that fail to deserialise are skipped with a warning.
		"""
		self._events = {}
		self._rollups = {}
		self._students = {}
		if not data:
			return

		for item in data.get("events") or []:
			try:
				event = ScheduledEvent.from_dict(item)
			except (TypeError, ValueError, KeyError) as e:
				_LOGGER.warning(f"Dropping unreadable stored event: {e}")
				continue
			event.id = event.id or self._new_id()
			self._events[event.id] = event

		for item in data.get("rollups") or []:
			try:
				rollup = AttendanceRollup.from_dict(item)
			except (TypeError, ValueError, KeyError) as e:
				_LOGGER.warning(f"Dropping unreadable stored rollup: {e}")
				continue
			rollup.id = rollup.id or self._new_id()
			self._rollups[rollup.id] = rollup

		for item in data.get("students") or []:
			try:
				student = StudentRecord.from_dict(item)
			except (TypeError, ValueError, KeyError) as e:
				_LOGGER.warning(f"Dropping unreadable stored student record: {e}")
				continue
			self._students[student.local_id] = student

		_LOGGER.debug(
			f"Loaded {len(self._events)} events, {len(self._rollups)} rollups, {len(self._students)} students"
		)
