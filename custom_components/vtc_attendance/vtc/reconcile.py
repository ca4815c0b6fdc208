"""Attendance reconciler: per-course rollups from the attendance endpoints."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from .client import FETCH_ERRORS, ScheduleClient
from .clock import Clock, SystemClock
from .exceptions import VersionConflictError
from .models import (
	CLASS_ABSENT, CLASS_ATTENDED, CLASS_LATE, COURSE_ACTIVE, COURSE_FINISHED,
	EVENT_ABSENT, EVENT_CANCELED, EVENT_UPCOMING, MANUAL_SENTINEL,
	AttendanceDetail, AttendanceRollup, ClassRecord, CourseRef,
	ManualAttendanceResult, RawClass, ReconcileResult, ScheduledEvent,
)
from .store import AttendanceStore
from .terms import term_end, term_for_instant, term_tag
from .utils import error_text, lesson_time_text, percentage

_LOGGER = logging.getLogger(__name__)

# attendTime the API prints for a class the student missed
NOT_ATTENDED_MARKER = "-"
# upstream status code for a late arrival
LATE_STATUS_CODE = 3
# conducted classes needed before a past-term course is considered finished
FINISHED_MIN_CLASSES = 10
MANUAL_STATUSES = (EVENT_UPCOMING, EVENT_ABSENT)
MAX_CAS_ATTEMPTS = 3


def classify_class(raw: RawClass) -> str:
	if not raw.attend_time or raw.attend_time == NOT_ATTENDED_MARKER:
		return CLASS_ABSENT
	if raw.status == LATE_STATUS_CODE:
		return CLASS_LATE
	return CLASS_ATTENDED


def split_follow_up(course_code: str) -> Tuple[str, bool]:
	"""(base course code, is follow-up). ``COMP101A`` is a follow-up section of ``COMP101``."""
	if len(course_code) > 1 and course_code.endswith("A"):
		return course_code[:-1], True
	return course_code, False


def classify_course_lifecycle(term: str, conducted: int, now: datetime, year: Optional[int] = None) -> str:
	"""FINISHED once the term's end date has passed and more than ten classes ran."""
	end = term_end(term, year if year is not None else now.year, now.tzinfo)
	if now > end and conducted > FINISHED_MIN_CLASSES:
		return COURSE_FINISHED
	return COURSE_ACTIVE


def class_record(raw: RawClass) -> ClassRecord:
	return ClassRecord(
		id=raw.id or "",
		date=raw.date or "",
		lesson_time=raw.lesson_time or "",
		attend_time=raw.attend_time or "",
		room_name=raw.room_name or "",
		status=classify_class(raw),
	)


def merge_manual_records(upstream: List[ClassRecord], previous: List[ClassRecord]) -> List[ClassRecord]:
	"""Upstream records plus any earlier manual override upstream does not know about."""
	seen = {record.id for record in upstream}
	merged = list(upstream)
	for record in previous:
		if record.is_manual and record.id not in seen:
			merged.append(record)
	return merged


def apply_class_counts(rollup: AttendanceRollup) -> AttendanceRollup:
	"""Recompute counts and rate from ``rollup.classes``. Late counts as attended."""
	late = sum(1 for record in rollup.classes if record.status == CLASS_LATE)
	absent = sum(1 for record in rollup.classes if record.status == CLASS_ABSENT)
	conducted = len(rollup.classes)

	rollup.late = late
	rollup.absent = absent
	rollup.attended = conducted - absent
	rollup.conducted_classes = conducted
	rollup.attend_rate = percentage(rollup.attended, conducted)
	rollup.is_finished = rollup.total_classes > 0 and conducted >= rollup.total_classes
	return rollup


class AttendanceReconciler:
	"""Turns the attendance list and per-course detail into stored rollups."""

	def __init__(self, client: ScheduleClient, store: AttendanceStore, clock: Optional[Clock] = None) -> None:
		self.client = client
		self.store = store
		self.clock = clock or SystemClock()

	async def reconcile(self, token: str) -> ReconcileResult:
		try:
			result = await self.client.verify_token(token)
		except FETCH_ERRORS as e:
			return ReconcileResult(error=f"Token verification failed: {e}")
		if not result.success or result.payload is None:
			return ReconcileResult(error=result.error or "Invalid token")
		return await self.reconcile_student(token, result.payload.student_id)

	async def reconcile_student(self, token: str, student_id: str) -> ReconcileResult:
		"""Refresh every rollup the attendance list names. Store failures are reported, not raised."""
		try:
			listing = await self.client.fetch_attendance_list(token)
		except FETCH_ERRORS as e:
			_LOGGER.warning(f"Attendance list unavailable: {e}")
			return ReconcileResult()
		if not listing.success:
			_LOGGER.warning(f"Attendance list unavailable: {listing.error}")
			return ReconcileResult()

		courses: List[CourseRef] = listing.payload or []
		now = self.clock.now()
		outcomes = await asyncio.gather(
			*(self._reconcile_course(token, student_id, course, now) for course in courses),
			return_exceptions=True,
		)

		written = created = 0
		error = None
		for course, outcome in zip(courses, outcomes):
			if isinstance(outcome, BaseException):
				_LOGGER.error(f"Storing attendance for {course.code} failed: {outcome}")
				error = error or error_text(outcome)
			elif outcome is not None:
				written += 1
				created += int(outcome)

		_LOGGER.info(f"Reconciled {written} of {len(courses)} courses for {student_id} ({created} new)")
		return ReconcileResult(rollups_written=written, rollups_created=created, error=error)

	async def resolve_term(self, student_id: str, course_code: str, now: datetime) -> str:
		"""Term of the course's latest-starting event, else the current term."""
		term = await self.store.latest_term_for_course(student_id, course_code)
		return term or term_tag(term_for_instant(now))

	async def _term_year(self, student_id: str, course_code: str, term: str, now: datetime) -> int:
		events = await self.store.list_events(student_id, term=term, course_codes=[course_code])
		if not events:
			return now.year
		return max(event.start_time for event in events).year

	async def _reconcile_course(
		self,
		token: str,
		student_id: str,
		course: CourseRef,
		now: datetime,
	) -> Optional[bool]:
		"""Upsert one course's rollup. None when the detail fetch gave nothing to write."""
		try:
			result = await self.client.fetch_attendance_detail(token, course.code)
		except FETCH_ERRORS as e:
			_LOGGER.warning(f"Skipping attendance for {course.code}: {e}")
			return None
		if not result.success:
			_LOGGER.warning(f"Skipping attendance for {course.code}: {result.error}")
			return None

		detail: AttendanceDetail = result.payload or AttendanceDetail()
		term = await self.resolve_term(student_id, course.code, now)
		previous = await self.store.get_rollup(course.code, student_id, term)
		base_code, is_follow_up = split_follow_up(course.code)

		rollup = AttendanceRollup(
			course_code=course.code,
			student_id=student_id,
			term=term,
			course_name=course.name or course.code,
			total_classes=detail.total_scheduled,
			is_follow_up=is_follow_up,
			base_course_code=base_code,
			classes=merge_manual_records(
				[class_record(raw) for raw in detail.classes],
				previous.classes if previous else [],
			),
		)
		apply_class_counts(rollup)
		year = await self._term_year(student_id, course.code, term, now)
		rollup.status = classify_course_lifecycle(term, rollup.conducted_classes, now, year)

		created = await self.store.upsert_rollup(rollup)
		_LOGGER.debug(
			f"{course.code} ({term}): {rollup.attended}/{rollup.conducted_classes} attended, {rollup.status}"
		)
		return created

	async def set_manual_attendance(self, event_id: str, status: str, student_id: Optional[str] = None) -> ManualAttendanceResult:
		"""Mark one event UPCOMING or ABSENT by hand.

		For follow-up courses the matching class record in the rollup is written
		with the manual marker and the rollup counts are recomputed from its class
		list. The rollup write is version-checked and retried on conflict.
		"""
		if status not in MANUAL_STATUSES:
			return ManualAttendanceResult(success=False, error=f"Status must be one of {', '.join(MANUAL_STATUSES)}")

		try:
			event = await self.store.get_event(event_id)
			if event is None or (student_id is not None and event.student_id != student_id):
				return ManualAttendanceResult(success=False, error=f"Event {event_id} not found")
			if event.status == EVENT_CANCELED:
				return ManualAttendanceResult(success=False, error="Canceled classes cannot be marked")

			event.status = status
			event = await self.store.update_event(event)

			_, is_follow_up = split_follow_up(event.course_code)
			if not is_follow_up:
				return ManualAttendanceResult(success=True, event=event)

			for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
				try:
					rollup = await self._write_manual_record(event, status)
				except VersionConflictError as e:
					_LOGGER.debug(f"Manual attendance for {event.course_code} conflicted (attempt {attempt}): {e}")
					continue
				return ManualAttendanceResult(success=True, event=event, rollup=rollup)
		except Exception as e:
			_LOGGER.error(f"Manual attendance for event {event_id} failed: {e}")
			return ManualAttendanceResult(success=False, error=error_text(e))

		return ManualAttendanceResult(
			success=False,
			event=event,
			error=f"Attendance for {event.course_code} is being changed elsewhere, try again",
		)

	async def _write_manual_record(self, event: ScheduledEvent, status: str) -> AttendanceRollup:
		rollup = await self.store.get_rollup(event.course_code, event.student_id, event.term)
		expected_version = rollup.version if rollup else 0
		if rollup is None:
			base_code, _ = split_follow_up(event.course_code)
			scheduled = await self.store.list_events(
				event.student_id, term=event.term, course_codes=[event.course_code], include_canceled=False,
			)
			rollup = AttendanceRollup(
				course_code=event.course_code,
				student_id=event.student_id,
				term=event.term,
				course_name=event.course_title,
				total_classes=len(scheduled),
				is_follow_up=True,
				base_course_code=base_code,
			)

		record = ClassRecord(
			id=event.id,
			date=event.start_time.date().isoformat(),
			lesson_time=lesson_time_text(event.start_time, event.end_time),
			attend_time=MANUAL_SENTINEL,
			room_name=event.location,
			status=CLASS_ABSENT if status == EVENT_ABSENT else CLASS_ATTENDED,
		)
		rollup.classes = [existing for existing in rollup.classes if existing.id != record.id]
		rollup.classes.append(record)
		apply_class_counts(rollup)

		return await self.store.replace_rollup(rollup, expected_version)
