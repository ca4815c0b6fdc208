"""Schedule synchroniser: monthly timetable fetch with term backfill."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .client import FETCH_ERRORS, ScheduleClient
from .clock import Clock, SystemClock
from .exceptions import DuplicateKeyError
from .keys import tag_events
from .models import EVENT_FINISHED, EVENT_UPCOMING, RawEvent, ScheduledEvent, SyncResult
from .store import AttendanceStore
from .terms import month_units, term_tag
from .utils import color_index, error_text

_LOGGER = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid VTC token. Please get a new URL from the VTC app."


def build_event(
	natural_key: str,
	raw: RawEvent,
	student_id: str,
	term: str,
	now: datetime,
) -> ScheduledEvent:
	"""Turn a validated raw row into a persistable event, classified against ``now``."""
	start = datetime.fromtimestamp(raw.start_time, tz=now.tzinfo)
	end = datetime.fromtimestamp(raw.end_time, tz=now.tzinfo)
	return ScheduledEvent(
		natural_key=natural_key,
		student_id=student_id,
		term=term,
		status=EVENT_FINISHED if end < now else EVENT_UPCOMING,
		course_code=raw.course_code,
		course_title=raw.course_title or raw.course_code,
		start_time=start,
		end_time=end,
		lesson_type=raw.lesson_type or "",
		location=raw.location,
		lecturer_name=raw.lecturer_name or "",
		color_index=color_index(raw.course_code),
		week_num=raw.week_num,
		vtc_id=raw.id,
	)


async def verify_student(client: ScheduleClient, token: str) -> Optional[str]:
	"""Upstream student ID for a token, or None if the token does not verify.

	Transport errors are treated the same as a rejected token.
	"""
	try:
		result = await client.verify_token(token)
	except FETCH_ERRORS as e:
		_LOGGER.warning(f"Token verification failed: {e}")
		return None
	if not result.success or result.payload is None:
		_LOGGER.warning(f"Token rejected: {result.error}")
		return None
	return result.payload.student_id


class ScheduleSynchronizer:
	"""Pulls a term's timetable (plus its backfill) into the store.

	Each (term, year, month) unit runs concurrently and only ever inserts rows
	whose natural key is not yet stored; existing rows are never touched.
	"""

	def __init__(self, client: ScheduleClient, store: AttendanceStore, clock: Optional[Clock] = None) -> None:
		self.client = client
		self.store = store
		self.clock = clock or SystemClock()

	async def sync(self, token: str, term_number: int) -> SyncResult:
		"""Verify the token, then sync the term. Never raises."""
		student_id = await verify_student(self.client, token)
		if student_id is None:
			return SyncResult(error=INVALID_TOKEN_MESSAGE)
		return await self.sync_student(token, student_id, term_number)

	async def sync_student(self, token: str, student_id: str, term_number: int) -> SyncResult:
		"""Sync a term for an already verified student."""
		try:
			term_tag(term_number)
		except ValueError as e:
			return SyncResult(student_id=student_id, error=error_text(e))

		now = self.clock.now()
		units = month_units(term_number, now.year)
		_LOGGER.debug(f"Syncing term {term_number} for {student_id}: {len(units)} month fetches")

		results = await asyncio.gather(
			*(self._sync_month(token, student_id, tag, year, month, now) for tag, year, month in units),
			return_exceptions=True,
		)

		inserted = 0
		errors: List[BaseException] = []
		for (tag, year, month), result in zip(units, results):
			if isinstance(result, BaseException):
				_LOGGER.error(f"Storing {tag} {year}-{month:02d} failed: {result}")
				errors.append(result)
			else:
				inserted += result

		if errors:
			return SyncResult(inserted_count=inserted, student_id=student_id, error=error_text(errors[0]))

		_LOGGER.info(f"Schedule sync for {student_id} (term {term_number}) inserted {inserted} new events")
		return SyncResult(inserted_count=inserted, student_id=student_id)

	async def _sync_month(
		self,
		token: str,
		student_id: str,
		term: str,
		year: int,
		month: int,
		now: datetime,
	) -> int:
		"""Fetch one month and insert the events not already stored. Returns rows inserted."""
		try:
			result = await self.client.fetch_month_schedule(token, month, year)
		except FETCH_ERRORS as e:
			_LOGGER.warning(f"Skipping {year}-{month:02d}: {e}")
			return 0

		if not result.success:
			_LOGGER.warning(f"Skipping {year}-{month:02d}: {result.error}")
			return 0

		tagged = tag_events(result.payload or [])
		if not tagged:
			_LOGGER.debug(f"No usable timetable rows for {year}-{month:02d}")
			return 0

		existing = await self.store.find_existing_event_keys(student_id, [key for key, _ in tagged])
		new_events = [
			build_event(key, raw, student_id, term, now)
			for key, raw in tagged
			if key not in existing
		]
		if not new_events:
			return 0

		try:
			inserted = await self.store.insert_events(new_events)
		except DuplicateKeyError as e:
			# Lost the check-then-insert race for some rows; the rest still landed
			_LOGGER.debug(f"{year}-{month:02d}: {e}")
			inserted = e.inserted_count

		_LOGGER.debug(f"{term} {year}-{month:02d}: {inserted} of {len(tagged)} events were new")
		return inserted
