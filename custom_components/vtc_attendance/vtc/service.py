"""Exposed operations for one configured account.

Every method returns a result object; none of them raise.
"""

import logging
from typing import Optional, Union

from .client import ScheduleClient
from .clock import Clock, SystemClock
from .dedupe import DeduplicationSweeper
from .export import list_events_for_term
from .models import (
	AccountSyncResult, DedupeResult, EventListResult, ManualAttendanceResult, StatsResult, StudentRecord,
)
from .reconcile import AttendanceReconciler
from .stats import HybridStatsCalculator
from .store import AttendanceStore
from .sync import INVALID_TOKEN_MESSAGE, ScheduleSynchronizer, verify_student
from .terms import term_for_instant, term_tag
from .utils import error_text, extract_token

_LOGGER = logging.getLogger(__name__)

DEFAULT_LOCAL_ID = "default"
INVALID_URL_MESSAGE = "Invalid URL. Please paste the full URL containing the token."
NO_TOKEN_MESSAGE = "No VTC token stored. Please sync your schedule first."


class AttendanceService:
	"""Sync, reconcile, dedupe, stats and export behind one account."""

	def __init__(
		self,
		client: ScheduleClient,
		store: AttendanceStore,
		clock: Optional[Clock] = None,
		local_id: str = DEFAULT_LOCAL_ID,
	) -> None:
		self.client = client
		self.store = store
		self.clock = clock or SystemClock()
		self.local_id = local_id
		self.synchronizer = ScheduleSynchronizer(client, store, self.clock)
		self.reconciler = AttendanceReconciler(client, store, self.clock)
		self.sweeper = DeduplicationSweeper(store)
		self.calculator = HybridStatsCalculator(store, self.clock)

	async def student(self) -> Optional[StudentRecord]:
		return await self.store.get_student(self.local_id)

	async def _student_id(self) -> Optional[str]:
		record = await self.student()
		return record.student_id if record else None

	async def sync(self, url_or_token: str, term: int) -> AccountSyncResult:
		"""Store the token, pull the term's timetable, then refresh attendance."""
		token = extract_token(url_or_token)
		if token is None:
			return AccountSyncResult(success=False, error=INVALID_URL_MESSAGE)
		return await self._sync_token(token, term)

	async def auto_sync(self) -> AccountSyncResult:
		"""Sync again with the stored token, term taken from the current month."""
		return await self.resync()

	async def resync(self, term: Optional[int] = None) -> AccountSyncResult:
		"""Sync again with the stored token; ``term`` defaults to the current one."""
		try:
			record = await self.student()
		except Exception as e:
			_LOGGER.error(f"Reading stored account failed: {e}")
			return AccountSyncResult(success=False, error=error_text(e))
		if record is None or not record.token:
			return AccountSyncResult(success=False, error=NO_TOKEN_MESSAGE)

		if term is None:
			term = term_for_instant(self.clock.now())
		_LOGGER.debug(f"Syncing stored account with term {term}")
		return await self._sync_token(record.token, term)

	async def _sync_token(self, token: str, term: int) -> AccountSyncResult:
		try:
			return await self._run_sync(token, term)
		except Exception as e:
			_LOGGER.error(f"Sync aborted: {error_text(e)}")
			return AccountSyncResult(success=False, error=error_text(e))

	async def _run_sync(self, token: str, term: int) -> AccountSyncResult:
		try:
			term_tag(term)
		except ValueError as e:
			return AccountSyncResult(success=False, error=error_text(e))

		student_id = await verify_student(self.client, token)
		if student_id is None:
			return AccountSyncResult(success=False, error=INVALID_TOKEN_MESSAGE)

		try:
			record = await self.student()
			await self.store.upsert_student(StudentRecord(
				local_id=self.local_id,
				student_id=student_id,
				token=token,
				last_sync=record.last_sync if record else None,
			))
		except Exception as e:
			_LOGGER.error(f"Saving account for {student_id} failed: {e}")
			return AccountSyncResult(success=False, student_id=student_id, error=error_text(e))

		schedule = await self.synchronizer.sync_student(token, student_id, term)
		if not schedule.success:
			return AccountSyncResult(
				success=False,
				inserted_event_count=schedule.inserted_count,
				student_id=student_id,
				error=schedule.error,
			)

		attendance = await self.reconciler.reconcile_student(token, student_id)
		if not attendance.success:
			return AccountSyncResult(
				success=False,
				inserted_event_count=schedule.inserted_count,
				inserted_attendance_count=attendance.rollups_created,
				student_id=student_id,
				error=attendance.error,
			)

		try:
			await self.store.upsert_student(StudentRecord(
				local_id=self.local_id,
				student_id=student_id,
				token=token,
				last_sync=self.clock.now(),
			))
		except Exception as e:
			_LOGGER.warning(f"Recording sync time failed: {e}")

		return AccountSyncResult(
			success=True,
			inserted_event_count=schedule.inserted_count,
			inserted_attendance_count=attendance.rollups_created,
			student_id=student_id,
		)

	async def dedupe(self) -> DedupeResult:
		try:
			student_id = await self._student_id()
		except Exception as e:
			return DedupeResult(error=error_text(e))
		if student_id is None:
			return DedupeResult(error=NO_TOKEN_MESSAGE)
		return await self.sweeper.dedupe(student_id)

	async def get_hybrid_stats(self) -> StatsResult:
		try:
			student_id = await self._student_id()
		except Exception as e:
			return StatsResult(success=False, error=error_text(e))
		if student_id is None:
			return StatsResult(success=False, error=NO_TOKEN_MESSAGE)
		return await self.calculator.compute_hybrid(student_id)

	async def toggle_manual_attendance(self, event_id: str, status: str) -> ManualAttendanceResult:
		try:
			student_id = await self._student_id()
		except Exception as e:
			return ManualAttendanceResult(success=False, error=error_text(e))
		if student_id is None:
			return ManualAttendanceResult(success=False, error=NO_TOKEN_MESSAGE)
		return await self.reconciler.set_manual_attendance(event_id, status, student_id)

	async def list_events_for_term(self, term: Union[int, str]) -> EventListResult:
		try:
			student_id = await self._student_id()
			if student_id is None:
				return EventListResult(success=False, error=NO_TOKEN_MESSAGE)
			events = await list_events_for_term(self.store, student_id, term)
		except Exception as e:
			_LOGGER.error(f"Listing events for {term} failed: {e}")
			return EventListResult(success=False, error=error_text(e))
		return EventListResult(success=True, events=events)
