"""DataUpdateCoordinator for VTC Attendance."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .const import DOMAIN, EVENT_SYNC_COMPLETED, TERM_AUTO
from .storage import VtcAttendanceStorage
from .vtc.client import VtcClient
from .vtc.models import AccountSyncResult, HybridAttendanceStats, StudentRecord
from .vtc.service import AttendanceService
from .vtc.stats import CourseKey, index_stats
from .vtc.store import MemoryStore
from .vtc.sync import INVALID_TOKEN_MESSAGE

_LOGGER = logging.getLogger(__name__)


class VtcAttendanceCoordinator(DataUpdateCoordinator):
	"""Class to manage syncing and projecting VTC attendance."""

	def __init__(
		self,
		hass: HomeAssistant,
		entry_id: str,
		student_id: str,
		update_interval: timedelta,
		term: str = TERM_AUTO,
		store: Optional[MemoryStore] = None,
	) -> None:
		"""Initialise coordinator."""
		self.entry_id = entry_id
		self.student_id = student_id
		self.term = term
		self.storage = store or VtcAttendanceStorage(hass, entry_id)
		self.client = VtcClient(async_get_clientsession(hass))
		self.service = AttendanceService(self.client, self.storage, local_id=entry_id)
		self.last_result: Optional[AccountSyncResult] = None
		self.last_error: Optional[str] = None

		super().__init__(
			hass,
			_LOGGER,
			name=DOMAIN,
			update_interval=update_interval,
		)

	@property
	def term_override(self) -> Optional[int]:
		return None if self.term == TERM_AUTO else int(self.term)

	async def async_setup(self, token: str) -> None:
		"""Load persisted state and make sure the configured token is the stored one."""
		if isinstance(self.storage, VtcAttendanceStorage):
			await self.storage.async_load()
		record = await self.service.student()
		if record is None or record.token != token:
			await self.storage.upsert_student(StudentRecord(
				local_id=self.entry_id,
				student_id=self.student_id,
				token=token,
				last_sync=record.last_sync if record else None,
			))

	async def _async_update_data(self) -> Dict[str, Any]:
		"""Sync upstream, then recompute the projections."""
		result = await self.service.resync(self.term_override)
		self.last_result = result

		if not result.success:
			self.last_error = result.error
			_LOGGER.warning(f"Sync failed: {result.error}")
			if result.error == INVALID_TOKEN_MESSAGE and not self.data:
				raise ConfigEntryAuthFailed(result.error)
			# Still project whatever is already stored
		else:
			self.last_error = None
			self.hass.bus.async_fire(EVENT_SYNC_COMPLETED, {
				"student_id": result.student_id,
				"inserted_event_count": result.inserted_event_count,
				"inserted_attendance_count": result.inserted_attendance_count,
			})

		stats = await self.service.get_hybrid_stats()
		if not stats.success:
			if self.data:
				_LOGGER.info("Keeping previous attendance data")
				return self.data
			raise UpdateFailed(f"Error computing attendance: {stats.error}")

		record = await self.service.student()
		return {
			"stats": index_stats(stats.stats),
			"last_sync": record.last_sync if record else None,
			"student_id": record.student_id if record else self.student_id,
		}

	async def async_refresh_stats(self) -> None:
		"""Recompute projections from stored data without syncing."""
		stats = await self.service.get_hybrid_stats()
		if not stats.success:
			_LOGGER.warning(f"Could not refresh attendance: {stats.error}")
			return
		data = dict(self.data or {})
		data["stats"] = index_stats(stats.stats)
		self.async_set_updated_data(data)

	async def async_shutdown(self) -> None:
		"""Flush pending writes before unloading."""
		await super().async_shutdown()
		if isinstance(self.storage, VtcAttendanceStorage):
			await self.storage.async_flush()

	# Utility methods for accessing data
	def get_stats(self, key: CourseKey) -> Optional[HybridAttendanceStats]:
		if self.data:
			return self.data.get("stats", {}).get(key)
		return None

	def course_keys(self) -> List[CourseKey]:
		if self.data:
			return sorted(self.data.get("stats", {}))
		return []

	def last_sync(self) -> Optional[datetime]:
		if self.data:
			return self.data.get("last_sync")
		return None
