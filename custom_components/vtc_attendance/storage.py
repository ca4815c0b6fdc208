"""Persistent storage for the VTC Attendance integration."""

import asyncio
import logging
from typing import Optional

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from .const import SAVE_DELAY_SECONDS, STORAGE_KEY, STORAGE_VERSION
from .vtc.clock import Clock
from .vtc.store import MemoryStore

_LOGGER = logging.getLogger(__name__)


class VtcAttendanceStorage(MemoryStore):
	"""MemoryStore whose snapshot lives in Home Assistant's .storage.

	Every committed write schedules one debounced save; writes that land while
	a save is pending are picked up by it.
	"""

	def __init__(
		self,
		hass: HomeAssistant,
		entry_id: str,
		clock: Optional[Clock] = None,
		save_delay: float = SAVE_DELAY_SECONDS,
	) -> None:
		"""Initialise storage handler."""
		super().__init__(clock=clock)
		self.hass = hass
		self.entry_id = entry_id
		self._store = Store(hass, STORAGE_VERSION, f"{STORAGE_KEY}_{entry_id}")
		self._save_delay = save_delay
		self._save_task: Optional[asyncio.Task] = None
		self._loaded = False

	async def async_load(self) -> None:
		"""Load the stored snapshot once."""
		if self._loaded:
			return
		try:
			data = await self._store.async_load()
		except Exception as e:
			_LOGGER.warning(f"Storage load failed, starting empty: {e}")
			data = None
		async with self._lock:
			self.load_dict(data)
		self._loaded = True

	async def _commit(self) -> None:
		if self._save_task is None or self._save_task.done():
			self._save_task = asyncio.create_task(self._debounced_save())

	async def _debounced_save(self) -> None:
		await asyncio.sleep(self._save_delay)
		async with self._lock:
			snapshot = self.to_dict()
		try:
			await self._store.async_save(snapshot)
		except Exception as e:
			_LOGGER.error(f"Failed to save attendance storage: {e}")
			return
		_LOGGER.debug(
			f"Saved {len(snapshot['events'])} events and {len(snapshot['rollups'])} rollups to storage"
		)

	async def async_flush(self) -> None:
		"""Wait for a pending save, if any."""
		task = self._save_task
		if task and not task.done():
			await task

	async def async_remove(self) -> None:
		"""Delete the stored snapshot (entry removed)."""
		if self._save_task and not self._save_task.done():
			self._save_task.cancel()
		await self._store.async_remove()
