"""The VTC Attendance integration."""

import asyncio
import logging
from datetime import timedelta

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers import device_registry as dr

from .const import (
	CONF_STUDENT_ID,
	CONF_TERM,
	CONF_TOKEN,
	CONF_UPDATE_INTERVAL,
	DEFAULT_UPDATE_INTERVAL_HOURS,
	DOMAIN,
	TERM_AUTO,
)
from .services import async_register_services, async_unregister_services

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [Platform.SENSOR]


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
	"""Set up VTC Attendance from a config entry."""
	_LOGGER.debug("Setting up VTC Attendance integration")

	# Lazy import to minimise import-time work
	from .coordinator import VtcAttendanceCoordinator

	coordinator = VtcAttendanceCoordinator(
		hass,
		entry.entry_id,
		entry.data[CONF_STUDENT_ID],
		update_interval=timedelta(hours=entry.options.get(CONF_UPDATE_INTERVAL, DEFAULT_UPDATE_INTERVAL_HOURS)),
		term=entry.options.get(CONF_TERM, TERM_AUTO),
	)

	try:
		await coordinator.async_setup(entry.data[CONF_TOKEN])
		await asyncio.wait_for(
			coordinator.async_config_entry_first_refresh(),
			timeout=120  # 2 minutes timeout
		)
	except asyncio.TimeoutError:
		_LOGGER.error("VTC Attendance setup timed out after 2 minutes")
		raise ConfigEntryNotReady("Setup timeout") from None

	hass.data.setdefault(DOMAIN, {})
	hass.data[DOMAIN][entry.entry_id] = coordinator

	await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

	device_registry = dr.async_get(hass)
	device_registry.async_get_or_create(
		config_entry_id=entry.entry_id,
		identifiers={(DOMAIN, entry.data[CONF_STUDENT_ID])},
		manufacturer="VTC",
		name=f"VTC Student ({entry.data[CONF_STUDENT_ID]})",
		model="Attendance",
	)

	entry.async_on_unload(entry.add_update_listener(async_reload_entry))
	await async_register_services(hass)

	return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
	"""Unload a config entry."""
	_LOGGER.debug("Unloading VTC Attendance integration")

	unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)

	if unload_ok:
		coordinator = hass.data[DOMAIN].pop(entry.entry_id)
		await coordinator.async_shutdown()

		if not hass.data[DOMAIN]:
			await async_unregister_services(hass)

	return unload_ok


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
	"""Drop stored events and attendance when the account is removed."""
	from .storage import VtcAttendanceStorage
	await VtcAttendanceStorage(hass, entry.entry_id).async_remove()


async def async_reload_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
	"""Reload config entry."""
	await hass.config_entries.async_reload(entry.entry_id)
