"""Service registration and handlers for the VTC Attendance integration."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

import voluptuous as vol
from homeassistant.core import HomeAssistant, ServiceCall, ServiceResponse, SupportsResponse
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers import device_registry as dr

from .const import (
	DOMAIN,
	SERVICE_AUTO_SYNC,
	SERVICE_DEDUPE,
	SERVICE_LIST_TERM_EVENTS,
	SERVICE_SYNC,
	SERVICE_TOGGLE_MANUAL_ATTENDANCE,
)
from .coordinator import VtcAttendanceCoordinator
from .vtc.export import build_export_entries
from .vtc.models import EVENT_ABSENT, EVENT_UPCOMING
from .vtc.terms import term_for_instant

_LOGGER = logging.getLogger(__name__)

CoordinatorAction = Callable[[str, VtcAttendanceCoordinator, ServiceCall], Awaitable[Any]]

_SERVICES_REGISTERED = False
_REGISTERED_SERVICES = (
	SERVICE_SYNC,
	SERVICE_AUTO_SYNC,
	SERVICE_DEDUPE,
	SERVICE_TOGGLE_MANUAL_ATTENDANCE,
	SERVICE_LIST_TERM_EVENTS,
)

TERM_VALUE = vol.All(vol.Coerce(int), vol.In([1, 2, 3]))


def _build_schema(extra: dict) -> vol.Schema:
	"""Helper to build schemas with shared optional fields."""
	fields: dict = {vol.Optional("config_entry_id"): str}
	fields.update(extra)
	return vol.Schema(fields)


SERVICE_SYNC_SCHEMA = _build_schema({
	vol.Optional("url"): str,
	vol.Optional("term"): TERM_VALUE,
})

SERVICE_AUTO_SYNC_SCHEMA = _build_schema({})

SERVICE_DEDUPE_SCHEMA = _build_schema({})

SERVICE_TOGGLE_MANUAL_ATTENDANCE_SCHEMA = _build_schema({
	vol.Required("event_id"): str,
	vol.Required("status"): vol.In([EVENT_UPCOMING, EVENT_ABSENT]),
})

SERVICE_LIST_TERM_EVENTS_SCHEMA = _build_schema({
	vol.Required("term"): TERM_VALUE,
})


async def async_register_services(hass: HomeAssistant) -> None:
	"""Register VTC Attendance services once per Home Assistant instance."""
	global _SERVICES_REGISTERED

	if _SERVICES_REGISTERED:
		return

	async def handle_sync(call: ServiceCall) -> None:
		await _run_for_targets(hass, call, _action_sync)

	async def handle_auto_sync(call: ServiceCall) -> None:
		await _run_for_targets(hass, call, _action_auto_sync)

	async def handle_dedupe(call: ServiceCall) -> None:
		await _run_for_targets(hass, call, _action_dedupe)

	async def handle_toggle_manual_attendance(call: ServiceCall) -> None:
		await _run_for_targets(hass, call, _action_toggle_manual_attendance)

	async def handle_list_term_events(call: ServiceCall) -> ServiceResponse:
		results = await _run_for_targets(hass, call, _action_list_term_events)
		return {"accounts": results}

	hass.services.async_register(
		DOMAIN,
		SERVICE_SYNC,
		handle_sync,
		schema=SERVICE_SYNC_SCHEMA,
	)

	hass.services.async_register(
		DOMAIN,
		SERVICE_AUTO_SYNC,
		handle_auto_sync,
		schema=SERVICE_AUTO_SYNC_SCHEMA,
	)

	hass.services.async_register(
		DOMAIN,
		SERVICE_DEDUPE,
		handle_dedupe,
		schema=SERVICE_DEDUPE_SCHEMA,
	)

	hass.services.async_register(
		DOMAIN,
		SERVICE_TOGGLE_MANUAL_ATTENDANCE,
		handle_toggle_manual_attendance,
		schema=SERVICE_TOGGLE_MANUAL_ATTENDANCE_SCHEMA,
	)

	hass.services.async_register(
		DOMAIN,
		SERVICE_LIST_TERM_EVENTS,
		handle_list_term_events,
		schema=SERVICE_LIST_TERM_EVENTS_SCHEMA,
		supports_response=SupportsResponse.ONLY,
	)

	_SERVICES_REGISTERED = True


async def async_unregister_services(hass: HomeAssistant) -> None:
	"""Remove VTC Attendance services when the last entry is unloaded."""
	global _SERVICES_REGISTERED

	if not _SERVICES_REGISTERED:
		return

	for service in _REGISTERED_SERVICES:
		hass.services.async_remove(DOMAIN, service)

	_SERVICES_REGISTERED = False


async def _run_for_targets(
	hass: HomeAssistant,
	call: ServiceCall,
	action: CoordinatorAction,
) -> dict[str, Any]:
	"""Execute an action for each targeted coordinator; returns results by entry id."""
	targets = _get_target_coordinators(hass, call)
	if not targets:
		raise HomeAssistantError("No VTC accounts are currently set up.")

	results = await asyncio.gather(
		*(action(entry_id, coordinator, call) for entry_id, coordinator in targets),
		return_exceptions=True,
	)

	errors = [result for result in results if isinstance(result, Exception)]
	if not errors:
		return {entry_id: result for (entry_id, _), result in zip(targets, results)}

	for err in errors:
		_LOGGER.error("Service %s failed: %s", call.service, err)

	if len(errors) == 1 and len(targets) == 1:
		raise HomeAssistantError(str(errors[0]))

	if len(errors) == len(targets):
		raise HomeAssistantError(f"{call.service} failed for all targets. Check the logs for details.")

	raise HomeAssistantError(f"{call.service} partially failed. Check the logs for details.")


def _get_target_entry_ids(hass: HomeAssistant, call: ServiceCall) -> set[str]:
	"""Resolve which config entries should handle a service call."""
	domain_data = hass.data.get(DOMAIN)
	if not domain_data:
		raise HomeAssistantError("VTC Attendance is not currently set up.")

	coordinators = {
		entry_id: coordinator
		for entry_id, coordinator in domain_data.items()
		if isinstance(coordinator, VtcAttendanceCoordinator)
	}

	if not coordinators:
		raise HomeAssistantError("VTC Attendance coordinators are not ready yet.")

	entry_ids: set[str] = set()
	config_entry_id = call.data.get("config_entry_id")
	if config_entry_id:
		if config_entry_id not in coordinators:
			raise HomeAssistantError(f"No VTC account found for config_entry_id '{config_entry_id}'.")
		entry_ids.add(config_entry_id)

	device_ids = call.data.get("device_id")
	if device_ids:
		device_registry = dr.async_get(hass)
		for device_id in _ensure_iterable(device_ids):
			device = device_registry.async_get(device_id)
			if not device:
				continue
			for entry_id in device.config_entries:
				if entry_id in coordinators:
					entry_ids.add(entry_id)

	if not entry_ids:
		entry_ids = set(coordinators.keys())

	return entry_ids


def _get_target_coordinators(
	hass: HomeAssistant,
	call: ServiceCall,
) -> list[tuple[str, VtcAttendanceCoordinator]]:
	"""Return coordinators that should process the service call."""
	entry_ids = _get_target_entry_ids(hass, call)
	domain_data = hass.data.get(DOMAIN, {})
	targets: list[tuple[str, VtcAttendanceCoordinator]] = []
	for entry_id in sorted(entry_ids):
		coordinator = domain_data.get(entry_id)
		if isinstance(coordinator, VtcAttendanceCoordinator):
			targets.append((entry_id, coordinator))
	return targets


def _ensure_iterable(value: Any) -> Iterable[str]:
	"""Normalise Home Assistant service data into an iterable of strings."""
	if value is None:
		return []
	if isinstance(value, str):
		return [value]
	if isinstance(value, Iterable):
		return [item for item in value if isinstance(item, str)]
	return []


async def _action_sync(
	entry_id: str,
	coordinator: VtcAttendanceCoordinator,
	call: ServiceCall,
) -> dict[str, Any]:
	"""Sync a term, optionally with a new app URL or token."""
	url = call.data.get("url")
	term = call.data.get("term")
	if url:
		result = await coordinator.service.sync(url, term or coordinator.term_override or _current_term(coordinator))
	else:
		result = await coordinator.service.resync(term or coordinator.term_override)
	if not result.success:
		raise HomeAssistantError(result.error or "Sync failed")

	_LOGGER.info(
		"Synced %s: %d new events, %d new attendance records",
		result.student_id, result.inserted_event_count, result.inserted_attendance_count,
	)
	await coordinator.async_refresh_stats()
	return {
		"inserted_event_count": result.inserted_event_count,
		"inserted_attendance_count": result.inserted_attendance_count,
	}


async def _action_auto_sync(
	entry_id: str,
	coordinator: VtcAttendanceCoordinator,
	call: ServiceCall,
) -> None:
	"""Sync the current term with the stored token."""
	result = await coordinator.service.auto_sync()
	if not result.success:
		raise HomeAssistantError(result.error or "Sync failed")
	await coordinator.async_refresh_stats()


async def _action_dedupe(
	entry_id: str,
	coordinator: VtcAttendanceCoordinator,
	call: ServiceCall,
) -> None:
	"""Remove duplicate stored rows."""
	result = await coordinator.service.dedupe()
	if not result.success:
		raise HomeAssistantError(result.error or "Deduplication failed")
	_LOGGER.info(
		"Removed %d duplicate events and %d duplicate attendance records",
		result.events_deleted, result.rollups_deleted,
	)
	await coordinator.async_refresh_stats()


async def _action_toggle_manual_attendance(
	entry_id: str,
	coordinator: VtcAttendanceCoordinator,
	call: ServiceCall,
) -> None:
	"""Mark one class as attended (UPCOMING) or missed (ABSENT)."""
	result = await coordinator.service.toggle_manual_attendance(call.data["event_id"], call.data["status"])
	if not result.success:
		raise HomeAssistantError(result.error or "Could not change attendance")
	await coordinator.async_refresh_stats()


async def _action_list_term_events(
	entry_id: str,
	coordinator: VtcAttendanceCoordinator,
	call: ServiceCall,
) -> list[dict[str, Any]]:
	"""Calendar entries of one term, ready for an external encoder."""
	result = await coordinator.service.list_events_for_term(call.data["term"])
	if not result.success:
		raise HomeAssistantError(result.error or "Could not list events")
	return [entry.to_dict() for entry in build_export_entries(result.events)]


def _current_term(coordinator: VtcAttendanceCoordinator) -> int:
	return term_for_instant(coordinator.service.clock.now())
