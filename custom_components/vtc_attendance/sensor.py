"""Support for VTC Attendance sensors."""

import logging
from collections import Counter
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from homeassistant.components.sensor import SensorEntity, SensorStateClass
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import PERCENTAGE
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import (
	ATTR_COURSE_COUNT,
	ATTR_FAILED,
	ATTR_GRACE,
	ATTR_LAST_ERROR,
	ATTR_LAST_SYNC,
	ATTR_RECOVERABLE,
	ATTR_SAFE,
	ATTR_STUDENT_ID,
	CONF_STUDENT_ID,
	DOMAIN,
	RECOVERY_ICONS,
	SENSOR_COURSE,
	SENSOR_OVERVIEW,
)
from .coordinator import VtcAttendanceCoordinator
from .vtc.models import RECOVERY_FAILED, RECOVERY_GRACE, RECOVERY_RECOVERABLE, RECOVERY_SAFE
from .vtc.stats import CourseKey

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
	hass: HomeAssistant,
	config_entry: ConfigEntry,
	async_add_entities: AddEntitiesCallback,
) -> None:
	"""Set up VTC Attendance sensors based on a config entry."""
	coordinator: VtcAttendanceCoordinator = hass.data[DOMAIN][config_entry.entry_id]

	entities: List[SensorEntity] = [VtcOverviewSensor(coordinator, config_entry)]
	known = set()
	for key in coordinator.course_keys():
		entities.append(VtcCourseSensor(coordinator, config_entry, key))
		known.add(key)

	_LOGGER.info(f"Setting up {len(entities)} VTC Attendance entities")
	async_add_entities(entities)

	@callback
	def _add_new_courses() -> None:
		new = [key for key in coordinator.course_keys() if key not in known]
		if not new:
			return
		known.update(new)
		_LOGGER.debug(f"Adding sensors for new courses: {', '.join(f'{code} {term}' for code, term in new)}")
		async_add_entities([VtcCourseSensor(coordinator, config_entry, key) for key in new])

	config_entry.async_on_unload(coordinator.async_add_listener(_add_new_courses))


class VtcSensorBase(CoordinatorEntity, SensorEntity):
	"""Base class for VTC Attendance sensors."""

	def __init__(
		self,
		coordinator: VtcAttendanceCoordinator,
		config_entry: ConfigEntry,
	) -> None:
		"""Initialise the sensor."""
		super().__init__(coordinator)
		self.config_entry = config_entry
		student_id = config_entry.data[CONF_STUDENT_ID]
		self._attr_device_info = DeviceInfo(
			identifiers={(DOMAIN, student_id)},
			manufacturer="VTC",
			name=f"VTC Student ({student_id})",
			model="Attendance",
		)


class VtcCourseSensor(VtcSensorBase):
	"""Minute-weighted attendance rate of one course."""

	_attr_native_unit_of_measurement = PERCENTAGE
	_attr_state_class = SensorStateClass.MEASUREMENT

	def __init__(
		self,
		coordinator: VtcAttendanceCoordinator,
		config_entry: ConfigEntry,
		key: CourseKey,
	) -> None:
		super().__init__(coordinator, config_entry)
		self.key = key
		course_code, term = key
		term_slug = term.lower().replace(" ", "")
		self._attr_unique_id = f"{config_entry.entry_id}_{SENSOR_COURSE}_{course_code.lower()}_{term_slug}"
		self._attr_name = f"VTC {course_code} {term} attendance"

	@property
	def available(self) -> bool:
		return super().available and self.coordinator.get_stats(self.key) is not None

	@property
	def native_value(self) -> Optional[float]:
		stats = self.coordinator.get_stats(self.key)
		return stats.minutes_rate if stats else None

	@property
	def icon(self) -> str:
		stats = self.coordinator.get_stats(self.key)
		if stats is None:
			return "mdi:school"
		return RECOVERY_ICONS.get(stats.recovery_status, "mdi:school")

	@property
	def extra_state_attributes(self) -> Dict[str, Any]:
		stats = self.coordinator.get_stats(self.key)
		return asdict(stats) if stats else {}


class VtcOverviewSensor(VtcSensorBase):
	"""Number of tracked courses, broken down by recovery status."""

	def __init__(
		self,
		coordinator: VtcAttendanceCoordinator,
		config_entry: ConfigEntry,
	) -> None:
		super().__init__(coordinator, config_entry)
		self._attr_unique_id = f"{config_entry.entry_id}_{SENSOR_OVERVIEW}"
		self._attr_name = "VTC attendance overview"
		self._attr_icon = "mdi:clipboard-check-multiple"

	@property
	def native_value(self) -> int:
		return len(self.coordinator.course_keys())

	@property
	def extra_state_attributes(self) -> Dict[str, Any]:
		counts = Counter(
			stats.recovery_status
			for stats in (self.coordinator.data or {}).get("stats", {}).values()
		)
		last_sync = self.coordinator.last_sync()
		return {
			ATTR_STUDENT_ID: self.config_entry.data[CONF_STUDENT_ID],
			ATTR_COURSE_COUNT: len(self.coordinator.course_keys()),
			ATTR_SAFE: counts.get(RECOVERY_SAFE, 0),
			ATTR_RECOVERABLE: counts.get(RECOVERY_RECOVERABLE, 0),
			ATTR_FAILED: counts.get(RECOVERY_FAILED, 0),
			ATTR_GRACE: counts.get(RECOVERY_GRACE, 0),
			ATTR_LAST_SYNC: last_sync.isoformat() if last_sync else None,
			ATTR_LAST_ERROR: self.coordinator.last_error,
		}
