"""Config flow for VTC Attendance integration."""

import logging
from typing import Any, Dict, Optional

import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.data_entry_flow import FlowResult
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .const import (
	CONF_STUDENT_ID,
	CONF_TERM,
	CONF_TOKEN,
	CONF_UPDATE_INTERVAL,
	CONF_URL,
	DEFAULT_UPDATE_INTERVAL_HOURS,
	DOMAIN,
	MAX_UPDATE_INTERVAL_HOURS,
	MIN_UPDATE_INTERVAL_HOURS,
	TERM_AUTO,
	TERM_OPTIONS,
)
from .vtc.client import VtcClient
from .vtc.exceptions import VtcAuthError, VtcConnectionError, VtcDataError
from .vtc.utils import extract_token

_LOGGER = logging.getLogger(__name__)

STEP_USER_DATA_SCHEMA = vol.Schema(
	{
		vol.Required(CONF_URL): str,
	}
)


class InvalidToken(Exception):
	"""Token missing from the URL or rejected upstream."""


class VtcAttendanceConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
	"""Handle a config flow for VTC Attendance."""

	VERSION = 1

	async def async_step_user(
		self, user_input: Optional[Dict[str, Any]] = None
	) -> FlowResult:
		"""Handle the initial step."""
		errors: Dict[str, str] = {}

		if user_input is not None:
			try:
				token, student_id = await self._validate(user_input[CONF_URL])
			except InvalidToken:
				errors["base"] = "invalid_auth"
			except (VtcConnectionError, VtcDataError):
				errors["base"] = "cannot_connect"
			except Exception:  # pylint: disable=broad-except
				_LOGGER.exception("Unexpected exception")
				errors["base"] = "unknown"
			else:
				await self.async_set_unique_id(student_id)
				self._abort_if_unique_id_configured()

				return self.async_create_entry(
					title=f"VTC ({student_id})",
					data={CONF_TOKEN: token, CONF_STUDENT_ID: student_id},
				)

		return self.async_show_form(
			step_id="user",
			data_schema=STEP_USER_DATA_SCHEMA,
			errors=errors,
		)

	async def async_step_reauth(self, entry_data: Dict[str, Any]) -> FlowResult:
		"""Handle re-authentication after the token stopped working."""
		return await self.async_step_reauth_confirm()

	async def async_step_reauth_confirm(
		self, user_input: Optional[Dict[str, Any]] = None
	) -> FlowResult:
		"""Ask for a fresh app URL."""
		errors: Dict[str, str] = {}

		if user_input is not None:
			try:
				token, student_id = await self._validate(user_input[CONF_URL])
			except InvalidToken:
				errors["base"] = "invalid_auth"
			except (VtcConnectionError, VtcDataError):
				errors["base"] = "cannot_connect"
			except Exception:  # pylint: disable=broad-except
				_LOGGER.exception("Unexpected exception during reauth")
				errors["base"] = "unknown"
			else:
				existing_entry = await self.async_set_unique_id(student_id)
				if existing_entry:
					self.hass.config_entries.async_update_entry(
						existing_entry, data={CONF_TOKEN: token, CONF_STUDENT_ID: student_id}
					)
					await self.hass.config_entries.async_reload(existing_entry.entry_id)
					return self.async_abort(reason="reauth_successful")
				errors["base"] = "wrong_student"

		return self.async_show_form(
			step_id="reauth_confirm",
			data_schema=STEP_USER_DATA_SCHEMA,
			errors=errors,
		)

	async def _validate(self, url_or_token: str) -> tuple:
		"""Return (token, student id) for a pasted URL or token."""
		token = extract_token(url_or_token)
		if token is None:
			raise InvalidToken("No token in the pasted value")

		session = async_get_clientsession(self.hass)
		try:
			async with VtcClient(session) as client:
				result = await client.verify_token(token)
		except VtcAuthError as e:
			raise InvalidToken(str(e)) from e

		if not result.success or result.payload is None:
			raise InvalidToken(result.error or "Token rejected")

		_LOGGER.info("Successfully validated VTC token")
		return token, result.payload.student_id

	@staticmethod
	@callback
	def async_get_options_flow(config_entry: config_entries.ConfigEntry) -> config_entries.OptionsFlow:
		"""Return the options flow for this handler."""
		return VtcAttendanceOptionsFlow(config_entry)


class VtcAttendanceOptionsFlow(config_entries.OptionsFlow):
	"""Handle VTC Attendance options."""

	def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
		"""Initialise options flow."""
		self._entry = config_entry

	async def async_step_init(
		self, user_input: Optional[Dict[str, Any]] = None
	) -> FlowResult:
		"""Term override and update interval."""
		if user_input is not None:
			return self.async_create_entry(title="", data=user_input)

		options = self._entry.options
		schema = vol.Schema({
			vol.Required(CONF_TERM, default=options.get(CONF_TERM, TERM_AUTO)): vol.In(TERM_OPTIONS),
			vol.Required(
				CONF_UPDATE_INTERVAL,
				default=options.get(CONF_UPDATE_INTERVAL, DEFAULT_UPDATE_INTERVAL_HOURS),
			): vol.All(vol.Coerce(int), vol.Range(min=MIN_UPDATE_INTERVAL_HOURS, max=MAX_UPDATE_INTERVAL_HOURS)),
		})

		return self.async_show_form(
			step_id="init",
			data_schema=schema,
		)
