"""Client for the VTC mobile API."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import aiohttp

from .exceptions import VtcAuthError, VtcConnectionError, VtcDataError, VtcError
from .models import (
	ApiResult, AttendanceDetail, CourseRef, RawClass, RawEvent, StudentProfile,
)

_LOGGER = logging.getLogger(__name__)

API_BASE_URL = "https://mobile.vtc.edu.hk/api"
DEFAULT_HEADERS = {
	"Accept": "application/json, text/javascript, */*; q=0.01",
	"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148",
}
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)

# What a single upstream call can raise when the call itself fails
FETCH_ERRORS = (VtcError, asyncio.TimeoutError)


class ScheduleClient(Protocol):
	"""What the synchroniser and reconciler need from the school API."""

	async def verify_token(self, token: str) -> ApiResult:
		...

	async def fetch_month_schedule(self, token: str, month: int, year: int) -> ApiResult:
		...

	async def fetch_attendance_list(self, token: str) -> ApiResult:
		...

	async def fetch_attendance_detail(self, token: str, course_code: str) -> ApiResult:
		...


def _int_or_none(value: Any) -> Optional[int]:
	if value is None or value == "":
		return None
	try:
		return int(value)
	except (TypeError, ValueError):
		return None


def _str_or_none(value: Any) -> Optional[str]:
	if value is None:
		return None
	return str(value)


def _english_name(name: Any) -> Optional[str]:
	"""Course names arrive as {en, tc, sc}; prefer English."""
	if isinstance(name, dict):
		return name.get("en") or name.get("tc") or name.get("sc")
	if isinstance(name, str):
		return name or None
	return None


def parse_raw_event(item: Dict[str, Any]) -> RawEvent:
	return RawEvent(
		id=_str_or_none(item.get("id")),
		course_code=_str_or_none(item.get("courseCode")),
		course_title=_str_or_none(item.get("courseTitle")),
		lesson_type=_str_or_none(item.get("lessonType")),
		campus_code=_str_or_none(item.get("campusCode")),
		room_num=_str_or_none(item.get("roomNum")),
		week_num=_str_or_none(item.get("weekNum")),
		lecturer_name=_str_or_none(item.get("lecturerName")),
		start_time=_int_or_none(item.get("startTime")),
		end_time=_int_or_none(item.get("endTime")),
	)


def parse_raw_class(item: Dict[str, Any]) -> RawClass:
	return RawClass(
		id=_str_or_none(item.get("id")),
		date=_str_or_none(item.get("date")),
		lesson_time=_str_or_none(item.get("lessonTime")),
		attend_time=_str_or_none(item.get("attendTime")),
		room_name=_str_or_none(item.get("roomName")),
		status=_int_or_none(item.get("status")),
		order_num=_int_or_none(item.get("orderNum")),
	)


def parse_schedule_payload(payload: Any) -> List[RawEvent]:
	"""Events of the ``timetable.add`` list; exam/holiday/personal lists are not classes."""
	if not isinstance(payload, dict):
		return []
	timetable = payload.get("timetable") or {}
	rows = timetable.get("add") if isinstance(timetable, dict) else None
	if not isinstance(rows, list):
		return []
	return [parse_raw_event(row) for row in rows if isinstance(row, dict)]


def parse_course_list_payload(payload: Any) -> List[CourseRef]:
	if not isinstance(payload, dict):
		return []
	courses = []
	for item in payload.get("courses") or []:
		if not isinstance(item, dict) or not item.get("courseCode"):
			_LOGGER.debug(f"Ignoring course entry without a code: {item!r}")
			continue
		courses.append(CourseRef(code=str(item["courseCode"]), name=_english_name(item.get("name"))))
	return courses


def parse_detail_payload(payload: Any) -> AttendanceDetail:
	if not isinstance(payload, dict):
		return AttendanceDetail()
	classes = [parse_raw_class(item) for item in payload.get("classes") or [] if isinstance(item, dict)]
	return AttendanceDetail(
		classes=classes,
		total_scheduled=_int_or_none(payload.get("totalNumOfClass")) or 0,
	)


def parse_profile_payload(payload: Any) -> Optional[StudentProfile]:
	if not isinstance(payload, dict):
		return None
	student_id = payload.get("vtcID")
	if not student_id:
		return None
	return StudentProfile(
		student_id=str(student_id),
		name=payload.get("name"),
		email=payload.get("email"),
	)


class VtcClient:
	"""Client for interacting with the VTC mobile API."""

	def __init__(self, session: Optional[aiohttp.ClientSession] = None, base_url: str = API_BASE_URL):
		"""Initialise VTC client.

		Args:
			session: Optional aiohttp session. If None, one is created on enter.
			base_url: API endpoint, overridable for testing.
		"""
		self._session = session
		self._own_session = session is None
		self.base_url = base_url

	async def __aenter__(self):
		"""Async context manager entry."""
		if self._own_session:
			self._session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
		return self

	async def __aexit__(self, exc_type, exc_val, exc_tb):
		"""Async context manager exit."""
		if self._own_session and self._session:
			await self._session.close()
			self._session = None

	async def verify_token(self, token: str) -> ApiResult:
		"""Check a token and resolve the student it belongs to.

		Returns:
			ApiResult whose payload is a StudentProfile
		"""
		result = await self._call("checkAccessToken", token)
		if not result.success:
			return result
		profile = parse_profile_payload(result.payload)
		if profile is None:
			return ApiResult(success=False, error="Token accepted but no student ID returned")
		return ApiResult(success=True, payload=profile)

	async def fetch_month_schedule(self, token: str, month: int, year: int) -> ApiResult:
		"""Timetable for one calendar month.

		Returns:
			ApiResult whose payload is a list of RawEvent
		"""
		return await self._call("getTimeTableAndReminderList", token, parse_schedule_payload, month=month, year=year)

	async def fetch_attendance_list(self, token: str) -> ApiResult:
		"""Courses that have attendance records.

		Returns:
			ApiResult whose payload is a list of CourseRef
		"""
		return await self._call("getClassAttendanceList", token, parse_course_list_payload)

	async def fetch_attendance_detail(self, token: str, course_code: str) -> ApiResult:
		"""Conducted classes of one course.

		Returns:
			ApiResult whose payload is an AttendanceDetail
		"""
		return await self._call("getClassAttendanceDetail", token, parse_detail_payload, courseCode=course_code)

	async def _call(
		self,
		cmd: str,
		token: str,
		parser: Optional[Callable[[Any], Any]] = None,
		**params: Any,
	) -> ApiResult:
		"""Issue one command and unwrap the {isSuccess, errorMsg, payload} envelope."""
		body = await self._request(cmd, token, **params)
		if not isinstance(body, dict):
			raise VtcDataError(f"Unexpected response shape for {cmd}: {type(body).__name__}")

		if not body.get("isSuccess"):
			error = body.get("errorMsg") or f"{cmd} failed (errorCode {body.get('errorCode')})"
			_LOGGER.debug(f"{cmd} reported failure: {error}")
			return ApiResult(success=False, error=error)

		payload = body.get("payload")
		return ApiResult(success=True, payload=parser(payload) if parser else payload)

	async def _request(self, cmd: str, token: str, **params: Any) -> Any:
		if self._session is None:
			raise VtcConnectionError("Client session not initialised; use 'async with VtcClient()'")

		query = {"cmd": cmd, "token": token}
		query.update({key: str(value) for key, value in params.items()})

		try:
			async with self._session.get(self.base_url, params=query, headers=DEFAULT_HEADERS) as resp:
				if resp.status in (401, 403):
					raise VtcAuthError(f"{cmd} rejected the token (HTTP {resp.status})")
				if resp.status != 200:
					raise VtcConnectionError(f"{cmd} failed: HTTP {resp.status}")

				try:
					return await resp.json()
				except aiohttp.ContentTypeError as e:
					# Content-type header is sometimes wrong while the body is still JSON
					text = await resp.text()
					_LOGGER.warning(f"Content-type error for {cmd}, attempting manual JSON parse: {e}")
					if text.strip().startswith("{") or text.strip().startswith("["):
						try:
							return json.loads(text)
						except json.JSONDecodeError:
							_LOGGER.error(f"Failed to parse {cmd} response as JSON: {text[:200]}...")
					raise VtcDataError(f"Invalid JSON response from {cmd}") from e

		except aiohttp.ClientError as e:
			raise VtcConnectionError(f"Connection error: {e}") from e
		except asyncio.TimeoutError as e:
			raise VtcConnectionError(f"{cmd} timed out") from e
		except json.JSONDecodeError as e:
			raise VtcDataError(f"Failed to parse {cmd} data: {e}") from e
