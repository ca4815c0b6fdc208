"""Shared fakes for the VTC library tests."""

import asyncio
import os
import sys
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'custom_components', 'vtc_attendance'))

from vtc.clock import DEFAULT_TIMEZONE
from vtc.exceptions import VtcConnectionError
from vtc.models import (
	ApiResult, AttendanceDetail, CourseRef, RawClass, RawEvent, ScheduledEvent, StudentProfile,
	EVENT_UPCOMING,
)

TOKEN = "tok-123"
STUDENT_ID = "220012345"


def at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
	"""Hong Kong local time."""
	return datetime(year, month, day, hour, minute, tzinfo=DEFAULT_TIMEZONE)


def raw_event(
	course_code: str,
	week: str,
	start: datetime,
	minutes: int = 180,
	**extra,
) -> RawEvent:
	values = dict(
		id=f"vtc-{course_code}-{week}-{int(start.timestamp())}",
		course_code=course_code,
		course_title=f"{course_code} title",
		lesson_type="Lecture",
		campus_code="CW",
		room_num="301",
		week_num=week,
		lecturer_name="Dr Chan",
		start_time=int(start.timestamp()),
		end_time=int((start + timedelta(minutes=minutes)).timestamp()),
	)
	values.update(extra)
	return RawEvent(**values)


def scheduled_event(
	course_code: str,
	start: datetime,
	minutes: int = 180,
	term: str = "SEM 2",
	status: str = EVENT_UPCOMING,
	student_id: str = STUDENT_ID,
	week: str = "1",
	**extra,
) -> ScheduledEvent:
	end = start + timedelta(minutes=minutes)
	values = dict(
		natural_key=f"{course_code}-{week}-{int(start.timestamp())}-{int(end.timestamp())}",
		student_id=student_id,
		term=term,
		status=status,
		course_code=course_code,
		course_title=f"{course_code} title",
		start_time=start,
		end_time=end,
		lesson_type="Lecture",
		location="CW-301",
		lecturer_name="Dr Chan",
		week_num=week,
	)
	values.update(extra)
	return ScheduledEvent(**values)


def raw_class(class_id: str, attend_time: Optional[str] = "09:05", status: int = 1) -> RawClass:
	return RawClass(
		id=class_id,
		date="2025-01-10",
		lesson_time="09:00 - 12:00",
		attend_time=attend_time,
		room_name="CW-301",
		status=status,
	)


class FakeClient:
	"""In-process stand-in for the VTC mobile API."""

	def __init__(self, token: str = TOKEN, student_id: str = STUDENT_ID) -> None:
		self.token = token
		self.student_id = student_id
		self.months: Dict[Tuple[int, int], List[RawEvent]] = {}
		self.failing_months: Set[Tuple[int, int]] = set()
		self.rejected_months: Set[Tuple[int, int]] = set()
		self.timed_out_months: Set[Tuple[int, int]] = set()
		self.timed_out_courses: Set[str] = set()
		self.verify_times_out = False
		self.courses: List[CourseRef] = []
		self.details: Dict[str, AttendanceDetail] = {}
		self.month_calls: List[Tuple[int, int]] = []
		self.detail_calls: List[str] = []

	async def verify_token(self, token: str) -> ApiResult:
		if self.verify_times_out:
			raise asyncio.TimeoutError()
		if token != self.token:
			return ApiResult(success=False, error="Invalid token")
		return ApiResult(success=True, payload=StudentProfile(student_id=self.student_id))

	async def fetch_month_schedule(self, token: str, month: int, year: int) -> ApiResult:
		self.month_calls.append((year, month))
		if (year, month) in self.failing_months:
			raise VtcConnectionError(f"timeout fetching {year}-{month}")
		if (year, month) in self.timed_out_months:
			raise asyncio.TimeoutError()
		if (year, month) in self.rejected_months:
			return ApiResult(success=False, error="Service busy")
		return ApiResult(success=True, payload=list(self.months.get((year, month), [])))

	async def fetch_attendance_list(self, token: str) -> ApiResult:
		return ApiResult(success=True, payload=list(self.courses))

	async def fetch_attendance_detail(self, token: str, course_code: str) -> ApiResult:
		self.detail_calls.append(course_code)
		if course_code in self.timed_out_courses:
			raise asyncio.TimeoutError()
		if course_code not in self.details:
			return ApiResult(success=False, error="No attendance data")
		return ApiResult(success=True, payload=self.details[course_code])
