"""Data models for VTC schedule and attendance entities."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# ScheduledEvent lifecycle
EVENT_UPCOMING = "UPCOMING"
EVENT_FINISHED = "FINISHED"
EVENT_CANCELED = "CANCELED"
EVENT_RESCHEDULED = "RESCHEDULED"
EVENT_ABSENT = "ABSENT"
EVENT_STATUSES = (EVENT_UPCOMING, EVENT_FINISHED, EVENT_CANCELED, EVENT_RESCHEDULED, EVENT_ABSENT)

# AttendanceRollup lifecycle
COURSE_ACTIVE = "ACTIVE"
COURSE_FINISHED = "FINISHED"

# ClassRecord outcome
CLASS_ATTENDED = "attended"
CLASS_LATE = "late"
CLASS_ABSENT = "absent"

# attend_time value of a record written by a manual override
MANUAL_SENTINEL = "MANUAL"

# Recovery classification
RECOVERY_SAFE = "safe"
RECOVERY_RECOVERABLE = "recoverable"
RECOVERY_FAILED = "failed"
RECOVERY_GRACE = "grace"


def _parse_dt(value: Any) -> Optional[datetime]:
	if value is None or isinstance(value, datetime):
		return value
	return datetime.fromisoformat(value)


@dataclass
class ApiResult:
	"""Uniform envelope returned by every upstream call."""
	success: bool
	error: Optional[str] = None
	payload: Any = None


@dataclass
class StudentProfile:
	"""Identity returned by token verification."""
	student_id: str
	name: Optional[str] = None
	email: Optional[str] = None


@dataclass
class RawEvent:
	"""A timetable row as fetched. Nothing is guaranteed present."""
	id: Optional[str] = None
	course_code: Optional[str] = None
	course_title: Optional[str] = None
	lesson_type: Optional[str] = None
	campus_code: Optional[str] = None
	room_num: Optional[str] = None
	week_num: Optional[str] = None
	lecturer_name: Optional[str] = None
	start_time: Optional[int] = None  # unix seconds
	end_time: Optional[int] = None  # unix seconds

	@property
	def location(self) -> str:
		"""Campus and room joined the way the VTC app prints them."""
		return f"{self.campus_code or ''}-{self.room_num or ''}".strip("-")


@dataclass
class RawClass:
	"""A conducted class from the attendance detail endpoint."""
	id: Optional[str] = None
	date: Optional[str] = None
	lesson_time: Optional[str] = None
	attend_time: Optional[str] = None
	room_name: Optional[str] = None
	status: Optional[int] = None
	order_num: Optional[int] = None


@dataclass
class CourseRef:
	"""A course listed by the attendance list endpoint."""
	code: str
	name: Optional[str] = None


@dataclass
class AttendanceDetail:
	"""Per-course attendance payload."""
	classes: List[RawClass] = field(default_factory=list)
	total_scheduled: int = 0


@dataclass
class ScheduledEvent:
	"""One class meeting instance owned by a student."""
	natural_key: str
	student_id: str
	term: str
	status: str
	course_code: str
	course_title: str
	start_time: datetime
	end_time: datetime
	lesson_type: str = ""
	location: str = ""
	lecturer_name: str = ""
	color_index: int = 0
	week_num: str = ""
	vtc_id: Optional[str] = None
	id: Optional[str] = None
	created_at: Optional[datetime] = None
	modified_at: Optional[datetime] = None

	@property
	def duration_minutes(self) -> float:
		"""Scheduled length in minutes, never negative."""
		return max(0.0, (self.end_time - self.start_time).total_seconds() / 60)

	def __str__(self) -> str:
		return f"{self.course_code} {self.start_time.strftime('%Y-%m-%d %H:%M')}-{self.end_time.strftime('%H:%M')} [{self.status}]"

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ScheduledEvent":
		"""Rebuild an event from its stored form."""
		values = dict(data)
		for key in ("start_time", "end_time", "created_at", "modified_at"):
			values[key] = _parse_dt(values.get(key))
		return cls(**values)


@dataclass
class ClassRecord:
	"""Outcome of one conducted (or manually marked) class."""
	id: str
	date: str
	lesson_time: str
	attend_time: str
	room_name: str
	status: str

	@property
	def is_manual(self) -> bool:
		return self.attend_time == MANUAL_SENTINEL

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ClassRecord":
		return cls(
			id=str(data.get("id", "")),
			date=data.get("date") or "",
			lesson_time=data.get("lesson_time") or "",
			attend_time=data.get("attend_time") or "",
			room_name=data.get("room_name") or "",
			status=data.get("status") or CLASS_ABSENT,
		)


@dataclass
class AttendanceRollup:
	"""Aggregated attendance for one course, student and term."""
	course_code: str
	student_id: str
	term: str
	course_name: str = ""
	status: str = COURSE_ACTIVE
	attend_rate: float = 0.0
	total_classes: int = 0
	conducted_classes: int = 0
	attended: int = 0
	late: int = 0
	absent: int = 0
	is_finished: bool = False
	is_follow_up: bool = False
	base_course_code: str = ""
	classes: List[ClassRecord] = field(default_factory=list)
	id: Optional[str] = None
	version: int = 0
	created_at: Optional[datetime] = None
	modified_at: Optional[datetime] = None

	@property
	def is_low(self) -> bool:
		"""Below the 80% attendance requirement."""
		return self.attend_rate < 80

	@property
	def key(self) -> tuple:
		return (self.course_code, self.student_id, self.term)

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "AttendanceRollup":
		values = dict(data)
		values["classes"] = [ClassRecord.from_dict(item) for item in values.get("classes") or []]
		for key in ("created_at", "modified_at"):
			values[key] = _parse_dt(values.get(key))
		return cls(**values)


@dataclass
class StudentRecord:
	"""Links the local account to the upstream student and its token."""
	local_id: str
	student_id: str
	token: str
	last_sync: Optional[datetime] = None
	created_at: Optional[datetime] = None
	modified_at: Optional[datetime] = None

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "StudentRecord":
		values = dict(data)
		for key in ("last_sync", "created_at", "modified_at"):
			values[key] = _parse_dt(values.get(key))
		return cls(**values)


@dataclass
class HybridAttendanceStats:
	"""Minute-weighted projection for one rollup."""
	course_code: str
	course_name: str
	term: str
	base_course_code: str
	is_follow_up: bool
	status: str
	attended: int
	conducted_class_count: int
	remaining_class_count: int
	total_class_count: int
	conducted_minutes: int
	remaining_minutes: int
	total_minutes: int
	attended_minutes: int
	current_rate: float
	max_possible_rate: float
	minutes_rate: float
	max_possible_minutes_rate: float
	safe_to_skip_count: int
	safe_to_skip_minutes: int
	recovery_status: str


@dataclass
class SyncResult:
	"""Outcome of one schedule synchronisation."""
	inserted_count: int = 0
	student_id: Optional[str] = None
	error: Optional[str] = None

	@property
	def success(self) -> bool:
		return self.error is None


@dataclass
class ReconcileResult:
	"""Outcome of one attendance reconciliation pass."""
	rollups_written: int = 0
	rollups_created: int = 0
	error: Optional[str] = None

	@property
	def success(self) -> bool:
		return self.error is None


@dataclass
class DedupeResult:
	"""Rows removed by a deduplication sweep."""
	events_deleted: int = 0
	rollups_deleted: int = 0
	error: Optional[str] = None

	@property
	def success(self) -> bool:
		return self.error is None


@dataclass
class ManualAttendanceResult:
	"""Outcome of a manual attendance toggle."""
	success: bool
	event: Optional[ScheduledEvent] = None
	rollup: Optional[AttendanceRollup] = None
	error: Optional[str] = None


@dataclass
class AccountSyncResult:
	"""What the exposed sync operations report back."""
	success: bool
	inserted_event_count: int = 0
	inserted_attendance_count: int = 0
	student_id: Optional[str] = None
	error: Optional[str] = None


@dataclass
class StatsResult:
	success: bool
	stats: List[HybridAttendanceStats] = field(default_factory=list)
	error: Optional[str] = None


@dataclass
class EventListResult:
	success: bool
	events: List[ScheduledEvent] = field(default_factory=list)
	error: Optional[str] = None
