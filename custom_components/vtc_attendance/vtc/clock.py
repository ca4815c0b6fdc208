"""Time source threaded through every component that needs "now"."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol

# VTC campuses all run on Hong Kong time (UTC+8, no DST)
DEFAULT_TIMEZONE = timezone(timedelta(hours=8), "HKT")


class Clock(Protocol):
	"""Anything that can tell the current, timezone-aware instant."""

	def now(self) -> datetime:
		...


class SystemClock:
	"""Wall clock in a fixed timezone."""

	def __init__(self, tz: Optional[tzinfo] = None) -> None:
		self.tz = tz or DEFAULT_TIMEZONE

	def now(self) -> datetime:
		return datetime.now(self.tz)


class FixedClock:
	"""Clock frozen at a given instant; advance it explicitly."""

	def __init__(self, instant: datetime) -> None:
		if instant.tzinfo is None:
			instant = instant.replace(tzinfo=DEFAULT_TIMEZONE)
		self.instant = instant

	def now(self) -> datetime:
		return self.instant

	def advance(self, **kwargs) -> None:
		self.instant = self.instant + timedelta(**kwargs)
