"""Academic term calendar: month mapping, backfill matrix and term end dates."""

from datetime import datetime
from typing import Dict, List, Tuple

TERM_FALL = "SEM 1"
TERM_SPRING = "SEM 2"
TERM_SUMMER = "SEM 3"

TERM_TAGS: Dict[int, str] = {
	1: TERM_FALL,
	2: TERM_SPRING,
	3: TERM_SUMMER,
}

TERM_MONTHS: Dict[int, List[int]] = {
	1: [9, 10, 11, 12],
	2: [1, 2, 3, 4],
	3: [5, 6, 7, 8],
}

# (month, day) of the last day of each term
TERM_END_DATES: Dict[int, Tuple[int, int]] = {
	1: (12, 31),
	2: (5, 31),
	3: (8, 31),
}


def term_tag(term_number: int) -> str:
	"""Stored tag for a term number; raises ValueError for anything but 1-3."""
	try:
		return TERM_TAGS[term_number]
	except KeyError:
		raise ValueError(f"Invalid term number {term_number!r}. Use 1 (Fall), 2 (Spring) or 3 (Summer).") from None


def term_number(tag: str) -> int:
	for number, value in TERM_TAGS.items():
		if value == tag:
			return number
	raise ValueError(f"Unknown term tag {tag!r}")


def is_term_tag(tag: str) -> bool:
	return tag in TERM_TAGS.values()


def term_for_month(month: int) -> int:
	"""Term a calendar month belongs to: Sep-Dec 1, Jan-Apr 2, May-Aug 3."""
	for number, months in TERM_MONTHS.items():
		if month in months:
			return number
	raise ValueError(f"Invalid month {month!r}")


def term_for_instant(instant: datetime) -> int:
	return term_for_month(instant.month)


def backfill_plan(term: int, current_year: int) -> List[Tuple[int, int]]:
	"""(term, year) pairs a sync of ``term`` must fetch.

	Fall stands alone. Spring also pulls the previous year's Fall and Summer
	also pulls the current year's Spring, so a student joining mid-year still
	sees the preceding term.
	"""
	term_tag(term)
	plan = [(term, current_year)]
	if term == 2:
		plan.append((1, current_year - 1))
	elif term == 3:
		plan.append((2, current_year))
	return plan


def month_units(term: int, current_year: int) -> List[Tuple[str, int, int]]:
	"""Flatten the backfill plan into (term tag, year, month) fetch units."""
	units = []
	for plan_term, year in backfill_plan(term, current_year):
		for month in TERM_MONTHS[plan_term]:
			units.append((term_tag(plan_term), year, month))
	return units


def term_end(tag: str, year: int, tz=None) -> datetime:
	"""Last second of the term tagged ``tag`` in ``year``."""
	month, day = TERM_END_DATES[term_number(tag)]
	return datetime(year, month, day, 23, 59, 59, tzinfo=tz)
