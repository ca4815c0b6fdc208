"""Small helpers shared across the VTC library."""

import logging
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

_LOGGER = logging.getLogger(__name__)

PALETTE_SIZE = 10


def extract_token(url_or_token: Optional[str]) -> Optional[str]:
	"""Return the access token from a VTC app URL, or the value itself if it is a bare token."""
	if not url_or_token:
		return None
	value = url_or_token.strip()
	if not value:
		return None

	if "://" not in value:
		# Anything with URL syntax but no scheme is not a token
		if any(ch in value for ch in "?& \t"):
			return None
		return value

	try:
		parsed = urlparse(value)
	except ValueError as e:
		_LOGGER.warning(f"Invalid URL provided: {e}")
		return None

	tokens = parse_qs(parsed.query).get("token")
	if not tokens or not tokens[0]:
		return None
	return tokens[0]


def color_index(course_code: str, palette_size: int = PALETTE_SIZE) -> int:
	"""Stable palette slot for a course code (32-bit rolling hash)."""
	h = 0
	for ch in course_code:
		h = (h << 5) - h + ord(ch)
		h &= 0xFFFFFFFF
	if h >= 0x80000000:
		h -= 0x100000000
	return abs(h) % palette_size


def round_half_up(value: float, digits: int = 0) -> float:
	"""Round like the mobile app does (halves away from zero), not banker's rounding."""
	quantum = Decimal(1).scaleb(-digits)
	return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(numerator: float, denominator: float) -> float:
	"""Percentage rounded to one decimal; 0 when there is nothing to divide by."""
	if denominator <= 0:
		return 0.0
	return round_half_up(numerator / denominator * 100, 1)


def lesson_time_text(start: datetime, end: datetime) -> str:
	return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"


def serialize(obj: Any) -> Any:
	"""Recursively serialise dataclasses to JSON-safe dicts with datetime conversion."""
	if is_dataclass(obj) and not isinstance(obj, type):
		return serialize(asdict(obj))
	elif isinstance(obj, (datetime, date, time)):
		return obj.isoformat()
	elif isinstance(obj, (list, tuple)):
		return [serialize(item) for item in obj]
	elif isinstance(obj, dict):
		return {key: serialize(value) for key, value in obj.items()}
	else:
		return obj


def error_text(error: BaseException) -> str:
	"""Readable message for an exception, even one raised without arguments."""
	return str(error) or type(error).__name__
