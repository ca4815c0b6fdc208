#!/usr/bin/env python3
"""Tests for the deduplication sweep."""

import asyncio

from vtc_testing import STUDENT_ID, at, scheduled_event

from vtc.clock import FixedClock
from vtc.dedupe import DeduplicationSweeper, pick_survivor
from vtc.models import AttendanceRollup
from vtc.store import MemoryStore


def legacy_store():
	clock = FixedClock(at(2025, 2, 15, 12))
	return MemoryStore(clock=clock, enforce_unique=False), clock


def test_keeps_latest_of_n_duplicate_events():
	store, clock = legacy_store()
	start = at(2025, 1, 6, 9)
	for event_id in ("e1", "e2", "e3"):
		asyncio.run(store.insert_events([scheduled_event("COMP101", start, id=event_id)]))
		clock.advance(minutes=5)

	result = asyncio.run(DeduplicationSweeper(store).dedupe(STUDENT_ID))

	assert result.success
	assert result.events_deleted == 2
	remaining = asyncio.run(store.list_events(STUDENT_ID))
	assert [event.id for event in remaining] == ["e3"]


def test_keeps_latest_duplicate_rollup():
	store, clock = legacy_store()
	for attended in (1, 2):
		rollup = AttendanceRollup(course_code="COMP101", student_id=STUDENT_ID, term="SEM 2", attended=attended)
		asyncio.run(store.replace_rollup(rollup, 0))
		clock.advance(minutes=5)

	result = asyncio.run(DeduplicationSweeper(store).dedupe(STUDENT_ID))

	assert result.rollups_deleted == 1
	rollups = asyncio.run(store.list_rollups(STUDENT_ID))
	assert len(rollups) == 1
	assert rollups[0].attended == 2


def test_rows_in_different_terms_or_students_are_not_duplicates():
	store, _ = legacy_store()
	start = at(2025, 1, 6, 9)
	asyncio.run(store.insert_events([
		scheduled_event("COMP101", start, term="SEM 1"),
		scheduled_event("COMP101", start, term="SEM 2"),
		scheduled_event("COMP101", start, student_id="other"),
	]))

	result = asyncio.run(DeduplicationSweeper(store).dedupe(STUDENT_ID))

	assert result.events_deleted == 0
	assert result.rollups_deleted == 0
	assert len(asyncio.run(store.list_events("other"))) == 1


def test_nothing_to_do_on_clean_store():
	store, _ = legacy_store()
	result = asyncio.run(DeduplicationSweeper(store).dedupe(STUDENT_ID))
	assert result.success
	assert (result.events_deleted, result.rollups_deleted) == (0, 0)


def test_missing_student_is_an_error():
	store, _ = legacy_store()
	result = asyncio.run(DeduplicationSweeper(store).dedupe(None))
	assert not result.success


def test_survivor_uses_modification_time():
	old = scheduled_event("COMP101", at(2025, 1, 6, 9), id="old",
		created_at=at(2025, 1, 1), modified_at=at(2025, 2, 1))
	new = scheduled_event("COMP101", at(2025, 1, 6, 9), id="new",
		created_at=at(2025, 1, 2), modified_at=at(2025, 1, 3))
	assert pick_survivor([old, new]).id == "old"
