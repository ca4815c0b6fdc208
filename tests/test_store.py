#!/usr/bin/env python3
"""Tests for the in-memory attendance store."""

import asyncio

import pytest

from vtc_testing import STUDENT_ID, at, scheduled_event

from vtc.clock import FixedClock
from vtc.exceptions import DuplicateKeyError, StoreError, VersionConflictError
from vtc.models import AttendanceRollup, ClassRecord, StudentRecord
from vtc.store import MemoryStore


def make_store(**kwargs) -> MemoryStore:
	return MemoryStore(clock=FixedClock(at(2025, 2, 15, 12)), **kwargs)


def test_duplicate_insert_reports_rows_that_landed():
	store = make_store()
	first = scheduled_event("COMP101", at(2025, 1, 6, 9))
	second = scheduled_event("COMP101", at(2025, 1, 13, 9), week="2")
	asyncio.run(store.insert_events([first]))

	with pytest.raises(DuplicateKeyError) as excinfo:
		asyncio.run(store.insert_events([first, second]))

	assert excinfo.value.inserted_count == 1
	assert excinfo.value.duplicate_keys == [first.natural_key]
	assert len(asyncio.run(store.list_events(STUDENT_ID))) == 2


def test_same_key_in_another_term_is_a_different_row():
	store = make_store()
	event = scheduled_event("COMP101", at(2025, 1, 6, 9), term="SEM 2")
	again = scheduled_event("COMP101", at(2025, 1, 6, 9), term="SEM 1")
	assert asyncio.run(store.insert_events([event, again])) == 2


def test_existing_keys_are_found_across_terms():
	store = make_store()
	event = scheduled_event("COMP101", at(2025, 1, 6, 9), term="SEM 1")
	asyncio.run(store.insert_events([event]))
	found = asyncio.run(store.find_existing_event_keys(STUDENT_ID, [event.natural_key, "other"]))
	assert found == {event.natural_key}
	assert asyncio.run(store.find_existing_event_keys("someone-else", [event.natural_key])) == set()


def test_list_events_filters_and_orders():
	store = make_store()
	later = scheduled_event("COMP101", at(2025, 3, 3, 9), week="9")
	earlier = scheduled_event("ENG100", at(2025, 1, 6, 9), status="CANCELED")
	asyncio.run(store.insert_events([later, earlier]))

	assert [e.course_code for e in asyncio.run(store.list_events(STUDENT_ID))] == ["ENG100", "COMP101"]
	assert [e.course_code for e in asyncio.run(store.list_events(STUDENT_ID, include_canceled=False))] == ["COMP101"]
	assert asyncio.run(store.list_events(STUDENT_ID, course_codes=["MATH1"])) == []


def test_update_of_unknown_event_fails():
	store = make_store()
	with pytest.raises(StoreError):
		asyncio.run(store.update_event(scheduled_event("COMP101", at(2025, 1, 6, 9), id="missing")))


def test_upsert_rollup_creates_then_updates():
	store = make_store()
	rollup = AttendanceRollup(course_code="COMP101", student_id=STUDENT_ID, term="SEM 2", attended=3)
	assert asyncio.run(store.upsert_rollup(rollup)) is True

	rollup.attended = 4
	assert asyncio.run(store.upsert_rollup(rollup)) is False

	stored = asyncio.run(store.get_rollup("COMP101", STUDENT_ID, "SEM 2"))
	assert stored.attended == 4
	assert stored.version == 2
	assert len(asyncio.run(store.list_rollups(STUDENT_ID))) == 1


def test_replace_rollup_checks_version():
	store = make_store()
	asyncio.run(store.upsert_rollup(AttendanceRollup(course_code="COMP101A", student_id=STUDENT_ID, term="SEM 2")))
	current = asyncio.run(store.get_rollup("COMP101A", STUDENT_ID, "SEM 2"))

	current.attended = 1
	updated = asyncio.run(store.replace_rollup(current, current.version))
	assert updated.version == current.version + 1

	with pytest.raises(VersionConflictError):
		asyncio.run(store.replace_rollup(current, current.version))


def test_latest_term_follows_class_dates_not_write_order():
	clock = FixedClock(at(2025, 2, 15, 12))
	store = MemoryStore(clock=clock)
	asyncio.run(store.insert_events([scheduled_event("COMP101", at(2025, 1, 6, 9), term="SEM 2")]))
	clock.advance(days=1)
	asyncio.run(store.insert_events([scheduled_event("COMP101", at(2024, 10, 7, 9), term="SEM 1", id="fall")]))
	assert asyncio.run(store.latest_term_for_course(STUDENT_ID, "COMP101")) == "SEM 2"

	clock.advance(days=1)
	fall = asyncio.run(store.get_event("fall"))
	fall.status = "ABSENT"
	asyncio.run(store.update_event(fall))

	assert asyncio.run(store.latest_term_for_course(STUDENT_ID, "COMP101")) == "SEM 2"
	assert asyncio.run(store.latest_term_for_course(STUDENT_ID, "NOPE")) is None


def test_snapshot_restores_all_collections():
	store = make_store()
	asyncio.run(store.insert_events([scheduled_event("COMP101", at(2025, 1, 6, 9))]))
	asyncio.run(store.upsert_rollup(AttendanceRollup(
		course_code="COMP101",
		student_id=STUDENT_ID,
		term="SEM 2",
		classes=[ClassRecord(id="c1", date="2025-01-06", lesson_time="09:00 - 12:00",
			attend_time="09:02", room_name="CW-301", status="attended")],
	)))
	asyncio.run(store.upsert_student(StudentRecord(local_id="entry", student_id=STUDENT_ID, token="tok")))

	restored = make_store()
	restored.load_dict(store.to_dict())

	event = asyncio.run(restored.list_events(STUDENT_ID))[0]
	assert event.start_time == at(2025, 1, 6, 9)
	rollup = asyncio.run(restored.get_rollup("COMP101", STUDENT_ID, "SEM 2"))
	assert rollup.classes[0].attend_time == "09:02"
	assert asyncio.run(restored.get_student("entry")).token == "tok"


def test_unreadable_rows_are_dropped_on_load(caplog):
	store = make_store()
	store.load_dict({"events": [{"natural_key": "broken"}], "rollups": [], "students": []})
	assert asyncio.run(store.list_events(STUDENT_ID)) == []
	assert "unreadable" in caplog.text
