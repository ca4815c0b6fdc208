#!/usr/bin/env python3
"""Tests for the per-account operations."""

import asyncio

from vtc_testing import STUDENT_ID, TOKEN, FakeClient, at, raw_class, raw_event, scheduled_event

from vtc.clock import FixedClock
from vtc.models import AttendanceDetail, CourseRef, EVENT_ABSENT, StudentRecord
from vtc.service import INVALID_URL_MESSAGE, NO_TOKEN_MESSAGE, AttendanceService
from vtc.store import MemoryStore
from vtc.sync import INVALID_TOKEN_MESSAGE

NOW = at(2025, 2, 15, 12)
APP_URL = f"https://mobile.vtc.edu.hk/app/timetable?lang=en&token={TOKEN}"


def make_service(now=NOW, store=None):
	clock = FixedClock(now)
	store = store if store is not None else MemoryStore(clock=clock)
	client = FakeClient()
	client.months[(2025, 1)] = [raw_event("COMP101", "1", at(2025, 1, 6, 9))]
	client.months[(2024, 10)] = [raw_event("ENG100", "4", at(2024, 10, 7, 14))]
	client.courses = [CourseRef(code="COMP101", name="Programming")]
	client.details["COMP101"] = AttendanceDetail(classes=[raw_class("c1")], total_scheduled=10)
	return AttendanceService(client, store, clock), client, store


def test_sync_from_app_url():
	service, _, store = make_service()
	result = asyncio.run(service.sync(APP_URL, 2))

	assert result.success
	assert result.student_id == STUDENT_ID
	assert result.inserted_event_count == 2
	assert result.inserted_attendance_count == 1

	record = asyncio.run(service.student())
	assert record.token == TOKEN
	assert record.student_id == STUDENT_ID
	assert record.last_sync == NOW


def test_second_sync_reports_no_new_rows():
	service, _, store = make_service()
	asyncio.run(service.sync(APP_URL, 2))
	result = asyncio.run(service.sync(TOKEN, 2))

	assert result.success
	assert result.inserted_event_count == 0
	assert result.inserted_attendance_count == 0
	assert len(asyncio.run(store.list_events(STUDENT_ID))) == 2
	assert len(asyncio.run(store.list_rollups(STUDENT_ID))) == 1


def test_url_without_token_is_rejected():
	service, client, _ = make_service()
	result = asyncio.run(service.sync("https://mobile.vtc.edu.hk/app?lang=en", 2))
	assert not result.success
	assert result.error == INVALID_URL_MESSAGE
	assert client.month_calls == []


def test_unknown_token_is_rejected():
	service, _, _ = make_service()
	result = asyncio.run(service.sync("https://mobile.vtc.edu.hk/app?token=expired", 2))
	assert not result.success
	assert result.error == INVALID_TOKEN_MESSAGE
	assert asyncio.run(service.student()) is None


def test_auto_sync_needs_a_stored_token():
	service, _, _ = make_service()
	result = asyncio.run(service.auto_sync())
	assert not result.success
	assert result.error == NO_TOKEN_MESSAGE


def test_auto_sync_takes_term_from_the_clock():
	service, client, store = make_service(now=at(2024, 10, 20, 12))
	asyncio.run(store.upsert_student(StudentRecord(local_id="default", student_id=STUDENT_ID, token=TOKEN)))

	result = asyncio.run(service.auto_sync())

	assert result.success
	assert sorted(client.month_calls) == [(2024, 9), (2024, 10), (2024, 11), (2024, 12)]
	assert [event.term for event in asyncio.run(store.list_events(STUDENT_ID))] == ["SEM 1"]


def test_operations_before_first_sync():
	service, _, _ = make_service()
	assert asyncio.run(service.dedupe()).error == NO_TOKEN_MESSAGE
	assert asyncio.run(service.get_hybrid_stats()).error == NO_TOKEN_MESSAGE
	assert asyncio.run(service.list_events_for_term(2)).error == NO_TOKEN_MESSAGE
	assert not asyncio.run(service.toggle_manual_attendance("ev-1", EVENT_ABSENT)).success


def test_stats_and_listing_after_sync():
	service, _, _ = make_service()
	asyncio.run(service.sync(APP_URL, 2))

	stats = asyncio.run(service.get_hybrid_stats())
	assert stats.success
	assert [item.course_code for item in stats.stats] == ["COMP101"]

	listed = asyncio.run(service.list_events_for_term("SEM 1"))
	assert listed.success
	assert [event.course_code for event in listed.events] == ["ENG100"]

	assert not asyncio.run(service.list_events_for_term(7)).success
	assert asyncio.run(service.dedupe()).success


def test_toggle_refuses_events_of_another_student():
	service, _, store = make_service()
	asyncio.run(service.sync(APP_URL, 2))
	asyncio.run(store.insert_events([
		scheduled_event("COMP101A", at(2025, 2, 10, 9), student_id="someone-else", id="theirs"),
	]))

	result = asyncio.run(service.toggle_manual_attendance("theirs", EVENT_ABSENT))

	assert not result.success
	assert asyncio.run(store.get_event("theirs")).status != EVENT_ABSENT


class UnreachableStore(MemoryStore):
	async def get_student(self, local_id):
		raise ConnectionError("store offline")


def test_store_failures_become_failed_results():
	service, _, _ = make_service(store=UnreachableStore())
	assert asyncio.run(service.auto_sync()).error == "store offline"
	assert asyncio.run(service.get_hybrid_stats()).error == "store offline"
	assert asyncio.run(service.dedupe()).error == "store offline"
	assert not asyncio.run(service.list_events_for_term(2)).success


def test_timed_out_month_and_course_are_skipped():
	service, client, store = make_service()
	client.timed_out_months.add((2024, 10))
	client.courses.append(CourseRef(code="ENG100"))
	client.timed_out_courses.add("ENG100")

	result = asyncio.run(service.sync(APP_URL, 2))

	assert result.success
	assert result.inserted_event_count == 1
	assert result.inserted_attendance_count == 1
	assert [rollup.course_code for rollup in asyncio.run(store.list_rollups(STUDENT_ID))] == ["COMP101"]


def test_timed_out_verification_is_a_failed_result():
	service, client, _ = make_service()
	client.verify_times_out = True

	result = asyncio.run(service.sync(APP_URL, 2))

	assert not result.success
	assert result.error == INVALID_TOKEN_MESSAGE
	assert client.month_calls == []


class ExplodingListClient(FakeClient):
	async def fetch_attendance_list(self, token):
		raise RuntimeError()


def test_unexpected_failure_mid_sync_is_a_failed_result():
	clock = FixedClock(NOW)
	service = AttendanceService(ExplodingListClient(), MemoryStore(clock=clock), clock)

	result = asyncio.run(service.sync(APP_URL, 2))

	assert not result.success
	assert result.error == "RuntimeError"
