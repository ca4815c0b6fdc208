#!/usr/bin/env python3
"""Tests for the schedule synchroniser."""

import asyncio

from vtc_testing import STUDENT_ID, TOKEN, FakeClient, at, raw_event

from vtc.clock import FixedClock
from vtc.exceptions import StoreError
from vtc.models import EVENT_FINISHED, EVENT_UPCOMING, RawEvent
from vtc.store import MemoryStore
from vtc.sync import INVALID_TOKEN_MESSAGE, ScheduleSynchronizer

# Mid-February: term 2, which also backfills the previous Fall
NOW = at(2025, 2, 15, 12)


def make_client() -> FakeClient:
	client = FakeClient()
	client.months[(2025, 1)] = [
		raw_event("COMP101", "1", at(2025, 1, 6, 9)),
		raw_event("COMP101", "2", at(2025, 1, 13, 9)),
	]
	client.months[(2025, 3)] = [raw_event("COMP101", "9", at(2025, 3, 3, 9))]
	client.months[(2024, 10)] = [raw_event("ENG100", "4", at(2024, 10, 7, 14), minutes=120)]
	return client


def make_sync(client=None, store=None):
	clock = FixedClock(NOW)
	store = store if store is not None else MemoryStore(clock=clock)
	return ScheduleSynchronizer(client or make_client(), store, clock), store


def test_sync_inserts_term_and_backfill():
	sync, store = make_sync()
	result = asyncio.run(sync.sync(TOKEN, 2))

	assert result.success
	assert result.inserted_count == 4
	assert result.student_id == STUDENT_ID

	spring = asyncio.run(store.list_events(STUDENT_ID, term="SEM 2"))
	fall = asyncio.run(store.list_events(STUDENT_ID, term="SEM 1"))
	assert len(spring) == 3
	assert [event.course_code for event in fall] == ["ENG100"]


def test_second_sync_with_same_data_inserts_nothing():
	client = make_client()
	sync, store = make_sync(client)
	first = asyncio.run(sync.sync(TOKEN, 2))
	second = asyncio.run(sync.sync(TOKEN, 2))

	assert first.inserted_count == 4
	assert second.success
	assert second.inserted_count == 0
	assert len(asyncio.run(store.list_events(STUDENT_ID))) == 4


def test_status_reflects_sync_time():
	sync, store = make_sync()
	asyncio.run(sync.sync(TOKEN, 2))
	events = asyncio.run(store.list_events(STUDENT_ID, term="SEM 2"))
	statuses = {event.start_time.month: event.status for event in events}
	assert statuses[1] == EVENT_FINISHED
	assert statuses[3] == EVENT_UPCOMING


def test_event_fields_are_derived_from_the_raw_row():
	sync, store = make_sync()
	asyncio.run(sync.sync(TOKEN, 2))
	event = asyncio.run(store.list_events(STUDENT_ID, term="SEM 1"))[0]
	assert event.location == "CW-301"
	assert event.course_title == "ENG100 title"
	assert event.duration_minutes == 120
	assert event.natural_key.startswith("ENG100-4-")
	assert event.id


def test_invalid_token_fails_before_any_fetch():
	client = make_client()
	sync, store = make_sync(client)
	result = asyncio.run(sync.sync("wrong-token", 2))

	assert not result.success
	assert result.error == INVALID_TOKEN_MESSAGE
	assert client.month_calls == []
	assert asyncio.run(store.list_events(STUDENT_ID)) == []


def test_failed_month_is_skipped():
	client = make_client()
	client.failing_months.add((2025, 1))
	client.rejected_months.add((2024, 10))
	sync, _ = make_sync(client)
	result = asyncio.run(sync.sync(TOKEN, 2))

	assert result.success
	assert result.inserted_count == 1
	assert len(client.month_calls) == 8


def test_malformed_rows_are_not_stored():
	client = FakeClient()
	client.months[(2025, 2)] = [
		raw_event("COMP101", "5", at(2025, 2, 3, 9)),
		RawEvent(id="no-times", course_code="COMP101", week_num="6"),
	]
	sync, store = make_sync(client)
	result = asyncio.run(sync.sync(TOKEN, 2))
	assert result.inserted_count == 1


def test_invalid_term_number_is_reported():
	sync, _ = make_sync()
	result = asyncio.run(sync.sync(TOKEN, 5))
	assert not result.success
	assert "Invalid term" in result.error


class RacingStore(MemoryStore):
	"""Existence check that misses rows written by a concurrent sync."""

	async def find_existing_event_keys(self, student_id, natural_keys):
		return set()


def test_partial_duplicate_insert_still_credits_new_rows():
	clock = FixedClock(NOW)
	store = RacingStore(clock=clock)
	client = FakeClient()
	client.months[(2025, 1)] = [raw_event("COMP101", "1", at(2025, 1, 6, 9))]
	sync = ScheduleSynchronizer(client, store, clock)
	asyncio.run(sync.sync(TOKEN, 2))

	client.months[(2025, 1)].append(raw_event("COMP101", "2", at(2025, 1, 13, 9)))
	result = asyncio.run(sync.sync(TOKEN, 2))

	assert result.success
	assert result.inserted_count == 1
	assert len(asyncio.run(store.list_events(STUDENT_ID))) == 2


class BrokenStore(MemoryStore):
	"""Rejects writes of one course as if the database were failing."""

	async def insert_events(self, events):
		if any(event.course_code == "BAD" for event in events):
			raise StoreError("disk full")
		return await super().insert_events(events)


def test_store_failure_is_fatal_and_keeps_partial_count():
	clock = FixedClock(NOW)
	store = BrokenStore(clock=clock)
	client = make_client()
	client.months[(2025, 4)] = [raw_event("BAD", "12", at(2025, 4, 7, 9))]
	sync = ScheduleSynchronizer(client, store, clock)
	result = asyncio.run(sync.sync(TOKEN, 2))

	assert not result.success
	assert "disk full" in result.error
	assert result.inserted_count == 4


def test_timed_out_month_is_skipped():
	client = make_client()
	client.timed_out_months.add((2025, 3))
	sync, store = make_sync(client)
	result = asyncio.run(sync.sync(TOKEN, 2))

	assert result.success
	assert result.inserted_count == 3
	assert len(client.month_calls) == 8
