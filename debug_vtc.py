#!/usr/bin/env python3
"""
VTC Attendance Debug Script

Runs a full sync against the live VTC mobile API into an in-memory store and
prints what landed: inserted counts, rollups and the hybrid projections.

Usage:
    python3 debug_vtc.py [term]

Credentials come from a .env file (or the environment):
    VTC_URL=https://...?token=your_token_here
If VTC_URL is missing you'll be prompted for it.
"""

import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Set up detailed logging
logging.basicConfig(
	level=logging.DEBUG if os.getenv("VTC_DEBUG") else logging.INFO,
	format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Add the integration directory to Python path
sys.path.insert(0, str(Path(__file__).parent / "custom_components" / "vtc_attendance"))

from vtc.client import VtcClient
from vtc.clock import SystemClock
from vtc.export import build_export_entries
from vtc.service import AttendanceService
from vtc.store import MemoryStore
from vtc.terms import term_for_instant


async def run(url_or_token: str, term: int) -> int:
	async with VtcClient() as client:
		service = AttendanceService(client, MemoryStore())

		print(f"🔄 Syncing term {term}")
		print("=" * 50)
		result = await service.sync(url_or_token, term)
		if not result.success:
			print(f"❌ Sync failed: {result.error}")
			return 1
		print(f"✅ Student {result.student_id}: {result.inserted_event_count} events, "
			f"{result.inserted_attendance_count} attendance records")

		rerun = await service.sync(url_or_token, term)
		print(f"🔁 Second sync inserted {rerun.inserted_event_count} events (expect 0)")

		stats = await service.get_hybrid_stats()
		print()
		print("📊 Attendance")
		print("=" * 50)
		for item in stats.stats:
			print(f"  {item.course_code:<12} {item.minutes_rate:5.1f}% by minutes, "
				f"{item.current_rate:5.1f}% by class, max {item.max_possible_minutes_rate:5.1f}% "
				f"[{item.recovery_status}] skip {item.safe_to_skip_count} classes")

		events = await service.list_events_for_term(term)
		entries = build_export_entries(events.events)
		print()
		print(f"📅 {len(entries)} calendar entries for term {term}")
		for entry in entries[:5]:
			print(f"  {entry.start:%Y-%m-%d %H:%M} {entry.title} @ {entry.location or '-'}")
	return 0


def main() -> int:
	url_or_token = os.getenv("VTC_URL") or getpass.getpass("VTC app URL or token: ")
	term = int(sys.argv[1]) if len(sys.argv) > 1 else None
	if term is None:
		term = term_for_instant(SystemClock().now())
	return asyncio.run(run(url_or_token, term))


if __name__ == "__main__":
	sys.exit(main())
