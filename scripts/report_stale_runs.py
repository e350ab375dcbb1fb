#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from adscrape.db.base import session_scope  # noqa: E402
from adscrape.db.repositories import ScrapeRunsRepository  # noqa: E402
from adscrape.main import build_scrape_services, configure_logging  # noqa: E402


def _stale_runs(older_than_minutes: int, organisation_id: str | None):
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    with session_scope() as session:
        runs = ScrapeRunsRepository(session).list_incomplete(created_before=cutoff)
    if organisation_id:
        runs = [run for run in runs if run.organisation_id == organisation_id]
    return runs


async def _resume(run_ids: list[str]) -> dict[str, str]:
    scheduler, _jobs = build_scrape_services()
    for run_id in run_ids:
        scheduler.start(run_id)
    await scheduler.wait()
    return {run_id: (scheduler.outcome(run_id).value if scheduler.outcome(run_id) else "UNKNOWN") for run_id in run_ids}


def main() -> int:
    parser = argparse.ArgumentParser(
        description=(
            "List scrape runs that never completed (their poller died with the process or timed out) "
            "and optionally poll them again."
        )
    )
    parser.add_argument("--older-than-minutes", type=int, default=30)
    parser.add_argument("--org-id", default=None)
    parser.add_argument("--resume", action="store_true", help="Poll each stale run once more until it finishes.")
    args = parser.parse_args()

    configure_logging()
    runs = _stale_runs(args.older_than_minutes, args.org_id)
    for run in runs:
        print(
            f"run_id={run.run_id} org={run.organisation_id} type={run.ad_type.value} "
            f"target={run.competitor_url} created_at={run.created_at.isoformat()}"
        )
    print(f"stale_runs={len(runs)}")

    if args.resume and runs:
        outcomes = asyncio.run(_resume([run.run_id for run in runs]))
        for run_id, outcome in outcomes.items():
            print(f"run_id={run_id} outcome={outcome}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
