#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from jobdesk.domain import Actor
from jobdesk.job_workflow import JobWorkflow
from jobdesk.store_backends import store


def main() -> int:
    parser = argparse.ArgumentParser(description="Move CLOSED jobs and their activities into the yearly archive")
    parser.add_argument("--limit", type=int, default=None, help="max jobs to archive in this run")
    parser.add_argument("--actor-id", default="system", help="user id recorded as the archiving actor")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    actor = Actor(id=args.actor_id, display_name=args.actor_id, role="ADMIN")
    archived = JobWorkflow(store).archive_closed_jobs(actor, limit=args.limit)
    print(json.dumps({"archived_job_ids": archived, "count": len(archived)}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
