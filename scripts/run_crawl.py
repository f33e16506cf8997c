"""
Run one catalog crawl cycle from CLI.
"""

from __future__ import annotations

import argparse
import json

from app.repositories.crawl_candidate_repository import CrawlCandidateRepository
from app.services.crawl_job_service import get_crawl_job_service
from db.models.crawl_run import CrawlRunTrigger
from db.session import SessionLocal


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a catalog crawl cycle and enqueue new items.")
    parser.add_argument(
        "--seed",
        dest="seed",
        action="append",
        default=[],
        help="Crawl candidate name to add before crawling. Can be repeated.",
    )
    parser.add_argument(
        "--seed-only",
        dest="seed_only",
        action="store_true",
        help="Only add the --seed candidates, do not crawl.",
    )
    args = parser.parse_args()

    if args.seed:
        with SessionLocal() as db:
            added = CrawlCandidateRepository(db).add_candidates(args.seed)
            db.commit()
        print(json.dumps({"candidates_added": added}))
    if args.seed_only:
        return 0

    run = get_crawl_job_service().run_now(trigger=CrawlRunTrigger.CLI)
    if run is None:
        print(json.dumps({"status": "missing"}))
        return 1

    payload = {
        "run_id": str(run.id),
        "status": run.status,
        "result": run.result_payload,
        "error": run.error_message,
    }
    print(json.dumps(payload, indent=2))
    return 0 if run.error_message is None else 1


if __name__ == "__main__":
    raise SystemExit(main())
