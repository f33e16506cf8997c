"""
Run a batch import from CLI until the queue drains or Ctrl+C is pressed.

The first Ctrl+C requests a cooperative stop: the in-flight batch finishes
and the run is recorded as stopped.
"""

from __future__ import annotations

import argparse
import json
import signal
import threading

from app.services.batch_orchestrator import BatchAlreadyRunningError, get_batch_orchestrator
from app.services.recovery_service import get_recovery_service
from app.services.task_executor import ThreadTaskExecutor
from db.models.batch_run import BatchRunStatus
from db.session import SessionLocal

_POLL_SECONDS = 1.0


def _status_payload(view) -> dict:
    return {
        "run_id": str(view.run_id) if view.run_id else None,
        "status": view.status.value,
        "processed": view.processed_items,
        "successful": view.successful_items,
        "failed": view.failed_items,
        "skipped": view.skipped_items,
        "retried": view.retried_items,
        "batches": view.current_batch,
        "error": view.error_message,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Drain the import queue in paced batches.")
    parser.add_argument("--batch-size", dest="batch_size", type=int, default=None)
    parser.add_argument("--cooldown", dest="cooldown_seconds", type=float, default=None)
    parser.add_argument(
        "--recover-only",
        dest="recover_only",
        action="store_true",
        help="Run the stale work recovery sweep and exit.",
    )
    args = parser.parse_args()

    with SessionLocal() as db:
        recovery = get_recovery_service().sweep(db)
    print(
        json.dumps(
            {
                "items_requeued": recovery.items_requeued,
                "items_failed": recovery.items_failed,
                "runs_failed": recovery.runs_failed,
            }
        )
    )
    if args.recover_only:
        return 0

    orchestrator = get_batch_orchestrator()
    interrupted = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: interrupted.set())

    with SessionLocal() as db:
        try:
            run = orchestrator.start(
                db,
                ThreadTaskExecutor(name_prefix="batch-run"),
                batch_size=args.batch_size,
                cooldown_seconds=args.cooldown_seconds,
            )
        except BatchAlreadyRunningError as exc:
            print(json.dumps({"error": str(exc)}))
            return 1
    print(json.dumps({"run_id": str(run.id), "total_items": run.total_items}))

    while True:
        if interrupted.wait(_POLL_SECONDS):
            interrupted.clear()
            with SessionLocal() as db:
                orchestrator.stop(db)
        with SessionLocal() as db:
            view = orchestrator.status(db)
        if view.run_id == run.id and view.status != BatchRunStatus.RUNNING:
            break

    print(json.dumps(_status_payload(view), indent=2))
    return 0 if view.status != BatchRunStatus.FAILED else 1


if __name__ == "__main__":
    raise SystemExit(main())
