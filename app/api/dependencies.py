"""
app/api/dependencies.py

Shared FastAPI dependencies for the operational endpoints.
"""

from __future__ import annotations

from app.services.task_executor import TaskExecutor, ThreadTaskExecutor


def get_batch_task_executor() -> TaskExecutor:
    """
    Executor that hosts batch run loops; each run gets its own thread.
    """

    return ThreadTaskExecutor(name_prefix="batch-run")
