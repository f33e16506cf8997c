"""
Executors used to hand long-running jobs off the request path.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol

from fastapi import BackgroundTasks


class TaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class ThreadTaskExecutor:
    """
    Runs each task on its own daemon thread.

    Used for batch runs, which block for as long as the queue has work and
    would otherwise pin a worker of the web server's thread pool.
    """

    def __init__(self, *, name_prefix: str = "task") -> None:
        self._name_prefix = name_prefix

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        thread = threading.Thread(
            target=task,
            args=args,
            kwargs=kwargs,
            name=f"{self._name_prefix}-{threading.active_count()}",
            daemon=True,
        )
        thread.start()


class InlineTaskExecutor:
    """
    Runs the task immediately on the calling thread (CLI and scheduler paths).
    """

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)
