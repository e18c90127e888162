"""Background runner for per-file analyses with progress streaming."""

from __future__ import annotations

import logging
import queue
import threading
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)

DONE_EVENTS = ("done", "error")


class TaskManager:
    """Runs analysis tasks on a thread pool.

    Every uploaded file gets its own task; tasks run side by side. Progress
    events pushed by a running task are stored on the task and broadcast to
    every subscriber queue.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        # Work is I/O-bound (uploads, polling, Gemini calls)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analysis")
        self._tasks: dict[str, dict[str, Any]] = {}
        self._futures: dict[str, Future] = {}
        self._subscribers: dict[str, list[queue.Queue]] = {}
        self._lock = threading.Lock()

    def submit(
        self, name: str, fn: Callable, task_id: str | None = None,
        meta: dict[str, Any] | None = None, **kwargs,
    ) -> str:
        """Submit a task for background execution.

        Args:
            name: Human-readable task name (e.g. "analyze").
            fn: Callable to execute.
            task_id: Optional pre-generated task ID. If None, one is generated.
            meta: Extra fields stored on the task record (e.g. the file ID).
            **kwargs: Arguments passed to fn.

        Returns:
            Task ID (UUID string).
        """
        with self._lock:
            if task_id is None:
                task_id = str(uuid.uuid4())
            self._tasks[task_id] = {
                "id": task_id,
                "name": name,
                "status": "running",
                "progress_events": [],
                "result": None,
                "error": None,
                **(meta or {}),
            }
            self._subscribers[task_id] = []

        def _run():
            try:
                result = fn(**kwargs)
                with self._lock:
                    task = self._tasks.get(task_id)
                    if task is None:
                        return
                    task["status"] = "completed"
                    task["result"] = result
                    subs = self._subscribers_of(task_id)
                _publish(subs, {"type": "done", "result": result})
            except Exception as e:
                logger.exception("Task %s (%s) failed", task_id, name)
                with self._lock:
                    task = self._tasks.get(task_id)
                    if task is None:
                        return
                    task["status"] = "failed"
                    task["error"] = str(e)
                    task["traceback"] = traceback.format_exc()
                    subs = self._subscribers_of(task_id)
                _publish(subs, {"type": "error", "error": str(e)})

        future = self._executor.submit(_run)
        with self._lock:
            self._futures[task_id] = future
        return task_id

    def wait(self, task_id: str, timeout: float | None = None) -> dict | None:
        """Block until a task finishes and return its final status."""
        with self._lock:
            future = self._futures.get(task_id)
        if future is None:
            return None
        future.result(timeout=timeout)
        return self.get_status(task_id)

    def get_status(self, task_id: str) -> dict | None:
        """Get task status and metadata."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return dict(task, progress_events=list(task["progress_events"]))

    def list_tasks(self) -> list[dict]:
        with self._lock:
            return [dict(t) for t in self._tasks.values()]

    def has_running_tasks(self) -> bool:
        with self._lock:
            return any(t["status"] == "running" for t in self._tasks.values())

    def subscribe(self, task_id: str) -> tuple[dict, queue.Queue] | None:
        """Subscribe to events for a task.

        Returns the task status at subscription time together with a Queue
        that receives every later event, or None if the task doesn't exist.
        Taken under one lock, so no event is both replayed and queued.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            q: queue.Queue = queue.Queue()
            self._subscribers[task_id].append(q)
            return dict(task, progress_events=list(task["progress_events"])), q

    def push_progress(self, task_id: str, event: dict) -> None:
        """Record a progress event and broadcast it to subscribers."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task["progress_events"].append(event)
            subs = self._subscribers_of(task_id)
        _publish(subs, {"type": "progress", **event})

    def _subscribers_of(self, task_id: str) -> list[queue.Queue]:
        # Caller holds the lock: a subscriber added later sees the event in its snapshot
        return list(self._subscribers.get(task_id, []))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def _publish(subscribers: list[queue.Queue], event: dict) -> None:
    for q in subscribers:
        q.put_nowait(event)
