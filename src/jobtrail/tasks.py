"""Durable, step-checkpointed task execution with bounded retries.

A task is identified by a natural key. Each named step persists its result in
its own commit before the next step starts, so a retried or resumed task
replays completed steps from the checkpoint instead of running them again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from .repository import Repository, RepositoryError, TaskRow, TaskStatus

LOGGER = logging.getLogger(__name__)
FINAL_RESULT = "result"

T = TypeVar("T")


class TaskFailed(RuntimeError):
    """Raised once a task has exhausted its attempts."""

    def __init__(self, task_key: str, cause: BaseException) -> None:
        super().__init__(f"Task '{task_key}' failed: {cause}")
        self.task_key = task_key
        self.cause = cause


def _identity(value: Any) -> Any:
    return value


class Task:
    """Handle passed to a task body; exposes checkpointed steps."""

    def __init__(self, repository: Repository, row: TaskRow) -> None:
        self._repository = repository
        self.key = row.task_key
        self.user_id = row.user_id
        self.payload: dict[str, Any] = dict(row.payload or {})
        self._results: dict[str, Any] = dict(row.results or {})

    @property
    def completed_steps(self) -> tuple[str, ...]:
        return tuple(name for name in self._results if name != FINAL_RESULT)

    def step(
        self,
        name: str,
        fn: Callable[[], T],
        *,
        encode: Callable[[T], Any] = _identity,
        decode: Callable[[Any], T] = _identity,
    ) -> T:
        """Run ``fn`` once per task; later calls return the stored result."""

        if name in self._results:
            LOGGER.debug("Task %s: replaying step '%s' from checkpoint", self.key, name)
            return decode(self._results[name])
        value = fn()
        encoded = encode(value)
        self._repository.save_step(self.key, name, encoded)
        self._results[name] = encoded
        LOGGER.info("Task %s: step '%s' completed", self.key, name)
        return value


class TaskRunner:
    """Run task bodies with exponential backoff between attempts."""

    def __init__(
        self,
        repository: Repository,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._repository = repository
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    def begin(self, task_key: str, user_id: str, payload: dict[str, Any]) -> TaskRow:
        return self._repository.create_task(task_key, user_id, payload)

    def run(
        self,
        task_key: str,
        user_id: str,
        payload: dict[str, Any],
        body: Callable[[Task], Any],
        *,
        on_completed: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Execute ``body`` for the task, returning its final result.

        A task that already completed returns its stored final result, passed
        through ``on_completed`` when given, without invoking ``body``. Creating
        the task record is retried like any step.
        """

        def attempt() -> Any:
            row = self.begin(task_key, user_id, payload)
            if row.status is not TaskStatus.COMPLETED:
                return self._attempt(task_key, body)
            LOGGER.info("Task %s already completed; skipping", task_key)
            stored = (row.results or {}).get(FINAL_RESULT)
            if on_completed is not None and stored is not None:
                return on_completed(stored)
            return stored

        return self._retrying(task_key, attempt)

    def resume(self, task_key: str, body: Callable[[Task], Any]) -> Any:
        """Re-run a pending, running or failed task from its last checkpoint."""

        row = self._repository.get_task(task_key)
        if row is None:
            raise LookupError(f"Task '{task_key}' not found.")
        if row.status is TaskStatus.COMPLETED:
            return (row.results or {}).get(FINAL_RESULT)
        return self._retrying(task_key, lambda: self._attempt(task_key, body))

    def pending(self) -> list[TaskRow]:
        return self._repository.list_tasks([TaskStatus.PENDING, TaskStatus.RUNNING])

    def failed(self) -> list[TaskRow]:
        return self._repository.list_tasks([TaskStatus.FAILED])

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (zero-based)."""

        return min(self._base_delay * (2**attempt), self._max_delay)

    def _attempt(self, task_key: str, body: Callable[[Task], Any]) -> Any:
        row = self._repository.mark_task(task_key, TaskStatus.RUNNING, count_attempt=True)
        result = body(Task(self._repository, row))
        self._repository.save_step(task_key, FINAL_RESULT, result)
        self._repository.mark_task(task_key, TaskStatus.COMPLETED)
        return result

    def _retrying(self, task_key: str, operation: Callable[[], Any]) -> Any:
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as exc:
                attempt += 1
                if attempt >= self._max_attempts:
                    LOGGER.error(
                        "Task %s failed after %d attempt(s): %s",
                        task_key,
                        attempt,
                        exc,
                        exc_info=True,
                    )
                    self._record_error(task_key, TaskStatus.FAILED, exc)
                    raise TaskFailed(task_key, exc) from exc
                delay = self.backoff(attempt - 1)
                LOGGER.warning(
                    "Task %s attempt %d/%d failed (%s); retrying in %.1fs",
                    task_key,
                    attempt,
                    self._max_attempts,
                    exc,
                    delay,
                )
                self._record_error(task_key, TaskStatus.PENDING, exc)
                self._sleep(delay)

    def _record_error(self, task_key: str, status: TaskStatus, exc: Exception) -> None:
        # The failure being recorded may be the database itself, or a task that
        # was never created; the original error still decides what happens next.
        try:
            self._repository.mark_task(task_key, status, error=str(exc))
        except (LookupError, RepositoryError):
            LOGGER.warning(
                "Could not record %s state for task %s", status.value, task_key, exc_info=True
            )


__all__ = ["FINAL_RESULT", "Task", "TaskFailed", "TaskRunner"]
