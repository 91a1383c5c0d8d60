"""Directory spool that feeds inbound event files to the pipeline.

Producers drop ``*.json`` event files into ``<spool>/incoming`` (ideally by
writing a temporary name and renaming). Each file is moved to ``done/`` once
the pipeline returns, or to ``failed/`` with an ``.error`` note when the event
is malformed or its task exhausted its retries. Files that hit any other error
stay in ``incoming/`` and are picked up again on the next drain.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .events import EventError, InboundEvent
from .tasks import TaskFailed

LOGGER = logging.getLogger(__name__)

INCOMING = "incoming"
DONE = "done"
FAILED = "failed"


class SpoolWorker:
    """Watch the spool's incoming folder and process each event file once."""

    def __init__(
        self,
        spool_dir: Path,
        handler: Callable[[InboundEvent], Any],
        *,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._spool_dir = spool_dir.expanduser()
        self._handler = handler
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()
        self._process_lock = threading.Lock()
        self.processed = 0
        self.failed = 0

    @property
    def incoming_dir(self) -> Path:
        return self._spool_dir / INCOMING

    @property
    def done_dir(self) -> Path:
        return self._spool_dir / DONE

    @property
    def failed_dir(self) -> Path:
        return self._spool_dir / FAILED

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def ensure_structure(self) -> None:
        for directory in (self.incoming_dir, self.done_dir, self.failed_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def start(self) -> None:
        """Drain files already waiting, then watch for new ones."""

        with self._lock:
            if self._observer is not None:
                return
            self.ensure_structure()
            observer = self._observer_factory()
            observer.schedule(
                _SpoolEventHandler(self._on_file), str(self.incoming_dir), recursive=False
            )
            observer.start()
            self._observer = observer
        LOGGER.info("Watching spool %s", self.incoming_dir)
        self.drain()

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join spool observer thread")
            self._observer = None

    def drain(self) -> int:
        """Process every waiting event file in name order; returns how many were handled."""

        self.ensure_structure()
        handled = 0
        for path in sorted(self.incoming_dir.glob("*.json")):
            if self.process_file(path):
                handled += 1
        return handled

    def process_file(self, path: Path) -> bool:
        """Run one event file through the handler and file it away.

        Returns False when the file was skipped or left for a later retry.
        """

        with self._process_lock:
            if not _is_event_file(path) or not path.exists():
                return False
            try:
                event = InboundEvent.from_file(path)
            except (EventError, OSError) as exc:
                if not path.exists():
                    return False
                LOGGER.error("Rejected event file %s: %s", path.name, exc)
                self._move(path, self.failed_dir, error=str(exc))
                self.failed += 1
                return True
            try:
                self._handler(event)
            except TaskFailed as exc:
                LOGGER.error("Event %s failed permanently: %s", path.name, exc)
                self._move(path, self.failed_dir, error=str(exc))
                self.failed += 1
                return True
            except Exception:
                LOGGER.exception("Event %s could not be processed; leaving it queued", path.name)
                return False
            self._move(path, self.done_dir)
            self.processed += 1
            return True

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "spool": str(self._spool_dir),
            "running": self.is_running,
            "processed": self.processed,
            "failed": self.failed,
            "queued": len(list(self.incoming_dir.glob("*.json"))),
        }

    def _on_file(self, path: Path) -> None:
        try:
            self.process_file(path)
        except Exception:  # pragma: no cover - keeps the observer thread alive
            LOGGER.exception("Spool handler failed for %s", path)

    def _move(self, path: Path, directory: Path, *, error: str | None = None) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / path.name
        if target.exists():
            target = directory / f"{path.stem}.{os.getpid()}.{threading.get_ident()}{path.suffix}"
        path.replace(target)
        if error is not None:
            target.with_name(f"{target.name}.error").write_text(error + "\n", encoding="utf-8")
        return target


class _SpoolEventHandler(FileSystemEventHandler):
    """Forward created or renamed-in event files to the worker."""

    def __init__(self, callback: Callable[[Path], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = _event_path(event.src_path)
        if _is_event_file(path):
            self._callback(path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        path = _event_path(event.dest_path)
        if _is_event_file(path):
            self._callback(path)


def _is_event_file(path: Path) -> bool:
    return path.suffix == ".json" and not path.name.startswith(".")


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["SpoolWorker"]
