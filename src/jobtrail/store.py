"""On-disk state under the Jobtrail root: cached objects and the classification log."""

from __future__ import annotations

import json
import logging
import os
import pickle
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from itertools import count
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .types import Classification

LOGGER = logging.getLogger(__name__)
DEFAULT_NAMESPACE = "global"
ENTRY_SUFFIX = ".pkl"


class Store:
    """Pickled objects grouped by namespace, plus an optional JSON-lines audit log.

    Layout::

        <root>/data/<namespace>/<key>.pkl
        <root>/logs/classifications.log
    """

    def __init__(self, root_dir: Path, *, write_classification_log: bool = True) -> None:
        self.root_dir = root_dir.expanduser()
        self._data_dir = self.root_dir / "data"
        log_dir = self.root_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        self.classification_log_path = log_dir / "classifications.log"
        self._audit = (
            ClassificationLogger(self.classification_log_path)
            if write_classification_log
            else None
        )

    def namespace_dir(self, namespace: str | None = None) -> Path:
        return self._data_dir / (namespace or DEFAULT_NAMESPACE)

    def get(self, key: str, *, namespace: str | None = None) -> Any | None:
        """Return the stored object, or None when absent or unreadable.

        Unreadable entries are renamed aside so the next ``set`` starts clean.
        """

        path = self._entry(key, namespace)
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return pickle.loads(payload)
        except Exception:  # pragma: no cover - any unpickling failure
            LOGGER.warning("Unreadable entry %s; moving it aside", path, exc_info=True)
            _set_aside(path)
            return None

    def set(self, key: str, value: Any, *, namespace: str | None = None) -> Path:
        path = self._entry(key, namespace)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, staging = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                pickle.dump(value, handle, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(staging, path)
        except BaseException:
            Path(staging).unlink(missing_ok=True)
            raise
        return path

    def delete(self, key: str, *, namespace: str | None = None) -> bool:
        try:
            self._entry(key, namespace).unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self, *, namespace: str | None = None) -> list[str]:
        directory = self.namespace_dir(namespace)
        if not directory.is_dir():
            return []
        return sorted(path.stem for path in directory.glob(f"*{ENTRY_SUFFIX}"))

    def log_classification(
        self,
        classification: Classification,
        *,
        cache_key: str,
        cached: bool,
        from_address: str | None = None,
        subject: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.append(
            ClassificationRecord.from_classification(
                classification,
                cache_key=cache_key,
                cached=cached,
                from_address=from_address,
                subject=subject,
            )
        )

    def close(self) -> None:
        if self._audit is not None:
            self._audit.close()

    def _entry(self, key: str, namespace: str | None) -> Path:
        return self.namespace_dir(namespace) / f"{key}{ENTRY_SUFFIX}"


def _set_aside(path: Path) -> None:
    for index in count(1):
        name = f"{path.name}.corrupt" if index == 1 else f"{path.name}.corrupt{index}"
        candidate = path.with_name(name)
        if not candidate.exists():
            path.replace(candidate)
            return


@dataclass(frozen=True)
class ClassificationRecord:
    """One line of the classification log."""

    timestamp: datetime
    cache_key: str
    cached: bool
    from_address: str | None
    subject: str | None
    category: str
    confidence: float
    reasoning: str

    @classmethod
    def from_classification(
        cls,
        classification: Classification,
        *,
        cache_key: str,
        cached: bool,
        from_address: str | None = None,
        subject: str | None = None,
        timestamp: datetime | None = None,
    ) -> ClassificationRecord:
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            cache_key=cache_key,
            cached=cached,
            from_address=from_address,
            subject=subject,
            category=classification.category.value,
            confidence=float(classification.confidence),
            reasoning=classification.reasoning,
        )

    def to_json(self) -> str:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return json.dumps(payload, separators=(",", ":"))


class ClassificationLogger:
    """Writes records as JSON lines through a size-rotated file handler."""

    def __init__(self, path: Path, *, max_bytes: int = 5_000_000, backups: int = 3) -> None:
        self.path = path
        self._handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backups,
            encoding="utf-8",
            delay=True,
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))

    def append(self, record: ClassificationRecord) -> None:
        self._handler.handle(logging.makeLogRecord({"msg": record.to_json()}))

    def close(self) -> None:
        self._handler.close()


__all__ = ["ClassificationLogger", "ClassificationRecord", "Store"]
