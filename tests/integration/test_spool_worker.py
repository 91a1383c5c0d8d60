from __future__ import annotations

import json
import os
from pathlib import Path

from watchdog.observers.polling import PollingObserver

from jobtrail.spool import SpoolWorker


def _observer() -> PollingObserver:
    return PollingObserver(timeout=0.1)


def _publish(incoming: Path, name: str, payload: dict) -> None:
    """Write under a dotted name and rename, the way producers should."""

    staging = incoming / f".{name}.tmp"
    staging.write_text(json.dumps(payload), encoding="utf-8")
    os.replace(staging, incoming / name)


def _event(message_id: str, sender: str = "hr@stripe.com") -> dict:
    return {
        "userId": "user-1",
        "messageId": message_id,
        "email": {
            "from": sender,
            "subject": "Interview availability",
            "body": "Could you do Tuesday at 10am?",
            "receivedAt": "2024-03-02T10:00:00Z",
        },
    }


def test_worker_processes_backlog_and_new_files(
    tmp_path, pipeline, repository, fake_provider, add_application, collector
) -> None:
    stripe = add_application("Stripe")
    fake_provider.reply_with("INTERVIEW_REQUEST", 0.95)
    fake_provider.reply_with("UNRELATED", 0.99)

    def handler(event):
        result = pipeline.process(event)
        collector.add(result)
        return result

    worker = SpoolWorker(tmp_path / "spool", handler, observer_factory=_observer)
    worker.ensure_structure()
    _publish(worker.incoming_dir, "001.json", _event("backlog"))

    worker.start()
    try:
        assert collector.wait_for(1, timeout=10)
        _publish(worker.incoming_dir, "002.json", _event("live", sender="news@example.org"))
        assert collector.wait_for(2, timeout=10)
    finally:
        worker.stop()

    assert [result.action.value for result in collector.events] == ["processed", "unmatched"]
    assert repository.get_application(stripe.id).status.value == "INTERVIEWING"
    assert sorted(path.name for path in worker.done_dir.iterdir()) == ["001.json", "002.json"]
    assert list(worker.incoming_dir.glob("*.json")) == []
    assert worker.status_snapshot()["processed"] == 2


def test_redelivered_file_is_reported_as_duplicate(
    tmp_path, pipeline, fake_provider, add_application
) -> None:
    add_application("Stripe")
    fake_provider.reply_with("GENERIC_UPDATE", 0.8)
    results = []

    def handler(event):
        results.append(pipeline.process(event))

    worker = SpoolWorker(tmp_path / "spool", handler, observer_factory=_observer)
    worker.ensure_structure()
    _publish(worker.incoming_dir, "a.json", _event("same"))
    _publish(worker.incoming_dir, "b.json", _event("same"))

    assert worker.drain() == 2

    assert [result.action.value for result in results] == ["processed", "duplicate"]
    assert len(fake_provider.calls) == 1
