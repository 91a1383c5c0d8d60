"""Wiring of configured components and the long-running spool worker lifecycle."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import FrameType
from typing import Any

from .classifiers import (
    AnthropicProvider,
    ClassificationCache,
    EmailClassifier,
    ModelProvider,
    NullProvider,
)
from .config import Config
from .matching import DomainAliases, Matcher
from .pipeline import Pipeline
from .repository import Repository
from .review import ReviewQueue
from .spool import SpoolWorker
from .store import Store
from .tasks import TaskRunner
from .transitions import TransitionEngine

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

LOGGER = logging.getLogger(__name__)
SIG_USR1 = getattr(signal, "SIGUSR1", None)


def build_provider(config: Config) -> ModelProvider:
    settings = config.classifier
    if settings.provider == "none":
        return NullProvider()
    api_key = settings.api_key
    if not api_key:
        LOGGER.warning(
            "%s is not set; emails will receive the fallback classification",
            settings.api_key_env,
        )
        return NullProvider()
    return AnthropicProvider(
        api_key=api_key,
        model=settings.model,
        max_tokens=settings.max_tokens,
    )


def build_classifier(
    config: Config,
    store: Store,
    *,
    provider: ModelProvider | None = None,
    cache: ClassificationCache | None = None,
) -> EmailClassifier:
    settings = config.classifier
    return EmailClassifier(
        provider or build_provider(config),
        cache=cache or ClassificationCache(store, ttl_days=settings.cache_ttl_days),
        store=store,
        timeout=settings.timeout,
        body_chars=settings.body_chars,
    )


@dataclass
class Runtime:
    """All collaborators needed to process events for one configuration."""

    config: Config
    repository: Repository
    store: Store
    cache: ClassificationCache
    matcher: Matcher
    classifier: EmailClassifier
    engine: TransitionEngine
    runner: TaskRunner
    pipeline: Pipeline
    review: ReviewQueue

    def spool_worker(self, spool_dir: Path | None = None) -> SpoolWorker:
        return SpoolWorker(spool_dir or self.config.spool_dir, self.pipeline.process)

    def close(self) -> None:
        self.store.close()
        self.repository.engine.dispose()


def build_runtime(
    config: Config,
    *,
    provider: ModelProvider | None = None,
    sleep: Callable[[float], None] = time.sleep,
    create_tables: bool = True,
) -> Runtime:
    """Construct the repository, classifier and pipeline described by ``config``."""

    repository = Repository(config.database_url)
    if create_tables:
        repository.create_all()
    store = Store(config.root_dir)
    engine = TransitionEngine()
    matcher = Matcher(repository, aliases=DomainAliases(config.domain_aliases))
    cache = ClassificationCache(store, ttl_days=config.classifier.cache_ttl_days)
    classifier = build_classifier(config, store, provider=provider, cache=cache)
    settings = config.pipeline
    runner = TaskRunner(
        repository,
        max_attempts=settings.max_attempts,
        base_delay=settings.base_delay,
        max_delay=settings.max_delay,
        sleep=sleep,
    )
    pipeline = Pipeline(
        repository,
        matcher,
        classifier,
        engine,
        runner,
        suggestion_limit=settings.suggestion_limit,
    )
    return Runtime(
        config=config,
        repository=repository,
        store=store,
        cache=cache,
        matcher=matcher,
        classifier=classifier,
        engine=engine,
        runner=runner,
        pipeline=pipeline,
        review=ReviewQueue(repository, engine),
    )


class WorkerRuntime:
    """Run a spool worker until SIGINT/SIGTERM; SIGUSR1 logs a status snapshot.

    Every ``redrive_interval`` seconds the spool is drained again so files left
    queued by a failed attempt are retried without a new filesystem event.
    """

    def __init__(
        self,
        worker: SpoolWorker,
        *,
        poll_interval: float = 0.5,
        redrive_interval: float = 30.0,
    ) -> None:
        self._worker = worker
        self._poll_interval = poll_interval
        self._redrive_interval = redrive_interval
        self._stop_event = threading.Event()
        self._status_event = threading.Event()

    def run(self) -> None:
        with self._signals(), _started(self._worker):
            try:
                self._serve()
            except KeyboardInterrupt:
                LOGGER.info("Interrupted; stopping spool worker.")

    def stop(self) -> None:
        self._stop_event.set()

    def _serve(self) -> None:
        next_drain = time.monotonic() + self._redrive_interval
        while not self._stop_event.is_set():
            if self._status_event.is_set():
                self._status_event.clear()
                self._dump_status()
            if time.monotonic() >= next_drain:
                handled = self._worker.drain()
                if handled:
                    LOGGER.info("Re-drained %d queued event file(s).", handled)
                next_drain = time.monotonic() + self._redrive_interval
            self._stop_event.wait(self._poll_interval)

    @contextmanager
    def _signals(self) -> Iterator[None]:
        """Route shutdown and status signals here, restoring prior handlers on exit."""

        signums = [signal.SIGINT, signal.SIGTERM]
        if SIG_USR1 is not None:
            signums.append(SIG_USR1)
        previous: dict[int, SignalHandler] = {}
        try:
            for signum in signums:
                try:
                    previous[signum] = signal.signal(signum, self._handle_signal)
                except ValueError:
                    # Handlers can only be installed from the main thread.
                    break
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if SIG_USR1 is not None and signum == SIG_USR1:
            self._status_event.set()
            return
        LOGGER.info("Received %s; shutting down.", signal.Signals(signum).name)
        self._stop_event.set()

    def _dump_status(self) -> None:
        snapshot = self._worker.status_snapshot()
        LOGGER.info(
            "Spool worker status: running=%s processed=%s failed=%s queued=%s",
            snapshot["running"],
            snapshot["processed"],
            snapshot["failed"],
            snapshot["queued"],
        )


@contextmanager
def _started(worker: SpoolWorker) -> Iterator[SpoolWorker]:
    worker.start()
    try:
        yield worker
    finally:
        worker.stop()


__all__ = ["Runtime", "WorkerRuntime", "build_classifier", "build_provider", "build_runtime"]
