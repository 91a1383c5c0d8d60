"""Jobtrail command-line interface."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from . import __version__
from .config import Config, ConfigError, load_config, resolve_config_path
from .events import EventError, InboundEvent
from .logging import configure_logging
from .repository import RepositoryError, TaskRow, TaskStatus
from .review import ReviewError
from .runtime import Runtime, WorkerRuntime, build_runtime
from .tasks import TaskFailed
from .types import ApplicationStatus, EmailCategory, JobType, LocationType

app = typer.Typer(help="Track job applications from forwarded email.")
review_app = typer.Typer(help="Resolve emails that matched no application.")
app.add_typer(review_app, name="review")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None


@app.callback()
def _jobtrail(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env JOBTRAIL_CONFIG or ~/.config/jobtrail/config.yaml).",
        ),
    ] = None,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved)


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the database tables."""

    runtime = _runtime(ctx)
    typer.echo(f"Database ready: {runtime.config.database_url}")


@app.command("add-application")
def add_application(
    ctx: typer.Context,
    user: Annotated[str, typer.Option("--user", help="Owner of the application.")],
    company: Annotated[str, typer.Option("--company", help="Company name.")],
    title: Annotated[str, typer.Option("--title", help="Job title.")],
    status: Annotated[
        ApplicationStatus, typer.Option("--status", case_sensitive=False)
    ] = ApplicationStatus.APPLIED,
    job_type: Annotated[
        JobType, typer.Option("--job-type", case_sensitive=False)
    ] = JobType.FULL_TIME,
    location: Annotated[str | None, typer.Option("--location")] = None,
    location_type: Annotated[
        LocationType | None, typer.Option("--location-type", case_sensitive=False)
    ] = None,
    url: Annotated[str | None, typer.Option("--url", help="Job posting URL.")] = None,
    source: Annotated[str, typer.Option("--source")] = "manual",
) -> None:
    """Start tracking an application."""

    runtime = _runtime(ctx)
    row = runtime.repository.add_application(
        user_id=user,
        company_name=company,
        job_title=title,
        status=status,
        job_type=job_type,
        location=location,
        location_type=location_type,
        job_url=url,
        source=source,
    )
    typer.echo(row.id)


@app.command()
def process(
    ctx: typer.Context,
    event_file: Annotated[str, typer.Argument(help="Event JSON file, or '-' for stdin.")],
) -> None:
    """Run the full pipeline for one inbound email event."""

    runtime = _runtime(ctx)
    event = _read_event(event_file)
    try:
        result = runtime.pipeline.process(event)
    except TaskFailed as exc:
        _fail(f"Processing failed after retries: {exc.cause}", exc)
    _echo_json(result.to_dict())


@app.command()
def match(
    ctx: typer.Context,
    event_file: Annotated[str, typer.Argument(help="Event JSON file, or '-' for stdin.")],
) -> None:
    """Show which application an event would match, without recording anything."""

    runtime = _runtime(ctx)
    event = _read_event(event_file)
    result = runtime.matcher.match(event.user_id, event.email)
    _echo_json(result.to_dict())


@app.command()
def classify(
    ctx: typer.Context,
    event_file: Annotated[str, typer.Argument(help="Event JSON file, or '-' for stdin.")],
) -> None:
    """Classify an event's email without recording anything."""

    runtime = _runtime(ctx)
    event = _read_event(event_file)
    classification = runtime.classifier.classify(event.email)
    _echo_json(classification.to_dict())


@review_app.command("list")
def review_list(
    ctx: typer.Context,
    user: Annotated[str, typer.Option("--user", help="Owner whose queue to show.")],
) -> None:
    """List pending unmatched emails with their suggestions."""

    runtime = _runtime(ctx)
    items = runtime.review.pending(user)
    if not items:
        typer.echo("No emails awaiting review.")
        return
    for item in items:
        category = item.email.classification.value if item.email.classification else "-"
        typer.echo(f"{item.entry.id}  {item.email.from_address}  {item.email.subject}")
        typer.echo(f"    classification: {category}")
        for application in item.suggestions:
            typer.echo(
                f"    suggestion: {application.id}  {application.company_name}"
                f" ({application.status.value})"
            )


@review_app.command("link")
def review_link(
    ctx: typer.Context,
    entry: Annotated[str, typer.Argument(help="Review entry id.")],
    application: Annotated[str, typer.Argument(help="Application id.")],
    apply_classification: Annotated[
        bool,
        typer.Option(
            "--apply/--no-apply",
            help="Move the status when the email's classification allows it.",
        ),
    ] = True,
) -> None:
    """Attach a queued email to an application."""

    runtime = _runtime(ctx)
    try:
        history = runtime.review.link(
            entry, application, apply_classification=apply_classification
        )
    except ReviewError as exc:
        _fail(str(exc), exc)
    from_status = history.from_status.value if history.from_status else "-"
    typer.echo(f"Linked; status {from_status} -> {history.to_status.value}")


@review_app.command("dismiss")
def review_dismiss(
    ctx: typer.Context,
    entry: Annotated[str, typer.Argument(help="Review entry id.")],
) -> None:
    """Drop a queued email without linking it."""

    runtime = _runtime(ctx)
    try:
        runtime.review.dismiss(entry)
    except ReviewError as exc:
        _fail(str(exc), exc)
    typer.echo("Dismissed.")


@review_app.command("flagged")
def review_flagged(
    ctx: typer.Context,
    user: Annotated[str, typer.Option("--user")],
) -> None:
    """List emails whose automatic outcome asks for confirmation."""

    runtime = _runtime(ctx)
    items = runtime.review.flagged(user)
    if not items:
        typer.echo("Nothing flagged.")
        return
    for item in items:
        email = item.email
        if item.history is not None:
            from_status = item.history.from_status.value if item.history.from_status else "-"
            change = f"{from_status} -> {item.history.to_status.value}"
        else:
            change = "unchanged"
        typer.echo(
            f"{email.id}  {email.application_id or '-'}  {change}  "
            f"{email.subject}  {email.review_reason or ''}"
        )


@review_app.command("ack")
def review_ack(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Email record id.")],
) -> None:
    """Clear the review flag on an email."""

    runtime = _runtime(ctx)
    try:
        runtime.review.acknowledge(email)
    except ReviewError as exc:
        _fail(str(exc), exc)
    typer.echo("Acknowledged.")


@app.command("set-status")
def set_status(
    ctx: typer.Context,
    application: Annotated[str, typer.Argument(help="Application id.")],
    status: Annotated[ApplicationStatus, typer.Argument(case_sensitive=False)],
    reason: Annotated[str | None, typer.Option("--reason")] = None,
) -> None:
    """Set an application's status by hand."""

    runtime = _runtime(ctx)
    try:
        history = runtime.review.set_status(application, status, reason=reason)
    except ReviewError as exc:
        _fail(str(exc), exc)
    if history is None:
        typer.echo(f"Status already {status.value}.")
        return
    typer.echo(f"Status set to {status.value}.")


@app.command()
def override(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Email record id.")],
    category: Annotated[EmailCategory, typer.Argument(case_sensitive=False)],
) -> None:
    """Correct an email's classification."""

    runtime = _runtime(ctx)
    try:
        runtime.review.override_classification(email, category)
    except ReviewError as exc:
        _fail(str(exc), exc)
    typer.echo(f"Classification set to {category.value}.")


@app.command()
def timeline(
    ctx: typer.Context,
    application: Annotated[str, typer.Argument(help="Application id.")],
) -> None:
    """Show an application's status history, newest first."""

    runtime = _runtime(ctx)
    try:
        entries = runtime.review.timeline(application)
    except ReviewError as exc:
        _fail(str(exc), exc)
    for entry in entries:
        history = entry.history
        from_status = history.from_status.value if history.from_status else "-"
        flag = " [review]" if history.needs_review else ""
        line = (
            f"{history.created_at:%Y-%m-%d %H:%M}  {from_status} -> {history.to_status.value}"
            f"  ({history.trigger_type.value}){flag}"
        )
        if entry.email is not None:
            line += f"  {entry.email.subject}"
        typer.echo(line)


@app.command()
def tasks(
    ctx: typer.Context,
    failed: Annotated[bool, typer.Option("--failed", help="Only show failed tasks.")] = False,
) -> None:
    """List pipeline tasks that still need attention."""

    runtime = _runtime(ctx)
    rows = runtime.runner.failed() if failed else runtime.runner.pending() + runtime.runner.failed()
    if not rows:
        typer.echo("No outstanding tasks.")
        return
    for row in rows:
        typer.echo(_format_task(row))


@app.command()
def resume(
    ctx: typer.Context,
    task_key: Annotated[str | None, typer.Argument(help="Task key to resume.")] = None,
    all_failed: Annotated[
        bool, typer.Option("--all-failed", help="Resume every failed task.")
    ] = False,
) -> None:
    """Continue a failed or interrupted task from its last completed step."""

    runtime = _runtime(ctx)
    if all_failed:
        keys = [row.task_key for row in runtime.runner.failed()]
    elif task_key:
        keys = [task_key]
    else:
        _fail("Provide a task key or --all-failed.")
    exit_code = 0
    for key in keys:
        try:
            result = runtime.pipeline.resume(key)
        except LookupError as exc:
            _fail(str(exc), exc)
        except TaskFailed as exc:
            typer.secho(f"{key}: failed again: {exc.cause}", fg=typer.colors.RED, err=True)
            exit_code = 1
            continue
        typer.echo(f"{key}: {result.action.value}")
    if exit_code:
        raise typer.Exit(exit_code)


@app.command()
def worker(
    ctx: typer.Context,
    spool: Annotated[
        Path | None,
        typer.Option("--spool", help="Spool directory (defaults to <root>/spool)."),
    ] = None,
    once: Annotated[
        bool, typer.Option("--once", help="Process waiting files and exit.")
    ] = False,
) -> None:
    """Process event files dropped into the spool directory."""

    runtime = _runtime(ctx)
    spool_worker = runtime.spool_worker(spool.expanduser() if spool else None)
    if once:
        handled = spool_worker.drain()
        typer.echo(f"Processed {handled} event file(s).")
        return
    WorkerRuntime(
        spool_worker, redrive_interval=runtime.config.pipeline.redrive_interval
    ).run()


@app.command()
def status(ctx: typer.Context) -> None:
    """Display configuration and database summary."""

    state = _state(ctx)
    runtime = _runtime(ctx)
    config = runtime.config
    try:
        counts = runtime.repository.counts()
    except RepositoryError as exc:
        _fail(f"Database unavailable: {exc}", exc)

    typer.echo("→ Jobtrail Status")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Config path: {resolve_config_path(state.config_path)}")
    typer.echo(f"Root dir: {config.root_dir}")
    typer.echo(f"Database: {config.database_url}")
    typer.echo(f"Classifier: {config.classifier.provider} ({config.classifier.model})")
    typer.echo("")
    typer.echo(f"Applications: {counts['applications']}")
    typer.echo(f"Emails: {counts['emails']}")
    typer.echo(f"Awaiting review: {counts['unmatched_pending']}")
    typer.echo(f"History entries: {counts['history']}")
    typer.echo(f"Failed tasks: {counts['tasks_failed']}")
    typer.echo(f"Classification log: {runtime.store.classification_log_path}")


@app.command("purge-cache")
def purge_cache(ctx: typer.Context) -> None:
    """Remove expired classification cache entries."""

    runtime = _runtime(ctx)
    removed = runtime.cache.purge_expired()
    typer.echo(f"Removed {removed} expired cache entr{'y' if removed == 1 else 'ies'}.")


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.find_object(CLIState)
    if state is None:
        state = CLIState(config_path=None)
    return state


def _runtime(ctx: typer.Context) -> Runtime:
    state = _state(ctx)
    config = _load_config(state.config_path)
    configure_logging(config.logging, config.root_dir)
    try:
        runtime = build_runtime(config)
    except RepositoryError as exc:
        _fail(f"Database unavailable: {exc}", exc)
    ctx.call_on_close(runtime.close)
    return runtime


def _load_config(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_failure(exc)


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def _fail(message: str, exc: BaseException | None = None) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1) from exc


def _read_event(source: str) -> InboundEvent:
    try:
        if source == "-":
            return InboundEvent.from_payload(json.loads(sys.stdin.read()))
        path = Path(source).expanduser()
        if not path.is_file():
            _fail(f"Event file not found: {path}")
        return InboundEvent.from_file(path)
    except json.JSONDecodeError as exc:
        _fail(f"Event is not valid JSON: {exc}", exc)
    except EventError as exc:
        _fail(f"Invalid event: {exc}", exc)


def _format_task(row: TaskRow) -> str:
    line = f"{row.task_key}  {row.status.value}  attempts={row.attempts}"
    if row.cursor:
        line += f"  after={row.cursor}"
    if row.status is TaskStatus.FAILED and row.last_error:
        line += f"  error={row.last_error}"
    return line


def _echo_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
