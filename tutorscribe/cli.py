"""Typer CLI entry point for tutorscribe."""

from __future__ import annotations

import time
from typing import Optional

import typer

from .config import (
    EnvironmentSettingError,
    Settings,
    clear_environment_setting,
    get_settings,
    list_environment_settings,
    update_environment_setting,
)
from .core.audio.devices import format_device_table
from .core.pipeline.orchestrator import (
    RecordingCancelledError,
    RecordingOptions,
    RecordingOrchestrator,
)
from .core.pipeline.state import RecordingPhase
from .data.backup import LocalBackup, flush_upload_queue, recover_draft
from .data.storage import SessionStore
from .logging import configure_logging, get_logger
from .services.factory import (
    ServiceConfigurationError,
    resolve_client_factory,
    resolve_credentials,
    resolve_sink,
)
from .services.sinks import HandoffError, SessionStoreSink
from .ui.console import RecordingConsoleUI, TranscriptRenderer

app = typer.Typer(help="tutorscribe lesson recorder")
LOGGER = get_logger(__name__)


def _build_orchestrator(transcription: str, settings: Optional[Settings] = None) -> RecordingOrchestrator:
    settings = settings or get_settings()
    try:
        client_factory = resolve_client_factory(transcription)
    except ServiceConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return RecordingOrchestrator(
        credentials=resolve_credentials(transcription, settings),
        client_factory=client_factory,
        sink=resolve_sink(settings),
        backup=LocalBackup(settings.backup_dir),
        settings=settings,
    )


def _wait_until_done(orchestrator: RecordingOrchestrator, duration: Optional[float]) -> None:
    started = time.monotonic()
    while orchestrator.phase is RecordingPhase.LIVE:
        if duration is not None and time.monotonic() - started >= duration:
            break
        time.sleep(0.1)


@app.command()
def devices() -> None:
    """List available audio input devices."""

    configure_logging()
    typer.echo(format_device_table())


@app.command()
def record(
    system_audio: Optional[bool] = typer.Option(
        None, "--system-audio/--no-system-audio", help="Mix in system audio from a loopback device"
    ),
    mic_gain: Optional[float] = typer.Option(None, help="Initial microphone gain"),
    system_gain: Optional[float] = typer.Option(None, help="Initial system audio gain"),
    duration: Optional[float] = typer.Option(None, help="Duration in seconds; default waits for Ctrl+C"),
    transcription: str = typer.Option("soniox", help="Transcription backend: soniox/dummy"),
    live: bool = typer.Option(True, "--live/--no-live", help="Show the live transcript line"),
) -> None:
    """Record a lesson, streaming it to the transcription service."""

    configure_logging()
    settings = get_settings()
    orchestrator = _build_orchestrator(transcription, settings)
    orchestrator.machine.subscribe(TranscriptRenderer(show_live=live))

    defaults = orchestrator.default_options()
    options = RecordingOptions(
        include_system_audio=defaults.include_system_audio if system_audio is None else system_audio,
        mic_gain=defaults.mic_gain if mic_gain is None else mic_gain,
        system_gain=defaults.system_gain if system_gain is None else system_gain,
    )

    try:
        orchestrator.start(options)
    except RecordingCancelledError:
        typer.echo("Recording cancelled.")
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"Failed to start recording: {exc}", err=True)
        raise typer.Exit(code=1)

    try:
        _wait_until_done(orchestrator, duration)
    except KeyboardInterrupt:
        LOGGER.info("Recording interrupted by user; finishing up")

    try:
        session_id = orchestrator.stop()
    except HandoffError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    if session_id is None:
        # Audio ended on its own; the stop is running on the mixer thread.
        orchestrator.wait_until_stopped()
        session_id = orchestrator.last_session_id

    state = orchestrator.state
    if state.phase is RecordingPhase.ERROR:
        typer.echo(f"Recording failed: {state.error_message}", err=True)
        raise typer.Exit(code=1)
    if session_id:
        typer.echo(f"Session saved as {session_id}")


@app.command()
def console(
    transcription: str = typer.Option("soniox", help="Transcription backend: soniox/dummy"),
) -> None:
    """Launch the interactive console."""

    configure_logging()
    settings = get_settings()
    orchestrator = _build_orchestrator(transcription, settings)
    store = orchestrator.sink.store if isinstance(orchestrator.sink, SessionStoreSink) else None
    RecordingConsoleUI(orchestrator, settings=settings, store=store).run()


@app.command()
def sessions(limit: int = typer.Option(10, help="Number of sessions to show")) -> None:
    """List stored sessions."""

    configure_logging()
    store = SessionStore(get_settings().database_path)
    store.initialize()
    saved = store.list_sessions(limit=limit)
    if not saved:
        typer.echo("No sessions stored yet.")
        return
    for session in saved:
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(session.created_at))
        typer.echo(
            f"{session.id} | {timestamp} | {session.duration_ms / 1000:.1f}s | "
            f"{session.speaker_count} speakers | {session.word_count} words"
        )


@app.command()
def recover() -> None:
    """Save the autosaved draft of an interrupted recording."""

    configure_logging()
    settings = get_settings()
    try:
        session_id = recover_draft(LocalBackup(settings.backup_dir), resolve_sink(settings))
    except Exception as exc:
        typer.echo(f"{exc} - saved locally and will retry", err=True)
        raise typer.Exit(code=1)
    if session_id is None:
        typer.echo("No recording draft to recover.")
        return
    typer.echo(f"Recovered draft saved as {session_id}")


@app.command("flush-queue")
def flush_queue() -> None:
    """Retry uploads that failed earlier."""

    configure_logging()
    settings = get_settings()
    backup = LocalBackup(settings.backup_dir)
    pending = len(backup.get_queue())
    if not pending:
        typer.echo("Upload queue is empty.")
        return
    uploaded = flush_upload_queue(backup, resolve_sink(settings))
    typer.echo(f"Uploaded {uploaded} of {pending} queued recordings.")


def _format_env_value(value) -> str:
    if value is None:
        return "(unset)"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(str(item) for item in value)
    return str(value)


@app.command()
def env() -> None:
    """Show environment-backed settings."""

    for entry in list_environment_settings():
        typer.echo(
            f"{entry.env_name} = {_format_env_value(entry.value)}"
            f" (default: {_format_env_value(entry.default)})"
        )


@app.command("env-set")
def env_set(field: str, value: str) -> None:
    """Persist a setting override to .env."""

    try:
        settings = update_environment_setting(field, value)
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"{field} = {_format_env_value(getattr(settings, field))}")


@app.command("env-clear")
def env_clear(field: str) -> None:
    """Remove a setting override from .env."""

    try:
        settings = clear_environment_setting(field)
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"{field} reset to {_format_env_value(getattr(settings, field))}")


if __name__ == "__main__":  # pragma: no cover
    app()
