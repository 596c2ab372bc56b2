"""Terminal rendering and an interactive console for tutorscribe recordings."""

from __future__ import annotations

import shutil
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Optional

import typer

from ..config import (
    EnvironmentSettingError,
    Settings,
    clear_environment_setting,
    get_settings,
    list_environment_settings,
    update_environment_setting,
)
from ..core.audio.devices import format_device_table
from ..core.pipeline.orchestrator import (
    RecordingCancelledError,
    RecordingOptions,
    RecordingOrchestrator,
)
from ..core.pipeline.state import RecordingPhase, RecordingState, status_for
from ..data.storage import SessionStore
from ..logging import get_logger
from ..services.sinks import HandoffError

LOGGER = get_logger(__name__)

Echo = Callable[..., None]


class TranscriptRenderer:
    """State listener that prints status changes and the growing transcript.

    Final segments are printed once they can no longer grow, meaning a later
    segment exists or the recording is over. The live tail is redrawn in
    place on a single line.
    """

    def __init__(self, echo: Echo = typer.echo, show_live: bool = True) -> None:
        self.echo = echo
        self.show_live = show_live
        self._lock = threading.Lock()
        self._last_status: Optional[str] = None
        self._printed = 0
        self._live_line = ""

    def __call__(self, state: RecordingState) -> None:
        with self._lock:
            if state.phase is RecordingPhase.REQUESTING:
                self._printed = 0
            self._render_status(state)
            self._render_final(state)
            if self.show_live and state.phase in (RecordingPhase.LIVE, RecordingPhase.FINISHING):
                self._render_live(state)

    def _clear_live(self) -> None:
        if self._live_line:
            self.echo("\r" + " " * len(self._live_line) + "\r", nl=False)
            self._live_line = ""

    def _render_status(self, state: RecordingState) -> None:
        label, tone = status_for(state)
        if label == self._last_status:
            return
        self._last_status = label
        self._clear_live()
        suffix = ""
        if state.phase is RecordingPhase.FINISHED and state.duration_ms:
            suffix = f" ({state.duration_ms / 1000:.1f}s, {state.speaker_count} speakers)"
        self.echo(f"[{tone}] {label}{suffix}")

    def _render_final(self, state: RecordingState) -> None:
        segments = state.final_segments
        settled = state.phase not in (RecordingPhase.CONNECTING, RecordingPhase.LIVE, RecordingPhase.FINISHING)
        complete = len(segments) if settled else max(0, len(segments) - 1)
        if complete <= self._printed:
            return
        self._clear_live()
        for segment in segments[self._printed:complete]:
            self.echo(f"{segment.speaker}: {segment.text}")
        self._printed = complete

    def _render_live(self, state: RecordingState) -> None:
        if not state.live_segments:
            return
        tail = state.live_segments[-1]
        width = max(20, shutil.get_terminal_size((80, 20)).columns - 1)
        line = f"> {tail.speaker}: {tail.text}"
        if len(line) > width:
            line = "> ..." + line[-(width - 5):]
        if line == self._live_line:
            return
        self._clear_live()
        self.echo(line, nl=False)
        self._live_line = line


class RecordingConsoleUI:
    """Simple interactive console used to manage recordings from the terminal."""

    def __init__(
        self,
        orchestrator: RecordingOrchestrator,
        *,
        settings: Optional[Settings] = None,
        store: Optional[SessionStore] = None,
        include_system_audio: Optional[bool] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._orchestrator = orchestrator
        self._store = store
        self._include_system_audio = (
            self._settings.include_system_audio if include_system_audio is None else include_system_audio
        )
        self._messages: Deque[str] = deque()
        self._worker: Optional[threading.Thread] = None
        self._running = True
        self._orchestrator.machine.subscribe(TranscriptRenderer(echo=self._echo, show_live=False))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        """Enter the interactive UI loop."""

        self._info("Launching tutorscribe interactive console. Press Ctrl+C to exit.")
        try:
            while self._running:
                self._flush_messages()
                self._print_menu()
                try:
                    choice = input("Select option: ").strip().lower()
                except (KeyboardInterrupt, EOFError):
                    print()
                    choice = "q"
                self._handle_choice(choice)
        finally:
            self._shutdown()
            self._flush_messages()
            print("Goodbye!")

    # ------------------------------------------------------------------
    # Menu handlers
    # ------------------------------------------------------------------
    def _handle_choice(self, choice: str) -> None:
        if choice in {"1", "start", "s"}:
            self._start_recording()
        elif choice in {"2", "stop", "x"}:
            self._stop_recording()
        elif choice in {"3", "cancel", "c"}:
            self._cancel_recording()
        elif choice in {"4", "gain", "g"}:
            self._adjust_gain()
        elif choice in {"5", "sessions", "list", "l"}:
            self._list_sessions()
        elif choice in {"6", "devices", "d"}:
            self._show_devices()
        elif choice in {"7", "env", "config", "e"}:
            self._configure_environment()
        elif choice in {"q", "quit", "exit"}:
            self._running = False
        else:
            self._info("Unknown option. Please choose one of the menu entries.")

    def _start_recording(self) -> None:
        if not self._orchestrator.machine.controls.start_enabled:
            self._info("A recording is already in progress. Stop it before starting a new one.")
            return
        self._include_system_audio = self._prompt_bool("Include system audio", self._include_system_audio)
        options = self._orchestrator.default_options()
        options = RecordingOptions(
            include_system_audio=self._include_system_audio,
            mic_gain=options.mic_gain,
            system_gain=options.system_gain,
        )
        self._run_in_background(lambda: self._orchestrator.start(options), "start")

    def _stop_recording(self) -> None:
        if not self._orchestrator.machine.controls.stop_enabled:
            self._info("No live recording to stop.")
            return
        self._run_in_background(self._orchestrator.stop, "stop")

    def _cancel_recording(self) -> None:
        if not self._orchestrator.machine.controls.cancel_enabled:
            self._info("Nothing to cancel.")
            return
        self._orchestrator.cancel()
        self._info("Recording discarded.")

    def _adjust_gain(self) -> None:
        for label, setter in (
            ("Microphone", self._orchestrator.set_mic_gain),
            ("System", self._orchestrator.set_system_gain),
        ):
            value = input(f"{label} gain (leave empty to keep): ").strip()
            if not value:
                continue
            try:
                setter(float(value))
            except ValueError as exc:
                self._error(f"Invalid {label.lower()} gain: {exc}")

    def _list_sessions(self) -> None:
        if self._store is None:
            self._info("Sessions are not stored locally with the current configuration.")
            return
        sessions = self._store.list_sessions(limit=10)
        if not sessions:
            self._info("No sessions stored yet.")
            return
        print()
        print("Recent sessions:")
        for session in sessions:
            timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(session.created_at))
            duration = f"{session.duration_ms / 1000:.1f}s"
            print(f"- {session.id} | {timestamp} | {session.speaker_count} speakers ({duration})")

    def _show_devices(self) -> None:
        print()
        print(format_device_table())

    def _configure_environment(self) -> None:
        while True:
            settings = list(list_environment_settings(self._settings))
            print()
            print("Environment configuration:")
            for idx, entry in enumerate(settings, start=1):
                print(
                    f"{idx}) {entry.env_name} = {self._format_env_value(entry.value)}"
                    f" (default: {self._format_env_value(entry.default)})"
                )
            print("b) Back to main menu")

            choice = input("Select variable to edit: ").strip().lower()
            if choice in {"b", "back", "q", "exit"}:
                return

            try:
                index = int(choice)
            except ValueError:
                self._info("Invalid selection. Choose a number from the list or 'b' to go back.")
                continue
            if not 1 <= index <= len(settings):
                self._info("Selection out of range. Try again.")
                continue

            selected = settings[index - 1]
            new_value = input(
                f"Enter new value for {selected.env_name} (leave empty to reset to default): "
            ).strip()
            try:
                if new_value:
                    self._settings = update_environment_setting(selected.field, new_value)
                    verb = "updated"
                else:
                    self._settings = clear_environment_setting(selected.field)
                    verb = "reset"
            except EnvironmentSettingError as exc:
                self._error(f"Failed to update {selected.env_name}: {exc}")
                continue
            current = getattr(self._settings, selected.field)
            self._info(f"{selected.env_name} {verb}. Current value: {self._format_env_value(current)}.")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run_in_background(self, action: Callable[[], Any], label: str) -> None:
        if self._worker is not None and self._worker.is_alive():
            self._info("Still busy with the previous request.")
            return

        def _target() -> None:
            try:
                result = action()
            except RecordingCancelledError:
                self._info("Recording start cancelled.")
            except HandoffError as exc:
                self._warning(str(exc))
            except Exception as exc:  # pragma: no cover - runtime behaviour
                LOGGER.exception("Recording %s failed: %s", label, exc)
                self._error(f"Recording {label} failed: {exc}")
            else:
                if label == "stop" and result:
                    self._info(f"Session saved as {result}")

        self._worker = threading.Thread(target=_target, name=f"tutorscribe-console-{label}", daemon=True)
        self._worker.start()

    def _prompt_bool(self, label: str, current: bool) -> bool:
        suffix = "Y/n" if current else "y/N"
        value = input(f"{label}? ({suffix}): ").strip().lower()
        if not value:
            return current
        if value in {"y", "yes"}:
            return True
        if value in {"n", "no"}:
            return False
        self._info("Invalid response. Keeping previous value.")
        return current

    def _format_env_value(self, value: Any) -> str:
        if value is None:
            return "(unset)"
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, list):
            return ",".join(str(item) for item in value)
        return str(value)

    def _shutdown(self) -> None:
        if self._orchestrator.phase is RecordingPhase.LIVE:
            try:
                self._orchestrator.stop()
            except HandoffError as exc:
                self._warning(str(exc))
        elif self._orchestrator.machine.controls.cancel_enabled:
            self._orchestrator.cancel()
        self._orchestrator.wait_until_stopped()
        if self._worker is not None:
            self._worker.join(timeout=self._settings.stop_timeout_seconds)

    def _print_menu(self) -> None:
        print()
        label, _tone = status_for(self._orchestrator.state)
        print(f"Status: {label}")
        print("1) Start recording")
        print("2) Stop and save")
        print("3) Cancel recording")
        print("4) Adjust gain")
        print("5) List stored sessions")
        print("6) Show audio devices")
        print("7) Configure environment variables")
        print("q) Quit")

    def _echo(self, message: str = "", nl: bool = True) -> None:
        if nl:
            self._messages.append(message)

    def _info(self, message: str) -> None:
        self._messages.append(f"[info] {message}")

    def _warning(self, message: str) -> None:
        self._messages.append(f"[warning] {message}")

    def _error(self, message: str) -> None:
        self._messages.append(f"[error] {message}")

    def _flush_messages(self) -> None:
        while self._messages:
            print(self._messages.popleft())


__all__ = ["RecordingConsoleUI", "TranscriptRenderer"]
