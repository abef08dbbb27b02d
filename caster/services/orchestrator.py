from __future__ import annotations

import asyncio
import itertools
import logging
import re
import traceback
from collections import deque
from enum import Enum
from pathlib import Path

from caster.config import ActionSettings, build_title
from caster.constants import (
    PROGRESS_FRAMES,
    PROGRESS_INTERVAL_S,
    RESTORE_DELAY_FAILURE_S,
    RESTORE_DELAY_SUCCESS_S,
    liveness_interval_s,
)
from caster.services.datagram import DatagramDispatcher
from caster.services.display import Display, SideEffectResult, run_side_effect
from caster.services.images import image_from_file
from caster.services.log_store import LogStore
from caster.services.stream import StreamDispatcher
from caster.services.timers import TimerRegistry
from caster.types import (
    Busy,
    DispatchFailure,
    DispatchOutcome,
    DispatchRequest,
    LogLevel,
    OrchestratorResult,
    Transport,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

# Absolute (POSIX or drive-letter), ./, ../ and ~/ payloads are read from disk
FILE_PATH_RE = re.compile(r"^(?:[A-Za-z]:[/\\]|/|~[/\\]|\.{1,2}[/\\])")

_PY_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class OrchestratorState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    IN_FLIGHT = "in_flight"
    COMPLETING = "completing"


_TRANSITIONS: dict[OrchestratorState, set[OrchestratorState]] = {
    OrchestratorState.IDLE: {OrchestratorState.VALIDATING},
    OrchestratorState.VALIDATING: {OrchestratorState.IDLE, OrchestratorState.IN_FLIGHT},
    OrchestratorState.IN_FLIGHT: {OrchestratorState.COMPLETING},
    OrchestratorState.COMPLETING: {OrchestratorState.IDLE},
}


class SingleFlightGuard:
    """Set while one dispatch is in flight; a second caller is refused, never queued."""

    def __init__(self) -> None:
        self.held = False

    def try_acquire(self) -> bool:
        if self.held:
            return False
        self.held = True
        return True

    def release(self) -> None:
        self.held = False


def parse_port(value) -> int | None:
    """Return the port as an int in 1..65535, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdecimal():
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if isinstance(value, int) and 1 <= value <= 65535:
        return value
    return None


def collect_violations(s: ActionSettings) -> list[str]:
    """Every problem with the settings, not just the first one found."""
    missing: list[str] = []
    if not (s.ip and str(s.ip).strip()):
        missing.append("IP address")
    if s.port is None or (isinstance(s.port, str) and not s.port.strip()):
        missing.append("Port")
    if not (s.payload and str(s.payload).strip()):
        missing.append("Payload")
    if not s.type:
        missing.append("Type")

    violations: list[str] = []
    if missing:
        violations.append(f"Missing: {', '.join(missing)}")
    if "Port" not in missing and parse_port(s.port) is None:
        violations.append(f"Invalid port '{s.port}' (must be 1-65535)")
    if s.type and Transport.parse(s.type) is None:
        violations.append(f"Invalid type '{s.type}' (must be TCP or UDP)")
    return violations


def looks_like_file_path(payload: str) -> bool:
    return bool(FILE_PATH_RE.match(payload))


class RequestOrchestrator:
    """
    Drives one send tile: validate, dispatch exactly one request, report, restore.

    - A request arriving while another is in flight is refused with Busy.
    - While in flight, a progress ticker animates the title and a liveness
      ticker emits "waiting response" notices; both stop on every exit path.
    - Display restoration is deferred and does not hold the single-flight guard.
    """

    def __init__(
        self,
        display: Display,
        log_store: LogStore | None = None,
        *,
        guard: SingleFlightGuard | None = None,
        timers: TimerRegistry | None = None,
        stream: StreamDispatcher | None = None,
        datagram: DatagramDispatcher | None = None,
        progress_interval_s: float = PROGRESS_INTERVAL_S,
        success_restore_s: float = RESTORE_DELAY_SUCCESS_S,
        failure_restore_s: float = RESTORE_DELAY_FAILURE_S,
    ) -> None:
        self.display = display
        self.log_store = log_store
        self.guard = guard or single_flight
        self.timers = timers or TimerRegistry()
        self.stream = stream or StreamDispatcher(self.timers)
        self.datagram = datagram or DatagramDispatcher(self.timers)
        self.restorations = TimerRegistry()
        self.progress_interval_s = progress_interval_s
        self.success_restore_s = success_restore_s
        self.failure_restore_s = failure_restore_s
        self.state = OrchestratorState.IDLE
        self.suppressed: deque[SideEffectResult] = deque(maxlen=100)

    @property
    def busy(self) -> bool:
        return self.guard.held

    def _transition(self, target: OrchestratorState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {target.value}")
        logger.debug("Orchestrator %s -> %s", self.state.value, target.value)
        self.state = target

    # ---- Side effects ----

    def _keep(self, result: SideEffectResult) -> SideEffectResult:
        if not result.ok:
            self.suppressed.append(result)
        return result

    async def _side_effect(self, name: str, fn, *args) -> SideEffectResult:
        return self._keep(await run_side_effect(name, fn, *args))

    async def emit(self, message: str, level: LogLevel = "info") -> None:
        """Send a log event to the Python logger, the request log and the display."""
        logger.log(_PY_LEVELS.get(level, logging.INFO), "[%s] %s", level.upper(), message)
        if self.log_store is not None:
            await self._side_effect("log_store", self.log_store.append, message, level)
        await self._side_effect("display.log", self.display.log, message, level)

    def _load_image(self, path: str | None) -> str | None:
        if not path:
            return None
        try:
            return image_from_file(path)
        except OSError as e:
            self._keep(SideEffectResult("image", e))
            return None

    # ---- Inbound commands ----

    async def refresh(self, settings: ActionSettings) -> bool:
        """
        Show a tile's resting state (image + composed title).
        Returns True when the settings were changed (defaults or derived name).
        """
        before = settings.to_dict()
        settings.with_defaults()
        settings.derive_name()
        await self._side_effect("display.set_image", self.display.set_image, self._load_image(settings.bg_image))
        await self._side_effect("display.set_title", self.display.set_title, build_title(settings) or "Payload")
        return settings.to_dict() != before

    async def clear_logs(self) -> bool:
        try:
            if self.log_store is not None:
                await self.log_store.clear()
        except Exception as e:
            await self.emit(f"Failed to clear logs: {e}", "error")
            await self._side_effect("display.show_alert", self.display.show_alert)
            return False
        await self._side_effect("display.show_ok", self.display.show_ok)
        return True

    async def settle(self) -> None:
        """Wait for any scheduled display restoration."""
        await self.restorations.drain()

    async def dispatch(self, settings: ActionSettings) -> OrchestratorResult:
        if not self.guard.try_acquire():
            busy = Busy()
            await self.emit(busy.message, "warning")
            return busy
        try:
            self._transition(OrchestratorState.VALIDATING)
            try:
                prepared = await self._prepare(settings)
            except Exception as e:
                logger.debug("Request preparation failed", exc_info=True)
                prepared = ValidationFailure((str(e) or e.__class__.__name__,))
            if isinstance(prepared, ValidationFailure):
                await self._side_effect("display.show_alert", self.display.show_alert)
                await self.emit(prepared.message, "error")
                self._transition(OrchestratorState.IDLE)
                return prepared
            request, file_name = prepared

            self.restorations.cancel_all()
            self._transition(OrchestratorState.IN_FLIGHT)
            outcome, stack = await self._run(request)

            self._transition(OrchestratorState.COMPLETING)
            await self._report(settings, request, outcome, file_name, stack)
            self._transition(OrchestratorState.IDLE)
            return outcome
        finally:
            self.state = OrchestratorState.IDLE
            self.guard.release()

    # ---- Phases ----

    async def _prepare(
        self, s: ActionSettings
    ) -> tuple[DispatchRequest, str | None] | ValidationFailure:
        violations = collect_violations(s)
        if violations:
            return ValidationFailure(tuple(violations))

        payload_text = str(s.payload)
        payload = payload_text.encode("utf-8")
        file_name: str | None = None
        if looks_like_file_path(payload_text):
            path = Path(payload_text).expanduser()
            await self.emit(f"Reading file content from {payload_text}...", "info")
            try:
                payload = await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                return ValidationFailure((f"Failed to read file: {e}",))
            if not payload:
                return ValidationFailure((f"Failed to read file: {payload_text} is empty",))
            file_name = path.name
            await self.emit(f"File ready: {file_name} ({len(payload)} bytes)", "info")

        try:
            request = DispatchRequest(
                host=str(s.ip).strip(),
                port=parse_port(s.port),  # type: ignore[arg-type]
                transport=Transport.parse(s.type),  # type: ignore[arg-type]
                payload=payload,
                timeout_ms=s.effective_timeout_ms,
            )
        except (TypeError, ValueError) as e:
            return ValidationFailure((str(e),))
        return request, file_name

    async def _run(self, request: DispatchRequest) -> tuple[DispatchOutcome, str | None]:
        label = request.transport.value
        frames = itertools.cycle(PROGRESS_FRAMES)

        async def progress_frame() -> None:
            await self._side_effect(
                "display.set_title", self.display.set_title, f"{next(frames)}\nSending..."
            )

        async def liveness_notice() -> None:
            await self.emit(f"{label} waiting response...", "info")

        try:
            async with self.timers.every(
                self.progress_interval_s, progress_frame, name="progress"
            ), self.timers.every(
                liveness_interval_s(request.timeout_ms), liveness_notice, name="liveness"
            ):
                if request.transport is Transport.STREAM:
                    await self.emit(f"Connecting to {request.host}:{request.port}....", "info")
                    outcome = await self.stream.dispatch(request)
                else:
                    await self.emit(
                        f"Initiating {label} connection to {request.host}:{request.port} "
                        f"(timeout: {request.timeout_ms}ms)...",
                        "info",
                    )
                    outcome = await self.datagram.dispatch(request)
            return outcome, None
        except Exception as e:
            message = str(e) or e.__class__.__name__
            return DispatchFailure(message, kind="internal"), traceback.format_exc()

    async def _report(
        self,
        settings: ActionSettings,
        request: DispatchRequest,
        outcome: DispatchOutcome,
        file_name: str | None,
        stack: str | None,
    ) -> None:
        label = request.transport.value
        if not outcome.ok:
            await self._side_effect("display.show_alert", self.display.show_alert)
            if outcome.kind == "internal" and request.transport is Transport.STREAM:
                await self.emit(f"An error occurred: {outcome.message}", "error")
                if stack:
                    await self.emit(stack, "error")
            else:
                await self.emit(f"{label} request failed: {outcome.message}", "error")
        else:
            if file_name and request.transport is Transport.STREAM:
                await self.emit(
                    f"Successfully sent file '{file_name}' to {request.host}:{request.port}",
                    "success",
                )
            if request.transport is Transport.DATAGRAM:
                await self.emit(f"📡 {outcome.message}", "info")
            else:
                await self.emit(outcome.message, "info")
            if outcome.bytes_sent:
                await self.emit(f"Bytes sent: {outcome.bytes_sent}", "info")
            if outcome.reply_data:
                await self.emit(f"Response data: {outcome.reply_data}", "info")
            await self._side_effect("display.show_ok", self.display.show_ok)
            await self.emit(f"{label} request completed successfully", "success")

        title = build_title(settings)
        if title:
            await self._side_effect("display.set_title", self.display.set_title, title)
        delay = self.success_restore_s if outcome.ok else self.failure_restore_s
        self.restorations.later(delay, lambda: self._restore(settings), name="restore")

    async def _restore(self, settings: ActionSettings) -> None:
        await self._side_effect("display.set_image", self.display.set_image, self._load_image(settings.bg_image))
        await self._side_effect("display.set_title", self.display.set_title, build_title(settings) or "Done")


# Module-level singleton: one dispatch in flight per process
single_flight = SingleFlightGuard()
