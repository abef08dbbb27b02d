from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Union

LogLevel = Literal["info", "warning", "error", "success"]
FailureKind = Literal["transport", "timeout", "internal"]


class Transport(str, Enum):
    STREAM = "TCP"
    DATAGRAM = "UDP"

    @classmethod
    def parse(cls, value: str | None) -> Transport | None:
        """Map a user-facing name ("tcp", "UDP", ...) to a Transport, or None."""
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class DispatchRequest:
    host: str
    port: int
    transport: Transport
    payload: bytes
    timeout_ms: int
    expect_reply: bool = True

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("DispatchRequest.host must be non-empty")
        if not 1 <= self.port <= 65535:
            raise ValueError("DispatchRequest.port must be in 1..65535")
        if not self.payload:
            raise ValueError("DispatchRequest.payload must be non-empty")
        if self.timeout_ms <= 0:
            raise ValueError("DispatchRequest.timeout_ms must be > 0")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class DispatchSuccess:
    message: str
    bytes_sent: int
    reply_data: str | None = None
    remote_host: str | None = None
    remote_port: int | None = None

    ok = True


@dataclass(frozen=True)
class DispatchFailure:
    message: str
    kind: FailureKind = "transport"

    ok = False


DispatchOutcome = Union[DispatchSuccess, DispatchFailure]


@dataclass(frozen=True)
class ValidationFailure:
    """Preconditions violated before any network activity; lists every violation."""

    violations: tuple[str, ...]

    ok = False

    def __post_init__(self) -> None:
        if not self.violations:
            raise ValueError("ValidationFailure needs at least one violation")

    @property
    def message(self) -> str:
        return f"Cannot send: {' | '.join(self.violations)}"


@dataclass(frozen=True)
class Busy:
    message: str = "Request ignored: already sending"

    ok = False


OrchestratorResult = Union[DispatchSuccess, DispatchFailure, ValidationFailure, Busy]


@dataclass(frozen=True)
class LogEntry:
    timestamp: str  # ISO-8601, UTC
    level: LogLevel
    message: str
