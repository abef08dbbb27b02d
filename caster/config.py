from __future__ import annotations

import re
from dataclasses import asdict, dataclass, fields
from typing import Any, Optional

from caster.constants import DEFAULT_TIMEOUT_MS

_PATH_SPLIT_RE = re.compile(r"[/\\]")


@dataclass
class ActionSettings:
    """Persisted settings of one send tile (what to send, where, and how to label it)."""
    name: Optional[str] = None
    payload: Optional[str] = None
    timeout: Optional[Any] = None  # milliseconds; raw user input
    type: Optional[str] = None  # "TCP" | "UDP"
    ip: Optional[str] = None
    port: Optional[Any] = None
    bg_image: Optional[str] = None
    show_name: Optional[bool] = None
    show_ip: Optional[bool] = None
    show_port: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ActionSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def with_defaults(self) -> "ActionSettings":
        """Fill unset fields the way a freshly placed tile starts out."""
        if self.name is None:
            self.name = "Payload"
        if self.ip is None:
            self.ip = "192.168.1.100"
        if self.port is None:
            self.port = 1234
        if self.type is None:
            self.type = "TCP"
        if self.timeout is None:
            self.timeout = DEFAULT_TIMEOUT_MS
        if self.show_name is None:
            self.show_name = True
        if self.show_ip is None:
            self.show_ip = True
        if self.show_port is None:
            self.show_port = True
        return self

    def derive_name(self) -> bool:
        """
        Name a tile after its payload file when no name was given.
        Returns True when the name changed.
        """
        if not self.payload or (self.name and str(self.name).strip()):
            return False
        file = _PATH_SPLIT_RE.split(str(self.payload))[-1]
        base = re.sub(r"\.[^.]*$", "", file)
        if not base:
            return False
        self.name = base
        return True

    @property
    def effective_timeout_ms(self) -> int:
        try:
            value = float(self.timeout)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return DEFAULT_TIMEOUT_MS
        if value != value or value <= 0 or value == float("inf"):
            return DEFAULT_TIMEOUT_MS
        # Sub-millisecond timeouts still wait one tick
        return max(1, int(value))


def _port_text(port: Any) -> str:
    if port is None:
        return ""
    if isinstance(port, float) and port.is_integer():
        return str(int(port))
    return str(port)


def build_title(s: ActionSettings) -> str:
    """Compose the tile title from name, ip and port, each only when shown."""
    parts: list[str] = []
    if s.show_name:
        parts.append(s.name or "")
    if s.show_ip:
        parts.append(s.ip or "")
    if s.show_port:
        parts.append(_port_text(s.port))
    return "\n".join(parts)
