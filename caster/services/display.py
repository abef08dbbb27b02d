from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from caster.types import LogLevel

logger = logging.getLogger(__name__)


class Display(Protocol):
    """What the orchestrator needs from the surface that shows a send tile."""

    async def set_title(self, title: str | None = None) -> None: ...

    async def set_image(self, image: str | None = None) -> None: ...

    async def show_ok(self) -> None: ...

    async def show_alert(self) -> None: ...

    async def log(self, message: str, level: LogLevel) -> None: ...


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of a cosmetic operation; never alters the primary dispatch outcome."""

    name: str
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_side_effect(
    name: str, fn: Callable[..., Awaitable[Any] | Any], *args: Any
) -> SideEffectResult:
    """Run a best-effort display/log call and report, rather than raise, its failure."""
    try:
        result = fn(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.debug("Side effect %s failed: %s", name, e)
        return SideEffectResult(name, e)
    return SideEffectResult(name)
