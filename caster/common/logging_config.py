from __future__ import annotations

import logging
import sys

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",  # cyan
    "INFO": "\033[37m",  # light gray
    "WARNING": "\033[33m",  # yellow
    "ERROR": "\033[31m",  # red
    "CRITICAL": "\033[41m",  # red background
}
_RESET = "\033[0m"
_DIM = "\033[2m"


class AnsiColorFormatter(logging.Formatter):
    """Formatter that adds ANSI colors and a compact timestamp."""

    def __init__(self, colored: bool = True) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
        self.colored = colored and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.colored:
            return base
        level = record.levelname.upper()
        color = _LEVEL_COLORS.get(level, "")
        # Expect format "HH:MM:SS LEVEL logger: msg"
        ts, _, rest = base.partition(" ")
        if color:
            rest = rest.replace(level, f"{color}{level}{_RESET}", 1)
        return f"{_DIM}{ts}{_RESET} {rest}"


def configure_logging(level: int = logging.INFO, use_color: bool = True) -> logging.Logger:
    """
    Configure the root logger with an ANSI-colored stderr handler.
    Idempotent across multiple calls; only the level is updated on repeat calls.
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    console = next(
        (h for h in logger.handlers if isinstance(h, logging.StreamHandler)), None
    )
    if console is None:
        console = logging.StreamHandler(stream=sys.stderr)
        console.setFormatter(AnsiColorFormatter(colored=use_color))
        logger.addHandler(console)
    console.setLevel(level)

    # The web server's access log is noise at INFO
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))
    return logger


def resolve_level(
    name: str | None, verbose: int = 0, quiet: bool = False, default: int = logging.WARNING
) -> int:
    """Explicit level name wins over -v/-q, which win over the environment default."""
    if name:
        return getattr(logging, name.upper())
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    if quiet:
        return logging.WARNING
    return default
