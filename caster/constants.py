from __future__ import annotations

import logging
import os
from pathlib import Path

# Repository root and HTML request log location
REPO_ROOT = Path(__file__).resolve().parent.parent
LOGS_DIR = Path(os.getenv("CASTER_LOGS_DIR") or (REPO_ROOT / "caster-logs"))
LOG_HTML_FILENAME = "caster-requests.html"
MAX_LOG_ENTRIES = 500

# Webserver bind (NiceGUI host/port)
SERVER_HOST: str = os.getenv("CASTER_SERVER_IP", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("CASTER_SERVER_PORT", "8080"))

# Dispatch defaults
DEFAULT_TIMEOUT_MS = 2000
LIVENESS_MIN_MS = 1500
LIVENESS_MAX_MS = 10000
RESTORE_DELAY_SUCCESS_S = 1.5
RESTORE_DELAY_FAILURE_S = 2.0

# Cosmetic progress ticker
PROGRESS_INTERVAL_S: float = float(os.getenv("CASTER_PROGRESS_INTERVAL_S", "0.1"))
PROGRESS_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")


def liveness_interval_s(timeout_ms: int) -> float:
    """Period of the "still waiting" notice: timeout clamped to 1.5..10 s."""
    return max(LIVENESS_MIN_MS, min(timeout_ms, LIVENESS_MAX_MS)) / 1000.0


def _resolve_log_level() -> int:
    s = os.getenv("CASTER_LOG_LEVEL")
    if s:
        name = s.strip().upper()
        mapping = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return mapping.get(name, logging.WARNING)
    else:
        return logging.WARNING


LOG_LEVEL: int = _resolve_log_level()
