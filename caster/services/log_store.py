from __future__ import annotations

import asyncio
import html
import logging
import os
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from caster.constants import LOG_HTML_FILENAME, LOGS_DIR, MAX_LOG_ENTRIES
from caster.types import LogEntry, LogLevel

logger = logging.getLogger(__name__)

_LEVEL_COLORS: dict[str, str] = {
    "info": "#00ff00",
    "error": "#ff0000",
    "warning": "#ffaa00",
    "success": "#00ffff",
}

_REFRESH_SCRIPT = """
    const LS_KEYS = { paused: 'casterLogs_paused', interval: 'casterLogs_interval', wrap: 'casterLogs_wrap' };
    const DEFAULT_INTERVAL = 5000;
    let timerId = null;
    const getPaused = () => localStorage.getItem(LS_KEYS.paused) === '1';
    const getWrap = () => localStorage.getItem(LS_KEYS.wrap) === '1';
    function getInterval() {
        const v = parseInt(localStorage.getItem(LS_KEYS.interval) || '', 10);
        return Number.isFinite(v) && v > 0 ? v : DEFAULT_INTERVAL;
    }
    function scheduleRefresh() {
        clearTimeout(timerId);
        if (!getPaused()) { timerId = setTimeout(() => window.location.reload(), getInterval()); }
        const status = document.getElementById('status');
        if (status) {
            status.textContent = getPaused()
                ? 'Status: Paused (no auto-refresh)'
                : 'Status: Auto-refresh every ' + Math.round(getInterval() / 1000) + 's';
        }
    }
    function applyWrap() {
        const c = document.getElementById('log-container');
        if (c) { c.style.whiteSpace = getWrap() ? 'pre-wrap' : 'pre'; }
    }
    document.addEventListener('DOMContentLoaded', () => {
        const pause = document.getElementById('toggle-pause');
        const select = document.getElementById('interval-select');
        const wrap = document.getElementById('toggle-wrap');
        pause.textContent = getPaused() ? 'Resume' : 'Pause';
        pause.addEventListener('click', () => {
            localStorage.setItem(LS_KEYS.paused, getPaused() ? '0' : '1');
            pause.textContent = getPaused() ? 'Resume' : 'Pause';
            scheduleRefresh();
        });
        select.value = String(getInterval());
        select.addEventListener('change', () => {
            localStorage.setItem(LS_KEYS.interval, select.value);
            scheduleRefresh();
        });
        wrap.checked = getWrap();
        wrap.addEventListener('change', () => {
            localStorage.setItem(LS_KEYS.wrap, wrap.checked ? '1' : '0');
            applyWrap();
        });
        applyWrap();
        scheduleRefresh();
    });
"""


def _clock(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp).astimezone().strftime("%H:%M:%S")
    except ValueError:
        return timestamp


def render_log_html(entries: list[LogEntry], capacity: int = MAX_LOG_ENTRIES) -> str:
    """Render the request log as a standalone, self-refreshing HTML document."""
    lines = "\n".join(
        f'<div class="line" style="color: {_LEVEL_COLORS.get(e.level, _LEVEL_COLORS["info"])}">'
        f"[{_clock(e.timestamp)}] {html.escape(e.message, quote=False)}</div>"
        for e in entries
    )
    if not entries:
        lines = '<div class="empty">No log entries yet. Waiting for requests...</div>'
    count = len(entries)
    hint = f"Showing {count} latest log{'' if count == 1 else 's'}"
    if count >= capacity:
        hint += " (max reached)"
    rendered = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Payload Caster - Request Logs</title>
    <script>{_REFRESH_SCRIPT}</script>
    <style>
      body {{ background: #1A1A1A; color: #D6D6D6; font-family: sans-serif; margin: 20px; }}
      header {{ text-align: center; margin-bottom: 16px; }}
      .controls {{ display: flex; gap: 12px; justify-content: center; align-items: center; margin-bottom: 12px; }}
      .hint {{ text-align: center; font-style: italic; margin-bottom: 12px; color: #949A9F; }}
      main {{ background: #212121; padding: 16px; max-height: 80vh; overflow: auto; border-radius: 6px; }}
      .line {{ font-family: ui-monospace, Menlo, Consolas, monospace; font-size: 0.9rem; margin-bottom: 4px; }}
      .empty {{ text-align: center; opacity: 0.6; padding: 80px 0; }}
    </style>
</head>
<body>
    <header>
        <h1>Request Logs</h1>
        <p>Rendered: {rendered}</p>
    </header>
    <div class="controls">
        <button id="toggle-pause">Pause</button>
        <label for="interval-select">Interval:</label>
        <select id="interval-select">
            <option value="2000">2s</option>
            <option value="5000">5s</option>
            <option value="10000">10s</option>
            <option value="30000">30s</option>
            <option value="60000">60s</option>
        </select>
        <label for="toggle-wrap">Wrap lines</label>
        <input id="toggle-wrap" type="checkbox">
        <span id="status"></span>
    </div>
    <main>
        <div class="hint" id="hint">{hint}</div>
        <div id="log-container">
{lines}
        </div>
    </main>
</body>
</html>
"""


def atomic_write(path: Path, content: str) -> None:
    """Write via a temp file in the same directory and rename over the target."""
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class LogStore:
    """
    Most recent ``capacity`` request log entries, persisted as one HTML document.

    Documents are written one at a time in call order; every write renders the
    entries as they stand when its turn comes.
    """

    def __init__(
        self,
        directory: str | Path = LOGS_DIR,
        filename: str = LOG_HTML_FILENAME,
        capacity: int = MAX_LOG_ENTRIES,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.directory = Path(directory)
        self.path = self.directory / filename
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._write_lock = asyncio.Lock()
        self.writes = 0

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    async def append(self, message: str, level: LogLevel = "info") -> None:
        self._entries.append(
            LogEntry(
                timestamp=datetime.now(timezone.utc).isoformat(),
                level=level,
                message=message,
            )
        )
        await self._flush()

    async def clear(self) -> None:
        self._entries.clear()
        await self._flush()

    async def _flush(self) -> None:
        async with self._write_lock:
            # Render and disk I/O run in a worker thread, off the event loop
            await asyncio.to_thread(self._write, self.entries)
            self.writes += 1

    def _write(self, entries: list[LogEntry]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        atomic_write(self.path, render_log_html(entries, self.capacity))
