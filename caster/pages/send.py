from __future__ import annotations

import logging

from nicegui import app as ng_app
from nicegui import ui

from caster.config import ActionSettings
from caster.constants import LOG_HTML_FILENAME, MAX_LOG_ENTRIES
from caster.services.orchestrator import RequestOrchestrator
from caster.services.timers import TimerRegistry
from caster.state import TileState
from caster.types import LogLevel

_FLASH_ICONS = {"ok": "check_circle", "alert": "warning"}
_LOG_PREFIX: dict[str, str] = {
    "info": "",
    "success": "[OK] ",
    "warning": "[WARN] ",
    "error": "[ERROR] ",
}
FLASH_S = 1.0


def _port_value(value):
    # ui.number yields floats; ports are stored as ints
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class TileDisplay:
    """Display backed by the bindable tile state and the page's response log."""

    def __init__(self, state: TileState) -> None:
        self.state = state
        self.response_log: ui.log | None = None
        self._flash_timers = TimerRegistry()

    async def set_title(self, title: str | None = None) -> None:
        self.state.title = title or ""

    async def set_image(self, image: str | None = None) -> None:
        self.state.image = image

    async def _flash(self, kind: str) -> None:
        self._flash_timers.cancel_all()
        self.state.flash = kind

        async def _clear() -> None:
            self.state.flash = ""

        self._flash_timers.later(FLASH_S, _clear, name="flash")

    async def show_ok(self) -> None:
        await self._flash("ok")

    async def show_alert(self) -> None:
        await self._flash("alert")

    async def log(self, message: str, level: LogLevel) -> None:
        if self.response_log is not None:
            self.response_log.push(f"{_LOG_PREFIX.get(level, '')}{message}")


class SendPage:
    """Send tile plus its settings form."""

    def __init__(self, orchestrator: RequestOrchestrator, display: TileDisplay) -> None:
        self.orchestrator = orchestrator
        self.display = display
        self.settings = ActionSettings()

    def _load(self) -> ActionSettings:
        stored = ng_app.storage.general.get("settings")
        return ActionSettings.from_dict(stored).with_defaults()

    def _persist(self) -> None:
        ng_app.storage.general["settings"] = self.settings.to_dict()

    async def refresh(self) -> None:
        """Redraw the tile from the current settings and persist any derived changes."""
        if await self.orchestrator.refresh(self.settings):
            self._persist()

    async def save(self) -> None:
        self._persist()
        await self.refresh()
        logging.debug("Saved tile settings: %s", self.settings)

    async def send(self) -> None:
        state = self.display.state
        state.sending = True
        try:
            result = await self.orchestrator.dispatch(
                ActionSettings.from_dict(self.settings.to_dict())
            )
            logging.info("Dispatch finished: %s", result.message)
        finally:
            state.sending = False

    async def clear_logs(self) -> None:
        if await self.orchestrator.clear_logs():
            if self.display.response_log is not None:
                self.display.response_log.clear()
            ui.notify("Request log cleared", color="primary")

    def build(self) -> None:
        state = self.display.state
        self.settings = self._load()
        s = self.settings

        with ui.row().classes("w-full items-start gap-4 p-4"):
            # Tile: background image, title and a transient ok/alert badge
            with ui.card().classes(
                "w-48 h-48 items-center justify-center relative cursor-pointer"
            ) as tile:
                ui.image().bind_source_from(
                    state, "image", backward=lambda v: v or ""
                ).bind_visibility_from(state, "image", backward=bool).classes(
                    "absolute-full"
                )
                ui.label().bind_text_from(state, "title").classes(
                    "whitespace-pre-line text-center text-md font-medium z-10"
                )
                ui.icon("").bind_name_from(
                    state, "flash", backward=lambda f: _FLASH_ICONS.get(f, "")
                ).classes("absolute top-1 right-1 text-xl")
            tile.on("click", self.send)

            with ui.card().classes("grow"):
                ui.label("Send payload").classes("text-md font-medium")
                with ui.row().classes("items-center gap-2"):
                    ui.input("Name").bind_value(s, "name")
                    ui.toggle(options=["TCP", "UDP"]).bind_value(s, "type").props("dense")
                with ui.row().classes("items-center gap-2"):
                    ui.input("IP address").bind_value(s, "ip")
                    ui.number("Port", min=1, max=65535, format="%d").bind_value(
                        s, "port", forward=_port_value
                    )
                    ui.number("Timeout (ms)", min=1, format="%d").bind_value(s, "timeout")
                ui.textarea(
                    "Payload (text, or a file path like ./data.bin or ~/msg.txt)"
                ).bind_value(s, "payload").classes("w-full")
                ui.input("Background image (file path)").bind_value(s, "bg_image").classes(
                    "w-full"
                )
                with ui.row().classes("items-center gap-4"):
                    ui.switch("Show name").bind_value(s, "show_name")
                    ui.switch("Show IP").bind_value(s, "show_ip")
                    ui.switch("Show port").bind_value(s, "show_port")
                with ui.row().classes("items-center gap-2"):
                    ui.button("Save", on_click=self.save).props("unelevated")
                    ui.button("Send", on_click=self.send).props(
                        "unelevated color=primary"
                    ).bind_enabled_from(state, "sending", backward=lambda v: not v)
                    ui.button("Clear logs", on_click=self.clear_logs).props(
                        "unelevated color=warning"
                    )
                    ui.link(
                        "Open request log", f"/logs/{LOG_HTML_FILENAME}", new_tab=True
                    ).classes("text-sm")

        with ui.card().classes("w-full"):
            ui.label("Response log").classes("text-md font-medium")
            self.display.response_log = ui.log(max_lines=MAX_LOG_ENTRIES).classes(
                "w-full h-64"
            )
