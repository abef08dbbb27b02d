import argparse
import logging

from nicegui import app as ng_app
from nicegui import ui

from caster.common.logging_config import configure_logging, resolve_level
from caster.constants import LOG_LEVEL, LOGS_DIR, SERVER_HOST, SERVER_PORT
from caster.pages.send import SendPage, TileDisplay
from caster.services.log_store import LogStore
from caster.services.orchestrator import RequestOrchestrator
from caster.state import tile_state

# ------------------------ Global services ------------------------

log_store = LogStore(LOGS_DIR)
display = TileDisplay(tile_state)
orchestrator = RequestOrchestrator(display, log_store)
send_page = SendPage(orchestrator, display)

# Serve the rendered request log next to the UI
LOGS_DIR.mkdir(parents=True, exist_ok=True)
ng_app.add_static_files("/logs", LOGS_DIR.as_posix())


@ui.page("/")
async def index() -> None:
    ui.query(".nicegui-content").classes("p-0")
    with ui.header().classes("items-center px-4"):
        ui.label("Payload Caster").classes("text-lg font-medium")
    send_page.build()
    await send_page.refresh()


async def _app_shutdown() -> None:
    await orchestrator.settle()


ng_app.on_shutdown(_app_shutdown)


if __name__ in {"__main__", "__mp_main__"}:
    # CLI: web bind and log level
    parser = argparse.ArgumentParser(description="Payload Caster NiceGUI Webserver")
    parser.add_argument("--host", default=SERVER_HOST, help="Webserver bind host")
    parser.add_argument(
        "--port", type=int, default=SERVER_PORT, help="Webserver bind port"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set log level",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Enable WARNING logging"
    )
    args, _ = parser.parse_known_args()

    configure_logging(
        resolve_level(args.log_level, args.verbose, args.quiet, default=LOG_LEVEL)
    )
    logging.info(f"Webserver bind: host={args.host} port={args.port}")
    logging.info(f"Request log: {log_store.path}")

    ui.run(
        title="Payload Caster",
        host=args.host,
        port=int(args.port),
        reload=False,
        show=False,
    )
