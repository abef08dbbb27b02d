from nicegui import binding


# Shared, bindable state of the send tile (title text, background image, flash badge)
@binding.bindable_dataclass
class TileState:
    title: str = "Payload"
    image: str | None = None  # data URL
    flash: str = ""  # "" | "ok" | "alert"
    sending: bool = False


# Module-level singleton
tile_state = TileState()
