from __future__ import annotations

import base64
from pathlib import Path


def image_from_file(path: str | Path) -> str:
    """Load an image file as a ``data:image/png;base64,...`` URL for the tile."""
    data = Path(path).expanduser().read_bytes()
    return "data:image/png;base64," + base64.b64encode(data).decode("ascii")
