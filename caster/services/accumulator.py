from __future__ import annotations


class ResponseAccumulator:
    """Append-only reply buffer for a single exchange."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._buf = bytearray()
        self.chunks = 0

    def append(self, chunk: bytes) -> None:
        if chunk:
            self._buf.extend(chunk)
            self.chunks += 1

    def __len__(self) -> int:
        return len(self._buf)

    def snapshot(self) -> bytes:
        return bytes(self._buf)

    def text(self) -> str:
        """Decode everything received so far; undecodable bytes are replaced."""
        return self._buf.decode(self.encoding, errors="replace")
