"""Incremental framer turning a TCP byte stream into text lines."""

from __future__ import annotations

from typing import Iterator

_LF = b"\n"
_CR = b"\r"


class LineFramer:
    """Split arbitrary chunks into LF-terminated lines.

    The trailing partial line stays buffered until a later chunk completes
    it, so the lines produced never depend on how the peer's bytes were
    chunked.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self.buf = bytearray()

    def feed(self, data: bytes) -> Iterator[str]:
        # buffer eagerly; only line extraction is lazy
        if data:
            self.buf.extend(data)
        return self._drain()

    def _drain(self) -> Iterator[str]:
        while True:
            end = self.buf.find(_LF)
            if end < 0:
                return
            raw = bytes(self.buf[:end])
            del self.buf[: end + 1]
            if raw.endswith(_CR):
                raw = raw[:-1]
            yield raw.decode(self.encoding, errors="replace")

    @property
    def pending(self) -> str:
        """Undelimited tail received so far."""
        return bytes(self.buf).decode(self.encoding, errors="replace")

    def take_pending(self) -> str:
        text = self.pending
        self.buf.clear()
        return text

    def reset(self) -> None:
        self.buf.clear()
