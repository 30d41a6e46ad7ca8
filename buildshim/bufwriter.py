"""A buffered writer that flushes and closes its target on close."""

from __future__ import annotations

from typing import Any

DEFAULT_SIZE = 1 << 15


class BufferedWriteCloser:
    """Buffer writes to ``writer``; close() flushes and closes it if it can be closed."""

    def __init__(self, writer: Any, size: int = 0) -> None:
        if size <= 0:
            size = DEFAULT_SIZE
        self._writer = writer
        self._size = size
        self._buffer = bytearray()
        self._closer = getattr(writer, "close", None)

    @property
    def size(self) -> int:
        return self._size

    @property
    def buffered(self) -> int:
        """Number of bytes waiting to be flushed."""
        return len(self._buffer)

    def write(self, data: bytes) -> int:
        if len(self._buffer) + len(data) > self._size:
            self.flush()
        if len(data) >= self._size:
            self._writer.write(bytes(data))
        else:
            self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self._writer.write(bytes(self._buffer))
            self._buffer.clear()

    def close(self) -> None:
        self.flush()
        if callable(self._closer):
            self._closer()

    def __enter__(self) -> "BufferedWriteCloser":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()