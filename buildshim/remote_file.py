"""A file of the build context read from a local copy, a buffer or the client."""

from __future__ import annotations

import io
from typing import BinaryIO

from buildshim.fileinfo import FileInfo
from buildshim.fssync_proxy import FSSyncProxy
from buildshim.packets import BuildTransfer, TransferDirection

_CHUNK = 1 << 20


class RemoteFile:
    """A readable, seekable file whose bytes come from the first available source.

    A local file object is used if given, then an in-memory buffer, and
    otherwise each read is requested from the client through ``proxy``.
    """

    def __init__(
        self,
        proxy: FSSyncProxy,
        info: FileInfo,
        file_id: str = "",
        *,
        data: bytes | None = None,
        local: BinaryIO | None = None,
    ) -> None:
        self.proxy = proxy
        self.info = info
        self.id = file_id
        self._data = data
        self._local = local
        self._index = 0

    @property
    def position(self) -> int:
        return self._index

    def _packet(self, offset: int, length: int) -> BuildTransfer:
        return BuildTransfer(
            id=self.id,
            direction=TransferDirection.OUTOF,
            source=self.info.name,
            metadata={
                "os": "linux",
                "stage": "fssync",
                "method": "Read",
                "offset": str(offset),
                "length": str(length),
            },
        )

    def read_at(self, size: int, offset: int) -> bytes:
        """Up to ``size`` bytes starting at ``offset``; empty at end of file."""
        if offset < 0:
            raise ValueError(f"negative read offset: {offset}")
        if size <= 0:
            return b""
        if self._local is not None:
            self._local.seek(offset)
            return self._local.read(size)
        if self._data is not None:
            return bytes(self._data[offset:offset + size])
        reply = self.proxy.request(self._packet(offset, size))
        if "error" in reply.metadata:
            raise RuntimeError(reply.metadata["error"])
        return bytes(reply.data[:size])

    def read(self, size: int = -1) -> bytes:
        """Read from the current position; a negative size reads to the end."""
        if size is None or size < 0:
            chunks = []
            while chunk := self.read(_CHUNK):
                chunks.append(chunk)
            return b"".join(chunks)
        data = self.read_at(size, self._index)
        self._index += len(data)
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the read position; a known size bounds it from above."""
        if whence == io.SEEK_SET:
            new_index = offset
        elif whence == io.SEEK_CUR:
            new_index = self._index + offset
        elif whence == io.SEEK_END:
            new_index = self.info.size + offset
        else:
            raise ValueError(f"invalid whence value: {whence}")
        if new_index < 0:
            raise ValueError(f"negative seek offset: {new_index}")
        if self.info.size > 0 and new_index > self.info.size:
            raise ValueError(f"seek beyond end of file: {new_index}")
        self._index = new_index
        return self._index

    def close(self) -> None:
        if self._local is not None:
            self._local.close()

    def __enter__(self) -> "RemoteFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()