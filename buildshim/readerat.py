"""Random-access reading of a content-store blob held by the build client."""

from __future__ import annotations

import io
import uuid

from buildshim.content_store import ContentStoreProxy
from buildshim.packets import (
    ClientPacket,
    Descriptor,
    ImageTransfer,
    PacketChannel,
    TransferDirection,
)

_METHOD = "/containerd.services.content.v1.Content/ReaderAt"
_CHUNK = 1 << 20


class ContentReader:
    """Reads one blob from the client in ranges; positional and sequential reads."""

    def __init__(
        self,
        proxy: ContentStoreProxy,
        descriptor: Descriptor,
        reader_id: str | None = None,
    ) -> None:
        self.id = reader_id or str(uuid.uuid4())
        self.descriptor = descriptor
        self.size = 0
        self._proxy = proxy
        self._index = 0
        self._channel: PacketChannel | None = None
        self._closed = False

    @property
    def position(self) -> int:
        return self._index

    @property
    def closed(self) -> bool:
        return self._closed

    def _init(self) -> None:
        """Register the reply channel and ask the client for the blob size."""
        reader_id = self.id

        def by_build_id(packet: ClientPacket) -> bool:
            return packet.build_id == reader_id

        self._channel = PacketChannel(reader_id, by_build_id)
        self._proxy.register_channel(reader_id, self._channel)

        reply = self._proxy.request(self._packet(0, 0))
        if "error" in reply.metadata:
            raise RuntimeError(reply.metadata["error"])
        text = reply.metadata.get("size", "")
        try:
            self.size = int(text)
        except ValueError:
            raise ValueError(f"invalid size: {text!r}") from None

    def _packet(self, offset: int, length: int) -> ImageTransfer:
        return ImageTransfer(
            id=self.id,
            direction=TransferDirection.OUTOF,
            metadata={
                "os": "linux",
                "stage": "content-store",
                "method": _METHOD,
                "offset": str(offset),
                "length": str(length),
            },
            descriptor=self.descriptor,
        )

    def read_at(self, size: int, offset: int) -> bytes:
        """Up to ``size`` bytes starting at ``offset``; empty at end of blob."""
        if self._closed:
            raise ValueError("read from closed reader")
        if offset < 0:
            raise ValueError(f"negative read offset: {offset}")
        if size <= 0:
            return b""
        reply = self._proxy.request(self._packet(offset, size))
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
        """Move the read position; positions outside the blob raise ValueError."""
        if whence == io.SEEK_SET:
            new_pos = offset
        elif whence == io.SEEK_CUR:
            new_pos = self._index + offset
        elif whence == io.SEEK_END:
            new_pos = self.size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if new_pos < 0:
            raise ValueError(f"negative seek offset: {new_pos}")
        if new_pos > self.size:
            raise ValueError(f"seek beyond end of file: {new_pos}")
        self._index = new_pos
        return self._index

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            if self._channel is not None:
                self._channel.close()

    def __enter__(self) -> "ContentReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_reader(proxy: ContentStoreProxy, descriptor: Descriptor) -> ContentReader:
    """Open a reader on the blob described by ``descriptor``."""
    reader = ContentReader(proxy, descriptor)
    try:
        reader._init()
    except BaseException:
        reader.close()
        raise
    return reader