"""Packet types exchanged with the build client, and a demultiplexing channel."""

from __future__ import annotations

import enum
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Union


class TransferDirection(enum.Enum):
    """Direction of a transfer, seen from the shim."""

    INTO = 0
    OUTOF = 1


class IgnorePacket(Exception):
    """Raised by a stage filter for a packet that the stage does not handle."""


class ProtocolNegotiationError(Exception):
    """Raised when the client asks for a protocol the shim does not speak."""

    def __init__(self, message: str = "failed to negotiate protocol") -> None:
        super().__init__(message)


@dataclass
class Platform:
    os: str = ""
    architecture: str = ""
    variant: str = ""
    os_version: str = ""
    os_features: list[str] = field(default_factory=list)


@dataclass
class Descriptor:
    media_type: str = ""
    digest: str = ""
    size: int = 0
    urls: list[str] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)
    platform: Platform | None = None


@dataclass
class ImageTransfer:
    id: str = ""
    direction: TransferDirection = TransferDirection.INTO
    tag: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    descriptor: Descriptor | None = None
    data: bytes = b""
    complete: bool = False


@dataclass
class BuildTransfer:
    id: str = ""
    direction: TransferDirection = TransferDirection.INTO
    source: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    data: bytes = b""
    complete: bool = False
    is_directory: bool = False


Transfer = Union[ImageTransfer, BuildTransfer]


@dataclass
class _Envelope:
    build_id: str = ""
    payload: Transfer | None = None

    @property
    def image_transfer(self) -> ImageTransfer | None:
        """The payload if it is an image transfer, else None."""
        return self.payload if isinstance(self.payload, ImageTransfer) else None

    @property
    def build_transfer(self) -> BuildTransfer | None:
        """The payload if it is a build transfer, else None."""
        return self.payload if isinstance(self.payload, BuildTransfer) else None


@dataclass
class ServerPacket(_Envelope):
    """A packet sent from the shim to the client."""


@dataclass
class ClientPacket(_Envelope):
    """A packet sent from the client to the shim."""


_CLOSED = object()


class PacketChannel:
    """A queue of client packets for one request, optionally filtered."""

    def __init__(
        self,
        channel_id: str = "",
        packet_filter: Callable[[ClientPacket], bool] | None = None,
    ) -> None:
        self.id = channel_id
        self._filter = packet_filter
        self._queue: queue.Queue = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def accept(self, packet: ClientPacket) -> bool:
        """Queue a packet; return False if the filter rejects it."""
        if self._closed.is_set():
            raise EOFError(f"channel {self.id!r} is closed")
        if self._filter is not None:
            try:
                if not self._filter(packet):
                    return False
            except IgnorePacket:
                return False
        self._queue.put(packet)
        return True

    def recv(self, timeout: float | None = None) -> ClientPacket:
        """Return the next packet, waiting up to timeout seconds."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"no packet on channel {self.id!r}") from None
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            raise EOFError(f"channel {self.id!r} is closed")
        return item

    def close(self) -> None:
        """Close the channel; pending packets can still be received."""
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    def __enter__(self) -> "PacketChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()