"""An exporter that sends the built image's tar stream to the build client."""

from __future__ import annotations

import threading
import uuid
from typing import Any

from buildshim.packets import (
    BuildTransfer,
    ClientPacket,
    IgnorePacket,
    ServerPacket,
    TransferDirection,
)

STAGE = "exporter"


class ExporterProxy:
    """A writable sink that forwards every chunk to the client as a build transfer.

    ``transport`` must provide ``request(packet, request_id)`` returning the reply.
    """

    def __init__(self, transport: Any) -> None:
        self.transport = transport
        self._done = threading.Event()

    def __str__(self) -> str:
        return STAGE

    def filter(self, packet: ClientPacket) -> bool:
        """Accept build transfers addressed to this stage; raise IgnorePacket otherwise."""
        transfer = packet.build_transfer
        if transfer is not None and transfer.metadata.get("stage") == STAGE:
            return True
        raise IgnorePacket(f"packet not addressed to {STAGE}")

    def write(self, data: bytes) -> int:
        """Send a chunk; an empty chunk marks the stream complete. Returns bytes written."""
        request_id = str(uuid.uuid4())
        transfer = BuildTransfer(
            id=request_id,
            direction=TransferDirection.OUTOF,
            metadata={"os": "linux", "stage": STAGE, "method": "Write"},
            data=bytes(data),
            complete=len(data) == 0,
        )
        self.transport.request(
            ServerPacket(build_id=request_id, payload=transfer), request_id
        )
        return len(data)

    def close(self) -> None:
        """Send the completion packet and mark the exporter done."""
        self.write(b"")
        self._done.set()

    def done(self) -> threading.Event:
        """An event that is set once the exporter has been closed."""
        return self._done

    def __enter__(self) -> "ExporterProxy":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()