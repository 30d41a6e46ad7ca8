"""A content store that reads blobs and their metadata from the build client."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Iterable

from buildshim.info import ContentInfo, info_from_transfer, info_to_transfer
from buildshim.packets import (
    ClientPacket,
    IgnorePacket,
    ImageTransfer,
    PacketChannel,
    ServerPacket,
    TransferDirection,
)

STAGE = "content-store"
_METHOD_PREFIX = "/containerd.services.content.v1.Content/"

WalkFn = Callable[[ContentInfo], None]


def _base_metadata(method: str) -> dict[str, str]:
    return {"os": "linux", "stage": STAGE, "method": _METHOD_PREFIX + method}


def _raise_remote_error(transfer: ImageTransfer) -> None:
    if "error" in transfer.metadata:
        raise RuntimeError(transfer.metadata["error"])


class ContentStoreProxy:
    """Proxies content-store reads to the client over the packet stream.

    Only the read and metadata calls are offered; the build daemon never writes
    to this store. ``transport`` must provide ``request(packet, request_id)``,
    ``send(packet)`` and ``register_channel(channel_id, channel)``.
    """

    recv_timeout: float | None = None

    def __init__(self, transport: Any) -> None:
        self.transport = transport

    def __str__(self) -> str:
        return STAGE

    def filter(self, packet: ClientPacket) -> bool:
        """Accept image transfers addressed to this stage; raise IgnorePacket otherwise."""
        transfer = packet.image_transfer
        if transfer is not None and transfer.metadata.get("stage") == STAGE:
            return True
        raise IgnorePacket(f"packet not addressed to {STAGE}")

    def send(self, packet: ServerPacket) -> None:
        """Send a packet to the client without waiting for a reply."""
        self.transport.send(packet)

    def register_channel(self, channel_id: str, channel: PacketChannel) -> None:
        """Route client packets for ``channel_id`` to ``channel``."""
        self.transport.register_channel(channel_id, channel)

    def request(self, packet: ImageTransfer) -> ImageTransfer:
        """Send an image transfer and return the client's reply.

        The packet keeps its id if it has one; the envelope always carries a
        fresh request id.
        """
        request_id = str(uuid.uuid4())
        if not packet.id:
            packet.id = request_id
        reply = self.transport.request(
            ServerPacket(build_id=request_id, payload=packet), request_id
        )
        transfer = reply.image_transfer
        if transfer is None:
            raise ValueError("reply carries no image transfer")
        return transfer

    def info(self, digest: str) -> ContentInfo:
        """Metadata of the blob with the given digest."""
        packet = ImageTransfer(
            tag=digest,
            direction=TransferDirection.OUTOF,
            metadata=_base_metadata("Info"),
        )
        reply = self.request(packet)
        _raise_remote_error(reply)
        return info_from_transfer(reply)

    def update(self, info: ContentInfo, *args: str) -> ContentInfo:
        """Update the blob's metadata; ``args`` name the fields to update."""
        packet = info_to_transfer(info)
        packet.metadata.update(_base_metadata("Update"))
        packet.metadata["fieldpaths"] = ",".join(args)
        reply = self.request(packet)
        _raise_remote_error(reply)
        return info_from_transfer(reply)

    def delete(self, digest: str) -> None:
        """Delete the blob with the given digest."""
        packet = ImageTransfer(tag=digest, metadata=_base_metadata("Delete"))
        reply = self.request(packet)
        _raise_remote_error(reply)

    def walk(self, fn: WalkFn, *args: str) -> None:
        """Call ``fn`` with the metadata of each blob the client reports.

        The ``args`` filters are accepted for interface compatibility; the
        client decides what it lists.
        """
        request_id = str(uuid.uuid4())
        packet = ImageTransfer(id=request_id, metadata=_base_metadata("Walk"))

        def by_transfer_id(client_packet: ClientPacket) -> bool:
            transfer = client_packet.image_transfer
            return transfer is not None and transfer.id == request_id

        with PacketChannel(request_id, by_transfer_id) as channel:
            self.register_channel(request_id, channel)
            self.send(ServerPacket(build_id=request_id, payload=packet))
            while True:
                reply = channel.recv(self.recv_timeout).image_transfer
                if reply is None:
                    raise ValueError("walk reply carries no image transfer")
                _raise_remote_error(reply)
                fn(info_from_transfer(reply))
                if reply.complete:
                    return