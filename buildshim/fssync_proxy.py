"""A file-sync stage that fetches the build context from the client."""

from __future__ import annotations

import os
import uuid
from typing import Any, Iterable

from buildshim.packets import (
    BuildTransfer,
    ClientPacket,
    IgnorePacket,
    PacketChannel,
    ProtocolNegotiationError,
    ServerPacket,
)

STAGE = "fssync"


class FSSyncProxy:
    """Proxies file-sync requests from the build daemon to the client.

    ``transport`` must provide ``request(packet, request_id)``, ``send(packet)``
    and ``register_channel(channel_id, channel)``.
    """

    def __init__(
        self,
        transport: Any,
        context_dir: str,
        base_path: str | os.PathLike,
        added_globs: Iterable[str] | None = None,
    ) -> None:
        self.transport = transport
        self.context_dir = context_dir
        self.base_path = os.path.join(os.fspath(base_path), STAGE)
        self.added_globs = list(added_globs or [])

    def __str__(self) -> str:
        return STAGE

    def filter(self, packet: ClientPacket) -> bool:
        """Accept build transfers addressed to this stage; raise IgnorePacket otherwise."""
        transfer = packet.build_transfer
        if transfer is not None and transfer.metadata.get("stage") == STAGE:
            return True
        raise IgnorePacket(f"packet not addressed to {STAGE}")

    def request(self, packet: BuildTransfer) -> BuildTransfer:
        """Send a build transfer under a fresh id and return the client's reply."""
        request_id = str(uuid.uuid4())
        packet.id = request_id
        reply = self.transport.request(
            ServerPacket(build_id=request_id, payload=packet), request_id
        )
        transfer = reply.build_transfer
        if transfer is None:
            raise ValueError("reply carries no build transfer")
        return transfer

    def send(self, packet: ServerPacket) -> None:
        """Send a packet to the client without waiting for a reply."""
        self.transport.send(packet)

    def register_channel(self, channel_id: str, channel: PacketChannel) -> None:
        """Route client packets for ``channel_id`` to ``channel``."""
        self.transport.register_channel(channel_id, channel)

    def tar_stream(self, stream: Any) -> None:
        """The tar-stream protocol is not offered."""
        raise ProtocolNegotiationError()