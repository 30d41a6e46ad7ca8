"""A view of the build context held by the client, walked as a tar stream."""

from __future__ import annotations

import enum
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Mapping

from buildshim.fileinfo import FileInfo, file_info_from_transfer
from buildshim.fssync_proxy import FSSyncProxy
from buildshim.packets import (
    BuildTransfer,
    ClientPacket,
    PacketChannel,
    ServerPacket,
    TransferDirection,
)
from buildshim.remote_file import RemoteFile
from buildshim.tarxfer import TarReceiver

WalkFn = Callable[[str, FileInfo], None]


class TransferMode(str, enum.Enum):
    """How the client delivers the context during a walk."""

    JSON = "json"
    TAR = "tar"


@dataclass
class WalkMetadata:
    """Walk options taken from the build daemon's request metadata."""

    include_patterns: str = ""
    follow_paths: str = ""
    dir_name: str = ""
    mode: TransferMode = TransferMode.TAR


def parse_walk_metadata(metadata: Mapping[str, Any] | None) -> WalkMetadata:
    """Read walk options from request metadata whose values are lists of strings.

    Missing metadata means tar mode; any mode other than tar is rejected.
    """
    if metadata is None:
        return WalkMetadata()

    def joined(key: str) -> str:
        values = metadata.get(key, ())
        if isinstance(values, str):
            values = [values]
        return ",".join(values)

    mode_text = joined("mode")
    if mode_text not in ("", TransferMode.TAR.value):
        raise ValueError(f"invalid walk mode: {mode_text}")
    return WalkMetadata(
        include_patterns=joined("include-patterns"),
        follow_paths=joined("followpaths"),
        dir_name=joined("dir-name"),
        mode=TransferMode.TAR,
    )


class ProxyFS:
    """The client's build context, fetched through a file-sync proxy.

    After a walk the context is cached under ``fs_path``/<checksum>, and
    files are opened from that copy; before it, they are read from the client.
    """

    recv_timeout: float | None = None

    def __init__(
        self, proxy: FSSyncProxy, root: str, fs_path: str | os.PathLike
    ) -> None:
        self.proxy = proxy
        self.root = root
        self.fs_path = os.fspath(fs_path)
        self._lock = threading.Lock()
        self._checksum = ""

    @property
    def checksum(self) -> str:
        """Checksum naming the cached copy of the context; empty before a walk."""
        with self._lock:
            return self._checksum

    @checksum.setter
    def checksum(self, value: str) -> None:
        with self._lock:
            self._checksum = value

    def open(self, path: str) -> BinaryIO | RemoteFile:
        """Open a file of the context for reading."""
        checksum = self.checksum
        if checksum:
            local = os.path.join(self.fs_path, checksum, path.lstrip("/"))
            return open(local, "rb")

        request_id = str(uuid.uuid4())
        packet = BuildTransfer(
            id=request_id,
            direction=TransferDirection.OUTOF,
            source=path,
            metadata={"os": "linux", "stage": "fssync", "method": "Info"},
        )
        try:
            reply = self.proxy.transport.request(
                ServerPacket(build_id=request_id, payload=packet), request_id
            )
        except Exception as exc:
            raise RuntimeError(
                f"failed requesting file info for {path}: {exc}"
            ) from exc
        transfer = reply.build_transfer
        if transfer is None:
            raise ValueError(f"file info reply for {path} carries no build transfer")
        if "error" in transfer.metadata:
            raise RuntimeError(
                f"server error getting file info for {path}: {transfer.metadata['error']}"
            )
        info = file_info_from_transfer(transfer)
        return RemoteFile(self.proxy, info, request_id)

    def walk(self, fn: WalkFn, metadata: Mapping[str, Any] | None = None) -> None:
        """Ask the client for the context and call ``fn(path, info)`` for each entry."""
        walk_meta = parse_walk_metadata(metadata)

        request_id = str(uuid.uuid4())

        def by_build_id(packet: ClientPacket) -> bool:
            return packet.build_id == request_id

        with PacketChannel(request_id, by_build_id) as channel:
            self.proxy.register_channel(request_id, channel)

            follow_paths = walk_meta.follow_paths or ",".join(self.proxy.added_globs)
            packet = BuildTransfer(
                id=request_id,
                direction=TransferDirection.OUTOF,
                source=self.root,
                metadata={
                    "os": "linux",
                    "stage": "fssync",
                    "method": "Walk",
                    "dir-name": walk_meta.dir_name,
                    "include-patterns": walk_meta.include_patterns,
                    "followpaths": follow_paths,
                    "mode": walk_meta.mode.value,
                },
            )
            try:
                self.proxy.send(ServerPacket(build_id=request_id, payload=packet))
            except Exception as exc:
                raise ConnectionError(f"failed sending walk request: {exc}") from exc

            if walk_meta.mode is not TransferMode.TAR:
                raise ValueError(f"unsupported walk mode: {walk_meta.mode.value!r}")
            receiver = TarReceiver(self.fs_path, channel, self.recv_timeout)
            self.checksum = receiver.receive(fn)