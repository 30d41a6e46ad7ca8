"""The diff-copy sender: streams file stats and requested file data to the build daemon."""

from __future__ import annotations

import contextlib
import enum
import itertools
import stat as stat_module
import threading
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, NamedTuple

from buildshim.fileinfo import FileInfo, Stat
from buildshim.filesystem import ProxyFS
from buildshim.fssync_proxy import FSSyncProxy

_WORKERS = 64
_PIPELINE_SIZE = 128
_BUFFER_SIZE = 1 << 20
_POLL_INTERVAL = 0.05


class PacketType(enum.IntEnum):
    STAT = 0
    REQ = 1
    DATA = 2
    FIN = 3
    ERR = 4


@dataclass
class Packet:
    """One message of the diff-copy protocol."""

    type: PacketType = PacketType.STAT
    stat: Stat | None = None
    id: int = 0
    data: bytes = b""


class _SendHandle(NamedTuple):
    id: int
    path: str


class _Cancelled(Exception):
    """Raised in a worker once another worker has failed."""


def file_can_request_data(mode: int) -> bool:
    """True for modes whose content the receiver may request: regular files."""
    return stat_module.S_IFMT(mode) in (0, stat_module.S_IFREG)


class FileSender:
    """A writer that sends each chunk as a data packet for one file."""

    def __init__(self, sender: "Sender", file_id: int) -> None:
        self.sender = sender
        self.file_id = file_id

    def write(self, data: bytes) -> int:
        if not data:
            return 0
        self.sender.send(Packet(type=PacketType.DATA, id=self.file_id, data=bytes(data)))
        return len(data)


class Sender:
    """Runs one diff-copy session over ``conn``.

    ``conn`` must provide ``recv()`` returning a Packet and ``send(packet)``;
    an optional ``metadata`` attribute carries the walk options.
    """

    def __init__(self, conn: Any, fs: Any) -> None:
        self.conn = conn
        self.fs = fs
        self.files: dict[int, str] = {}
        self.pipeline: Queue[_SendHandle] = Queue(maxsize=_PIPELINE_SIZE)
        self._files_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stop = threading.Event()
        self._closed = threading.Event()

    def send(self, packet: Packet) -> None:
        with self._send_lock:
            self.conn.send(packet)

    def queue(self, file_id: int) -> None:
        """Schedule the file registered under ``file_id`` for sending."""
        with self._files_lock:
            try:
                path = self.files.pop(file_id)
            except KeyError:
                raise ValueError(f"invalid file id {file_id}") from None
        self.pipeline.put(_SendHandle(file_id, path))

    def run(self) -> None:
        """Walk, serve data requests and finish; raise the first failure."""
        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def guarded(target):
            def runner() -> None:
                try:
                    target()
                except BaseException as exc:
                    with errors_lock:
                        errors.append(exc)
                    self._stop.set()

            return runner

        threads = [threading.Thread(target=guarded(self._walk_and_report), daemon=True)]
        threads += [
            threading.Thread(target=guarded(self._work), daemon=True)
            for _ in range(_WORKERS)
        ]
        threads.append(threading.Thread(target=guarded(self._receive), daemon=True))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        real = [exc for exc in errors if not isinstance(exc, _Cancelled)]
        if real:
            raise real[0]
        if errors:
            raise errors[0]

    def _walk_and_report(self) -> None:
        try:
            self._walk()
        except Exception as exc:
            with contextlib.suppress(Exception):
                self.send(Packet(type=PacketType.ERR, data=str(exc).encode()))
            raise

    def _walk(self) -> None:
        counter = itertools.count()

        def visit(path: str, info: FileInfo) -> None:
            stat = info.stat()
            index = next(counter)
            if file_can_request_data(stat.mode):
                with self._files_lock:
                    self.files[index] = stat.path
            try:
                self.send(Packet(type=PacketType.STAT, stat=stat))
            except Exception as exc:
                raise ConnectionError(f"failed to send stat {path}: {exc}") from exc

        self.fs.walk(visit, getattr(self.conn, "metadata", None))
        try:
            self.send(Packet(type=PacketType.STAT))
        except Exception as exc:
            raise ConnectionError(f"failed to send last stat: {exc}") from exc

    def _work(self) -> None:
        while True:
            try:
                handle = self.pipeline.get(timeout=_POLL_INTERVAL)
            except Empty:
                if self._closed.is_set():
                    return
                continue
            if self._stop.is_set():
                raise _Cancelled()
            self._send_file(handle)

    def _receive(self) -> None:
        try:
            while True:
                if self._stop.is_set():
                    raise _Cancelled()
                packet = self.conn.recv()
                if packet.type == PacketType.ERR:
                    message = bytes(packet.data).decode(errors="replace")
                    raise RuntimeError(f"error from receiver: {message}")
                if packet.type == PacketType.REQ:
                    self.queue(packet.id)
                elif packet.type == PacketType.FIN:
                    self.send(Packet(type=PacketType.FIN))
                    return
        finally:
            self._closed.set()

    def _send_file(self, handle: _SendHandle) -> None:
        try:
            source = self.fs.open(handle.path)
        except Exception:
            source = None
        if source is not None:
            writer = FileSender(self, handle.id)
            with contextlib.closing(source):
                while chunk := source.read(_BUFFER_SIZE):
                    writer.write(chunk)
        self.send(Packet(type=PacketType.DATA, id=handle.id))


def diff_copy(proxy: FSSyncProxy, conn: Any) -> None:
    """Serve one diff-copy session for the proxy's build context."""
    fs = ProxyFS(proxy, proxy.context_dir, proxy.base_path)
    Sender(conn, fs).run()