"""Receiving a build context as a tar stream, caching it and walking it."""

from __future__ import annotations

import hashlib
import os
import shutil
import stat as stat_module
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from buildshim.fileinfo import FileInfo
from buildshim.packets import PacketChannel

WalkFn = Callable[[str, FileInfo], None]


class TarReceiver:
    """Stream a remote tar archive into a cache under ``cache_base`` and walk its entries.

    The cache directory is named by the SHA-256 of the first chunk received.
    """

    def __init__(
        self,
        cache_base: str | os.PathLike,
        channel: PacketChannel,
        timeout: float | None = None,
    ) -> None:
        self.cache_base = Path(cache_base)
        self._channel = channel
        self._timeout = timeout

    def _chunks(self) -> Iterator[bytes]:
        while True:
            try:
                packet = self._channel.recv(self._timeout)
            except EOFError:
                return
            transfer = packet.build_transfer
            if transfer is None:
                transfer = packet.image_transfer
            if transfer is None:
                raise ValueError("tar stream: unexpected packet type")
            if "error" in transfer.metadata:
                raise RuntimeError(
                    f"server error in TAR mode: {transfer.metadata['error']}"
                )
            yield transfer.data
            if transfer.complete:
                return

    def receive(self, fn: WalkFn) -> str:
        """Receive the archive, call ``fn(path, info)`` for each entry, return the checksum."""
        chunks = self._chunks()
        header = next(chunks, b"")

        checksum = hashlib.sha256(header).hexdigest()
        cache_dir = self.cache_base / checksum
        tar_file = Path(str(cache_dir) + ".tar")

        cached = cache_dir.is_dir()
        if not cached:
            self.cache_base.mkdir(mode=0o755, parents=True, exist_ok=True)
            _write_new(tar_file, header)

        try:
            if cached:
                for _ in chunks:
                    pass
            else:
                with open(tar_file, "ab") as out:
                    for chunk in chunks:
                        out.write(chunk)
        except BaseException:
            if not cached:
                tar_file.unlink(missing_ok=True)
            raise

        if not cached:
            unpack_tar(tar_file, cache_dir)
            tar_file.unlink(missing_ok=True)

        for rel, info in _walk_cache(cache_dir):
            fn(rel, info)
        return checksum


def _write_new(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as out:
        out.write(data)


def _walk_cache(root: Path) -> Iterator[tuple[str, FileInfo]]:
    """Yield regular files, directories and symlinks below root in lexical order."""

    def visit(directory: str) -> Iterator[tuple[str, FileInfo]]:
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            st = os.lstat(path)
            mode = st.st_mode
            is_dir = stat_module.S_ISDIR(mode)
            is_link = stat_module.S_ISLNK(mode)
            if stat_module.S_ISREG(mode) or is_dir or is_link:
                rel = os.path.relpath(path, root)
                yield rel, FileInfo(
                    name=rel,
                    size=st.st_size,
                    mode=mode,
                    mod_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    is_dir=is_dir,
                    link_name=os.readlink(path) if is_link else "",
                )
            if is_dir:
                yield from visit(path)

    if root.is_dir():
        yield from visit(str(root))


def _remove_all(path: str) -> None:
    if os.path.islink(path) or os.path.isfile(path):
        os.unlink(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


def unpack_tar(tar_file: str | os.PathLike, dest: str | os.PathLike) -> None:
    """Extract directories, regular files, symlinks and hard links of a plain tar into dest.

    Raises ValueError for an entry whose path leaves dest.
    """
    dest_dir = os.path.normpath(os.fspath(dest))
    os.makedirs(dest_dir, mode=0o755, exist_ok=True)
    if os.path.getsize(tar_file) == 0:
        return

    prefix = dest_dir + os.sep
    with tarfile.open(tar_file, mode="r:") as archive:
        for member in archive:
            target = os.path.normpath(os.path.join(dest_dir, member.name))
            if not target.startswith(prefix):
                raise ValueError(f"invalid tar path: {member.name}")
            if member.isdir():
                os.makedirs(target, mode=0o755, exist_ok=True)
            elif member.type in (tarfile.REGTYPE, tarfile.AREGTYPE):
                os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                source = archive.extractfile(member)
                fd = os.open(
                    target, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, member.mode & 0o777
                )
                with os.fdopen(fd, "wb") as out:
                    if source is not None:
                        with source:
                            shutil.copyfileobj(source, out)
            elif member.issym():
                os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                _remove_all(target)
                os.symlink(member.linkname, target)
            elif member.islnk():
                link_target = os.path.join(dest_dir, member.linkname)
                _remove_all(target)
                os.link(link_target, target)