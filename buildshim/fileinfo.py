"""File metadata received from the build client, and its parsing from transfer metadata."""

from __future__ import annotations

import re
import stat as stat_module
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping

from buildshim.packets import BuildTransfer

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SIGNED = re.compile(r"[+-]?[0-9]+")
_UNSIGNED = re.compile(r"[0-9]+")
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT32_MAX = (1 << 32) - 1


@dataclass
class Stat:
    """The stat record sent to the build daemon for one file."""

    path: str = ""
    mode: int = 0
    uid: int = 0
    gid: int = 0
    mod_time: int = 0
    linkname: str = ""


@dataclass
class FileInfo:
    """Metadata of one file in the build context."""

    name: str = ""
    size: int = 0
    mode: int = 0
    mod_time: datetime | None = None
    is_dir: bool = False
    uid: int = 0
    gid: int = 0
    link_name: str = ""

    @property
    def is_regular(self) -> bool:
        return stat_module.S_IFMT(self.mode) in (0, stat_module.S_IFREG) and not self.is_dir

    @property
    def is_symlink(self) -> bool:
        return stat_module.S_ISLNK(self.mode)

    def stat(self) -> Stat:
        """The stat record for this file; modification time in nanoseconds."""
        if self.mod_time is None:
            nanos = 0
        else:
            mod_time = self.mod_time
            if mod_time.tzinfo is None:
                mod_time = mod_time.replace(tzinfo=timezone.utc)
            nanos = (mod_time - _EPOCH) // timedelta(microseconds=1) * 1000
        return Stat(
            path=self.name,
            mode=self.mode,
            uid=self.uid,
            gid=self.gid,
            mod_time=nanos,
            linkname=self.link_name,
        )


def _parse_int(text: str, field_name: str) -> int:
    if not _SIGNED.fullmatch(text):
        raise ValueError(f"invalid {field_name}: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"{field_name} out of range: {text!r}")
    return value


def _parse_uint32(text: str, field_name: str) -> int:
    if not _UNSIGNED.fullmatch(text):
        raise ValueError(f"invalid {field_name}: {text!r}")
    value = int(text)
    if value > _UINT32_MAX:
        raise ValueError(f"{field_name} out of range: {text!r}")
    return value


def parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 timestamp with a required zone offset."""
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {text!r}")
    base, fraction, zone = match.groups()
    iso = base
    if fraction:
        iso += "." + fraction[:6].ljust(6, "0")
    iso += "+00:00" if zone == "Z" else zone
    return datetime.fromisoformat(iso)


def parse_size(metadata: Mapping[str, str]) -> int:
    """The "size" entry, or 0 when it is absent."""
    if "size" in metadata:
        return _parse_int(metadata["size"], "size")
    return 0


def parse_file_mode(metadata: Mapping[str, str]) -> int:
    """The "mode" entry as an unsigned 32-bit value, or 0 when empty."""
    text = metadata.get("mode", "")
    if not text:
        return 0
    return _parse_uint32(text, "mode")


def parse_mod_time(metadata: Mapping[str, str]) -> datetime | None:
    """The "modified_at" timestamp, or None when empty."""
    text = metadata.get("modified_at", "")
    if not text:
        return None
    return parse_rfc3339(text)


def parse_uid(metadata: Mapping[str, str]) -> int:
    text = metadata.get("uid", "")
    if not text:
        return 0
    return _parse_uint32(text, "uid")


def parse_gid(metadata: Mapping[str, str]) -> int:
    text = metadata.get("gid", "")
    if not text:
        return 0
    return _parse_uint32(text, "gid")


def parse_link_name(metadata: Mapping[str, str]) -> str:
    return metadata.get("target", "")


def file_info_from_transfer(transfer: BuildTransfer) -> FileInfo:
    """Build a FileInfo from a build transfer's source and metadata."""
    metadata = transfer.metadata
    size = parse_size(metadata)
    mode = parse_file_mode(metadata)
    mod_time = parse_mod_time(metadata)
    uid = parse_uid(metadata)
    gid = parse_gid(metadata)
    if transfer.source is None:
        raise ValueError("build transfer has no source path")
    return FileInfo(
        name=transfer.source,
        size=size,
        mode=mode,
        mod_time=mod_time,
        is_dir=transfer.is_directory,
        uid=uid,
        gid=gid,
        link_name=parse_link_name(metadata),
    )


def sort_by_name(infos: Iterable[FileInfo]) -> list[FileInfo]:
    """The file infos ordered by name."""
    return sorted(infos, key=lambda info: info.name)