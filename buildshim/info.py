"""Content metadata and its encoding in image transfer metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping

from buildshim.fileinfo import parse_rfc3339
from buildshim.packets import ImageTransfer

LABEL_PREFIX = "__label:"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_ZERO_TIME_TEXT = "0001-01-01T00:00:00Z"
_SIGNED = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


@dataclass
class ContentInfo:
    """Metadata of one blob in the content store."""

    digest: str = ""
    size: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    labels: dict[str, str] = field(default_factory=dict)


def format_rfc3339(moment: datetime | None) -> str:
    """Format a timestamp as RFC 3339 with whole seconds; None is the zero time."""
    if moment is None:
        return _ZERO_TIME_TEXT
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    base = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    offset = moment.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return base + "Z"
    sign = "+" if seconds > 0 else "-"
    seconds = abs(seconds)
    return f"{base}{sign}{seconds // 3600:02d}:{seconds % 3600 // 60:02d}"


def _parse_timestamp(text: str) -> datetime | None:
    if not text:
        return None
    moment = parse_rfc3339(text)
    return None if moment == _ZERO_TIME else moment


def parse_size(metadata: Mapping[str, str]) -> int:
    """The "size" entry as a signed 64-bit integer; it must be present."""
    text = metadata.get("size", "")
    if not _SIGNED.fullmatch(text):
        raise ValueError(f"invalid size: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"size out of range: {text!r}")
    return value


def parse_created_at(metadata: Mapping[str, str]) -> datetime | None:
    """The "created_at" timestamp, or None when empty."""
    return _parse_timestamp(metadata.get("created_at", ""))


def parse_updated_at(metadata: Mapping[str, str]) -> datetime | None:
    """The "updated_at" timestamp, or None when empty."""
    return _parse_timestamp(metadata.get("updated_at", ""))


def parse_labels(metadata: Mapping[str, str]) -> dict[str, str]:
    """The entries carrying the label prefix, with the prefix removed."""
    return {
        key[len(LABEL_PREFIX):]: value
        for key, value in metadata.items()
        if key.startswith(LABEL_PREFIX)
    }


def info_from_transfer(transfer: ImageTransfer) -> ContentInfo:
    """Decode content metadata from an image transfer."""
    metadata = transfer.metadata
    size = parse_size(metadata)
    created_at = parse_created_at(metadata)
    updated_at = parse_updated_at(metadata)
    return ContentInfo(
        digest=transfer.tag,
        size=size,
        created_at=created_at,
        updated_at=updated_at,
        labels=parse_labels(metadata),
    )


def info_to_transfer(info: ContentInfo) -> ImageTransfer:
    """Encode content metadata into an image transfer."""
    metadata = {
        "os": "linux",
        "size": str(info.size),
        "created_at": format_rfc3339(info.created_at),
        "updated_at": format_rfc3339(info.updated_at),
    }
    for key, value in info.labels.items():
        metadata[LABEL_PREFIX + key] = value
    return ImageTransfer(tag=info.digest, metadata=metadata)