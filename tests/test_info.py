from datetime import datetime, timedelta, timezone

import pytest

from buildshim.info import (
    ContentInfo,
    format_rfc3339,
    info_from_transfer,
    info_to_transfer,
    parse_created_at,
    parse_labels,
    parse_size,
    parse_updated_at,
)
from buildshim.packets import ImageTransfer

DIGEST = "sha256:74434a965d5273cdecf5aee6387b62e4266ac82b1928427a349924aa2103805c"


def test_round_trip():
    now = datetime.now(timezone.utc).replace(microsecond=0)
    info_in = ContentInfo(
        digest=DIGEST,
        size=1234,
        created_at=now,
        updated_at=now + timedelta(minutes=10),
        labels={"a": "1", "b": "2"},
    )
    info_out = info_from_transfer(info_to_transfer(info_in))
    assert info_out == info_in


def test_round_trip_without_timestamps():
    info_in = ContentInfo(digest=DIGEST, size=7, labels={})
    info_out = info_from_transfer(info_to_transfer(info_in))
    assert info_out == info_in


def test_to_transfer_metadata():
    info = ContentInfo(
        digest="sha256:abcdef",
        size=42,
        created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        labels={"key": "val"},
    )
    transfer = info_to_transfer(info)
    assert transfer.tag == "sha256:abcdef"
    assert transfer.metadata["os"] == "linux"
    assert transfer.metadata["size"] == "42"
    assert transfer.metadata["created_at"] == "2024-01-02T03:04:05Z"
    assert transfer.metadata["__label:key"] == "val"


def test_format_non_utc_offset_round_trips():
    zone = timezone(timedelta(hours=2))
    moment = datetime(2024, 5, 6, 7, 8, 9, tzinfo=zone)
    text = format_rfc3339(moment)
    assert text.endswith("+02:00")
    assert parse_created_at({"created_at": text}) == moment


def test_size_errors():
    with pytest.raises(ValueError):
        parse_size({"size": "not-int"})


def test_size_missing_is_error():
    with pytest.raises(ValueError):
        parse_size({})


def test_size_value():
    assert parse_size({"size": "1234"}) == 1234


def test_timestamps_empty():
    assert parse_created_at({}) is None
    assert parse_updated_at({}) is None


def test_labels():
    meta = {"__label:foo": "bar", "unrelated": "x"}
    assert parse_labels(meta) == {"foo": "bar"}


def test_bad_timestamp():
    transfer = ImageTransfer(
        metadata={"size": "1", "created_at": "bad-time", "updated_at": "1700000000"}
    )
    with pytest.raises(ValueError):
        info_from_transfer(transfer)