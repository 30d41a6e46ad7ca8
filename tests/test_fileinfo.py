from datetime import datetime, timezone

import pytest

from buildshim.fileinfo import (
    FileInfo,
    file_info_from_transfer,
    parse_file_mode,
    parse_gid,
    parse_link_name,
    parse_mod_time,
    parse_size,
    parse_uid,
    sort_by_name,
)
from buildshim.packets import BuildTransfer

NOW = datetime(2024, 5, 17, 12, 30, 45, tzinfo=timezone.utc)


def test_transform_into_file_info():
    meta = {
        "size": "1234",
        "mode": "420",
        "modified_at": "2024-05-17T12:30:45Z",
        "uid": "1000",
        "gid": "2000",
        "target": "link-target",
    }
    transfer = BuildTransfer(source="hello", is_directory=False, metadata=meta)
    info = file_info_from_transfer(transfer)

    assert info.name == "hello"
    assert info.size == 1234
    assert info.mode == 0o644
    assert info.mod_time == NOW
    assert info.is_dir is False
    assert (info.uid, info.gid) == (1000, 2000)
    assert info.link_name == "link-target"

    st = info.stat()
    assert st.path == "hello"
    assert st.mode == 0o644
    assert st.uid == 1000
    assert st.gid == 2000
    assert st.linkname == "link-target"
    assert st.mod_time == int(NOW.timestamp()) * 1_000_000_000


def test_parse_errors():
    with pytest.raises(ValueError):
        parse_size({"size": "bad"})
    with pytest.raises(ValueError):
        parse_file_mode({"mode": "bad"})
    with pytest.raises(ValueError):
        parse_mod_time({"modified_at": "not-time"})
    with pytest.raises(ValueError):
        parse_uid({"uid": "bad"})
    with pytest.raises(ValueError):
        parse_gid({"gid": "bad"})


def test_sorting():
    ordered = sort_by_name([FileInfo(name="b"), FileInfo(name="a")])
    assert [info.name for info in ordered] == ["a", "b"]


def test_missing_entries_default():
    assert parse_size({}) == 0
    assert parse_file_mode({}) == 0
    assert parse_mod_time({}) is None
    assert parse_uid({}) == 0
    assert parse_gid({}) == 0
    assert parse_link_name({}) == ""


def test_present_but_empty_size_is_an_error():
    with pytest.raises(ValueError):
        parse_size({"size": ""})


@pytest.mark.parametrize("value", ["-1", "4294967296", "+5"])
def test_uid_out_of_range_or_signed(value):
    with pytest.raises(ValueError):
        parse_uid({"uid": value})


def test_mod_time_with_offset_and_fraction():
    parsed = parse_mod_time({"modified_at": "2024-05-17T14:30:45.123456789+02:00"})
    assert parsed.astimezone(timezone.utc) == datetime(
        2024, 5, 17, 12, 30, 45, 123456, tzinfo=timezone.utc
    )


def test_mod_time_requires_zone():
    with pytest.raises(ValueError):
        parse_mod_time({"modified_at": "2024-05-17T12:30:45"})


def test_missing_source_rejected():
    with pytest.raises(ValueError):
        file_info_from_transfer(BuildTransfer(source=None, metadata={}))


def test_stat_without_mod_time_is_zero():
    assert FileInfo(name="x").stat().mod_time == 0


def test_directory_flag_carried_over():
    info = file_info_from_transfer(BuildTransfer(source="d", is_directory=True, metadata={}))
    assert info.is_dir is True
    assert info.is_regular is False