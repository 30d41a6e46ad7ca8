import io

import pytest

from buildshim.content_store import ContentStoreProxy
from buildshim.packets import ClientPacket, Descriptor, ImageTransfer
from buildshim.readerat import ContentReader, open_reader


class FakeTransport:
    def __init__(self, payload=b"", reply=None):
        self.payload = payload
        self.reply = reply
        self.requests = []
        self.channels = {}

    def request(self, packet, request_id):
        self.requests.append(packet)
        if self.reply is not None:
            return ClientPacket(build_id=request_id, payload=self.reply)
        metadata = packet.image_transfer.metadata
        offset = int(metadata["offset"])
        length = int(metadata["length"])
        return ClientPacket(
            build_id=request_id,
            payload=ImageTransfer(
                data=self.payload[offset:offset + length],
                metadata={"size": str(len(self.payload))},
            ),
        )

    def register_channel(self, channel_id, channel):
        self.channels[channel_id] = channel

    def send(self, packet):
        pass


def new_descriptor(size):
    return Descriptor(
        digest="sha256:deadbeef", media_type="application/octet-stream", size=size
    )


def make_reader(payload=b"", reply=None):
    transport = FakeTransport(payload, reply)
    reader = open_reader(ContentStoreProxy(transport), new_descriptor(len(payload)))
    return reader, transport


def test_read_sequential_with_fixed_reply():
    payload = b"hello, container reader!"
    reply = ImageTransfer(data=payload, metadata={"size": str(len(payload))})
    reader, _ = make_reader(payload, reply)
    with reader:
        assert reader.read_at(5, 0) == b"hello"


def test_read_at_middle_and_eof():
    payload = b"0123456789"
    reader, _ = make_reader(payload)
    with reader:
        assert reader.read_at(4, 3) == b"3456"
        assert reader.read_at(4, len(payload)) == b""


def test_read_at_with_offset_reply():
    payload = b"abcdef"
    reply = ImageTransfer(data=payload[2:], metadata={"size": str(len(payload))})
    reader, _ = make_reader(payload, reply)
    with reader:
        assert reader.read_at(3, 3) == b"cde"


def test_init_server_error_propagates():
    reply = ImageTransfer(metadata={"error": "boom"})
    transport = FakeTransport(reply=reply)
    with pytest.raises(RuntimeError, match="boom"):
        open_reader(ContentStoreProxy(transport), new_descriptor(0))


def test_size_reported_by_client():
    data = bytes(100)
    reply = ImageTransfer(data=data, metadata={"size": str(len(data))})
    reader, _ = make_reader(data, reply)
    with reader:
        assert reader.size == 100


def test_invalid_size_raises():
    reply = ImageTransfer(metadata={"size": "lots"})
    transport = FakeTransport(reply=reply)
    with pytest.raises(ValueError):
        open_reader(ContentStoreProxy(transport), new_descriptor(0))


def test_sequential_read_advances_position():
    reader, _ = make_reader(b"hello world")
    with reader:
        assert reader.read(5) == b"hello"
        assert reader.position == 5
        assert reader.read() == b" world"
        assert reader.read(3) == b""


def test_seek_then_read():
    reader, _ = make_reader(b"abcdef")
    with reader:
        assert reader.seek(2) == 2
        assert reader.seek(1, io.SEEK_CUR) == 3
        assert reader.read(2) == b"de"
        assert reader.seek(-1, io.SEEK_END) == 5
        assert reader.read(10) == b"f"


@pytest.mark.parametrize(
    "offset, whence",
    [(-1, io.SEEK_SET), (7, io.SEEK_SET), (1, io.SEEK_END), (0, 9)],
)
def test_seek_errors(offset, whence):
    reader, _ = make_reader(b"abcdef")
    with reader, pytest.raises(ValueError):
        reader.seek(offset, whence)


def test_request_packet_shape():
    reader, transport = make_reader(b"0123456789")
    with reader:
        reader.read_at(4, 3)
    packet = transport.requests[-1].image_transfer
    assert packet.id == reader.id
    assert packet.metadata["offset"] == "3"
    assert packet.metadata["length"] == "4"
    assert packet.metadata["stage"] == "content-store"
    assert packet.metadata["method"] == "/containerd.services.content.v1.Content/ReaderAt"
    assert packet.descriptor.digest == "sha256:deadbeef"


def test_size_request_uses_zero_range():
    _, transport = make_reader(b"xyz")
    metadata = transport.requests[0].image_transfer.metadata
    assert (metadata["offset"], metadata["length"]) == ("0", "0")


def test_close_closes_registered_channel():
    reader, transport = make_reader(b"abc")
    channel = transport.channels[reader.id]
    assert channel.closed is False
    reader.close()
    assert channel.closed is True
    with pytest.raises(ValueError):
        reader.read_at(1, 0)


def test_uninitialised_reader_has_zero_size():
    reader = ContentReader(ContentStoreProxy(FakeTransport()), new_descriptor(0), "rid")
    assert (reader.id, reader.size) == ("rid", 0)