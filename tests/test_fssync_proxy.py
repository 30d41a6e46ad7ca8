import os

import pytest

from buildshim.fssync_proxy import FSSyncProxy
from buildshim.packets import (
    BuildTransfer,
    ClientPacket,
    IgnorePacket,
    ImageTransfer,
    PacketChannel,
    ProtocolNegotiationError,
    ServerPacket,
)


class FakeTransport:
    def __init__(self, reply=None):
        self.reply = reply if reply is not None else ClientPacket(payload=BuildTransfer())
        self.requests = []
        self.sent = []
        self.channels = {}

    def request(self, packet, request_id):
        self.requests.append((packet, request_id))
        return self.reply

    def send(self, packet):
        self.sent.append(packet)

    def register_channel(self, channel_id, channel):
        self.channels[channel_id] = channel


def make_proxy(transport=None, base="/var/lib/shim"):
    return FSSyncProxy(transport or FakeTransport(), "ctx", base, ["a/*", "b"])


def test_base_path_is_under_stage_directory():
    proxy = make_proxy(base="/tmp/base")
    assert proxy.base_path == os.path.join("/tmp/base", "fssync")
    assert proxy.context_dir == "ctx"
    assert proxy.added_globs == ["a/*", "b"]


def test_filter_matching_stage():
    proxy = make_proxy()
    packet = ClientPacket(payload=BuildTransfer(metadata={"stage": str(proxy)}))
    assert proxy.filter(packet) is True


def test_filter_other_stage():
    proxy = make_proxy()
    packet = ClientPacket(payload=BuildTransfer(metadata={"stage": "exporter"}))
    with pytest.raises(IgnorePacket):
        proxy.filter(packet)


def test_filter_image_transfer_ignored():
    proxy = make_proxy()
    packet = ClientPacket(payload=ImageTransfer(metadata={"stage": "fssync"}))
    with pytest.raises(IgnorePacket):
        proxy.filter(packet)


def test_request_assigns_id_and_returns_reply():
    reply = BuildTransfer(data=b"payload", metadata={"size": "7"})
    transport = FakeTransport(ClientPacket(payload=reply))
    proxy = make_proxy(transport)
    packet = BuildTransfer(id="old", metadata={"method": "Read"})

    result = proxy.request(packet)

    assert result is reply
    sent, request_id = transport.requests[0]
    assert isinstance(sent, ServerPacket)
    assert sent.build_transfer is packet
    assert packet.id == request_id == sent.build_id
    assert packet.id != "old"
    assert packet.metadata == {"method": "Read"}


def test_request_without_build_transfer_reply():
    transport = FakeTransport(ClientPacket(payload=ImageTransfer()))
    proxy = make_proxy(transport)
    with pytest.raises(ValueError):
        proxy.request(BuildTransfer())


def test_send_and_register_delegate():
    transport = FakeTransport()
    proxy = make_proxy(transport)
    packet = ServerPacket(build_id="x", payload=BuildTransfer())
    channel = PacketChannel("x")
    proxy.send(packet)
    proxy.register_channel("x", channel)
    assert transport.sent == [packet]
    assert transport.channels == {"x": channel}


def test_tar_stream_refuses():
    proxy = make_proxy()
    with pytest.raises(ProtocolNegotiationError, match="failed to negotiate protocol"):
        proxy.tar_stream(object())