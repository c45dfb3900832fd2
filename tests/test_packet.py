"""Tests for the IPC frame codec and the read buffer."""

import json
import struct

import pytest

from richpipe.exc import MalformedFrameError
from richpipe.ipc.packet import (
    HEADER_SIZE,
    IPCOpcode,
    IPCPacket,
    PacketBuffer,
    decode,
    encode,
)


def frame(opcode: int, body: bytes) -> bytes:
    return struct.pack("<II", opcode, len(body)) + body


class TestEncode:
    def test_header_layout(self):
        data = encode(IPCOpcode.FRAME, {"a": 1})

        assert data[:4] == (1).to_bytes(4, "little")
        assert data[4:8] == len(b'{"a":1}').to_bytes(4, "little")
        assert data[8:] == b'{"a":1}'

    def test_empty_payload_is_just_a_header(self):
        data = encode(IPCOpcode.PING)

        assert data == b"\x03\x00\x00\x00\x00\x00\x00\x00"
        assert len(data) == HEADER_SIZE

    def test_length_counts_bytes_not_characters(self):
        data = encode(IPCOpcode.FRAME, {"state": "héllo ✨"})
        _, length = struct.unpack("<II", data[:8])

        assert length == len(data) - HEADER_SIZE
        assert json.loads(data[8:].decode("utf-8")) == {"state": "héllo ✨"}

    def test_handshake(self):
        data = encode(IPCOpcode.HANDSHAKE, {"v": 1, "client_id": "1234"})

        assert data == frame(0, b'{"v":1,"client_id":"1234"}')


class TestDecode:
    def test_set_activity_scenario(self):
        payload = {
            "cmd": "SET_ACTIVITY",
            "args": {"pid": 1234, "activity": {"state": "x"}},
            "nonce": "abc",
        }

        packet = decode(encode(IPCOpcode.FRAME, payload))

        assert packet.opcode == 1
        assert packet.opcode is IPCOpcode.FRAME
        assert packet.data == payload
        assert packet.cmd == "SET_ACTIVITY"
        assert packet.nonce == "abc"

    @pytest.mark.parametrize("opcode", list(IPCOpcode))
    def test_every_opcode_decodes(self, opcode):
        packet = decode(encode(opcode, ["x", 2, None]))

        assert packet == IPCPacket(opcode, ["x", 2, None])

    def test_header_only_frame_has_no_payload(self):
        packet = decode(encode(IPCOpcode.PONG))

        assert packet.opcode is IPCOpcode.PONG
        assert packet.data is None

    def test_no_bytes_is_not_an_error(self):
        assert decode(b"") is None

    def test_short_header(self):
        with pytest.raises(MalformedFrameError):
            decode(b"\x01\x00\x00\x00\x00")

    def test_declared_length_too_long(self):
        data = struct.pack("<II", 1, 10) + b'{"a":1}'

        with pytest.raises(MalformedFrameError, match="Declared length"):
            decode(data)

    def test_declared_length_too_short(self):
        data = struct.pack("<II", 1, 2) + b'{"a":1}'

        with pytest.raises(MalformedFrameError, match="Declared length"):
            decode(data)

    def test_invalid_utf8(self):
        with pytest.raises(MalformedFrameError, match="Invalid payload"):
            decode(frame(1, b"\xff\xfe"))

    def test_invalid_json(self):
        with pytest.raises(MalformedFrameError, match="Invalid payload"):
            decode(frame(1, b"{not json"))

    def test_unknown_opcode(self):
        with pytest.raises(MalformedFrameError, match="Unknown opcode"):
            decode(frame(9, b"{}"))

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode(b"\x00")


class TestPacketBuffer:
    def test_single_frame(self):
        buffer = PacketBuffer()

        packets, errors = buffer.feed(encode(IPCOpcode.FRAME, {"evt": "READY"}))

        assert packets == [IPCPacket(IPCOpcode.FRAME, {"evt": "READY"})]
        assert errors == []
        assert buffer.pending == 0

    def test_keeps_partial_frames(self):
        buffer = PacketBuffer()
        data = encode(IPCOpcode.FRAME, {"evt": "READY"})

        assert buffer.feed(data[:5]) == ([], [])
        assert buffer.pending == 5
        assert buffer.feed(data[5:12]) == ([], [])

        packets, _ = buffer.feed(data[12:])
        assert packets == [IPCPacket(IPCOpcode.FRAME, {"evt": "READY"})]
        assert buffer.pending == 0

    def test_many_frames_in_one_read(self):
        buffer = PacketBuffer()
        data = encode(IPCOpcode.PING, "a") + encode(IPCOpcode.FRAME, {"n": 1}) + \
            encode(IPCOpcode.FRAME, {"n": 2})

        packets, errors = buffer.feed(data)

        assert [p.opcode for p in packets] == [IPCOpcode.PING, IPCOpcode.FRAME, IPCOpcode.FRAME]
        assert packets[2].data == {"n": 2}
        assert errors == []

    def test_trailing_bytes_wait_for_the_next_read(self):
        buffer = PacketBuffer()
        second = encode(IPCOpcode.FRAME, {"n": 2})

        packets, _ = buffer.feed(encode(IPCOpcode.FRAME, {"n": 1}) + second[:3])
        assert len(packets) == 1
        assert buffer.pending == 3

        packets, _ = buffer.feed(second[3:])
        assert packets == [IPCPacket(IPCOpcode.FRAME, {"n": 2})]

    def test_bad_payload_is_skipped_and_stream_stays_in_sync(self):
        buffer = PacketBuffer()
        data = frame(1, b"{oops") + encode(IPCOpcode.FRAME, {"ok": True})

        packets, errors = buffer.feed(data)

        assert packets == [IPCPacket(IPCOpcode.FRAME, {"ok": True})]
        assert len(errors) == 1
        assert isinstance(errors[0], MalformedFrameError)

    def test_oversized_length_clears_the_buffer(self):
        buffer = PacketBuffer(max_payload_size=16)

        packets, errors = buffer.feed(struct.pack("<II", 1, 1000) + b"{}")

        assert packets == []
        assert len(errors) == 1
        assert buffer.pending == 0

    def test_clear(self):
        buffer = PacketBuffer()
        buffer.feed(b"\x01\x00")
        buffer.clear()

        assert buffer.pending == 0
