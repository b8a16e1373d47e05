from __future__ import annotations

import struct

from accelfilter.mouse.packets import (
    PAYLOAD_FORMAT,
    FrameFormat,
    PacketParser,
    crc16_ccitt,
    encode_packet,
    iterate_text_stream,
)
from accelfilter.mouse.stream import MotionSample


def build_body(*, dx=5, dy=-7, flags=0):
    return struct.pack(PAYLOAD_FORMAT, dx, dy, flags)


def build_packet(body: bytes, *, crc_override: int | None = None, length_override: int | None = None) -> bytes:
    crc = crc_override if crc_override is not None else crc16_ccitt(body)
    length = length_override if length_override is not None else len(body)
    return b"\x55\xAA" + bytes([length]) + body + crc.to_bytes(2, "little")


def feed(parser: PacketParser, packet: bytes) -> list:
    return list(parser.parse_binary([packet]))


def test_encode_packet_matches_wire_layout() -> None:
    sample = MotionSample(dx=-300, dy=12, flags=1)
    packet = encode_packet(sample)
    assert packet == build_packet(build_body(dx=-300, dy=12, flags=1))
    assert feed(PacketParser(FrameFormat.BINARY), packet) == [sample]


def test_binary_packet_crc_failure():
    parser = PacketParser(FrameFormat.BINARY)
    body = build_body()
    samples = feed(parser, build_packet(body))
    assert samples == [MotionSample(5, -7, 0)]
    assert parser.stats()["crc_errors"] == 0

    bad_crc = (crc16_ccitt(body) ^ 0xFFFF) & 0xFFFF
    samples = feed(parser, build_packet(body, crc_override=bad_crc))
    assert samples == []
    stats = parser.stats()
    assert stats["crc_errors"] == 1
    assert stats["frames"] == 1


def test_binary_packet_length_error():
    parser = PacketParser(FrameFormat.BINARY)
    body = build_body()
    samples = feed(parser, build_packet(body[:-1], length_override=len(body) - 1))
    assert samples == []
    assert parser.stats()["length_errors"] == 1

    # Parser recovers when the next packet is correct
    samples = feed(parser, build_packet(body))
    assert len(samples) == 1
    assert parser.stats()["frames"] == 1


def test_binary_packets_split_across_chunks():
    parser = PacketParser(FrameFormat.BINARY)
    stream = b"\x00\x13" + encode_packet(MotionSample(1, 2)) + encode_packet(MotionSample(-3, 4, 1))
    # Split inside the first header and right after the second length byte.
    chunks = [stream[:3], stream[3:15], stream[15:]]
    samples = list(parser.parse_binary(chunks))
    assert samples == [MotionSample(1, 2, 0), MotionSample(-3, 4, 1)]


def test_parse_csv_with_optional_flags():
    parser = PacketParser(FrameFormat.CSV)
    lines = list(iterate_text_stream(["# recorded", "dx,dy", "3,-1", "", "0,2"]))
    samples = list(parser.iter_samples(lines))
    assert samples == [MotionSample(3, -1, 0), MotionSample(0, 2, 0)]
    assert parser.stats()["frames"] == 2

    parser = PacketParser(FrameFormat.CSV)
    samples = list(parser.parse_csv(["dx,dy,flags", "1,1,1"]))
    assert samples[0].absolute
