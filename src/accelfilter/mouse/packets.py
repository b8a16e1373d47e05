from __future__ import annotations

import csv
import enum
import logging
import struct
from typing import Any, Dict, Iterable, Iterator, Optional

from .stream import MotionSample

PACKET_HEADER = b"\x55\xAA"
PAYLOAD_FORMAT = "<hhB"
PAYLOAD_SIZE = struct.calcsize(PAYLOAD_FORMAT)


class FrameFormat(str, enum.Enum):
    CSV = "csv"
    BINARY = "binary"


def crc16_ccitt(data: bytes, poly: int = 0x1021, init: int = 0xFFFF) -> int:
    crc = init
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ poly
            else:
                crc <<= 1
            crc &= 0xFFFF
    return crc


def encode_packet(sample: MotionSample) -> bytes:
    body = struct.pack(PAYLOAD_FORMAT, sample.dx, sample.dy, sample.flags)
    return PACKET_HEADER + bytes([len(body)]) + body + crc16_ccitt(body).to_bytes(2, "little")


class PacketParser:
    """
    Streaming parser for motion reports arriving as CSV lines or binary packets.
    Binary packets use a 0x55AA header, a length byte, a ``<hhB`` payload
    (dx, dy, flags) and a little-endian CRC16-CCITT of the payload.
    """

    def __init__(self, fmt: FrameFormat):
        self.fmt = fmt
        self._buffer = bytearray()
        self._stats: Dict[str, int] = {"frames": 0, "crc_errors": 0, "length_errors": 0}
        self._log = logging.getLogger(__name__)

    def parse_csv(self, lines: Iterable[str]) -> Iterator[MotionSample]:
        reader = csv.DictReader(lines)
        for row in reader:
            if not row:
                continue
            self._stats["frames"] += 1
            yield MotionSample(
                dx=int(row["dx"]),
                dy=int(row["dy"]),
                flags=int(row.get("flags") or 0),
            )

    def parse_binary(self, chunks: Iterable[bytes]) -> Iterator[MotionSample]:
        for chunk in chunks:
            if not chunk:
                continue
            self._buffer.extend(chunk)
            yield from self._extract_packets()

    def _extract_packets(self) -> Iterator[MotionSample]:
        while True:
            start = self._buffer.find(PACKET_HEADER)
            if start < 0:
                # Keep a trailing 0x55 in case the header straddles two chunks.
                keep = self._buffer[-1:] == PACKET_HEADER[:1]
                del self._buffer[: len(self._buffer) - (1 if keep else 0)]
                break
            if len(self._buffer) < start + 3:
                break
            length = self._buffer[start + 2]
            packet_end = start + 3 + length + 2  # payload + CRC16
            if len(self._buffer) < packet_end:
                break
            if length != PAYLOAD_SIZE:
                self._stats["length_errors"] += 1
                self._log.debug("Discarding packet with unexpected payload length: %s", length)
                del self._buffer[:packet_end]
                continue
            body = bytes(self._buffer[start + 3 : start + 3 + length])
            crc_expected = struct.unpack_from("<H", self._buffer, packet_end - 2)[0]
            crc_actual = crc16_ccitt(body)
            if crc_actual != crc_expected:
                self._stats["crc_errors"] += 1
                self._log.debug(
                    "CRC mismatch (expected=%04X, actual=%04X)", crc_expected, crc_actual
                )
                del self._buffer[:packet_end]
                continue
            sample = self._decode_body(body)
            if sample is not None:
                self._stats["frames"] += 1
                yield sample
            del self._buffer[:packet_end]

    def _decode_body(self, body: bytes) -> Optional[MotionSample]:
        if len(body) != PAYLOAD_SIZE:
            return None
        dx, dy, flags = struct.unpack(PAYLOAD_FORMAT, body)
        return MotionSample(dx=dx, dy=dy, flags=flags)

    def iter_samples(self, source: Iterable[str] | Iterable[bytes]) -> Iterator[MotionSample]:
        if self.fmt is FrameFormat.CSV:
            return self.parse_csv(source)  # type: ignore[arg-type]
        return self.parse_binary(source)  # type: ignore[arg-type]

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer.clear()


def iterate_text_stream(handle: Iterable[str]) -> Iterator[str]:
    for line in handle:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield line


def iterate_binary_stream(handle: Any, chunk_size: int = 256) -> Iterator[bytes]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        yield chunk
