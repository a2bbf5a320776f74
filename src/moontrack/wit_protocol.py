from __future__ import annotations

import dataclasses
import logging
import struct
from enum import Enum, IntEnum
from typing import Iterable, Iterator, Optional, Tuple

LOGGER = logging.getLogger("wit.protocol")


class WitFrameType(IntEnum):
    ACCEL = 0x51
    GYRO = 0x52
    ANGLE = 0x53
    MAGNETIC = 0x54


class WitConstants:
    HEADER = 0x55
    FRAME_SIZE = 11
    PAYLOAD_START = 2
    PAYLOAD_END = 8
    BYTE_MASK = 0xFF
    VALUES = struct.Struct("<hhh")


def checksum(data: bytes) -> int:
    return sum(data) & WitConstants.BYTE_MASK


@dataclasses.dataclass(frozen=True)
class WitFrame:
    frame_type: int
    values: Tuple[int, int, int]

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional["WitFrame"]:
        """Decode one frame; None for anything that is not a valid frame.

        Noise on the wire is expected, so wrong length, wrong header and
        checksum mismatches are dropped rather than raised.
        """
        if len(data) != WitConstants.FRAME_SIZE:
            return None
        if data[0] != WitConstants.HEADER:
            return None
        if checksum(data[:-1]) != data[-1]:
            LOGGER.debug("checksum mismatch frame=%s", bytes(data).hex())
            return None
        values = WitConstants.VALUES.unpack(bytes(data[WitConstants.PAYLOAD_START:WitConstants.PAYLOAD_END]))
        return cls(frame_type=data[1], values=values)

    def to_bytes(self) -> bytes:
        body = bytes((WitConstants.HEADER, self.frame_type)) + WitConstants.VALUES.pack(*self.values)
        # The real sensor fills bytes 8-9 with temperature/version data.
        body += b"\x00\x00"
        return body + bytes((checksum(body),))

    @property
    def kind(self) -> Optional[WitFrameType]:
        try:
            return WitFrameType(self.frame_type)
        except ValueError:
            return None


class AssemblerState(Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"


class FrameAssembler:
    """Byte-synchronous reassembly of 11-byte frames from a raw stream.

    EMPTY: only a header byte is accepted, anything else is dropped.
    ACCUMULATING: bytes append until the frame is complete; the complete
    buffer is handed back and the assembler returns to EMPTY.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    @property
    def state(self) -> AssemblerState:
        return AssemblerState.ACCUMULATING if self._buf else AssemblerState.EMPTY

    def reset(self) -> None:
        self._buf.clear()

    def feed(self, byte: int) -> Optional[bytes]:
        if not self._buf:
            if byte == WitConstants.HEADER:
                self._buf.append(byte)
            return None
        self._buf.append(byte)
        if len(self._buf) < WitConstants.FRAME_SIZE:
            return None
        frame = bytes(self._buf)
        self._buf.clear()
        return frame

    def frames(self, data: Iterable[int]) -> Iterator[WitFrame]:
        for byte in data:
            raw = self.feed(byte)
            if raw is None:
                continue
            frame = WitFrame.from_bytes(raw)
            if frame is not None:
                yield frame
