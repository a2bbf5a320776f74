from __future__ import annotations

import logging

LOGGER = logging.getLogger("tests.wit.protocol")

from moontrack.wit_protocol import AssemblerState, FrameAssembler, WitFrame, WitFrameType, checksum


MAGNETIC_FRAME = bytes((0x55, 0x54, 0x10, 0x00, 0xF0, 0xFF, 0x00, 0x01, 0x00, 0x00, 0xA9))


def test_decode_known_magnetic_frame() -> None:
    frame = WitFrame.from_bytes(MAGNETIC_FRAME)
    assert frame is not None
    assert frame.kind == WitFrameType.MAGNETIC
    assert frame.values == (16, -16, 256)
    assert checksum(MAGNETIC_FRAME[:-1]) == 0xA9


def test_encoded_frame_decodes_to_same_values() -> None:
    frame = WitFrame(WitFrameType.ANGLE, (4096, -8192, 32767))
    assert WitFrame.from_bytes(frame.to_bytes()) == frame


def test_flipped_payload_bit_is_discarded() -> None:
    for bit in range(8):
        corrupted = bytearray(MAGNETIC_FRAME)
        corrupted[4] ^= 1 << bit
        LOGGER.info("STEP flip bit %d in payload", bit)
        assert WitFrame.from_bytes(bytes(corrupted)) is None


def test_flipped_checksum_bit_is_discarded() -> None:
    for bit in range(8):
        corrupted = bytearray(MAGNETIC_FRAME)
        corrupted[-1] ^= 1 << bit
        LOGGER.info("STEP flip bit %d in checksum", bit)
        assert WitFrame.from_bytes(bytes(corrupted)) is None
        assert list(FrameAssembler().frames(bytes(corrupted))) == []


def test_wrong_length_or_header_is_discarded() -> None:
    assert WitFrame.from_bytes(MAGNETIC_FRAME[:-1]) is None
    assert WitFrame.from_bytes(MAGNETIC_FRAME + b"\x00") is None
    bad_header = b"\x56" + MAGNETIC_FRAME[1:]
    assert WitFrame.from_bytes(bad_header) is None


def test_unknown_frame_type_has_no_kind() -> None:
    frame = WitFrame(0x60, (0, 0, 0))
    assert frame.kind is None


def test_assembler_drops_bytes_until_header() -> None:
    assembler = FrameAssembler()
    assert assembler.state == AssemblerState.EMPTY
    for byte in (0x00, 0x13, 0xFF):
        assert assembler.feed(byte) is None
        assert assembler.state == AssemblerState.EMPTY

    assert assembler.feed(0x55) is None
    assert assembler.state == AssemblerState.ACCUMULATING


def test_assembler_emits_on_eleventh_byte() -> None:
    assembler = FrameAssembler()
    results = [assembler.feed(b) for b in MAGNETIC_FRAME]
    assert results[:-1] == [None] * 10
    assert results[-1] == MAGNETIC_FRAME
    assert assembler.state == AssemblerState.EMPTY


def test_assembler_reset_discards_partial_frame() -> None:
    assembler = FrameAssembler()
    for b in MAGNETIC_FRAME[:5]:
        assembler.feed(b)
    assembler.reset()
    assert assembler.state == AssemblerState.EMPTY


def test_frames_skips_noise_and_corrupted_frames() -> None:
    good_angle = WitFrame(WitFrameType.ANGLE, (1, 2, 3)).to_bytes()
    corrupted = bytearray(MAGNETIC_FRAME)
    corrupted[-1] ^= 0x01
    stream = b"\x00\x01" + good_angle + bytes(corrupted) + b"\x7f" + MAGNETIC_FRAME

    frames = list(FrameAssembler().frames(stream))

    assert [f.kind for f in frames] == [WitFrameType.ANGLE, WitFrameType.MAGNETIC]
    assert frames[0].values == (1, 2, 3)
    assert frames[1].values == (16, -16, 256)
