"""
Frame checksum (CK_A / CK_B).

The 2-byte checksum covers the class/id bytes, the payload length bytes and
the payload itself, i.e. everything except the two sync bytes and the
checksum trailer:

    CK_A = CK_B = 0
    for b in packet[2:-2]:
        CK_A = (CK_A + b) & 0xFF
        CK_B = (CK_B + CK_A) & 0xFF
"""
from .errors import ChecksumInvalid, FrameTooShort

MIN_CHECKSUM_FRAME = 4


def compute_checksum(frame: bytes) -> tuple[int, int]:
    """Return (ck_a, ck_b) computed over frame[2:-2]."""
    if len(frame) < MIN_CHECKSUM_FRAME:
        raise FrameTooShort(len(frame), MIN_CHECKSUM_FRAME)
    ck_a = 0
    ck_b = 0
    for byte in frame[2:-2]:
        ck_a = (ck_a + byte) & 0xFF
        ck_b = (ck_b + ck_a) & 0xFF
    return ck_a, ck_b


def check(frame: bytes) -> None:
    """Raise FrameTooShort or ChecksumInvalid if the trailer does not match."""
    expected = compute_checksum(frame)
    actual = (frame[-2], frame[-1])
    if expected != actual:
        raise ChecksumInvalid(expected, actual)


def validate(frame: bytes) -> bool:
    """True iff the trailing two bytes match the computed checksum."""
    if len(frame) < MIN_CHECKSUM_FRAME:
        return False
    return compute_checksum(frame) == (frame[-2], frame[-1])
