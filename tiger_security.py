#!/usr/bin/env python3
"""
Tiger Game.com Security Header Checker
Validates and repairs the table-driven security checksum of Game.com ROMs
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

BANK_LENGTH = 0x2000
BANK_LOAD_ADDRESS = 0x6000

HEADER_SIZE = 0x20
SECONDARY_HEADER_OFFSET = 0x40000
MIN_ROM_SIZE = 0x8000

SYSTEM_TAG = b"TigerDMGC"
SECURITY_TARGET = 0x5A
GAME_ID_KEY = 0xA5

# Header field offsets, relative to the header start
UNK_OFFSET = 0x04
SYSTEM_OFFSET = 0x05
TITLE_OFFSET = 0x11
GAME_ID_OFFSET = 0x1A
SECURITY_CODE_OFFSET = 0x1C

HEADER_FORMAT = "<BBHB9sBBB9s2sB3s"

# (bank, address high, address low) x 3 per security code
SECURITY_TABLE = (
    ((0x01, 0x73, 0xE4), (0x02, 0x77, 0x57), (0x03, 0x66, 0x66)),
    ((0x00, 0x72, 0x45), (0x01, 0x75, 0x05), (0x02, 0x67, 0x07)),
    ((0x01, 0x62, 0x67), (0x03, 0x63, 0x5A), (0x03, 0x7A, 0xBC)),
    ((0x00, 0x7A, 0xC2), (0x01, 0x76, 0xBB), (0x04, 0x64, 0xE3)),
    ((0x02, 0x6F, 0x27), (0x02, 0x76, 0xE1), (0x03, 0x7F, 0xDB)),
    ((0x00, 0x68, 0xA7), (0x03, 0x6B, 0x41), (0x02, 0x76, 0x73)),
    ((0x00, 0x62, 0x45), (0x01, 0x73, 0xBE), (0x04, 0x6B, 0x6F)),
    ((0x00, 0x77, 0x43), (0x02, 0x7F, 0x7E), (0x03, 0x63, 0x76)),
    ((0x01, 0x68, 0x75), (0x01, 0x77, 0x64), (0x02, 0x6F, 0xD0)),
    ((0x01, 0x63, 0x0F), (0x02, 0x64, 0xE7), (0x03, 0x67, 0xB1)),
    ((0x01, 0x62, 0x09), (0x01, 0x74, 0xF1), (0x01, 0x7A, 0xA8)),
    ((0x01, 0x60, 0x0D), (0x01, 0x73, 0xC9), (0x03, 0x63, 0xEC)),
    ((0x01, 0x79, 0xA7), (0x02, 0x7F, 0x4B), (0x03, 0x60, 0x78)),
    ((0x00, 0x73, 0x27), (0x01, 0x62, 0x4C), (0x03, 0x70, 0x86)),
    ((0x01, 0x69, 0x03), (0x02, 0x6F, 0x72), (0x03, 0x66, 0x00)),
    ((0x00, 0x71, 0x08), (0x01, 0x7A, 0xBB), (0x02, 0x79, 0x0A)),
)

# Rows whose addresses reach past the end of an image of this exact length
SKIPPED_ROWS = {
    0x8000: frozenset({3, 6}),
}


# ============================================================================
# ERRORS
# ============================================================================

class SecurityError(Exception):
    """Base class for security header failures."""


class SizeError(SecurityError):
    """ROM image is smaller than the minimum cartridge size."""


class OutOfBoundsError(SecurityError):
    """A header or table offset falls outside the ROM image."""


class NoMatchError(SecurityError):
    """No security table row sums to the target value."""


# ============================================================================
# HEADER
# ============================================================================

@dataclass
class RomHeader:
    size: int
    entry_bank: int
    entry_address: int
    unk: int
    system: bytes
    icon_bank: int
    icon_x: int
    icon_y: int
    title: bytes
    game_id: bytes
    security_code: int
    pad: bytes

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "RomHeader":
        """Decode the 32-byte header starting at offset."""
        return cls(*struct.unpack_from(HEADER_FORMAT, data, offset))

    def to_bytes(self) -> bytes:
        return struct.pack(
            HEADER_FORMAT,
            self.size, self.entry_bank, self.entry_address, self.unk,
            self.system, self.icon_bank, self.icon_x, self.icon_y,
            self.title, self.game_id, self.security_code, self.pad,
        )

    @property
    def title_text(self) -> str:
        return self.title.decode("ascii", errors="replace").rstrip("\x00 ")


def find_header_offset(rom: bytes, length: Optional[int] = None) -> int:
    """
    Return the header offset within the ROM image.

    Dumps starting with 0x00 or 0xFF carry the header at 0x40000. When
    length is given, images of the minimum size never use that region.
    """
    if len(rom) == 0:
        raise OutOfBoundsError("Empty ROM image")

    if rom[0] in (0x00, 0xFF):
        if length is None or length > MIN_ROM_SIZE:
            return SECONDARY_HEADER_OFFSET
    return 0


def read_header(rom: bytes, offset: Optional[int] = None) -> RomHeader:
    """Decode the header, raising OutOfBoundsError if it does not fit."""
    if offset is None:
        offset = find_header_offset(rom)

    if offset + HEADER_SIZE > len(rom):
        raise OutOfBoundsError(
            f"Header at 0x{offset:X} exceeds ROM size 0x{len(rom):X}"
        )
    return RomHeader.from_bytes(rom, offset)


# ============================================================================
# CHECKSUM
# ============================================================================

def row_offsets(index: int) -> Tuple[int, int, int]:
    """Header-relative file offsets of the three bytes of a table row."""
    return tuple(
        bank * BANK_LENGTH + (((high << 8) | low) - BANK_LOAD_ADDRESS)
        for bank, high, low in SECURITY_TABLE[index]
    )


def evaluate_row(rom: bytes, header_offset: int, index: int) -> int:
    """Sum (mod 256) the three bytes referenced by a security table row."""
    accum = 0
    for offset in row_offsets(index):
        position = header_offset + offset
        if position >= len(rom):
            raise OutOfBoundsError(
                f"Row {index} reads 0x{position:X}, past ROM size 0x{len(rom):X}"
            )
        accum = (accum + rom[position]) & 0xFF
    return accum


def explain_check(rom: bytes, lenient_unk: bool = False) -> Tuple[bool, str]:
    """Validate the security header, returning the reason for any failure."""
    header_offset = find_header_offset(rom)
    header = read_header(rom, header_offset)
    logger.debug("Header at 0x%X, security code 0x%02X",
                 header_offset, header.security_code)

    # game id sum is not truncated, anything above 0xFF can never match
    if (sum(header.game_id) ^ GAME_ID_KEY) != header.security_code:
        return False, "game ID does not match security code"

    if header.system != SYSTEM_TAG:
        return False, "system tag is not TigerDMGC"

    if not lenient_unk and not header.unk & 1:
        return False, "unknown flag bit 0 is clear"

    index = header.security_code & 0xF
    accum = evaluate_row(rom, header_offset, index)
    if accum != SECURITY_TARGET:
        return False, f"checksum 0x{accum:02X} != 0x{SECURITY_TARGET:02X}"

    return True, f"OK (row {index})"


def check_security(rom: bytes, lenient_unk: bool = False) -> bool:
    """Return True if the ROM passes the console's security check."""
    valid, _ = explain_check(rom, lenient_unk)
    return valid


# ============================================================================
# REPAIR
# ============================================================================

def find_security_row(rom: bytes, length: Optional[int] = None) -> int:
    """Return the lowest table row whose bytes sum to the target."""
    if length is None:
        length = len(rom)

    header_offset = find_header_offset(rom, length)
    skipped = SKIPPED_ROWS.get(length, frozenset())

    for index in range(len(SECURITY_TABLE)):
        if index in skipped:
            continue

        accum = evaluate_row(rom, header_offset, index)
        logger.debug("Row %d sums to 0x%02X", index, accum)
        if accum == SECURITY_TARGET:
            return index

    raise NoMatchError(
        "No checksum match found!\n"
        "You'll need to modify other bytes in the ROM."
    )


def fix_security(rom: bytearray, length: Optional[int] = None) -> bool:
    """
    Rewrite the game ID and security code to point at a matching row.

    Only the two game ID bytes and the security code are written, and
    only once a row has been found.
    """
    if isinstance(rom, bytes):
        raise TypeError("fix_security needs a mutable buffer such as bytearray")

    if length is None:
        length = len(rom)

    if length < MIN_ROM_SIZE:
        raise SizeError("ROM too small!")

    header_offset = find_header_offset(rom, length)
    read_header(rom, header_offset)

    match = find_security_row(rom, length)
    logger.debug("Using security table row %d", match)

    rom[header_offset + GAME_ID_OFFSET] = match ^ GAME_ID_KEY
    rom[header_offset + GAME_ID_OFFSET + 1] = 0
    rom[header_offset + SECURITY_CODE_OFFSET] = match

    return True
