#!/usr/bin/env python3
"""
Game.com ROM Security Fixer
Checks or fixes the security header of Tiger Game.com ROMs
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from tiger_security import (
    SecurityError,
    check_security,
    explain_check,
    find_header_offset,
    fix_security,
    read_header,
)

EXTENSIONS = {".bin"}


def check_rom(rom: bytes, lenient_unk: bool = False) -> Tuple[bool, str]:
    """Check the security header."""
    try:
        valid, reason = explain_check(rom, lenient_unk)
    except SecurityError as e:
        return False, str(e)

    return valid, f"Is ROM valid? {'Yes' if valid else 'No'} - {reason}"


def fix_rom(rom: bytearray, lenient_unk: bool = False) -> Tuple[bool, str]:
    """Fix the security header in place."""
    try:
        fix_security(rom)
    except SecurityError as e:
        return False, str(e).replace("\n", " ")

    # a fixed header still has to carry the system tag and flag bit
    try:
        valid = check_security(rom, lenient_unk)
    except SecurityError:
        valid = False

    header = read_header(rom, find_header_offset(rom, len(rom)))
    msg = f"Fixed ROM security header! (code 0x{header.security_code:02X})"
    if not valid:
        msg += ", but the ROM still fails the check"
    return True, msg


def process_rom(rom_path: Path, mode: str, lenient_unk: bool = False) -> bool:
    """Process a ROM file, writing it back after a successful fix."""
    try:
        with open(rom_path, "rb") as f:
            rom = bytearray(f.read())
    except OSError as e:
        print(f"  ✗ {rom_path.name}: Error opening ROM - {e}")
        return False

    if mode == "check":
        valid, msg = check_rom(rom, lenient_unk)
        mark = "✓" if valid else "○"
        print(f"  {mark} {rom_path.name}: {msg}")
        return valid

    fixed, msg = fix_rom(rom, lenient_unk)
    if not fixed:
        print(f"  ✗ {rom_path.name}: Error - {msg}")
        return False

    try:
        with open(rom_path, "wb") as f:
            f.write(rom)
    except OSError as e:
        print(f"  ✗ {rom_path.name}: Error writing ROM - {e}")
        return False

    print(f"  ✓ {rom_path.name}: {msg}")
    return True


def find_roms(directory: Path) -> List[Path]:
    return sorted([f for f in directory.rglob("*")
                   if f.is_file() and f.suffix.lower() in EXTENSIONS])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check or fix the security header of Game.com ROMs"
    )
    parser.add_argument("mode", choices=["check", "fix"],
                        help="Validate the header, or rewrite it to match")
    parser.add_argument("roms", nargs="*", type=Path,
                        help="ROM files (default: scan current directory for .bin)")
    parser.add_argument("--lenient-unk", action="store_true",
                        help="Accept ROMs whose unknown flag bit 0 is clear")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log header offsets and row sums")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Check or fix the given ROMs, or every ROM under the current directory."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s: %(message)s')

    roms = args.roms or find_roms(Path.cwd())
    if not roms:
        print("No ROM files found (.bin)")
        return 1

    print(f"Found {len(roms)} ROM file(s)\n")
    results = [process_rom(rom_path, args.mode, args.lenient_unk) for rom_path in roms]

    if not all(results):
        return 1

    print("Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
