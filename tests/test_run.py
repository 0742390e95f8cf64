from run import check_rom, find_roms, fix_rom, main, process_rom
from tiger_security import SECURITY_CODE_OFFSET, check_security

from tests.roms import build_rom


def write_rom(path, rom):
    path.write_bytes(bytes(rom))
    return path


def test_check_rom_reports_valid(valid_rom):
    valid, msg = check_rom(valid_rom)
    assert valid
    assert msg == "Is ROM valid? Yes - OK (row 0)"


def test_check_rom_reports_hard_error_as_message():
    valid, msg = check_rom(build_rom(0x8000, code=None, checksum_row=None))
    assert not valid
    assert "exceeds ROM size" in msg


def test_fix_rom_reports_small_rom():
    fixed, msg = fix_rom(build_rom(0x100, code=0, checksum_row=None))
    assert not fixed
    assert msg == "ROM too small!"


def test_fix_rom_reports_no_match():
    fixed, msg = fix_rom(build_rom(0x8000, code=0, checksum_row=None))
    assert not fixed
    assert msg.startswith("No checksum match found!")


def test_fix_rom_warns_when_header_still_fails():
    rom = build_rom(0x8000, code=None, checksum_row=2)
    rom[0] = 0x01
    fixed, msg = fix_rom(rom)
    assert fixed
    assert msg.endswith("but the ROM still fails the check")


def test_process_rom_fix_writes_file(tmp_path, capsys):
    rom_path = write_rom(tmp_path / "game.bin", build_rom(0x8000, code=0, checksum_row=10))

    assert process_rom(rom_path, "fix")
    data = rom_path.read_bytes()
    assert data[SECURITY_CODE_OFFSET] == 10
    assert check_security(data)
    assert "✓ game.bin: Fixed ROM security header! (code 0x0A)" in capsys.readouterr().out


def test_process_rom_failed_fix_leaves_file(tmp_path, capsys):
    original = build_rom(0x8000, code=0, checksum_row=None)
    rom_path = write_rom(tmp_path / "game.bin", original)

    assert not process_rom(rom_path, "fix")
    assert rom_path.read_bytes() == bytes(original)
    assert "✗ game.bin: Error - No checksum match found!" in capsys.readouterr().out


def test_process_rom_check_invalid(tmp_path, capsys):
    rom_path = write_rom(tmp_path / "game.bin", build_rom(0x8000, code=0, checksum_row=1))

    assert not process_rom(rom_path, "check")
    assert "○ game.bin: Is ROM valid? No" in capsys.readouterr().out


def test_process_rom_missing_file(tmp_path, capsys):
    assert not process_rom(tmp_path / "missing.bin", "check")
    assert "Error opening ROM" in capsys.readouterr().out


def test_find_roms_scans_recursively(tmp_path):
    (tmp_path / "sub").mkdir()
    write_rom(tmp_path / "b.BIN", b"\x01")
    write_rom(tmp_path / "sub" / "a.bin", b"\x01")
    write_rom(tmp_path / "notes.txt", b"")

    assert find_roms(tmp_path) == [tmp_path / "b.BIN", tmp_path / "sub" / "a.bin"]


def test_main_check_and_fix(tmp_path, capsys):
    rom_path = write_rom(tmp_path / "game.bin", build_rom(0x8000, code=0, checksum_row=13))

    assert main(["check", str(rom_path)]) == 1
    assert main(["fix", str(rom_path)]) == 0
    assert main(["check", str(rom_path)]) == 0
    assert "Done!" in capsys.readouterr().out


def test_main_lenient_unk(tmp_path):
    rom = build_rom(0x8000, code=0, checksum_row=0)
    rom[4] = 0x00
    rom_path = write_rom(tmp_path / "game.bin", rom)

    assert main(["check", str(rom_path)]) == 1
    assert main(["check", "--lenient-unk", str(rom_path)]) == 0


def test_main_scans_current_directory(tmp_path, monkeypatch, capsys):
    write_rom(tmp_path / "game.bin", build_rom(0x8000, code=0, checksum_row=0))
    monkeypatch.chdir(tmp_path)

    assert main(["check"]) == 0
    assert "Found 1 ROM file(s)" in capsys.readouterr().out


def test_main_no_roms(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    assert main(["fix"]) == 1
    assert "No ROM files found (.bin)" in capsys.readouterr().out


def test_main_write_failure_continues_with_next_rom(tmp_path, monkeypatch, capsys):
    locked = write_rom(tmp_path / "b.bin", build_rom(0x8000, code=0, checksum_row=5))
    other = write_rom(tmp_path / "a.bin", build_rom(0x8000, code=0, checksum_row=8))
    real_open = open

    def fake_open(path, mode="r", *args, **kwargs):
        if mode == "wb" and str(path) == str(locked):
            raise PermissionError("read-only")
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr("builtins.open", fake_open)

    assert main(["fix", str(locked), str(other)]) == 1
    out = capsys.readouterr().out
    assert "✗ b.bin: Error writing ROM - read-only" in out
    assert "✓ a.bin: Fixed ROM security header! (code 0x08)" in out
    assert other.read_bytes()[SECURITY_CODE_OFFSET] == 8
    assert locked.read_bytes()[SECURITY_CODE_OFFSET] == 0


def test_main_skips_done_on_failure(tmp_path, capsys):
    rom_path = write_rom(tmp_path / "game.bin", build_rom(0x8000, code=0, checksum_row=None))

    assert main(["fix", str(rom_path)]) == 1
    assert "Done!" not in capsys.readouterr().out
