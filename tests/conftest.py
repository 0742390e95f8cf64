import pytest

from tests.roms import build_rom


@pytest.fixture
def valid_rom():
    return build_rom(0x8000, code=0, checksum_row=0)
