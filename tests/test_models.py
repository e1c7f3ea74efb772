"""Tests for the board family registry."""

import pytest

from teensy_uploader.errors import UnsupportedDeviceError
from teensy_uploader.models import (
    REPORT_LENGTH,
    AddressEncoding,
    BoardFamily,
    list_profiles,
    parse_family,
    profile_for_bootloader_usage,
    profile_for_serial_revision,
    resolve_profile,
)


class TestResolveProfile:
    """Profile lookup by family."""

    def test_every_family_is_registered(self):
        families = [profile.family for profile in list_profiles()]
        assert families == list(BoardFamily)

    def test_unknown_family_raises(self):
        with pytest.raises(UnsupportedDeviceError):
            resolve_profile("3.2")

    @pytest.mark.parametrize("family, flash_size, block_size, data_offset", [
        (BoardFamily.TEENSY_2, 32256, 128, 2),
        (BoardFamily.TEENSY_2PP, 126976, 256, 2),
        (BoardFamily.TEENSY_LC, 63488, 512, 64),
        (BoardFamily.TEENSY_30, 131072, 1024, 64),
        (BoardFamily.TEENSY_32, 262144, 1024, 64),
        (BoardFamily.TEENSY_36, 1048576, 1024, 64),
        (BoardFamily.TEENSY_40, 2097152, 1024, 64),
    ])
    def test_upload_parameters(self, family, flash_size, block_size, data_offset):
        profile = resolve_profile(family)
        assert profile.flash_size == flash_size
        assert profile.block_size == block_size
        assert profile.data_offset == data_offset

    def test_reports_fit_in_report_length(self):
        for profile in list_profiles():
            assert profile.report_size <= REPORT_LENGTH

    def test_name(self):
        assert resolve_profile(BoardFamily.TEENSY_LC).name == "Teensy LC"

    def test_block_count(self):
        assert resolve_profile(BoardFamily.TEENSY_32).block_count == 256
        assert resolve_profile(BoardFamily.TEENSY_2).block_count == 252


class TestAddressEncoding:
    """Address field layouts."""

    def test_byte_offset_three_bytes(self):
        assert AddressEncoding(width=3).encode(0x012345) == b"\x45\x23\x01"

    def test_byte_offset_two_bytes(self):
        assert AddressEncoding(width=2).encode(0x7E80) == b"\x80\x7E"

    def test_block_index(self):
        assert AddressEncoding(width=2, shift=8).encode(0x1F000) == b"\xF0\x01"


class TestIdentification:
    """Discovery-time lookups and user input parsing."""

    def test_serial_revision(self):
        assert profile_for_serial_revision(0x0275).family == BoardFamily.TEENSY_32
        assert profile_for_serial_revision(0x0279).family == BoardFamily.TEENSY_40
        assert profile_for_serial_revision(0x9999) is None
        assert profile_for_serial_revision(None) is None

    def test_bootloader_usage(self):
        assert profile_for_bootloader_usage(0x1E).family == BoardFamily.TEENSY_31
        assert profile_for_bootloader_usage(0x20).family == BoardFamily.TEENSY_LC
        assert profile_for_bootloader_usage(0x23) is None
        assert profile_for_bootloader_usage(None) is None

    @pytest.mark.parametrize("text, family", [
        ("3.2", BoardFamily.TEENSY_32),
        ("lc", BoardFamily.TEENSY_LC),
        ("Teensy 4.0", BoardFamily.TEENSY_40),
        ("TEENSY_2PP", BoardFamily.TEENSY_2PP),
        ("2++", BoardFamily.TEENSY_2PP),
        ("36", BoardFamily.TEENSY_36),
    ])
    def test_parse_family(self, text, family):
        assert parse_family(text) == family

    def test_parse_family_unknown(self):
        with pytest.raises(UnsupportedDeviceError):
            parse_family("4.1")
