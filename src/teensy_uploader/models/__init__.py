"""
Board family registry for Teensy boards.

Provides a unified layer for board family lookup and upload parameters.
"""

from .registry import (
    REPORT_LENGTH,
    AddressEncoding,
    BoardFamily,
    DeviceProfile,
    list_profiles,
    parse_family,
    profile_for_bootloader_usage,
    profile_for_serial_revision,
    resolve_profile,
)

__all__ = [
    "REPORT_LENGTH",
    "AddressEncoding",
    "BoardFamily",
    "DeviceProfile",
    "list_profiles",
    "parse_family",
    "profile_for_bootloader_usage",
    "profile_for_serial_revision",
    "resolve_profile",
]
