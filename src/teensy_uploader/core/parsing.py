"""
Centralized parsing helpers for user-supplied values.

Front ends must import these helpers rather than re-implement.
"""

from typing import Optional

from teensy_uploader.errors import UnsupportedDeviceError
from teensy_uploader.models import BoardFamily, parse_family as _parse_family_core


def parse_serial_number(value: Optional[str]) -> Optional[int]:
    """
    Parse a board serial number.

    Accepts:
        - Decimal: "1234560" (as printed by the list command)
        - Hex with 0x prefix: "0x12D688"
        - None or blank for "any board"

    Returns:
        Parsed serial number, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed or is zero.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            serial_number = int(value, 16)
        else:
            serial_number = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid serial number '{value}'. Use decimal (1234560) or hex (0x12D688)."
        )

    if serial_number <= 0:
        raise ValueError("Serial number must be a positive integer.")
    return serial_number


def parse_family(value: Optional[str]) -> Optional[BoardFamily]:
    """
    Parse a board family name ("3.2", "LC", "Teensy 4.0").

    Raises:
        ValueError: If the family is not recognized.
    """
    if value is None or not value.strip():
        return None
    try:
        return _parse_family_core(value)
    except UnsupportedDeviceError as e:
        raise ValueError(str(e))
