"""
Core module for Teensy Uploader.

This module provides the single source of truth for:
- Serial number and family parsing (parsing.py)
- Result objects (results.py)
- Unified check/upload/reboot/list workflows (actions.py)

Front ends should call into this module rather than implementing their own
logic.
"""

from .parsing import parse_serial_number, parse_family
from .results import OperationResult
from .actions import (
    check_firmware,
    upload_firmware,
    reboot_board,
    list_boards,
)

__all__ = [
    # Parsing
    "parse_serial_number",
    "parse_family",
    # Results
    "OperationResult",
    # Actions
    "check_firmware",
    "upload_firmware",
    "reboot_board",
    "list_boards",
]
