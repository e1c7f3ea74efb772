"""
HalfKay Bootloader Transport Layer

Handles low-level HID communication with Teensy boards running the HalfKay
bootloader.

This module provides:
- Upload and reboot report construction
- Bootloader device lookup by serial number
- Fixed-size report writes

Report layout (excluding the HID report id byte):
    [ address field | padding up to data_offset | block data ]

The address field layout depends on the board family; see
teensy_uploader.models.AddressEncoding.
"""

import logging
from typing import List, Optional

import hid

from teensy_uploader.errors import TransportError
from teensy_uploader.models import REPORT_LENGTH, DeviceProfile

logger = logging.getLogger(__name__)

VENDOR_ID = 0x16C0
BOOTLOADER_PRODUCT_ID = 0x0478

# Leading bytes of a reboot request
REBOOT_SENTINEL = b"\xFF\xFF\xFF"


def build_upload_report(profile: DeviceProfile, offset: int, block: bytes) -> bytes:
    """
    Build one upload transaction.

    Args:
        profile: Board family profile
        offset: Byte offset of the block within flash
        block: Block data; zero-padded up to ``profile.block_size``

    Returns:
        ``profile.report_size`` bytes
    """
    if len(block) > profile.block_size:
        raise ValueError(
            f"Block too large: {len(block)} bytes (max {profile.block_size})"
        )

    report = bytearray(profile.report_size)
    address = profile.address_encoding.encode(offset)
    report[:len(address)] = address
    report[profile.data_offset:profile.data_offset + len(block)] = block
    return bytes(report)


def build_reboot_report(profile: DeviceProfile) -> bytes:
    """Build the transaction that tells HalfKay to start the user program."""
    report = bytearray(profile.report_size)
    report[:len(REBOOT_SENTINEL)] = REBOOT_SENTINEL
    return bytes(report)


def bootloader_serial_number(serial: str) -> int:
    """
    Convert a HalfKay serial string to the board serial number.

    HalfKay reports the serial in hex and divided by ten; 0xFFFFFFFF is
    reported as-is.
    """
    value = int(serial, 16)
    if value != 0xFFFFFFFF:
        value *= 10
    return value


def find_bootloader_paths(serial_number: Optional[int] = None) -> List[bytes]:
    """HID paths of bootloader devices, optionally filtered by serial."""
    paths = []
    for info in hid.enumerate(VENDOR_ID, BOOTLOADER_PRODUCT_ID):
        if serial_number is not None:
            try:
                if bootloader_serial_number(info.get("serial_number") or "") != serial_number:
                    continue
            except ValueError:
                continue
        paths.append(info["path"])
    return paths


class HalfKayTransport:
    """
    HID transport for the HalfKay bootloader.

    Example:
        transport = HalfKayTransport()
        transport.open(record)
        transport.write(build_upload_report(profile, 0, block))
        transport.close()
    """

    def __init__(self):
        self.dev: Optional[hid.device] = None
        # Fixed per device; set when the board is opened
        self.report_length = REPORT_LENGTH

    def open(self, record) -> None:
        """
        Open the bootloader interface of ``record``.

        Raises:
            TransportError: If the board is not in the bootloader or the
                device cannot be opened
        """
        paths = find_bootloader_paths(record.serial_number)
        if not paths:
            raise TransportError(
                f"No bootloader found for serial number {record.serial_number}"
            )

        dev = hid.device()
        try:
            dev.open_path(paths[0])
        except (IOError, OSError) as e:
            raise TransportError(f"Cannot open bootloader for {record}: {e}")
        self.dev = dev
        self.report_length = record.profile.report_size
        logger.debug(f"Opened HalfKay device {paths[0]!r}")

    def close(self) -> None:
        if self.dev is not None:
            self.dev.close()
            self.dev = None
            logger.debug("Closed HalfKay device")

    def write(self, buffer: bytes) -> bool:
        """
        Write one report. The report id byte is added here.

        Returns:
            True if the whole report was accepted.
        """
        if self.dev is None:
            raise TransportError("Bootloader device not open")
        if len(buffer) != self.report_length:
            raise ValueError(
                f"Report must be {self.report_length} bytes, got {len(buffer)}"
            )

        try:
            written = self.dev.write(b"\x00" + buffer)
        except (IOError, OSError, ValueError) as e:
            logger.debug(f"HID write error: {e}")
            return False

        logger.debug(f">>> {buffer[:8].hex().upper()}... ({len(buffer)} bytes)")
        return written >= len(buffer)

    def __enter__(self) -> "HalfKayTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
