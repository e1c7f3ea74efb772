"""Board protocol layer - HalfKay HID uploads and serial bootloader entry."""

from .halfkay import (
    BOOTLOADER_PRODUCT_ID,
    REBOOT_SENTINEL,
    VENDOR_ID,
    HalfKayTransport,
    bootloader_serial_number,
    build_reboot_report,
    build_upload_report,
    find_bootloader_paths,
)
from .serial_trigger import MAGIC_BAUD_RATE, trigger_bootloader

__all__ = [
    # HalfKay
    "BOOTLOADER_PRODUCT_ID",
    "REBOOT_SENTINEL",
    "VENDOR_ID",
    "HalfKayTransport",
    "bootloader_serial_number",
    "build_reboot_report",
    "build_upload_report",
    "find_bootloader_paths",
    # Serial
    "MAGIC_BAUD_RATE",
    "trigger_bootloader",
]
