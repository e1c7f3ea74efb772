"""
Teensy Uploader - host-side firmware uploader for Teensy boards

Decodes Intel HEX images, tracks attached boards through bootloader
round-trips and writes firmware over the HalfKay bootloader protocol.
"""

__version__ = "0.1.0"

from teensy_uploader.device import ConnectionMode, DeviceRecord
from teensy_uploader.device_registry import DeviceRegistry
from teensy_uploader.discovery import UsbDiscovery
from teensy_uploader.errors import (
    DeviceTimeoutError,
    FormatError,
    TransportError,
    UnsupportedDeviceError,
    UploaderError,
)
from teensy_uploader.hex_image import FirmwareImage, HexImage, decode_hex
from teensy_uploader.models import BoardFamily, DeviceProfile, resolve_profile
from teensy_uploader.protocol import HalfKayTransport
from teensy_uploader.uploader import UploadEngine, UploadResult

__all__ = [
    "BoardFamily",
    "ConnectionMode",
    "DeviceProfile",
    "DeviceRecord",
    "DeviceRegistry",
    "DeviceTimeoutError",
    "FirmwareImage",
    "FormatError",
    "HalfKayTransport",
    "HexImage",
    "TransportError",
    "UnsupportedDeviceError",
    "UploadEngine",
    "UploadResult",
    "UploaderError",
    "UsbDiscovery",
    "decode_hex",
    "resolve_profile",
    "__version__",
]
