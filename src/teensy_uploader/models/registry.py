"""
Board family registry for Teensy boards.

Provides a single source of truth for:
- Flash geometry (flash size, upload block size)
- HalfKay framing (header length, address field layout)
- Identification keys (USB serial revision, bootloader HID usage code)

Adding a board family is a data change here; nothing else in the package
switches on the family.

Usage:
    from teensy_uploader.models import BoardFamily, resolve_profile

    profile = resolve_profile(BoardFamily.TEENSY_32)
    profile.flash_size   # 262144
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from teensy_uploader.errors import UnsupportedDeviceError

# Length of a HalfKay report payload, excluding the leading report id byte.
REPORT_LENGTH = 1024 + 64


class BoardFamily(Enum):
    """Supported Teensy board families."""
    TEENSY_2 = "2.0"
    TEENSY_2PP = "2++"
    TEENSY_LC = "LC"
    TEENSY_30 = "3.0"
    TEENSY_31 = "3.1"
    TEENSY_32 = "3.2"
    TEENSY_35 = "3.5"
    TEENSY_36 = "3.6"
    TEENSY_40 = "4.0"


@dataclass(frozen=True)
class AddressEncoding:
    """
    Layout of the address field at the start of an upload report.

    The byte offset of the block is shifted right by ``shift`` and the low
    ``width`` bytes of the result are placed little-endian at report byte 0.
    A shift of 0 sends a byte offset; a shift of 8 sends a 256-byte block
    index.
    """
    width: int
    shift: int = 0

    def encode(self, offset: int) -> bytes:
        """Return the address field bytes for a block at ``offset``."""
        value = offset >> self.shift
        return bytes((value >> (8 * i)) & 0xFF for i in range(self.width))


@dataclass(frozen=True)
class DeviceProfile:
    """Static upload parameters for one board family."""
    family: BoardFamily
    mcu: str
    flash_size: int
    block_size: int
    data_offset: int
    address_encoding: AddressEncoding
    # bcdDevice reported by the USB serial interface in normal mode
    serial_revision: Optional[int] = None
    # HID usage code reported by the HalfKay bootloader
    bootloader_usage: Optional[int] = None

    @property
    def name(self) -> str:
        """Friendly name, e.g. "Teensy 3.2"."""
        return f"Teensy {self.family.value}"

    @property
    def report_size(self) -> int:
        """Bytes in one upload transaction (header plus block)."""
        return self.data_offset + self.block_size

    @property
    def block_count(self) -> int:
        return -(-self.flash_size // self.block_size)


# ============================================================================
# PROFILE REGISTRY - All known board families
# ============================================================================

_PROFILE_REGISTRY: Dict[BoardFamily, DeviceProfile] = {}


def _register_profile(profile: DeviceProfile) -> None:
    """Register a board family profile."""
    if profile.report_size > REPORT_LENGTH:
        raise ValueError(
            f"{profile.name}: block size {profile.block_size} plus header "
            f"{profile.data_offset} exceeds report length {REPORT_LENGTH}"
        )
    if profile.address_encoding.width > profile.data_offset:
        raise ValueError(f"{profile.name}: address field overlaps block data")
    _PROFILE_REGISTRY[profile.family] = profile


def _init_registry() -> None:
    """Initialize the registry with known board families."""

    # AVR boards: 2-byte header, data follows immediately
    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_2,
        mcu="ATMEGA32U4",
        flash_size=31 * 1024 + 512,
        block_size=128,
        data_offset=2,
        address_encoding=AddressEncoding(width=2),
        bootloader_usage=0x1B,
    ))

    # 256-byte blocks are addressed by block index
    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_2PP,
        mcu="AT90USB1286",
        flash_size=124 * 1024,
        block_size=256,
        data_offset=2,
        address_encoding=AddressEncoding(width=2, shift=8),
        bootloader_usage=0x1C,
    ))

    # ARM boards: 3-byte address, data starts after a 64-byte header
    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_LC,
        mcu="MKL26Z64",
        flash_size=62 * 1024,
        block_size=512,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0273,
        bootloader_usage=0x20,
    ))

    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_30,
        mcu="MK20DX128",
        flash_size=128 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0274,
        bootloader_usage=0x1D,
    ))

    # 3.1 has no serial revision of its own; 0x0275 resolves to 3.2
    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_31,
        mcu="MK20DX256",
        flash_size=256 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        bootloader_usage=0x1E,
    ))

    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_32,
        mcu="MK20DX256",
        flash_size=256 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0275,
        bootloader_usage=0x21,
    ))

    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_35,
        mcu="MK64FX512",
        flash_size=512 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0276,
        bootloader_usage=0x1F,
    ))

    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_36,
        mcu="MK66FX1M0",
        flash_size=1024 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0277,
        bootloader_usage=0x22,
    ))

    _register_profile(DeviceProfile(
        family=BoardFamily.TEENSY_40,
        mcu="IMXRT1062",
        flash_size=2048 * 1024,
        block_size=1024,
        data_offset=64,
        address_encoding=AddressEncoding(width=3),
        serial_revision=0x0279,
        bootloader_usage=0x24,
    ))


# Initialize registry on module load
_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def resolve_profile(family: BoardFamily) -> DeviceProfile:
    """
    Get the profile for a board family.

    Raises:
        UnsupportedDeviceError: If the family is not registered.
    """
    try:
        return _PROFILE_REGISTRY[family]
    except (KeyError, TypeError):
        raise UnsupportedDeviceError(f"Unsupported board family: {family!r}")


def list_profiles() -> List[DeviceProfile]:
    """All registered profiles, in family declaration order."""
    return [
        _PROFILE_REGISTRY[family]
        for family in BoardFamily
        if family in _PROFILE_REGISTRY
    ]


def parse_family(value: str) -> BoardFamily:
    """
    Parse a board family from user input.

    Accepts the family value ("3.2", "lc"), the friendly name
    ("Teensy 3.2") or the enum name ("TEENSY_32").

    Raises:
        UnsupportedDeviceError: If nothing matches.
    """
    text = value.strip()
    if text.lower().startswith("teensy"):
        text = text[len("teensy"):].strip(" _-")
    for family in BoardFamily:
        if text.upper() in (family.value.upper(), family.name, family.name[len("TEENSY_"):]):
            return family
    raise UnsupportedDeviceError(f"Unsupported board family: {value!r}")


def profile_for_serial_revision(revision: Optional[int]) -> Optional[DeviceProfile]:
    """Find the profile whose USB serial interface reports ``revision``."""
    if revision is None:
        return None
    for profile in _PROFILE_REGISTRY.values():
        if profile.serial_revision == revision:
            return profile
    return None


def profile_for_bootloader_usage(usage: Optional[int]) -> Optional[DeviceProfile]:
    """Find the profile whose bootloader reports HID ``usage``."""
    if usage is None:
        return None
    for profile in _PROFILE_REGISTRY.values():
        if profile.bootloader_usage == usage:
            return profile
    return None
