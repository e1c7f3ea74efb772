"""
Intel HEX firmware image decoding.

Decodes the textual Intel HEX format produced by the Teensy toolchains into
a flat byte image the size of the target board's flash memory. Unwritten
flash reads as the erase value 0xFF.

Supported record types:
    00  data
    01  end of file
    02  extended segment address (value << 4)
    04  extended linear address (value << 16)

Teensy 4.x images are linked at 0x6000_0000 (FlexSPI flash); an extended
linear address of exactly that value is treated as bank zero.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from teensy_uploader.errors import FormatError
from teensy_uploader.models import BoardFamily, DeviceProfile

logger = logging.getLogger(__name__)

ERASE_VALUE = 0xFF

REC_DATA = 0x00
REC_EOF = 0x01
REC_SEGMENT_ADDRESS = 0x02
REC_LINEAR_ADDRESS = 0x04

MIN_LINE_LENGTH = 11
FLEXSPI_BASE = 0x6000_0000

# Vector table heuristics only look below this offset.
VECTOR_SCAN_LIMIT = 0x400

# reset handler address -> (families, magic instruction word)
_RESET_HANDLER_MAGIC: Dict[int, Tuple[Tuple[BoardFamily, ...], int]] = {
    0xF9: ((BoardFamily.TEENSY_30,), 0x00043F82),
    0x1BD: ((BoardFamily.TEENSY_31, BoardFamily.TEENSY_32), 0x00043F82),
    0xC1: ((BoardFamily.TEENSY_LC,), 0x00003F82),
    0x199: ((BoardFamily.TEENSY_35,), 0x00043F82),
    0x1D1: ((BoardFamily.TEENSY_36,), 0x00043F82),
}

HexSource = Union[str, Path, Iterable[str], Iterable[bytes]]


@dataclass(frozen=True)
class FirmwareImage:
    """
    A decoded firmware image.

    Attributes:
        data: Flash contents, exactly ``flash_size`` bytes
        is_valid: True once the end-of-file record has been decoded
    """
    data: bytes
    is_valid: bool = True

    @property
    def size(self) -> int:
        return len(self.data)

    def used_bytes(self) -> int:
        """Number of bytes that differ from the erase value."""
        return self.size - self.data.count(ERASE_VALUE)

    def is_empty_block(self, offset: int, block_size: int) -> bool:
        block = self.data[offset:offset + block_size]
        return block.count(ERASE_VALUE) == len(block)

    def chunks(self, block_size: int) -> Iterator[Tuple[int, bytes]]:
        """
        Yield ``(offset, block)`` for every block worth sending.

        Blocks made only of erase bytes are skipped, except the first block,
        which is always produced. The final block is zero-padded to
        ``block_size``.
        """
        for offset in range(0, self.size, block_size):
            if offset and self.is_empty_block(offset, block_size):
                continue
            block = self.data[offset:offset + block_size]
            if len(block) < block_size:
                block += bytes(block_size - len(block))
            yield offset, block

    def to_hex_records(self, block_size: int = 16) -> List[str]:
        """
        Re-encode the non-empty blocks of the image as Intel HEX lines.

        Emits type 04 records whenever the upper 16 address bits change,
        type 00 records for each non-empty ``block_size`` slice and a final
        end-of-file record.
        """
        if not 0 < block_size <= 0xFF:
            raise ValueError(f"Record block size must be 1..255, got {block_size}")

        lines: List[str] = []
        upper = 0
        for offset in range(0, self.size, block_size):
            block = self.data[offset:offset + block_size]
            if block.count(ERASE_VALUE) == len(block):
                continue
            if offset >> 16 != upper:
                upper = offset >> 16
                lines.append(encode_record(REC_LINEAR_ADDRESS, 0, upper.to_bytes(2, "big")))
            lines.append(encode_record(REC_DATA, offset & 0xFFFF, block))
        lines.append(encode_record(REC_EOF, 0, b""))
        return lines

    def is_likely_valid_for_family(self, family: BoardFamily) -> Optional[bool]:
        """
        Guess whether the image was built for ``family``.

        Looks up the reset handler pointer (vector table entry 1) in a table
        of known startup code locations, then scans forward for the family's
        startup instruction pattern.

        Returns:
            True/False for families with a known pattern, None otherwise.
            The answer is advisory only and must never block an upload.
        """
        known = {f for families, _ in _RESET_HANDLER_MAGIC.values() for f in families}
        if family not in known:
            return None
        if not self.is_valid or self.size < VECTOR_SCAN_LIMIT:
            return False

        (reset_handler,) = struct.unpack_from("<I", self.data, 4)
        entry = _RESET_HANDLER_MAGIC.get(reset_handler)
        if entry is None:
            return False

        families, magic = entry
        if family not in families:
            return False

        for offset in range(reset_handler, VECTOR_SCAN_LIMIT - 3):
            if struct.unpack_from("<I", self.data, offset)[0] == magic:
                return True
        return False


def checksum(payload: bytes) -> int:
    """Two's complement of the low byte of the sum of ``payload``."""
    return (-sum(payload)) & 0xFF


def encode_record(record_type: int, address: int, data: bytes) -> str:
    """Format one Intel HEX record line (without line terminator)."""
    body = bytes([len(data), (address >> 8) & 0xFF, address & 0xFF, record_type]) + data
    return ":" + (body + bytes([checksum(body)])).hex().upper()


def _iter_lines(source: HexSource) -> Iterator[Union[str, bytes]]:
    if isinstance(source, (str, Path)):
        with open(source, "rb") as handle:
            yield from handle
    else:
        yield from source


def _parse_record(line: str, line_number: int) -> Tuple[int, int, bytes]:
    """Validate one record line and return ``(type, address, data)``."""
    if len(line) < MIN_LINE_LENGTH or line[0] != ":":
        raise FormatError(
            "The minimum line length is 11 characters and the line must "
            "start with a colon.",
            line_number,
        )

    try:
        length = int(line[1:3], 16)
        raw = bytes.fromhex(line[1:]) if len(line) % 2 else b""
    except ValueError:
        raise FormatError("The record contains non-hexadecimal characters.", line_number)

    if len(line) != MIN_LINE_LENGTH + 2 * length:
        raise FormatError("The record length is incorrect.", line_number)

    if checksum(raw[:-1]) != raw[-1]:
        raise FormatError("Checksum failed.", line_number)

    address = (raw[1] << 8) | raw[2]
    return raw[3], address, raw[4:-1]


def decode_hex(source: HexSource, flash_size: int) -> FirmwareImage:
    """
    Decode Intel HEX text into a flash image.

    Args:
        source: Path to a .hex file, or any iterable of text or byte lines
        flash_size: Size of the target flash; the image is exactly this long

    Returns:
        FirmwareImage with ``is_valid`` set

    Raises:
        FormatError: On the first malformed line; later lines are not read.
    """
    image = bytearray([ERASE_VALUE]) * flash_size

    # Upper linear base address and segment base address
    ulba = 0
    segba = 0

    line_number = 0
    for line_number, line in enumerate(_iter_lines(source), start=1):
        if isinstance(line, bytes):
            line = line.decode("latin-1")
        if not line.isascii():
            raise FormatError("The record contains non-ASCII characters.", line_number)
        line = line.strip()
        if not line:
            raise FormatError("The 'end of file' marker was not found.", line_number)

        record_type, address, data = _parse_record(line, line_number)

        if record_type == REC_DATA:
            offset = ulba + segba + address
            if offset + len(data) > flash_size:
                raise FormatError(
                    f"The hex file data at 0x{offset:08X} exceeds the flash "
                    f"memory size ({flash_size} bytes).",
                    line_number,
                )
            image[offset:offset + len(data)] = data

        elif record_type == REC_EOF:
            logger.debug(f"End of file record on line {line_number}")
            return FirmwareImage(bytes(image), is_valid=True)

        elif record_type in (REC_SEGMENT_ADDRESS, REC_LINEAR_ADDRESS):
            if len(data) != 2:
                raise FormatError("Address records must carry 2 data bytes.", line_number)
            value = (data[0] << 8) | data[1]
            if record_type == REC_SEGMENT_ADDRESS:
                ulba = 0
                segba = value << 4
            else:
                segba = 0
                ulba = value << 16
                if ulba == FLEXSPI_BASE:
                    ulba = 0

        else:
            raise FormatError(f"Unsupported record type: {record_type:02X}.", line_number)

    raise FormatError("The 'end of file' marker was not found.", line_number + 1)


class HexImage:
    """
    Decoder bound to a board profile.

    Example:
        image = HexImage(profile).load("blink.hex")
        image.is_likely_valid_for_family(profile.family)
    """

    def __init__(self, profile: DeviceProfile):
        self.profile = profile

    def load(self, source: HexSource) -> FirmwareImage:
        """Decode ``source`` sized to this profile's flash."""
        image = decode_hex(source, self.profile.flash_size)
        logger.info(
            f"Decoded firmware for {self.profile.name}: "
            f"{image.used_bytes():,} of {image.size:,} bytes used"
        )
        if image.is_likely_valid_for_family(self.profile.family) is False:
            logger.warning(
                f"Image does not look like it was built for {self.profile.name}"
            )
        return image

    @classmethod
    def from_file(cls, path: Union[str, Path], profile: DeviceProfile) -> FirmwareImage:
        return cls(profile).load(Path(path))
