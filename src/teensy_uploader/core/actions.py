"""
Core workflow actions for Teensy Uploader.

This module exposes functions that front ends call to check, upload and
reboot. Every action returns an OperationResult instead of raising, with the
log lines emitted during the action captured into ``result.logs``.
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Callable, Optional

from teensy_uploader.device import ConnectionMode, DeviceRecord
from teensy_uploader.device_registry import DeviceRegistry
from teensy_uploader.errors import FormatError, UnsupportedDeviceError
from teensy_uploader.hex_image import HexImage
from teensy_uploader.models import BoardFamily, resolve_profile
from teensy_uploader.protocol import HalfKayTransport
from teensy_uploader.uploader import UploadEngine, UploadResult

from .results import OperationResult

logger = logging.getLogger(__name__)

_RESULT_MESSAGES = {
    UploadResult.SUCCESS_REBOOT_FAILED:
        "Upload complete but the board did not restart. Press its reset button.",
    UploadResult.ERROR_DEVICE_UNAVAILABLE:
        "The bootloader could not be started or the board was not found.",
    UploadResult.ERROR_INVALID_IMAGE:
        "The firmware image is invalid for this board.",
    UploadResult.ERROR_WRITE:
        "Writing to the board failed. It may need to be power cycled.",
}


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "teensy_uploader"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _select_board(
    registry: DeviceRegistry,
    serial_number: Optional[int],
) -> Optional[DeviceRecord]:
    """Pick the requested board, or the first connected one."""
    if serial_number:
        return registry.find(serial_number)
    return (
        registry.find(mode=ConnectionMode.NORMAL)
        or registry.find(mode=ConnectionMode.FLASHING)
    )


def check_firmware(hex_path: str, family: BoardFamily) -> OperationResult:
    """
    Decode a firmware file for a board family without touching hardware.

    Returns:
        OperationResult with:
            - bytes_len: bytes of flash the image uses
            - hashes["sha256"]: hash of the decoded flash image
            - metadata["image"]: the FirmwareImage
            - metadata["likely_valid"]: advisory family check (True/False/None)
    """
    with _capture_logs() as logs:
        try:
            profile = resolve_profile(family)
            image = HexImage.from_file(hex_path, profile)
        except (OSError, FormatError, UnsupportedDeviceError) as e:
            result = OperationResult.failure(operation="check", error=str(e))
            result.logs = logs
            return result

        result = OperationResult.success(
            operation="check",
            board=profile.name,
            bytes_len=image.used_bytes(),
        )
        result.hashes["sha256"] = hashlib.sha256(image.data).hexdigest()
        result.metadata["image"] = image
        result.metadata["flash_size"] = image.size

        likely = image.is_likely_valid_for_family(family)
        result.metadata["likely_valid"] = likely
        if likely is False:
            result.add_warning(f"Image does not look like it was built for {profile.name}")
        elif likely is None:
            result.add_warning(f"No image check is known for {profile.name}")

        result.logs = logs
        return result


def upload_firmware(
    registry: DeviceRegistry,
    hex_path: str,
    serial_number: Optional[int] = None,
    timeout: Optional[float] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    engine: Optional[UploadEngine] = None,
    transport=None,
) -> OperationResult:
    """
    Decode ``hex_path`` for the selected board and upload it.

    Args:
        registry: Live board registry
        hex_path: Intel HEX firmware file
        serial_number: Target board; first connected board if None
        timeout: Seconds to wait for mode changes (minimum 5)
        progress_cb: Optional progress callback(bytes_done, total)
        engine: Upload engine (default: UploadEngine())
        transport: Transport (default: HalfKayTransport())

    Returns:
        OperationResult with metadata["upload_result"] set to the
        UploadResult value when an upload was attempted.
    """
    with _capture_logs() as logs:
        record = _select_board(registry, serial_number)
        if record is None:
            target = f"serial number {serial_number}" if serial_number else "any board"
            result = OperationResult.failure(
                operation="upload",
                error=f"No Teensy found ({target})",
            )
            result.logs = logs
            return result

        if timeout is not None:
            record.timeout = timeout

        try:
            image = HexImage.from_file(hex_path, record.profile)
        except (OSError, FormatError) as e:
            result = OperationResult.failure(
                operation="upload", error=str(e), board=str(record)
            )
            result.logs = logs
            return result

        engine = engine or UploadEngine()
        transport = transport or HalfKayTransport()
        outcome = engine.upload(image, record, record.profile, transport, progress_cb)

        if outcome.ok:
            result = OperationResult.success(
                operation="upload",
                board=str(record),
                bytes_len=image.used_bytes(),
            )
            if outcome in _RESULT_MESSAGES:
                result.add_warning(_RESULT_MESSAGES[outcome])
        else:
            result = OperationResult.failure(
                operation="upload",
                error=_RESULT_MESSAGES[outcome],
                board=str(record),
            )

        result.hashes["sha256"] = hashlib.sha256(image.data).hexdigest()
        result.metadata["upload_result"] = outcome.value
        result.metadata["serial_number"] = record.serial_number
        if image.is_likely_valid_for_family(record.family) is False:
            result.add_warning(
                f"Image does not look like it was built for {record.name}"
            )
        result.logs = logs
        return result


def reboot_board(
    registry: DeviceRegistry,
    serial_number: Optional[int] = None,
    engine: Optional[UploadEngine] = None,
    transport=None,
) -> OperationResult:
    """Restart the selected board into its own firmware."""
    with _capture_logs() as logs:
        record = _select_board(registry, serial_number)
        if record is None:
            result = OperationResult.failure(operation="reboot", error="No Teensy found")
            result.logs = logs
            return result

        engine = engine or UploadEngine()
        transport = transport or HalfKayTransport()

        if engine.reboot(record, record.profile, transport):
            result = OperationResult.success(operation="reboot", board=str(record))
        else:
            result = OperationResult.failure(
                operation="reboot",
                error="Board did not restart",
                board=str(record),
            )
        result.metadata["serial_number"] = record.serial_number
        result.logs = logs
        return result



def list_boards(registry: DeviceRegistry) -> OperationResult:
    """
    Describe every known board.

    Returns:
        OperationResult with metadata["boards"] holding one dict per board
        (name, mcu, serial_number, mode, port).
    """
    boards = []

    def collect(record: DeviceRecord) -> bool:
        mode, port = record.state
        boards.append({
            "name": record.name,
            "mcu": record.profile.mcu,
            "serial_number": record.serial_number,
            "mode": mode.value,
            "port": port,
        })
        return True

    registry.enumerate(collect)
    result = OperationResult.success(operation="list")
    result.metadata["boards"] = boards
    result.metadata["count"] = len(boards)
    if not boards:
        result.add_warning("No Teensy boards found")
    return result
