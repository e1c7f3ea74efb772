"""
HalfKay upload engine.

Writes a decoded firmware image to a board block by block and reboots it.

Upload sequence:
1. Put the board in FLASHING mode (134 baud trigger on its serial port,
   then wait for the registry to see the bootloader appear)
2. Open the bootloader through the transport
3. For each block of the image:
   - skip it if it only holds erase bytes (never the first block; writing
     block 0 is what makes HalfKay erase the chip)
   - write it, retrying once after 100 ms
   - wait 5 s after block 0 (chip erase) or 0.5 s after any other block
4. Send the reboot report, always
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from teensy_uploader.device import ConnectionMode, DeviceRecord
from teensy_uploader.errors import DeviceTimeoutError, TransportError
from teensy_uploader.events import Signal
from teensy_uploader.hex_image import FirmwareImage
from teensy_uploader.models import DeviceProfile
from teensy_uploader.protocol import (
    build_reboot_report,
    build_upload_report,
    trigger_bootloader,
)

logger = logging.getLogger(__name__)

# Board timing, measured on hardware; not tunable
RETRY_DELAY = 0.1
ERASE_DELAY = 5.0
BLOCK_DELAY = 0.5

ProgressCallback = Callable[[int, int], None]


class UploadResult(Enum):
    """Outcome of an upload."""
    SUCCESS = "success"
    # Written, but the board did not come back; it needs a power cycle
    SUCCESS_REBOOT_FAILED = "success_reboot_failed"
    # Bootloader could not be started or found
    ERROR_DEVICE_UNAVAILABLE = "error_device_unavailable"
    ERROR_INVALID_IMAGE = "error_invalid_image"
    ERROR_WRITE = "error_write"

    @property
    def ok(self) -> bool:
        return self in (UploadResult.SUCCESS, UploadResult.SUCCESS_REBOOT_FAILED)


class UploadEngine:
    """
    Drives the HalfKay upload protocol over a transport.

    Example:
        engine = UploadEngine()
        engine.progress.subscribe(lambda done, total: print(done, total))
        result = engine.upload(image, record, record.profile, HalfKayTransport())
    """

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        bootloader_trigger: Callable[[str], None] = trigger_bootloader,
        wait_for_reboot: bool = True,
    ):
        """
        Args:
            sleep: Blocking delay used between writes
            bootloader_trigger: Mode switch for a board in NORMAL mode
            wait_for_reboot: Treat a reboot as successful only once the
                board is seen in NORMAL mode again
        """
        self.sleep = sleep
        self.bootloader_trigger = bootloader_trigger
        self.wait_for_reboot = wait_for_reboot
        self.progress = Signal("progress")

    def _report_progress(
        self,
        done: int,
        total: int,
        progress_cb: Optional[ProgressCallback],
    ) -> None:
        self.progress.emit(done, total)
        if progress_cb is not None:
            try:
                progress_cb(done, total)
            except Exception:
                logger.exception("Progress callback raised")

    def start_bootloader(self, record: DeviceRecord, timeout: Optional[float] = None) -> bool:
        """
        Put the board in FLASHING mode if it is not already.

        Returns:
            True if the bootloader is (now) running.
        """
        mode, port = record.state
        if mode == ConnectionMode.FLASHING:
            return True
        if mode != ConnectionMode.NORMAL or port is None:
            logger.error(f"Cannot start bootloader: {record}")
            return False

        logger.info(f"Starting {record.name} Bootloader")
        try:
            record.require_mode(
                ConnectionMode.FLASHING,
                timeout,
                trigger=lambda: self.bootloader_trigger(port),
            )
        except (TransportError, DeviceTimeoutError) as e:
            logger.error(f"Bootloader not started: {e}")
            return False
        return True

    def _write(self, transport, report: bytes) -> bool:
        """Write one report, retrying once after a short delay."""
        if transport.write(report):
            return True
        logger.warning(f"Write failed, retrying in {RETRY_DELAY * 1000:.0f} ms")
        self.sleep(RETRY_DELAY)
        return transport.write(report)

    def _send_reboot(self, record: DeviceRecord, profile: DeviceProfile, transport) -> bool:
        logger.info(f"{record.name} Rebooting")
        report = build_reboot_report(profile)

        if not self.wait_for_reboot:
            return transport.write(report)

        def send() -> None:
            if not transport.write(report):
                raise TransportError("Reboot report could not be written")

        try:
            record.require_mode(ConnectionMode.NORMAL, trigger=send)
        except (TransportError, DeviceTimeoutError) as e:
            logger.error(f"Reboot failed: {e}")
            return False
        return True

    def reboot(
        self,
        record: DeviceRecord,
        profile: DeviceProfile,
        transport,
    ) -> bool:
        """
        Restart the board into its own firmware, entering the bootloader
        first if needed.
        """
        if not self.start_bootloader(record):
            return False
        try:
            transport.open(record)
        except TransportError as e:
            logger.error(str(e))
            return False
        try:
            return self._send_reboot(record, profile, transport)
        finally:
            transport.close()

    def upload(
        self,
        image: Optional[FirmwareImage],
        record: DeviceRecord,
        profile: DeviceProfile,
        transport,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Write ``image`` to the board and reboot it.

        Args:
            image: Decoded image sized for ``profile``
            record: Target board
            profile: Upload parameters for the board's family
            transport: Object with ``open(record)``, ``write(buffer)`` and
                ``close()``
            progress_cb: Optional callback(bytes_processed, total)

        Returns:
            UploadResult
        """
        if image is None or not image.is_valid or image.size != profile.flash_size:
            logger.error("Firmware image is missing, invalid or sized for another board")
            return UploadResult.ERROR_INVALID_IMAGE

        if not self.start_bootloader(record):
            return UploadResult.ERROR_DEVICE_UNAVAILABLE

        try:
            transport.open(record)
        except TransportError as e:
            logger.error(str(e))
            return UploadResult.ERROR_DEVICE_UNAVAILABLE

        total = image.size
        try:
            result = self._write_blocks(image, record, profile, transport, progress_cb)

            # Always reboot, even after a failed write
            rebooted = self._send_reboot(record, profile, transport)
            if result == UploadResult.SUCCESS and not rebooted:
                result = UploadResult.SUCCESS_REBOOT_FAILED
        finally:
            transport.close()

        self._report_progress(total, total, progress_cb)
        logger.info(f"Upload finished: {result.value}")
        return result

    def _write_blocks(
        self,
        image: FirmwareImage,
        record: DeviceRecord,
        profile: DeviceProfile,
        transport,
        progress_cb: Optional[ProgressCallback],
    ) -> UploadResult:
        total = image.size
        block_size = profile.block_size
        sent = 0

        for offset, block in image.chunks(block_size):
            if offset == 0:
                logger.info(f"Erasing {record.name} Flash Memory")

            report = build_upload_report(profile, offset, block)
            if not self._write(transport, report):
                logger.error(f"Write failed at 0x{offset:06X}")
                return UploadResult.ERROR_WRITE

            sent += 1
            self.sleep(ERASE_DELAY if offset == 0 else BLOCK_DELAY)

            done = min(offset + block_size, total)
            logger.debug(f"Uploaded {done} of {total} Bytes")
            self._report_progress(done, total, progress_cb)

        logger.info(f"Sent {sent} of {profile.block_count} blocks")
        return UploadResult.SUCCESS
