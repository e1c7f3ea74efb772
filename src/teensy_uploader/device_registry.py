"""
Live set of Teensy boards attached to the host.

The registry is populated once from the discovery collaborator and then kept
current from its hot-plug notifications. Notification callbacks only queue
the raw descriptor; a single worker thread decodes it and reconciles it
against the known records, so the OS notification thread is never blocked
by the registry lock or by subscriber code.

Records are kept when a board disconnects, so the same DeviceRecord follows
a board through a bootloader round-trip.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from teensy_uploader.device import ConnectionMode, DeviceRecord
from teensy_uploader.discovery import DeviceDescriptor
from teensy_uploader.errors import UnsupportedDeviceError
from teensy_uploader.events import Signal
from teensy_uploader.models import (
    DeviceProfile,
    profile_for_bootloader_usage,
    profile_for_serial_revision,
)
from teensy_uploader.protocol import (
    BOOTLOADER_PRODUCT_ID,
    VENDOR_ID,
    bootloader_serial_number,
)

logger = logging.getLogger(__name__)

# USB product id of the Teensyduino serial interface
SERIAL_PRODUCT_ID = 0x0483


@dataclass(frozen=True)
class Candidate:
    """Board identity decoded from one descriptor."""
    profile: Optional[DeviceProfile]
    serial_number: int
    mode: ConnectionMode
    port: Optional[str] = None


def decode_descriptor(desc: DeviceDescriptor, vendor_id: int = VENDOR_ID) -> Optional[Candidate]:
    """
    Decode a raw descriptor into a candidate board.

    Returns:
        Candidate, or None for interfaces that are not a Teensy serial or
        bootloader interface. ``profile`` is None when a bootloader does not
        report a usable HID usage code.

    Raises:
        ValueError: Malformed or zero serial number, or missing port name
        UnsupportedDeviceError: Serial interface with an unknown revision
    """
    if desc.vendor_id != vendor_id:
        return None

    if desc.product_id == SERIAL_PRODUCT_ID:
        if not desc.port:
            raise ValueError(f"Serial interface without a port name: {desc}")
        if desc.revision is None:
            raise UnsupportedDeviceError(f"Board revision is not available for {desc.port}")
        profile = profile_for_serial_revision(desc.revision)
        if profile is None:
            raise UnsupportedDeviceError(
                f"Unknown serial revision {desc.revision!r} on {desc.port}"
            )
        candidate = Candidate(profile, int(desc.serial), ConnectionMode.NORMAL, desc.port)
    elif desc.product_id == BOOTLOADER_PRODUCT_ID:
        candidate = Candidate(
            profile_for_bootloader_usage(desc.usage),
            bootloader_serial_number(desc.serial),
            ConnectionMode.FLASHING,
        )
    else:
        return None

    # Zero is the "any board" wildcard of find() and never a real identity
    if candidate.serial_number <= 0:
        raise ValueError(f"Invalid serial number {desc.serial!r}")
    return candidate


class DeviceRegistry:
    """
    Authoritative set of known boards.

    Example:
        with DeviceRegistry(UsbDiscovery()) as registry:
            registry.device_added.subscribe(print)
            board = registry.find(mode=ConnectionMode.NORMAL)
    """

    def __init__(self, discovery, vendor_id: int = VENDOR_ID, watch: bool = True):
        """
        Args:
            discovery: Object with ``list_attached(vendor_id)`` and
                ``subscribe(vendor_id, on_add, on_remove)``
            vendor_id: USB vendor id to track
            watch: Subscribe to hot-plug notifications
        """
        self.vendor_id = vendor_id
        self.device_added = Signal("device_added")

        self._lock = threading.Lock()
        self._records: List[DeviceRecord] = []
        self._events: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._subscription = None

        try:
            self._populate(discovery)
            if watch:
                self._worker = threading.Thread(
                    target=self._run, name="device-registry", daemon=True
                )
                self._worker.start()
                self._subscription = discovery.subscribe(
                    vendor_id, self._on_add, self._on_remove
                )
        except Exception:
            self.close()
            raise

    def _populate(self, discovery) -> None:
        found = []
        for desc in discovery.list_attached(self.vendor_id):
            try:
                candidate = decode_descriptor(desc, self.vendor_id)
            except (ValueError, UnsupportedDeviceError) as e:
                logger.debug(f"Ignoring {desc}: {e}")
                continue
            if candidate is None or candidate.profile is None:
                continue
            if any(r.serial_number == candidate.serial_number for r in found):
                continue
            found.append(DeviceRecord(
                candidate.profile,
                candidate.serial_number,
                candidate.mode,
                candidate.port,
            ))

        with self._lock:
            self._records.extend(found)
        logger.info(f"Found {len(found)} board(s)")

    # ------------------------------------------------------------------
    # Hot-plug handling
    # ------------------------------------------------------------------

    def _on_add(self, desc: DeviceDescriptor) -> None:
        self._events.put((True, desc))

    def _on_remove(self, desc: DeviceDescriptor) -> None:
        self._events.put((False, desc))

    def _run(self) -> None:
        while True:
            item = self._events.get()
            try:
                if item is None:
                    return
                added, desc = item
                self.reconcile(added, desc)
            except Exception as e:
                # One bad notification must not stop hot-plug tracking
                logger.debug(f"Ignoring device notification: {e}", exc_info=True)
            finally:
                self._events.task_done()

    def reconcile(self, added: bool, desc: DeviceDescriptor) -> None:
        """
        Apply one add/remove notification to the live set.

        Known boards change state; unknown boards are inserted on add and
        announced through ``device_added``.
        """
        candidate = decode_descriptor(desc, self.vendor_id)
        if candidate is None:
            return

        existing = self.find(candidate.serial_number)
        if existing is not None:
            if added:
                existing.transition(candidate.mode, candidate.port)
            elif existing.mode == candidate.mode:
                existing.transition(ConnectionMode.DISCONNECTED)
            return

        if not added:
            return
        if candidate.profile is None:
            logger.debug(f"Cannot identify board family for {desc}")
            return

        record = DeviceRecord(
            candidate.profile,
            candidate.serial_number,
            candidate.mode,
            candidate.port,
        )
        with self._lock:
            if any(r.serial_number == record.serial_number for r in self._records):
                return
            self._records.append(record)

        logger.info(f"Added {record}")
        self.device_added.emit(record)

    def flush(self) -> None:
        """Block until every queued notification has been processed."""
        if self._worker is not None:
            self._events.join()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def records(self) -> List[DeviceRecord]:
        """Snapshot of all known records."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def enumerate(self, callback: Callable[[DeviceRecord], bool]) -> None:
        """
        Call ``callback`` for each known record until it returns False.

        Iterates a snapshot, so callbacks may use the registry freely.
        """
        for record in self.records():
            if not callback(record):
                break

    def find(
        self,
        serial_number: Optional[int] = None,
        mode: Optional[ConnectionMode] = None,
    ) -> Optional[DeviceRecord]:
        """
        First record matching ``serial_number`` (any if None or 0) and
        ``mode`` (any if None).
        """
        result = None

        def match(record: DeviceRecord) -> bool:
            nonlocal result
            if serial_number and record.serial_number != serial_number:
                return True
            if mode is not None and record.mode != mode:
                return True
            result = record
            return False

        self.enumerate(match)
        return result

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop hot-plug tracking and forget all records."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        if self._worker is not None:
            self._events.put(None)
            if self._worker is not threading.current_thread():
                self._worker.join()
            self._worker = None

        with self._lock:
            self._records.clear()

    def __enter__(self) -> "DeviceRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
