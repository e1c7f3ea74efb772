"""
USB discovery of Teensy boards.

Normal-mode boards are found through the serial port list (pyserial);
bootloader-mode boards through the HID device list (hidapi). Hot-plug
notifications are produced by a watcher thread that polls both lists and
diffs successive snapshots.

The board revision (bcdDevice) of a serial port is read from sysfs, so
normal-mode boards are only identified on Linux. Elsewhere they are found
once they enter the bootloader, whose HID usage code names the family.

Usage:
    discovery = UsbDiscovery()
    for desc in discovery.list_attached(0x16C0):
        print(desc)

    with discovery.subscribe(on_add, on_remove):
        ...
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Optional

import hid
import serial.tools.list_ports

logger = logging.getLogger(__name__)

# Seconds between hot-plug polls
POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class DeviceDescriptor:
    """
    Raw identity of one USB interface, as reported by the OS.

    Attributes:
        vendor_id: USB vendor id
        product_id: USB product id
        serial: USB serial number string (may be empty)
        port: Serial port name, for serial interfaces
        revision: bcdDevice, when the OS exposes it
        usage: HID usage code, for HID interfaces
        path: HID device path, for HID interfaces
    """
    vendor_id: int
    product_id: int
    serial: str = ""
    port: Optional[str] = None
    revision: Optional[int] = None
    usage: Optional[int] = None
    path: Optional[bytes] = None

    @property
    def key(self) -> Hashable:
        """Identity used to detect arrivals and departures."""
        return (self.product_id, self.serial, self.port or self.path)


def _read_revision(port_info) -> Optional[int]:
    """Read bcdDevice for a serial port from sysfs, where available."""
    device_path = getattr(port_info, "usb_device_path", None)
    if not device_path:
        return None
    try:
        with open(os.path.join(device_path, "bcdDevice")) as handle:
            return int(handle.read().strip(), 16)
    except (OSError, ValueError):
        return None


class Subscription:
    """
    Running hot-plug watcher. Stop it with :meth:`close` or by leaving the
    ``with`` block.
    """

    def __init__(
        self,
        discovery: "UsbDiscovery",
        vendor_id: int,
        on_add: Callable[[DeviceDescriptor], None],
        on_remove: Callable[[DeviceDescriptor], None],
        interval: float,
    ):
        self._discovery = discovery
        self._vendor_id = vendor_id
        self._on_add = on_add
        self._on_remove = on_remove
        self._interval = interval
        self._stop = threading.Event()
        self._known = self._snapshot()
        self._thread = threading.Thread(
            target=self._run, name="usb-hotplug-watcher", daemon=True
        )
        self._thread.start()

    def _snapshot(self) -> Dict[Hashable, DeviceDescriptor]:
        return {
            desc.key: desc
            for desc in self._discovery.list_attached(self._vendor_id)
        }

    def poll(self) -> None:
        """Compare against the last snapshot and deliver notifications."""
        current = self._snapshot()
        removed = [desc for key, desc in self._known.items() if key not in current]
        added = [desc for key, desc in current.items() if key not in self._known]
        self._known = current

        for desc in removed:
            self._on_remove(desc)
        for desc in added:
            self._on_add(desc)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.poll()
            except Exception:
                logger.exception("Hot-plug poll failed")

    def close(self) -> None:
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class UsbDiscovery:
    """Enumerates USB serial and HID interfaces of one vendor."""

    def __init__(self, interval: float = POLL_INTERVAL):
        self.interval = interval

    def list_attached(self, vendor_id: int) -> List[DeviceDescriptor]:
        """All serial and HID interfaces currently attached for ``vendor_id``."""
        found = []

        for port in serial.tools.list_ports.comports():
            if port.vid != vendor_id:
                continue
            found.append(DeviceDescriptor(
                vendor_id=port.vid,
                product_id=port.pid,
                serial=port.serial_number or "",
                port=port.device,
                revision=_read_revision(port),
            ))

        for info in hid.enumerate(vendor_id, 0):
            found.append(DeviceDescriptor(
                vendor_id=info["vendor_id"],
                product_id=info["product_id"],
                serial=info.get("serial_number") or "",
                revision=info.get("release_number"),
                usage=info.get("usage"),
                path=info.get("path"),
            ))

        return found

    def subscribe(
        self,
        vendor_id: int,
        on_add: Callable[[DeviceDescriptor], None],
        on_remove: Callable[[DeviceDescriptor], None],
    ) -> Subscription:
        """Start delivering add/remove notifications for ``vendor_id``."""
        return Subscription(self, vendor_id, on_add, on_remove, self.interval)
