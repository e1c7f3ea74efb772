"""
A single Teensy board attached to the host.

A board shows up under one of two USB identities: a serial device while its
own firmware runs (NORMAL) and a HalfKay HID device while the bootloader
runs (FLASHING). The record keeps the board's identity across both, and
tracks which one is currently present.

Valid transitions:
    DISCONNECTED <-> NORMAL <-> FLASHING
    DISCONNECTED <-> FLASHING
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from teensy_uploader.errors import DeviceTimeoutError
from teensy_uploader.events import Signal
from teensy_uploader.models import DeviceProfile

logger = logging.getLogger(__name__)

# Mode waits never use less than this many seconds.
DEFAULT_WAIT_TIMEOUT = 5.0


class ConnectionMode(Enum):
    """USB identity currently presented by a board."""
    DISCONNECTED = "disconnected"
    FLASHING = "flashing"
    NORMAL = "normal"


_MODE_MESSAGES = {
    ConnectionMode.FLASHING: "Bootloader Running",
    ConnectionMode.DISCONNECTED: "Disconnected",
    ConnectionMode.NORMAL: "Connected",
}


class DeviceRecord:
    """
    Mutable state of one physical board.

    Identity (profile, serial number) never changes. Mode and port are
    updated together through :meth:`transition`; readers that need both
    values consistently should use :attr:`state`.

    Example:
        record.state_changed.subscribe(lambda rec: print(rec))
        record.transition(ConnectionMode.FLASHING, None)
    """

    def __init__(
        self,
        profile: DeviceProfile,
        serial_number: int,
        mode: ConnectionMode,
        port: Optional[str] = None,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
    ):
        self.profile = profile
        self.serial_number = serial_number
        self.timeout = timeout
        self.state_changed = Signal("state_changed")

        # (mode, port) is replaced as a whole so readers never see a mix
        self._state: Tuple[ConnectionMode, Optional[str]] = (
            mode,
            port if mode == ConnectionMode.NORMAL else None,
        )
        self._lock = threading.Lock()
        self._mode_ready: Dict[ConnectionMode, threading.Event] = {
            ConnectionMode.FLASHING: threading.Event(),
            ConnectionMode.NORMAL: threading.Event(),
        }

        if serial_number == 0:
            raise ValueError("A board cannot be tracked without a serial number")
        if mode == ConnectionMode.DISCONNECTED:
            raise ValueError("A board cannot be tracked in a disconnected state")

    @property
    def family(self):
        return self.profile.family

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def state(self) -> Tuple[ConnectionMode, Optional[str]]:
        """Consistent ``(mode, port)`` pair."""
        return self._state

    @property
    def mode(self) -> ConnectionMode:
        return self._state[0]

    @property
    def port(self) -> Optional[str]:
        """Serial port name; None unless the board is in NORMAL mode."""
        return self._state[1]

    def transition(self, mode: ConnectionMode, port: Optional[str] = None) -> bool:
        """
        Apply a new connection state.

        Returns:
            True if mode or port changed. When the mode changed, all
            ``state_changed`` subscribers have run before this returns.
        """
        if mode != ConnectionMode.NORMAL:
            port = None

        with self._lock:
            old_mode, old_port = self._state
            if old_mode == mode and old_port == port:
                return False
            self._state = (mode, port)

        if old_mode == mode:
            logger.debug(f"{self.name} #{self.serial_number} port now {port}")
            return True

        event = self._mode_ready.get(mode)
        if event is not None:
            event.set()

        logger.info(f"{self.name} #{self.serial_number}: {_MODE_MESSAGES[mode]}")
        self.state_changed.emit(self)
        return True

    def wait_for_mode(
        self,
        mode: ConnectionMode,
        timeout: Optional[float] = None,
        trigger: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Block until the board reports ``mode``.

        The ready signal is cleared first, then ``trigger`` runs, so only a
        transition that happens after this call can satisfy the wait.

        Args:
            mode: FLASHING or NORMAL
            timeout: Seconds to wait; never less than DEFAULT_WAIT_TIMEOUT
            trigger: Action that causes the transition (e.g. a mode switch)

        Returns:
            True if the mode was reached before the timeout expired.
        """
        if mode == ConnectionMode.DISCONNECTED:
            raise ValueError("Cannot wait for disconnected state")

        if timeout is None:
            timeout = self.timeout
        timeout = max(timeout, DEFAULT_WAIT_TIMEOUT)

        event = self._mode_ready[mode]
        event.clear()
        if trigger is not None:
            trigger()
        return event.wait(timeout)

    def require_mode(
        self,
        mode: ConnectionMode,
        timeout: Optional[float] = None,
        trigger: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Like :meth:`wait_for_mode`, but raise instead of returning False.

        Raises:
            DeviceTimeoutError: If the mode was not reached in time
        """
        if not self.wait_for_mode(mode, timeout, trigger):
            raise DeviceTimeoutError(
                f"Timed out waiting for {self.name} #{self.serial_number} "
                f"to reach {mode.value} mode"
            )

    def __repr__(self) -> str:
        mode, port = self._state
        return (
            f"DeviceRecord({self.family.name}, serial={self.serial_number}, "
            f"mode={mode.name}, port={port!r})"
        )

    def __str__(self) -> str:
        mode, port = self._state
        if mode == ConnectionMode.FLASHING:
            return f"Bootloader for {self.name} Serial Number {self.serial_number}"
        if mode == ConnectionMode.NORMAL:
            return f"{self.name} Serial Number {self.serial_number} on {port}"
        return f"Disconnected {self.name} Serial Number {self.serial_number}"
