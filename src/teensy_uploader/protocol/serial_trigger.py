"""
Bootloader entry over USB serial.

Teensyduino firmware watches for the host setting the line coding of its
serial interface to 134 baud and jumps to the HalfKay bootloader when it
does. No data is exchanged.
"""

import logging

import serial

from teensy_uploader.errors import TransportError

logger = logging.getLogger(__name__)

MAGIC_BAUD_RATE = 134


def trigger_bootloader(port: str) -> None:
    """
    Ask the board on ``port`` to enter the bootloader.

    Raises:
        TransportError: If the port cannot be opened or configured
    """
    try:
        with serial.Serial(port) as ser:
            ser.baudrate = MAGIC_BAUD_RATE
        logger.debug(f"Set {port} to {MAGIC_BAUD_RATE} baud")
    except serial.SerialException as e:
        raise TransportError(f"Cannot open port {port}: {e}")
