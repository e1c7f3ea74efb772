"""
Exception hierarchy for Teensy Uploader.

Decode and profile errors are raised synchronously at the call that caused
them. Transport failures are normally turned into an UploadResult by the
upload engine rather than raised.
"""

from typing import Optional


class UploaderError(Exception):
    """Base exception for all uploader errors"""
    pass


class FormatError(UploaderError):
    """
    Malformed or oversized Intel HEX firmware image.

    Attributes:
        line_number: 1-based line on or near which decoding failed
    """

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = (
                f"Invalid hex file image data was found on or near "
                f"line {line_number}: {message}"
            )
        super().__init__(message)


class UnsupportedDeviceError(UploaderError):
    """Board family is not known to the profile registry"""
    pass


class DeviceTimeoutError(UploaderError, TimeoutError):
    """Mode switch or reboot wait expired"""
    pass


class TransportError(UploaderError):
    """Bootloader device could not be opened or written"""
    pass
