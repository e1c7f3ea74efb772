"""Tests for the HalfKay upload engine and report construction."""

import pytest

from teensy_uploader.device import ConnectionMode, DeviceRecord
from teensy_uploader.errors import TransportError
from teensy_uploader.hex_image import FirmwareImage
from teensy_uploader.models import BoardFamily, resolve_profile
from teensy_uploader.protocol import (
    REBOOT_SENTINEL,
    bootloader_serial_number,
    build_reboot_report,
    build_upload_report,
)
from teensy_uploader.uploader import (
    BLOCK_DELAY,
    ERASE_DELAY,
    RETRY_DELAY,
    UploadEngine,
    UploadResult,
)


class FakeTransport:
    """Records every report; write results can be scripted."""

    def __init__(self, results=None, reboot_to=None, open_error=None):
        self.results = list(results or [])
        self.reboot_to = reboot_to
        self.open_error = open_error
        self.writes = []
        self.opened = None
        self.closed = False

    def open(self, record):
        if self.open_error:
            raise self.open_error
        self.opened = record

    def close(self):
        self.closed = True

    def write(self, buffer):
        self.writes.append(buffer)
        ok = self.results.pop(0) if self.results else True
        if ok and buffer[:3] == REBOOT_SENTINEL and self.reboot_to is not None:
            self.opened.transition(ConnectionMode.NORMAL, self.reboot_to)
        return ok

    @property
    def upload_writes(self):
        return [w for w in self.writes if w[:3] != REBOOT_SENTINEL]


class FakeSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def _profile(family=BoardFamily.TEENSY_32):
    return resolve_profile(family)


def _image(profile, blocks=()):
    """Image with a marker byte in block 0 and each listed block."""
    data = bytearray(b"\xFF" * profile.flash_size)
    data[0] = 0x00
    for index in blocks:
        data[index * profile.block_size] = index & 0x7F
    return FirmwareImage(bytes(data))


def _record(profile, mode=ConnectionMode.FLASHING, port=None):
    return DeviceRecord(profile, 1234560, mode, port)


def _engine(sleep=None, **kwargs):
    kwargs.setdefault("wait_for_reboot", False)
    return UploadEngine(sleep=sleep or FakeSleep(), **kwargs)


class TestReports:
    """Upload and reboot report layout."""

    def test_arm_report_layout(self):
        profile = _profile()
        block = bytes(range(256)) * 4

        report = build_upload_report(profile, 0x012400, block)

        assert len(report) == 64 + 1024
        assert report[:3] == b"\x00\x24\x01"
        assert report[3:64] == bytes(61)
        assert report[64:] == block

    def test_teensy2_report_layout(self):
        profile = _profile(BoardFamily.TEENSY_2)
        report = build_upload_report(profile, 0x1280, b"\xAA" * 128)
        assert len(report) == 130
        assert report[:2] == b"\x80\x12"
        assert report[2:] == b"\xAA" * 128

    def test_teensy2pp_uses_block_index(self):
        profile = _profile(BoardFamily.TEENSY_2PP)
        report = build_upload_report(profile, 0x1E00, b"\x01" * 256)
        assert report[:2] == b"\x1E\x00"

    def test_short_block_zero_padded(self):
        profile = _profile(BoardFamily.TEENSY_LC)
        report = build_upload_report(profile, 0, b"\x01\x02")
        assert report[64:66] == b"\x01\x02"
        assert report[66:] == bytes(510)

    def test_oversized_block_rejected(self):
        with pytest.raises(ValueError):
            build_upload_report(_profile(BoardFamily.TEENSY_2), 0, bytes(129))

    def test_reboot_report(self):
        profile = _profile()
        report = build_reboot_report(profile)
        assert report[:3] == b"\xFF\xFF\xFF"
        assert report[3:] == bytes(profile.report_size - 3)

    def test_bootloader_serial_number(self):
        assert bootloader_serial_number("0001E240") == 1234560
        assert bootloader_serial_number("FFFFFFFF") == 0xFFFFFFFF


class TestUpload:
    """Full upload sequences against a fake transport."""

    def test_skips_empty_blocks(self):
        """Only block 0 and the one non-empty block are sent, then reboot."""
        profile = _profile()
        sleep = FakeSleep()
        transport = FakeTransport()
        record = _record(profile)

        result = _engine(sleep).upload(_image(profile, [5]), record, profile, transport)

        assert result == UploadResult.SUCCESS
        assert len(transport.upload_writes) == 2
        assert transport.upload_writes[0][:3] == b"\x00\x00\x00"
        assert transport.upload_writes[1][:3] == b"\x00\x14\x00"
        assert transport.writes[-1][:3] == REBOOT_SENTINEL
        assert sleep.calls == [ERASE_DELAY, BLOCK_DELAY]
        assert transport.opened is record
        assert transport.closed

    def test_block_zero_always_sent(self):
        profile = _profile()
        image = FirmwareImage(b"\xFF" * profile.flash_size)
        transport = FakeTransport()

        result = _engine().upload(image, _record(profile), profile, transport)

        assert result == UploadResult.SUCCESS
        assert len(transport.upload_writes) == 1

    def test_teensy2pp_addresses(self):
        profile = _profile(BoardFamily.TEENSY_2PP)
        transport = FakeTransport()

        _engine().upload(_image(profile, [3]), _record(profile), profile, transport)

        assert transport.upload_writes[1][:2] == b"\x03\x00"

    def test_retry_once_after_failure(self):
        profile = _profile()
        sleep = FakeSleep()
        transport = FakeTransport(results=[False, True])

        result = _engine(sleep).upload(_image(profile), _record(profile), profile, transport)

        assert result == UploadResult.SUCCESS
        assert len(transport.upload_writes) == 2
        assert sleep.calls[0] == RETRY_DELAY

    def test_second_failure_is_write_error(self):
        """A block that fails twice aborts the upload; reboot is still sent."""
        profile = _profile()
        transport = FakeTransport(results=[False, False])

        result = _engine().upload(_image(profile, [1]), _record(profile), profile, transport)

        assert result == UploadResult.ERROR_WRITE
        assert len(transport.upload_writes) == 2
        assert transport.writes[-1][:3] == REBOOT_SENTINEL
        assert transport.closed

    def test_reboot_failure_downgrades_success(self):
        profile = _profile()
        transport = FakeTransport(results=[True, False])

        result = _engine().upload(_image(profile), _record(profile), profile, transport)

        assert result == UploadResult.SUCCESS_REBOOT_FAILED
        assert result.ok

    def test_waits_for_board_to_restart(self):
        profile = _profile()
        record = _record(profile)
        transport = FakeTransport(reboot_to="/dev/ttyACM0")

        result = _engine(wait_for_reboot=True).upload(
            _image(profile), record, profile, transport
        )

        assert result == UploadResult.SUCCESS
        assert record.state == (ConnectionMode.NORMAL, "/dev/ttyACM0")

    @pytest.mark.parametrize("image", [
        None,
        FirmwareImage(b"\xFF" * 1024),
        FirmwareImage(b"\xFF" * 262144, is_valid=False),
    ])
    def test_invalid_image(self, image):
        profile = _profile()
        transport = FakeTransport()

        result = _engine().upload(image, _record(profile), profile, transport)

        assert result == UploadResult.ERROR_INVALID_IMAGE
        assert transport.writes == []

    def test_progress_reported(self):
        profile = _profile()
        engine = _engine()
        seen, signalled = [], []
        engine.progress.subscribe(lambda done, total: signalled.append((done, total)))

        engine.upload(
            _image(profile, [2]),
            _record(profile),
            profile,
            FakeTransport(),
            progress_cb=lambda done, total: seen.append((done, total)),
        )

        total = profile.flash_size
        assert seen == [(1024, total), (3072, total), (total, total)]
        assert signalled == seen

    def test_disconnected_board_unavailable(self):
        profile = _profile()
        record = _record(profile)
        record.transition(ConnectionMode.DISCONNECTED)
        transport = FakeTransport()

        result = _engine().upload(_image(profile), record, profile, transport)

        assert result == UploadResult.ERROR_DEVICE_UNAVAILABLE
        assert transport.writes == []

    def test_open_failure_unavailable(self):
        profile = _profile()
        transport = FakeTransport(open_error=TransportError("gone"))

        result = _engine().upload(_image(profile), _record(profile), profile, transport)

        assert result == UploadResult.ERROR_DEVICE_UNAVAILABLE


class TestBootloaderEntry:
    """Switching a running board into the bootloader."""

    def test_normal_board_is_switched(self):
        profile = _profile()
        record = _record(profile, ConnectionMode.NORMAL, "/dev/ttyACM0")
        triggered = []

        def trigger(port):
            triggered.append(port)
            record.transition(ConnectionMode.FLASHING)

        engine = _engine(bootloader_trigger=trigger)
        transport = FakeTransport()

        result = engine.upload(_image(profile), record, profile, transport)

        assert result == UploadResult.SUCCESS
        assert triggered == ["/dev/ttyACM0"]

    def test_trigger_failure_unavailable(self):
        profile = _profile()
        record = _record(profile, ConnectionMode.NORMAL, "/dev/ttyACM0")

        def trigger(port):
            raise TransportError("port busy")

        engine = _engine(bootloader_trigger=trigger)

        assert engine.start_bootloader(record) is False
        assert engine.upload(_image(profile), record, profile, FakeTransport()) == (
            UploadResult.ERROR_DEVICE_UNAVAILABLE
        )

    def test_already_flashing(self):
        profile = _profile()
        engine = _engine(bootloader_trigger=pytest.fail)
        assert engine.start_bootloader(_record(profile)) is True


class TestReboot:
    """Explicit reboot requests."""

    def test_reboot_flashing_board(self):
        profile = _profile()
        record = _record(profile)
        transport = FakeTransport(reboot_to="/dev/ttyACM0")

        assert _engine(wait_for_reboot=True).reboot(record, profile, transport) is True
        assert transport.writes == [build_reboot_report(profile)]
        assert transport.closed
        assert record.mode == ConnectionMode.NORMAL

    def test_reboot_write_failure(self):
        profile = _profile()
        transport = FakeTransport(results=[False])

        assert _engine(wait_for_reboot=True).reboot(_record(profile), profile, transport) is False
