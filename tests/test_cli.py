"""Tests for the command-line front end."""

from typer.testing import CliRunner

from teensy_uploader.cli import app
from teensy_uploader.hex_image import REC_DATA, encode_record

runner = CliRunner()


def test_families_lists_every_board():
    result = runner.invoke(app, ["families"])
    assert result.exit_code == 0
    assert "Teensy 3.2" in result.output
    assert "IMXRT1062" in result.output


def test_check_decodes_file(tmp_path):
    path = tmp_path / "blink.hex"
    path.write_text(encode_record(REC_DATA, 0, b"\x01\x02") + "\n:00000001FF\n")

    result = runner.invoke(app, ["check", str(path), "--family", "LC"])

    assert result.exit_code == 0
    assert "Firmware image decoded" in result.output


def test_check_rejects_unknown_family(tmp_path):
    result = runner.invoke(app, ["check", str(tmp_path / "x.hex"), "--family", "uno"])
    assert result.exit_code == 1
    assert "Unsupported board family" in result.output


def test_check_reports_decode_error(tmp_path):
    path = tmp_path / "bad.hex"
    path.write_text(":00000001FE\n")

    result = runner.invoke(app, ["check", str(path), "-f", "3.2"])

    assert result.exit_code == 1
    assert "Checksum failed" in result.output


def test_upload_rejects_bad_serial(tmp_path):
    result = runner.invoke(app, ["upload", str(tmp_path / "x.hex"), "--serial", "abc"])
    assert result.exit_code == 1
    assert "Invalid serial number" in result.output


def test_check_json_output(tmp_path):
    path = tmp_path / "blink.hex"
    path.write_text(encode_record(REC_DATA, 0, b"\x01\x02") + "\n:00000001FF\n")

    result = runner.invoke(app, ["check", str(path), "-f", "LC", "--json"])

    assert result.exit_code == 0
    assert '"operation": "check"' in result.output
    assert '"flash_size": 63488' in result.output
    assert "Check Firmware" not in result.output


def test_check_json_reports_failure(tmp_path):
    path = tmp_path / "bad.hex"
    path.write_bytes(b"\xc3\x28\n")

    result = runner.invoke(app, ["check", str(path), "-f", "3.2", "--json"])

    assert result.exit_code == 1
    assert '"ok": false' in result.output
    assert "non-ASCII" in result.output
