"""
Teensy Uploader CLI

Command-line interface for listing boards, checking firmware files and
uploading them over the HalfKay bootloader.
"""

import sys
import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from teensy_uploader.device_registry import DeviceRegistry
from teensy_uploader.discovery import UsbDiscovery
from teensy_uploader.models import list_profiles
from teensy_uploader.uploader import UploadEngine

from teensy_uploader.core.parsing import (
    parse_serial_number as _parse_serial_number_core,
    parse_family as _parse_family_core,
)
from teensy_uploader.core.results import OperationResult
from teensy_uploader.core.actions import (
    check_firmware as core_check_firmware,
    upload_firmware as core_upload_firmware,
    reboot_board as core_reboot_board,
    list_boards as core_list_boards,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("teensy_uploader")

# Setup Rich console
console = Console()

app = typer.Typer(help="Teensy Uploader - HalfKay firmware upload for Teensy boards")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_result(result: OperationResult) -> None:
    """Print warnings and errors collected by a core action."""
    for warning in result.warnings:
        print_warning(warning)
    for error in result.errors:
        print_error(error)


def parse_serial(value: Optional[str]) -> Optional[int]:
    try:
        return _parse_serial_number_core(value)
    except ValueError as e:
        print_error(str(e))
        sys.exit(1)


def open_registry() -> DeviceRegistry:
    """Start board tracking, exiting with an error if USB is unavailable."""
    try:
        return DeviceRegistry(UsbDiscovery())
    except Exception as e:
        print_error(f"Cannot enumerate USB devices: {e}")
        sys.exit(1)


@app.command("list")
def list_boards(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """List connected Teensy boards."""
    with open_registry() as registry:
        result = core_list_boards(registry)

    boards = result.metadata["boards"]
    if output_json:
        console.print_json(json.dumps(boards))
        return

    print_header("Connected Teensy Boards")
    if not boards:
        print_warning("No Teensy boards found")
        return

    table = Table(title="Boards")
    table.add_column("Board", style="cyan")
    table.add_column("MCU", style="magenta")
    table.add_column("Serial Number", style="green")
    table.add_column("Mode", style="yellow")
    table.add_column("Port", style="blue")

    for board in boards:
        table.add_row(
            board["name"],
            board["mcu"],
            str(board["serial_number"]),
            board["mode"],
            board["port"] or "-",
        )

    console.print(table)


@app.command()
def families() -> None:
    """List supported board families and their upload parameters."""
    print_header("Supported Board Families")

    table = Table(title="Board Families")
    table.add_column("Family", style="cyan")
    table.add_column("MCU", style="magenta")
    table.add_column("Flash", style="green")
    table.add_column("Block", style="yellow")
    table.add_column("Header", style="blue")
    table.add_column("Address", style="red")

    for profile in list_profiles():
        encoding = profile.address_encoding
        address = f"{encoding.width} bytes"
        if encoding.shift:
            address += f" >> {encoding.shift}"
        table.add_row(
            profile.name,
            profile.mcu,
            f"{profile.flash_size:,}",
            str(profile.block_size),
            str(profile.data_offset),
            address,
        )

    console.print(table)


@app.command()
def check(
    hex_file: str = typer.Argument(..., help="Intel HEX firmware file"),
    family: str = typer.Option(..., "--family", "-f", help="Board family (e.g., 3.2, LC, 4.0)"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Decode a firmware file for a board family without uploading it."""
    try:
        board_family = _parse_family_core(family)
    except ValueError as e:
        print_error(str(e))
        sys.exit(1)

    result = core_check_firmware(hex_file, board_family)
    if output_json:
        console.print_json(json.dumps(result.to_dict()))
        if not result.ok:
            sys.exit(1)
        return

    print_header(f"Check Firmware: {hex_file}")
    if not result.ok:
        print_result(result)
        sys.exit(1)

    table = Table(title="Firmware Image")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Board", result.board)
    table.add_row("Flash Size", f"{result.metadata['flash_size']:,} bytes")
    table.add_row("Used", f"{result.bytes_len:,} bytes")
    table.add_row("SHA-256", result.hashes["sha256"])
    likely = result.metadata["likely_valid"]
    table.add_row("Built For Board", "Unknown" if likely is None else ("Yes" if likely else "No"))

    console.print(table)
    print_result(result)
    print_success("Firmware image decoded")


@app.command()
def upload(
    hex_file: str = typer.Argument(..., help="Intel HEX firmware file"),
    serial: Optional[str] = typer.Option(None, "--serial", "-s", help="Board serial number (default: first board found)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds to wait for mode changes (minimum 5)"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for the board to restart after upload"),
) -> None:
    """Upload a firmware file to a Teensy board."""
    serial_number = parse_serial(serial)
    print_header(f"Upload Firmware: {hex_file}")

    engine = UploadEngine(wait_for_reboot=not no_wait)

    with open_registry() as registry:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            console=console,
        ) as progress:
            task = progress.add_task("Uploading...", total=None)

            def on_progress(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            result = core_upload_firmware(
                registry,
                hex_file,
                serial_number=serial_number,
                timeout=timeout,
                progress_cb=on_progress,
                engine=engine,
            )

    if result.board:
        console.print(f"Board: {result.board}")
    print_result(result)
    if not result.ok:
        sys.exit(1)
    print_success(f"Uploaded {result.bytes_len:,} bytes")


@app.command()
def reboot(
    serial: Optional[str] = typer.Option(None, "--serial", "-s", help="Board serial number (default: first board found)"),
) -> None:
    """Restart a Teensy board into its firmware."""
    serial_number = parse_serial(serial)
    print_header("Reboot Board")

    with open_registry() as registry:
        result = core_reboot_board(registry, serial_number=serial_number)

    print_result(result)
    if not result.ok:
        sys.exit(1)
    print_success(f"Rebooted {result.board}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
