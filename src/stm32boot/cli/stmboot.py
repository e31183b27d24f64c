"""
stmboot - STM32 System Bootloader Command-Line Interface
========================================================

This module implements the command-line interface for talking to the
ROM bootloader of STM32 microcontrollers over UART or SPI.

Every command that talks to a device first synchronises with the
bootloader (an already-synchronised device is accepted) and queries the
supported command list.

Usage Examples
--------------
List available serial ports and SPI devices:
    $ stmboot ports

Show bootloader information:
    $ stmboot --port /dev/ttyUSB0 info

Flash an Intel HEX image, erasing first and starting it afterwards:
    $ stmboot --port /dev/ttyUSB0 write firmware.hex --erase --go

Dump 1 KiB of flash to a file:
    $ stmboot --port /dev/ttyUSB0 read 0x08000000 1024 -o dump.bin

Remove write protection over SPI:
    $ stmboot --type spi --port spidev0.0 unprotect

Hardware Setup
--------------
Before using stmboot, ensure:
1. The device is in system memory boot mode (BOOT0 high, then reset)
2. The port has proper permissions (dialout/spi group on Linux)

Settings can also come from the environment (STM32BOOT_LINK,
STM32BOOT_PORT, STM32BOOT_BAUD, STM32BOOT_TIMEOUT, STM32BOOT_SPI_SPEED);
command-line options take precedence.

Exit Codes
----------
0 - Success
1 - Communication or device error
2 - Invalid arguments or unreadable file
3 - Unexpected internal error
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from stm32boot import __version__
from stm32boot.cli.errors import handle_cli_exception
from stm32boot.comms import (
    ALREADY_CONFIGURED,
    VALID_BAUD_RATES,
    BootloaderConnection,
    BootloaderInfo,
    LinkType,
    find_serial_port,
    format_port_list,
    list_serial_ports,
    list_spi_devices,
    open_connection,
)
from stm32boot.config import LINK_TYPES, LinkConfig
from stm32boot.errors import CommandFailedError, OperationNotSupportedError
from stm32boot.firmware import load_hex, read_range, write_image

# Configure logging
logger = logging.getLogger(__name__)

# Default read size when SIZE is omitted
DEFAULT_READ_SIZE = 16


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the link configuration and verbosity.
    """

    def __init__(self) -> None:
        self.config: LinkConfig = LinkConfig()
        self.verbose: bool = False

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def resolve_port(self) -> str:
        """
        Return the configured port, auto-detecting a serial port if unset.

        Raises:
            click.BadParameter: If no port is configured or detected.
        """
        if self.config.port:
            return self.config.port
        if self.config.link_type == LinkType.SERIAL.value:
            detected = find_serial_port()
            if detected:
                return detected
        raise click.BadParameter(
            "No port specified and auto-detect failed. "
            "Use 'stmboot ports' to find available ports.",
            param_hint="--port",
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


@contextmanager
def bootloader_session(ctx: Context) -> Iterator[tuple[BootloaderConnection, BootloaderInfo]]:
    """
    Open, synchronise and identify a bootloader; close it on exit.

    Yields:
        (connection, supported command info)
    """
    port = ctx.resolve_port()
    click.echo(f"Connecting to bootloader on {port} ({ctx.config.link_type})...")

    connection = open_connection(
        ctx.config.link_type, port, config=ctx.config, initialize=True
    )
    try:
        click.echo("Retrieving supported commands")
        info = connection.get_supported_commands()
        yield connection, info
    finally:
        connection.close()


def parse_hex_address(ctx, param, value: Optional[str]) -> Optional[int]:
    """Click callback: parse a hexadecimal address with optional 0x prefix."""
    if value is None:
        return None
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    try:
        address = int(text, 16)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not a hexadecimal address") from None
    if not 0 <= address <= 0xFFFFFFFF:
        raise click.BadParameter(f"{value!r} is outside the 32-bit address space")
    return address


def parse_size(ctx, param, value: Optional[str]) -> Optional[int]:
    """Click callback: parse a byte count (decimal, or hex with 0x)."""
    if value is None:
        return None
    try:
        size = int(value, 0)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not a number") from None
    if size <= 0:
        raise click.BadParameter("size must be positive")
    return size


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for memory transfers."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def format_hex_dump(data: bytes, address: int) -> str:
    """Format bytes as 'AAAAAAAA: XX XX ...' lines of 16 bytes."""
    lines = []
    for offset in range(0, len(data), 16):
        chunk = data[offset:offset + 16]
        hex_part = " ".join(f"{b:02X}" for b in chunk)
        lines.append(f"{address + offset:08X}: {hex_part}")
    return "\n".join(lines)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-t", "--type", "link_type",
    type=click.Choice(LINK_TYPES, case_sensitive=False),
    default=None,
    help="Bootloader interface (default: serial)",
)
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port or spidev device (serial auto-detect if not specified)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Serial baud rate (default: 9600)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Serial per-read timeout in seconds (default: 0.1)",
)
@click.option(
    "--spi-speed",
    type=int,
    default=None,
    help="SPI clock in Hz (default and maximum: 20000)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output (logs every frame)",
)
@click.version_option(version=__version__, prog_name="stmboot")
@pass_context
def main(
    ctx: Context,
    link_type: Optional[str],
    port: Optional[str],
    baud: Optional[str],
    timeout: Optional[float],
    spi_speed: Optional[int],
    verbose: bool,
) -> None:
    """
    Talk to the STM32 system bootloader over UART or SPI.

    Put the device in bootloader mode (BOOT0 high, reset) before running
    a command. Use 'stmboot ports' to list available ports.
    """
    ctx.verbose = verbose
    ctx.setup_logging()

    config = LinkConfig.from_env()
    if link_type is not None:
        config.link_type = link_type.lower()
    if port is not None:
        config.port = port
    if baud is not None:
        config.baud_rate = int(baud)
    if timeout is not None:
        config.read_timeout = timeout
    if spi_speed is not None:
        config.spi_speed_hz = spi_speed

    try:
        config.validate()
    except ValueError as e:
        handle_cli_exception(e, verbose=verbose)
    ctx.config = config


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports and SPI devices.

    Example:
        stmboot ports
        stmboot ports --detailed
    """
    port_list = list_serial_ports()
    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    click.echo("\nAvailable SPI devices:")
    spi_devices = list_spi_devices()
    if spi_devices:
        for name in spi_devices:
            click.echo(f"  {name}")
    else:
        click.echo("No SPI devices found.")


# =============================================================================
# Info Command
# =============================================================================

@main.command()
@pass_context
def info(ctx: Context) -> None:
    """
    Show bootloader version and supported commands.

    Option bytes and chip ID are shown when the transport supports them.

    Example:
        stmboot --port /dev/ttyUSB0 info
    """
    try:
        with bootloader_session(ctx) as (connection, commands):
            click.echo(f"Bootloader version: {commands.version_string}")
            click.echo("Supported commands:")
            for command in commands.commands:
                click.echo(f"  {command}")

            try:
                options = connection.get_protocol_version()
                click.echo(f"Option bytes: 0x{options.option_bytes:04X}")
                chip_id = connection.get_chip_id()
                click.echo(f"Chip ID: {chip_id}")
            except OperationNotSupportedError as e:
                logger.debug("Skipping identity query: %s", e)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


# =============================================================================
# Read Command
# =============================================================================

@main.command()
@click.argument("address", callback=parse_hex_address)
@click.argument("size", required=False, default=str(DEFAULT_READ_SIZE), callback=parse_size)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Save to file instead of printing a hex dump",
)
@pass_context
def read(ctx: Context, address: int, size: int, output: Optional[str]) -> None:
    """
    Read memory.

    ADDRESS is hexadecimal (0x prefix optional). SIZE is a byte count
    (default 16); reads above 256 bytes are split automatically.

    Example:
        stmboot read 0x08001000
        stmboot read 08000000 1024 -o dump.bin
    """
    try:
        with bootloader_session(ctx) as (connection, _):
            click.echo(f"Reading {size} bytes at 0x{address:08X}")
            show_progress = output is not None and size > 256
            data = read_range(
                connection, address, size,
                progress=progress_bar if show_progress else None,
            )

        if output:
            Path(output).write_bytes(data)
            click.echo(f"Saved {len(data)} bytes to {output}")
        else:
            click.echo(format_hex_dump(data, address))

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Read")


# =============================================================================
# Write Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--erase",
    is_flag=True,
    help="Perform a full erase before writing",
)
@click.option(
    "--go", "go_after",
    is_flag=True,
    help="Jump to the image's start address after writing",
)
@pass_context
def write(ctx: Context, file: str, erase: bool, go_after: bool) -> None:
    """
    Write an Intel HEX image.

    FILE is the .hex file to write. Its data records are written at the
    addresses they specify.

    Example:
        stmboot write firmware.hex
        stmboot write firmware.hex --erase --go
    """
    try:
        image = load_hex(file)
        click.echo(f"Image: {image}")

        with bootloader_session(ctx) as (connection, _):
            if erase:
                click.echo("Erasing flash (this may take several seconds)...")
                connection.erase_all()

            click.echo(f"Writing {file}")
            write_image(connection, image, progress=progress_bar)

            if go_after:
                if image.entry_address is None:
                    click.echo("Image has no start address, not jumping")
                else:
                    click.echo(f"Starting code at 0x{image.entry_address:08X}")
                    connection.go(image.entry_address)

        click.echo("Write complete!")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Write")


# =============================================================================
# Unprotect Command
# =============================================================================

@main.command()
@pass_context
def unprotect(ctx: Context) -> None:
    """
    Remove flash write protection.

    The device resets afterwards. A device that reports it is already
    configured (0xA5) is accepted.

    Example:
        stmboot --type spi --port spidev0.0 unprotect
    """
    try:
        with bootloader_session(ctx) as (connection, _):
            click.echo("Removing write protection")
            try:
                connection.write_unprotect()
            except CommandFailedError as e:
                if e.status != ALREADY_CONFIGURED:
                    raise
                logger.info("Device reported already configured")
        click.echo("Write protection removed")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Unprotect")


# =============================================================================
# Erase Command
# =============================================================================

@main.command("erase-all")
@pass_context
def erase_all(ctx: Context) -> None:
    """
    Erase the whole flash.

    Example:
        stmboot --port /dev/ttyUSB0 erase-all
    """
    try:
        with bootloader_session(ctx) as (connection, _):
            click.echo("Erasing flash (this may take several seconds)...")
            connection.erase_all()
        click.echo("Erase complete")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Erase")


# =============================================================================
# Go Command
# =============================================================================

@main.command()
@click.argument("address", callback=parse_hex_address)
@pass_context
def go(ctx: Context, address: int) -> None:
    """
    Jump to code at ADDRESS (hexadecimal, 0x prefix optional).

    Example:
        stmboot go 0x08000000
    """
    try:
        with bootloader_session(ctx) as (connection, _):
            click.echo(f"Starting code at 0x{address:08X}")
            connection.go(address)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Go")


if __name__ == "__main__":
    main()
