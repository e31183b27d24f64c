"""
SPI Link
========

This module provides the SPI link used by the bootloader's SPI
interface, on top of the Linux spidev driver.

SPI Settings
------------
- Mode 0 (CPOL=0, CPHA=0)
- 8 bits per word
- Clock at most 20 kHz (the bootloader samples in software on some parts)

Unlike UART, every SPI exchange is full duplex: the host clocks out a
frame and the device's answer occupies trailing positions of the same
transfer. SpiLink therefore adds `transfer()` to the Link contract.
SPI reads always return the requested number of bytes; they never time
out at the link level.

Device Names
------------
Devices are given as `spidevB.D`, `/dev/spidevB.D` or `B.D` where B is
the bus number and D the chip select.
"""

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Final

from stm32boot.comms.link import Link
from stm32boot.comms.wire import format_bytes
from stm32boot.errors import LinkIOError

if TYPE_CHECKING:
    import spidev

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum clock the bootloader handles reliably
MAX_SPI_SPEED_HZ: Final[int] = 20_000

# Default clock
DEFAULT_SPI_SPEED_HZ: Final[int] = 20_000

# SPI mode 0: CPOL=0, CPHA=0
SPI_MODE: Final[int] = 0

# Word size
BITS_PER_WORD: Final[int] = 8

# Where spidev nodes live
DEV_DIR: Final[Path] = Path("/dev")

_DEVICE_PATTERN = re.compile(r"^(?:/dev/)?(?:spidev)?(\d+)\.(\d+)$")


# =============================================================================
# Device Enumeration
# =============================================================================

def parse_spi_device(name: str) -> tuple[int, int]:
    """
    Split an SPI device name into (bus, chip select).

    Args:
        name: 'spidev0.1', '/dev/spidev0.1' or '0.1'.

    Returns:
        Tuple of (bus, device).

    Raises:
        ValueError: If the name is not a spidev device name.
    """
    match = _DEVICE_PATTERN.match(name.strip())
    if not match:
        raise ValueError(
            f"Invalid SPI device: {name!r} (expected e.g. 'spidev0.0')"
        )
    return int(match.group(1)), int(match.group(2))


def list_spi_devices(dev_dir: Path = DEV_DIR) -> list[str]:
    """
    List spidev device nodes.

    Args:
        dev_dir: Directory to scan (default /dev).

    Returns:
        Sorted device names such as ['spidev0.0', 'spidev0.1'].
    """
    try:
        names = sorted(p.name for p in dev_dir.iterdir() if p.name.startswith("spidev"))
    except OSError as e:
        logger.debug("Cannot scan %s: %s", dev_dir, e)
        return []

    for name in names:
        logger.debug("Found SPI device: %s", name)
    return names


# =============================================================================
# Device Configuration
# =============================================================================

def open_spi_device(name: str, speed_hz: int = DEFAULT_SPI_SPEED_HZ) -> "spidev.SpiDev":
    """
    Open and configure a spidev device for the bootloader.

    Args:
        name: Device name (see parse_spi_device).
        speed_hz: Clock rate, at most MAX_SPI_SPEED_HZ.

    Returns:
        Opened and configured spidev.SpiDev object.

    Raises:
        ValueError: If the name or speed is invalid.
        LinkIOError: If the device cannot be opened or configured.
    """
    import spidev

    if not 0 < speed_hz <= MAX_SPI_SPEED_HZ:
        raise ValueError(
            f"Invalid SPI speed: {speed_hz} Hz (maximum {MAX_SPI_SPEED_HZ} Hz)"
        )

    bus, device = parse_spi_device(name)
    logger.info("Opening SPI device: spidev%d.%d at %d Hz", bus, device, speed_hz)

    spi = spidev.SpiDev()
    try:
        spi.open(bus, device)
        spi.max_speed_hz = speed_hz
        spi.mode = SPI_MODE
        spi.bits_per_word = BITS_PER_WORD
    except OSError as e:
        spi.close()
        if isinstance(e, PermissionError):
            raise LinkIOError(
                f"Permission denied accessing spidev{bus}.{device}. "
                "You may need to add your user to the 'spi' group."
            ) from e
        if isinstance(e, FileNotFoundError):
            raise LinkIOError(
                f"SPI device not found: spidev{bus}.{device}. "
                "Use 'stmboot ports' to list available devices."
            ) from e
        raise LinkIOError(f"Cannot open spidev{bus}.{device}: {e}") from e

    return spi


# =============================================================================
# SPI Link
# =============================================================================

class SpiLink(Link):
    """
    Link over a spidev device.

    The link takes ownership of the device and closes it on close().
    """

    transport = "spi"

    def __init__(self, spi: "spidev.SpiDev"):
        """
        Args:
            spi: Opened and configured spidev device.
        """
        self.spi = spi

    @classmethod
    def open(cls, name: str, speed_hz: int = DEFAULT_SPI_SPEED_HZ) -> "SpiLink":
        """Open the named spidev device with bootloader settings and wrap it."""
        return cls(open_spi_device(name, speed_hz=speed_hz))

    def transfer(self, data: bytes) -> bytes:
        """
        Clock `data` out while clocking the same number of bytes in.

        Returns:
            The bytes received during the transfer.

        Raises:
            LinkIOError: If the transfer fails.
        """
        logger.debug("Out: %s", format_bytes(data))
        try:
            received = bytes(self.spi.xfer2(list(data)))
        except OSError as e:
            raise LinkIOError(f"SPI transfer failed: {e}") from e
        logger.debug("In : %s", format_bytes(received))
        return received

    def _write(self, data: bytes) -> None:
        try:
            self.spi.writebytes2(data)
        except OSError as e:
            raise LinkIOError(f"SPI write failed: {e}") from e

    def _read(self, max_bytes: int) -> bytes:
        try:
            return bytes(self.spi.readbytes(max_bytes))
        except OSError as e:
            raise LinkIOError(f"SPI read failed: {e}") from e

    def close(self) -> None:
        """Close the spidev device, logging and ignoring errors."""
        try:
            self.spi.close()
            logger.debug("SPI device closed")
        except OSError as e:
            logger.warning("Error closing SPI device: %s", e)
