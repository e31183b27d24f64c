"""
Bootloader Session Factory
==========================

Builds a BootloaderConnection for a chosen transport. Callers pick the
variant once and then work only with the BootloaderConnection interface.

    from stm32boot.comms import LinkType, open_connection

    with open_connection(LinkType.SERIAL, '/dev/ttyUSB0', initialize=True) as conn:
        info = conn.get_supported_commands()
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from stm32boot.comms.link import Link
from stm32boot.comms.loader import BootloaderConnection
from stm32boot.comms.serial import SerialLink
from stm32boot.comms.spi import SpiLink
from stm32boot.comms.spi_loader import SpiBootloader
from stm32boot.comms.uart_loader import UartBootloader
from stm32boot.errors import AlreadySyncedError

if TYPE_CHECKING:
    from stm32boot.config import LinkConfig

# Configure module logger
logger = logging.getLogger(__name__)


class LinkType(str, Enum):
    """Physical transport to the bootloader."""

    SERIAL = "serial"
    SPI = "spi"

    @classmethod
    def parse(cls, value: Union[str, "LinkType"]) -> "LinkType":
        """
        Convert a name ('serial', 'spi', any case) to a LinkType.

        Raises:
            ValueError: If the name is not a known link type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown link type: {value!r} (expected {valid})") from None


def create_connection(link_type: Union[str, LinkType], link: Link) -> BootloaderConnection:
    """
    Build the engine for `link_type` around an already-open link.

    Args:
        link_type: Transport the link speaks.
        link: Open link. The connection takes ownership.

    Returns:
        An unsynchronised BootloaderConnection.

    Raises:
        ValueError: If `link_type` is not a known link type.
        TypeError: If an SPI connection is requested over a link without
                   full-duplex transfer().
    """
    link_type = LinkType.parse(link_type)
    if link_type is LinkType.SPI:
        return SpiBootloader(link)
    return UartBootloader(link)


def open_connection(
    link_type: Union[str, LinkType],
    device: str,
    config: Optional["LinkConfig"] = None,
    initialize: bool = False,
) -> BootloaderConnection:
    """
    Open the link for `device` and build its engine.

    Args:
        link_type: Transport to use.
        device: Serial port path or spidev name.
        config: Physical link parameters (defaults when None).
        initialize: If True, synchronise before returning. A device that
                    reports it is already synchronised is accepted.

    Returns:
        A BootloaderConnection owning the opened link.

    Raises:
        LinkIOError: If the device cannot be opened.
        ValueError: If a link parameter is invalid.
        SyncError, TimeoutError: If initialize is True and sync fails.
    """
    from stm32boot.config import LinkConfig

    config = config or LinkConfig()
    link_type = LinkType.parse(link_type)

    if link_type is LinkType.SPI:
        link: Link = SpiLink.open(device, speed_hz=config.spi_speed_hz)
    else:
        link = SerialLink.open(
            device, baud_rate=config.baud_rate, timeout=config.read_timeout
        )

    connection = create_connection(link_type, link)
    if initialize:
        try:
            connection.initialize()
        except AlreadySyncedError:
            logger.warning("Bootloader was already synchronised")
        except Exception:
            connection.close()
            raise

    return connection
