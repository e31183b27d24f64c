"""
stm32boot - Host Side of the STM32 System Bootloader Protocol
=============================================================

This package drives the ROM bootloader built into STM32 microcontrollers
from a host computer. It can identify the device, read and write flash
and RAM, erase the flash, remove write protection and start code.

Main Components
---------------
- **comms**: Wire protocol, links and the UART/SPI engines
- **firmware**: Intel HEX loading and chunked memory transfers
- **config**: Link configuration with environment overrides
- **cli**: The `stmboot` command-line tool

Quick Start
-----------
    >>> from stm32boot import LinkType, open_connection
    >>> with open_connection(LinkType.SERIAL, "/dev/ttyUSB0", initialize=True) as conn:
    ...     print(conn.get_supported_commands())

Or use the command-line tool:
    $ stmboot --port /dev/ttyUSB0 info
    $ stmboot --port /dev/ttyUSB0 write firmware.hex --erase --go

Reference Documentation
-----------------------
- AN2606: STM32 microcontroller system memory boot mode
- AN3155: USART protocol used in the STM32 bootloader
- AN4286: SPI protocol used in the STM32 bootloader

Version History
---------------
0.1.0 - UART and SPI engines, HEX flashing, stmboot tool
"""

__version__ = "0.1.0"

# =============================================================================
# Public API Exports
# =============================================================================

from stm32boot.errors import (
    BootloaderError,
    CommsError,
    SyncError,
    AlreadySyncedError,
    ProtocolError,
    LinkIOError,
    TimeoutError,
    OperationNotSupportedError,
    CommandFailedError,
    FirmwareError,
)
from stm32boot.comms import (
    BootloaderConnection,
    BootloaderInfo,
    BootloaderOptions,
    ChipId,
    Command,
    LinkType,
    create_connection,
    open_connection,
)
from stm32boot.config import LinkConfig

__all__ = [
    "__version__",
    # Errors
    "BootloaderError",
    "CommsError",
    "SyncError",
    "AlreadySyncedError",
    "ProtocolError",
    "LinkIOError",
    "TimeoutError",
    "OperationNotSupportedError",
    "CommandFailedError",
    "FirmwareError",
    # Sessions
    "BootloaderConnection",
    "BootloaderInfo",
    "BootloaderOptions",
    "ChipId",
    "Command",
    "LinkType",
    "create_connection",
    "open_connection",
    # Configuration
    "LinkConfig",
]
