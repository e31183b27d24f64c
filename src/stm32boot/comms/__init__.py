"""
STM32 Bootloader Communication Module
=====================================

This module talks to the ROM system bootloader of STM32 microcontrollers
over UART or SPI. Both transports are driven through one session
interface, BootloaderConnection.

Module Structure
----------------
- **wire**: Status bytes, opcodes, checksum and frame builders
- **models**: Result types (BootloaderInfo, BootloaderOptions, ChipId)
- **link**: Link base class, response accumulation, status polling
- **serial**: Serial port link and port enumeration (pyserial)
- **spi**: SPI link and device enumeration (spidev)
- **loader**: The BootloaderConnection interface
- **uart_loader**: UART protocol engine
- **spi_loader**: SPI protocol engine
- **connection**: Transport selection and connection factory

Quick Start
-----------
    from stm32boot.comms import LinkType, open_connection

    with open_connection(LinkType.SERIAL, '/dev/ttyUSB0', initialize=True) as conn:
        info = conn.get_supported_commands()
        print(f"Bootloader {info.version_string}")

        data = conn.read_memory(0x08000000, 256)
        conn.write_memory(0x20000000, b"\\x01\\x02\\x03")

Hardware Requirements
---------------------
The device must be started in system memory boot mode (BOOT0 high on
most parts). For UART, connect a 3.3 V USB-serial adapter to the
bootloader USART (usually USART1 on PA9/PA10). For SPI, the host must be
a Linux machine with spidev enabled.

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `SyncError` / `AlreadySyncedError`: Handshake outcomes
- `CommandFailedError`: The device answered with a non-ACK status
- `ProtocolError`: Malformed response or invalid request
- `TimeoutError`: The device stopped answering
- `LinkIOError`: The underlying port failed
- `OperationNotSupportedError`: The transport lacks the command

These exceptions are defined in `stm32boot.errors`.

Thread Safety
-------------
The communication classes are NOT thread-safe. Use only from a single
thread, or protect all calls with external synchronization.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Wire primitives
from stm32boot.comms.wire import (
    ACK,
    ALREADY_CONFIGURED,
    BUSY,
    MAX_TRANSFER_SIZE,
    NAK,
    AnyCommand,
    Command,
    UnknownCommand,
    checksum,
    decode_command,
)

# Result types
from stm32boot.comms.models import (
    BootloaderInfo,
    BootloaderOptions,
    ChipId,
)

# Links
from stm32boot.comms.link import (
    Link,
    PollAction,
    poll_status,
)
from stm32boot.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    VALID_BAUD_RATES,
    PortInfo,
    SerialLink,
    find_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from stm32boot.comms.spi import (
    DEFAULT_SPI_SPEED_HZ,
    MAX_SPI_SPEED_HZ,
    SpiLink,
    list_spi_devices,
    open_spi_device,
    parse_spi_device,
)

# Engines and factory
from stm32boot.comms.loader import BootloaderConnection
from stm32boot.comms.uart_loader import UartBootloader
from stm32boot.comms.spi_loader import SpiBootloader
from stm32boot.comms.connection import (
    LinkType,
    create_connection,
    open_connection,
)

# Public API - what gets exported with "from stm32boot.comms import *"
__all__ = [
    # Wire
    "ACK",
    "NAK",
    "BUSY",
    "ALREADY_CONFIGURED",
    "MAX_TRANSFER_SIZE",
    "Command",
    "UnknownCommand",
    "AnyCommand",
    "checksum",
    "decode_command",
    # Models
    "BootloaderInfo",
    "BootloaderOptions",
    "ChipId",
    # Links
    "Link",
    "PollAction",
    "poll_status",
    # Serial
    "VALID_BAUD_RATES",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_TIMEOUT",
    "PortInfo",
    "SerialLink",
    "list_serial_ports",
    "find_serial_port",
    "format_port_list",
    "open_serial_port",
    # SPI
    "MAX_SPI_SPEED_HZ",
    "DEFAULT_SPI_SPEED_HZ",
    "SpiLink",
    "list_spi_devices",
    "open_spi_device",
    "parse_spi_device",
    # Engines
    "BootloaderConnection",
    "UartBootloader",
    "SpiBootloader",
    "LinkType",
    "create_connection",
    "open_connection",
]
