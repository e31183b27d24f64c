"""
UART Bootloader Engine
======================

This module implements the bootloader command set over the USART
interface (application note AN3155).

Protocol Overview
-----------------
After the sync byte (0x7F) has been answered, every command is a
request/response cycle:

    Host                             Device
    ----                             ------
    [opcode, ~opcode]        -->
                             <--     ACK (0x79) or NAK (0x1F)
    [payload frame]          -->                      (command specific)
                             <--     ACK
                             <--     [response bytes] (command specific)

Any status other than ACK is surfaced as CommandFailedError with the raw
byte. I/O failures are never retried except inside the two documented
polling loops (sync and mass erase).

Supported Commands
------------------
- Get (0x00), Get Version (0x01), Get ID (0x02)
- Read Memory (0x11), Write Memory (0x31), Go (0x21)
- Extended Erase (0x44) with the global erase sentinel

Write Unprotect is not available over this transport.
"""

import logging
from typing import Final, Optional

from stm32boot.comms.link import PollAction, poll_status
from stm32boot.comms.loader import BootloaderConnection
from stm32boot.comms.models import BootloaderInfo, BootloaderOptions, ChipId
from stm32boot.comms.wire import (
    ACK,
    ERASE_ALL_FRAME,
    NAK,
    UART_SYNC_BYTE,
    Command,
    address_frame,
    command_frame,
    data_frame,
    decode_command,
    size_frame,
    validate_address,
    validate_size,
)
from stm32boot.errors import CommandFailedError, ProtocolError, TimeoutError

# Configure module logger
logger = logging.getLogger(__name__)


class UartBootloader(BootloaderConnection):
    """
    Bootloader engine for the UART transport.

    Usage:
        link = SerialLink.open('/dev/ttyUSB0')
        with UartBootloader(link) as loader:
            loader.initialize()
            info = loader.get_supported_commands()
            data = loader.read_memory(0x08000000, 256)
    """

    transport = "serial"

    # Sync handshake: the device may take a while to enter the bootloader
    SYNC_ATTEMPTS: Final[int] = 10
    SYNC_RETRY_DELAY: Final[float] = 0.5

    # Mass erase can take several seconds
    ERASE_ATTEMPTS: Final[int] = 20
    ERASE_POLL_DELAY: Final[float] = 1.0

    # -------------------------------------------------------------------------
    # Session Setup
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Send the sync byte until the bootloader answers.

        ACK and NAK both mean the bootloader is listening: a NAK on the
        sync byte is what an already-synchronised device answers.

        Raises:
            TimeoutError: If no ACK/NAK arrives within SYNC_ATTEMPTS tries.
            LinkIOError: If the link fails.
        """
        if self._synced:
            logger.warning("Already synchronised, sending sync byte again")

        def probe() -> int:
            self._link.send(bytes([UART_SYNC_BYTE]))
            return self._link.receive_exact(1)[0]

        def classify(status: Optional[int]) -> PollAction:
            if status == ACK:
                return PollAction.SUCCESS
            if status == NAK:
                logger.warning("Sync byte answered with NAK, bootloader already active")
                return PollAction.SUCCESS
            return PollAction.RETRY

        status = poll_status(
            probe, classify, self.SYNC_ATTEMPTS, self.SYNC_RETRY_DELAY, "sync"
        )
        if status is None:
            raise TimeoutError(
                f"No bootloader response after {self.SYNC_ATTEMPTS} sync attempts"
            )

        self._synced = True
        logger.info("Bootloader synchronised over %s", self.transport)

    # -------------------------------------------------------------------------
    # Identity Queries
    # -------------------------------------------------------------------------

    def get_protocol_version(self) -> BootloaderOptions:
        """
        Get Version: [version, option1, option2, ACK].

        Raises:
            ProtocolError: If the trailing byte is not ACK.
        """
        self._send_command(Command.GET_VERSION)

        response = self._link.receive_exact(4)
        if response[3] != ACK:
            raise ProtocolError(
                f"Get Version response not terminated by ACK (got {response[3]:02X})"
            )

        options = BootloaderOptions(
            version=response[0],
            option_bytes=(response[1] << 8) | response[2],
        )
        logger.debug("Bootloader options: %s", options)
        return options

    def get_supported_commands(self) -> BootloaderInfo:
        """
        Get: [N, version, N opcodes..., ACK].

        Raises:
            ProtocolError: If the trailing byte is not ACK.
        """
        self._send_command(Command.GET)

        count = self._link.receive_exact(1)[0]
        response = self._link.receive_exact(count + 2)
        if response[-1] != ACK:
            raise ProtocolError(
                f"Get response not terminated by ACK (got {response[-1]:02X})"
            )

        info = BootloaderInfo(
            version=response[0],
            commands=tuple(decode_command(b) for b in response[1:-1]),
        )
        logger.debug("Supported commands: %s", info)
        return info

    def get_chip_id(self) -> ChipId:
        """
        Get ID: [N, id_hi, id_lo, ACK] with N == 1.

        Raises:
            ProtocolError: If the response is not exactly two id bytes
                           followed by ACK.
        """
        self._send_command(Command.GET_ID)

        count = self._link.receive_exact(1)[0]
        response = self._link.receive_exact(count + 2)
        if len(response) != 3:
            raise ProtocolError(
                f"Unexpected Get ID response length: {len(response) - 1} id bytes"
            )
        if response[2] != ACK:
            raise ProtocolError(
                f"Get ID response not terminated by ACK (got {response[2]:02X})"
            )

        chip_id = ChipId(int.from_bytes(response[:2], "big"))
        logger.debug("Chip ID: %s", chip_id)
        return chip_id

    # -------------------------------------------------------------------------
    # Memory Access
    # -------------------------------------------------------------------------

    def read_memory(self, address: int, size: int) -> bytes:
        validate_address(address)
        validate_size(size, what="Read")

        self._send_command(Command.READ_MEMORY)

        self._link.send(address_frame(address))
        self._read_ack()

        self._link.send(size_frame(size))
        self._read_ack()

        data = self._link.receive_exact(size)
        logger.debug("Read %d bytes at 0x%08X", size, address)
        return data

    def write_memory(self, address: int, data: bytes) -> None:
        data = bytes(data)
        validate_size(len(data), what="Write")
        validate_address(address)

        self._send_command(Command.WRITE_MEMORY)

        self._link.send(address_frame(address))
        self._read_ack()

        self._link.send(data_frame(data))
        self._read_ack()
        logger.debug("Wrote %d bytes at 0x%08X", len(data), address)

    def erase_all(self) -> None:
        """
        Mass erase via Extended Erase with the global erase sentinel.

        The ACK only arrives once the erase has finished, so read
        timeouts are tolerated for up to ERASE_ATTEMPTS polls.

        Raises:
            CommandFailedError: If the device answers with a non-ACK byte.
            TimeoutError: If no ACK arrives within the polling window.
        """
        self._send_command(Command.EXTENDED_ERASE)
        self._link.send(ERASE_ALL_FRAME)
        logger.info("Mass erase started")

        def classify(status: Optional[int]) -> PollAction:
            if status == ACK:
                return PollAction.SUCCESS
            if status is None:
                return PollAction.RETRY
            return PollAction.FAIL

        status = poll_status(
            self._receive_status, classify,
            self.ERASE_ATTEMPTS, self.ERASE_POLL_DELAY, "mass erase",
        )
        if status is None:
            raise TimeoutError(
                f"Mass erase not acknowledged after {self.ERASE_ATTEMPTS} polls"
            )
        logger.info("Mass erase complete")

    def write_unprotect(self) -> None:
        """Not available over UART."""
        raise self._unsupported("write-unprotect")

    def go(self, address: int) -> None:
        validate_address(address)

        self._send_command(Command.GO)

        self._link.send(address_frame(address))
        self._read_ack()
        logger.info("Jumped to 0x%08X", address)

    # -------------------------------------------------------------------------
    # Framing Helpers
    # -------------------------------------------------------------------------

    def _send_command(self, command: Command) -> None:
        """Send [opcode, ~opcode] and wait for the ACK."""
        self._require_synced()
        logger.debug("Command %s", command)
        self._link.send(command_frame(command))
        self._read_ack()

    def _receive_status(self) -> int:
        """Read one status byte."""
        return self._link.receive_exact(1)[0]

    def _read_ack(self) -> None:
        """
        Read one status byte and require ACK.

        Raises:
            CommandFailedError: If the byte is not ACK.
            TimeoutError: If no byte arrives.
        """
        status = self._receive_status()
        if status != ACK:
            raise CommandFailedError(status)
