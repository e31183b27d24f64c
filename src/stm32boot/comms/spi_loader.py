"""
SPI Bootloader Engine
=====================

This module implements the bootloader command set over the SPI
interface (application note AN4286).

Protocol Overview
-----------------
SPI is full duplex and the device cannot initiate a transfer, so every
answer is collected by clocking out filler bytes:

    Sync:     [5A, 00, 00, 79]          answer in rx[2]
    Command:  [5A, op, ~op, 00, 00, 79] ACK in rx[4]
    Ack:      [00, 00, 79]              status in rx[1]

Payload frames (address, size, data) are sent with a plain write and
confirmed with an Ack transfer. Data frames of odd length are padded with
0xFF so the device always receives an even number of bytes.

Every read response starts with one dummy byte which is discarded.

Supported Commands
------------------
- Get (0x00)
- Read Memory (0x11), Write Memory (0x31), Go (0x21)
- Extended Erase (0x44) with the global erase sentinel
- Write Unprotect (0x73)

Get Version and Get ID are not available over this transport.
"""

import logging
from typing import Final, Optional

from stm32boot.comms.link import PollAction, poll_status
from stm32boot.comms.loader import BootloaderConnection
from stm32boot.comms.models import BootloaderInfo, BootloaderOptions, ChipId
from stm32boot.comms.spi import SpiLink
from stm32boot.comms.wire import (
    ACK,
    ALREADY_CONFIGURED,
    BUSY,
    ERASE_ALL_FRAME,
    SPI_ACK_FRAME,
    SPI_SYNC_FRAME,
    Command,
    address_frame,
    data_frame,
    decode_command,
    size_frame,
    spi_command_frame,
    validate_address,
    validate_size,
)
from stm32boot.errors import (
    AlreadySyncedError,
    CommandFailedError,
    ProtocolError,
    SyncError,
    TimeoutError,
)

# Configure module logger
logger = logging.getLogger(__name__)


class SpiBootloader(BootloaderConnection):
    """
    Bootloader engine for the SPI transport.

    The link must support full-duplex `transfer()` (see SpiLink).

    Usage:
        link = SpiLink.open('spidev0.0')
        with SpiBootloader(link) as loader:
            loader.initialize()
            loader.write_unprotect()
    """

    transport = "spi"

    # Write unprotect, phase 1: the device is busy resetting protection
    UNPROTECT_RESET_ATTEMPTS: Final[int] = 10
    UNPROTECT_RESET_DELAY: Final[float] = 0.1

    # Write unprotect, phase 2: the device reboots and settles
    UNPROTECT_SETTLE_ATTEMPTS: Final[int] = 20
    UNPROTECT_SETTLE_DELAY: Final[float] = 1.0

    # Mass erase can take several seconds
    ERASE_ATTEMPTS: Final[int] = 20
    ERASE_POLL_DELAY: Final[float] = 1.0

    def __init__(self, link: SpiLink):
        if not callable(getattr(link, "transfer", None)):
            raise TypeError(
                f"SPI bootloader needs a full-duplex link with transfer(), "
                f"got {type(link).__name__}"
            )
        super().__init__(link)
        self._link: SpiLink = link

    # -------------------------------------------------------------------------
    # Session Setup
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Perform the one-shot sync transfer.

        Raises:
            AlreadySyncedError: If the device reports it is already
                                synchronised. The connection is marked
                                synced and remains usable.
            SyncError: If the answer is neither ACK nor 0xA5.
        """
        received = self._link.transfer(SPI_SYNC_FRAME)
        status = received[2]

        if status == ALREADY_CONFIGURED:
            self._synced = True
            logger.info("Bootloader already synchronised over %s", self.transport)
            raise AlreadySyncedError()

        if status != ACK:
            raise SyncError(
                f"Unexpected sync response {status:02X}", response=status
            )

        self._synced = True
        logger.info("Bootloader synchronised over %s", self.transport)

    # -------------------------------------------------------------------------
    # Identity Queries
    # -------------------------------------------------------------------------

    def get_protocol_version(self) -> BootloaderOptions:
        """Not available over SPI."""
        raise self._unsupported("get-protocol-version")

    def get_supported_commands(self) -> BootloaderInfo:
        """
        Get: a variable block [version, opcodes...] then an Ack transfer.
        """
        self._send_command(Command.GET)

        block = self._read_variable_block()
        self._ack_frame()

        info = BootloaderInfo(
            version=block[0],
            commands=tuple(decode_command(b) for b in block[1:]),
        )
        logger.debug("Supported commands: %s", info)
        return info

    def get_chip_id(self) -> ChipId:
        """Not available over SPI."""
        raise self._unsupported("get-chip-id")

    # -------------------------------------------------------------------------
    # Memory Access
    # -------------------------------------------------------------------------

    def read_memory(self, address: int, size: int) -> bytes:
        validate_address(address)
        validate_size(size, what="Read")

        self._send_command(Command.READ_MEMORY)

        self._link.send(address_frame(address))
        self._ack_frame()

        self._link.send(size_frame(size))
        self._ack_frame()

        data = self._read_block(size)
        logger.debug("Read %d bytes at 0x%08X", size, address)
        return data

    def write_memory(self, address: int, data: bytes) -> None:
        data = bytes(data)
        validate_size(len(data), what="Write")
        validate_address(address)

        self._send_command(Command.WRITE_MEMORY)

        self._link.send(address_frame(address))
        self._ack_frame()

        self._link.send(data_frame(data, pad_to_even=True))
        self._ack_frame()
        logger.debug("Wrote %d bytes at 0x%08X", len(data), address)

    def erase_all(self) -> None:
        """
        Mass erase via Extended Erase with the global erase sentinel.

        Raises:
            CommandFailedError: If the device answers with an unexpected status.
            TimeoutError: If the device is still busy after ERASE_ATTEMPTS polls.
        """
        self._send_command(Command.EXTENDED_ERASE)
        self._link.send(ERASE_ALL_FRAME)
        logger.info("Mass erase started")

        def classify(status: Optional[int]) -> PollAction:
            if status == ACK:
                return PollAction.SUCCESS
            if status in (BUSY, ALREADY_CONFIGURED):
                return PollAction.RETRY
            return PollAction.FAIL

        status = poll_status(
            self._ack_status, classify,
            self.ERASE_ATTEMPTS, self.ERASE_POLL_DELAY, "mass erase",
        )
        if status is None:
            raise TimeoutError(
                f"Mass erase not acknowledged after {self.ERASE_ATTEMPTS} polls"
            )
        logger.info("Mass erase complete")

    def write_unprotect(self) -> None:
        """
        Remove write protection.

        The device first reports busy (0xFF) while it clears protection,
        then resets and may report busy or already-configured (0xA5)
        until it is back. Polling happens in two phases; the second only
        runs if the first never saw an ACK.

        Raises:
            CommandFailedError: If an unexpected status is observed.
            TimeoutError: If neither phase sees an ACK.
        """
        self._send_command(Command.WRITE_UNPROTECT)

        def classify_reset(status: Optional[int]) -> PollAction:
            if status == ACK:
                return PollAction.SUCCESS
            if status == BUSY:
                return PollAction.RETRY
            return PollAction.FAIL

        def classify_settle(status: Optional[int]) -> PollAction:
            if status == ACK:
                return PollAction.SUCCESS
            if status in (BUSY, ALREADY_CONFIGURED):
                return PollAction.RETRY
            return PollAction.FAIL

        status = poll_status(
            self._ack_status, classify_reset,
            self.UNPROTECT_RESET_ATTEMPTS, self.UNPROTECT_RESET_DELAY,
            "write unprotect",
        )
        if status is None:
            logger.info("Waiting for device to restart after write unprotect")
            status = poll_status(
                self._ack_status, classify_settle,
                self.UNPROTECT_SETTLE_ATTEMPTS, self.UNPROTECT_SETTLE_DELAY,
                "restart after write unprotect",
            )
        if status is None:
            raise TimeoutError("Device did not acknowledge write unprotect")
        logger.info("Write protection removed")

    def go(self, address: int) -> None:
        validate_address(address)

        self._send_command(Command.GO)

        self._link.send(address_frame(address))
        self._ack_frame()
        logger.info("Jumped to 0x%08X", address)

    # -------------------------------------------------------------------------
    # Framing Helpers
    # -------------------------------------------------------------------------

    def _send_command(self, command: Command) -> None:
        """
        Send the command transfer and check the ACK in rx[4].

        Raises:
            ProtocolError: If the command is not acknowledged.
        """
        self._require_synced()
        logger.debug("Command %s", command)
        received = self._link.transfer(spi_command_frame(command))
        if received[4] != ACK:
            raise ProtocolError(
                f"Command {command} not acknowledged (got {received[4]:02X})"
            )

    def _ack_status(self) -> int:
        """Run one Ack transfer and return the status byte."""
        return self._link.transfer(SPI_ACK_FRAME)[1]

    def _ack_frame(self) -> None:
        """
        Run one Ack transfer and require ACK.

        Raises:
            CommandFailedError: If the status is not ACK.
        """
        status = self._ack_status()
        if status != ACK:
            raise CommandFailedError(status)

    def _read_variable_block(self) -> bytes:
        """Read [dummy, N] then N + 1 bytes."""
        header = self._link.receive_exact(2)
        return self._link.receive_exact(header[1] + 1)

    def _read_block(self, size: int) -> bytes:
        """Read `size` bytes, discarding the leading dummy byte."""
        return self._link.receive_exact(size + 1)[1:]
