"""
Bootloader Connection Contract
==============================

This module defines BootloaderConnection, the single interface that both
protocol engines implement. All calling code is written once against it;
the concrete engine (UART or SPI) is chosen when the connection is built.

Lifecycle
---------
1. Build the connection around a Link (see stm32boot.comms.connection)
2. Call `initialize()` once; it synchronises with the device
3. Issue any sequence of commands
4. Call `close()` (or leave the `with` block) to release the link

Operations complete strictly in the order issued; there is no pipelining.
The connection owns its link exclusively and is NOT thread-safe.
"""

from abc import ABC, abstractmethod

from stm32boot.comms.link import Link
from stm32boot.comms.models import BootloaderInfo, BootloaderOptions, ChipId
from stm32boot.errors import CommsError, OperationNotSupportedError


class BootloaderConnection(ABC):
    """
    A session with a device's system bootloader over one link.

    Errors raised by the engines are those of stm32boot.errors and reach
    the caller unchanged.
    """

    #: Name of the transport the engine speaks
    transport: str = ""

    def __init__(self, link: Link):
        """
        Args:
            link: Link to the device. The connection takes ownership.
        """
        self._link = link
        self._synced = False

    @property
    def link(self) -> Link:
        """The link this connection owns."""
        return self._link

    @property
    def synced(self) -> bool:
        """Return True once the sync handshake has completed."""
        return self._synced

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    @abstractmethod
    def initialize(self) -> None:
        """
        Synchronise with the bootloader.

        Raises:
            SyncError: If the device answered the handshake incorrectly.
            AlreadySyncedError: If the device was already synchronised
                                (the connection is usable regardless).
            TimeoutError: If the device never answered.
        """

    @abstractmethod
    def get_protocol_version(self) -> BootloaderOptions:
        """Return the protocol version and option bytes."""

    @abstractmethod
    def get_supported_commands(self) -> BootloaderInfo:
        """Return the protocol version and the commands the device supports."""

    @abstractmethod
    def get_chip_id(self) -> ChipId:
        """Return the device's product identifier."""

    @abstractmethod
    def write_unprotect(self) -> None:
        """Remove flash write protection (the device resets afterwards)."""

    @abstractmethod
    def read_memory(self, address: int, size: int) -> bytes:
        """
        Read 1-256 bytes starting at `address`.

        Raises:
            ProtocolError: If size or address cannot be encoded (no I/O).
            CommandFailedError: If the device rejects a frame.
        """

    @abstractmethod
    def write_memory(self, address: int, data: bytes) -> None:
        """
        Write 1-256 bytes starting at `address`.

        Raises:
            ProtocolError: If data is empty or longer than 256 bytes (no I/O).
            CommandFailedError: If the device rejects a frame.
        """

    @abstractmethod
    def erase_all(self) -> None:
        """Erase the whole flash (may take several seconds)."""

    @abstractmethod
    def go(self, address: int) -> None:
        """Jump to the code at `address`."""

    # -------------------------------------------------------------------------
    # Resource Management
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the link."""
        self._synced = False
        self._link.close()

    def __enter__(self) -> "BootloaderConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "synced" if self._synced else "unsynced"
        return f"{type(self).__name__}(transport={self.transport}, {state})"

    # -------------------------------------------------------------------------
    # Helpers for Engines
    # -------------------------------------------------------------------------

    def _require_synced(self) -> None:
        """Raise if initialize() has not completed."""
        if not self._synced:
            raise CommsError("Not synchronised, call initialize() first")

    def _unsupported(self, operation: str) -> OperationNotSupportedError:
        """Build the error for an operation this transport lacks."""
        return OperationNotSupportedError(operation, self.transport)
