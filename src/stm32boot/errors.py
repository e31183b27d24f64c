"""
stm32boot Error Hierarchy
=========================

This module defines the exception hierarchy for the whole package.
All exceptions inherit from BootloaderError, allowing callers to catch
every bootloader-related error with a single except clause if desired.

Exception Hierarchy
-------------------
BootloaderError (base)
└── CommsError (link and protocol failures)
    ├── SyncError - device did not answer the sync handshake
    ├── AlreadySyncedError - device was already in bootloader mode
    ├── ProtocolError - response violated framing/length/ACK rules
    ├── LinkIOError - transport read/write failed (not a timeout)
    ├── TimeoutError - bounded wait elapsed without (enough) response
    ├── OperationNotSupportedError - command unsupported on this transport
    └── CommandFailedError - device answered with a non-ACK status byte
└── FirmwareError (image file could not be loaded)

Recovery Policy
---------------
- SyncError: fatal to the session, check the physical connection
- AlreadySyncedError: not a failure, callers normally proceed
- ProtocolError, LinkIOError: fatal to the current operation
- TimeoutError: retried internally only by the documented poll loops
- CommandFailedError: the raw status byte is kept in `.status` so the
  caller can decide whether it is tolerable (e.g. 0xA5)
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class BootloaderError(Exception):
    """
    Base exception for all stm32boot errors.

    All exceptions in the package inherit from this class, allowing callers
    to catch every bootloader-related error with a single except clause:

        try:
            connection.erase_all()
        except BootloaderError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(BootloaderError):
    """Base exception for link and protocol errors."""
    pass


class SyncError(CommsError):
    """
    The device did not respond to the sync handshake.

    Raised when:
    - No bootloader is listening on the link
    - The device answered the handshake with an unexpected byte
    """

    def __init__(self, message: str = "", response: Optional[int] = None):
        self.response = response
        if not message:
            message = "Failed to sync connection, no bootloader detected"
            if response is not None:
                message += f" (got {response:02X})"
        super().__init__(message)


class AlreadySyncedError(CommsError):
    """
    The device signalled that it is already in bootloader mode.

    This is not a failure: the session is usable and callers normally
    proceed. It is raised so the condition stays visible to callers
    that care about it.
    """

    def __init__(self, message: str = "Connection already synced, bootloader ready"):
        super().__init__(message)


class ProtocolError(CommsError):
    """
    Bootloader protocol error.

    Raised when the device sends a response that violates the expected
    framing, length or trailing ACK, or when a request is rejected
    before any I/O because it cannot be encoded (e.g. empty write).
    """
    pass


class LinkIOError(CommsError):
    """
    The underlying transport failed for a reason other than a timeout.

    The driver exception (serial.SerialException, OSError, ...) is
    chained as __cause__.
    """
    pass


class TimeoutError(CommsError):
    """
    Communication timeout error.

    Raised when a bounded wait elapses with no (or insufficient) response
    from the device. This could indicate:
    - Device not in bootloader mode (BOOT0 pin not set)
    - Cable disconnected or TX/RX swapped
    - A long operation (mass erase) exceeding its polling budget

    Note:
        This is a package-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling.
    """
    pass


class OperationNotSupportedError(CommsError):
    """
    The requested operation is not available on the active transport.

    Attributes:
        operation: Name of the operation that was requested
        transport: Name of the transport that rejected it
    """

    def __init__(self, operation: str, transport: str, message: str = ""):
        self.operation = operation
        self.transport = transport
        if not message:
            message = f"{operation} is not implemented for the {transport} transport"
        super().__init__(message)


class CommandFailedError(CommsError):
    """
    The device replied with an explicit non-ACK status byte.

    The raw status byte is preserved so that callers can apply their
    own policy, e.g. tolerating 0xA5 after a write-unprotect.

    Common status bytes:
    - 0x1F: NAK (command rejected)
    - 0xA5: already configured / still resetting
    - 0xFF: busy
    """

    def __init__(self, status: int, message: str = ""):
        self.status = status
        if not message:
            message = self._default_message(status)
        super().__init__(message)

    @staticmethod
    def _default_message(status: int) -> str:
        """Get default message for a status byte."""
        descriptions = {
            0x1F: "NAK",
            0xA5: "already configured",
            0xFF: "busy",
        }
        description = descriptions.get(status)
        if description:
            return f"Command failed: {status:02X} ({description})"
        return f"Command failed: {status:02X}"


# =============================================================================
# Firmware Image Exceptions
# =============================================================================

class FirmwareError(BootloaderError):
    """
    Firmware image could not be loaded.

    Raised for malformed Intel HEX files and images that do not fit the
    32-bit address space.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)
