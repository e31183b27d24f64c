"""
Bootloader Wire Primitives
==========================

This module holds the byte-level building blocks shared by the UART and
SPI engines: status byte constants, the XOR checksum, the command opcode
table and the frame encoders.

Frame Formats
-------------
Every frame that carries a value is followed by a one-byte checksum or a
bitwise complement so the device can validate it:

    Command:   [opcode, opcode ^ 0xFF]
    Address:   [a31..a24, a23..a16, a15..a8, a7..a0, XOR of the 4 bytes]
    Size:      [size - 1, (size - 1) ^ 0xFF]
    Data:      [len - 1, data..., (0xFF pad), XOR of everything before]

The SPI transport wraps commands with a leading sync byte (0x5A) and
clocks out a trailing ACK byte (0x79) so the device's answer lands in
the same full-duplex transfer:

    SPI command:  [0x5A, opcode, opcode ^ 0xFF, 0x00, 0x00, 0x79]
    SPI ack:      [0x00, 0x00, 0x79]

The device never echoes a checksum; whether a frame was accepted is
signalled only by the ACK/NAK status byte.
"""

import operator
from dataclasses import dataclass
from enum import IntEnum
from functools import reduce
from typing import Final, Union

from stm32boot.errors import ProtocolError


# =============================================================================
# Status Bytes
# =============================================================================

# Acknowledge: command or frame accepted
ACK: Final[int] = 0x79

# Negative acknowledge: command or frame rejected
NAK: Final[int] = 0x1F

# Device busy or not yet ready (polled during long operations)
BUSY: Final[int] = 0xFF

# Already configured / still resetting (seen after unprotect and erase)
ALREADY_CONFIGURED: Final[int] = 0xA5

# UART autobaud / sync byte
UART_SYNC_BYTE: Final[int] = 0x7F

# SPI start-of-frame byte
SPI_SYNC_BYTE: Final[int] = 0x5A

# Filler clocked out on SPI while reading
SPI_DUMMY_BYTE: Final[int] = 0x00

# Largest block a single read or write request may carry
MAX_TRANSFER_SIZE: Final[int] = 256

# Highest encodable address
MAX_ADDRESS: Final[int] = 0xFFFFFFFF

# Extended erase payload selecting a global (mass) erase: 0xFFFF + checksum
ERASE_ALL_FRAME: Final[bytes] = bytes([0xFF, 0xFF, 0x00])

# SPI sync transfer; the third received byte carries the answer
SPI_SYNC_FRAME: Final[bytes] = bytes([SPI_SYNC_BYTE, SPI_DUMMY_BYTE, SPI_DUMMY_BYTE, ACK])

# SPI ack transfer; the second received byte carries the status
SPI_ACK_FRAME: Final[bytes] = bytes([SPI_DUMMY_BYTE, SPI_DUMMY_BYTE, ACK])


# =============================================================================
# Commands
# =============================================================================

class Command(IntEnum):
    """
    Bootloader command opcodes.

    Opcodes reported by the device that are not in this table are decoded
    to UnknownCommand so that the raw value survives for diagnostics.
    """

    GET = 0x00
    GET_VERSION = 0x01
    GET_ID = 0x02
    READ_MEMORY = 0x11
    GO = 0x21
    WRITE_MEMORY = 0x31
    ERASE = 0x43
    EXTENDED_ERASE = 0x44
    SPECIAL = 0x50
    EXTENDED_SPECIAL = 0x51
    WRITE_PROTECT = 0x63
    WRITE_UNPROTECT = 0x73
    READOUT_PROTECT = 0x82
    READOUT_UNPROTECT = 0x92
    GET_CHECKSUM = 0xA1

    def __str__(self) -> str:
        return f"{self.name} (0x{self.value:02X})"


@dataclass(frozen=True)
class UnknownCommand:
    """An opcode the device reported that is not a known Command."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= 0xFF:
            raise ValueError(f"Opcode must be 0-255, got {self.value}")

    @property
    def name(self) -> str:
        return f"UNKNOWN_{self.value:02X}"

    def __str__(self) -> str:
        return f"{self.name} (0x{self.value:02X})"


# A decoded opcode: either a known Command or an UnknownCommand
AnyCommand = Union[Command, UnknownCommand]


def decode_command(opcode: int) -> AnyCommand:
    """
    Map an opcode byte to its Command.

    Args:
        opcode: Raw opcode byte (0-255).

    Returns:
        The matching Command, or UnknownCommand preserving the byte.
    """
    try:
        return Command(opcode)
    except ValueError:
        return UnknownCommand(opcode)


# =============================================================================
# Checksum
# =============================================================================

def checksum(data: bytes) -> int:
    """
    Compute the bootloader checksum of a frame's data portion.

    The checksum is the XOR of all bytes:

        checksum(bytes([0x12, 0x34, 0x56])) == 0x12 ^ 0x34 ^ 0x56 == 0x70

    Args:
        data: Bytes to fold.

    Returns:
        XOR of every byte (0 for empty input).
    """
    return reduce(operator.xor, data, 0)


def complement(value: int) -> int:
    """Return the one-byte bitwise complement used by command and size frames."""
    return (value ^ 0xFF) & 0xFF


# =============================================================================
# Frame Encoders
# =============================================================================

def command_frame(opcode: int) -> bytes:
    """Encode the two-byte UART command frame [opcode, ~opcode]."""
    return bytes([opcode, complement(opcode)])


def spi_command_frame(opcode: int) -> bytes:
    """Encode the six-byte SPI command transfer; the ACK lands in byte 5."""
    return bytes([SPI_SYNC_BYTE, opcode, complement(opcode), SPI_DUMMY_BYTE, SPI_DUMMY_BYTE, ACK])


def address_frame(address: int) -> bytes:
    """
    Encode a 32-bit address as 4 big-endian bytes plus XOR checksum.

    Raises:
        ProtocolError: If the address does not fit in 32 bits.
    """
    validate_address(address)
    raw = address.to_bytes(4, "big")
    return raw + bytes([checksum(raw)])


def size_frame(size: int) -> bytes:
    """
    Encode a read size as [size - 1, complement].

    Raises:
        ProtocolError: If size is outside 1-256.
    """
    validate_size(size)
    return bytes([size - 1, complement(size - 1)])


def data_frame(data: bytes, pad_to_even: bool = False) -> bytes:
    """
    Encode a write block as [len - 1, data..., checksum].

    When pad_to_even is set and the payload has an odd length, a 0xFF pad
    byte is appended before the checksum (SPI transfers are handled in
    16-bit units by the device). The pad byte is included in the
    checksum, but not in the length byte.

    Args:
        data: Payload of 1-256 bytes.
        pad_to_even: Add the 0xFF pad for odd payloads.

    Returns:
        Encoded frame; its last byte is the XOR of all preceding bytes.

    Raises:
        ProtocolError: If the payload is empty or longer than 256 bytes.
    """
    validate_size(len(data), what="Write")
    block = bytearray([len(data) - 1])
    block.extend(data)
    if pad_to_even and len(data) % 2 == 1:
        block.append(BUSY)
    block.append(checksum(block))
    return bytes(block)


# =============================================================================
# Validation
# =============================================================================

def validate_size(size: int, what: str = "Transfer") -> None:
    """Reject sizes the single-byte length field cannot encode."""
    if not 1 <= size <= MAX_TRANSFER_SIZE:
        raise ProtocolError(
            f"{what} size must be 1-{MAX_TRANSFER_SIZE} bytes, got {size}"
        )


def validate_address(address: int) -> None:
    """Reject addresses that do not fit in 32 bits."""
    if not 0 <= address <= MAX_ADDRESS:
        raise ProtocolError(f"Address out of range: {address:#x}")


def format_bytes(data: bytes) -> str:
    """Format bytes as space-separated hex for wire logging."""
    return " ".join(f"{b:02X}" for b in data)
