"""
Firmware Images and Chunked Transfers
=====================================

Helpers that sit on top of a BootloaderConnection:

- Loading Intel HEX files into a FirmwareImage (via the intelhex library)
- Writing an image, or pre-decoded HEX records, in requests of at most
  256 bytes
- Reading an arbitrary memory range in requests of at most 256 bytes

Each request is one bootloader command; progress callbacks are invoked
after every request with (bytes_done, bytes_total).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union

from intelhex import IntelHex, IntelHexError

from stm32boot.comms.loader import BootloaderConnection
from stm32boot.comms.wire import MAX_ADDRESS, MAX_TRANSFER_SIZE, validate_address
from stm32boot.errors import FirmwareError

# Configure module logger
logger = logging.getLogger(__name__)

# Progress callback: (bytes_done, bytes_total)
ProgressCallback = Callable[[int, int], None]

# Pre-decoded HEX data record: (base_address, offset, data)
HexRecord = tuple[int, int, bytes]


# =============================================================================
# Firmware Image
# =============================================================================

@dataclass(frozen=True)
class FirmwareImage:
    """
    A firmware image as a list of contiguous memory segments.

    Attributes:
        segments: (address, data) pairs in ascending address order
        entry_address: Start address from the HEX file, if any
    """

    segments: tuple[tuple[int, bytes], ...] = field(default_factory=tuple)
    entry_address: Optional[int] = None

    @property
    def size(self) -> int:
        """Total number of data bytes."""
        return sum(len(data) for _, data in self.segments)

    @property
    def start_address(self) -> Optional[int]:
        """Lowest address covered by the image."""
        return self.segments[0][0] if self.segments else None

    @property
    def end_address(self) -> Optional[int]:
        """One past the highest address covered by the image."""
        if not self.segments:
            return None
        address, data = self.segments[-1]
        return address + len(data)

    def chunks(self, max_size: int = MAX_TRANSFER_SIZE) -> Iterator[tuple[int, bytes]]:
        """Yield (address, data) pieces of at most `max_size` bytes."""
        for address, data in self.segments:
            yield from _split(address, data, max_size)

    def __str__(self) -> str:
        if not self.segments:
            return "empty image"
        text = (
            f"{self.size} bytes in {len(self.segments)} segment(s), "
            f"0x{self.start_address:08X}-0x{self.end_address - 1:08X}"
        )
        if self.entry_address is not None:
            text += f", entry 0x{self.entry_address:08X}"
        return text


def _split(address: int, data: bytes, max_size: int) -> Iterator[tuple[int, bytes]]:
    for offset in range(0, len(data), max_size):
        yield address + offset, data[offset:offset + max_size]


def _entry_address(start_addr: Optional[dict]) -> Optional[int]:
    """Decode intelhex's start address record (linear EIP or segmented CS:IP)."""
    if not start_addr:
        return None
    if "EIP" in start_addr:
        return start_addr["EIP"]
    if "CS" in start_addr and "IP" in start_addr:
        return (start_addr["CS"] << 4) + start_addr["IP"]
    return None


def load_hex(path: Union[str, Path]) -> FirmwareImage:
    """
    Load an Intel HEX file.

    Args:
        path: Path to the .hex file.

    Returns:
        FirmwareImage with one segment per contiguous address range.

    Raises:
        FileNotFoundError: If the file does not exist.
        FirmwareError: If the file is not valid Intel HEX or addresses
                       exceed 32 bits.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Firmware file not found: {path}")

    try:
        ih = IntelHex(str(path))
    except IntelHexError as e:
        raise FirmwareError(f"Invalid Intel HEX file: {e}", path=str(path)) from e

    segments = []
    for start, stop in ih.segments():
        if stop - 1 > MAX_ADDRESS:
            raise FirmwareError(
                f"Segment at 0x{start:X} exceeds the 32-bit address space",
                path=str(path),
            )
        segments.append((start, bytes(ih.tobinarray(start=start, end=stop - 1))))

    image = FirmwareImage(
        segments=tuple(segments),
        entry_address=_entry_address(ih.start_addr),
    )
    logger.info("Loaded %s: %s", path.name, image)
    return image


# =============================================================================
# Chunked Transfers
# =============================================================================

def write_image(
    connection: BootloaderConnection,
    image: FirmwareImage,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """
    Write every segment of `image`.

    Args:
        connection: Synchronised bootloader connection.
        image: Image to write.
        progress: Called after each request with (bytes_done, bytes_total).

    Returns:
        Number of bytes written.
    """
    total = image.size
    done = 0
    for address, data in image.chunks():
        connection.write_memory(address, data)
        done += len(data)
        if progress:
            progress(done, total)

    logger.info("Wrote %d bytes", done)
    return done


def write_records(
    connection: BootloaderConnection,
    records: Iterable[HexRecord],
    progress: Optional[ProgressCallback] = None,
) -> int:
    """
    Write pre-decoded HEX data records.

    Each record is written at base_address + offset. Records longer than
    256 bytes are split.

    Args:
        connection: Synchronised bootloader connection.
        records: (base_address, offset, data) triples.
        progress: Called after each request with (bytes_done, bytes_total).

    Returns:
        Number of bytes written.
    """
    records = list(records)
    total = sum(len(data) for _, _, data in records)
    done = 0
    for base, offset, data in records:
        address = base + offset
        validate_address(address)
        for chunk_address, chunk in _split(address, bytes(data), MAX_TRANSFER_SIZE):
            connection.write_memory(chunk_address, chunk)
            done += len(chunk)
            if progress:
                progress(done, total)

    logger.info("Wrote %d bytes from %d record(s)", done, len(records))
    return done


def read_range(
    connection: BootloaderConnection,
    address: int,
    size: int,
    progress: Optional[ProgressCallback] = None,
) -> bytes:
    """
    Read `size` bytes starting at `address`.

    Args:
        connection: Synchronised bootloader connection.
        address: First address to read.
        size: Number of bytes (any positive count).
        progress: Called after each request with (bytes_done, bytes_total).

    Returns:
        The bytes read.

    Raises:
        ValueError: If size is not positive.
    """
    if size <= 0:
        raise ValueError(f"Size must be positive, got {size}")

    data = bytearray()
    while len(data) < size:
        count = min(MAX_TRANSFER_SIZE, size - len(data))
        data.extend(connection.read_memory(address + len(data), count))
        if progress:
            progress(len(data), size)

    return bytes(data)
