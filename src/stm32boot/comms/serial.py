"""
Serial (UART) Link
==================

This module provides the UART link used by the bootloader's USART
interface, plus port enumeration helpers for the command line tool.

Serial Port Settings
--------------------
The system bootloader autodetects the baud rate from the first sync byte
and always expects:
- Baud Rate: 9600 by default (1200 - 115200 accepted by autobaud)
- Data Bits: 8
- Parity: Even
- Stop Bits: 1
- Flow Control: None

Reads are bounded by a short per-read timeout (100 ms by default); the
engines decide how many times to retry.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from stm32boot.comms.link import Link
from stm32boot.errors import LinkIOError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Baud rates the bootloader's autobaud detection handles reliably
VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    1200, 2400, 4800, 9600, 19200, 38400, 57600, 115200,
)

# Default baud rate
DEFAULT_BAUD_RATE: Final[int] = 9600

# Default per-read timeout in seconds
DEFAULT_TIMEOUT: Final[float] = 0.1

# USB Vendor IDs for common USB-serial adapters
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0403: "FTDI",          # Future Technology Devices International
    0x10C4: "Silicon Labs",  # Silicon Labs CP210x
    0x067B: "Prolific",      # Prolific Technology
    0x1A86: "QinHeng",       # QinHeng Electronics (CH340)
    0x0483: "STMicroelectronics",  # ST-LINK virtual COM port
}


# =============================================================================
# Port Enumeration
# =============================================================================

# Adapters tried first by find_serial_port, in order
PREFERRED_VENDOR_IDS: Final[tuple[int, ...]] = (0x0483, 0x0403)  # ST-LINK, FTDI


@dataclass(frozen=True)
class PortInfo:
    """
    A serial port found on the host.

    `vid`/`pid` are None for ports that are not USB adapters. The serial
    number tells several ST-LINK probes apart.
    """

    device: str
    description: str
    vid: Optional[int] = None
    pid: Optional[int] = None
    serial_number: Optional[str] = None

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return USB_VENDOR_IDS.get(self.vid) if self.vid is not None else None

    def __str__(self) -> str:
        text = f"{self.device} - {self.description}" if self.description else self.device
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


def list_serial_ports() -> list[PortInfo]:
    """Return the serial ports pyserial can see, in its enumeration order."""
    ports = [
        PortInfo(
            device=p.device,
            description=p.description or "",
            vid=p.vid,
            pid=p.pid,
            serial_number=p.serial_number,
        )
        for p in serial.tools.list_ports.comports()
    ]
    logger.debug("Found %d serial port(s): %s", len(ports), ", ".join(p.device for p in ports))
    return ports


def find_serial_port() -> Optional[str]:
    """
    Pick a likely bootloader port.

    An ST-LINK virtual COM port wins, then an FTDI adapter, then the first
    other USB-serial adapter. Built-in UARTs are never chosen.

    Returns:
        Device path, or None if no USB-serial adapter is present.
    """
    candidates = [p for p in list_serial_ports() if p.is_usb]
    if not candidates:
        logger.debug("No USB serial ports found")
        return None

    ranked = sorted(
        candidates,
        key=lambda p: (PREFERRED_VENDOR_IDS.index(p.vid)
                       if p.vid in PREFERRED_VENDOR_IDS else len(PREFERRED_VENDOR_IDS)),
    )
    chosen = ranked[0]
    logger.info("Auto-detected port: %s (%s)", chosen.device,
                chosen.vendor_name or chosen.description)
    return chosen.device


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """Render ports one per line; `verbose` adds USB ids and serial numbers."""
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        lines.append(f"  {port}")
        if not verbose:
            continue
        if port.vid is not None:
            lines.append(f"    USB VID:PID: {port.vid:04X}:{port.pid or 0:04X}")
        if port.serial_number:
            lines.append(f"    Serial: {port.serial_number}")

    return "\n".join(lines)


# =============================================================================
# Port Configuration
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open and configure a serial port for the bootloader (8E1, no flow control).

    Args:
        device: Serial port device path (e.g., '/dev/ttyUSB0', 'COM3').
        baud_rate: Baud rate, one of VALID_BAUD_RATES. Default is 9600.
        timeout: Per-read timeout in seconds. Default is 0.1.

    Returns:
        Configured and opened serial.Serial object.

    Raises:
        LinkIOError: If the port cannot be opened or configured.
        ValueError: If baud_rate is not a valid value.
    """
    if baud_rate not in VALID_BAUD_RATES:
        valid_str = ", ".join(str(b) for b in VALID_BAUD_RATES)
        raise ValueError(
            f"Invalid baud rate: {baud_rate}. Valid rates: {valid_str}"
        )

    logger.info("Opening serial port: %s at %d baud", device, baud_rate)

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_EVEN,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )

        port.reset_input_buffer()
        port.reset_output_buffer()

        logger.debug("Port opened: %s (timeout=%.2f)", device, timeout)
        return port

    except serial.SerialException as e:
        error_msg = str(e)

        if "Permission denied" in error_msg:
            raise LinkIOError(
                f"Permission denied accessing {device}. "
                "You may need to add your user to the 'dialout' group: "
                "sudo usermod -a -G dialout $USER"
            ) from e
        elif "No such file" in error_msg or "not found" in error_msg.lower():
            raise LinkIOError(
                f"Serial port not found: {device}. "
                "Use 'stmboot ports' to list available ports."
            ) from e
        elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
            raise LinkIOError(
                f"Serial port {device} is busy. "
                "Close any other programs using the port."
            ) from e
        else:
            raise LinkIOError(f"Cannot open {device}: {e}") from e


# =============================================================================
# Serial Link
# =============================================================================

class SerialLink(Link):
    """
    Link over a pyserial port.

    The link takes ownership of the port and closes it on close().

    Usage:
        link = SerialLink.open('/dev/ttyUSB0')
        link.send(bytes([0x7F]))
        reply = link.receive_exact(1)
        link.close()
    """

    transport = "serial"

    def __init__(self, port: serial.Serial):
        """
        Args:
            port: Opened serial port (8E1, with a read timeout set).
        """
        self.port = port

    @classmethod
    def open(
        cls,
        device: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "SerialLink":
        """Open `device` with bootloader settings and wrap it."""
        return cls(open_serial_port(device, baud_rate=baud_rate, timeout=timeout))

    def _write(self, data: bytes) -> None:
        try:
            self.port.write(data)
            self.port.flush()
        except serial.SerialException as e:
            raise LinkIOError(f"Serial write failed: {e}") from e

    def _read(self, max_bytes: int) -> bytes:
        # pyserial returns fewer bytes (possibly none) once the timeout expires
        try:
            return bytes(self.port.read(max_bytes))
        except serial.SerialException as e:
            raise LinkIOError(f"Serial read failed: {e}") from e

    def close(self) -> None:
        """
        Safely close the serial port.

        Errors during close are logged and ignored.
        """
        try:
            if self.port.is_open:
                self.port.reset_input_buffer()
                self.port.reset_output_buffer()
                self.port.close()
                logger.debug("Serial port closed")
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port: %s", e)
