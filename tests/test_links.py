"""
Tests for the Concrete Links
============================

This module tests the serial and SPI links with mocked drivers:
- Port configuration and open errors
- Port and device enumeration
- Driver errors converted to LinkIOError

Note: Hardware-dependent tests are skipped by default.
"""

import os
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest
import serial

from stm32boot.comms.connection import LinkType, open_connection
from stm32boot.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    SerialLink,
    find_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from stm32boot.comms.spi import (
    SpiLink,
    list_spi_devices,
    open_spi_device,
    parse_spi_device,
)
from stm32boot.comms.wire import Command
from stm32boot.errors import LinkIOError, TimeoutError


def _comport(device, vid=None, pid=None, description="Port", serial_number=None):
    return SimpleNamespace(
        device=device, description=description, vid=vid, pid=pid,
        serial_number=serial_number,
    )


# =============================================================================
# Serial Port Tests
# =============================================================================

class TestSerialPort:
    """Tests for serial port utilities."""

    def test_default_baud_rate(self):
        assert DEFAULT_BAUD_RATE == 9600
        assert 115200 in VALID_BAUD_RATES

    @patch("stm32boot.comms.serial.serial.Serial")
    def test_open_configures_8e1(self, mock_serial):
        open_serial_port("/dev/ttyUSB0")

        kwargs = mock_serial.call_args.kwargs
        assert kwargs["baudrate"] == 9600
        assert kwargs["parity"] == serial.PARITY_EVEN
        assert kwargs["bytesize"] == serial.EIGHTBITS
        assert kwargs["stopbits"] == serial.STOPBITS_ONE
        assert kwargs["timeout"] == 0.1
        assert kwargs["rtscts"] is False

    def test_open_invalid_baud(self):
        with pytest.raises(ValueError, match="Invalid baud rate"):
            open_serial_port("/dev/ttyUSB0", baud_rate=12345)

    @patch("stm32boot.comms.serial.serial.Serial")
    def test_open_permission_denied(self, mock_serial):
        mock_serial.side_effect = serial.SerialException("[Errno 13] Permission denied")
        with pytest.raises(LinkIOError, match="dialout"):
            open_serial_port("/dev/ttyUSB0")

    @patch("stm32boot.comms.serial.serial.tools.list_ports.comports")
    def test_list_and_find_prefers_st(self, mock_comports):
        mock_comports.return_value = [
            _comport("/dev/ttyS0"),
            _comport("/dev/ttyUSB0", vid=0x1A86, pid=0x7523),
            _comport("/dev/ttyACM0", vid=0x0483, pid=0x374B),
        ]

        ports = list_serial_ports()

        assert [p.device for p in ports] == ["/dev/ttyS0", "/dev/ttyUSB0", "/dev/ttyACM0"]
        assert find_serial_port() == "/dev/ttyACM0"

    @patch("stm32boot.comms.serial.serial.tools.list_ports.comports")
    def test_find_falls_back_to_first_usb(self, mock_comports):
        mock_comports.return_value = [
            _comport("/dev/ttyS0"),
            _comport("/dev/ttyUSB1", vid=0x1A86, pid=0x7523),
            _comport("/dev/ttyUSB2", vid=0x10C4, pid=0xEA60),
        ]
        assert find_serial_port() == "/dev/ttyUSB1"

    @patch("stm32boot.comms.serial.serial.tools.list_ports.comports")
    def test_find_none(self, mock_comports):
        mock_comports.return_value = [_comport("/dev/ttyS0")]
        assert find_serial_port() is None

    def test_format_port_list(self):
        ports = [PortInfo("/dev/ttyACM0", "STLink", 0x0483, 0x374B, "066DFF")]
        assert "STMicroelectronics" in format_port_list(ports)
        assert "0483:374B" in format_port_list(ports, verbose=True)
        assert "Serial: 066DFF" in format_port_list(ports, verbose=True)
        assert "Serial:" not in format_port_list(ports)
        assert "No serial ports" in format_port_list([])


class TestSerialLink:
    """Tests for SerialLink with a mocked port."""

    def create_mock_port(self):
        port = Mock()
        port.is_open = True
        return port

    def test_send_writes_and_flushes(self):
        port = self.create_mock_port()
        SerialLink(port).send(b"\x7F")
        port.write.assert_called_once_with(b"\x7F")
        port.flush.assert_called_once()

    def test_receive(self):
        port = self.create_mock_port()
        port.read.return_value = b"\x79"
        assert SerialLink(port).receive(1) == b"\x79"

    def test_receive_timeout(self):
        port = self.create_mock_port()
        port.read.return_value = b""
        with pytest.raises(TimeoutError):
            SerialLink(port).receive(1)

    def test_write_failure(self):
        port = self.create_mock_port()
        port.write.side_effect = serial.SerialException("device disconnected")
        with pytest.raises(LinkIOError, match="disconnected"):
            SerialLink(port).send(b"\x00")

    def test_close(self):
        port = self.create_mock_port()
        SerialLink(port).close()
        port.close.assert_called_once()


# =============================================================================
# SPI Tests
# =============================================================================

class TestSpiDevices:
    """Tests for spidev naming and enumeration."""

    @pytest.mark.parametrize("name,expected", [
        ("spidev0.0", (0, 0)),
        ("/dev/spidev1.2", (1, 2)),
        ("0.1", (0, 1)),
    ])
    def test_parse(self, name, expected):
        assert parse_spi_device(name) == expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_spi_device("/dev/ttyUSB0")

    def test_list_devices(self, tmp_path):
        for name in ("spidev0.1", "spidev0.0", "ttyS0"):
            (tmp_path / name).touch()
        assert list_spi_devices(tmp_path) == ["spidev0.0", "spidev0.1"]

    def test_list_missing_dir(self, tmp_path):
        assert list_spi_devices(tmp_path / "nothing") == []


class TestSpiLink:
    """Tests for SpiLink with a mocked spidev."""

    def test_open_configures_device(self):
        device = MagicMock()
        fake_module = SimpleNamespace(SpiDev=Mock(return_value=device))
        with patch.dict(sys.modules, {"spidev": fake_module}):
            link = SpiLink.open("spidev0.1", speed_hz=10000)

        device.open.assert_called_once_with(0, 1)
        assert device.max_speed_hz == 10000
        assert device.mode == 0
        assert device.bits_per_word == 8
        assert link.spi is device

    def test_open_speed_too_high(self):
        fake_module = SimpleNamespace(SpiDev=Mock())
        with patch.dict(sys.modules, {"spidev": fake_module}):
            with pytest.raises(ValueError, match="SPI speed"):
                open_spi_device("spidev0.0", speed_hz=1_000_000)

    def test_open_missing_device(self):
        device = MagicMock()
        device.open.side_effect = FileNotFoundError(2, "No such file")
        fake_module = SimpleNamespace(SpiDev=Mock(return_value=device))
        with patch.dict(sys.modules, {"spidev": fake_module}):
            with pytest.raises(LinkIOError, match="not found"):
                open_spi_device("spidev9.9")
        device.close.assert_called_once()

    def test_transfer(self):
        spi = Mock()
        spi.xfer2.return_value = [0x00, 0x00, 0x79, 0x00]

        received = SpiLink(spi).transfer(bytes([0x5A, 0x00, 0x00, 0x79]))

        spi.xfer2.assert_called_once_with([0x5A, 0x00, 0x00, 0x79])
        assert received == bytes([0x00, 0x00, 0x79, 0x00])

    def test_transfer_failure(self):
        spi = Mock()
        spi.xfer2.side_effect = OSError("bus error")
        with pytest.raises(LinkIOError):
            SpiLink(spi).transfer(b"\x00")

    def test_send_and_receive(self):
        spi = Mock()
        spi.readbytes.return_value = [0x01, 0x02]
        link = SpiLink(spi)

        link.send(b"\x01\x02")
        assert link.receive_exact(2) == b"\x01\x02"
        spi.writebytes2.assert_called_once_with(b"\x01\x02")


# =============================================================================
# Hardware Tests
# =============================================================================

# Mark tests that require real hardware
hardware_marker = pytest.mark.skipif(
    True,  # Always skip by default
    reason="Hardware tests require a device in bootloader mode"
)


@hardware_marker
class TestHardware:
    """Tests that require a real device."""

    def test_real_sync(self):
        """Sync with a device and read its command list."""
        port = os.environ.get("STM32BOOT_PORT") or find_serial_port()
        assert port, "No serial port found"

        with open_connection(LinkType.SERIAL, port, initialize=True) as connection:
            info = connection.get_supported_commands()

        assert connection.transport == "serial"
        assert Command.GET in info.commands
        assert info.supports(Command.READ_MEMORY)
