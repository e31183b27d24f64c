"""
Tests for the SPI Bootloader Engine
===================================

Byte-exact tests of SpiBootloader against a scripted link:
- Sync transfer outcomes
- Command and ack transfers
- Memory read/write with the dummy byte and odd-length padding
- Two-phase write unprotect polling and mass erase polling
"""

from unittest.mock import call

import pytest

from stm32boot.comms.spi_loader import SpiBootloader
from stm32boot.comms.wire import (
    ACK,
    ALREADY_CONFIGURED,
    BUSY,
    ERASE_ALL_FRAME,
    NAK,
    SPI_ACK_FRAME,
    SPI_SYNC_FRAME,
    Command,
    address_frame,
    checksum,
    spi_command_frame,
)
from stm32boot.errors import (
    AlreadySyncedError,
    CommandFailedError,
    CommsError,
    OperationNotSupportedError,
    ProtocolError,
    SyncError,
    TimeoutError,
)


@pytest.fixture
def loader(fake_link):
    """A synchronised SPI engine with empty logs."""
    engine = SpiBootloader(fake_link)
    fake_link.spi_sync(ACK)
    engine.initialize()
    fake_link.transferred.clear()
    fake_link.sent.clear()
    return engine


def ack_polls(fake_link) -> int:
    """Number of ack transfers performed."""
    return sum(1 for frame in fake_link.transferred if frame == SPI_ACK_FRAME)


# =============================================================================
# Sync Tests
# =============================================================================

class TestInitialize:
    """Tests for the sync transfer."""

    def test_sync_ack(self, fake_link):
        engine = SpiBootloader(fake_link)
        fake_link.spi_sync(ACK)

        engine.initialize()

        assert engine.synced
        assert fake_link.transferred == [SPI_SYNC_FRAME]

    def test_already_synced(self, fake_link):
        """0xA5 raises AlreadySyncedError but leaves the engine usable."""
        engine = SpiBootloader(fake_link)
        fake_link.spi_sync(ALREADY_CONFIGURED)

        with pytest.raises(AlreadySyncedError):
            engine.initialize()
        assert engine.synced

    def test_sync_failure(self, fake_link):
        engine = SpiBootloader(fake_link)
        fake_link.spi_sync(0x00)

        with pytest.raises(SyncError) as exc_info:
            engine.initialize()
        assert exc_info.value.response == 0x00
        assert not engine.synced

    def test_commands_require_sync(self, fake_link):
        engine = SpiBootloader(fake_link)
        with pytest.raises(CommsError, match="Not synchronised"):
            engine.go(0x08000000)
        assert fake_link.transferred == []


# =============================================================================
# Identity Query Tests
# =============================================================================

class TestIdentity:
    """Tests for Get and the unsupported identity queries."""

    def test_get_supported_commands(self, loader, fake_link):
        fake_link.spi_command()
        fake_link.reply(bytes([0x00, 0x02]), bytes([0x31, 0x00, 0x11]))
        fake_link.spi_ack(ACK)

        info = loader.get_supported_commands()

        assert fake_link.transferred == [spi_command_frame(Command.GET), SPI_ACK_FRAME]
        assert info.version == 0x31
        assert info.commands == (Command.GET, Command.READ_MEMORY)

    def test_command_not_acknowledged(self, loader, fake_link):
        fake_link.spi_command(ack=NAK)
        with pytest.raises(ProtocolError):
            loader.get_supported_commands()

    def test_get_protocol_version_not_supported(self, loader, fake_link):
        with pytest.raises(OperationNotSupportedError) as exc_info:
            loader.get_protocol_version()
        assert exc_info.value.transport == "spi"
        assert fake_link.transferred == []

    def test_get_chip_id_not_supported(self, loader):
        with pytest.raises(OperationNotSupportedError):
            loader.get_chip_id()


# =============================================================================
# Memory Access Tests
# =============================================================================

class TestMemory:
    """Tests for read, write and go."""

    def test_read_memory_discards_dummy(self, loader, fake_link):
        payload = bytes(range(16))
        fake_link.spi_command()
        fake_link.spi_ack(ACK, ACK)
        fake_link.reply(b"\x00" + payload)

        data = loader.read_memory(0x08001000, 16)

        assert data == payload
        assert fake_link.sent == [address_frame(0x08001000), bytes([0x0F, 0xF0])]
        assert fake_link.transferred[0] == spi_command_frame(Command.READ_MEMORY)

    def test_read_memory_invalid_size(self, loader, fake_link):
        with pytest.raises(ProtocolError):
            loader.read_memory(0x08000000, 300)
        assert fake_link.transferred == []

    def test_write_memory_pads_odd_length(self, loader, fake_link):
        """Three bytes get a 0xFF pad; the checksum covers the pad."""
        fake_link.spi_command()
        fake_link.spi_ack(ACK, ACK)

        loader.write_memory(0x20000000, bytes([0x12, 0x34, 0x56]))

        assert fake_link.sent[0] == address_frame(0x20000000)
        frame = fake_link.sent[1]
        assert frame[:5] == bytes([0x02, 0x12, 0x34, 0x56, 0xFF])
        assert frame[-1] == checksum(frame[:-1])
        assert len(frame) % 2 == 0

    @pytest.mark.parametrize("length", [0, 257])
    def test_write_memory_invalid_length_no_io(self, loader, fake_link, length):
        with pytest.raises(ProtocolError):
            loader.write_memory(0x08000000, bytes(length))
        assert fake_link.transferred == []
        assert fake_link.sent == []

    def test_write_memory_rejected(self, loader, fake_link):
        fake_link.spi_command()
        fake_link.spi_ack(ACK, NAK)
        with pytest.raises(CommandFailedError) as exc_info:
            loader.write_memory(0x08000000, b"\x00\x01")
        assert exc_info.value.status == NAK

    def test_go(self, loader, fake_link):
        fake_link.spi_command()
        fake_link.spi_ack(ACK)

        loader.go(0x08000000)

        assert fake_link.transferred == [spi_command_frame(Command.GO), SPI_ACK_FRAME]
        assert fake_link.sent == [address_frame(0x08000000)]


# =============================================================================
# Polling Command Tests
# =============================================================================

class TestEraseAll:
    """Tests for mass erase."""

    def test_erase_all(self, loader, fake_link, sleep_mock):
        fake_link.spi_command()
        fake_link.spi_ack(BUSY, BUSY, ACK)

        loader.erase_all()

        assert fake_link.transferred[0] == spi_command_frame(Command.EXTENDED_ERASE)
        assert fake_link.sent == [ERASE_ALL_FRAME]
        assert ack_polls(fake_link) == 3
        assert sleep_mock.call_count == 2

    @pytest.mark.parametrize("statuses", [
        (ALREADY_CONFIGURED, BUSY, ACK),
        (BUSY, ALREADY_CONFIGURED, ACK),
        (ALREADY_CONFIGURED, ALREADY_CONFIGURED, ACK),
    ])
    def test_erase_all_tolerates_already_configured(self, loader, fake_link, sleep_mock, statuses):
        """0xA5 while erasing is another busy signal."""
        fake_link.spi_command()
        fake_link.spi_ack(*statuses)

        loader.erase_all()

        assert ack_polls(fake_link) == 3
        assert sleep_mock.call_args_list == [call(1.0)] * 2

    def test_erase_all_timeout(self, loader, fake_link, sleep_mock):
        """Still busy after the whole budget is a TimeoutError."""
        fake_link.spi_command()
        fake_link.spi_ack(*[BUSY] * 20)

        with pytest.raises(TimeoutError):
            loader.erase_all()
        assert ack_polls(fake_link) == 20

    def test_erase_all_unexpected_status(self, loader, fake_link, sleep_mock):
        fake_link.spi_command()
        fake_link.spi_ack(NAK)
        with pytest.raises(CommandFailedError):
            loader.erase_all()


class TestWriteUnprotect:
    """Tests for the two-phase write unprotect poll."""

    def test_immediate_ack_skips_second_phase(self, loader, fake_link, sleep_mock):
        fake_link.spi_command()
        fake_link.spi_ack(ACK)

        loader.write_unprotect()

        assert fake_link.transferred[0] == spi_command_frame(Command.WRITE_UNPROTECT)
        assert ack_polls(fake_link) == 1
        sleep_mock.assert_not_called()

    def test_busy_through_reset_then_ack(self, loader, fake_link, sleep_mock):
        """Twelve busy polls then ACK: 13 polls, 10 short and 2 long pauses."""
        fake_link.spi_command()
        fake_link.spi_ack(*[BUSY] * 12, ACK)

        loader.write_unprotect()

        assert ack_polls(fake_link) == 13
        assert sleep_mock.call_args_list == [call(0.1)] * 10 + [call(1.0)] * 2

    def test_already_configured_tolerated_after_reset(self, loader, fake_link, sleep_mock):
        fake_link.spi_command()
        fake_link.spi_ack(*[BUSY] * 10, ALREADY_CONFIGURED, ACK)

        loader.write_unprotect()

        assert ack_polls(fake_link) == 12

    def test_already_configured_during_reset_fails(self, loader, fake_link, sleep_mock):
        """Only busy is tolerated while protection is being reset."""
        fake_link.spi_command()
        fake_link.spi_ack(ALREADY_CONFIGURED)

        with pytest.raises(CommandFailedError) as exc_info:
            loader.write_unprotect()
        assert exc_info.value.status == ALREADY_CONFIGURED

    def test_always_busy_times_out(self, loader, fake_link, sleep_mock):
        fake_link.spi_command()
        fake_link.spi_ack(*[BUSY] * 30)

        with pytest.raises(TimeoutError):
            loader.write_unprotect()

        assert ack_polls(fake_link) == 30
        assert sleep_mock.call_count == 30

    def test_already_configured_until_settle_budget_runs_out(self, loader, fake_link, sleep_mock):
        """Busy through the reset phase, then 0xA5 for the whole settle phase."""
        fake_link.spi_command()
        fake_link.spi_ack(*[BUSY] * 10, *[ALREADY_CONFIGURED] * 20)

        with pytest.raises(TimeoutError):
            loader.write_unprotect()

        assert ack_polls(fake_link) == 30
        assert sleep_mock.call_args_list == [call(0.1)] * 10 + [call(1.0)] * 20
