"""
Tests for the Error Hierarchy and CLI Error Handling
===================================================
"""

import builtins

import click
import pytest

from stm32boot.cli.errors import ExitCode, handle_cli_exception
from stm32boot.errors import (
    AlreadySyncedError,
    BootloaderError,
    CommandFailedError,
    CommsError,
    FirmwareError,
    LinkIOError,
    OperationNotSupportedError,
    ProtocolError,
    SyncError,
    TimeoutError,
)


class TestErrors:
    """Tests for error classes."""

    @pytest.mark.parametrize("error_class", [
        SyncError,
        AlreadySyncedError,
        ProtocolError,
        LinkIOError,
        TimeoutError,
        CommandFailedError,
        OperationNotSupportedError,
    ])
    def test_comms_error_hierarchy(self, error_class):
        assert issubclass(error_class, CommsError)
        assert issubclass(error_class, BootloaderError)

    def test_timeout_is_not_builtin(self):
        """The package TimeoutError is distinct from the builtin one."""
        assert TimeoutError is not builtins.TimeoutError

    def test_command_failed_keeps_status(self):
        error = CommandFailedError(0xA5)
        assert error.status == 0xA5
        assert str(error) == "Command failed: A5 (already configured)"

    def test_command_failed_unknown_status(self):
        assert str(CommandFailedError(0x42)) == "Command failed: 42"

    def test_sync_error_response(self):
        error = SyncError(response=0x00)
        assert error.response == 0x00
        assert "00" in str(error)

    def test_not_supported_message(self):
        error = OperationNotSupportedError("get-chip-id", "spi")
        assert error.operation == "get-chip-id"
        assert "spi" in str(error)

    def test_firmware_error_path(self):
        error = FirmwareError("bad record", path="fw.hex")
        assert str(error) == "fw.hex: bad record"
        assert not issubclass(FirmwareError, CommsError)


class TestHandleCliException:
    """Tests for the exit code mapping."""

    @pytest.mark.parametrize("error,code", [
        (CommandFailedError(0x1F), ExitCode.DEVICE_ERROR),
        (TimeoutError("no answer"), ExitCode.DEVICE_ERROR),
        (LinkIOError("unplugged"), ExitCode.DEVICE_ERROR),
        (FirmwareError("bad"), ExitCode.INVALID_ARGS),
        (ValueError("bad baud"), ExitCode.INVALID_ARGS),
        (click.BadParameter("bad"), ExitCode.INVALID_ARGS),
        (FileNotFoundError("x.hex"), ExitCode.INVALID_ARGS),
        (RuntimeError("oops"), ExitCode.INTERNAL_ERROR),
    ])
    def test_exit_codes(self, error, code, capsys):
        with pytest.raises(SystemExit) as exc_info:
            handle_cli_exception(error)
        assert exc_info.value.code == code
        assert capsys.readouterr().err

    def test_prefix(self, capsys):
        with pytest.raises(SystemExit):
            handle_cli_exception(ProtocolError("bad frame"), error_type="Read")
        assert "Read error: bad frame" in capsys.readouterr().err
