"""
Bootloader Response Models
==========================

Immutable result types returned by the identity queries of a
bootloader session.
"""

from dataclasses import dataclass, field

from stm32boot.comms.wire import AnyCommand, Command


def _format_version(version: int) -> str:
    """Format a BCD-style version byte (0x31 -> '3.1')."""
    return f"{version >> 4}.{version & 0x0F}"


@dataclass(frozen=True)
class BootloaderInfo:
    """
    Result of the Get command.

    Attributes:
        version: Bootloader protocol version byte
        commands: Opcodes the device reports as supported, in device order
    """

    version: int
    commands: tuple[AnyCommand, ...] = field(default_factory=tuple)

    @property
    def version_string(self) -> str:
        return _format_version(self.version)

    def supports(self, command: Command) -> bool:
        """Return True if the device listed the given command."""
        return command in self.commands

    def __str__(self) -> str:
        names = ", ".join(c.name for c in self.commands)
        return f"Bootloader v{self.version_string}: {names}"


@dataclass(frozen=True)
class BootloaderOptions:
    """
    Result of the Get Version command.

    Attributes:
        version: Bootloader protocol version byte
        option_bytes: 16-bit option field (read protection / boot configuration)
    """

    version: int
    option_bytes: int

    @property
    def version_string(self) -> str:
        return _format_version(self.version)

    def __str__(self) -> str:
        return f"Bootloader v{self.version_string}, options 0x{self.option_bytes:04X}"


@dataclass(frozen=True)
class ChipId:
    """16-bit product identifier returned by the Get ID command."""

    value: int

    def __str__(self) -> str:
        return f"0x{self.value:04X}"
