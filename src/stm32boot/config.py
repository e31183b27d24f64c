"""
Link Configuration
==================

Link selection and physical parameters for a bootloader session.
Configuration can come from:
- Default values (defined here)
- Environment variables
- Command-line options (applied by the CLI on top of the environment)

Environment variables (all optional):
    STM32BOOT_LINK: Link type ("serial" or "spi")
    STM32BOOT_PORT: Serial port path or spidev name
    STM32BOOT_BAUD: Serial baud rate (integer)
    STM32BOOT_TIMEOUT: Per-read timeout in seconds (float)
    STM32BOOT_SPI_SPEED: SPI clock in Hz (integer)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from stm32boot.comms.connection import LinkType
from stm32boot.comms.serial import DEFAULT_BAUD_RATE, DEFAULT_TIMEOUT, VALID_BAUD_RATES
from stm32boot.comms.spi import DEFAULT_SPI_SPEED_HZ, MAX_SPI_SPEED_HZ

# Configure module logger
logger = logging.getLogger(__name__)

# Link type names accepted by the configuration and the CLI
LINK_TYPES: tuple[str, ...] = tuple(t.value for t in LinkType)


@dataclass
class LinkConfig:
    """
    Configuration for opening a bootloader link.

    Attributes:
        link_type: "serial" or "spi" (default: "serial")
        port: Serial port path or spidev name (default: None, auto-detect)
        baud_rate: Serial baud rate (default: 9600)
        read_timeout: Per-read timeout in seconds (default: 0.1)
        spi_speed_hz: SPI clock in Hz (default: 20000)
    """

    link_type: str = "serial"
    port: Optional[str] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    read_timeout: float = DEFAULT_TIMEOUT
    spi_speed_hz: int = DEFAULT_SPI_SPEED_HZ

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "LinkConfig":
        """
        Create LinkConfig from environment variables.

        Numeric values that cannot be parsed are ignored with a warning.

        Args:
            environ: Mapping to read instead of os.environ.

        Returns:
            LinkConfig with values from environment variables
        """
        env = os.environ if environ is None else environ
        config = cls()

        if link_type := env.get("STM32BOOT_LINK"):
            config.link_type = link_type.strip().lower()

        if port := env.get("STM32BOOT_PORT"):
            config.port = port

        if baud := env.get("STM32BOOT_BAUD"):
            try:
                config.baud_rate = int(baud)
            except ValueError:
                logger.warning("Ignoring invalid STM32BOOT_BAUD: %r", baud)

        if timeout := env.get("STM32BOOT_TIMEOUT"):
            try:
                config.read_timeout = float(timeout)
            except ValueError:
                logger.warning("Ignoring invalid STM32BOOT_TIMEOUT: %r", timeout)

        if speed := env.get("STM32BOOT_SPI_SPEED"):
            try:
                config.spi_speed_hz = int(speed)
            except ValueError:
                logger.warning("Ignoring invalid STM32BOOT_SPI_SPEED: %r", speed)

        return config

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ValueError: Describing the first invalid setting found.
        """
        if self.link_type not in LINK_TYPES:
            raise ValueError(
                f"Unknown link type: {self.link_type!r} "
                f"(expected {' or '.join(LINK_TYPES)})"
            )
        if self.baud_rate not in VALID_BAUD_RATES:
            valid_str = ", ".join(str(b) for b in VALID_BAUD_RATES)
            raise ValueError(
                f"Invalid baud rate: {self.baud_rate}. Valid rates: {valid_str}"
            )
        if self.read_timeout <= 0:
            raise ValueError(f"Read timeout must be positive, got {self.read_timeout}")
        if not 0 < self.spi_speed_hz <= MAX_SPI_SPEED_HZ:
            raise ValueError(
                f"Invalid SPI speed: {self.spi_speed_hz} Hz "
                f"(maximum {MAX_SPI_SPEED_HZ} Hz)"
            )
