"""
stm32boot Command-Line Interface
================================

This package provides the command-line tool for stm32boot:

- **stmboot**: Talk to the STM32 system bootloader over UART or SPI

The tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["stmboot"]
