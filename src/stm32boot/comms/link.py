"""
Bootloader Link Abstraction
===========================

This module defines the duplex byte channel the protocol engines talk
through, together with the two loops every engine needs:

- Accumulating a fixed-size response that may arrive in fragments
- Polling a status byte with a fixed budget while a long device
  operation (mass erase, protection change, reset) completes

Link Contract
-------------
- `send(data)` transmits all bytes or raises LinkIOError
- `receive(max_bytes)` performs one bounded read and returns at least one
  byte, or raises TimeoutError when the per-read deadline passes empty
- `receive_exact(n)` keeps reading until exactly n bytes are collected

Links do not interpret bytes; all protocol semantics live in the engines.

Thread Safety
-------------
A link is owned exclusively by one connection for its entire lifetime.
It is NOT thread-safe.
"""

import logging
import time
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Callable, Optional

from stm32boot.comms.wire import format_bytes
from stm32boot.errors import CommandFailedError, TimeoutError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Link Base Class
# =============================================================================

class Link(ABC):
    """
    Abstract duplex byte channel to a bootloader.

    Subclasses implement `_write`, `_read` and `close`; logging and the
    accumulation loop are shared here.
    """

    #: Human-readable transport name used in messages
    transport: str = "link"

    def send(self, data: bytes) -> None:
        """
        Transmit all of `data`.

        Raises:
            LinkIOError: If the transport write fails.
        """
        logger.debug("Out: %s", format_bytes(data))
        self._write(bytes(data))

    def receive(self, max_bytes: int) -> bytes:
        """
        Perform one bounded read of up to `max_bytes` bytes.

        Returns:
            Between 1 and max_bytes bytes.

        Raises:
            TimeoutError: If nothing arrives within the read deadline.
            LinkIOError: If the transport read fails.
        """
        chunk = self._read(max_bytes)
        if not chunk:
            raise TimeoutError(f"No response within read timeout on {self.transport}")
        logger.debug("In : %s", format_bytes(chunk))
        return chunk

    def receive_exact(self, size: int) -> bytes:
        """
        Read until exactly `size` bytes have been collected.

        The device may deliver a response in several fragments; this
        keeps reading into one buffer until it is complete.

        Args:
            size: Number of bytes to collect.

        Returns:
            Exactly `size` bytes.

        Raises:
            TimeoutError: If a read deadline passes before the buffer is
                          complete (the message reports the partial count).
            LinkIOError: If the transport read fails.
        """
        buffer = bytearray()
        while len(buffer) < size:
            try:
                buffer.extend(self.receive(size - len(buffer)))
            except TimeoutError:
                if buffer:
                    raise TimeoutError(
                        f"Incomplete response: got {len(buffer)} of {size} bytes"
                    ) from None
                raise
        return bytes(buffer)

    @abstractmethod
    def _write(self, data: bytes) -> None:
        """Write all bytes to the transport."""

    @abstractmethod
    def _read(self, max_bytes: int) -> bytes:
        """Read up to max_bytes; return b'' on timeout."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying handle."""

    def __enter__(self) -> "Link":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# =============================================================================
# Poll With Tolerance
# =============================================================================

class PollAction(Enum):
    """Decision taken for one observed status while polling."""

    SUCCESS = auto()  # Stop polling, operation complete
    RETRY = auto()    # Tolerated status, pause and poll again
    FAIL = auto()     # Stop polling, surface the status as an error


def poll_status(
    probe: Callable[[], int],
    classify: Callable[[Optional[int]], PollAction],
    attempts: int,
    delay: float,
    description: str = "status",
) -> Optional[int]:
    """
    Poll a device status byte with a fixed budget.

    Each attempt calls `probe()`. A TimeoutError from the link is observed
    as status None. `classify` decides what happens next. After every
    attempt that does not succeed, the loop pauses for `delay` seconds.

    Args:
        probe: Performs one exchange and returns the observed status byte.
        classify: Maps a status (or None for a timeout) to a PollAction.
        attempts: Maximum number of probes.
        delay: Pause between attempts, in seconds.
        description: What is being polled, for log messages.

    Returns:
        The status that classified as SUCCESS, or None if the budget was
        exhausted (the caller decides how to surface that).

    Raises:
        CommandFailedError: If a status classifies as FAIL.
        TimeoutError: If a link timeout classifies as FAIL.
        LinkIOError: Propagated unchanged from the probe.
    """
    for attempt in range(1, attempts + 1):
        try:
            status: Optional[int] = probe()
        except TimeoutError:
            status = None

        action = classify(status)
        if action is PollAction.SUCCESS:
            logger.debug("Polled %s: done after %d attempt(s)", description, attempt)
            return status

        if action is PollAction.FAIL:
            if status is None:
                raise TimeoutError(f"Timed out polling {description}")
            raise CommandFailedError(status)

        logger.debug(
            "Polled %s: attempt %d/%d got %s, retrying in %.1fs",
            description, attempt, attempts,
            "timeout" if status is None else f"{status:02X}",
            delay,
        )
        time.sleep(delay)

    logger.debug("Polled %s: budget of %d attempts exhausted", description, attempts)
    return None
