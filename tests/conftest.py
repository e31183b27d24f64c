"""
Bootloader Test Configuration
=============================

pytest fixtures shared by the bootloader tests.

It provides:
- FakeLink, a scripted link that records every frame sent and replays
  queued responses, timeouts and SPI transfer answers
- A patched sleep so polling loops run instantly and their pauses can
  be counted
"""

from collections import deque
from unittest.mock import patch

import pytest

from stm32boot.comms.link import Link
from stm32boot.comms.wire import ACK


class FakeLink(Link):
    """
    Scripted link for byte-exact engine tests.

    Reads are served from a queue of byte strings; a queued None (or an
    empty queue) is a read timeout. A read never returns more than one
    queued chunk, so responses can be delivered in fragments.
    """

    transport = "fake"

    def __init__(self):
        self.sent: list[bytes] = []
        self.transferred: list[bytes] = []
        self.events: list[tuple[str, bytes]] = []
        self.responses: deque = deque()
        self.transfer_responses: deque = deque()
        self.read_calls = 0
        self.closed = False

    # Scripting helpers

    def reply(self, *chunks: bytes) -> "FakeLink":
        """Queue response chunks for subsequent reads."""
        self.responses.extend(bytes(c) for c in chunks)
        return self

    def timeout(self, count: int = 1) -> "FakeLink":
        """Queue read timeouts."""
        self.responses.extend([None] * count)
        return self

    def reply_transfer(self, *answers: bytes) -> "FakeLink":
        """Queue answers for subsequent full-duplex transfers."""
        self.transfer_responses.extend(bytes(a) for a in answers)
        return self

    def spi_sync(self, status: int) -> "FakeLink":
        return self.reply_transfer(bytes([0x00, 0x00, status, 0x00]))

    def spi_command(self, ack: int = ACK) -> "FakeLink":
        return self.reply_transfer(bytes([0x00, 0x00, 0x00, 0x00, ack, 0x00]))

    def spi_ack(self, *statuses: int) -> "FakeLink":
        return self.reply_transfer(*(bytes([0x00, s, 0x00]) for s in statuses))

    # Link implementation

    def _write(self, data: bytes) -> None:
        self.sent.append(data)
        self.events.append(("send", data))

    def _read(self, max_bytes: int) -> bytes:
        self.read_calls += 1
        if not self.responses:
            return b""
        chunk = self.responses.popleft()
        if chunk is None:
            return b""
        if len(chunk) > max_bytes:
            self.responses.appendleft(chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        self.events.append(("read", chunk))
        return chunk

    def transfer(self, data: bytes) -> bytes:
        data = bytes(data)
        self.transferred.append(data)
        self.events.append(("transfer", data))
        if not self.transfer_responses:
            raise AssertionError(f"Unscripted transfer: {data.hex()}")
        return self.transfer_responses.popleft()

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_link():
    """A fresh scripted link."""
    return FakeLink()


@pytest.fixture
def sleep_mock():
    """Patch the polling sleep; the mock records every pause."""
    with patch("stm32boot.comms.link.time.sleep") as mock_sleep:
        yield mock_sleep
