from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

TEST_COMMAND = "TEST\n"
DEFAULT_SEND_INTERVAL_S = 0.05


class LineWriter(Protocol):
    @property
    def is_connected(self) -> bool: ...

    def write(self, text: str) -> bool: ...


def encode_distance(distance: float) -> str:
    """Format a distance in metres as a move command in millimetres."""
    return f"M{distance * 1000.0:.1f}\n"


def encode_custom(command: str) -> str:
    return command.rstrip("\r\n") + "\n"


class CommandEncoder:
    """Rate-limited sender of distance commands.

    At most one move command is sent per `send_interval_s` of wall-clock time,
    whatever the control loop rate is. Ticks in between are skipped.
    """

    def __init__(
        self,
        writer: LineWriter,
        *,
        send_interval_s: float = DEFAULT_SEND_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._writer = writer
        self.send_interval_s = float(send_interval_s)
        self._clock = clock
        self._last_send: Optional[float] = None
        self._last_command: Optional[str] = None

    @property
    def last_command(self) -> Optional[str]:
        return self._last_command

    def reset(self) -> None:
        self._last_send = None

    def send_distance(self, distance: float) -> bool:
        """Send the move command if the link is up and the interval elapsed."""
        if not self._writer.is_connected:
            return False
        now = self._clock()
        if self._last_send is not None and now - self._last_send < self.send_interval_s:
            return False
        command = encode_distance(distance)
        if not self._writer.write(command):
            return False
        self._last_send = now
        self._last_command = command
        return True

    def send_test(self) -> bool:
        sent = self._writer.write(TEST_COMMAND)
        if sent:
            logger.info("Sent test command to pen controller")
        return sent

    def send_custom(self, command: str) -> bool:
        sent = self._writer.write(encode_custom(command))
        if sent:
            logger.info("Sent custom command to pen controller: %s", command.strip())
        return sent
