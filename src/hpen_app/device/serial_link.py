"""Serial link to the pen controller board.

The transport owns a background reader thread that drains incoming bytes
independently of the control loop. Each drain cycle hands only the most
recent complete line to the line callback; older lines are dropped so the
control loop never acts on stale telemetry.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Optional

try:
    import serial
except ImportError:
    serial = None

logger = logging.getLogger(__name__)

LINE_TERMINATOR = b"\n"
DEFAULT_POLL_INTERVAL_S = 0.01

if serial is not None:
    _IO_ERRORS: tuple[type[BaseException], ...] = (serial.SerialException, OSError)
else:
    _IO_ERRORS = (OSError,)


def serial_available() -> bool:
    return serial is not None


def _open_port(port: str, baud_rate: int, timeout_s: float) -> Any:
    if serial is None:
        raise RuntimeError("pyserial is not installed")
    return serial.Serial(port, baud_rate, timeout=timeout_s, write_timeout=timeout_s)


def split_latest_line(buffer: bytearray) -> tuple[Optional[str], bytearray]:
    """Extract the newest complete, non-blank line from `buffer`.

    Returns:
        Tuple of (latest line or None, remaining partial data).
    """
    if LINE_TERMINATOR not in buffer:
        return None, buffer
    head, _, tail = bytes(buffer).rpartition(LINE_TERMINATOR)
    for raw in reversed(head.split(LINE_TERMINATOR)):
        line = raw.decode("ascii", errors="ignore").strip()
        if line:
            return line, bytearray(tail)
    return None, bytearray(tail)


class SerialTransport:
    """Line-oriented serial channel with a background reader."""

    def __init__(
        self,
        port: str,
        baud_rate: int = 115200,
        *,
        timeout_s: float = 0.1,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        on_line: Callable[[str], None] | None = None,
        port_factory: Callable[[str, int, float], Any] = _open_port,
        log_traffic: bool = False,
    ) -> None:
        self.port = port
        self.baud_rate = int(baud_rate)
        self.timeout_s = float(timeout_s)
        self.poll_interval_s = float(poll_interval_s)
        self.on_line = on_line
        self.log_traffic = log_traffic
        self._port_factory = port_factory

        self._lock = threading.Lock()
        self._ser: Any = None
        self._connected = False
        self._buffer = bytearray()
        self._stop = threading.Event()
        self._reader_th: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """Open the port. Failures are logged and leave the link disconnected."""
        with self._lock:
            try:
                self._ser = self._port_factory(self.port, self.baud_rate, self.timeout_s)
            except (*_IO_ERRORS, RuntimeError) as exc:
                logger.error("Failed to connect to pen controller on %s: %s", self.port, exc)
                self._ser = None
                self._connected = False
                return False
            self._buffer = bytearray()
            self._connected = True
        logger.info("Connected to pen controller on %s", self.port)
        return True

    def close(self) -> None:
        with self._lock:
            self._close_locked()

    def reconnect(self) -> bool:
        self.close()
        return self.connect()

    def _close_locked(self) -> None:
        ser, self._ser = self._ser, None
        self._connected = False
        self._buffer = bytearray()
        if ser is None:
            return
        try:
            ser.close()
        except _IO_ERRORS as exc:
            logger.warning("Error while closing %s: %s", self.port, exc)

    def _mark_disconnected(self, action: str, exc: BaseException) -> None:
        logger.error("Error %s pen controller: %s", action, exc)
        self._connected = False

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------

    def write(self, text: str) -> bool:
        """Send `text` as ASCII. Returns False when skipped or failed."""
        with self._lock:
            if not self._connected or self._ser is None:
                return False
            try:
                self._ser.write(text.encode("ascii"))
            except _IO_ERRORS as exc:
                self._mark_disconnected("sending to", exc)
                return False
        if self.log_traffic:
            logger.debug("TX: %s", text.strip())
        return True

    def drain_once(self) -> Optional[str]:
        """Read everything available and dispatch the newest complete line."""
        with self._lock:
            if not self._connected or self._ser is None:
                return None
            try:
                waiting = self._ser.in_waiting
                chunk = self._ser.read(waiting) if waiting else b""
            except _IO_ERRORS as exc:
                self._mark_disconnected("reading from", exc)
                return None
            if not chunk:
                return None
            self._buffer.extend(chunk)
            line, self._buffer = split_latest_line(self._buffer)

        if not line:
            return None
        if self.log_traffic:
            logger.debug("RX: %s", line)
        if self.on_line is not None:
            self.on_line(line)
        return line

    # -------------------------------------------------------------------------
    # Reader thread
    # -------------------------------------------------------------------------

    @property
    def reader_running(self) -> bool:
        return self._reader_th is not None and self._reader_th.is_alive()

    def start_reader(self) -> None:
        if self.reader_running:
            return
        self._stop.clear()
        self._reader_th = threading.Thread(target=self._reader_loop, name="pen-serial-reader", daemon=True)
        self._reader_th.start()

    def stop_reader(self, timeout_s: float = 1.0) -> None:
        self._stop.set()
        if self._reader_th is not None and self._reader_th.is_alive():
            self._reader_th.join(timeout=timeout_s)
        self._reader_th = None

    def _reader_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.drain_once()
            except Exception:
                # The line callback must never take the reader down.
                logger.exception("Unhandled error while processing telemetry")
            self._stop.wait(self.poll_interval_s)

    def shutdown(self) -> None:
        self.stop_reader()
        self.close()
