"""Tests for the serial transport.

A fake port stands in for pyserial's Serial object.
"""

from __future__ import annotations

import time

import pytest

from hpen_app.device.serial_link import SerialTransport, split_latest_line


class FakePort:
    def __init__(self) -> None:
        self.incoming = bytearray()
        self.written: list[bytes] = []
        self.closed = False
        self.fail_write = False
        self.fail_read = False

    @property
    def in_waiting(self) -> int:
        if self.fail_read:
            raise OSError("device unplugged")
        return len(self.incoming)

    def read(self, size: int) -> bytes:
        data, self.incoming = bytes(self.incoming[:size]), self.incoming[size:]
        return data

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise OSError("write failed")
        self.written.append(data)
        return len(data)

    def close(self) -> None:
        self.closed = True


class PortFactory:
    """Hands out fresh FakePorts and can be made to fail."""

    def __init__(self) -> None:
        self.ports: list[FakePort] = []
        self.fail = False

    def __call__(self, port: str, baud_rate: int, timeout_s: float) -> FakePort:
        if self.fail:
            raise OSError(f"could not open port {port}")
        p = FakePort()
        self.ports.append(p)
        return p

    @property
    def last(self) -> FakePort:
        return self.ports[-1]


@pytest.fixture
def factory() -> PortFactory:
    return PortFactory()


@pytest.fixture
def transport(factory: PortFactory) -> SerialTransport:
    t = SerialTransport("COM_TEST", port_factory=factory, poll_interval_s=0.001)
    assert t.connect()
    yield t
    t.shutdown()


# ============================================================================
# split_latest_line Tests
# ============================================================================


class TestSplitLatestLine:
    """Tests for extracting the newest complete line."""

    def test_no_complete_line(self) -> None:
        line, rest = split_latest_line(bytearray(b"P1|E"))
        assert line is None
        assert rest == bytearray(b"P1|E")

    def test_keeps_only_newest_line(self) -> None:
        line, rest = split_latest_line(bytearray(b"P1\nP2\nP3\nP4|E"))
        assert line == "P3"
        assert rest == bytearray(b"P4|E")

    def test_strips_carriage_return(self) -> None:
        line, rest = split_latest_line(bytearray(b"P1\r\n"))
        assert line == "P1"
        assert rest == bytearray()

    @pytest.mark.parametrize("data", [b"P10|E5\n\n", b"P10|E5\r\n\n", b"P10|E5\n \r\n"])
    def test_skips_trailing_blank_lines(self, data: bytes) -> None:
        line, rest = split_latest_line(bytearray(data))
        assert line == "P10|E5"
        assert rest == bytearray()

    def test_only_blank_lines(self) -> None:
        line, rest = split_latest_line(bytearray(b"\n\r\nP4"))
        assert line is None
        assert rest == bytearray(b"P4")


# ============================================================================
# SerialTransport Tests
# ============================================================================


class TestSerialTransport:
    """Tests for connection handling and I/O on SerialTransport."""

    def test_connect_failure_is_logged_not_raised(self, factory: PortFactory, caplog) -> None:
        factory.fail = True
        t = SerialTransport("COM_MISSING", port_factory=factory)
        assert t.connect() is False
        assert t.is_connected is False
        assert "COM_MISSING" in caplog.text

    def test_write_encodes_ascii(self, transport: SerialTransport, factory: PortFactory) -> None:
        assert transport.write("M52.3\n") is True
        assert factory.last.written == [b"M52.3\n"]

    def test_write_while_disconnected_is_skipped(self, factory: PortFactory) -> None:
        t = SerialTransport("COM_TEST", port_factory=factory)
        assert t.write("TEST\n") is False

    def test_write_error_marks_disconnected(self, transport: SerialTransport, factory: PortFactory) -> None:
        factory.last.fail_write = True
        assert transport.write("M1.0\n") is False
        assert transport.is_connected is False
        assert transport.write("M1.0\n") is False

    def test_drain_dispatches_latest_line_only(self, transport: SerialTransport, factory: PortFactory) -> None:
        received: list[str] = []
        transport.on_line = received.append
        factory.last.incoming.extend(b"P1\nP2\nP3\n")
        assert transport.drain_once() == "P3"
        assert received == ["P3"]

    def test_drain_skips_trailing_blank_line(self, transport: SerialTransport, factory: PortFactory) -> None:
        received: list[str] = []
        transport.on_line = received.append
        factory.last.incoming.extend(b"P10|E5\n\n")
        assert transport.drain_once() == "P10|E5"
        assert received == ["P10|E5"]

    def test_partial_line_completes_on_next_drain(self, transport: SerialTransport, factory: PortFactory) -> None:
        received: list[str] = []
        transport.on_line = received.append
        factory.last.incoming.extend(b"P1|E")
        assert transport.drain_once() is None
        factory.last.incoming.extend(b"5\n")
        assert transport.drain_once() == "P1|E5"
        assert received == ["P1|E5"]

    def test_read_error_marks_disconnected(self, transport: SerialTransport, factory: PortFactory) -> None:
        factory.last.fail_read = True
        assert transport.drain_once() is None
        assert transport.is_connected is False

    def test_reconnect_opens_new_port(self, transport: SerialTransport, factory: PortFactory) -> None:
        first = factory.last
        first.fail_write = True
        transport.write("M1.0\n")
        assert transport.reconnect() is True
        assert first.closed is True
        assert factory.last is not first
        assert transport.write("M2.0\n") is True
        assert factory.last.written == [b"M2.0\n"]

    def test_reader_thread_delivers_lines(self, transport: SerialTransport, factory: PortFactory) -> None:
        received: list[str] = []
        transport.on_line = received.append
        transport.start_reader()
        assert transport.reader_running
        factory.last.incoming.extend(b"P9|B1\n")
        deadline = time.monotonic() + 2.0
        while not received and time.monotonic() < deadline:
            time.sleep(0.005)
        transport.stop_reader()
        assert received == ["P9|B1"]
        assert not transport.reader_running

    def test_reader_survives_callback_errors(self, transport: SerialTransport, factory: PortFactory) -> None:
        calls: list[str] = []

        def on_line(line: str) -> None:
            calls.append(line)
            if len(calls) == 1:
                raise RuntimeError("boom")

        transport.on_line = on_line
        transport.start_reader()
        factory.last.incoming.extend(b"P1\n")
        deadline = time.monotonic() + 2.0
        while not calls and time.monotonic() < deadline:
            time.sleep(0.005)
        factory.last.incoming.extend(b"P2\n")
        deadline = time.monotonic() + 2.0
        while len(calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.005)
        transport.stop_reader()
        assert calls == ["P1", "P2"]
