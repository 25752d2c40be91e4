"""Serial console connection to a Tangara and the line protocol it speaks."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

import serial

log = logging.getLogger(__name__)

CONSOLE_BAUD_RATE = 115200
CONSOLE_TIMEOUT = 1.0
MAX_CONSOLE_BUFFER = 64 * 1024
CONSOLE_PROMPT = " → ".encode("utf-8")

_MAX_LOG_BUFFER = 1024


class OpenError(Exception):
    """The connection to the device could not be established."""


class LuaError(Exception):
    """Evaluating Lua on the device failed."""


class Disconnected(LuaError):
    """The connection to the device has been lost or closed."""

    def __init__(self, message: str = "lost connection"):
        super().__init__(message)


class SyncError(Exception):
    """The console protocol went out of step with the device."""


class UnexpectedDataError(SyncError):
    """The device sent a byte other than the one expected."""

    def __init__(self, expected: int, received: int):
        super().__init__("received unexpected data, desync")
        self.expected = expected
        self.received = received


class TooMuchOutputError(SyncError):
    """The device produced more output than the console buffer allows."""

    def __init__(self) -> None:
        super().__init__("too much output")


def open_serial(port_name: str) -> serial.Serial:
    """Open the device's console serial port with the console settings."""
    return serial.Serial(
        port=port_name,
        baudrate=CONSOLE_BAUD_RATE,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=CONSOLE_TIMEOUT,
        xonxoff=False,
        rtscts=False,
    )


def lua_command(code: str) -> str:
    """Build the console command that evaluates ``code`` and prints its value."""
    escaped = code.replace("\\", "\\\\").replace('"', '\\"')
    return f'luarun "io.stdout:write(({escaped}))"'


@contextmanager
def _io_errors() -> Iterator[None]:
    try:
        yield
    except OSError as error:
        raise SyncError(f"io error: {error}") from error


class Protocol:
    """Speaks the device's echoing line console over a serial-like port."""

    def __init__(self, port):
        self.port = port
        self._rx = bytearray()
        self._tx = bytearray()

    def sync(self) -> None:
        """Drain stale input, then send a blank line and wait for the prompt."""
        with _io_errors():
            pending = self.port.in_waiting
            if pending > 0:
                self._read_exact(pending)
                self._flush_read()
            self._write(b"\n")
            self._flush()
        self._read_until(CONSOLE_PROMPT)

    def execute_command(self, command: str) -> bytes:
        """Send one command line and return everything it printed."""
        encoded = command.encode("utf-8")
        with _io_errors():
            self._write(encoded)
            self._write(b"\n")
            self._flush()

        for byte in encoded:
            self._expect(byte)

        # the device echoes LF as CRLF
        self._expect(ord("\r"))
        self._expect(ord("\n"))

        return self._read_until(CONSOLE_PROMPT)

    def _expect(self, expected: int) -> None:
        received = self._read_byte()
        if received != expected:
            raise UnexpectedDataError(expected, received)

    def _read_until(self, delim: bytes) -> bytes:
        buffer = bytearray()
        while True:
            buffer.append(self._read_byte())
            if buffer.endswith(delim):
                self._flush_read()
                return bytes(buffer[: len(buffer) - len(delim)])
            if len(buffer) == MAX_CONSOLE_BUFFER:
                raise TooMuchOutputError()

    def _read_byte(self) -> int:
        with _io_errors():
            return self._read_exact(1)[0]

    def _read_exact(self, size: int) -> bytes:
        data = self.port.read(size)
        self._rx.extend(data)
        del self._rx[_MAX_LOG_BUFFER:]
        if len(data) < size:
            raise TimeoutError("timed out reading from serial port")
        return data

    def _write(self, data: bytes) -> None:
        self.port.write(data)
        self._tx.extend(data)
        del self._tx[_MAX_LOG_BUFFER:]

    def _flush(self) -> None:
        log.debug("serial ->TX->: %r", self._tx.decode("utf-8", "replace"))
        self._tx.clear()
        self.port.flush()

    def _flush_read(self) -> None:
        log.debug("serial <-RX<-: %r", self._rx.decode("utf-8", "replace"))
        self._rx.clear()


class Connection:
    """A thread-safe handle for running commands on a connected device."""

    def __init__(self, protocol: Protocol):
        self._protocol = protocol
        self._lock = threading.Lock()
        self._connected = True

    @classmethod
    def open(cls, port_name: str) -> "Connection":
        """Open the named serial port and synchronise with the console."""
        try:
            port = open_serial(port_name)
        except serial.SerialException as error:
            raise OpenError(f"Opening serial port: {error}") from error

        protocol = Protocol(port)
        try:
            protocol.sync()
        except SyncError as error:
            port.close()
            raise OpenError(f"syncing to console: {error}") from error

        return cls(protocol)

    def _console_command(self, command: str) -> bytes:
        with self._lock:
            if not self._connected:
                raise Disconnected()
            try:
                self._protocol.sync()
                return self._protocol.execute_command(command)
            except SyncError as error:
                log.error("error running tangara connection: %s", error)
                self._close()
                raise Disconnected() from error

    def eval_lua(self, code: str) -> str:
        """Evaluate a single-line Lua expression and return what it printed."""
        if "\n" in code:
            raise ValueError("newline in lua source code not allowed")

        result = self._console_command(lua_command(code))
        try:
            return result.decode("utf-8")
        except UnicodeDecodeError as error:
            raise LuaError("invalid utf-8 in response") from error

    def firmware_version(self) -> str:
        """The version string of the device's main firmware."""
        return self.eval_lua("require('version').esp()")

    def disconnect(self) -> None:
        """Close the port; further commands raise Disconnected."""
        with self._lock:
            if self._connected:
                self._close()

    def _close(self) -> None:
        self._connected = False
        self._protocol.port.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()