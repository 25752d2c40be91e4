"""Interactive passthrough to the device's serial console."""

from __future__ import annotations

import logging
import sys
import threading

import blessed
import serial

from ..connection import open_serial
from ..device import FindTangaraError
from .finder import find_device

log = logging.getLogger(__name__)

_NAMED_KEYS = {
    "KEY_ENTER": b"\n",
    "KEY_LEFT": b"\x1b[D",
    "KEY_RIGHT": b"\x1b[C",
    "KEY_UP": b"\x1b[A",
    "KEY_DOWN": b"\x1b[B",
    "KEY_END": b"\x1b[F",
    "KEY_HOME": b"\x1b[H",
    "KEY_TAB": b"\t",
    "KEY_DELETE": b"\x1b[3~",
    "KEY_BACKSPACE": b"\x08",
}

_CHAR_KEYS = {
    "\r": b"\n",
    "\n": b"\n",
    "\x7f": b"\x08",
    "\x08": b"\x08",
}


class ConsoleError(Exception):
    """The console session could not be started or broke down."""


def key_bytes(key) -> bytes | None:
    """The bytes to send to the device for a key press, or None to ignore it."""
    name = getattr(key, "name", None)
    if name in _NAMED_KEYS:
        return _NAMED_KEYS[name]
    if getattr(key, "is_sequence", False):
        log.debug("unknown key: %r", name)
        return None

    text = str(key)
    if not text:
        return None
    return _CHAR_KEYS.get(text, text.encode("utf-8"))


def run_rx(port, out) -> None:
    """Copy everything the device sends to ``out`` until the port closes."""
    while True:
        data = port.read(1)
        if not data:
            if not getattr(port, "is_open", True):
                return
            continue
        out.write(data)
        out.flush()


def _reader(port) -> None:
    try:
        run_rx(port, sys.stdout.buffer)
    except (OSError, serial.SerialException) as error:
        if getattr(port, "is_open", False):
            print(f"reader error! {error!r}", file=sys.stderr)


def run() -> int:
    """Attach the terminal to the device console until input ends."""
    term = blessed.Terminal(stream=sys.stdout)

    try:
        found = find_device(term)
    except FindTangaraError as error:
        raise ConsoleError(str(error)) from error

    try:
        port = open_serial(found.params.port_name)
    except serial.SerialException as error:
        raise ConsoleError(str(error)) from error

    try:
        threading.Thread(target=_reader, args=(port,), daemon=True).start()

        # blank line to bring up a prompt
        port.write(b"\n")

        with term.cbreak():
            while True:
                key = term.inkey()
                if not key:
                    break
                data = key_bytes(key)
                if data is not None:
                    port.write(data)
    except OSError as error:
        raise ConsoleError(f"io error: {error}") from error
    finally:
        port.close()

    return 0