import io
from unittest import mock

import pytest
from blessed.keyboard import Keystroke

from tangara.cli.console import ConsoleError, key_bytes, run, run_rx


@pytest.mark.parametrize("name, expected", [
    ("KEY_LEFT", b"\x1b[D"),
    ("KEY_RIGHT", b"\x1b[C"),
    ("KEY_UP", b"\x1b[A"),
    ("KEY_DOWN", b"\x1b[B"),
    ("KEY_END", b"\x1b[F"),
    ("KEY_HOME", b"\x1b[H"),
    ("KEY_DELETE", b"\x1b[3~"),
    ("KEY_BACKSPACE", b"\x08"),
    ("KEY_ENTER", b"\n"),
])
def test_named_keys(name, expected):
    assert key_bytes(Keystroke("\x1b[Z", code=1, name=name)) == expected


def test_plain_characters_are_utf8():
    assert key_bytes(Keystroke("a")) == b"a"
    assert key_bytes(Keystroke("é")) == "é".encode("utf-8")


def test_carriage_return_sends_newline():
    assert key_bytes(Keystroke("\r")) == b"\n"


def test_unknown_sequence_is_ignored():
    assert key_bytes(Keystroke("\x1bOP", code=2, name="KEY_F1")) is None
    assert key_bytes(Keystroke("")) is None


class ChunkPort:
    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.is_open = True

    def read(self, size=1):
        if self.chunks:
            return self.chunks.pop(0)
        self.is_open = False
        return b""


def test_run_rx_copies_until_closed():
    port = ChunkPort([b"h", b"", b"i", b"\n"])
    out = io.BytesIO()
    run_rx(port, out)
    assert out.getvalue() == b"hi\n"


def test_run_rx_propagates_errors():
    class BrokenPort:
        is_open = True

        def read(self, size=1):
            raise OSError("unplugged")

    with pytest.raises(OSError, match="unplugged"):
        run_rx(BrokenPort(), io.BytesIO())


def test_run_without_device():
    with mock.patch("serial.tools.list_ports.comports", return_value=[]), \
            mock.patch("os.scandir", side_effect=FileNotFoundError()):
        with pytest.raises(ConsoleError, match="Can't find Tangara"):
            run()