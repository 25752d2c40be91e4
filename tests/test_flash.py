import queue
import struct

import pytest
import serial

from tangara.device import ConnectionParams, UsbInfo
from tangara.firmware import Firmware, Image
from tangara.flash import (
    BAUD_RATE,
    FlashError,
    ImageStarted,
    Progress,
    ProgressReporter,
    StartingFlash,
    setup,
)

OP_FLASH_BEGIN = 0x02
OP_FLASH_DATA = 0x03


def _slip(packet):
    return b"\xc0" + packet.replace(b"\xdb", b"\xdb\xdd").replace(b"\xc0", b"\xdb\xdc") + b"\xc0"


class FakeRom:
    """A serial port that answers like the ESP ROM bootloader."""

    def __init__(self, fail_op=None):
        self.fail_op = fail_op
        self.commands = []
        self.dtr = False
        self.rts = False
        self.baudrate = 115200
        self.closed = False
        self._in = bytearray()
        self._pending = bytearray()

    def write(self, data):
        self._pending.extend(data)
        while True:
            start = self._pending.find(0xC0)
            end = self._pending.find(0xC0, start + 1) if start >= 0 else -1
            if end < 0:
                break
            raw = bytes(self._pending[start + 1:end])
            del self._pending[:end + 1]
            if not raw:
                continue
            packet = raw.replace(b"\xdb\xdc", b"\xc0").replace(b"\xdb\xdd", b"\xdb")
            _, op, size, _ = struct.unpack_from("<BBHI", packet)
            self.commands.append((op, packet[8:8 + size]))
            status = b"\x01\x05\x00\x00" if op == self.fail_op else b"\x00" * 4
            self._in.extend(_slip(struct.pack("<BBHI", 1, op, len(status), 0) + status))
        return len(data)

    def read(self, size=1):
        data = bytes(self._in[:size])
        del self._in[:size]
        return data

    def reset_input_buffer(self):
        self._in.clear()

    def flush(self):
        pass

    def close(self):
        self.closed = True


def _params():
    return ConnectionParams("/dev/ttyACM0", UsbInfo(4617, 8212))


def _firmware(data):
    return Firmware("fw.tra", "1.2.3", [Image("app.bin", 0x10000, data)])


def test_progress_reporter_messages():
    sink = queue.Queue()
    reporter = ProgressReporter("app.bin", sink)
    reporter.init(10)
    reporter.update(3)
    reporter.finish()
    messages = [sink.get_nowait() for _ in range(3)]
    assert messages == [ImageStarted("app.bin"), Progress(3, 10), Progress(10, 10)]
    assert sink.empty()


def test_progress_reporter_drops_when_full():
    sink = queue.Queue(maxsize=1)
    reporter = ProgressReporter("a", sink)
    reporter.init(4)
    reporter.update(1)
    assert sink.qsize() == 1
    assert sink.get_nowait() == ImageStarted("a")


def test_open_failure_reports_flash_error():
    flash, task = setup(_params(), _firmware(b"\x01\x02"))

    def refuse(name):
        raise serial.SerialException("no such port")

    task.open_port = refuse
    task.run()

    assert list(flash) == [StartingFlash()]
    error = flash.result.exception()
    assert isinstance(error, FlashError)
    assert str(error) == "opening usb serial interface: no such port"


def test_flash_writes_image_blocks():
    data = bytes(range(256)) * 6
    rom = FakeRom()
    flash, task = setup(_params(), _firmware(data))
    task.open_port = lambda name: rom
    task.run()

    assert flash.result.result() is None
    assert rom.closed
    assert rom.baudrate == BAUD_RATE

    begin = next(body for op, body in rom.commands if op == OP_FLASH_BEGIN)
    erase_size, blocks, block_size, offset = struct.unpack("<IIII", begin)
    assert offset == 0x10000
    assert erase_size == len(data)

    writes = [body for op, body in rom.commands if op == OP_FLASH_DATA]
    assert len(writes) == blocks
    sequences = [struct.unpack_from("<IIII", body)[1] for body in writes]
    assert sequences == list(range(blocks))
    written = b"".join(body[16:] for body in writes)
    assert len(written) == blocks * block_size
    assert written[:len(data)] == data
    assert set(written[len(data):]) <= {0xFF}

    statuses = list(flash)
    assert statuses[:2] == [StartingFlash(), ImageStarted("app.bin")]
    progress = statuses[2:]
    assert all(isinstance(status, Progress) and status.total == blocks for status in progress)
    assert progress[-1].written == blocks


def test_flash_write_failure():
    rom = FakeRom(fail_op=OP_FLASH_DATA)
    flash, task = setup(_params(), _firmware(b"\xaa" * 100))
    task.open_port = lambda name: rom
    task.run()

    error = flash.result.exception()
    assert isinstance(error, FlashError)
    assert str(error).startswith("writing image: app.bin: ")
    assert rom.closed


def test_iterating_finished_flash_drains_queue():
    flash, task = setup(_params(), Firmware("fw.tra", "1.0.0", []))
    task.run()
    assert list(flash) == [StartingFlash()]
    assert flash.result.result() is None


@pytest.mark.parametrize("size", [1, 1024, 1025])
def test_block_count_covers_image(size):
    rom = FakeRom()
    data = b"\x5a" * size
    flash, task = setup(_params(), _firmware(data))
    task.open_port = lambda name: rom
    task.run()
    writes = [body[16:] for op, body in rom.commands if op == OP_FLASH_DATA]
    joined = b"".join(writes)
    assert joined.startswith(data)
    assert len(joined) - len(data) < len(writes[0])