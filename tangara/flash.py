"""Writing firmware images to a Tangara through the ESP serial bootloader."""

from __future__ import annotations

import logging
import queue
import struct
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, Union

import serial

from .firmware import Firmware, Image

if TYPE_CHECKING:
    from .device import ConnectionParams

log = logging.getLogger(__name__)

BAUD_RATE = 1000000
PROGRESS_CAPACITY = 32

_ROM_BAUD_RATE = 115200
_READ_TIMEOUT = 0.05
_BLOCK_SIZE = 0x400
_CONNECT_ATTEMPTS = 3
_SYNC_TRIES = 5
_SYNC_TIMEOUT = 0.1
_COMMAND_TIMEOUT = 3.0
_ERASE_TIMEOUT_PER_MB = 30.0
_MAX_STRAY_FRAMES = 100

_FLASH_BEGIN = 0x02
_FLASH_DATA = 0x03
_FLASH_END = 0x04
_SYNC = 0x08
_SPI_ATTACH = 0x0D
_CHANGE_BAUDRATE = 0x0F

_SYNC_PAYLOAD = b"\x07\x07\x12\x20" + b"\x55" * 32
_CHECKSUM_SEED = 0xEF
_SLIP_END = 0xC0
_SLIP_ESC = 0xDB
_SLIP_ESC_END = 0xDC
_SLIP_ESC_ESC = 0xDD


@dataclass(frozen=True)
class StartingFlash:
    """Flashing has begun."""


@dataclass(frozen=True)
class ImageStarted:
    """Writing of the named image has begun."""

    name: str


@dataclass(frozen=True)
class Progress:
    """``written`` of ``total`` blocks of the current image are written."""

    written: int
    total: int


FlashStatus = Union[StartingFlash, ImageStarted, Progress]


class FlashError(Exception):
    """Flashing the device failed."""


def _offer(sink: queue.Queue, status: FlashStatus) -> None:
    # dropping a progress message is harmless
    try:
        sink.put_nowait(status)
    except queue.Full:
        pass


@dataclass
class ProgressReporter:
    """Turns bootloader write progress into status messages for one image."""

    image: str
    sink: queue.Queue
    total: int = 0

    def init(self, total: int) -> None:
        self.total = total
        _offer(self.sink, ImageStarted(self.image))

    def update(self, current: int) -> None:
        _offer(self.sink, Progress(current, self.total))

    def finish(self) -> None:
        _offer(self.sink, Progress(self.total, self.total))


@dataclass
class Flash:
    """The caller's side of a flash: its progress messages and final result."""

    progress: queue.Queue
    result: Future

    def __iter__(self) -> Iterator[FlashStatus]:
        """Yield status messages until the flash has finished."""
        while True:
            done = self.result.done()
            try:
                yield self.progress.get(block=not done, timeout=None if done else 0.1)
            except queue.Empty:
                if done:
                    return


def _open_port(port_name: str) -> serial.Serial:
    return serial.Serial(port=port_name, baudrate=_ROM_BAUD_RATE, timeout=_READ_TIMEOUT)


@dataclass
class FlashTask:
    """The worker's side of a flash; ``run`` blocks until it is done."""

    params: "ConnectionParams"
    firmware: Firmware
    progress: queue.Queue
    result: Future
    open_port: Callable[[str], object] = field(default=_open_port)

    def run(self) -> None:
        """Flash every image, then publish the outcome on ``result``."""
        try:
            _offer(self.progress, StartingFlash())
            for image in self.firmware.images:
                self._flash_image(image)
        except Exception as error:
            self.result.set_exception(error)
        else:
            self.result.set_result(None)

    def _flash_image(self, image: Image) -> None:
        try:
            port = self.open_port(self.params.port_name)
        except (OSError, ValueError) as error:
            raise FlashError(f"opening usb serial interface: {error}") from error

        try:
            loader = _RomLoader(port)
            try:
                loader.connect(BAUD_RATE)
            except (OSError, _LoaderError) as error:
                raise FlashError(f"connecting to device: {error}") from error

            reporter = ProgressReporter(image.name, self.progress)
            try:
                loader.write_bin(image.addr, image.data, reporter)
                loader.hard_reset()
            except (OSError, _LoaderError) as error:
                raise FlashError(f"writing image: {image.name}: {error}") from error
        finally:
            port.close()


def setup(params: "ConnectionParams", firmware: Firmware) -> tuple[Flash, FlashTask]:
    """Prepare a flash of ``firmware`` to the device at ``params``."""
    progress: queue.Queue = queue.Queue(maxsize=PROGRESS_CAPACITY)
    result: Future = Future()
    return Flash(progress, result), FlashTask(params, firmware, progress, result)


class _LoaderError(Exception):
    pass


def _slip_encode(packet: bytes) -> bytes:
    body = packet.replace(b"\xdb", b"\xdb\xdd").replace(b"\xc0", b"\xdb\xdc")
    return b"\xc0" + body + b"\xc0"


def _checksum(data: bytes) -> int:
    value = _CHECKSUM_SEED
    for byte in data:
        value ^= byte
    return value


def _blocks(data: bytes) -> Iterator[bytes]:
    for start in range(0, len(data), _BLOCK_SIZE):
        yield data[start:start + _BLOCK_SIZE].ljust(_BLOCK_SIZE, b"\xff")


class _RomLoader:
    """Minimal client for the ESP32 ROM serial bootloader."""

    def __init__(self, port):
        self._port = port

    def connect(self, baud_rate: int) -> None:
        for _ in range(_CONNECT_ATTEMPTS):
            self._reset_into_bootloader()
            if self._sync():
                break
        else:
            raise _LoaderError("unable to sync with the bootloader")

        self._command(_SPI_ATTACH, struct.pack("<II", 0, 0))
        self._command(_CHANGE_BAUDRATE, struct.pack("<II", baud_rate, 0))
        self._port.baudrate = baud_rate
        time.sleep(0.05)
        self._port.reset_input_buffer()

    def write_bin(self, addr: int, data: bytes, reporter: ProgressReporter) -> None:
        blocks = -(-len(data) // _BLOCK_SIZE)
        erase_timeout = max(_COMMAND_TIMEOUT, _ERASE_TIMEOUT_PER_MB * len(data) / 1e6)
        self._command(
            _FLASH_BEGIN,
            struct.pack("<IIII", len(data), blocks, _BLOCK_SIZE, addr),
            timeout=erase_timeout,
        )

        reporter.init(blocks)
        for sequence, block in enumerate(_blocks(data)):
            header = struct.pack("<IIII", len(block), sequence, 0, 0)
            self._command(_FLASH_DATA, header + block, checksum=_checksum(block))
            reporter.update(sequence + 1)

        self._command(_FLASH_END, struct.pack("<I", 1))
        reporter.finish()

    def hard_reset(self) -> None:
        self._port.rts = True
        time.sleep(0.1)
        self._port.rts = False

    def _reset_into_bootloader(self) -> None:
        self._port.dtr = False
        self._port.rts = True
        time.sleep(0.1)
        self._port.dtr = True
        self._port.rts = False
        time.sleep(0.05)
        self._port.dtr = False

    def _sync(self) -> bool:
        self._port.reset_input_buffer()
        for _ in range(_SYNC_TRIES):
            try:
                self._command(_SYNC, _SYNC_PAYLOAD, timeout=_SYNC_TIMEOUT)
            except (TimeoutError, _LoaderError):
                continue
            # the ROM answers a successful sync several times over
            time.sleep(0.05)
            self._port.reset_input_buffer()
            return True
        return False

    def _command(self, op: int, data: bytes = b"", checksum: int = 0,
                 timeout: float = _COMMAND_TIMEOUT) -> tuple[int, bytes]:
        packet = struct.pack("<BBHI", 0, op, len(data), checksum) + data
        self._port.write(_slip_encode(packet))
        self._port.flush()

        for _ in range(_MAX_STRAY_FRAMES):
            frame = self._read_frame(timeout)
            if len(frame) < 8:
                continue
            direction, response_op, size, value = struct.unpack_from("<BBHI", frame)
            if direction != 1 or response_op != op:
                continue
            body = frame[8:8 + size]
            status = body[-4:] if len(body) >= 4 else body
            if len(status) >= 2 and status[0] != 0:
                raise _LoaderError(f"command {op:#04x} failed with error {status[1]:#04x}")
            return value, body
        raise _LoaderError(f"no response to command {op:#04x}")

    def _read_frame(self, timeout: float) -> bytes:
        deadline = time.monotonic() + timeout
        frame: bytearray | None = None
        escaped = False
        while time.monotonic() < deadline:
            chunk = self._port.read(1)
            if not chunk:
                continue
            byte = chunk[0]
            if frame is None:
                if byte == _SLIP_END:
                    frame = bytearray()
            elif escaped:
                escaped = False
                frame.append({_SLIP_ESC_END: _SLIP_END, _SLIP_ESC_ESC: _SLIP_ESC}.get(byte, byte))
            elif byte == _SLIP_ESC:
                escaped = True
            elif byte == _SLIP_END:
                if frame:
                    return bytes(frame)
            else:
                frame.append(byte)
        raise TimeoutError("timed out waiting for the bootloader")