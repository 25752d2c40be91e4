"""The command that writes a firmware archive to the device."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import blessed
from tqdm import tqdm

from ..device import FindTangaraError
from ..firmware import Firmware, FirmwareOpenError
from ..flash import FlashError, ImageStarted, Progress, setup
from .finder import FoundDevice, find_device
from .prompt import confirm


class FlashCommandError(Exception):
    """Flashing from the command line failed."""


def flash(term, firmware_path: str | Path, device: FoundDevice) -> int:
    """Confirm with the user and flash ``firmware_path``; return an exit code."""
    try:
        firmware = Firmware.open(firmware_path)
    except FirmwareOpenError as error:
        raise FlashCommandError(f"opening firmware: {error}") from error

    term.stream.write(f"Flash version {term.bold(firmware.version)} to device? [y/n] ")
    term.stream.flush()

    if not confirm(term):
        return 1

    handle, task = setup(device.params, firmware)
    worker = threading.Thread(target=task.run, daemon=True)
    worker.start()

    with tqdm(total=1, desc="Starting flash", leave=False, file=term.stream) as bar:
        for status in handle:
            if isinstance(status, ImageStarted):
                bar.set_description(status.name)
                bar.reset(total=1)
            elif isinstance(status, Progress):
                bar.total = status.total
                bar.n = status.written
                bar.refresh()

    worker.join()

    try:
        handle.result.result()
    except FlashError as error:
        raise FlashCommandError(str(error)) from error

    print(term.green("Flash success!"), file=term.stream, flush=True)
    return 0


def run(image: str | Path) -> int:
    """Find the device and flash ``image`` to it."""
    term = blessed.Terminal(stream=sys.stdout)
    try:
        found = find_device(term)
        return flash(term, image, found)
    except FindTangaraError as error:
        raise FlashCommandError(str(error)) from error
    except OSError:
        return 1