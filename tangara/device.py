"""Locating a connected Tangara and opening a connection to it."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from serial.tools import list_ports

from . import flash as _flash
from .connection import Connection
from .firmware import Firmware

log = logging.getLogger(__name__)

USB_VID = 4617  # cool tech zone
USB_PID = 8212  # Tangara

SERIAL_BY_ID_DIR = "/dev/serial/by-id"
_BY_ID_PREFIX = "usb-cool_tech_zone_Tangara_"


@dataclass(frozen=True)
class UsbInfo:
    """USB identification of a serial port."""

    vid: int
    pid: int
    serial_number: str | None = None
    manufacturer: str | None = None
    product: str | None = None


@dataclass(frozen=True)
class ConnectionParams:
    """Where a Tangara can be reached: its serial port and USB details."""

    port_name: str
    usb: UsbInfo


class FindTangaraError(Exception):
    """No Tangara could be found."""

    def __init__(self, message: str = "Can't find Tangara, make sure it's plugged in and turned on"):
        super().__init__(message)


def find_serialport() -> ConnectionParams | None:
    """Find a Tangara among the serial ports the system enumerates."""
    for port in list_ports.comports():
        if port.vid == USB_VID and port.pid == USB_PID:
            usb = UsbInfo(
                vid=port.vid,
                pid=port.pid,
                serial_number=port.serial_number,
                manufacturer=port.manufacturer,
                product=port.product,
            )
            return ConnectionParams(port_name=port.device, usb=usb)
    return None


def find_devtmpfs(directory: str | Path = SERIAL_BY_ID_DIR) -> ConnectionParams | None:
    """Find a Tangara by its by-id symlink, for sandboxes without udev."""
    with os.scandir(directory) as entries:
        candidates = sorted(entries, key=lambda entry: entry.name)

    for entry in candidates:
        if not entry.name.startswith(_BY_ID_PREFIX):
            continue
        path = Path(entry.path).resolve(strict=True)
        return ConnectionParams(port_name=str(path), usb=UsbInfo(vid=USB_VID, pid=USB_PID))
    return None


def find() -> ConnectionParams:
    """Locate a connected Tangara, raising FindTangaraError if there is none."""
    try:
        params = find_serialport()
    except OSError as error:
        log.error("error enumerating serial ports: %s", error)
    else:
        if params is not None:
            return params

    if sys.platform.startswith("linux"):
        try:
            params = find_devtmpfs(SERIAL_BY_ID_DIR)
        except FileNotFoundError:
            pass
        except OSError as error:
            log.error("error enumerating %s: %s", SERIAL_BY_ID_DIR, error)
        else:
            if params is not None:
                return params

    raise FindTangaraError()


class Tangara:
    """An opened Tangara: its console connection and where it lives."""

    def __init__(self, connection: Connection, params: ConnectionParams):
        self.connection = connection
        self.params = params

    def __repr__(self) -> str:
        return f"Tangara(port_name={self.params.port_name!r})"

    @classmethod
    def open(cls, params: ConnectionParams) -> "Tangara":
        """Open the console connection described by ``params``."""
        return cls(Connection.open(params.port_name), params)

    @property
    def serial_port_name(self) -> str:
        """Name of the serial port the device is attached to."""
        return self.params.port_name

    @property
    def usb_port(self) -> UsbInfo:
        """USB details of the device's port."""
        return self.params.usb

    def setup_flash(self, firmware: Firmware) -> tuple[_flash.Flash, _flash.FlashTask]:
        """Disconnect the console and prepare a flash of ``firmware``."""
        self.connection.disconnect()
        return _flash.setup(self.params, firmware)