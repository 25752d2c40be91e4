"""Finding the connected device and reporting what firmware it runs."""

from __future__ import annotations

from dataclasses import dataclass

import semver

from .. import device
from ..connection import LuaError, OpenError
from ..device import ConnectionParams, Tangara


@dataclass(frozen=True)
class FoundDevice:
    """A located device and its firmware version, if it could be read."""

    params: ConnectionParams
    version: semver.Version | None


class VersionError(Exception):
    """The device's firmware version could not be determined."""


def _line(term, text: str) -> None:
    print(text, file=term.stream, flush=True)


def tangara_version(params: ConnectionParams) -> semver.Version:
    """Connect to the device and read its firmware version."""
    try:
        tangara = Tangara.open(params)
    except OpenError as error:
        raise VersionError(str(error)) from error

    try:
        text = tangara.connection.firmware_version()
    except LuaError as error:
        raise VersionError(str(error)) from error
    finally:
        tangara.connection.disconnect()

    try:
        return semver.Version.parse(text)
    except ValueError as error:
        raise VersionError(f"parsing device firmware version: {error}") from error


def find_device(term) -> FoundDevice:
    """Locate the device, report it on ``term`` and read its version."""
    params = device.find()
    port = term.green(params.port_name)

    try:
        version = tangara_version(params)
    except VersionError as error:
        _line(term, f"Found Tangara at {port}, cannot retrieve current firmware "
                    f"information: {term.yellow(str(error))}")
        return FoundDevice(params=params, version=None)

    _line(term, f"Found Tangara at {port}, current firmware version {term.bold(str(version))}")
    return FoundDevice(params=params, version=version)