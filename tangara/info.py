"""Querying firmware and database details from a connected device."""

from __future__ import annotations

import re
from dataclasses import dataclass

_U64_PATTERN = re.compile(r"\+?[0-9]+")
_U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class FirmwareInfo:
    """Versions of the firmware components on the device."""

    version: str
    samd: str
    collation: str


@dataclass(frozen=True)
class DatabaseInfo:
    """The device's music database schema and size on disk, if known."""

    schema_version: str
    disk_size: int | None


@dataclass(frozen=True)
class Info:
    """Everything the overview shows about a device."""

    firmware: FirmwareInfo
    database: DatabaseInfo


def _parse_size(text: str) -> int | None:
    if not _U64_PATTERN.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _U64_MAX else None


def get_info(connection) -> Info:
    """Ask the device for its firmware and database details."""
    firmware = FirmwareInfo(
        version=connection.firmware_version(),
        samd=connection.eval_lua("require('version').samd()"),
        collation=connection.eval_lua("require('version').collator()"),
    )
    database = DatabaseInfo(
        schema_version=connection.eval_lua("require('database').version()"),
        disk_size=_parse_size(connection.eval_lua("require('database').size()")),
    )
    return Info(firmware=firmware, database=database)