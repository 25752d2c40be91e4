"""Reading Tangara firmware archives (``.tra`` files)."""

from __future__ import annotations

import json
import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 32 * 1024 * 1024
MANIFEST_NAME = "tangaraflash.json"

_U32_MAX = 2**32 - 1


class FirmwareOpenError(Exception):
    """A firmware archive could not be opened or is not valid."""


class ReadImageError(Exception):
    """An image inside a firmware archive could not be read."""


@dataclass(frozen=True)
class Image:
    """One flashable image: its name, flash address and contents."""

    name: str
    addr: int
    data: bytes


class Firmware:
    """A firmware archive whose manifest and images have been loaded."""

    def __init__(self, path: str | Path, version: str, images: list[Image] | tuple[Image, ...]):
        self.path = Path(path)
        self._version = version
        self.images = tuple(images)

    def __repr__(self) -> str:
        return f"Firmware(path={str(self.path)!r}, version={self._version!r}, images={len(self.images)})"

    @property
    def version(self) -> str:
        """The firmware version named in the manifest."""
        return self._version

    @classmethod
    def open(cls, path: str | Path) -> "Firmware":
        """Open an archive, validate its manifest and read every image."""
        path = Path(path)
        try:
            handle = path.open("rb")
        except OSError as error:
            raise FirmwareOpenError(f"Unable to open firmware archive: {error}") from error

        with handle:
            try:
                archive = zipfile.ZipFile(handle)
            except (zipfile.BadZipFile, OSError) as error:
                raise FirmwareOpenError(f"Unreadable firmware archive: {error}") from error

            with archive:
                version, entries = _read_manifest(archive)
                images = [_read_image(archive, name, addr) for name, addr in entries]

        return cls(path, version, images)


class _ManifestFormatError(ValueError):
    pass


def _require_uint(value: Any, field: str, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise _ManifestFormatError(f"`{field}` must be a non-negative integer")
    if maximum is not None and value > maximum:
        raise _ManifestFormatError(f"`{field}` out of range")
    return value


def _require_str(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise _ManifestFormatError(f"`{field}` must be a string")
    return value


def _require_field(document: dict, field: str) -> Any:
    if field not in document:
        raise _ManifestFormatError(f"missing field `{field}`")
    return document[field]


def _require_object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise _ManifestFormatError(f"{what} must be an object")
    return value


def _read_manifest(archive: zipfile.ZipFile) -> tuple[str, list[tuple[str, int]]]:
    try:
        info = archive.getinfo(MANIFEST_NAME)
    except KeyError:
        raise FirmwareOpenError("No manifest found in firmware archive") from None

    try:
        text = archive.read(info).decode("utf-8")
    except (zipfile.BadZipFile, OSError, EOFError, zlib.error, UnicodeDecodeError,
            NotImplementedError, RuntimeError) as error:
        raise FirmwareOpenError(f"Can't read firmware manifest: {error}") from error

    try:
        document = _require_object(json.loads(text), "manifest")
        manifest_version = _require_uint(_require_field(document, "version"), "version")
        data = _require_field(document, "data")
    except ValueError as error:
        raise FirmwareOpenError(f"Can't parse firmware manifest: {error}") from error

    if manifest_version > 0:
        raise FirmwareOpenError(
            "Firmware archive newer than this version of Tangara Flasher supports"
        )

    try:
        return _parse_manifest_v0(data)
    except ValueError as error:
        raise FirmwareOpenError(f"Can't parse firmware manifest: {error}") from error


def _parse_manifest_v0(data: Any) -> tuple[str, list[tuple[str, int]]]:
    data = _require_object(data, "`data`")
    firmware = _require_object(_require_field(data, "firmware"), "`firmware`")
    version = _require_str(_require_field(firmware, "version"), "version")
    images = _require_field(firmware, "images")
    if not isinstance(images, list):
        raise _ManifestFormatError("`images` must be a list")

    entries = []
    for image in images:
        image = _require_object(image, "image")
        addr = _require_uint(_require_field(image, "addr"), "addr", _U32_MAX)
        name = _require_str(_require_field(image, "name"), "name")
        entries.append((name, addr))
    return version, entries


def _read_image(archive: zipfile.ZipFile, name: str, addr: int) -> Image:
    try:
        data = _read_image_data(archive, name)
    except ReadImageError as error:
        raise FirmwareOpenError(f"Reading image: {name}: {error}") from error

    log.debug("image %s @ %#x, %d bytes", name, addr, len(data))
    return Image(name=name, addr=addr, data=data)


def _read_image_data(archive: zipfile.ZipFile, name: str) -> bytes:
    try:
        info = archive.getinfo(name)
    except KeyError:
        raise ReadImageError("archive error: specified file not found in archive") from None

    if info.file_size >= MAX_IMAGE_SIZE:
        raise ReadImageError(f"image too large: {info.file_size} bytes")

    try:
        with archive.open(info) as member:
            data = member.read()
    except zipfile.BadZipFile as error:
        if "CRC" in str(error):
            raise ReadImageError(
                f"Checksum error: stored checksum {info.CRC:X} does not match image data"
            ) from error
        raise ReadImageError(f"archive error: {error}") from error
    except (OSError, EOFError, zlib.error, NotImplementedError, RuntimeError) as error:
        raise ReadImageError(f"I/O error: {error}") from error

    if len(data) != info.file_size:
        raise ReadImageError("I/O error: unexpected end of image data")

    return data