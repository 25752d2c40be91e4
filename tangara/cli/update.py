"""The command that downloads and flashes the latest firmware release."""

from __future__ import annotations

import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import blessed
import requests
import semver
from tqdm import tqdm

from ..device import FindTangaraError
from .finder import find_device
from .flash import FlashCommandError, flash

RELEASES_URL = "https://codeberg.org/api/v1/repos/cool-tech-zone/tangara-fw/releases/latest"
_CHUNK_SIZE = 64 * 1024


class UpdateError(Exception):
    """Updating the device's firmware failed."""


@dataclass(frozen=True)
class LatestRelease:
    """The newest published firmware and where to download its archive."""

    version: semver.Version
    url: str


def _line(term, text: str) -> None:
    print(text, file=term.stream, flush=True)


def release_version(name: str) -> semver.Version:
    """Parse a release name such as ``v1.2.3`` into a version."""
    text = name[1:] if name.startswith("v") else name
    try:
        return semver.Version.parse(text)
    except ValueError as error:
        raise UpdateError(f"parsing latest release version: {error}") from error


def should_update(device_version: semver.Version | None, latest: semver.Version, force: bool) -> bool:
    """Whether to flash: the device is older, its version unknown, or forced."""
    if device_version is None:
        return True
    if latest > device_version:
        return True
    return force


def _decode_error() -> UpdateError:
    return UpdateError("http error: error decoding response body")


def _parse_release(document: Any) -> tuple[str, list[tuple[str, str]]]:
    if not isinstance(document, dict):
        raise _decode_error()
    name = document.get("name")
    assets = document.get("assets")
    if not isinstance(name, str) or not isinstance(assets, list):
        raise _decode_error()

    parsed = []
    for asset in assets:
        if not isinstance(asset, dict):
            raise _decode_error()
        asset_name = asset.get("name")
        url = asset.get("browser_download_url")
        if not isinstance(asset_name, str) or not isinstance(url, str):
            raise _decode_error()
        parsed.append((asset_name, url))
    return name, parsed


def query_latest_release(term) -> LatestRelease:
    """Ask the release server for the newest firmware archive."""
    _line(term, f"Querying latest release from {term.blue(RELEASES_URL)}")

    try:
        response = requests.get(RELEASES_URL)
        document = response.json()
    except (requests.RequestException, ValueError) as error:
        raise UpdateError(f"http error: {error}") from error

    name, assets = _parse_release(document)
    version = release_version(name)

    for asset_name, url in assets:
        if asset_name.endswith(".tra"):
            return LatestRelease(version=version, url=url)

    raise UpdateError("can't find url for latest firmware archive")


def download_firmware(term, url: str) -> Path:
    """Download ``url`` into a temporary ``.tra`` file the caller must remove."""
    try:
        handle = tempfile.NamedTemporaryFile(suffix=".tra", delete=False)
    except OSError as error:
        raise UpdateError(f"downloading firmware archive: {error}") from error

    path = Path(handle.name)
    try:
        with handle:
            _line(term, f"Downloading firmware from {term.blue(url)}")
            try:
                with requests.get(url, stream=True) as response:
                    length = response.headers.get("Content-Length", "")
                    total = int(length) if length.isdigit() else None
                    with tqdm(total=total, unit="B", unit_scale=True,
                              leave=False, file=term.stream) as bar:
                        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                            bar.update(len(chunk))
                            try:
                                handle.write(chunk)
                            except OSError as error:
                                raise UpdateError(
                                    f"downloading firmware archive: {error}"
                                ) from error
            except requests.RequestException as error:
                raise UpdateError(f"http error: {error}") from error
    except BaseException:
        path.unlink(missing_ok=True)
        raise

    return path


def run(force: bool = False) -> int:
    """Flash the latest release if it is newer than the device's firmware."""
    term = blessed.Terminal(stream=sys.stdout)

    try:
        found = find_device(term)
    except FindTangaraError as error:
        raise UpdateError(str(error)) from error

    try:
        release = query_latest_release(term)
        if not should_update(found.version, release.version, force):
            _line(term, "Tangara is up to date, there is nothing to do. "
                        f"Use {term.bold('--force')} to flash anyway")
            return 0
        path = download_firmware(term, release.url)
    except OSError as error:
        raise UpdateError(str(error)) from error

    try:
        flash(term, path, found)
    except FlashCommandError as error:
        raise UpdateError(str(error)) from error
    except OSError as error:
        raise UpdateError(str(error)) from error
    finally:
        path.unlink(missing_ok=True)

    return 0