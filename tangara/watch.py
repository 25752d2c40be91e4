"""Watching for a Tangara being plugged in and unplugged."""

from __future__ import annotations

import logging
import time
from typing import Iterator

from . import device
from .connection import OpenError
from .device import ConnectionParams, FindTangaraError, Tangara

log = logging.getLogger(__name__)

POLL_INTERVAL = 1.0


def _find_or_none() -> ConnectionParams | None:
    try:
        return device.find()
    except FindTangaraError:
        return None


def _port_name(params: ConnectionParams | None) -> str | None:
    return params.port_name if params is not None else None


def watch_port(poll_interval: float = POLL_INTERVAL) -> Iterator[ConnectionParams | None]:
    """Yield the current device's parameters, then again whenever its port changes."""
    current = _find_or_none()
    yield current

    while True:
        time.sleep(poll_interval)
        params = _find_or_none()
        if _port_name(params) == _port_name(current):
            continue
        current = params
        yield current


def watch(poll_interval: float = POLL_INTERVAL) -> Iterator[Tangara | None]:
    """Yield an opened Tangara when one appears and None when it goes away."""
    for params in watch_port(poll_interval):
        log.debug("watch: new params: %r", params)
        if params is None:
            yield None
            continue
        try:
            tangara = Tangara.open(params)
        except OpenError as error:
            log.error("error opening tangara: %s", error)
            continue
        yield tangara