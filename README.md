# tangara

Tools for working with a Tangara music player connected over USB. The
package finds the device on the serial bus, talks to its Lua console,
reads device information, and flashes firmware archives (`.tra` files)
onto it through the ESP32 serial bootloader.

## Installation

```
pip install .
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## Command line

Installing the package provides a `tangara` command with three
subcommands. Each one first looks for a plugged-in Tangara and reports
the serial port it found, along with the firmware version currently
installed on it when that version can be read.

### Interactive console

```
tangara console
```

Opens the device's serial console in your terminal. Keystrokes,
including Enter, the arrow keys, Home, End, Tab, Delete and Backspace,
are passed through to the device, and everything the device prints is
written to standard output. The session ends when terminal input ends.

### Flashing a firmware archive

```
tangara flash path/to/firmware.tra
```

Opens the archive, checks its manifest and the checksum of each image,
shows the firmware version, and asks for confirmation (`y` or `Y`)
before writing; any other key aborts with exit status 1. A progress bar
follows each image as it is written. Keep the device plugged in until
the command prints `Flash success!`.

### Updating to the latest release

```
tangara update
tangara update --force
```

Looks up the latest published firmware release and compares its version
with the one on the device. If the release is newer, or the device's
version cannot be read (for instance after an interrupted flash), the
archive is downloaded to a temporary file and flashed with the same
confirmation prompt as `tangara flash`. If the device is already up to
date, nothing is done unless `--force` is given. The temporary file is
removed afterwards.

When a command fails because no device was found, the archive is
invalid, flashing failed or the release could not be fetched, it prints
an `error:` line and exits with status 1.

## Library use

The modules under `tangara` can be used directly.

### Console and device information

A console connection is a context manager that disconnects when the
block ends:

```python
from tangara.connection import Connection
from tangara.info import get_info
from tangara.presentation import render_size

with Connection.open("/dev/ttyACM0") as conn:
    print(conn.eval_lua("1 + 2"))
    print(conn.firmware_version())

    info = get_info(conn)
    print(info.firmware.version, info.firmware.samd, info.firmware.collation)
    print(info.database.schema_version)
    if info.database.disk_size is not None:
        print(render_size(info.database.disk_size))
```

Lua passed to `eval_lua` must be a single line (a newline raises
`ValueError`); its result is written back by the device and returned as
a string. `OpenError` is raised when the port cannot be opened or the
console does not answer, `Disconnected` when the link is lost or already
closed, and `LuaError` (the base of `Disconnected`) when the reply is not
valid UTF-8. `render_size` formats a byte count as `b`, `KiB`, `MiB` or
`GiB`.

### Finding a device

`tangara.device.find()` returns the `ConnectionParams` of a connected
Tangara, searching the enumerated serial ports by USB vendor and product
id and, on Linux, falling back to `/dev/serial/by-id`. It raises
`FindTangaraError` when no Tangara is plugged in.
`Tangara.open(params)` opens its console connection.

`tangara.watch.watch()` is a generator that polls once a second and
yields an opened `Tangara` when a device appears and `None` when it goes
away; `watch_port()` yields only the connection parameters.

### Firmware archives and flashing

`tangara.firmware.Firmware.open(path)` reads an archive, raising
`FirmwareOpenError` if it is unreadable, has no or an unsupported
manifest, or an image is missing, too large or fails its checksum. The
result has `version`, `path` and `images`.

```python
import threading

from tangara.device import Tangara, find
from tangara.firmware import Firmware

tangara = Tangara.open(find())
firmware = Firmware.open("firmware.tra")

handle, task = tangara.setup_flash(firmware)
threading.Thread(target=task.run).start()
for status in handle:
    print(status)
handle.result.result()  # raises FlashError on failure
```

`setup_flash` disconnects the console first. The statuses are
`StartingFlash`, `ImageStarted` and `Progress`; `tangara.flash.setup`
prepares the same flash from bare connection parameters.

## What this package does not do

There is no graphical interface: everything is done through the
`tangara` command or the library. `tangara.presentation.Theme` provides
the One Light and One Dark colour palettes as plain data, but nothing in
the package draws or highlights with them.