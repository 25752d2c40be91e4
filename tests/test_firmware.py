import json
import zipfile

import pytest

from tangara.firmware import (
    MAX_IMAGE_SIZE,
    Firmware,
    FirmwareOpenError,
    Image,
    ReadImageError,
)


def manifest(version="1.2.3", images=None, manifest_version=0):
    if images is None:
        images = [{"addr": 0x10000, "name": "a.bin"}]
    return json.dumps(
        {
            "version": manifest_version,
            "data": {"firmware": {"version": version, "images": images}},
        }
    )


def make_archive(path, manifest_text, files, compression=zipfile.ZIP_DEFLATED):
    with zipfile.ZipFile(path, "w", compression=compression) as archive:
        if manifest_text is not None:
            archive.writestr("tangaraflash.json", manifest_text)
        for name, data in files.items():
            archive.writestr(name, data)
    return path


def test_open_reads_version_and_images(tmp_path):
    path = make_archive(
        tmp_path / "fw.tra",
        manifest(
            images=[
                {"addr": 0x10000, "name": "a.bin"},
                {"addr": 0x20000, "name": "b.bin"},
            ]
        ),
        {"a.bin": b"first image", "b.bin": b"second"},
    )

    firmware = Firmware.open(path)

    assert firmware.version == "1.2.3"
    assert firmware.path == path
    assert firmware.images == (
        Image(name="a.bin", addr=0x10000, data=b"first image"),
        Image(name="b.bin", addr=0x20000, data=b"second"),
    )


def test_open_accepts_string_path(tmp_path):
    path = make_archive(tmp_path / "fw.tra", manifest(images=[]), {})
    firmware = Firmware.open(str(path))
    assert firmware.path == path
    assert firmware.images == ()


def test_missing_file(tmp_path):
    with pytest.raises(FirmwareOpenError, match="Unable to open firmware archive"):
        Firmware.open(tmp_path / "missing.tra")


def test_not_a_zip(tmp_path):
    path = tmp_path / "fw.tra"
    path.write_bytes(b"this is not an archive")
    with pytest.raises(FirmwareOpenError, match="Unreadable firmware archive"):
        Firmware.open(path)


def test_no_manifest(tmp_path):
    path = make_archive(tmp_path / "fw.tra", None, {"a.bin": b"x"})
    with pytest.raises(FirmwareOpenError, match="No manifest found in firmware archive"):
        Firmware.open(path)


def test_manifest_not_utf8(tmp_path):
    path = make_archive(tmp_path / "fw.tra", b"\xff\xfe\xfd", {})
    with pytest.raises(FirmwareOpenError, match="Can't read firmware manifest"):
        Firmware.open(path)


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "[]",
        json.dumps({"data": {}}),
        json.dumps({"version": -1, "data": {}}),
        json.dumps({"version": 0}),
        json.dumps({"version": 0, "data": {"firmware": {"images": []}}}),
        json.dumps({"version": 0, "data": {"firmware": {"version": 3, "images": []}}}),
        manifest(images=[{"addr": -1, "name": "a.bin"}]),
        manifest(images=[{"addr": 2**32, "name": "a.bin"}]),
        manifest(images=[{"name": "a.bin"}]),
    ],
)
def test_bad_manifest(tmp_path, text):
    path = make_archive(tmp_path / "fw.tra", text, {"a.bin": b"x"})
    with pytest.raises(FirmwareOpenError, match="Can't parse firmware manifest"):
        Firmware.open(path)


def test_unsupported_manifest_version(tmp_path):
    path = make_archive(tmp_path / "fw.tra", manifest(manifest_version=1), {"a.bin": b"x"})
    with pytest.raises(FirmwareOpenError, match="newer than this version"):
        Firmware.open(path)


def test_newer_manifest_with_other_data_still_unsupported(tmp_path):
    text = json.dumps({"version": 2, "data": {"something": "else"}})
    path = make_archive(tmp_path / "fw.tra", text, {})
    with pytest.raises(FirmwareOpenError, match="newer than this version"):
        Firmware.open(path)


def test_missing_image(tmp_path):
    path = make_archive(tmp_path / "fw.tra", manifest(), {})
    with pytest.raises(FirmwareOpenError, match="Reading image: a.bin: archive error") as info:
        Firmware.open(path)
    assert isinstance(info.value.__cause__, ReadImageError)


def test_image_too_large(tmp_path):
    path = make_archive(tmp_path / "fw.tra", manifest(), {"a.bin": bytes(MAX_IMAGE_SIZE)})
    with pytest.raises(FirmwareOpenError, match="image too large") as info:
        Firmware.open(path)
    assert isinstance(info.value.__cause__, ReadImageError)


def test_corrupt_image_checksum(tmp_path):
    path = make_archive(
        tmp_path / "fw.tra",
        manifest(),
        {"a.bin": b"IMAGEDATA-ONE"},
        compression=zipfile.ZIP_STORED,
    )
    raw = path.read_bytes()
    assert raw.count(b"IMAGEDATA-ONE") == 1
    path.write_bytes(raw.replace(b"IMAGEDATA-ONE", b"IMAGEDATA-TWO"))

    with pytest.raises(FirmwareOpenError, match="Reading image: a.bin: Checksum error") as info:
        Firmware.open(path)
    assert isinstance(info.value.__cause__, ReadImageError)