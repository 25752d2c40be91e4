"""Formatting helpers and colour themes for presenting device information."""

from __future__ import annotations

from dataclasses import dataclass


def render_size(size: int) -> str:
    """Render a byte count in the largest whole binary unit, up to GiB."""
    if size < 1024:
        return f"{size} b"

    kib = size // 1024
    if kib < 1024:
        return f"{kib} KiB"

    mib = kib // 1024
    if mib < 1024:
        return f"{mib} MiB"

    gib = mib // 1024
    return f"{gib} GiB"


@dataclass(frozen=True)
class Color:
    """A 24-bit RGB colour, as 0xRRGGBB."""

    value: int

    def red(self) -> int:
        """Red channel scaled to 16 bits."""
        return ((self.value >> 16) * 256) & 0xFFFF

    def green(self) -> int:
        """Green channel scaled to 16 bits."""
        return ((self.value >> 8) * 256) & 0xFFFF

    def blue(self) -> int:
        """Blue channel scaled to 16 bits."""
        return (self.value * 256) & 0xFFFF


@dataclass(frozen=True)
class Theme:
    """A sixteen-colour palette laid out like a base16 scheme."""

    base00: Color
    base01: Color
    base02: Color
    base03: Color
    base04: Color
    base05: Color
    base06: Color
    base07: Color
    base08: Color
    base09: Color
    base0a: Color
    base0b: Color
    base0c: Color
    base0d: Color
    base0e: Color
    base0f: Color

    @classmethod
    def _from_values(cls, *values: int) -> "Theme":
        return cls(*(Color(value) for value in values))

    @classmethod
    def one_light(cls) -> "Theme":
        """The One Light palette."""
        return cls._from_values(
            0xFAFAFA, 0xF0F0F1, 0xE5E5E6, 0xA0A1A7,
            0x696C77, 0x383A42, 0x202227, 0x090A0B,
            0xCA1243, 0xD75F00, 0xC18401, 0x50A14F,
            0x0184BC, 0x4078F2, 0xA626A4, 0x986801,
        )

    @classmethod
    def one_dark(cls) -> "Theme":
        """The One Dark palette."""
        return cls._from_values(
            0x282C34, 0x353B45, 0x3E4451, 0x545862,
            0x565C64, 0xABB2BF, 0xB6BDCA, 0xC8CCD4,
            0xE06C75, 0xD19A66, 0xE5C07B, 0x98C379,
            0x56B6C2, 0x61AFEF, 0xC678DD, 0xBE5046,
        )