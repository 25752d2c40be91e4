"""Find, inspect, script and flash firmware onto a Tangara over USB serial."""

__version__ = "0.1.0"