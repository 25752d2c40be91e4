"""Interactive prompts on the terminal."""

from __future__ import annotations


def confirm(term) -> bool:
    """Read one key, echo it, and report whether it was 'y' or 'Y'."""
    try:
        with term.cbreak():
            key = term.inkey()
    except OSError:
        return False

    if not key or getattr(key, "is_sequence", False):
        return False

    char = str(key)
    try:
        term.stream.write(f"{char}\n")
        term.stream.flush()
    except OSError:
        pass

    return char in ("y", "Y")