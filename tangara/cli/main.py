"""Command-line entry point: console, flash and update subcommands."""

from __future__ import annotations

import argparse
import sys

import blessed

from . import console, flash, update


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tangara", description="Tools for a Tangara music player.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("console", help="open an interactive device console")

    flash_parser = commands.add_parser("flash", help="flash a firmware archive")
    flash_parser.add_argument("image", help="path to a .tra firmware archive")

    update_parser = commands.add_parser("update", help="flash the latest firmware release")
    update_parser.add_argument("--force", action="store_true", help="flash even if up to date")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command line and return its exit code."""
    args = _parser().parse_args(argv)

    try:
        if args.command == "console":
            return console.run()
        if args.command == "flash":
            return flash.run(args.image)
        return update.run(args.force)
    except (console.ConsoleError, flash.FlashCommandError, update.UpdateError) as error:
        term = blessed.Terminal(stream=sys.stdout)
        print(f"{term.bold_red('error:')} {term.bold(str(error))}", flush=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())