"""isoenv CLI entrypoint."""

from __future__ import annotations

import click

from isoenv import __version__


@click.group()
@click.version_option(version=__version__, prog_name="isoenv")
def main() -> None:
    """isoenv — run commands in a throwaway home directory."""


# Register subcommands
from isoenv.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
