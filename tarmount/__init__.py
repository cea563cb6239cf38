"""Tarmount

This is the frontend for tarmount.
It is normally not intended to be used as a library.

The installed tarmount script will load this module and call its 'cli' function,
which could also be done programmatically.

Example:

    from tarmount.cli import cli

    cli(["--foreground", "archive.tar", "mounted"])
"""

from .version import __version__
