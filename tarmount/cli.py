#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# PYTHON_ARGCOMPLETE_OK

# We explicitly do want to import everything as late as possible here in order to speed up calls by argcomplete!
# pylint: disable=import-outside-toplevel

import argparse
import logging
import os
import sys
import tarfile
import traceback
from typing import Optional

from tarmountcore.utils import TarMountError

try:
    import argcomplete
except ImportError:
    pass


LOG_LEVEL_ENVIRONMENT_VARIABLE = 'TARMOUNT_LOG_LEVEL'


class _CustomFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    def add_arguments(self, actions):
        actions = sorted(actions, key=lambda x: getattr(x, 'option_strings'))
        super().add_arguments(actions)


class PrintVersionAction(argparse.Action):
    def __call__(self, parser, args, values, option_string=None):
        from .actions import print_versions

        print_versions()
        parser.exit()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tarmount',
        formatter_class=_CustomFormatter,
        add_help=False,
        description='''\
With tarmount, you can mount an uncompressed TAR archive to a folder for read-only access.
The archive is read once to build an index of all members in memory. Missing parent folders
are created automatically and later members with the same path replace earlier ones.
''',
        epilog='''\
Examples:

 - tarmount archive.tar mountpoint
 - tarmount -f -d 3 archive.tar mountpoint
 - tarmount -o allow_other archive.tar mountpoint
 - tarmount --unmount mountpoint
''',
    )

    commonGroup = parser.add_argument_group("Optional Arguments")
    positionalGroup = parser.add_argument_group("Positional Options")
    tarGroup = parser.add_argument_group("Tar Options")
    advancedGroup = parser.add_argument_group("Advanced Options")

    # fmt: off
    commonGroup.add_argument(
        '-h', '--help', action='help', default=argparse.SUPPRESS,
        help='Show this help message and exit.')

    commonGroup.add_argument(
        '-u', '--unmount', action='store_true',
        help='Unmount the given mount point. Equivalent to calling "fusermount -u".')

    commonGroup.add_argument(
        '-v', '--version', action=PrintVersionAction, nargs=0, default=argparse.SUPPRESS,
        help='Print version information and exit.')

    # TAR Options

    tarGroup.add_argument(
        '-e', '--encoding', type=str, default=tarfile.ENCODING,
        help='Specify an input encoding used for file names among others in the TAR. '
             'This must be used when, e.g., trying to open a latin1 encoded TAR on an UTF-8 system. '
             'Possible encodings: https://docs.python.org/3/library/codecs.html#standard-encodings')

    tarGroup.add_argument(
        '-i', '--ignore-zeros', action='store_true',
        help='Ignore zeroed blocks in archive. Normally, two consecutive 512-blocks filled with zeroes mean EOF '
             'and tarmount stops reading after encountering them. This option instructs it to read further and '
             'is useful when reading archives created with the -A option.')

    # Advanced Options

    advancedGroup.add_argument(
        '-o', '--fuse', type=str, default='',
        help='Comma separated FUSE options. See "man mount.fuse" for help. '
             'Example: --fuse "allow_other,entry_timeout=2.8,gid=0". ')

    advancedGroup.add_argument(
        '-f', '--foreground', action='store_true', default=False,
        help='Keeps the python program in foreground so it can print debug '
             'output when the mounted path is accessed.')

    advancedGroup.add_argument(
        '-d', '--debug', type=int, default=1,
        help='Sets the debugging level. Higher means more output. Currently, 3 is the highest. '
             f'The {LOG_LEVEL_ENVIRONMENT_VARIABLE} environment variable, e.g., set to DEBUG, takes precedence.')

    # Positional Arguments

    positionalGroup.add_argument(
        'archive',
        help='The path to the uncompressed TAR archive to be mounted.')
    positionalGroup.add_argument(
        'mount_point', nargs='?',
        help='The path to an existing folder to mount the TAR contents into.')
    # fmt: on

    return parser


def _parse_args(rawArgs: Optional[list[str]] = None):
    parser = create_parser()
    if 'argcomplete' in sys.modules:
        argcomplete.autocomplete(parser)
    return parser.parse_args(rawArgs)


def debug_level_to_log_level(debug: int) -> int:
    if debug <= 0:
        return logging.ERROR
    if debug == 1:
        return logging.WARNING
    if debug == 2:
        return logging.INFO
    return logging.DEBUG


def setup_logging(debug: int) -> None:
    from rich.logging import RichHandler

    level = debug_level_to_log_level(debug)
    levelName = os.environ.get(LOG_LEVEL_ENVIRONMENT_VARIABLE, '').strip().upper()
    if levelName:
        namedLevel = logging.getLevelName(levelName)
        if isinstance(namedLevel, int):
            level = namedLevel
        else:
            print(f"[Warning] Ignoring unknown log level in {LOG_LEVEL_ENVIRONMENT_VARIABLE}: {levelName}")

    rootLogger = logging.getLogger()
    rootLogger.setLevel(level)
    # Do not add a second handler when called multiple times, e.g., from tests.
    if not any(isinstance(handler, RichHandler) for handler in rootLogger.handlers):
        rootLogger.addHandler(RichHandler(show_path=level <= logging.DEBUG, rich_tracebacks=True))


def cli(rawArgs: Optional[list[str]] = None) -> int:
    """
    Command line interface for tarmount. Call with args = [ '--help' ] for a description.

    rawArgs: In general, rawArgs is None, meaning sys.argv is used. When used programmatically with a custom
             list of arguments, the first argument should not be the path to the script / the executable,
             i.e., call either cli() or cli(sys.argv[1:])!
    """

    # Manually parse --debug argument in case argument parsing with argparse itself goes wrong.
    tmpArgs = rawArgs if rawArgs else sys.argv
    debug = 1
    for i in range(len(tmpArgs) - 1):
        if tmpArgs[i] in ['-d', '--debug'] and tmpArgs[i + 1].isdecimal():
            debug = int(tmpArgs[i + 1])

    try:
        setup_logging(debug)
        args = _parse_args(rawArgs)
        from .actions import process_parsed_arguments

        return process_parsed_arguments(args)
    except (FileNotFoundError, ImportError, TarMountError, argparse.ArgumentTypeError, ValueError) as exception:
        print("[Error]", exception)
        if debug >= 3:
            traceback.print_exc()

    return 1


def main() -> None:
    sys.exit(cli())


if __name__ == '__main__':
    main()
