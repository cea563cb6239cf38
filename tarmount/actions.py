import argparse
import logging
import os
import re
import subprocess
import sys
import time

import tarmountcore
from tarmountcore.utils import TarMountError, find_module_version

from .fuse import fuse
from .version import __version__

logger = logging.getLogger(__name__)


def print_versions() -> None:
    print("tarmount", __version__)
    print("tarmountcore", tarmountcore.__version__)

    print()
    print("System Software:")
    print()
    print("Python", sys.version.split(' ', maxsplit=1)[0])

    try:
        fusermountVersion = subprocess.run(
            ["fusermount", "--version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False
        ).stdout.strip()
        print("fusermount", re.sub('.* ([0-9][.][0-9.]+).*', r'\1', fusermountVersion.decode()))
    except OSError:
        pass

    if hasattr(fuse, 'fuse_version_major') and hasattr(fuse, 'fuse_version_minor'):
        print(f"FUSE: {fuse.fuse_version_major}.{fuse.fuse_version_minor}")

    print()
    print("Python Modules:")
    print()

    for moduleName in sorted([fuse.__name__, "rich"]):
        moduleVersion = find_module_version(moduleName)
        if moduleVersion:
            print(moduleName, moduleVersion)


def unmount(mountPoint: str) -> None:
    # Do not test with os.path.ismount or anything other because if the FUSE process was killed without
    # unmounting, then any file system query might return with errors.
    try:
        subprocess.run(["fusermount", "-u", mountPoint], check=True, capture_output=True)
        logger.info("Successfully called fusermount -u '%s'.", mountPoint)
        return
    except (OSError, subprocess.CalledProcessError) as exception:
        logger.info("fusermount -u %s failed with: %s", mountPoint, exception)

    if os.path.ismount(mountPoint):
        try:
            subprocess.run(["umount", mountPoint], check=True, capture_output=True)
            logger.info("Successfully called umount '%s'.", mountPoint)
            return
        except (OSError, subprocess.CalledProcessError) as exception:
            logger.info("umount %s failed with: %s", mountPoint, exception)


def unmount_list_checked(mountPoints: list[str]) -> int:
    if not mountPoints:
        raise argparse.ArgumentTypeError("Unmounting requires a path to the mount point!")

    for mountPoint in mountPoints:
        unmount(mountPoint)

    # Unmounting might take some time and fusermount might return exit code 1 even though it succeeded.
    errorPrinted = False
    if any(os.path.ismount(mountPoint) for mountPoint in mountPoints):
        time.sleep(1)
        for mountPoint in mountPoints:
            if not os.path.ismount(mountPoint):
                continue
            if not errorPrinted:
                logger.error(
                    "Failed to unmount the given mount point. Alternatively, the process providing the "
                    "mount point can be looked for and killed, e.g., with this command:"
                )
                errorPrinted = True
            logger.error("""    pkill --full 'tarmount.*%s' -G "$( id -g )" --newest""", mountPoint)

    return 1 if errorPrinted else 0


def parse_fuse_options(options: str) -> dict:
    """Converts the comma separated list of key[=value] options into a dictionary for fusepy."""
    return dict(option.split('=', 1) if '=' in option else (option, True) for option in options.split(',') if option)


def process_parsed_arguments(args) -> int:
    if args.unmount:
        # The mount point is the only argument that makes sense for unmounting, so accept it in either position.
        return unmount_list_checked([path for path in [args.archive, args.mount_point] if path])

    if not args.mount_point:
        raise argparse.ArgumentTypeError("A mount point must be specified!")
    if not os.path.exists(args.archive):
        raise FileNotFoundError(f"Archive '{args.archive}' does not exist!")
    if not os.path.isfile(args.archive):
        raise argparse.ArgumentTypeError(f"Archive '{args.archive}' is not a file!")
    if not os.path.isdir(args.mount_point):
        raise argparse.ArgumentTypeError(f"Mount point '{args.mount_point}' must be an existing directory!")

    args.archive = os.path.realpath(args.archive)
    args.mount_point = os.path.realpath(args.mount_point)

    create_fuse_mount(args)  # Throws on errors.
    return 0


def parsed_args_to_options(args) -> dict:
    # fmt: off
    return {
        'pathToMount'  : args.archive,
        'mountPoint'   : args.mount_point,
        'encoding'     : args.encoding,
        'ignoreZeros'  : bool(args.ignore_zeros),
        'showProgress' : args.debug >= 1 and sys.stdout.isatty(),
    }
    # fmt: on


def create_fuse_mount(args) -> None:
    fusekwargs = parse_fuse_options(args.fuse)
    # The mount is always read-only and shows the inode numbers from the index.
    fusekwargs.update({'ro': True, 'use_ino': True})
    fusekwargs.setdefault('fsname', 'tarmount')

    # Import late to avoid the overhead during argcomplete!
    from .FuseMount import FuseMount  # pylint: disable=import-outside-toplevel

    with FuseMount(**parsed_args_to_options(args)) as fuseOperationsObject:
        try:
            fuse.FUSE(
                operations=fuseOperationsObject,
                mountpoint=args.mount_point,
                foreground=args.foreground,
                nothreads=False,  # Reads are serialized by a lock on the archive file object.
                **fusekwargs,
            )
        except RuntimeError as exception:
            raise TarMountError(
                "FUSE mountpoint could not be created. See previous output for more information."
            ) from exception
