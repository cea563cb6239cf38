import contextlib
import errno
import logging
import os
from typing import Any

from tarmountcore.ArchiveIndex import ROOT_INODE
from tarmountcore.TarFileSystem import TarFileSystem
from tarmountcore.utils import EntryNotFoundError, OperationNotSupportedError, overrides

from .fuse import fuse

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _translate_exceptions(operation: str, path: str):
    try:
        yield
    except EntryNotFoundError as exception:
        # Not-found replies are part of normal traversal, e.g., shells probing for files.
        logger.debug("%s '%s' failed with: %s", operation, path, exception)
        raise fuse.FuseOSError(errno.ENOENT) from exception
    except OperationNotSupportedError as exception:
        logger.debug("%s '%s' is not supported: %s", operation, path, exception)
        raise fuse.FuseOSError(errno.ENOSYS) from exception


class FuseMount(fuse.Operations):
    """
    This class implements the fusepy interface in order to create a mounted file system view to a TAR archive.
    It is a thin wrapper around TarFileSystem, which works on inodes. Paths given by fusepy are resolved by
    walking TarFileSystem.lookup from the root inode, one path component at a time.

    Documentation for FUSE methods can be found in the fusepy or libfuse headers.

    https://github.com/fusepy/fusepy/blob/master/fuse.py
    https://github.com/libfuse/libfuse/blob/master/include/fuse.h
    https://man7.org/linux/man-pages/man3/errno.3.html

    All path arguments for overridden fusepy methods do have a leading slash ('/')!
    Methods for modifying the file system are not overridden. The fusepy defaults raise EROFS.
    """

    # Use a relatively large minimum 256 KiB block size to get filesystem users to use larger reads
    # because reads have a relative large overhead because of the fusepy, libfuse, and kernel FUSE layers.
    MINIMUM_BLOCK_SIZE = 256 * 1024

    use_ns = True

    def __init__(self, pathToMount: str, mountPoint: str, **options) -> None:
        """
        pathToMount
            Path to an existing, uncompressed TAR file.
        mountPoint
            Path to an existing folder. It will not be created.
        options
            Forwarded to TarFileSystem, e.g., encoding, ignoreZeros, and showProgress.
        """
        if not os.path.exists(pathToMount):
            raise FileNotFoundError(f"Archive '{pathToMount}' does not exist!")
        if not os.path.isfile(pathToMount):
            raise ValueError(f"Archive '{pathToMount}' must be a file!")
        if not os.path.isdir(mountPoint):
            raise ValueError(f"Mount point '{mountPoint}' must be an existing directory!")

        self.mountPoint = os.path.realpath(mountPoint)  # Strip trailing slashes and normalizes.
        if os.path.realpath(pathToMount).startswith(self.mountPoint + os.path.sep):
            raise ValueError("The archive must not be located inside the mount point!")

        self.fileSystem = TarFileSystem(pathToMount, **options)
        logger.info("Indexed %s entries in: %s", len(self.fileSystem.index), pathToMount)

    def __enter__(self):
        return self

    def __exit__(self, exception_type, exception_value, exception_traceback):
        self._close()

    def _close(self) -> None:
        try:
            # If there is some exception in the constructor, then some members may not exist!
            if hasattr(self, 'fileSystem'):
                self.fileSystem.close()
        except Exception as exception:
            logger.warning(
                "Failed to close the archive because of: %s", exception, exc_info=logger.isEnabledFor(logging.DEBUG)
            )

    def __del__(self) -> None:
        self._close()

    def _resolve(self, path: str) -> int:
        """Returns the inode for the path or raises EntryNotFoundError. FUSE never asks for '.' or '..'."""
        inode = ROOT_INODE
        for name in path.split('/'):
            if name:
                inode = self.fileSystem.lookup(inode, name).inode
        return inode

    @overrides(fuse.Operations)
    def getattr(self, path: str, fh=None) -> dict[str, Any]:
        with _translate_exceptions('getattr', path):
            attributes = self.fileSystem.getattr(self._resolve(path))
        # Tar files are a series of 512 B blocks, but this block size is also used by Python as the default
        # read call size, so it should be something larger for better performance.
        attributes['st_blksize'] = FuseMount.MINIMUM_BLOCK_SIZE
        return attributes

    @overrides(fuse.Operations)
    def readdir(self, path: str, fh):
        '''
        Can return either a list of names, or a list of (name, attrs, offset)
        tuples. attrs is a dict as in getattr.
        '''
        with _translate_exceptions('readdir', path):
            listing = self.fileSystem.readdir(self._resolve(path))

        # fusepy does not forward the kernel's offset, so always return offset 0 to let libfuse buffer the
        # whole listing and do the chunking for us. st_ino is only used by libfuse when use_ino is set.
        return ((entry.name, {'st_mode': entry.mode, 'st_ino': entry.inode}, 0) for entry in listing)

    @overrides(fuse.Operations)
    def readlink(self, path: str) -> str:
        with _translate_exceptions('readlink', path):
            return self.fileSystem.readlink(self._resolve(path))

    @overrides(fuse.Operations)
    def open(self, path: str, flags: int) -> int:
        """Returns the inode as file handle of the opened path."""
        if (flags & os.O_ACCMODE) != os.O_RDONLY:
            raise fuse.FuseOSError(errno.EROFS)
        with _translate_exceptions('open', path):
            return self._resolve(path)

    @overrides(fuse.Operations)
    def read(self, path: str, size: int, offset: int, fh) -> bytes:
        with _translate_exceptions('read', path):
            # File handles are inodes, which start at 1. Handle 0 means that open was not called.
            return self.fileSystem.read(fh if fh else self._resolve(path), size, offset)

    @overrides(fuse.Operations)
    def statfs(self, path: str):
        # The filesystem block size is used, e.g., by Python as the default buffer size and therefore the
        # default (p)read size when possible.
        result = self.fileSystem.statfs()
        for key in ['f_bsize', 'f_frsize']:
            result[key] = max(result.get(key, 0), FuseMount.MINIMUM_BLOCK_SIZE)
        return result

    @overrides(fuse.Operations)
    def listxattr(self, path: str):
        with _translate_exceptions('listxattr', path):
            return self.fileSystem.listxattr(self._resolve(path))

    @overrides(fuse.Operations)
    def getxattr(self, path: str, name, position=0):
        with _translate_exceptions('getxattr', path):
            value = self.fileSystem.getxattr(self._resolve(path), name)
        if value is None:
            # My system sometimes tries to request security.selinux without the key actually existing.
            # See https://man7.org/linux/man-pages/man2/getxattr.2.html#ERRORS
            raise fuse.FuseOSError(errno.ENODATA)
        return value
