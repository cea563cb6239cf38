import dataclasses
import logging
import os
import tarfile
import threading
from collections.abc import Iterator
from typing import IO, Any, Optional, Union

from .ArchiveIndex import ROOT_INODE, ArchiveIndex, EntryKind, Node
from .utils import (
    EntryNotFoundError,
    NotARegularFileError,
    OperationNotSupportedError,
    ReadOutOfRangeError,
    ceil_div,
)

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DirectoryEntry:
    # fmt: off
    inode  : int
    mode   : int  # Only the S_IFMT bits are meaningful for directory listings.
    name   : str
    offset : int  # Cursor to pass to readdir to resume listing after this entry.
    # fmt: on


class TarFileSystem:
    """
    Inode-based read-only file system view of a TAR archive.

    The archive is read once on construction to build the ArchiveIndex. Afterwards, all methods only query
    the immutable index, except for read, which seeks to the payload offset recorded in the index.
    All methods raise EntryNotFoundError (or a subclass thereof) for unknown inodes or names.
    """

    # fmt: off
    def __init__(
        self,
        tarFileName  : Optional[Union[str, os.PathLike]] = None,
        fileObject   : Optional[IO[bytes]]               = None,
        *,  # force all parameters after to be keyword-only
        encoding     : str                               = tarfile.ENCODING,
        ignoreZeros  : bool                              = False,
        showProgress : bool                              = False,
        # pylint: disable=unused-argument
        **kwargs
    ) -> None:
        # fmt: on
        """
        tarFileName
            Path to the TAR file to be opened. If not specified, a fileObject must be specified.
        fileObject
            A seekable binary file object. It will be closed together with this object only if
            it was opened by this object, i.e., if only tarFileName was given.
        encoding
            Encoding used for member names inside the TAR.
        ignoreZeros
            Continue reading after zero blocks, e.g., for archives concatenated with tar -A.
        showProgress
            Print the indexing progress.
        """
        if fileObject is None and not tarFileName:
            raise ValueError("At least one of tarFileName and fileObject arguments should be set!")

        self.tarFileName = os.fspath(tarFileName) if tarFileName else '<file object>'
        self._ownsFileObject = fileObject is None
        self.fileObject: IO[bytes] = open(tarFileName, 'rb') if fileObject is None else fileObject  # type: ignore
        # The file object is shared between all reads, which may happen from multiple FUSE threads.
        self.fileObjectLock = threading.Lock()

        try:
            logger.info("Creating index for: %s", self.tarFileName)
            self.index = ArchiveIndex.build(
                self.fileObject, encoding=encoding, ignoreZeros=ignoreZeros, showProgress=showProgress
            )
        except Exception:
            self.close()
            raise

    def __enter__(self):
        return self

    def __exit__(self, exception_type, exception_value, exception_traceback):
        self.close()

    def close(self) -> None:
        if self._ownsFileObject and not self.fileObject.closed:
            self.fileObject.close()

    def _get_node(self, inode: int) -> Node:
        node = self.index.get(inode)
        if node is None:
            raise EntryNotFoundError(f"Inode {inode} does not exist!")
        return node

    def _get_directory(self, inode: int) -> Node:
        node = self._get_node(inode)
        if not node.is_dir():
            raise EntryNotFoundError(f"Inode {inode} is not a folder!")
        return node

    def lookup(self, parentInode: int, name: str) -> Node:
        node = self.index.lookup(parentInode, name)
        if node is None:
            raise EntryNotFoundError(f"Inode {parentInode} has no child named '{name}'!")
        return node

    @staticmethod
    def _count_links(node: Node) -> int:
        # Each subfolder links back via '..' and the folder links to itself via '.'.
        return 2 + node.subfolderCount if node.is_dir() else 1

    def getattr(self, inode: int) -> dict[str, Any]:
        node = self._get_node(inode)
        entry = node.entry
        mtime = int(entry.mtime * 1e9)
        return {
            # dictionary keys: https://pubs.opengroup.org/onlinepubs/007904875/basedefs/sys/stat.h.html
            'st_ino': node.inode,
            'st_mode': entry.full_mode,
            'st_size': entry.size,
            'st_uid': entry.uid,
            'st_gid': entry.gid,
            'st_rdev': entry.rdev,
            # Time stamps are in nanoseconds. TAR only stores the modification time.
            'st_mtime': mtime,
            'st_atime': mtime,
            'st_ctime': mtime,
            'st_nlink': self._count_links(node),
            # Number of 512 B (!) blocks irrespective of st_blksize!
            'st_blocks': ceil_div(entry.size, 512),
        }

    def readdir(self, inode: int, offset: int = 0) -> Iterator[DirectoryEntry]:
        """
        Yields the directory listing starting at the given cursor. The listing always starts with '.' and '..'
        followed by the children in the order they were found in the archive. The caller may stop consuming
        at any point, e.g., because its reply buffer is full, and later resume with the offset of the last
        accepted entry. Validation happens before the first entry is yielded.
        """
        node = self._get_directory(inode)
        # The root has no parent inside the archive. It is its own parent at the mount boundary.
        parent = node if node.inode == ROOT_INODE else self._get_node(node.parent)

        def make_entry(listedNode: Node, name: str, position: int) -> DirectoryEntry:
            return DirectoryEntry(
                inode=listedNode.inode, mode=listedNode.entry.kind.value, name=name, offset=position + 1
            )

        def generate_listing():
            if offset <= 0:
                yield make_entry(node, '.', 0)
            if offset <= 1:
                yield make_entry(parent, '..', 1)

            # Start directly at the cursor so that listing in chunks does not rescan the already returned entries.
            for i in range(max(0, offset - 2), len(node.children)):
                child = self.index.get(node.children[i])
                if child is not None:
                    yield make_entry(child, child.name, i + 2)

        return generate_listing()

    def read(self, inode: int, size: int, offset: int) -> bytes:
        node = self._get_node(inode)
        entry = node.entry
        if entry.kind != EntryKind.REGULAR_FILE:
            raise NotARegularFileError(f"Inode {inode} is a {entry.kind.name.lower()}, not a regular file!")
        if offset < 0 or offset > entry.size:
            raise ReadOutOfRangeError(f"Offset {offset} is outside of inode {inode} with size {entry.size}!")

        size = max(0, min(size, entry.size - offset))
        if size == 0:
            return b''

        with self.fileObjectLock:
            self.fileObject.seek(entry.offset + offset)
            return self.fileObject.read(size)

    def readlink(self, inode: int) -> str:
        self._get_node(inode)
        raise OperationNotSupportedError("Reading symbolic link targets is not supported!")

    def statfs(self) -> dict[str, Any]:
        """
        Returns a dictionary with keys named like the POSIX statvfs struct. It is empty, which makes libfuse
        fall back to its defaults.
        """
        return {}

    def listxattr(self, inode: int) -> list[str]:
        self._get_node(inode)
        return []

    def getxattr(self, inode: int, key: str) -> Optional[bytes]:
        self._get_node(inode)
        return None
