import dataclasses
import enum
import io
import logging
import os
import posixpath
import stat
import tarfile
import time
from collections.abc import Iterable, Iterator
from timeit import default_timer as timer
from typing import IO, Optional

from .Arena import Arena
from .ProgressBar import ProgressBar
from .utils import (
    ConflictingRecordError,
    IndexBuildError,
    RecordDecodeError,
    TruncatedArchiveError,
    UnsupportedRecordError,
    ceil_div,
)

BLOCK_SIZE = 512
ROOT_INODE = 1
# Parent inode of the root. FUSE never hands out inode 0.
NO_PARENT = 0

logger = logging.getLogger(__name__)


class EntryKind(enum.Enum):
    """The file types that can be exposed. The values are the corresponding S_IFMT bits."""

    REGULAR_FILE = stat.S_IFREG
    DIRECTORY = stat.S_IFDIR
    SYMLINK = stat.S_IFLNK
    CHARACTER_DEVICE = stat.S_IFCHR
    BLOCK_DEVICE = stat.S_IFBLK
    FIFO = stat.S_IFIFO


_KINDS_BY_TAR_TYPE = {
    tarfile.REGTYPE: EntryKind.REGULAR_FILE,
    tarfile.AREGTYPE: EntryKind.REGULAR_FILE,
    tarfile.DIRTYPE: EntryKind.DIRECTORY,
    tarfile.SYMTYPE: EntryKind.SYMLINK,
    tarfile.CHRTYPE: EntryKind.CHARACTER_DEVICE,
    tarfile.BLKTYPE: EntryKind.BLOCK_DEVICE,
    tarfile.FIFOTYPE: EntryKind.FIFO,
}

# tarfile already folds long names and PAX headers into the member they belong to. They are listed for
# the error message in case some unusual archive still surfaces them as members.
_UNSUPPORTED_TAR_TYPES = {
    tarfile.LNKTYPE: "hard link",
    tarfile.CONTTYPE: "contiguous file",
    tarfile.GNUTYPE_SPARSE: "GNU sparse file",
    tarfile.GNUTYPE_LONGNAME: "GNU long name header",
    tarfile.GNUTYPE_LONGLINK: "GNU long link header",
    tarfile.XHDTYPE: "PAX extended header",
    tarfile.XGLTYPE: "PAX global header",
    tarfile.SOLARIS_XHDTYPE: "Solaris extended header",
}


@dataclasses.dataclass
class Entry:
    # fmt: off
    path        : str  # As decoded from the TAR header, not yet normalized or split.
    size        : int
    kind        : EntryKind
    mode        : int  # Permission bits only, see full_mode.
    uid         : int
    gid         : int
    mtime       : float
    offset      : int  # Offset of the payload in the archive.
    rdev        : int  = 0
    isGenerated : bool = False  # True for the root and for parent folders without a record of their own.
    # fmt: on

    @property
    def full_mode(self) -> int:
        return self.kind.value | self.mode


@dataclasses.dataclass
class Node:
    inode: int
    parent: int
    children: list[int]
    entry: Entry
    # Only valid after the index has been finalized because duplicates may still change the kind of children.
    subfolderCount: int = 0

    @property
    def name(self) -> str:
        return posixpath.basename(normalize_path(self.entry.path))

    def is_dir(self) -> bool:
        return self.entry.kind == EntryKind.DIRECTORY


def normalize_path(path: str) -> str:
    """
    Returns the path relative to the archive root without leading, trailing, or duplicate slashes.
    Components like '.' are removed and '..' is collapsed, which can not escape the root because
    a leading slash is prepended before normalizing. The root itself is represented by an empty string.
    """
    return posixpath.normpath('/' + path).lstrip('/')


def create_root_entry() -> Entry:
    # fmt: off
    return Entry(
        path        = "",
        size        = 0,
        kind        = EntryKind.DIRECTORY,
        mode        = 0o755,
        uid         = os.getuid(),
        gid         = os.getgid(),
        mtime       = time.time(),
        offset      = 0,
        isGenerated = True,
    )
    # fmt: on


def create_generated_directory_entry(path: str) -> Entry:
    # fmt: off
    return Entry(
        path        = path,
        size        = 0,
        kind        = EntryKind.DIRECTORY,
        mode        = 0o555,
        uid         = 0,
        gid         = 0,
        mtime       = 0,
        offset      = 0,
        isGenerated = True,
    )
    # fmt: on


class _TarRecordReader:
    """Streams the members of a TAR file once and converts each of them into an Entry."""

    def __init__(
        self, fileObject: IO[bytes], encoding: str = tarfile.ENCODING, ignoreZeros: bool = False, showProgress=False
    ):
        self.fileObject = fileObject
        self.encoding = encoding
        self.ignoreZeros = ignoreZeros
        self.showProgress = showProgress
        self.recordCount = 0

    @staticmethod
    def _tar_info_to_entry(tarInfo: tarfile.TarInfo) -> Entry:
        kind = _KINDS_BY_TAR_TYPE.get(tarInfo.type)
        if kind is None or tarInfo.issparse():
            description = _UNSUPPORTED_TAR_TYPES.get(tarInfo.type, f"member of unknown type {tarInfo.type!r}")
            if tarInfo.issparse():
                description = "sparse file"
            raise UnsupportedRecordError(
                f"TAR member '{tarInfo.name}' at offset {tarInfo.offset} is a {description}, which is not supported!"
            )

        rdev = 0
        if kind in (EntryKind.CHARACTER_DEVICE, EntryKind.BLOCK_DEVICE):
            rdev = os.makedev(tarInfo.devmajor, tarInfo.devminor)

        # fmt: off
        return Entry(
            path   = tarInfo.name,
            size   = tarInfo.size,
            kind   = kind,
            mode   = tarInfo.mode & 0o7777,
            uid    = tarInfo.uid,
            gid    = tarInfo.gid,
            mtime  = tarInfo.mtime,
            offset = tarInfo.offset_data,
            rdev   = rdev,
        )
        # fmt: on

    def _open_tar(self) -> tarfile.TarFile:
        try:
            # fmt: off
            return tarfile.open(
                fileobj      = self.fileObject,
                mode         = 'r:',
                ignore_zeros = self.ignoreZeros,
                encoding     = self.encoding,
            )
            # fmt: on
        except tarfile.ReadError as exception:
            raise RecordDecodeError(f"Failed to read the first TAR header: {exception}") from exception

    def _check_skipped_blocks(self, begin: int, end: int) -> None:
        """
        With ignoreZeros, tarfile skips any block it can not decode as a header, not only zero blocks.
        Only zero blocks may have been skipped between two members or before the end of the file.
        """
        if end <= begin:
            return

        oldPosition = self.fileObject.tell()
        try:
            self.fileObject.seek(begin)
            offset = begin
            while offset < end:
                chunk = self.fileObject.read(min(end - offset, 1024 * BLOCK_SIZE))
                if not chunk:
                    raise TruncatedArchiveError(f"The TAR file ends at offset {offset} inside skipped blocks!")
                if not any(chunk):
                    offset += len(chunk)
                    continue

                firstNonZero = offset + next(i for i, value in enumerate(chunk) if value)
                offset = firstNonZero - (firstNonZero - begin) % BLOCK_SIZE
                offset = self._skip_global_header(offset)
                self.fileObject.seek(offset)
        finally:
            self.fileObject.seek(oldPosition)

    def _skip_global_header(self, offset: int) -> int:
        """Returns the offset behind the PAX global header at offset. tarfile does not count it to any member."""
        self.fileObject.seek(offset)
        try:
            tarInfo = tarfile.TarInfo.frombuf(self.fileObject.read(BLOCK_SIZE), self.encoding, 'surrogateescape')
        except tarfile.HeaderError as exception:
            raise RecordDecodeError(f"Failed to decode the TAR header at offset {offset}: {exception}") from exception
        if tarInfo.type != tarfile.XGLTYPE:
            raise RecordDecodeError(f"Failed to decode the TAR header at offset {offset}!")
        return offset + BLOCK_SIZE + ceil_div(tarInfo.size, BLOCK_SIZE) * BLOCK_SIZE

    def _check_end_of_archive(self, offset: int) -> None:
        """
        tarfile silently stops iterating when a header after the first one is corrupted or cut off.
        Check that iteration stopped at an end-of-archive block or exactly at the end of the file.
        """
        self.fileObject.seek(offset)
        block = self.fileObject.read(BLOCK_SIZE)
        if not block:
            if not self.ignoreZeros:
                logger.info(
                    "The TAR file has no end-of-archive marker. It might have been cut off at a member boundary."
                )
            return
        if len(block) < BLOCK_SIZE:
            raise TruncatedArchiveError(f"The TAR header at offset {offset} is cut off after {len(block)} B!")
        if any(block):
            raise RecordDecodeError(f"Failed to decode the TAR header at offset {offset}!")

    def _get_file_size(self) -> int:
        oldPosition = self.fileObject.tell()
        size = self.fileObject.seek(0, io.SEEK_END)
        self.fileObject.seek(oldPosition)
        return size

    def read(self) -> Iterator[Entry]:
        progressBar = ProgressBar(self._get_file_size()) if self.showProgress else None
        lastUpdateTime = time.time()

        loadedTarFile = self._open_tar()
        # Offset at which the next header is expected if no blocks are skipped.
        expectedOffset = 0
        try:
            for tarInfo in loadedTarFile:
                # Clear this in order to limit memory usage by tarfile. This is fine because we only iterate once.
                loadedTarFile.members = []
                self.recordCount += 1

                self._check_skipped_blocks(expectedOffset, tarInfo.offset)
                # tarfile has already advanced its offset behind the payload of this member.
                expectedOffset = loadedTarFile.offset

                # Checking the time here avoids calling tell() for each member.
                if progressBar and time.time() - lastUpdateTime >= 1:
                    lastUpdateTime = time.time()
                    progressBar.update(loadedTarFile.offset)

                yield self._tar_info_to_entry(tarInfo)

        except tarfile.ReadError as exception:
            if 'unexpected end of data' in str(exception):
                raise TruncatedArchiveError(
                    f"The TAR file ends inside the data of member number {self.recordCount}!"
                ) from exception
            raise RecordDecodeError(
                f"Failed to decode TAR member number {self.recordCount + 1}: {exception}"
            ) from exception
        finally:
            if progressBar:
                progressBar.update(loadedTarFile.offset)
                progressBar.__exit__(None, None, None)

        self._check_skipped_blocks(expectedOffset, loadedTarFile.offset)
        self._check_end_of_archive(loadedTarFile.offset)


class ArchiveIndex:
    """
    Tree of inode-addressed nodes derived from the flat member list of a TAR archive.

    Use ArchiveIndex.build to create it. It should be considered immutable after building and can then be
    shared between threads without locking. The arena stores the node for inode i at position i - 1.
    """

    def __init__(self) -> None:
        self._nodes: Arena[Node] = Arena()
        # Only needed for resolving parent folders while building. Cleared when the index is finalized.
        self._inodesByPath: dict[str, int] = {}
        # (parent inode, name) -> inode
        self._childInodes: dict[tuple[int, str], int] = {}
        self._nextInode = ROOT_INODE + 1
        self._finalized = False

        self._nodes.insert(Node(inode=ROOT_INODE, parent=NO_PARENT, children=[], entry=create_root_entry()), 0)
        self._inodesByPath[''] = ROOT_INODE

    @classmethod
    def build(
        cls,
        fileObject: IO[bytes],
        *,
        encoding: str = tarfile.ENCODING,
        ignoreZeros: bool = False,
        showProgress: bool = False,
    ) -> 'ArchiveIndex':
        """
        Reads the whole archive from the beginning and returns the finished index.
        Raises an IndexBuildError subclass if the archive can not be indexed completely.
        """
        if not fileObject.seekable():
            raise IndexBuildError("The archive must be opened as a seekable file object!")
        fileObject.seek(0)

        tStart = timer()
        reader = _TarRecordReader(fileObject, encoding=encoding, ignoreZeros=ignoreZeros, showProgress=showProgress)
        index = cls()
        index.add_entries(reader.read())
        index.finalize()

        logger.info(
            "Indexed %s TAR members into %s nodes in %.3f s.", reader.recordCount, len(index), timer() - tStart
        )
        return index

    def _node(self, inode: int) -> Node:
        node = self._nodes.get(inode - 1)
        assert node is not None, f"Inode {inode} must exist while building the index!"
        return node

    def _append_node(self, parent: Node, name: str, path: str, entry: Entry) -> Node:
        inode = self._nextInode
        self._nextInode += 1

        node = Node(inode=inode, parent=parent.inode, children=[], entry=entry)
        self._nodes.insert(node, inode - 1)
        parent.children.append(inode)
        self._inodesByPath[path] = inode
        self._childInodes[(parent.inode, name)] = inode
        return node

    def _resolve_directory(self, path: str, requestedBy: str) -> Node:
        """Returns the directory node for the normalized path and creates all missing folders on the way."""
        missingPaths = []
        while path not in self._inodesByPath:
            missingPaths.append(path)
            path = posixpath.dirname(path)

        node = self._node(self._inodesByPath[path])
        if not node.is_dir():
            raise ConflictingRecordError(
                f"TAR member '{requestedBy}' requires '{node.entry.path}' to be a folder but it is a "
                f"{node.entry.kind.name.lower().replace('_', ' ')}!"
            )

        for missingPath in reversed(missingPaths):
            logger.debug("Generating missing parent folder: %s", missingPath)
            node = self._append_node(
                node, posixpath.basename(missingPath), missingPath, create_generated_directory_entry(missingPath)
            )
        return node

    @staticmethod
    def _update_node(node: Node, entry: Entry) -> Node:
        if node.entry.isGenerated and entry.kind == EntryKind.DIRECTORY:
            logger.debug("Found folder member for already generated folder: %s", entry.path)
        elif node.children and entry.kind != EntryKind.DIRECTORY:
            raise ConflictingRecordError(
                f"TAR member '{entry.path}' would replace a folder that already contains {len(node.children)} "
                "entries with a non-folder!"
            )
        else:
            logger.info("TAR member '%s' is stored multiple times. The last occurrence will be used.", entry.path)

        node.entry = entry
        return node

    def add_entry(self, entry: Entry) -> Node:
        if self._finalized:
            raise IndexBuildError("The index is immutable after it has been finalized!")

        path = normalize_path(entry.path)
        if not path:
            logger.debug("Ignoring TAR member '%s' because it refers to the root folder.", entry.path)
            return self._node(ROOT_INODE)

        existingInode = self._inodesByPath.get(path)
        if existingInode is not None:
            return self._update_node(self._node(existingInode), entry)

        parentPath, name = posixpath.split(path)
        parent = self._resolve_directory(parentPath, requestedBy=entry.path)
        return self._append_node(parent, name, path, entry)

    def add_entries(self, entries: Iterable[Entry]) -> None:
        for entry in entries:
            self.add_entry(entry)

    def finalize(self) -> None:
        if self._finalized:
            return
        for node in self._nodes:
            if node.is_dir() and node.parent != NO_PARENT:
                self._node(node.parent).subfolderCount += 1
        self._inodesByPath = {}
        self._finalized = True

    def get(self, inode: int) -> Optional[Node]:
        return self._nodes.get(inode - 1) if inode >= ROOT_INODE else None

    def lookup(self, parentInode: int, name: str) -> Optional[Node]:
        inode = self._childInodes.get((parentInode, name))
        return None if inode is None else self.get(inode)

    def children(self, inode: int) -> list[Node]:
        node = self.get(inode)
        if node is None:
            return []
        return [child for child in (self.get(childInode) for childInode in node.children) if child is not None]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)
