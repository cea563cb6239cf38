"""Tarmount Core

This is the backend of tarmount. It is intended to be used as a library.

It reads an uncompressed TAR archive once, builds an inode-addressed tree of all its members, and answers
the inode-based queries a read-only FUSE file system needs: lookup by name, attributes, directory listings,
and byte-range reads.

Example:

    from tarmountcore import ROOT_INODE, TarFileSystem

    with TarFileSystem("foo.tar") as archive:
        bar = archive.lookup(ROOT_INODE, "bar")
        print([entry.name for entry in archive.readdir(ROOT_INODE)])
        print(archive.read(bar.inode, bar.entry.size, 0))
"""

from .version import __version__

from .ArchiveIndex import BLOCK_SIZE, ROOT_INODE, ArchiveIndex, Entry, EntryKind, Node
from .Arena import Arena
from .TarFileSystem import DirectoryEntry, TarFileSystem
from .utils import (
    ConflictingRecordError,
    EntryNotFoundError,
    IndexBuildError,
    NotARegularFileError,
    OperationNotSupportedError,
    ReadOutOfRangeError,
    RecordDecodeError,
    TarMountError,
    TruncatedArchiveError,
    UnsupportedRecordError,
)
