# pylint: disable=wrong-import-position
# pylint: disable=protected-access

import concurrent.futures
import io
import os
import stat
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from helpers import create_example_tar, create_file, create_tar, make_folder, make_link  # noqa: E402

from tarmountcore.ArchiveIndex import ROOT_INODE  # noqa: E402
from tarmountcore.TarFileSystem import TarFileSystem  # noqa: E402
from tarmountcore.utils import (  # noqa: E402
    EntryNotFoundError,
    NotARegularFileError,
    OperationNotSupportedError,
    ReadOutOfRangeError,
    RecordDecodeError,
)


def open_example() -> TarFileSystem:
    return TarFileSystem(fileObject=io.BytesIO(create_example_tar()))


class TestTarFileSystem:
    @staticmethod
    def test_lookup():
        with open_example() as fileSystem:
            folder = fileSystem.lookup(ROOT_INODE, "a")
            assert folder.inode == 2
            assert fileSystem.lookup(folder.inode, "b.txt").inode == 3
            assert fileSystem.lookup(ROOT_INODE, "c.txt").inode == 4

            for parent, name in [(ROOT_INODE, "b.txt"), (ROOT_INODE, "missing"), (9999, "a"), (4, "a")]:
                with pytest.raises(EntryNotFoundError):
                    fileSystem.lookup(parent, name)

    @staticmethod
    def test_getattr():
        with open_example() as fileSystem:
            attributes = fileSystem.getattr(3)
            assert attributes['st_ino'] == 3
            assert attributes['st_mode'] == stat.S_IFREG | 0o644
            assert attributes['st_size'] == 10
            assert attributes['st_nlink'] == 1
            assert attributes['st_blocks'] == 1
            assert attributes['st_uid'] == 0
            assert attributes['st_gid'] == 0
            assert attributes['st_mtime'] == 0

            attributes = fileSystem.getattr(ROOT_INODE)
            assert stat.S_ISDIR(attributes['st_mode'])
            # '.', the '..' of the subfolder 'a', and the entry in the parent.
            assert attributes['st_nlink'] == 3

            assert fileSystem.getattr(2)['st_nlink'] == 2

    @staticmethod
    @pytest.mark.parametrize("inode", [0, -1, 5, 9999])
    def test_getattr_unknown_inode(inode):
        with open_example() as fileSystem, pytest.raises(EntryNotFoundError):
            fileSystem.getattr(inode)

    @staticmethod
    def test_getattr_nanosecond_timestamps():
        def add_members(tarArchive):
            create_file(tarArchive, "c.txt", "hello")

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:
            fileSystem.index.lookup(ROOT_INODE, "c.txt").entry.mtime = 1234
            attributes = fileSystem.getattr(2)
            assert attributes['st_mtime'] == 1234 * 10**9
            assert attributes['st_atime'] == attributes['st_mtime']
            assert attributes['st_ctime'] == attributes['st_mtime']

    @staticmethod
    def test_readdir():
        with open_example() as fileSystem:
            listing = list(fileSystem.readdir(ROOT_INODE))
            assert [entry.name for entry in listing] == [".", "..", "a", "c.txt"]
            # The root is its own parent.
            assert [entry.inode for entry in listing] == [1, 1, 2, 4]
            assert [entry.offset for entry in listing] == [1, 2, 3, 4]
            assert stat.S_ISDIR(listing[2].mode)
            assert stat.S_ISREG(listing[3].mode)

            listing = list(fileSystem.readdir(2))
            assert [(entry.name, entry.inode) for entry in listing] == [(".", 2), ("..", 1), ("b.txt", 3)]

    @staticmethod
    def test_readdir_with_cursor():
        def add_members(tarArchive):
            make_folder(tarArchive, "folder")
            for i in range(100):
                create_file(tarArchive, f"folder/file{i}", str(i))

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:
            folder = fileSystem.lookup(ROOT_INODE, "folder")
            names = []
            offset = 0
            while True:
                # Simulate a reply buffer with room for only 7 entries.
                chunk = []
                for entry in fileSystem.readdir(folder.inode, offset):
                    if len(chunk) == 7:
                        break
                    chunk.append(entry)
                if not chunk:
                    break
                names.extend(entry.name for entry in chunk)
                offset = chunk[-1].offset

            assert names == [".", ".."] + [f"file{i}" for i in range(100)]
            assert list(fileSystem.readdir(folder.inode, offset)) == []
            assert list(fileSystem.readdir(folder.inode, 1000)) == []

    @staticmethod
    def test_readdir_starts_at_cursor(monkeypatch):
        def add_members(tarArchive):
            for i in range(100):
                create_file(tarArchive, f"file{i}", str(i))

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:
            requestedInodes = []
            get = fileSystem.index.get

            def counting_get(inode):
                requestedInodes.append(inode)
                return get(inode)

            monkeypatch.setattr(fileSystem.index, 'get', counting_get)
            listing = list(fileSystem.readdir(ROOT_INODE, 100))
            assert [entry.name for entry in listing] == ["file98", "file99"]
            assert [entry.offset for entry in listing] == [101, 102]
            # The folder itself and the two returned children.
            assert len(requestedInodes) == 3

    @staticmethod
    def test_getattr_link_count_after_replaced_folder():
        def add_members(tarArchive):
            make_folder(tarArchive, "a")
            create_file(tarArchive, "b/c.txt", "c")
            make_folder(tarArchive, "d")
            create_file(tarArchive, "d", "now a file")

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:
            assert fileSystem.getattr(ROOT_INODE)['st_nlink'] == 4
            assert fileSystem.getattr(fileSystem.lookup(ROOT_INODE, "b").inode)['st_nlink'] == 2
            assert fileSystem.getattr(fileSystem.lookup(ROOT_INODE, "d").inode)['st_nlink'] == 1

    @staticmethod
    def test_readdir_errors():
        with open_example() as fileSystem:
            for inode in [0, 3, 4, 9999]:
                with pytest.raises(EntryNotFoundError):
                    fileSystem.readdir(inode)

    @staticmethod
    def test_read():
        with open_example() as fileSystem:
            assert fileSystem.read(3, 10, 0) == b"0123456789"
            assert fileSystem.read(3, 4096, 0) == b"0123456789"
            assert fileSystem.read(3, 3, 4) == b"456"
            assert fileSystem.read(3, 100, 8) == b"89"
            assert fileSystem.read(3, 100, 10) == b""
            assert fileSystem.read(3, 0, 0) == b""
            assert fileSystem.read(4, 5, 0) == b"hello"

            # Reads must be repeatable and independent of the order.
            assert fileSystem.read(3, 3, 4) == b"456"
            assert fileSystem.read(4, 2, 3) == b"lo"

    @staticmethod
    def test_read_errors():
        with open_example() as fileSystem:
            with pytest.raises(NotARegularFileError):
                fileSystem.read(2, 10, 0)
            with pytest.raises(NotARegularFileError):
                fileSystem.read(ROOT_INODE, 10, 0)
            with pytest.raises(ReadOutOfRangeError):
                fileSystem.read(3, 10, 11)
            with pytest.raises(ReadOutOfRangeError):
                fileSystem.read(3, 10, -1)
            with pytest.raises(EntryNotFoundError):
                fileSystem.read(9999, 10, 0)

            # All of these should be reported as not found.
            assert issubclass(NotARegularFileError, EntryNotFoundError)
            assert issubclass(ReadOutOfRangeError, EntryNotFoundError)

    @staticmethod
    def test_read_symlink_is_error():
        def add_members(tarArchive):
            make_link(tarArchive, "link", "target")

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:
            with pytest.raises(NotARegularFileError):
                fileSystem.read(2, 10, 0)
            with pytest.raises(OperationNotSupportedError):
                fileSystem.readlink(2)

    @staticmethod
    def test_parallel_reads():
        contents = {f"file{i}": os.urandom(1000 + i * 100) for i in range(16)}

        def add_members(tarArchive):
            for name, data in contents.items():
                create_file(tarArchive, name, data)

        with TarFileSystem(fileObject=io.BytesIO(create_tar(add_members))) as fileSystem:

            def read_all(name):
                node = fileSystem.lookup(ROOT_INODE, name)
                result = b""
                for offset in range(0, node.entry.size, 97):
                    result += fileSystem.read(node.inode, 97, offset)
                return result

            with concurrent.futures.ThreadPoolExecutor(8) as pool:
                names = list(contents) * 4
                for name, result in zip(names, pool.map(read_all, names)):
                    assert result == contents[name]

    @staticmethod
    def test_stubs():
        with open_example() as fileSystem:
            with pytest.raises(OperationNotSupportedError):
                fileSystem.readlink(3)
            with pytest.raises(EntryNotFoundError):
                fileSystem.readlink(9999)

            assert fileSystem.statfs() == {}
            assert fileSystem.listxattr(3) == []
            assert fileSystem.getxattr(3, "user.foo") is None
            with pytest.raises(EntryNotFoundError):
                fileSystem.listxattr(9999)
            with pytest.raises(EntryNotFoundError):
                fileSystem.getxattr(9999, "user.foo")

    @staticmethod
    def test_open_by_name(tmp_path):
        path = tmp_path / "example.tar"
        path.write_bytes(create_example_tar())

        fileSystem = TarFileSystem(str(path))
        assert fileSystem.read(4, 5, 0) == b"hello"
        fileSystem.close()
        assert fileSystem.fileObject.closed

    @staticmethod
    def test_given_file_object_stays_open():
        fileObject = io.BytesIO(create_example_tar())
        with TarFileSystem(fileObject=fileObject) as fileSystem:
            assert fileSystem.read(4, 5, 0) == b"hello"
        assert not fileObject.closed

    @staticmethod
    def test_invalid_archive(tmp_path):
        path = tmp_path / "invalid.tar"
        path.write_bytes(b"not a tar")

        with pytest.raises(RecordDecodeError):
            TarFileSystem(path)

    @staticmethod
    def test_missing_arguments():
        with pytest.raises(ValueError):
            TarFileSystem()
