import io
import tarfile


def create_file(tarArchive, name, contents, mode=0o644):
    if isinstance(contents, str):
        contents = contents.encode()
    tinfo = tarfile.TarInfo(name)
    tinfo.size = len(contents)
    tinfo.mode = mode
    tarArchive.addfile(tinfo, io.BytesIO(contents))


def make_folder(tarArchive, name, mode=0o755):
    tinfo = tarfile.TarInfo(name)
    tinfo.type = tarfile.DIRTYPE
    tinfo.mode = mode
    tarArchive.addfile(tinfo, io.BytesIO())


def make_link(tarArchive, name, target, linkType=tarfile.SYMTYPE):
    tinfo = tarfile.TarInfo(name)
    tinfo.type = linkType
    tinfo.linkname = target
    tarArchive.addfile(tinfo)


def make_special(tarArchive, name, tarType, devmajor=0, devminor=0):
    tinfo = tarfile.TarInfo(name)
    tinfo.type = tarType
    tinfo.devmajor = devmajor
    tinfo.devminor = devminor
    tarArchive.addfile(tinfo)


def create_tar(addMembers, tarFormat=tarfile.GNU_FORMAT) -> bytes:
    """Calls addMembers with a TarFile opened for writing and returns the resulting archive."""
    result = io.BytesIO()
    with tarfile.open(fileobj=result, mode='w', format=tarFormat) as tarArchive:
        addMembers(tarArchive)
    return result.getvalue()


def create_example_tar() -> bytes:
    """a/, a/b.txt (10 B), c.txt (5 B)"""

    def add_members(tarArchive):
        make_folder(tarArchive, "a")
        create_file(tarArchive, "a/b.txt", b"0123456789")
        create_file(tarArchive, "c.txt", b"hello")

    return create_tar(add_members)
