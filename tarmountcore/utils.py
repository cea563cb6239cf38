import contextlib
import importlib
import os
import platform
import sys
import types
from typing import Optional, Union, get_type_hints


class TarMountError(Exception):
    """Base exception for tarmount module."""


class IndexBuildError(TarMountError):
    """Exception for archives from which no index could be built. The mount must not be started."""


class TruncatedArchiveError(IndexBuildError):
    """Exception for archives ending inside a header or inside the payload of a member."""


class RecordDecodeError(IndexBuildError):
    """Exception for TAR headers that could not be decoded, e.g., corrupted checksums or non-TAR input."""


class UnsupportedRecordError(IndexBuildError):
    """Exception for TAR members of a type that can not be represented, e.g., hard links or sparse files."""


class ConflictingRecordError(IndexBuildError):
    """Exception for members whose path requires a non-directory to act as a directory."""


class EntryNotFoundError(TarMountError):
    """Exception for unknown inodes or names. This is expected during normal traversal."""


class NotARegularFileError(EntryNotFoundError):
    """Exception for trying to read data from directories, symbolic links, devices, or FIFOs."""


class ReadOutOfRangeError(EntryNotFoundError):
    """Exception for reads starting after the end of the file."""


class OperationNotSupportedError(TarMountError):
    """Exception for callbacks which only exist to complete the FUSE interface."""


def overrides(parentClass):
    """Simple decorator that checks that a method with the same name exists in the parent class"""

    def overrider(method):
        if platform.python_implementation() == 'PyPy':
            return method

        assert method.__name__ in dir(parentClass)
        parentMethod = getattr(parentClass, method.__name__)
        assert callable(parentMethod)

        if os.getenv('TARMOUNT_CHECK_OVERRIDES', '').lower() not in ('1', 'yes', 'on', 'enable', 'enabled'):
            return method

        parentTypes = get_type_hints(parentMethod)
        # If the parent is not typed, e.g., fusepy, then do not show errors for the typed derived class.
        for argument, argumentType in get_type_hints(method).items():
            if argument in parentTypes:
                parentType = parentTypes[argument]
                assert argumentType == parentType, f"{method.__name__}: {argument}: {argumentType} != {parentType}"

        return method

    return overrider


def ceil_div(dividend, divisor):
    return -(dividend // -divisor)


def get_module(module: Union[str, types.ModuleType]) -> Optional[types.ModuleType]:
    if isinstance(module, types.ModuleType):
        return module

    if module not in sys.modules:
        with contextlib.suppress(ImportError):
            importlib.import_module(module)
    return sys.modules.get(module, None)


def find_module_version(moduleOrName: Union[str, types.ModuleType]) -> Optional[str]:
    module = get_module(moduleOrName)
    if not module:
        return None

    version = getattr(module, '__version__', None)
    if version:
        return str(version)

    # mfusepy and fusepy do not necessarily carry a __version__ attribute, so ask the installed distributions.
    import importlib.metadata as imeta  # pylint: disable=import-outside-toplevel

    for name in (module.__name__, module.__name__.split('.', 1)[0]):
        with contextlib.suppress(imeta.PackageNotFoundError):
            return imeta.version(name)

    return None
