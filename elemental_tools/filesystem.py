"""Filesystem abstraction used to reach files through an optional root."""

from __future__ import annotations

import os
import posixpath
import shutil
import tempfile
from typing import BinaryIO, Protocol, runtime_checkable

_DEFAULT_FILE_PERM = 0o644
_DEFAULT_DIR_PERM = 0o755
_TEMP_BASE = "/tmp"


@runtime_checkable
class FileSystem(Protocol):
    """Operations the tools need from a filesystem."""

    def raw_path(self, name: str) -> str: ...

    def exists(self, name: str) -> bool: ...

    def is_symlink(self, name: str) -> bool: ...

    def readlink(self, name: str) -> str: ...

    def read_file(self, filename: str) -> bytes: ...

    def write_file(self, filename: str, data: bytes | str, perm: int = ...) -> None: ...

    def create(self, name: str) -> BinaryIO: ...

    def mkdir(self, name: str, perm: int = ...) -> None: ...

    def makedirs(self, name: str, perm: int = ...) -> None: ...

    def remove(self, name: str) -> None: ...

    def remove_all(self, path: str) -> None: ...

    def list_dir(self, dirname: str) -> list[str]: ...

    def symlink(self, oldname: str, newname: str) -> None: ...

    def chmod(self, name: str, mode: int) -> None: ...

    def temp_dir(self, prefix: str = ...) -> str: ...


class OSFileSystem:
    """The host filesystem, optionally confined below a root directory.

    Paths given to the methods are absolute paths inside the filesystem;
    they never reach above the root.
    """

    def __init__(self, root: str | os.PathLike[str] | None = None) -> None:
        self.root = os.fspath(root) if root is not None else "/"

    def raw_path(self, name: str) -> str:
        """Return the host path that ``name`` refers to."""
        clean = posixpath.normpath("/" + os.fspath(name))
        if clean.startswith("//"):
            clean = "/" + clean.lstrip("/")
        if self.root == "/":
            return clean
        return os.path.join(self.root, clean.lstrip("/"))

    def exists(self, name: str) -> bool:
        return os.path.exists(self.raw_path(name))

    def is_symlink(self, name: str) -> bool:
        return os.path.islink(self.raw_path(name))

    def readlink(self, name: str) -> str:
        return os.readlink(self.raw_path(name))

    def read_file(self, filename: str) -> bytes:
        with open(self.raw_path(filename), "rb") as handle:
            return handle.read()

    def write_file(self, filename: str, data: bytes | str, perm: int = _DEFAULT_FILE_PERM) -> None:
        payload = data.encode() if isinstance(data, str) else bytes(data)
        fd = os.open(self.raw_path(filename), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, perm)
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)

    def create(self, name: str) -> BinaryIO:
        """Create or truncate ``name`` and return it opened for reading and writing."""
        return open(self.raw_path(name), "w+b")

    def mkdir(self, name: str, perm: int = _DEFAULT_DIR_PERM) -> None:
        os.mkdir(self.raw_path(name), perm)

    def makedirs(self, name: str, perm: int = _DEFAULT_DIR_PERM) -> None:
        os.makedirs(self.raw_path(name), perm, exist_ok=True)

    def remove(self, name: str) -> None:
        raw = self.raw_path(name)
        if os.path.isdir(raw) and not os.path.islink(raw):
            os.rmdir(raw)
        else:
            os.unlink(raw)

    def remove_all(self, path: str) -> None:
        """Remove ``path`` and everything below it; a missing path is not an error."""
        raw = self.raw_path(path)
        if os.path.islink(raw) or os.path.isfile(raw):
            os.unlink(raw)
        elif os.path.isdir(raw):
            shutil.rmtree(raw)
        elif os.path.lexists(raw):
            os.unlink(raw)

    def list_dir(self, dirname: str) -> list[str]:
        """Return the entry names of a directory, sorted."""
        return sorted(os.listdir(self.raw_path(dirname)))

    def symlink(self, oldname: str, newname: str) -> None:
        os.symlink(oldname, self.raw_path(newname))

    def chmod(self, name: str, mode: int) -> None:
        os.chmod(self.raw_path(name), mode)

    def temp_dir(self, prefix: str = "") -> str:
        """Create a fresh directory below /tmp and return its path in this filesystem."""
        self.makedirs(_TEMP_BASE)
        raw = tempfile.mkdtemp(prefix=prefix, dir=self.raw_path(_TEMP_BASE))
        return posixpath.join(_TEMP_BASE, os.path.basename(raw))