"""Process-level system calls behind a swappable interface."""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable


@runtime_checkable
class SyscallInterface(Protocol):
    """Changes of the process root and working directory."""

    def chroot(self, path: str) -> None: ...

    def chdir(self, path: str) -> None: ...


class RealSyscall:
    """Performs the calls on the running process."""

    def chroot(self, path: str) -> None:
        os.chroot(path)

    def chdir(self, path: str) -> None:
        os.chdir(path)