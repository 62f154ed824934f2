"""Creating filesystems with the mkfs tools."""

from __future__ import annotations

import re

from elemental_tools.runner import Runner

_LINUX_FS = re.compile(r"ext[2-4]|xfs")
_FAT_FS = re.compile(r"fat|vfat")


class UnsupportedFilesystemError(ValueError):
    """The filesystem type has no known mkfs options."""


class MkfsCall:
    """One run of ``mkfs.<filesystem>`` on a device; ``args`` are extra options."""

    def __init__(self, dev: str, file_system: str, label: str, runner: Runner, *args: str) -> None:
        self.dev = dev
        self.file_system = file_system
        self.label = label
        self.runner = runner
        self.custom_opts = list(args)

    def build_options(self) -> list[str]:
        """Return the arguments for the mkfs tool."""
        if _LINUX_FS.search(self.file_system):
            label_flag = "-L"
        elif _FAT_FS.search(self.file_system):
            label_flag = "-n"
        else:
            raise UnsupportedFilesystemError(f"unsupported filesystem: {self.file_system}")
        opts = [label_flag, self.label] if self.label else []
        return [*opts, *self.custom_opts, self.dev]

    def apply(self) -> str:
        """Create the filesystem and return the tool's output."""
        opts = self.build_options()
        out = self.runner.run(f"mkfs.{self.file_system}", *opts)
        return out.decode("utf-8", errors="replace")