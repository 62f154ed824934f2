"""Building and running parted commands, and parsing what parted prints."""

from __future__ import annotations

import re
from dataclasses import dataclass

from elemental_tools.partitions import GPT
from elemental_tools.runner import Runner

_VALID_LABEL = re.compile(rf"msdos|{GPT}")
_FAT = re.compile(r"fat|vfat")
_HEADER = re.compile(r"^(.*):(\d+)s:(.*):(\d+):(\d+):(.*):(.*):(.*);$")
_PARTITION = re.compile(r"^(\d+):(\d+)s:(\d+)s:(\d+)s:(.*):(.*):(.*);$")

_HEADER_LAST_SECTOR = 2
_HEADER_SECTOR_SIZE = 4
_HEADER_TABLE_LABEL = 6


class PartedError(ValueError):
    """Output of parted could not be understood."""


@dataclass
class Partition:
    """A partition as parted sees it; start and size are in sectors.

    ``file_system`` only tells parted which partition type to use.
    A size of 0 means the partition takes all the remaining space.
    """

    number: int = 0
    start_s: int = 0
    size_s: int = 0
    p_label: str = ""
    file_system: str = ""


@dataclass(frozen=True)
class _PartFlag:
    number: int
    flag: str
    active: bool


def _lines(text: str):
    for line in text.strip().splitlines():
        yield line.strip()


class PartedCall:
    """Collects partition table changes and applies them in one parted call."""

    def __init__(self, dev: str, runner: Runner) -> None:
        self.dev = dev
        self.runner = runner
        self.wipe = False
        self.label = ""
        self.parts: list[Partition] = []
        self.deletions: list[int] = []
        self.flags: list[_PartFlag] = []

    def build_options(self) -> list[str]:
        """Return the parted arguments for the pending changes, or an empty list."""
        label = self.label if _VALID_LABEL.search(self.label) else GPT
        opts: list[str] = []

        if self.wipe:
            opts += ["mklabel", label]

        for num in self.deletions:
            opts += ["rm", str(num)]

        for part in self.parts:
            if label == GPT:
                p_label = part.p_label or f"part{part.number}"
            else:
                p_label = "primary"
            file_system = "fat32" if _FAT.search(part.file_system) else part.file_system
            opts += ["mkpart", p_label, file_system, str(part.start_s)]
            if part.size_s == 0:
                opts.append("100%")
            else:
                opts.append(str(part.start_s + part.size_s - 1))

        for flag in self.flags:
            opts += ["set", str(flag.number), flag.flag, "on" if flag.active else "off"]

        if not opts:
            return []
        return ["--script", "--machine", "--", self.dev, "unit", "s", *opts]

    def write_changes(self) -> str:
        """Run parted with the pending changes and return its output.

        The table wipe, new partitions and deletions are cleared afterwards,
        also when parted fails.
        """
        opts = self.build_options()
        if not opts:
            return ""
        try:
            out = self.runner.run("parted", *opts)
        finally:
            self.wipe = False
            self.parts = []
            self.deletions = []
        return out.decode("utf-8", errors="replace")

    def set_partition_table_label(self, label: str) -> None:
        self.label = label

    def create_partition(self, partition: Partition) -> None:
        self.parts.append(partition)

    def delete_partition(self, num: int) -> None:
        self.deletions.append(num)

    def set_partition_flag(self, num: int, flag: str, active: bool) -> None:
        self.flags.append(_PartFlag(number=num, flag=flag, active=active))

    def wipe_table(self, wipe: bool) -> None:
        self.wipe = wipe

    def print(self) -> str:
        """Return parted's machine-readable listing of the device, in sectors."""
        out = self.runner.run("parted", "--script", "--machine", "--", self.dev, "unit", "s", "print")
        return out.decode("utf-8", errors="replace")

    @staticmethod
    def _header_field(print_out: str, field: int) -> str:
        for line in _lines(print_out):
            match = _HEADER.match(line)
            if match is not None:
                return match.group(field)
        raise PartedError("failed parsing parted header data")

    def get_last_sector(self, print_out: str) -> int:
        try:
            return int(self._header_field(print_out, _HEADER_LAST_SECTOR))
        except PartedError:
            raise PartedError("Failed parsing last sector") from None

    def get_sector_size(self, print_out: str) -> int:
        try:
            return int(self._header_field(print_out, _HEADER_SECTOR_SIZE))
        except PartedError:
            raise PartedError("Failed parsing sector size") from None

    def get_partition_table_label(self, print_out: str) -> str:
        return self._header_field(print_out, _HEADER_TABLE_LABEL)

    def get_partitions(self, print_out: str) -> list[Partition]:
        """Return the partitions listed in the output of :meth:`print`."""
        partitions = []
        for line in _lines(print_out):
            match = _PARTITION.match(line)
            if match is None:
                continue
            start = int(match.group(2))
            end = int(match.group(3))
            partitions.append(
                Partition(
                    number=int(match.group(1)),
                    start_s=start,
                    size_s=end - start + 1,
                    p_label=match.group(6),
                    file_system="",
                )
            )
        return partitions