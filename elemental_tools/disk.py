"""A block device and the partitioning operations done on it."""

from __future__ import annotations

import contextlib
import dataclasses
import posixpath
import re
import time
from typing import Callable

from elemental_tools.filesystem import FileSystem, OSFileSystem
from elemental_tools.logger import Logger, new_logger
from elemental_tools.mkfs import MkfsCall
from elemental_tools.parted import PartedCall, Partition
from elemental_tools.runner import CommandError, RealRunner, Runner

PARTITION_TRIES = 10
# Parted warning for disks that were expanded without fixing the GPT headers.
_PARTED_WARN = re.compile("Not all of the space available")
_VALID_TABLE = re.compile("msdos|gpt")
_ENDS_WITH_DIGIT = re.compile(r".*\d+$")
_ONE_MIB = 1024 * 1024


class DiskError(RuntimeError):
    """A disk operation could not be carried out."""


def mib_to_sectors(size: int, sector_size: int) -> int:
    """Convert a size in MiB to a number of sectors."""
    return size * 1048576 // sector_size


def format_device(runner: Runner, device: str, file_system: str, label: str, *args: str) -> None:
    """Create a filesystem on ``device``; ``args`` are extra mkfs options."""
    MkfsCall(device, file_system, label, runner, *args).apply()


class Disk:
    """A disk device whose partition table is read and changed through parted.

    ``partition_fs`` tells the filesystem type found on a partition device;
    by default it asks ``lsblk``. ``retry_delay`` is the pause in seconds
    between attempts to find a partition device.
    """

    def __init__(
        self,
        device: str,
        runner: Runner | None = None,
        fs: FileSystem | None = None,
        logger: Logger | None = None,
        partition_fs: Callable[[str], str] | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.device = device
        self.runner: Runner = runner if runner is not None else RealRunner()
        self.fs: FileSystem = fs if fs is not None else OSFileSystem()
        self.logger = logger if logger is not None else new_logger()
        self.partition_fs = partition_fs if partition_fs is not None else self._lsblk_fstype
        self.retry_delay = retry_delay
        self._sector_size = 0
        self._last_sector = 0
        self._parts: list[Partition] = []
        self._label = ""

    def __str__(self) -> str:
        return self.device

    @property
    def sector_size(self) -> int:
        return self._sector_size

    @property
    def last_sector(self) -> int:
        return self._last_sector

    @property
    def label(self) -> str:
        return self._label

    @property
    def partitions(self) -> tuple[Partition, ...]:
        return tuple(self._parts)

    def _lsblk_fstype(self, device: str) -> str:
        out = self.runner.run("lsblk", "-n", "-o", "FSTYPE", device)
        return out.decode("utf-8", errors="replace")

    def exists(self) -> bool:
        """Tell whether the device exists, resolving it if it is a symlink."""
        if not self.fs.exists(self.device):
            return False
        if self.fs.is_symlink(self.device):
            try:
                target = self.fs.readlink(self.device)
            except OSError:
                return False
            if not posixpath.isabs(target):
                target = posixpath.normpath(
                    posixpath.join(posixpath.dirname(self.device), target)
                )
            self.device = target
        return True

    def reload(self) -> None:
        """Read the partition table of the device again."""
        pc = PartedCall(str(self), self.runner)
        printed = pc.print()

        # The warning means GPT headers do not match the disk size; sgdisk
        # moves them to the end of the disk.
        if _PARTED_WARN.search(printed):
            self.runner.run("sgdisk", "-e", self.device)
            printed = pc.print()

        sector_size = pc.get_sector_size(printed)
        last_sector = pc.get_last_sector(printed)
        label = pc.get_partition_table_label(printed)
        partitions = pc.get_partitions(printed)
        self._sector_size = sector_size
        self._last_sector = last_sector
        self._parts = partitions
        self._label = label

    def _ensure_loaded(self) -> None:
        if self._sector_size == 0:
            try:
                self.reload()
            except Exception as exc:
                self.logger.error(f"Failed analyzing disk: {exc}")
                raise

    def check_disk_free_space_mib(self, min_space: int) -> bool:
        """Tell whether at least ``min_space`` MiB are unallocated."""
        try:
            free = self.get_free_space()
        except Exception:
            self.logger.warn("Could not calculate disk free space")
            return False
        return free >= mib_to_sectors(min_space, self._sector_size)

    def get_free_space(self) -> int:
        """Return the number of unallocated sectors after the last partition."""
        self._ensure_loaded()
        return self._compute_free_space()

    def _compute_free_space(self) -> int:
        if self._parts:
            last = self._parts[-1]
            return self._last_sector - (last.start_s + last.size_s - 1)
        # The first partition starts at a 1MiB offset.
        return self._last_sector - (_ONE_MIB // self._sector_size - 1)

    def _compute_free_space_without_last(self) -> int:
        if len(self._parts) > 1:
            part = self._parts[-2]
            return self._last_sector - (part.start_s + part.size_s - 1)
        return self._last_sector - (_ONE_MIB // self._sector_size - 1)

    def new_partition_table(self, label: str) -> str:
        """Write a new, empty partition table of type ``label``."""
        if not _VALID_TABLE.search(label):
            raise DiskError("Invalid partition table type, only msdos and gpt are supported")
        pc = PartedCall(str(self), self.runner)
        pc.set_partition_table_label(label)
        pc.wipe_table(True)
        out = pc.write_changes()
        try:
            self.reload()
        except Exception as exc:
            self.logger.error(f"Failed analyzing disk: {exc}")
            raise
        return out

    def add_partition(self, size: int, file_system: str, p_label: str, *args: str) -> int:
        """Add a partition of ``size`` MiB after the last one and return its number.

        A size of 0 takes all the remaining space; ``args`` are flags to set on it.
        """
        pc = PartedCall(str(self), self.runner)
        self._ensure_loaded()
        pc.set_partition_table_label(self._label)

        if self._parts:
            last = self._parts[-1]
            part_num = last.number
            start = last.start_s + last.size_s
        else:
            part_num = 0
            start = _ONE_MIB // self._sector_size

        size_s = mib_to_sectors(size, self._sector_size)
        free = self._compute_free_space()
        if size_s > free:
            raise DiskError(
                f"not enough free space in disk. Required: {size_s} sectors; "
                f"Available {free} sectors"
            )

        part_num += 1
        pc.create_partition(
            Partition(
                number=part_num,
                start_s=start,
                size_s=size_s,
                p_label=p_label,
                file_system=file_system,
            )
        )
        for flag in args:
            pc.set_partition_flag(part_num, flag, True)

        try:
            out = pc.write_changes()
        except Exception as exc:
            self.logger.error(f"Failed creating partition: {exc}")
            raise
        self.logger.debug(f"partitioner output: {out}")

        try:
            self.reload()
        except Exception as exc:
            self.logger.error(f"Failed analyzing disk: {exc}")
            raise
        return part_num

    def format_partition(self, part_num: int, file_system: str, label: str) -> str:
        """Create a filesystem on partition ``part_num`` and return the tool output."""
        device = self.find_partition_device(part_num)
        return MkfsCall(device, file_system, label, self.runner).apply()

    def wipe_fs_on_partition(self, device: str) -> None:
        """Clear every filesystem signature from ``device``."""
        self.runner.run("wipefs", "--all", device)

    def find_partition_device(self, part_num: int) -> str:
        """Return the device node of partition ``part_num``, waiting for udev to create it."""
        if _ENDS_WITH_DIGIT.match(self.device):
            device = f"{self.device}p{part_num}"
        else:
            device = f"{self.device}{part_num}"

        for attempt in range(PARTITION_TRIES + 1):
            self.logger.debug(
                f"Trying to find the partition device {part_num} of device {self} "
                f"(try number {attempt + 1})"
            )
            with contextlib.suppress(CommandError):
                self.runner.run("udevadm", "settle")
            if self.fs.exists(device):
                return device
            time.sleep(self.retry_delay)
        raise DiskError(f"could not find partition device '{device}' for partition {part_num}")

    def expand_last_partition(self, size: int) -> str:
        """Grow the last partition to ``size`` MiB, or to the disk end if 0, with its filesystem."""
        pc = PartedCall(str(self), self.runner)
        self._ensure_loaded()
        pc.set_partition_table_label(self._label)

        if not self._parts:
            raise DiskError("There is no partition to expand")

        last = self._parts[-1]
        size_s = 0
        if size > 0:
            size_s = mib_to_sectors(size, self._sector_size)
            if size_s < last.size_s:
                raise DiskError("Layout plugin can only expand a partition, not shrink it")
            free = self._compute_free_space_without_last()
            if size_s > free:
                raise DiskError(
                    f"not enough free space for to expand last partition up to {size_s} sectors"
                )
        part = dataclasses.replace(last, size_s=size_s)
        pc.delete_partition(part.number)
        pc.create_partition(part)
        pc.write_changes()
        self.reload()
        device = self.find_partition_device(part.number)
        return self._expand_filesystem(device)

    def _expand_filesystem(self, device: str) -> str:
        fs_type = self.partition_fs(device).strip()
        if fs_type in ("ext2", "ext3", "ext4"):
            self.runner.run("e2fsck", "-fy", device)
            self.runner.run("resize2fs", device)
        elif fs_type == "xfs":
            # xfs can only grow while mounted
            tmp_dir = self.fs.temp_dir("partitioner")
            try:
                self.runner.run("mount", "-t", "xfs", device, tmp_dir)
                try:
                    self.runner.run("xfs_growfs", tmp_dir)
                except CommandError:
                    self.runner.run("umount", tmp_dir)
                    raise
                self.runner.run("umount", tmp_dir)
            finally:
                self.fs.remove_all(tmp_dir)
        else:
            raise DiskError(
                f"could not find filesystem for {device}, not resizing the filesystem"
            )
        return ""