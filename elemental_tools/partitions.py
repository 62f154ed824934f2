"""Partitions of an installation and the default layout they follow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from elemental_tools.state import InstallState

GPT = "gpt"
BIOS = "bios"
MSDOS = "msdos"
EFI = "efi"

ESP_FLAG = "esp"
BIOS_GRUB_FLAG = "bios_grub"
BOOT_FLAG = "boot"

EFI_PART_NAME = "efi"
EFI_LABEL = "COS_GRUB"
EFI_SIZE = 64
EFI_FS = "vfat"
EFI_DIR = "/run/cos/efi"
BIOS_PART_NAME = "bios"
BIOS_SIZE = 1
OEM_PART_NAME = "oem"
OEM_LABEL = "COS_OEM"
RECOVERY_PART_NAME = "recovery"
RECOVERY_LABEL = "COS_RECOVERY"
STATE_PART_NAME = "state"
STATE_LABEL = "COS_STATE"
PERSISTENT_PART_NAME = "persistent"
PERSISTENT_LABEL = "COS_PERSISTENT"


class PartitionError(ValueError):
    """The partition layout cannot be set up as asked."""


@dataclass
class Partition:
    """A partition with its configurable values; size is in MiB."""

    name: str = ""
    filesystem_label: str = ""
    size: int = 0
    fs: str = ""
    flags: list[str] = field(default_factory=list)
    mount_point: str = ""
    path: str = ""
    disk: str = ""


def _contains(part: Partition, items: Iterable[Partition]) -> bool:
    return any(part is item for item in items)


class PartitionList(list):
    """A list of partitions with lookups by name and label."""

    def get_by_name(self, name: str) -> Partition | None:
        """Return the partition named ``name``, preferring one with a mount point."""
        found = None
        for part in self:
            if part.name == name:
                found = part
                if part.mount_point:
                    return part
        return found

    def get_by_label(self, label: str) -> Partition | None:
        """Return the partition with filesystem ``label``, preferring one with a mount point."""
        found = None
        for part in self:
            if part.filesystem_label == label:
                found = part
                if part.mount_point:
                    return part
        return found

    def get_by_name_or_label(self, name: str, label: str) -> Partition | None:
        part = self.get_by_name(name)
        if part is None:
            part = self.get_by_label(label)
        return part


@dataclass
class ElementalPartitions:
    """The well-known partitions of an installation."""

    bios: Partition | None = None
    efi: Partition | None = None
    oem: Partition | None = None
    recovery: Partition | None = None
    state: Partition | None = None
    persistent: Partition | None = None

    def set_firmware_partitions(self, firmware: str, part_table: str) -> None:
        """Add the partitions the firmware and partition table need."""
        if firmware == EFI and part_table == GPT:
            self.efi = Partition(
                filesystem_label=EFI_LABEL,
                size=EFI_SIZE,
                name=EFI_PART_NAME,
                fs=EFI_FS,
                mount_point=EFI_DIR,
                flags=[ESP_FLAG],
            )
            self.bios = None
        elif firmware == BIOS and part_table == GPT:
            self.bios = Partition(size=BIOS_SIZE, name=BIOS_PART_NAME, flags=[BIOS_GRUB_FLAG])
            self.efi = None
        else:
            if self.state is None:
                raise PartitionError("nil state partition")
            self.state.flags = [BOOT_FLAG]
            self.efi = None
            self.bios = None

    def partitions_by_install_order(
        self, extra_partitions: Iterable[Partition] | None, *args: Partition
    ) -> PartitionList:
        """Order partitions by the default layout.

        ``args`` are partitions to leave out. The one partition of size 0
        goes last so it takes the remaining space; further ones are dropped.
        """
        excludes = args
        ordered = PartitionList()
        last: Partition | None = None

        for part in (self.bios, self.efi, self.oem, self.recovery, self.state):
            if part is not None and not _contains(part, excludes):
                ordered.append(part)
        if self.persistent is not None and not _contains(self.persistent, excludes):
            if self.persistent.size == 0:
                last = self.persistent
            else:
                ordered.append(self.persistent)
        for part in extra_partitions or ():
            if part.size == 0:
                if last is not None:
                    continue
                last = part
            else:
                ordered.append(part)
        if last is not None:
            ordered.append(last)
        return ordered

    def partitions_by_mount_point(self, descending: bool, *args: Partition) -> PartitionList:
        """Order mounted partitions by mount point; ``args`` are partitions to leave out."""
        by_mount_point: dict[str, Partition] = {}
        mount_points: list[str] = []
        for part in self.partitions_by_install_order([], *args):
            if part.mount_point:
                by_mount_point[part.mount_point] = part
                mount_points.append(part.mount_point)
        mount_points.sort(reverse=descending)
        return PartitionList(by_mount_point[mnt] for mnt in mount_points)


def new_elemental_partitions_from_list(
    partitions: Iterable[Partition], state: InstallState | None
) -> ElementalPartitions:
    """Pick the well-known partitions from a list, by name first and then by label.

    Labels recorded in ``state`` replace the default labels.
    """
    plist = partitions if isinstance(partitions, PartitionList) else PartitionList(partitions)
    labels = {
        EFI_PART_NAME: EFI_LABEL,
        OEM_PART_NAME: OEM_LABEL,
        RECOVERY_PART_NAME: RECOVERY_LABEL,
        STATE_PART_NAME: STATE_LABEL,
        PERSISTENT_PART_NAME: PERSISTENT_LABEL,
    }
    if state is not None:
        for name in labels:
            recorded = state.partitions.get(name)
            if recorded is not None:
                labels[name] = recorded.fs_label

    return ElementalPartitions(
        bios=plist.get_by_name(BIOS_PART_NAME),
        efi=plist.get_by_name_or_label(EFI_PART_NAME, labels[EFI_PART_NAME]),
        oem=plist.get_by_name_or_label(OEM_PART_NAME, labels[OEM_PART_NAME]),
        recovery=plist.get_by_name_or_label(RECOVERY_PART_NAME, labels[RECOVERY_PART_NAME]),
        state=plist.get_by_name_or_label(STATE_PART_NAME, labels[STATE_PART_NAME]),
        persistent=plist.get_by_name_or_label(PERSISTENT_PART_NAME, labels[PERSISTENT_PART_NAME]),
    )