"""Runtime configuration and the specifications of install, reset and upgrade actions."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any

from elemental_tools.filesystem import FileSystem, OSFileSystem
from elemental_tools.imagesource import ImageSource
from elemental_tools.logger import Logger, new_logger
from elemental_tools.partitions import (
    RECOVERY_PART_NAME,
    ElementalPartitions,
    Partition,
    PartitionList,
)
from elemental_tools.runner import RealRunner, Runner
from elemental_tools.state import InstallState, Repository
from elemental_tools.syscalls import RealSyscall, SyscallInterface

FILE_PERM = 0o600
RUNNING_STATE_DIR = "/run/initramfs/elemental-state"
INSTALL_STATE_FILE = "state.yaml"
LUET_MTREE_PLUGIN = "luet-mtree"
DEFAULT_CLOUD_INIT_PATHS = ("/system/oem", "/oem/", "/usr/local/cloud-config/")
RECOVERY_DIR = "/run/cos/recovery"
SQUASH_FS = "squashfs"
RECOVERY_SQUASH_FILE = "recovery.squashfs"
RECOVERY_IMG_FILE = "recovery.img"
RECOVERY_IMG_NAME = "recovery"

_STATE_HEADER = "# Autogenerated file by elemental client, do not edit\n\n"


class ConfigError(ValueError):
    """A configuration or specification is inconsistent."""


def _source_empty(source: ImageSource | None) -> bool:
    return source is None or source.is_empty()


def _label_of(part: Partition | None, what: str) -> str:
    if part is None:
        raise ConfigError(f"undefined {what} partition")
    return part.filesystem_label


@dataclass
class Image:
    """A filesystem image with its configurable values; size is in MiB."""

    file: str = ""
    label: str = ""
    size: int = 0
    fs: str = ""
    source: ImageSource | None = None
    mount_point: str = ""
    loop_device: str = ""


@dataclass
class Config:
    """Collaborators and generic settings shared by every action."""

    logger: Logger = field(default_factory=new_logger)
    fs: FileSystem = field(default_factory=OSFileSystem)
    mounter: Any = None
    runner: Runner = field(default_factory=RealRunner)
    syscall: SyscallInterface = field(default_factory=RealSyscall)
    cloud_init_runner: Any = None
    luet: Any = None
    client: Any = None
    cosign: bool = False
    verify: bool = False
    cosign_pub_key: str = ""
    local_image: bool = False
    repos: list[Repository] = field(default_factory=list)
    arch: str = ""
    squash_fs_compression_config: list[str] = field(default_factory=list)
    squash_fs_no_compression: bool = False
    cloud_init_paths: list[str] = field(default_factory=list)
    strict: bool = False

    def write_install_state(
        self, state: InstallState, state_path: str, recovery_path: str
    ) -> None:
        """Write the install state file to the state and recovery paths."""
        data = (_STATE_HEADER + state.to_yaml()).encode()
        self.fs.write_file(state_path, data, FILE_PERM)
        self.fs.write_file(recovery_path, data, FILE_PERM)

    def load_install_state(self) -> InstallState:
        """Read the install state file of the running system."""
        data = self.fs.read_file(posixpath.join(RUNNING_STATE_DIR, INSTALL_STATE_FILE))
        return InstallState.from_yaml(data)

    def sanitize(self) -> None:
        """Make the settings consistent with each other."""
        if self.verify and self.luet is not None:
            self.luet.set_plugins(LUET_MTREE_PLUGIN)
        if self.squash_fs_no_compression:
            self.squash_fs_compression_config = []
        if self.luet is not None:
            self.luet.set_arch(self.arch)


@dataclass
class RunConfig(Config):
    """Configuration of actions run on a system."""

    reboot: bool = False
    power_off: bool = False
    eject_cd: bool = False

    def sanitize(self) -> None:
        """Always include the default cloud-init paths, then sanitize the base settings."""
        self.cloud_init_paths = [*DEFAULT_CLOUD_INIT_PATHS, *self.cloud_init_paths]
        super().sanitize()


@dataclass
class BuildConfig(Config):
    """Configuration for building ISOs, raw images and artifacts."""

    date: bool = False
    name: str = ""
    out_dir: str = ""

    def sanitize(self) -> None:
        super().sanitize()


def _common_grub_labels(partitions: ElementalPartitions, active: Image, passive: Image) -> dict[str, str]:
    return {
        "state_label": _label_of(partitions.state, "state"),
        "active_label": active.label,
        "passive_label": passive.label,
        "recovery_label": _label_of(partitions.recovery, "recovery"),
        "oem_label": _label_of(partitions.oem, "oem"),
    }


@dataclass
class InstallSpec:
    """Details of an installation."""

    target: str = ""
    firmware: str = ""
    part_table: str = ""
    partitions: ElementalPartitions = field(default_factory=ElementalPartitions)
    extra_partitions: PartitionList = field(default_factory=PartitionList)
    no_format: bool = False
    force: bool = False
    cloud_init: list[str] = field(default_factory=list)
    iso: str = ""
    grub_def_entry: str = ""
    active: Image = field(default_factory=Image)
    recovery: Image = field(default_factory=Image)
    passive: Image = field(default_factory=Image)
    grub_conf: str = ""
    disable_boot_entry: bool = False

    def sanitize(self) -> None:
        """Check consistency and fill in derived values; raise on unsolvable problems."""
        if _source_empty(self.active.source) and not self.iso:
            raise ConfigError("undefined system source to install")
        state = self.partitions.state
        if state is None or not state.mount_point:
            raise ConfigError("undefined state partition")

        recovery_mnt = RECOVERY_DIR
        recovery = self.partitions.recovery
        if recovery is not None and recovery.mount_point:
            recovery_mnt = recovery.mount_point
        image_file = RECOVERY_SQUASH_FILE if self.recovery.fs == SQUASH_FS else RECOVERY_IMG_FILE
        self.recovery.file = posixpath.join(recovery_mnt, "cOS", image_file)

        zero_sized = sum(1 for part in self.extra_partitions if part.size == 0)
        if zero_sized > 1:
            raise ConfigError(
                "more than one extra partition has its size set to 0. Only one partition "
                "can have its size set to 0 which means that it will take all the "
                "available disk space in the device"
            )
        persistent = self.partitions.persistent
        if zero_sized == 1 and persistent is not None and persistent.size == 0:
            raise ConfigError(
                "both persistent partition and extra partitions have size set to 0. Only "
                "one partition can have its size set to 0 which means that it will take "
                "all the available disk space in the device"
            )
        self.partitions.set_firmware_partitions(self.firmware, self.part_table)

    def grub_labels(self) -> dict[str, str]:
        """Labels the bootloader needs to find the installed system."""
        labels = _common_grub_labels(self.partitions, self.active, self.passive)
        labels["system_label"] = self.recovery.label
        if self.partitions.persistent is not None:
            labels["persistent_label"] = self.partitions.persistent.filesystem_label
        return labels


@dataclass
class ResetSpec:
    """Details of a reset."""

    format_persistent: bool = False
    format_oem: bool = False
    grub_def_entry: str = ""
    active: Image = field(default_factory=Image)
    passive: Image = field(default_factory=Image)
    partitions: ElementalPartitions = field(default_factory=ElementalPartitions)
    target: str = ""
    efi: bool = False
    grub_conf: str = ""
    state: InstallState | None = None
    disable_boot_entry: bool = False

    def sanitize(self) -> None:
        if _source_empty(self.active.source):
            raise ConfigError("undefined system source to reset to")
        state = self.partitions.state
        if state is None or not state.mount_point:
            raise ConfigError("undefined state partition")

    def grub_labels(self) -> dict[str, str]:
        """Labels the bootloader needs; recorded install state overrides recovery labels."""
        labels = _common_grub_labels(self.partitions, self.active, self.passive)
        if self.state is not None:
            recovery_part = self.state.partitions.get(RECOVERY_PART_NAME)
            if recovery_part is not None:
                labels["recovery_label"] = recovery_part.fs_label
                recovery_img = recovery_part.images.get(RECOVERY_IMG_NAME)
                if recovery_img is not None:
                    labels["system_label"] = recovery_img.label
        if self.partitions.persistent is not None:
            labels["persistent_label"] = self.partitions.persistent.filesystem_label
        return labels


@dataclass
class UpgradeSpec:
    """Details of an upgrade of the active or the recovery system."""

    recovery_upgrade: bool = False
    active: Image = field(default_factory=Image)
    recovery: Image = field(default_factory=Image)
    grub_def_entry: str = ""
    passive: Image = field(default_factory=Image)
    partitions: ElementalPartitions = field(default_factory=ElementalPartitions)
    state: InstallState | None = None

    def sanitize(self) -> None:
        if self.recovery_upgrade:
            recovery = self.partitions.recovery
            if recovery is None or not recovery.mount_point:
                raise ConfigError("undefined recovery partition")
            if _source_empty(self.recovery.source):
                raise ConfigError("undefined upgrade source")
        else:
            state = self.partitions.state
            if state is None or not state.mount_point:
                raise ConfigError("undefined state partition")
            if _source_empty(self.active.source):
                raise ConfigError("undefined upgrade source")

    def grub_labels(self) -> dict[str, str]:
        labels = _common_grub_labels(self.partitions, self.active, self.passive)
        labels["system_label"] = self.recovery.label
        if self.partitions.persistent is not None:
            labels["persistent_label"] = self.partitions.persistent.filesystem_label
        return labels


@dataclass
class LiveISO:
    """Settings of a live ISO image."""

    root_fs: list[ImageSource | None] = field(default_factory=list)
    uefi: list[ImageSource | None] = field(default_factory=list)
    image: list[ImageSource | None] = field(default_factory=list)
    label: str = ""
    grub_entry: str = ""
    bootloader_in_rootfs: bool = False
    firmware: str = ""

    def sanitize(self) -> None:
        if any(src is None for src in self.root_fs):
            raise ConfigError("wrong name of source package for rootfs")
        if any(src is None for src in self.uefi):
            raise ConfigError("wrong name of source package for uefi")
        if any(src is None for src in self.image):
            raise ConfigError("wrong name of source package for image")


@dataclass
class RawDiskPackage:
    """A package to install into a raw disk, and where to."""

    name: str = ""
    target: str = ""


@dataclass
class RawDiskArchEntry:
    """Packages of a raw disk for one architecture."""

    packages: list[RawDiskPackage] = field(default_factory=list)


@dataclass
class RawDisk:
    """Raw disk contents per architecture."""

    x86_64: RawDiskArchEntry | None = None
    arm64: RawDiskArchEntry | None = None

    def sanitize(self) -> None:
        """Normalise missing package lists to empty ones; nothing here is rejected."""
        for entry in (self.x86_64, self.arm64):
            if entry is not None and entry.packages is None:
                entry.packages = []