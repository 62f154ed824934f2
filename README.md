# elemental-tools

Building blocks for an OS installer: partitioning a block device with
`parted`, formatting partitions with `mkfs`, and the configuration and
install-state types that describe an installation.

## Installation

```
pip install elemental-tools
```

For the test suite:

```
pip install "elemental-tools[test]"
pytest
```

## Partitioning a disk

`elemental_tools.disk.Disk` drives the `parted`, `sgdisk`, `udevadm`,
`wipefs`, `mkfs.*`, `e2fsck`, `resize2fs`, `mount`, `xfs_growfs` and
`umount` tools through a runner. Sizes are given in MiB; a size of 0 means
"all the remaining space".

```python
from elemental_tools.disk import Disk

disk = Disk("/dev/sda")
disk.new_partition_table("gpt")
num = disk.add_partition(64, "vfat", "efi", "esp")
disk.format_partition(num, "vfat", "COS_GRUB")
last = disk.add_partition(0, "ext4", "persistent")
disk.format_partition(last, "ext4", "COS_PERSISTENT")
print(disk.get_free_space())          # free sectors after the last partition
print(disk.check_disk_free_space_mib(128))
```

`Disk` also offers `reload()`, `exists()`, `find_partition_device()`,
`wipe_fs_on_partition()` and `expand_last_partition()`, and the read-only
properties `sector_size`, `last_sector`, `label` and `partitions`.
`expand_last_partition()` grows ext2/3/4 and xfs filesystems after growing
the partition; the filesystem type is asked from `lsblk` unless a
`partition_fs` callable is passed to `Disk`. Failures raise `DiskError`;
unreadable parted output raises `elemental_tools.parted.PartedError`.

Any object with a `run(command, *args)` method returning the output as
bytes can serve as the runner, so commands can be recorded in tests
instead of executed. `RealRunner` from `elemental_tools.runner` runs them
on the host and raises `CommandError` when a command cannot be started or
exits unsuccessfully. The filesystem used to look for device nodes is an
`OSFileSystem` from `elemental_tools.filesystem`, which can be confined
below a root directory.

## Lower-level calls

```python
from elemental_tools.disk import format_device
from elemental_tools.mkfs import MkfsCall
from elemental_tools.parted import PartedCall, Partition
from elemental_tools.runner import RealRunner

runner = RealRunner()
pc = PartedCall("/dev/sdb", runner)
pc.wipe_table(True)
pc.create_partition(Partition(number=1, start_s=2048, size_s=0, p_label="root", file_system="ext4"))
pc.write_changes()

MkfsCall("/dev/sdb1", "ext4", "ROOT", runner).apply()
format_device(runner, "/dev/sdb1", "ext4", "ROOT")
```

`MkfsCall` knows ext2-4, xfs and (v)fat; any other filesystem raises
`UnsupportedFilesystemError`.

## Configuration types

`elemental_tools.config` holds `InstallSpec`, `UpgradeSpec`, `ResetSpec`,
`LiveISO`, `RawDisk`, `RunConfig` and `BuildConfig`, each with a
`sanitize()` method. Inconsistent settings raise `ConfigError`;
`InstallSpec.sanitize()` also sets up firmware partitions and may raise
`elemental_tools.partitions.PartitionError`. The install, upgrade and
reset specs provide `grub_labels()`.

`elemental_tools.partitions` has `Partition`, `PartitionList` (lookups by
name and label), `ElementalPartitions` (install and mount ordering) and
`new_elemental_partitions_from_list()`.

Image sources are parsed from URIs such as
`oci://registry.example.com/image:tag`, `dir:///some/path`,
`file://some/file` or `channel://category/package`, or from a bare image
reference, with `elemental_tools.imagesource.new_src_from_uri`; a
reference without tag gets `:latest`. Invalid input raises
`ImageSourceError`.

The install state (`elemental_tools.state.InstallState`) is stored as
YAML through `to_yaml()` and `from_yaml()`; `Config.write_install_state()`
writes it to the state and recovery paths and `Config.load_install_state()`
reads it back from `/run/initramfs/elemental-state/state.yaml`.

## What this package does not do

There is no command-line program, and the install, upgrade and reset
actions themselves are not carried out here: the package only describes
and checks them. It has no HTTP downloader, package-manager client,
cloud-init runner or mounter of its own; the `client`, `luet`,
`cloud_init_runner` and `mounter` fields of `Config` take whatever object
the caller supplies (`sanitize()` calls `set_plugins()` and `set_arch()`
on `luet` when it is set).