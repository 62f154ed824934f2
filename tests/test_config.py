import posixpath

import pytest

from elemental_tools.config import (
    DEFAULT_CLOUD_INIT_PATHS,
    INSTALL_STATE_FILE,
    LUET_MTREE_PLUGIN,
    RECOVERY_IMG_FILE,
    RECOVERY_SQUASH_FILE,
    RUNNING_STATE_DIR,
    SQUASH_FS,
    BuildConfig,
    Config,
    ConfigError,
    Image,
    InstallSpec,
    LiveISO,
    ResetSpec,
    RunConfig,
    UpgradeSpec,
)
from elemental_tools.filesystem import OSFileSystem
from elemental_tools.imagesource import (
    new_channel_src,
    new_dir_src,
    new_docker_src,
    new_empty_src,
)
from elemental_tools.partitions import EFI, GPT, ElementalPartitions, Partition
from elemental_tools.state import (
    ChannelImageMeta,
    DockerImageMeta,
    ImageState,
    InstallState,
    PartitionState,
    Repository,
)


class FakeLuet:
    def __init__(self):
        self.plugins = []
        self.arch = None

    def set_plugins(self, *plugins):
        self.plugins = list(plugins)

    def get_plugins(self):
        return self.plugins

    def set_arch(self, arch):
        self.arch = arch


@pytest.fixture
def fs(tmp_path):
    return OSFileSystem(tmp_path)


@pytest.fixture
def install_state():
    docker_state = ImageState(
        source=new_docker_src("registry.org/my/image:tag"),
        label="active_label",
        fs="ext2",
        source_metadata=DockerImageMeta(digest="adadgadg", size=23452345),
    )
    channel_state = ImageState(
        source=new_channel_src("cat/mypkg"),
        label="active_label",
        fs="ext2",
        source_metadata=ChannelImageMeta(
            category="cat",
            name="mypkg",
            version="0.2.1",
            finger_print="mypkg-cat-0.2.1",
            repos=[Repository(name="myrepo")],
        ),
    )
    return InstallState(
        date="somedate",
        partitions={
            "state": PartitionState(fs_label="state_label", images={"active": docker_state}),
            "recovery": PartitionState(
                fs_label="state_label", images={"recovery": channel_state}
            ),
        },
    )


STATE_PATH = posixpath.join(RUNNING_STATE_DIR, INSTALL_STATE_FILE)
RECOVERY_PATH = "/recoverypart/state.yaml"


@pytest.fixture
def config(fs):
    fs.makedirs(posixpath.dirname(STATE_PATH))
    fs.makedirs(posixpath.dirname(RECOVERY_PATH))
    return RunConfig(fs=fs)


def test_writes_and_loads_install_state(config, install_state):
    config.write_install_state(install_state, STATE_PATH, RECOVERY_PATH)
    assert config.load_install_state() == install_state


def test_written_state_has_header_in_both_paths(config, fs, install_state):
    config.write_install_state(install_state, STATE_PATH, RECOVERY_PATH)
    state_data = fs.read_file(STATE_PATH)
    assert state_data.startswith(b"# Autogenerated file by elemental client, do not edit\n\n")
    assert fs.read_file(RECOVERY_PATH) == state_data


def test_fails_writing_to_state_partition(config, fs, install_state):
    fs.remove_all(posixpath.dirname(STATE_PATH))
    with pytest.raises(OSError):
        config.write_install_state(install_state, STATE_PATH, RECOVERY_PATH)


def test_fails_writing_to_recovery_partition(config, fs, install_state):
    fs.remove_all(posixpath.dirname(RECOVERY_PATH))
    with pytest.raises(OSError):
        config.write_install_state(install_state, STATE_PATH, RECOVERY_PATH)


def test_fails_loading_state_file(config, fs, install_state):
    config.write_install_state(install_state, STATE_PATH, RECOVERY_PATH)
    fs.remove_all(posixpath.dirname(STATE_PATH))
    with pytest.raises(OSError):
        config.load_install_state()


def test_run_config_sanitize_sets_mtree_plugin():
    cfg = RunConfig(luet=FakeLuet(), verify=True)
    cfg.sanitize()
    assert cfg.luet.get_plugins() == [LUET_MTREE_PLUGIN]


def test_run_config_sanitize_prepends_cloud_init_paths():
    cfg = RunConfig(luet=FakeLuet(), cloud_init_paths=["/custom"])
    cfg.sanitize()
    assert cfg.cloud_init_paths == [*DEFAULT_CLOUD_INIT_PATHS, "/custom"]


def test_build_config_sanitize_sets_mtree_plugin():
    cfg = BuildConfig(luet=FakeLuet(), verify=True)
    cfg.sanitize()
    assert cfg.luet.get_plugins() == [LUET_MTREE_PLUGIN]


def test_config_sanitize_clears_compression_and_sets_arch():
    cfg = Config(
        luet=FakeLuet(),
        arch="arm64",
        squash_fs_compression_config=["-comp", "xz"],
        squash_fs_no_compression=True,
    )
    cfg.sanitize()
    assert cfg.squash_fs_compression_config == []
    assert cfg.luet.arch == "arm64"
    assert cfg.luet.get_plugins() == []


@pytest.fixture
def spec():
    partitions = ElementalPartitions(
        oem=Partition(name="oem", filesystem_label="COS_OEM", size=64, mount_point="/oem"),
        recovery=Partition(
            name="recovery",
            filesystem_label="COS_RECOVERY",
            size=8192,
            mount_point="/run/cos/recovery",
        ),
        state=Partition(
            name="state", filesystem_label="COS_STATE", size=15360, mount_point="/run/cos/state"
        ),
        persistent=Partition(
            name="persistent",
            filesystem_label="COS_PERSISTENT",
            size=0,
            mount_point="/usr/local",
        ),
    )
    return InstallSpec(firmware=EFI, part_table=GPT, partitions=partitions)


def test_install_spec_sanitize_runs(spec):
    assert spec.partitions.efi is None
    assert spec.active.source is None

    spec.active.source = new_dir_src("/dir")
    spec.sanitize()
    assert spec.partitions.efi is not None
    assert spec.partitions.efi.flags == ["esp"]

    spec.recovery.fs = SQUASH_FS
    spec.sanitize()
    assert RECOVERY_SQUASH_FILE in spec.recovery.file

    spec.recovery.fs = "ext2"
    spec.sanitize()
    assert spec.recovery.file == "/run/cos/recovery/cOS/" + RECOVERY_IMG_FILE

    spec.partitions.state = None
    with pytest.raises(ConfigError, match="undefined state partition"):
        spec.sanitize()

    spec.active.source = new_empty_src()
    with pytest.raises(ConfigError, match="undefined system source"):
        spec.sanitize()


def test_install_spec_iso_is_a_source(spec):
    spec.iso = "/path/to.iso"
    spec.sanitize()
    assert spec.partitions.efi.filesystem_label == "COS_GRUB"


def test_install_spec_fails_with_persistent_and_extra_zero_size(spec):
    spec.active.source = new_dir_src("/dir")
    spec.extra_partitions.append(Partition(size=0))
    with pytest.raises(ConfigError) as excinfo:
        spec.sanitize()
    assert "both persistent partition and extra partitions have size set to 0" in str(
        excinfo.value
    )


def test_install_spec_fails_with_several_extra_zero_size(spec):
    spec.active.source = new_dir_src("/dir")
    spec.partitions.persistent.size = 10
    spec.extra_partitions.append(Partition(name="1", size=0))
    spec.extra_partitions.append(Partition(name="2", size=0))
    with pytest.raises(ConfigError) as excinfo:
        spec.sanitize()
    assert "more than one extra partition has its size set to 0" in str(excinfo.value)


def test_install_spec_accepts_one_zero_size_extra_with_sized_persistent(spec):
    spec.active.source = new_dir_src("/dir")
    spec.extra_partitions.append(Partition(size=0))
    spec.partitions.persistent.size = 10
    spec.sanitize()
    assert spec.recovery.file == "/run/cos/recovery/cOS/recovery.img"


def test_install_spec_recovery_file_defaults_to_recovery_dir(spec):
    spec.active.source = new_dir_src("/dir")
    spec.partitions.recovery = None
    spec.sanitize()
    assert spec.recovery.file == "/run/cos/recovery/cOS/recovery.img"


def test_install_spec_grub_labels(spec):
    spec.active.label = "COS_ACTIVE"
    spec.passive.label = "COS_PASSIVE"
    spec.recovery.label = "COS_SYSTEM"
    assert spec.grub_labels() == {
        "state_label": "COS_STATE",
        "active_label": "COS_ACTIVE",
        "passive_label": "COS_PASSIVE",
        "recovery_label": "COS_RECOVERY",
        "system_label": "COS_SYSTEM",
        "oem_label": "COS_OEM",
        "persistent_label": "COS_PERSISTENT",
    }


def test_install_spec_grub_labels_without_persistent(spec):
    spec.partitions.persistent = None
    assert "persistent_label" not in spec.grub_labels()


def test_reset_spec_sanitize():
    spec = ResetSpec(
        active=Image(source=new_dir_src("/dir")),
        partitions=ElementalPartitions(state=Partition(mount_point="mountpoint")),
    )
    spec.sanitize()
    assert spec.partitions.state.mount_point == "mountpoint"

    spec.partitions.state = None
    with pytest.raises(ConfigError, match="undefined state partition"):
        spec.sanitize()

    spec.active.source = new_empty_src()
    with pytest.raises(ConfigError, match="undefined system source to reset to"):
        spec.sanitize()


def test_reset_spec_grub_labels_use_install_state():
    spec = ResetSpec(
        active=Image(label="COS_ACTIVE"),
        passive=Image(label="COS_PASSIVE"),
        partitions=ElementalPartitions(
            oem=Partition(filesystem_label="COS_OEM"),
            recovery=Partition(filesystem_label="COS_RECOVERY"),
            state=Partition(filesystem_label="COS_STATE"),
        ),
        state=InstallState(
            partitions={
                "recovery": PartitionState(
                    fs_label="MY_RECOVERY",
                    images={"recovery": ImageState(label="MY_SYSTEM")},
                )
            }
        ),
    )
    assert spec.grub_labels() == {
        "state_label": "COS_STATE",
        "active_label": "COS_ACTIVE",
        "passive_label": "COS_PASSIVE",
        "recovery_label": "MY_RECOVERY",
        "system_label": "MY_SYSTEM",
        "oem_label": "COS_OEM",
    }


def test_reset_spec_grub_labels_without_state():
    spec = ResetSpec(
        partitions=ElementalPartitions(
            oem=Partition(filesystem_label="COS_OEM"),
            recovery=Partition(filesystem_label="COS_RECOVERY"),
            state=Partition(filesystem_label="COS_STATE"),
        )
    )
    labels = spec.grub_labels()
    assert labels["recovery_label"] == "COS_RECOVERY"
    assert "system_label" not in labels


def test_grub_labels_require_state_partition():
    spec = UpgradeSpec(
        partitions=ElementalPartitions(
            oem=Partition(filesystem_label="COS_OEM"),
            recovery=Partition(filesystem_label="COS_RECOVERY"),
        )
    )
    with pytest.raises(ConfigError, match="undefined state partition"):
        spec.grub_labels()


def test_upgrade_spec_sanitize():
    spec = UpgradeSpec(
        active=Image(source=new_dir_src("/dir")),
        recovery=Image(source=new_dir_src("/dir")),
        partitions=ElementalPartitions(
            state=Partition(mount_point="mountpoint"),
            recovery=Partition(mount_point="mountpoint"),
        ),
    )
    spec.sanitize()
    assert spec.active.source.is_dir()

    spec.active.source = new_empty_src()
    with pytest.raises(ConfigError, match="undefined upgrade source"):
        spec.sanitize()

    spec.partitions.state = None
    with pytest.raises(ConfigError, match="undefined state partition"):
        spec.sanitize()

    spec.recovery_upgrade = True
    spec.recovery.source = new_empty_src()
    with pytest.raises(ConfigError, match="undefined upgrade source"):
        spec.sanitize()

    spec.partitions.recovery = None
    with pytest.raises(ConfigError, match="undefined recovery partition"):
        spec.sanitize()


def test_upgrade_spec_grub_labels():
    spec = UpgradeSpec(
        active=Image(label="A"),
        passive=Image(label="P"),
        recovery=Image(label="S"),
        partitions=ElementalPartitions(
            oem=Partition(filesystem_label="O"),
            recovery=Partition(filesystem_label="R"),
            state=Partition(filesystem_label="ST"),
            persistent=Partition(filesystem_label="PE"),
        ),
    )
    assert spec.grub_labels() == {
        "state_label": "ST",
        "active_label": "A",
        "passive_label": "P",
        "recovery_label": "R",
        "system_label": "S",
        "oem_label": "O",
        "persistent_label": "PE",
    }


def test_live_iso_sanitize_accepts_sources():
    iso = LiveISO(
        root_fs=[new_dir_src("/system/os"), new_channel_src("system/os")],
        uefi=[new_channel_src("live/grub2-efi-image")],
        image=[new_channel_src("live/grub2")],
    )
    iso.sanitize()
    assert len(iso.root_fs) == 2


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"root_fs": [None]}, "rootfs"),
        ({"uefi": [None]}, "uefi"),
        ({"image": [None]}, "image"),
    ],
)
def test_live_iso_sanitize_rejects_missing_sources(kwargs, message):
    with pytest.raises(ConfigError, match=message):
        LiveISO(**kwargs).sanitize()