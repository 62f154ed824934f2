"""Record of what was installed on each partition, stored as YAML."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import yaml

from elemental_tools.imagesource import ImageSource

_NULL_TAG = "tag:yaml.org,2002:null"


class _StringLoader(yaml.SafeLoader):
    """Loads every scalar as text, except nulls."""


_StringLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag == _NULL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"cannot decode {value!r} as an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"cannot decode {value!r} as an integer") from None


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"cannot decode {what} from {data!r}")
    return data


def _sequence(data: Any, what: str) -> Sequence[Any]:
    if data is None:
        return []
    if isinstance(data, (str, bytes)) or not isinstance(data, Sequence):
        raise ValueError(f"cannot decode {what} from {data!r}")
    return data


def _omit_empty(pairs: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in pairs.items() if value not in ("", 0, None, [], {})}


@dataclass
class Repository:
    """A package repository."""

    name: str = ""
    priority: int = 0
    uri: str = ""
    repo_type: str = ""
    arch: str = ""
    reference_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty(
            {
                "name": self.name,
                "priority": self.priority,
                "uri": self.uri,
                "type": self.repo_type,
                "arch": self.arch,
                "reference": self.reference_id,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Repository":
        data = _mapping(data, "repository")
        return cls(
            name=_text(data.get("name")),
            priority=_int(data.get("priority")),
            uri=_text(data.get("uri")),
            repo_type=_text(data.get("type")),
            arch=_text(data.get("arch")),
            reference_id=_text(data.get("reference")),
        )


@dataclass
class DockerImageMeta:
    """Metadata of a deployed container image."""

    digest: str = ""
    size: int = 0


@dataclass
class ChannelImageMeta:
    """Metadata of a deployed channel package."""

    category: str = ""
    name: str = ""
    version: str = ""
    finger_print: str = ""
    repos: list[Repository] = field(default_factory=list)


SourceMetadata = Union[DockerImageMeta, ChannelImageMeta]


def _metadata_to_dict(meta: SourceMetadata) -> dict[str, Any]:
    if isinstance(meta, DockerImageMeta):
        return _omit_empty({"digest": meta.digest, "size": meta.size})
    return _omit_empty(
        {
            "category": meta.category,
            "name": meta.name,
            "version": meta.version,
            "finger-print": meta.finger_print,
            "repositories": [repo.to_dict() for repo in meta.repos],
        }
    )


def _metadata_from_dict(data: Mapping[str, Any]) -> SourceMetadata | None:
    """Recognise container metadata first, then channel metadata."""
    try:
        docker = DockerImageMeta(digest=_text(data.get("digest")), size=_int(data.get("size")))
    except ValueError:
        docker = None
    if docker is not None and (docker.digest or docker.size):
        return docker
    channel = ChannelImageMeta(
        category=_text(data.get("category")),
        name=_text(data.get("name")),
        version=_text(data.get("version")),
        finger_print=_text(data.get("finger-print")),
        repos=[
            Repository.from_dict(item)
            for item in _sequence(data.get("repositories"), "repositories")
        ],
    )
    return channel if channel.name else None


@dataclass
class ImageState:
    """A deployed image: where it came from and how it was built."""

    source: ImageSource | None = None
    source_metadata: SourceMetadata | None = None
    label: str = ""
    fs: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.source is not None:
            data["source"] = str(self.source)
        if self.source_metadata is not None:
            data["source-metadata"] = _metadata_to_dict(self.source_metadata)
        if self.label:
            data["label"] = self.label
        if self.fs:
            data["fs"] = self.fs
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ImageState":
        data = _mapping(data, "image state")
        source = None
        if data.get("source") is not None:
            source = ImageSource()
            source.update_from_uri(_text(data["source"]))
        raw_meta = data.get("source-metadata")
        metadata = _metadata_from_dict(raw_meta) if isinstance(raw_meta, Mapping) else None
        return cls(
            source=source,
            source_metadata=metadata,
            label=_text(data.get("label")),
            fs=_text(data.get("fs")),
        )


@dataclass
class PartitionState:
    """A partition's filesystem label and the images deployed on it."""

    fs_label: str = ""
    images: dict[str, ImageState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.fs_label:
            data["label"] = self.fs_label
        for name in sorted(self.images):
            data[name] = self.images[name].to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "PartitionState":
        data = _mapping(data, "partition state")
        images = {
            str(key): ImageState.from_dict(value) for key, value in data.items() if key != "label"
        }
        return cls(fs_label=_text(data.get("label")), images=images)


@dataclass
class InstallState:
    """Installation data of the whole system, keyed by partition name."""

    date: str = ""
    partitions: dict[str, PartitionState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.date:
            data["date"] = self.date
        for name in sorted(self.partitions):
            data[name] = self.partitions[name].to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "InstallState":
        data = _mapping(data, "install state")
        partitions = {
            str(key): PartitionState.from_dict(value)
            for key, value in data.items()
            if key != "date"
        }
        return cls(date=_text(data.get("date")), partitions=partitions)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, text: str | bytes) -> "InstallState":
        if isinstance(text, bytes):
            text = text.decode()
        try:
            data = yaml.load(text, Loader=_StringLoader)
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid install state: {exc}") from exc
        return cls.from_dict(data)