"""Sources an image can be built from: container images, channels, dirs and files."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

DOCKER = "docker"
OCI = "oci"
FILE = "file"
DIR = "dir"
CHANNEL = "channel"

_NAME_TOTAL_LENGTH_MAX = 255
_DEFAULT_DOMAIN = "docker.io"
_LEGACY_DEFAULT_DOMAIN = "index.docker.io"
_OFFICIAL_REPO_NAME = "library"

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]*)"
_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_COMPONENT}(?:/{_COMPONENT})*"
_REFERENCE = re.compile(rf"({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?", re.ASCII)
_IDENTIFIER = re.compile(r"[a-f0-9]{64}")
_DIGEST_SIZES = {"sha256": 64, "sha384": 96, "sha512": 128}
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class ImageSourceError(ValueError):
    """An image source URI or image reference is not valid."""


def _validate_digest(digest: str) -> None:
    algorithm, _, encoded = digest.partition(":")
    size = _DIGEST_SIZES.get(algorithm)
    if size is None:
        raise ImageSourceError(f"unsupported digest algorithm in {digest}")
    if len(encoded) != size or not re.fullmatch(r"[a-f0-9]+", encoded):
        raise ImageSourceError(f"invalid digest {digest}")


def _split_docker_domain(name: str) -> tuple[str, str]:
    slash = name.find("/")
    head = name[:slash]
    if slash == -1 or (not any(c in head for c in ".:") and head != "localhost"):
        domain, remainder = _DEFAULT_DOMAIN, name
    else:
        domain, remainder = head, name[slash + 1 :]
    if domain == _LEGACY_DEFAULT_DOMAIN:
        domain = _DEFAULT_DOMAIN
    if domain == _DEFAULT_DOMAIN and "/" not in remainder:
        remainder = f"{_OFFICIAL_REPO_NAME}/{remainder}"
    return domain, remainder


def _is_name_only(ref: str) -> bool:
    """Validate a normalized image reference; tell whether it lacks tag and digest."""
    if _IDENTIFIER.fullmatch(ref):
        raise ImageSourceError(f"invalid image reference {ref}")
    domain, remainder = _split_docker_domain(ref)
    remote_name = remainder.split(":", 1)[0]
    if remote_name.lower() != remote_name:
        raise ImageSourceError(f"invalid image reference {ref}")
    match = _REFERENCE.fullmatch(f"{domain}/{remainder}")
    if match is None or len(match.group(1)) > _NAME_TOTAL_LENGTH_MAX:
        raise ImageSourceError(f"invalid image reference {ref}")
    tag, digest = match.group(2), match.group(3)
    if digest is not None:
        try:
            _validate_digest(digest)
        except ImageSourceError:
            raise ImageSourceError(f"invalid image reference {ref}") from None
    return tag is None and digest is None


def parse_image_reference(ref: str) -> str:
    """Validate a container image reference, adding the ``latest`` tag if it has none."""
    if _is_name_only(ref):
        return f"{ref}:latest"
    return ref


def _take_scheme(raw: str) -> tuple[str, str]:
    for index, char in enumerate(raw):
        if char.isascii() and char.isalpha():
            continue
        if char.isascii() and (char.isdigit() or char in "+-."):
            if index == 0:
                return "", raw
            continue
        if char == ":":
            if index == 0:
                raise ImageSourceError("missing protocol scheme")
            return raw[:index].lower(), raw[index + 1 :]
        return "", raw
    return "", raw


def _unescape(text: str) -> str:
    if _BAD_ESCAPE.search(text):
        raise ImageSourceError(f"invalid URL escape in {text!r}")
    return unquote(text)


def _valid_port(port: str) -> bool:
    return port == "" or (port.startswith(":") and port[1:].isdigit()) or port == ":"


def _check_host(host: str) -> str:
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            raise ImageSourceError("missing ']' in host")
        if not _valid_port(host[end + 1 :]):
            raise ImageSourceError(f"invalid port after host {host!r}")
    else:
        colon = host.rfind(":")
        if colon >= 0 and not _valid_port(host[colon:]):
            raise ImageSourceError(f"invalid port {host[colon:]!r} after host")
    return _unescape(host)


def _join_clean(*parts: str) -> str:
    present = [part for part in parts if part]
    if not present:
        return ""
    cleaned = posixpath.normpath("/".join(present))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _split_uri(uri: str) -> tuple[str, str]:
    """Split ``uri`` into its scheme and the location it names."""
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in uri):
        raise ImageSourceError(f"invalid control character in URL {uri!r}")
    rest = uri.split("#", 1)[0]
    scheme, rest = _take_scheme(rest)
    rest = rest.split("?", 1)[0]

    if not rest.startswith("/"):
        if scheme:
            return scheme, rest
        if ":" in rest.split("/", 1)[0]:
            raise ImageSourceError("first path segment in URL cannot contain colon")

    host = ""
    if (scheme or not rest.startswith("///")) and rest.startswith("//"):
        authority, slash, path = rest[2:].partition("/")
        rest = slash + path
        host = _check_host(authority.rpartition("@")[2])
    return scheme, _join_clean(host, _unescape(rest))


@dataclass
class ImageSource:
    """Where an image comes from, identified by its type and location."""

    source: str = ""
    src_type: str = ""

    @property
    def value(self) -> str:
        return self.source

    def is_docker(self) -> bool:
        return self.src_type == OCI

    def is_channel(self) -> bool:
        return self.src_type == CHANNEL

    def is_dir(self) -> bool:
        return self.src_type == DIR

    def is_file(self) -> bool:
        return self.src_type == FILE

    def is_empty(self) -> bool:
        return not self.src_type or not self.source

    def __str__(self) -> str:
        if self.is_empty():
            return ""
        return f"{self.src_type}://{self.source}"

    def update_from_uri(self, uri: str) -> None:
        """Set type and location from a ``scheme://location`` URI or a bare image reference."""
        scheme, value = _split_uri(uri)
        if scheme in (OCI, DOCKER):
            self.source, self.src_type = parse_image_reference(value), OCI
        elif scheme in (CHANNEL, DIR, FILE):
            self.source, self.src_type = value, scheme
        else:
            self.source, self.src_type = parse_image_reference(uri), OCI

    def custom_unmarshal(self, data: Any) -> None:
        """Set the source from decoded configuration data, which must be a string."""
        if not isinstance(data, str):
            raise ImageSourceError(f"can't unmarshal {data!r} to an ImageSource type")
        self.update_from_uri(data)


def new_src_from_uri(uri: str) -> ImageSource:
    src = ImageSource()
    src.update_from_uri(uri)
    return src


def new_empty_src() -> ImageSource:
    return ImageSource()


def new_docker_src(src: str) -> ImageSource:
    return ImageSource(source=src, src_type=OCI)


def new_file_src(src: str) -> ImageSource:
    return ImageSource(source=src, src_type=FILE)


def new_channel_src(src: str) -> ImageSource:
    return ImageSource(source=src, src_type=CHANNEL)


def new_dir_src(src: str) -> ImageSource:
    return ImageSource(source=src, src_type=DIR)