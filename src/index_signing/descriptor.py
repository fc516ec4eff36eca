# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""In-memory representation of a multi-platform image index.

An image index is an ordered list of descriptors, one for each platform the
image is built for. Each descriptor identifies a manifest by digest and size,
and carries a platform and a set of string annotations. Annotations are the
only place where signatures over the descriptors can be stored.

See https://github.com/opencontainers/image-spec/blob/main/image-index.md and
https://github.com/opencontainers/image-spec/blob/main/descriptor.md for the
upstream specifications. The types here only model the fields needed for
signing and verification, and convert to and from the OCI JSON encoding.

Descriptors are immutable. Adding annotations produces a new descriptor:

```python
signed = descriptor.with_annotations({"org.example.key": "value"})
```
"""

from collections.abc import Iterable, Mapping
import dataclasses
import platform as _host
import sys
from typing import Any, Final


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


MANIFEST_MEDIA_TYPE: Final[str] = "application/vnd.oci.image.manifest.v1+json"
INDEX_MEDIA_TYPE: Final[str] = "application/vnd.oci.image.index.v1+json"


def _check_type(name: str, value: Any, expected: type) -> None:
    if not isinstance(value, expected) or (
        expected is int and isinstance(value, bool)
    ):
        raise ValueError(
            f"Expected {name} to be {expected.__name__}, "
            f"got {type(value).__name__}"
        )


def _string_list(name: str, value: Any) -> tuple[str, ...]:
    _check_type(name, value, list)
    for item in value:
        _check_type(f"item of {name}", item, str)
    return tuple(value)


def _string_map(name: str, value: Any) -> dict[str, str]:
    _check_type(name, value, dict)
    for key, item in value.items():
        _check_type(f"{name}[{key!r}]", item, str)
    return dict(value)


@dataclasses.dataclass(frozen=True)
class Digest:
    """A content digest, such as `sha256:9f86d0...`.

    Attributes:
        algorithm: The name of the hashing algorithm.
        hex: The encoded digest value.
    """

    algorithm: str
    hex: str

    @classmethod
    def parse(cls, value: str) -> Self:
        """Parses a digest from its `algorithm:hex` string form.

        Raises:
            ValueError: The value is not a well formed digest.
        """
        algorithm, sep, encoded = value.partition(":")
        if not sep or not algorithm or not encoded or ":" in encoded:
            raise ValueError(f"Invalid digest {value!r}")
        return cls(algorithm, encoded)

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"


@dataclasses.dataclass(frozen=True)
class Platform:
    """The platform an image manifest is built for."""

    os: str
    architecture: str
    variant: str = ""
    os_version: str = ""
    os_features: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "os_features", tuple(self.os_features))
        object.__setattr__(self, "features", tuple(self.features))

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)

    def matches(self, requested: "Platform") -> bool:
        """Checks whether this platform satisfies a requested one.

        OS and architecture must be equal. The variant is only compared when
        the request names one. On `arm64` a missing variant stands for `v8`,
        which is how most images label that architecture.

        Args:
            requested: The platform asked for, usually from `parse_platform`.

        Returns:
            Whether this platform is acceptable for the request.
        """
        if self.os != requested.os:
            return False
        if self.architecture != requested.architecture:
            return False
        if not requested.variant:
            return True
        return _normalized_variant(self) == _normalized_variant(requested)

    def to_dict(self) -> dict[str, Any]:
        """Returns the OCI JSON encoding, omitting empty fields."""
        data: dict[str, Any] = {
            "architecture": self.architecture,
            "os": self.os,
        }
        if self.os_version:
            data["os.version"] = self.os_version
        if self.os_features:
            data["os.features"] = list(self.os_features)
        if self.variant:
            data["variant"] = self.variant
        if self.features:
            data["features"] = list(self.features)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Builds a platform from its OCI JSON encoding.

        Raises:
            ValueError: A field is missing or has the wrong type.
        """
        _check_type("platform", data, dict)
        for name in ("architecture", "os"):
            if name not in data:
                raise ValueError(f"Platform is missing {name!r}")
        for name in ("architecture", "os", "variant", "os.version"):
            if name in data:
                _check_type(f"platform {name}", data[name], str)

        return cls(
            os=data["os"],
            architecture=data["architecture"],
            variant=data.get("variant", ""),
            os_version=data.get("os.version", ""),
            os_features=_string_list(
                "platform os.features", data.get("os.features", [])
            ),
            features=_string_list(
                "platform features", data.get("features", [])
            ),
        )


def _normalized_variant(platform: Platform) -> str:
    if platform.architecture == "arm64" and not platform.variant:
        return "v8"
    return platform.variant


@dataclasses.dataclass(frozen=True)
class Descriptor:
    """One entry of an image index.

    Attributes:
        media_type: The media type of the referenced content.
        size: The size in bytes of the referenced content.
        digest: The digest of the referenced content.
        urls: Ordered list of fallback URLs for the content.
        platform: The platform of the referenced manifest, if any.
        annotations: Arbitrary string metadata.
        artifact_type: The OCI artifact type, if any.
    """

    media_type: str
    size: int
    digest: Digest
    urls: tuple[str, ...] = ()
    platform: Platform | None = None
    annotations: Mapping[str, str] = dataclasses.field(default_factory=dict)
    artifact_type: str | None = None

    def __post_init__(self):
        if self.size < 0:
            raise ValueError(
                f"Descriptor size must be non-negative: {self.size}"
            )
        # An empty artifact type is not encoded, so it is the same as none.
        if not self.artifact_type:
            object.__setattr__(self, "artifact_type", None)
        object.__setattr__(self, "urls", tuple(self.urls))
        object.__setattr__(self, "annotations", dict(self.annotations))

    def with_annotations(self, annotations: Mapping[str, str]) -> Self:
        """Returns a copy with `annotations` merged over the existing ones."""
        return dataclasses.replace(
            self, annotations={**self.annotations, **annotations}
        )

    def replace_annotations(self, annotations: Mapping[str, str]) -> Self:
        """Returns a copy whose annotations are exactly `annotations`."""
        return dataclasses.replace(self, annotations=dict(annotations))

    def to_dict(self) -> dict[str, Any]:
        """Returns the OCI JSON encoding, omitting empty fields."""
        data: dict[str, Any] = {
            "mediaType": self.media_type,
            "size": self.size,
            "digest": str(self.digest),
        }
        if self.urls:
            data["urls"] = list(self.urls)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.platform is not None:
            data["platform"] = self.platform.to_dict()
        if self.artifact_type:
            data["artifactType"] = self.artifact_type
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Builds a descriptor from its OCI JSON encoding.

        Fields not modelled here (such as `data`) are ignored.

        Raises:
            ValueError: A field is missing or has the wrong type.
        """
        _check_type("descriptor", data, dict)
        for name in ("mediaType", "size", "digest"):
            if name not in data:
                raise ValueError(f"Descriptor is missing {name!r}")
        _check_type("mediaType", data["mediaType"], str)
        _check_type("size", data["size"], int)
        _check_type("digest", data["digest"], str)

        platform = data.get("platform")
        artifact_type = data.get("artifactType")
        if artifact_type is not None:
            _check_type("artifactType", artifact_type, str)

        return cls(
            media_type=data["mediaType"],
            size=data["size"],
            digest=Digest.parse(data["digest"]),
            urls=_string_list("urls", data.get("urls") or []),
            platform=None if platform is None else Platform.from_dict(platform),
            annotations=_string_map(
                "annotations", data.get("annotations") or {}
            ),
            artifact_type=artifact_type,
        )


@dataclasses.dataclass(frozen=True)
class Index:
    """A multi-platform image index.

    Attributes:
        manifests: The descriptors in the index, in order.
        media_type: The media type of the index itself.
        annotations: Index level annotations.
        schema_version: The image manifest schema version.
        artifact_type: The OCI artifact type, if any.
        extra: Top level JSON fields not modelled above, kept so that a
          read/write round trip does not drop them.
    """

    manifests: tuple[Descriptor, ...] = ()
    media_type: str = INDEX_MEDIA_TYPE
    annotations: Mapping[str, str] = dataclasses.field(default_factory=dict)
    schema_version: int = 2
    artifact_type: str | None = None
    extra: Mapping[str, Any] = dataclasses.field(
        default_factory=dict, compare=False
    )

    def __post_init__(self):
        object.__setattr__(self, "manifests", tuple(self.manifests))
        object.__setattr__(self, "annotations", dict(self.annotations))
        object.__setattr__(self, "extra", dict(self.extra))

    def with_manifests(self, manifests: Iterable[Descriptor]) -> Self:
        """Returns a copy of the index listing `manifests` instead."""
        return dataclasses.replace(self, manifests=tuple(manifests))

    def to_dict(self) -> dict[str, Any]:
        """Returns the OCI JSON encoding of the index."""
        data: dict[str, Any] = dict(self.extra)
        data["schemaVersion"] = self.schema_version
        if self.media_type:
            data["mediaType"] = self.media_type
        if self.artifact_type:
            data["artifactType"] = self.artifact_type
        data["manifests"] = [m.to_dict() for m in self.manifests]
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Builds an index from its OCI JSON encoding.

        Raises:
            ValueError: The document is not a valid image index.
        """
        _check_type("index", data, dict)
        known = {
            "schemaVersion",
            "mediaType",
            "artifactType",
            "manifests",
            "annotations",
        }
        schema_version = data.get("schemaVersion", 2)
        _check_type("schemaVersion", schema_version, int)
        media_type = data.get("mediaType", "")
        _check_type("mediaType", media_type, str)
        if media_type and media_type != INDEX_MEDIA_TYPE:
            # Docker manifest lists share the same structure.
            if "manifest.list" not in media_type:
                raise ValueError(f"Not an image index: {media_type}")
        manifests = data.get("manifests") or []
        _check_type("manifests", manifests, list)
        artifact_type = data.get("artifactType")
        if artifact_type is not None:
            _check_type("artifactType", artifact_type, str)

        return cls(
            manifests=[Descriptor.from_dict(m) for m in manifests],
            media_type=media_type,
            annotations=_string_map(
                "annotations", data.get("annotations") or {}
            ),
            schema_version=schema_version,
            artifact_type=artifact_type,
            extra={k: v for k, v in data.items() if k not in known},
        )


def parse_platform(value: str) -> Platform:
    """Parses a platform selector of the form `os/arch[/variant]`.

    Raises:
        ValueError: The selector has too few or too many components.
    """
    parts = value.split("/")
    if len(parts) < 2:
        raise ValueError(
            f"Failed to parse platform {value!r}: "
            "expected format os/arch[/variant]"
        )
    if len(parts) > 3:
        raise ValueError(
            f"Failed to parse platform {value!r}: too many slashes"
        )
    if not all(parts):
        raise ValueError(f"Failed to parse platform {value!r}: empty component")

    return Platform(
        os=parts[0],
        architecture=parts[1],
        variant=parts[2] if len(parts) > 2 else "",
    )


_ARCHITECTURES: Final[dict[str, str]] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "386",
    "i686": "386",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def default_platform() -> Platform:
    """Returns the platform to verify when none is requested explicitly.

    This is the host platform, except that macOS hosts select `linux`, since
    container images for darwin are rare and almost never what is meant.
    """
    os_name = sys.platform
    if os_name.startswith("linux") or os_name == "darwin":
        os_name = "linux"
    elif os_name in ("win32", "cygwin"):
        os_name = "windows"

    machine = _host.machine().lower()
    architecture = _ARCHITECTURES.get(machine, machine)
    variant = ""
    if architecture == "arm64":
        variant = "v8"
    elif architecture == "arm":
        variant = "v7"

    return Platform(os=os_name, architecture=architecture, variant=variant)
