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

"""Storage of signatures in index annotations.

Annotations are the only metadata channel of an image index, so a signature is
stored as five string annotations under a reserved key prefix:

- `<prefix>.version`: the version of the signing scheme;
- `<prefix>.type`: the signature type, which selects the backend (e.g. `ssh`);
- `<prefix>.data`: the base64 encoded signature;
- `<prefix>.identity`: a hint for the identity of the signer;
- `<prefix>.descriptor`: the base64 encoded canonical descriptor that was
  signed.

Two layouts of these keys exist. The current one attaches the keys to the
annotations of the signed descriptor itself. The legacy one attached all
signatures to the annotations of the index, suffixing each key with `.` and
the digest of the signed descriptor. Signatures are only written in the
current layout, but both can be read.
"""

import base64
import binascii
from collections.abc import Collection, Mapping
import dataclasses
import enum
from typing import Final

from index_signing import descriptor as descriptor_lib
from index_signing import errors


class Layout(enum.Enum):
    """Where the signature annotations of a descriptor are stored."""

    PER_DESCRIPTOR = "per-descriptor"
    INDEX_WIDE = "index-wide"


@dataclasses.dataclass(frozen=True)
class Scheme:
    """Constants of the signature annotation scheme.

    Attributes:
        prefix: The annotation key prefix. All keys starting with the prefix
          followed by `.` are reserved for signatures.
        version: The only recognized value of the version annotation.
        namespace: The signing domain passed to the backend, so that
          signatures made for this scheme cannot be reused elsewhere.
    """

    prefix: str = "org.notaryproject.signature"
    version: str = "0.2"
    namespace: str = "org.notaryproject.sign"

    @property
    def reserved_prefix(self) -> str:
        return f"{self.prefix}."

    @property
    def version_key(self) -> str:
        return f"{self.prefix}.version"

    @property
    def type_key(self) -> str:
        return f"{self.prefix}.type"

    @property
    def data_key(self) -> str:
        return f"{self.prefix}.data"

    @property
    def identity_key(self) -> str:
        return f"{self.prefix}.identity"

    @property
    def descriptor_key(self) -> str:
        return f"{self.prefix}.descriptor"

    @property
    def keys(self) -> tuple[str, ...]:
        return (
            self.version_key,
            self.type_key,
            self.data_key,
            self.identity_key,
            self.descriptor_key,
        )


DEFAULT_SCHEME: Final[Scheme] = Scheme()


@dataclasses.dataclass(frozen=True)
class SignatureRecord:
    """A signature, as decoded from annotations.

    Attributes:
        version: The version of the signing scheme.
        type: The signature type tag.
        identity: The identity hint of the signer.
        descriptor: The canonical bytes of the signed descriptor.
        signature: The opaque signature produced by the backend.
    """

    version: str
    type: str
    identity: str
    descriptor: bytes
    signature: bytes


def _suffixed_keys(
    layout: Layout, digest: descriptor_lib.Digest | str | None, scheme: Scheme
) -> tuple[str, ...]:
    match layout:
        case Layout.PER_DESCRIPTOR:
            return scheme.keys
        case Layout.INDEX_WIDE:
            if digest is None:
                raise ValueError("The index-wide layout needs a digest")
            return tuple(f"{key}.{digest}" for key in scheme.keys)


def encode(
    record: SignatureRecord,
    layout: Layout = Layout.PER_DESCRIPTOR,
    digest: descriptor_lib.Digest | str | None = None,
    scheme: Scheme = DEFAULT_SCHEME,
) -> dict[str, str]:
    """Encodes a signature record into annotations.

    Args:
        record: The signature to encode.
        layout: The layout to encode into.
        digest: The digest of the signed descriptor. Only needed for the
          index-wide layout.
        scheme: The annotation scheme.

    Returns:
        The annotations to merge into the descriptor (or, for the index-wide
        layout, into the index).
    """
    version, type_, data, identity, descriptor = _suffixed_keys(
        layout, digest, scheme
    )
    return {
        version: record.version,
        type_: record.type,
        data: base64.b64encode(record.signature).decode("ascii"),
        identity: record.identity,
        descriptor: base64.b64encode(record.descriptor).decode("ascii"),
    }


def _b64decode(value: str, key: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise errors.MalformedPayloadError(
            f"Annotation {key} is not valid base64: {e}"
        ) from e


def decode(
    annotations: Mapping[str, str],
    layout: Layout = Layout.PER_DESCRIPTOR,
    digest: descriptor_lib.Digest | str | None = None,
    signature_types: Collection[str] = ("ssh",),
    scheme: Scheme = DEFAULT_SCHEME,
) -> SignatureRecord:
    """Decodes a signature record from annotations.

    The version and the type are checked before anything else is decoded, so
    that signatures from a newer scheme are rejected early.

    Args:
        annotations: The annotations holding the signature.
        layout: The layout the signature is stored in.
        digest: The digest of the signed descriptor. Only needed for the
          index-wide layout, but used in error messages otherwise.
        signature_types: The recognized signature types.
        scheme: The annotation scheme.

    Returns:
        The decoded signature record.

    Raises:
        SignatureNotFoundError: There is no signature in `annotations`.
        IncompleteSignatureError: Only some of the annotations are present.
        UnsupportedVersionError: The version is not the scheme's version.
        UnsupportedTypeError: The type is not in `signature_types`.
        MalformedPayloadError: The signature or descriptor are not base64.
    """
    keys = _suffixed_keys(layout, digest, scheme)
    version_key, type_key, data_key, identity_key, descriptor_key = keys
    digest = None if digest is None else str(digest)

    missing = [key for key in keys if key not in annotations]
    if len(missing) == len(keys):
        raise errors.SignatureNotFoundError(
            f"Cannot find signature for digest {digest}", digest
        )

    def incomplete(key: str) -> errors.IncompleteSignatureError:
        return errors.IncompleteSignatureError(
            f"Cannot find valid signature for digest {digest} (missing {key})",
            missing,
            digest,
        )

    if version_key in missing:
        raise incomplete(version_key)
    version = annotations[version_key]
    if version != scheme.version:
        raise errors.UnsupportedVersionError(scheme.version, version)

    if type_key in missing:
        raise incomplete(type_key)
    signature_type = annotations[type_key]
    if signature_type not in signature_types:
        raise errors.UnsupportedTypeError(
            sorted(signature_types), signature_type
        )

    if missing:
        raise incomplete(missing[0])

    return SignatureRecord(
        version=version,
        type=signature_type,
        identity=annotations[identity_key],
        descriptor=_b64decode(annotations[descriptor_key], descriptor_key),
        signature=_b64decode(annotations[data_key], data_key),
    )


def is_reserved(key: str, scheme: Scheme = DEFAULT_SCHEME) -> bool:
    """Whether `key` belongs to the reserved signature namespace."""
    return key.startswith(scheme.reserved_prefix)


def strip(
    annotations: Mapping[str, str], scheme: Scheme = DEFAULT_SCHEME
) -> dict[str, str]:
    """Returns `annotations` without any reserved signature keys."""
    return {k: v for k, v in annotations.items() if not is_reserved(k, scheme)}


def is_signed(
    descriptor: descriptor_lib.Descriptor, scheme: Scheme = DEFAULT_SCHEME
) -> bool:
    """Whether the descriptor carries signature annotations of its own."""
    return any(key in descriptor.annotations for key in scheme.keys)


def detect_layout(
    descriptor: descriptor_lib.Descriptor,
    index_annotations: Mapping[str, str] | None = None,
    scheme: Scheme = DEFAULT_SCHEME,
) -> Layout | None:
    """Finds the layout holding the signature of `descriptor`.

    Signatures on the descriptor itself take precedence over legacy signatures
    on the index.

    Args:
        descriptor: The descriptor whose signature to find.
        index_annotations: The annotations of the enclosing index, if any.
        scheme: The annotation scheme.

    Returns:
        The layout holding the signature, or `None` if there is none.
    """
    if is_signed(descriptor, scheme):
        return Layout.PER_DESCRIPTOR
    if index_annotations:
        keys = _suffixed_keys(Layout.INDEX_WIDE, descriptor.digest, scheme)
        if any(key in index_annotations for key in keys):
            return Layout.INDEX_WIDE
    return None
