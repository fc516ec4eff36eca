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

"""High level API for verifying the descriptors of an image index.

Verifying a descriptor checks more than the signature: the descriptor that was
signed is stored next to the signature, and every field that selects content
(digest, size, media type, URLs, platform, annotations) is compared against
the descriptor found in the index. This catches a valid signature that was
copied onto a different descriptor.

```python
index_signing.verifying.Config().use_ssh_keygen_verifier(
    allowed_signers="allowed_signers"
).set_platform("linux/amd64").verify_file("image-layout")
```

Without a platform, every descriptor of the index must verify.
"""

from collections.abc import Sequence
import logging
import os
import sys
from typing import Any

from index_signing import _canonical
from index_signing import annotations
from index_signing import descriptor as descriptor_lib
from index_signing import errors
from index_signing import layout
from index_signing._signing import allowed_signers as allowed_signers_lib
from index_signing._signing import sign_ssh_key as ssh_key
from index_signing._signing import sign_ssh_keygen as ssh_keygen
from index_signing._signing import signing


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)


def verify_descriptor(
    descriptor: descriptor_lib.Descriptor,
    backend: signing.Backend,
    authorized: Any,
    *,
    index_annotations: dict[str, str] | None = None,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> descriptor_lib.Descriptor:
    """Verifies the signature attached to a descriptor.

    Args:
        descriptor: The descriptor, as found in the index.
        backend: The backend checking the signature.
        authorized: The authorized signers, as understood by `backend`.
        index_annotations: The annotations of the enclosing index, searched
          for signatures in the legacy index-wide layout.
        scheme: The annotation scheme.

    Returns:
        The descriptor that was signed.

    Raises:
        SignatureNotFoundError: The descriptor is not signed.
        UnsupportedVersionError: The signature uses another scheme version.
        UnsupportedTypeError: The backend cannot check this signature type.
        VerificationFailedError: The signature is not valid.
        MalformedPayloadError: The signed descriptor cannot be decoded.
        DescriptorMismatchError: The descriptor differs from the signed one.
    """
    digest = str(descriptor.digest)
    match annotations.detect_layout(descriptor, index_annotations, scheme):
        case annotations.Layout.PER_DESCRIPTOR:
            record = annotations.decode(
                descriptor.annotations,
                digest=digest,
                signature_types=(backend.signature_type,),
                scheme=scheme,
            )
        case annotations.Layout.INDEX_WIDE:
            logger.info("Found legacy index-wide signature for %s", digest)
            record = annotations.decode(
                index_annotations,
                layout=annotations.Layout.INDEX_WIDE,
                digest=digest,
                signature_types=(backend.signature_type,),
                scheme=scheme,
            )
        case None:
            raise errors.SignatureNotFoundError(
                f"Cannot find signature for digest {digest}", digest
            )

    backend.verify(
        record.descriptor, record.signature, record.identity, authorized
    )
    signed = _canonical.decode(record.descriptor)
    compare_descriptors(signed, descriptor, scheme)
    logger.info("Verified %s signed by %s", digest, record.identity)
    return signed


def _compare(field: str, signed: Any, live: Any) -> None:
    if signed != live:
        raise errors.DescriptorMismatchError(field, signed, live)


def _compare_list(
    field: str, signed: Sequence[str], live: Sequence[str]
) -> None:
    _compare(f"number of {field}s", len(signed), len(live))
    for i, (signed_item, live_item) in enumerate(zip(signed, live)):
        _compare(f"{field} {i}", signed_item, live_item)


def compare_descriptors(
    signed: descriptor_lib.Descriptor,
    live: descriptor_lib.Descriptor,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> None:
    """Checks that a live descriptor is the one that was signed.

    Annotations in the signed descriptor that are not in the live one are
    tolerated, as are the signature annotations themselves.

    Args:
        signed: The descriptor decoded from the signature.
        live: The descriptor found in the index.
        scheme: The annotation scheme.

    Raises:
        DescriptorMismatchError: The first field that differs.
    """
    _compare("media type", signed.media_type, live.media_type)
    _compare("size", signed.size, live.size)
    _compare(
        "digest algorithm", signed.digest.algorithm, live.digest.algorithm
    )
    _compare("digest", signed.digest.hex, live.digest.hex)
    _compare("artifact type", signed.artifact_type, live.artifact_type)
    _compare_list("URL", signed.urls, live.urls)

    empty = descriptor_lib.Platform(os="", architecture="")
    signed_platform = signed.platform or empty
    live_platform = live.platform or empty
    _compare(
        "platform architecture",
        signed_platform.architecture,
        live_platform.architecture,
    )
    _compare("platform OS", signed_platform.os, live_platform.os)
    _compare(
        "platform OS version",
        signed_platform.os_version,
        live_platform.os_version,
    )
    _compare(
        "platform variant", signed_platform.variant, live_platform.variant
    )
    _compare_list(
        "OS feature",
        signed_platform.os_features,
        live_platform.os_features,
    )
    _compare_list(
        "feature", signed_platform.features, live_platform.features
    )

    for key, value in live.annotations.items():
        if annotations.is_reserved(key, scheme):
            continue
        _compare(f"annotation {key}", signed.annotations.get(key), value)


def verify_index(
    index: descriptor_lib.Index,
    backend: signing.Backend,
    authorized: Any,
    *,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> list[descriptor_lib.Descriptor]:
    """Verifies every descriptor of the index.

    Returns:
        The signed descriptors, in index order.

    Raises:
        The error of the first descriptor that fails to verify.
    """
    return [
        verify_descriptor(
            d,
            backend,
            authorized,
            index_annotations=index.annotations,
            scheme=scheme,
        )
        for d in index.manifests
    ]


def verify_platform(
    index: descriptor_lib.Index,
    platform: descriptor_lib.Platform,
    backend: signing.Backend,
    authorized: Any,
    *,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> descriptor_lib.Descriptor:
    """Verifies the first descriptor for `platform`, ignoring the others.

    Returns:
        The signed descriptor.

    Raises:
        PlatformNotFoundError: No descriptor matches the platform.
    """
    for descriptor in index.manifests:
        if descriptor.platform is None:
            continue
        if descriptor.platform.matches(platform):
            logger.debug("Selected %s for %s", descriptor.digest, platform)
            return verify_descriptor(
                descriptor,
                backend,
                authorized,
                index_annotations=index.annotations,
                scheme=scheme,
            )
    raise errors.PlatformNotFoundError(str(platform))


class Config:
    """Configuration to use when verifying indexes.

    The verifier must match the signature type used when signing. Both SSH
    verifiers check the `ssh` signature type against an OpenSSH allowed
    signers file.
    """

    def __init__(self):
        """Initializes the default configuration for verification."""
        self._backend = None
        self._authorized = None
        self._platform = None
        self._scheme = annotations.DEFAULT_SCHEME

    def verify(
        self, index: descriptor_lib.Index
    ) -> list[descriptor_lib.Descriptor]:
        """Verifies the index.

        If a platform is set, only the descriptor for that platform is
        verified. Otherwise, all descriptors are.

        Args:
            index: The index to verify.

        Returns:
            The signed descriptors that were verified.

        Raises:
            ValueError: No verifier has been configured.
        """
        if self._backend is None:
            raise ValueError("Attempting to verify with no configured verifier")

        if self._platform is None:
            return verify_index(
                index, self._backend, self._authorized, scheme=self._scheme
            )
        return [
            verify_platform(
                index,
                self._platform,
                self._backend,
                self._authorized,
                scheme=self._scheme,
            )
        ]

    def verify_file(
        self, path: str | os.PathLike
    ) -> list[descriptor_lib.Descriptor]:
        """Verifies the index stored at `path`.

        Args:
            path: An `index.json` file or an OCI image layout directory.

        Returns:
            The signed descriptors that were verified.
        """
        return self.verify(layout.read_index(path))

    def set_platform(
        self, platform: descriptor_lib.Platform | str | None
    ) -> Self:
        """Restricts verification to a single platform.

        Args:
            platform: A `Platform`, a selector such as `linux/arm64/v8`, the
              string `host` for the platform of this machine, or `None` to
              verify every descriptor.

        Returns:
            The new verification configuration.

        Raises:
            ValueError: The selector cannot be parsed.
        """
        if platform == "host":
            platform = descriptor_lib.default_platform()
        elif isinstance(platform, str):
            platform = descriptor_lib.parse_platform(platform)
        self._platform = platform
        return self

    def use_backend(self, backend: signing.Backend, authorized: Any) -> Self:
        """Configures verification with an arbitrary backend.

        Args:
            backend: The backend to verify with.
            authorized: The authorized signers, as understood by `backend`.

        Returns:
            The new verification configuration.
        """
        self._backend = backend
        self._authorized = authorized
        return self

    def use_ssh_keygen_verifier(
        self,
        *,
        allowed_signers: str | os.PathLike,
        executable: str | os.PathLike = "ssh-keygen",
        timeout: float | None = None,
    ) -> Self:
        """Configures verification by running `ssh-keygen -Y verify`.

        Args:
            allowed_signers: The allowed signers file.
            executable: The `ssh-keygen` binary.
            timeout: Optional limit in seconds for each verification.

        Returns:
            The new verification configuration.
        """
        return self.use_backend(
            ssh_keygen.Backend(
                executable=executable,
                namespace=self._scheme.namespace,
                timeout=timeout,
            ),
            allowed_signers,
        )

    def use_ssh_key_verifier(
        self, *, allowed_signers: str | os.PathLike
    ) -> Self:
        """Configures verification in-process.

        The allowed signers file is read once, here.

        Args:
            allowed_signers: The allowed signers file.

        Returns:
            The new verification configuration.
        """
        return self.use_backend(
            ssh_key.Backend(namespace=self._scheme.namespace),
            allowed_signers_lib.AllowedSigners.read(allowed_signers),
        )
