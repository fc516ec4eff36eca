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

"""High level API for signing the descriptors of an image index.

Every descriptor in the index is signed separately, and the signature is
stored in the descriptor's own annotations. The rest of the index is left
untouched:

```python
signed_index = index_signing.signing.Config().use_ssh_keygen_signer(
    private_key="~/.ssh/id_ed25519", identity="alice@example.com"
).sign(index)
```

An index stored in a file, or in an OCI image layout directory, can be signed
in place:

```python
index_signing.signing.Config().use_ssh_key_signer(
    private_key="id_ed25519", identity="alice@example.com"
).sign_file("image-layout")
```

Signing fails as a whole: if any descriptor cannot be signed, no signed index
is returned.
"""

import concurrent.futures
import logging
import os
import sys

from index_signing import _canonical
from index_signing import annotations
from index_signing import descriptor as descriptor_lib
from index_signing import errors
from index_signing import layout
from index_signing._signing import sign_ssh_key as ssh_key
from index_signing._signing import sign_ssh_keygen as ssh_keygen
from index_signing._signing import signing


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)


def sign_descriptor(
    descriptor: descriptor_lib.Descriptor,
    backend: signing.Backend,
    *,
    key_ref: signing.KeyRef,
    identity: str,
    overwrite: bool = True,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> descriptor_lib.Descriptor:
    """Signs a single descriptor.

    Any signature already present is dropped before signing, so that it is not
    covered by the new signature.

    Args:
        descriptor: The descriptor to sign.
        backend: The backend producing the signature.
        key_ref: The signing key, as understood by `backend`.
        identity: The identity of the signer, recorded as a hint.
        overwrite: Whether to replace an existing signature. If `False`, a
          signed descriptor raises `AlreadySignedError`.
        scheme: The annotation scheme.

    Returns:
        A copy of `descriptor` with the signature annotations added.
    """
    if not identity:
        raise ValueError("Need to specify an identity")
    if annotations.is_signed(descriptor, scheme):
        if not overwrite:
            raise errors.AlreadySignedError(str(descriptor.digest))
        logger.info("Replacing existing signature of %s", descriptor.digest)

    unsigned = descriptor.replace_annotations(
        annotations.strip(descriptor.annotations, scheme)
    )
    payload = _canonical.encode(unsigned)
    signature = backend.sign(payload, identity, key_ref)
    record = annotations.SignatureRecord(
        version=scheme.version,
        type=backend.signature_type,
        identity=identity,
        descriptor=payload,
        signature=signature,
    )
    logger.debug("Signed %s as %s", descriptor.digest, identity)
    return unsigned.with_annotations(annotations.encode(record, scheme=scheme))


def sign_index(
    index: descriptor_lib.Index,
    backend: signing.Backend,
    *,
    key_ref: signing.KeyRef,
    identity: str,
    overwrite: bool = True,
    max_workers: int | None = None,
    scheme: annotations.Scheme = annotations.DEFAULT_SCHEME,
) -> descriptor_lib.Index:
    """Signs every descriptor of an index.

    Args:
        index: The index to sign.
        backend: The backend producing the signatures.
        key_ref: The signing key, as understood by `backend`.
        identity: The identity of the signer.
        overwrite: Whether to replace existing signatures.
        max_workers: Maximum number of descriptors signed in parallel. `None`
          defers to the `concurrent.futures` library. Use 1 for keys that
          prompt the user.
        scheme: The annotation scheme.

    Returns:
        A new index, with signed descriptors in the original order.

    Raises:
        The error of the first descriptor, in index order, that failed.
    """
    if not identity:
        raise ValueError("Need to specify an identity")

    def sign_one(
        descriptor: descriptor_lib.Descriptor,
    ) -> descriptor_lib.Descriptor:
        return sign_descriptor(
            descriptor,
            backend,
            key_ref=key_ref,
            identity=identity,
            overwrite=overwrite,
            scheme=scheme,
        )

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers
    ) as tpe:
        futures = [tpe.submit(sign_one, d) for d in index.manifests]
        try:
            signed = [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    logger.info("Signed %d descriptors as %s", len(signed), identity)
    return index.with_manifests(signed)


class Config:
    """Configuration to use when signing indexes.

    We support signing by running `ssh-keygen` (which can use keys from an SSH
    agent or hardware tokens) and signing in-process with an OpenSSH private
    key. Both produce the same `ssh` signature type. Other backends can be
    plugged in with `use_backend`.
    """

    def __init__(self):
        """Initializes the default configuration for signing."""
        self._backend = None
        self._key_ref = None
        self._identity = None
        self._overwrite = True
        self._max_workers = None
        self._scheme = annotations.DEFAULT_SCHEME

    def sign(self, index: descriptor_lib.Index) -> descriptor_lib.Index:
        """Signs all descriptors of the index.

        Args:
            index: The index to sign.

        Returns:
            The signed index.

        Raises:
            ValueError: No signer has been configured.
        """
        if self._backend is None:
            raise ValueError("Attempting to sign with no configured signer")

        return sign_index(
            index,
            self._backend,
            key_ref=self._key_ref,
            identity=self._identity,
            overwrite=self._overwrite,
            max_workers=self._max_workers,
            scheme=self._scheme,
        )

    def sign_file(
        self,
        path: str | os.PathLike,
        output: str | os.PathLike | None = None,
    ) -> descriptor_lib.Index:
        """Signs the index stored at `path`.

        Args:
            path: An `index.json` file or an OCI image layout directory.
            output: Where to write the signed index. Defaults to `path`.

        Returns:
            The signed index.
        """
        signed = self.sign(layout.read_index(path))
        layout.write_index(path if output is None else output, signed)
        return signed

    def use_backend(
        self,
        backend: signing.Backend,
        *,
        key_ref: signing.KeyRef,
        identity: str,
    ) -> Self:
        """Configures signing with an arbitrary backend.

        Args:
            backend: The backend to sign with.
            key_ref: The signing key, as understood by `backend`.
            identity: The identity of the signer.

        Returns:
            The new signing configuration.
        """
        self._backend = backend
        self._key_ref = key_ref
        self._identity = identity
        return self

    def use_ssh_keygen_signer(
        self,
        *,
        private_key: signing.KeyRef,
        identity: str,
        executable: str | os.PathLike = "ssh-keygen",
        timeout: float | None = None,
    ) -> Self:
        """Configures signing by running `ssh-keygen -Y sign`.

        Args:
            private_key: The key file passed to `ssh-keygen -f`. For keys in
              an agent this can be the public key file.
            identity: The identity of the signer.
            executable: The `ssh-keygen` binary.
            timeout: Optional limit in seconds for each signing operation.

        Returns:
            The new signing configuration.
        """
        return self.use_backend(
            ssh_keygen.Backend(
                executable=executable,
                namespace=self._scheme.namespace,
                timeout=timeout,
            ),
            key_ref=private_key,
            identity=identity,
        )

    def use_ssh_key_signer(
        self,
        *,
        private_key: signing.KeyRef,
        identity: str,
        password: str | None = None,
    ) -> Self:
        """Configures signing in-process with an OpenSSH private key.

        Args:
            private_key: The path to the OpenSSH private key.
            identity: The identity of the signer.
            password: Optional password for the private key.

        Returns:
            The new signing configuration.
        """
        return self.use_backend(
            ssh_key.Backend(
                password=None if password is None else password.encode(),
                namespace=self._scheme.namespace,
            ),
            key_ref=private_key,
            identity=identity,
        )

    def set_overwrite(self, overwrite: bool) -> Self:
        """Sets whether existing signatures are replaced or rejected.

        Args:
            overwrite: If `False`, signing an already signed descriptor raises
              `AlreadySignedError`.

        Returns:
            The new signing configuration.
        """
        self._overwrite = overwrite
        return self

    def set_max_workers(self, max_workers: int | None) -> Self:
        """Sets how many descriptors may be signed in parallel.

        Args:
            max_workers: The number of worker threads, or `None` to defer to
              the `concurrent.futures` library.

        Returns:
            The new signing configuration.
        """
        self._max_workers = max_workers
        return self
