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

"""Interface to the cryptographic signing and verification primitives.

The signing protocol never touches key material itself. Producing a signature
over a payload, and checking that a signature over a payload was made by an
authorized identity, are delegated to a `Backend`. Backends can shell out to an
external tool, talk to a key management service, or sign in-process, without
the protocol logic having to change.

Every backend advertises a `signature_type`. The type is recorded next to each
signature so that verification can reject signatures made by a backend it
does not have.
"""

import abc
import os
from typing import Any, TypeAlias

from index_signing import errors


KeyRef: TypeAlias = str | os.PathLike
"""A reference to the signing key, interpreted by the backend."""


class Backend(metaclass=abc.ABCMeta):
    """Generic signing and verification backend.

    Attributes:
        signature_type: The type tag stored alongside signatures produced by
          this backend.
    """

    signature_type: str

    @abc.abstractmethod
    def sign(self, payload: bytes, identity: str, key_ref: KeyRef) -> bytes:
        """Signs the payload.

        Args:
            payload: The bytes to sign.
            identity: The identity of the signer.
            key_ref: A reference to the signing key. Must not be empty.

        Returns:
            The opaque signature.

        Raises:
            SigningUnavailableError: The backend could not be run.
            SigningRejectedError: The backend ran but refused to sign.
        """

    @abc.abstractmethod
    def verify(
        self, payload: bytes, signature: bytes, identity: str, authorized: Any
    ) -> None:
        """Verifies that `signature` was made over `payload` by `identity`.

        Args:
            payload: The bytes that were signed.
            signature: The opaque signature.
            identity: The identity the signature claims.
            authorized: The set of authorized signers, in a representation
              specific to the backend.

        Raises:
            VerificationFailedError: The signature is invalid or the signer is
              not authorized.
            BackendUnavailableError: The backend could not be run.
        """


def check_key_ref(key_ref: KeyRef | None) -> str:
    """Returns the key reference as a string, rejecting empty ones.

    Raises:
        SigningUnavailableError: The key reference is empty.
    """
    if key_ref is None or not os.fspath(key_ref):
        raise errors.SigningUnavailableError(
            "Must specify a key file for the signing key"
        )
    return os.fspath(key_ref)
