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

"""In-process SSH signatures, compatible with `ssh-keygen -Y sign`.

Signatures use the SSHSIG format from OpenSSH's `PROTOCOL.sshsig`. The blob
binds the public key, the namespace and a hash of the message:

```
byte[6]   "SSHSIG"
uint32    1
string    public key
string    namespace
string    reserved
string    hash algorithm
string    signature
```

The signature is computed over `"SSHSIG" || string(namespace) ||
string(reserved) || string(hash algorithm) || string(H(message))`, and the blob
is armored between `-----BEGIN SSH SIGNATURE-----` lines. Since this is the
same format `ssh-keygen` produces, signatures from either backend verify with
the other one.

We support Ed25519, ECDSA (on the NIST P-256, P-384 and P-521 curves) and RSA
keys, in the OpenSSH private key format. Keys held by an agent or on hardware
tokens need the `ssh-keygen` backend.
"""

import base64
import binascii
import hashlib
import logging
import os
import pathlib
import struct
from typing import Any

from cryptography import exceptions
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric import utils
from typing_extensions import override

from index_signing import annotations
from index_signing import errors
from index_signing._signing import allowed_signers as allowed_signers_lib
from index_signing._signing import signing


logger = logging.getLogger(__name__)


_MAGIC = b"SSHSIG"
_VERSION = 1
_BEGIN = "-----BEGIN SSH SIGNATURE-----"
_END = "-----END SSH SIGNATURE-----"
_LINE_LENGTH = 70

_HASHES = {
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}

# Curve name to SSH key type and signature hash.
_CURVES = {
    "secp256r1": (b"ecdsa-sha2-nistp256", hashes.SHA256),
    "secp384r1": (b"ecdsa-sha2-nistp384", hashes.SHA384),
    "secp521r1": (b"ecdsa-sha2-nistp521", hashes.SHA512),
}

_RSA_HASHES = {
    b"rsa-sha2-256": hashes.SHA256,
    b"rsa-sha2-512": hashes.SHA512,
}


def _string(value: bytes) -> bytes:
    return struct.pack(">I", len(value)) + value


def _mpint(value: int) -> bytes:
    if value == 0:
        return b""
    return value.to_bytes((value.bit_length() + 8) // 8, "big")


class _Reader:
    """Reads SSH wire format fields from a buffer."""

    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0

    def read(self, size: int) -> bytes:
        if self._offset + size > len(self._data):
            raise ValueError("Truncated SSH data")
        value = self._data[self._offset : self._offset + size]
        self._offset += size
        return value

    def read_uint32(self) -> int:
        return struct.unpack(">I", self.read(4))[0]

    def read_string(self) -> bytes:
        return self.read(self.read_uint32())

    def read_mpint(self) -> int:
        return int.from_bytes(self.read_string(), "big", signed=True)

    def done(self) -> bool:
        return self._offset == len(self._data)


def public_key_blob(key: Any) -> bytes:
    """Returns the SSH wire encoding of a public key."""
    line = key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return base64.b64decode(line.split()[1])


def _signed_data(namespace: bytes, hash_name: str, message: bytes) -> bytes:
    digest = _HASHES[hash_name](message).digest()
    return (
        _MAGIC
        + _string(namespace)
        + _string(b"")
        + _string(hash_name.encode("ascii"))
        + _string(digest)
    )


def armor(blob: bytes) -> bytes:
    """Wraps a signature blob in the armor used by `ssh-keygen`."""
    encoded = base64.b64encode(blob).decode("ascii")
    lines = [
        encoded[i : i + _LINE_LENGTH]
        for i in range(0, len(encoded), _LINE_LENGTH)
    ]
    return "\n".join([_BEGIN, *lines, _END, ""]).encode("ascii")


def dearmor(signature: bytes) -> bytes:
    """Extracts the signature blob from its armored form.

    Raises:
        ValueError: The signature is not armored or not base64.
    """
    lines = signature.decode("ascii").strip().splitlines()
    if len(lines) < 2 or lines[0] != _BEGIN or lines[-1] != _END:
        raise ValueError("Missing SSH signature armor")
    try:
        return base64.b64decode("".join(lines[1:-1]), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid SSH signature encoding: {e}") from e


def _sign_raw(private_key: Any, data: bytes) -> bytes:
    """Signs `data` and returns the SSH signature encoding."""
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return _string(b"ssh-ed25519") + _string(private_key.sign(data))

    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        if private_key.curve.name not in _CURVES:
            raise ValueError(f"Unsupported curve {private_key.curve.name}")
        key_type, hash_type = _CURVES[private_key.curve.name]
        der = private_key.sign(data, ec.ECDSA(hash_type()))
        r, s = utils.decode_dss_signature(der)
        numbers = _string(_mpint(r)) + _string(_mpint(s))
        return _string(key_type) + _string(numbers)

    if isinstance(private_key, rsa.RSAPrivateKey):
        raw = private_key.sign(data, padding.PKCS1v15(), hashes.SHA512())
        return _string(b"rsa-sha2-512") + _string(raw)

    raise ValueError(f"Unsupported key type {type(private_key).__name__}")


def _verify_raw(public_key: Any, signature: bytes, data: bytes) -> None:
    """Checks an SSH encoded signature over `data`.

    Raises:
        InvalidSignature: The signature does not match.
        ValueError: The signature is malformed or of an unexpected type.
    """
    reader = _Reader(signature)
    signature_type = reader.read_string()
    raw = reader.read_string()
    if not reader.done():
        raise ValueError("Trailing data after signature")

    if isinstance(public_key, ed25519.Ed25519PublicKey):
        if signature_type != b"ssh-ed25519":
            raise ValueError(f"Unexpected signature type {signature_type!r}")
        public_key.verify(raw, data)
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        if public_key.curve.name not in _CURVES:
            raise ValueError(f"Unsupported curve {public_key.curve.name}")
        key_type, hash_type = _CURVES[public_key.curve.name]
        if signature_type != key_type:
            raise ValueError(f"Unexpected signature type {signature_type!r}")
        numbers = _Reader(raw)
        r = numbers.read_mpint()
        s = numbers.read_mpint()
        public_key.verify(
            utils.encode_dss_signature(r, s), data, ec.ECDSA(hash_type())
        )
    elif isinstance(public_key, rsa.RSAPublicKey):
        if signature_type not in _RSA_HASHES:
            raise ValueError(f"Unexpected signature type {signature_type!r}")
        public_key.verify(
            raw, data, padding.PKCS1v15(), _RSA_HASHES[signature_type]()
        )
    else:
        raise ValueError(f"Unsupported key type {type(public_key).__name__}")


def _load_public_key(blob: bytes) -> Any:
    key_type = _Reader(blob).read_string()
    return serialization.load_ssh_public_key(
        key_type + b" " + base64.b64encode(blob)
    )


class Backend(signing.Backend):
    """Backend producing SSH signatures with `cryptography`."""

    signature_type = "ssh"

    def __init__(
        self,
        *,
        password: bytes | None = None,
        namespace: str = annotations.DEFAULT_SCHEME.namespace,
        hash_algorithm: str = "sha512",
    ):
        """Initializes the backend.

        Args:
            password: Optional password protecting the private keys.
            namespace: The signing domain bound into every signature.
            hash_algorithm: The message hash, `sha512` or `sha256`.
        """
        if hash_algorithm not in _HASHES:
            raise ValueError(f"Unsupported hash algorithm {hash_algorithm}")
        self._password = password
        self._namespace = namespace.encode("utf-8")
        self._hash_algorithm = hash_algorithm

    @override
    def sign(
        self, payload: bytes, identity: str, key_ref: signing.KeyRef
    ) -> bytes:
        key_file = pathlib.Path(signing.check_key_ref(key_ref))
        try:
            private_key = serialization.load_ssh_private_key(
                key_file.read_bytes(), self._password
            )
        except OSError as e:
            raise errors.SigningUnavailableError(
                f"Cannot read signing key {key_file}: {e}"
            ) from e
        except (ValueError, TypeError, exceptions.UnsupportedAlgorithm) as e:
            raise errors.SigningUnavailableError(
                f"Cannot load signing key {key_file}: {e}"
            ) from e

        try:
            raw_signature = _sign_raw(
                private_key,
                _signed_data(self._namespace, self._hash_algorithm, payload),
            )
        except ValueError as e:
            raise errors.SigningUnavailableError(str(e)) from e

        blob = (
            _MAGIC
            + struct.pack(">I", _VERSION)
            + _string(public_key_blob(private_key.public_key()))
            + _string(self._namespace)
            + _string(b"")
            + _string(self._hash_algorithm.encode("ascii"))
            + _string(raw_signature)
        )
        logger.debug("Signed %d bytes as %s", len(payload), identity)
        return armor(blob)

    def _allowed_signers(
        self, authorized: Any
    ) -> allowed_signers_lib.AllowedSigners:
        if isinstance(authorized, allowed_signers_lib.AllowedSigners):
            return authorized
        try:
            return allowed_signers_lib.AllowedSigners.read(
                os.fspath(authorized)
            )
        except OSError as e:
            raise errors.BackendUnavailableError(
                f"Cannot read allowed signers: {e}"
            ) from e
        except ValueError as e:
            raise errors.BackendUnavailableError(
                f"Invalid allowed signers file {authorized}: {e}"
            ) from e

    @override
    def verify(
        self, payload: bytes, signature: bytes, identity: str, authorized: Any
    ) -> None:
        allowed = self._allowed_signers(authorized)

        try:
            reader = _Reader(dearmor(signature))
            if reader.read(len(_MAGIC)) != _MAGIC:
                raise ValueError("Missing SSHSIG preamble")
            version = reader.read_uint32()
            if version != _VERSION:
                raise ValueError(f"Unsupported SSHSIG version {version}")
            key_blob = reader.read_string()
            namespace = reader.read_string()
            reader.read_string()  # reserved
            hash_name = reader.read_string().decode("ascii")
            raw_signature = reader.read_string()
        except (ValueError, UnicodeDecodeError) as e:
            raise errors.VerificationFailedError(
                f"Signature validation failed: {e}", str(e)
            ) from e

        if namespace != self._namespace:
            message = (
                f"Signature namespace {namespace!r} does not match "
                f"{self._namespace!r}"
            )
            raise errors.VerificationFailedError(message, message)
        if hash_name not in _HASHES:
            message = f"Unsupported signature hash algorithm {hash_name!r}"
            raise errors.VerificationFailedError(message, message)

        if not allowed.is_allowed(
            identity, self._namespace.decode("utf-8"), key_blob
        ):
            message = f"Key is not an allowed signer for identity {identity!r}"
            raise errors.VerificationFailedError(message, message)

        try:
            public_key = _load_public_key(key_blob)
            _verify_raw(
                public_key,
                raw_signature,
                _signed_data(namespace, hash_name, payload),
            )
        except exceptions.InvalidSignature as e:
            message = "Signature does not match the signed descriptor"
            raise errors.VerificationFailedError(message, message) from e
        except (ValueError, exceptions.UnsupportedAlgorithm) as e:
            raise errors.VerificationFailedError(
                f"Signature validation failed: {e}", str(e)
            ) from e

        logger.debug("Good signature for %s", identity)
