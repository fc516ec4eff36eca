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

"""Tests for in-process SSH signatures."""

import shutil
import subprocess

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.asymmetric import rsa
import pytest

from index_signing import errors
from index_signing._signing import allowed_signers as allowed_signers_lib
from index_signing._signing import sign_ssh_key
from tests import test_support


_PAYLOAD = b'{"digest":"sha256:aaaa","mediaType":"x","size":1}'


def _generate(kind):
    match kind:
        case "ed25519":
            return ed25519.Ed25519PrivateKey.generate()
        case "p256":
            return ec.generate_private_key(ec.SECP256R1())
        case "p384":
            return ec.generate_private_key(ec.SECP384R1())
        case "p521":
            return ec.generate_private_key(ec.SECP521R1())
        case "rsa":
            return rsa.generate_private_key(
                public_exponent=65537, key_size=2048
            )


def _allowed(identity, key_file, options=""):
    public_key = key_file.with_suffix(".pub").read_text().strip()
    fields = [identity, public_key]
    if options:
        fields.insert(1, options)
    return allowed_signers_lib.AllowedSigners.parse(" ".join(fields))


class TestRoundTrip:
    @pytest.mark.parametrize("kind", ["ed25519", "p256", "p384", "p521", "rsa"])
    def test_sign_verify(self, keys_dir, kind):
        key_file = test_support.write_ssh_key(keys_dir, kind, _generate(kind))
        backend = sign_ssh_key.Backend()

        signature = backend.sign(_PAYLOAD, test_support.ALICE, key_file)

        assert signature.startswith(b"-----BEGIN SSH SIGNATURE-----\n")
        backend.verify(
            _PAYLOAD,
            signature,
            test_support.ALICE,
            _allowed(test_support.ALICE, key_file),
        )

    def test_sha256(self, alice_key, allowed_signers):
        backend = sign_ssh_key.Backend(hash_algorithm="sha256")
        signature = backend.sign(_PAYLOAD, test_support.ALICE, alice_key)
        backend.verify(_PAYLOAD, signature, test_support.ALICE, allowed_signers)

    def test_unknown_hash(self):
        with pytest.raises(ValueError, match="hash algorithm"):
            sign_ssh_key.Backend(hash_algorithm="md5")

    def test_password(self, keys_dir):
        key_file = keys_dir / "protected"
        private_key = ed25519.Ed25519PrivateKey.generate()
        key_file.write_bytes(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.OpenSSH,
                encryption_algorithm=serialization.BestAvailableEncryption(
                    b"secret"
                ),
            )
        )

        with pytest.raises(errors.SigningUnavailableError):
            sign_ssh_key.Backend().sign(_PAYLOAD, "alice", key_file)
        signature = sign_ssh_key.Backend(password=b"secret").sign(
            _PAYLOAD, "alice", key_file
        )
        assert signature


class TestSignErrors:
    def test_missing_key(self, keys_dir):
        with pytest.raises(errors.SigningUnavailableError, match="read"):
            sign_ssh_key.Backend().sign(_PAYLOAD, "alice", keys_dir / "nope")

    def test_empty_key(self):
        with pytest.raises(errors.SigningUnavailableError, match="key file"):
            sign_ssh_key.Backend().sign(_PAYLOAD, "alice", "")

    def test_not_a_key(self, keys_dir):
        key_file = keys_dir / "garbage"
        key_file.write_text("not a key")
        with pytest.raises(errors.SigningUnavailableError, match="load"):
            sign_ssh_key.Backend().sign(_PAYLOAD, "alice", key_file)


class TestVerifyErrors:
    @pytest.fixture
    def signature(self, alice_key):
        return sign_ssh_key.Backend().sign(
            _PAYLOAD, test_support.ALICE, alice_key
        )

    def test_tampered_payload(self, signature, allowed_signers):
        with pytest.raises(errors.VerificationFailedError, match="not match"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD + b" ", signature, test_support.ALICE, allowed_signers
            )

    def test_wrong_identity(self, signature, allowed_signers):
        with pytest.raises(errors.VerificationFailedError, match="allowed"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, signature, test_support.BOB, allowed_signers
            )

    def test_unknown_identity(self, signature, allowed_signers):
        with pytest.raises(errors.VerificationFailedError, match="allowed"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, signature, "mallory@example.com", allowed_signers
            )

    def test_other_namespace(self, signature, allowed_signers):
        backend = sign_ssh_key.Backend(namespace="file")
        with pytest.raises(errors.VerificationFailedError, match="namespace"):
            backend.verify(
                _PAYLOAD, signature, test_support.ALICE, allowed_signers
            )

    def test_namespace_restricted_signer(self, signature, alice_key):
        allowed = _allowed(
            test_support.ALICE, alice_key, options='namespaces="git,file"'
        )
        with pytest.raises(errors.VerificationFailedError, match="allowed"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, signature, test_support.ALICE, allowed
            )

    def test_not_armored(self, allowed_signers):
        with pytest.raises(errors.VerificationFailedError, match="armor"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, b"signature", test_support.ALICE, allowed_signers
            )

    def test_truncated(self, signature, allowed_signers):
        lines = signature.splitlines()
        truncated = b"\n".join([lines[0], lines[1][:20], lines[-1]])
        with pytest.raises(errors.VerificationFailedError):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, truncated, test_support.ALICE, allowed_signers
            )

    def test_missing_allowed_signers(self, signature, keys_dir):
        with pytest.raises(errors.BackendUnavailableError):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, signature, test_support.ALICE, keys_dir / "nope"
            )

    def test_invalid_allowed_signers(self, signature, keys_dir):
        path = keys_dir / "invalid"
        path.write_text("alice@example.com\n")
        with pytest.raises(errors.BackendUnavailableError, match="line 1"):
            sign_ssh_key.Backend().verify(
                _PAYLOAD, signature, test_support.ALICE, path
            )


@pytest.mark.skipif(
    shutil.which("ssh-keygen") is None, reason="ssh-keygen is not installed"
)
class TestInterop:
    def test_ssh_keygen_verifies(self, tmp_path, alice_key, allowed_signers):
        signature = sign_ssh_key.Backend().sign(
            _PAYLOAD, test_support.ALICE, alice_key
        )
        signature_file = tmp_path / "payload.sig"
        signature_file.write_bytes(signature)
        subprocess.run(
            [
                "ssh-keygen",
                "-Y",
                "verify",
                "-f",
                str(allowed_signers),
                "-I",
                test_support.ALICE,
                "-n",
                "org.notaryproject.sign",
                "-s",
                str(signature_file),
            ],
            input=_PAYLOAD,
            check=True,
        )

    def test_verifies_ssh_keygen(self, alice_key, allowed_signers):
        result = subprocess.run(
            [
                "ssh-keygen",
                "-Y",
                "sign",
                "-f",
                str(alice_key),
                "-n",
                "org.notaryproject.sign",
            ],
            input=_PAYLOAD,
            capture_output=True,
            check=True,
        )
        sign_ssh_key.Backend().verify(
            _PAYLOAD, result.stdout, test_support.ALICE, allowed_signers
        )
