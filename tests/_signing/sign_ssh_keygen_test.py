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

"""Tests for the `ssh-keygen` backend, with `subprocess.run` patched out."""

import pathlib
import subprocess

import pytest

from index_signing import errors
from index_signing._signing import sign_ssh_keygen


_NAMESPACE = "org.notaryproject.sign"


class _FakeRun:
    """Records calls to `subprocess.run` and returns a canned result."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", exception=None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.exception = exception
        self.calls = []
        self.signature_files = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if "-s" in command:
            signature_file = pathlib.Path(command[command.index("-s") + 1])
            assert signature_file.exists()
            self.signature_files.append(
                (signature_file, signature_file.read_bytes())
            )
        if self.exception is not None:
            raise self.exception
        return subprocess.CompletedProcess(
            command, self.returncode, self.stdout, self.stderr
        )


@pytest.fixture
def fake_run(monkeypatch):
    def install(**kwargs):
        fake = _FakeRun(**kwargs)
        monkeypatch.setattr(sign_ssh_keygen.subprocess, "run", fake)
        return fake

    return install


class TestSign:
    def test_arguments(self, fake_run):
        run = fake_run(stdout=b"SIGNATURE")
        backend = sign_ssh_keygen.Backend(timeout=5)

        signature = backend.sign(b"payload", "alice", "/keys/id_ed25519")

        assert signature == b"SIGNATURE"
        [(command, kwargs)] = run.calls
        assert command == [
            "ssh-keygen",
            "-Y",
            "sign",
            "-f",
            "/keys/id_ed25519",
            "-n",
            _NAMESPACE,
        ]
        assert kwargs["input"] == b"payload"
        assert kwargs["timeout"] == 5

    def test_custom_executable(self, fake_run):
        run = fake_run(stdout=b"SIGNATURE")
        backend = sign_ssh_keygen.Backend(executable="/opt/bin/ssh-keygen")
        backend.sign(b"payload", "alice", pathlib.Path("key"))
        assert run.calls[0][0][0] == "/opt/bin/ssh-keygen"

    def test_empty_key(self, fake_run):
        run = fake_run()
        with pytest.raises(errors.SigningUnavailableError, match="key file"):
            sign_ssh_keygen.Backend().sign(b"payload", "alice", "")
        assert not run.calls

    def test_missing_executable(self, fake_run):
        fake_run(exception=FileNotFoundError("ssh-keygen"))
        with pytest.raises(errors.SigningUnavailableError):
            sign_ssh_keygen.Backend().sign(b"payload", "alice", "key")

    def test_timeout(self, fake_run):
        fake_run(exception=subprocess.TimeoutExpired("ssh-keygen", 1))
        with pytest.raises(errors.SigningUnavailableError):
            sign_ssh_keygen.Backend().sign(b"payload", "alice", "key")

    def test_rejected(self, fake_run):
        fake_run(returncode=255, stderr=b"incorrect passphrase\n")
        with pytest.raises(errors.SigningRejectedError) as e:
            sign_ssh_keygen.Backend().sign(b"payload", "alice", "key")
        assert e.value.diagnostics == "incorrect passphrase"


class TestVerify:
    def test_arguments(self, fake_run):
        run = fake_run(stdout=b'Good "org.notaryproject.sign" signature\n')
        backend = sign_ssh_keygen.Backend()

        backend.verify(b"payload", b"SIGNATURE", "alice", "allowed_signers")

        [(command, kwargs)] = run.calls
        signature_file = command[command.index("-s") + 1]
        assert command == [
            "ssh-keygen",
            "-Y",
            "verify",
            "-f",
            "allowed_signers",
            "-I",
            "alice",
            "-s",
            signature_file,
            "-n",
            _NAMESPACE,
        ]
        assert kwargs["input"] == b"payload"
        assert run.signature_files[0][1] == b"SIGNATURE"

    def test_signature_file_removed(self, fake_run):
        run = fake_run()
        sign_ssh_keygen.Backend().verify(
            b"payload", b"SIGNATURE", "alice", "allowed_signers"
        )
        signature_file, _ = run.signature_files[0]
        assert not signature_file.exists()
        assert not signature_file.parent.exists()

    def test_signature_file_removed_on_failure(self, fake_run):
        run = fake_run(returncode=255, stderr=b"Could not verify signature.")
        with pytest.raises(errors.VerificationFailedError) as e:
            sign_ssh_keygen.Backend().verify(
                b"payload", b"SIGNATURE", "alice", "allowed_signers"
            )
        assert "Could not verify signature." in e.value.diagnostics
        assert not run.signature_files[0][0].exists()

    def test_signature_file_removed_on_error(self, fake_run):
        run = fake_run(exception=FileNotFoundError("ssh-keygen"))
        with pytest.raises(errors.BackendUnavailableError):
            sign_ssh_keygen.Backend().verify(
                b"payload", b"SIGNATURE", "alice", "allowed_signers"
            )
        assert not run.signature_files[0][0].exists()

    def test_timeout(self, fake_run):
        fake_run(exception=subprocess.TimeoutExpired("ssh-keygen", 1))
        with pytest.raises(errors.BackendUnavailableError):
            sign_ssh_keygen.Backend(timeout=1).verify(
                b"payload", b"SIGNATURE", "alice", "allowed_signers"
            )
