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

"""Test fixtures to share between tests. Not part of the public API."""

import json

from cryptography.hazmat.primitives.asymmetric import ed25519
import pytest

from tests import test_support


@pytest.fixture
def sample_index():
    """An index with an amd64 and an arm64 descriptor."""
    return test_support.make_index()


@pytest.fixture
def fake_backend():
    return test_support.FakeBackend()


@pytest.fixture
def fake_authorized():
    """The signers authorized by `fake_backend`, with their keys."""
    return {test_support.ALICE: "alice-key", test_support.BOB: "bob-key"}


@pytest.fixture
def keys_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("keys")


@pytest.fixture
def alice_key(keys_dir):
    """Alice's Ed25519 private key file."""
    return test_support.write_ssh_key(
        keys_dir, "alice", ed25519.Ed25519PrivateKey.generate()
    )


@pytest.fixture
def bob_key(keys_dir):
    """Bob's Ed25519 private key file."""
    return test_support.write_ssh_key(
        keys_dir, "bob", ed25519.Ed25519PrivateKey.generate()
    )


@pytest.fixture
def allowed_signers(keys_dir, alice_key, bob_key):
    """An allowed signers file authorizing both Alice and Bob."""
    lines = []
    for identity, key in (
        (test_support.ALICE, alice_key),
        (test_support.BOB, bob_key),
    ):
        public_key = key.with_suffix(".pub").read_text().strip()
        lines.append(f"{identity} {public_key}")
    path = keys_dir / "allowed_signers"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def index_file(tmp_path_factory, sample_index):
    """The sample index, stored as a standalone JSON file."""
    path = tmp_path_factory.mktemp("index") / "index.json"
    path.write_text(json.dumps(sample_index.to_dict()))
    return path


@pytest.fixture
def layout_dir(tmp_path_factory, sample_index):
    """The sample index, stored in an OCI image layout directory."""
    path = tmp_path_factory.mktemp("layout")
    (path / "oci-layout").write_text('{"imageLayoutVersion": "1.0.0"}')
    (path / "index.json").write_text(json.dumps(sample_index.to_dict()))
    return path
