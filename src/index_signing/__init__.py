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

"""Signing and verification of multi-platform container image indexes.

An image index lists one descriptor per platform. This package signs each
descriptor separately and stores the signature in the descriptor's own
annotations, so that the index stays a valid image index and registries that
know nothing about signatures keep serving it.

The API is split into a few components:

- `index_signing.descriptor`: the data model for indexes, descriptors and
  platforms.
- `index_signing.signing`: signs every descriptor of an index, based on a
  signing configuration that selects the backend.
- `index_signing.verifying`: checks the signatures, and compares each
  descriptor against the descriptor that was signed, so that a signature
  moved onto other content is rejected.
- `index_signing.layout`: reads and writes indexes on disk.
- `index_signing.errors`: the exceptions raised by all of the above.

Signing with `ssh-keygen`:

```python
index_signing.signing.Config().use_ssh_keygen_signer(
    private_key="id_ed25519", identity="alice@example.com"
).sign_file("image-layout")
```

Verifying the descriptor of the host platform, against an OpenSSH allowed
signers file:

```python
index_signing.verifying.Config().use_ssh_keygen_verifier(
    allowed_signers="allowed_signers"
).set_platform("host").verify_file("image-layout")
```

Signatures can also be produced and checked in-process, with
`use_ssh_key_signer` and `use_ssh_key_verifier`. Both methods produce the same
signatures.
"""

from index_signing import descriptor
from index_signing import errors
from index_signing import layout
from index_signing import signing
from index_signing import verifying


__version__ = "0.2.0"


__all__ = ["descriptor", "errors", "layout", "signing", "verifying"]
