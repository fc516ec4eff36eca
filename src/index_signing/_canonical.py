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

"""Canonical byte encoding of descriptors.

The signature covers these bytes, and a copy of them is stored next to the
signature, so the encoding must only depend on the descriptor value. We use
compact JSON with the keys of every object sorted, which orders both the
descriptor fields and the annotations. Empty optional fields are omitted.

Decoding ignores fields it does not know about. This allows later versions to
sign additional fields (e.g., an expiry annotation) without breaking older
verifiers.
"""

import json

from index_signing import descriptor as descriptor_lib
from index_signing import errors


def encode(descriptor: descriptor_lib.Descriptor) -> bytes:
    """Returns the canonical encoding of `descriptor`."""
    return json.dumps(
        descriptor.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def decode(payload: bytes) -> descriptor_lib.Descriptor:
    """Decodes a descriptor from its canonical encoding.

    Args:
        payload: The bytes produced by `encode`, or by an older signer that
          serialized descriptors as plain JSON.

    Returns:
        The decoded descriptor.

    Raises:
        MalformedPayloadError: The payload is not a valid descriptor.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise errors.MalformedPayloadError(
            f"Signed descriptor is not valid JSON: {e}"
        ) from e

    try:
        return descriptor_lib.Descriptor.from_dict(data)
    except ValueError as e:
        raise errors.MalformedPayloadError(
            f"Signed descriptor is malformed: {e}"
        ) from e
