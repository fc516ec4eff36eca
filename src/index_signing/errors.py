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

"""Typed errors raised while signing and verifying index descriptors.

Every failure of the signing or verification protocol is reported with one of
the exceptions below, so that callers can tell an operational problem (the
signing tool is missing) from an authenticated rejection (the signature does
not match) or from tampering (a descriptor field changed after signing).

Mistakes made by the caller (an unparsable platform string, an empty identity,
a `Config` with no backend) are reported as `ValueError`.
"""

from typing import Any


class Error(Exception):
    """Base class for all errors of the `index_signing` package."""


class MalformedPayloadError(Error, ValueError):
    """A signed payload or an encoded annotation could not be decoded."""


class SigningUnavailableError(Error):
    """The signing backend could not run (missing tool, key, etc.)."""


class SigningRejectedError(Error):
    """The signing backend ran but declined to produce a signature."""

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class BackendUnavailableError(Error):
    """The verification backend could not run."""


class VerificationFailedError(Error):
    """The backend authenticated the signature and rejected it.

    Attributes:
        diagnostics: Any diagnostic output the backend produced.
    """

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class SignatureNotFoundError(Error):
    """No signature is attached to a descriptor.

    Attributes:
        digest: The digest of the descriptor, if known.
    """

    def __init__(self, message: str, digest: str | None = None):
        super().__init__(message)
        self.digest = digest


class IncompleteSignatureError(SignatureNotFoundError):
    """Some, but not all, of the signature annotations are present.

    Attributes:
        missing: The annotation keys that are absent.
    """

    def __init__(
        self,
        message: str,
        missing: list[str],
        digest: str | None = None,
    ):
        super().__init__(message, digest)
        self.missing = missing


class UnsupportedVersionError(Error):
    """The signature was produced by an unknown version of the scheme."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Signature version mismatch, expecting {expected!r}, "
            f"got {actual!r}"
        )
        self.expected = expected
        self.actual = actual


class UnsupportedTypeError(Error):
    """The signature type tag is not one the verifier understands."""

    def __init__(self, expected: list[str], actual: str):
        super().__init__(
            f"Unsupported signature type {actual!r}, "
            f"expecting one of {expected}"
        )
        self.expected = expected
        self.actual = actual


class DescriptorMismatchError(Error):
    """The live descriptor differs from the one covered by the signature.

    Attributes:
        field: The name of the field that differs.
        signed: The value recorded in the signed descriptor.
        live: The value found in the descriptor being verified.
    """

    def __init__(self, field: str, signed: Any, live: Any):
        super().__init__(
            f"Mismatch in {field} in descriptor: "
            f"signed {signed!r}, verify {live!r}"
        )
        self.field = field
        self.signed = signed
        self.live = live


class PlatformNotFoundError(Error):
    """The requested platform is not present in the index."""

    def __init__(self, platform: str):
        super().__init__(f"No descriptor for platform {platform} in index")
        self.platform = platform


class AlreadySignedError(Error):
    """The descriptor is signed and re-signing has been disabled."""

    def __init__(self, digest: str):
        super().__init__(f"Descriptor {digest} is already signed")
        self.digest = digest
