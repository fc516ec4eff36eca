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

"""Signing and verification by shelling out to `ssh-keygen`.

There are libraries for SSH signatures, but they don't work with every key
configuration (hardware keys, keys held by an agent), so we run `ssh-keygen`
and let it find the key the same way `ssh` would.

Signing runs `ssh-keygen -Y sign` with the payload on standard input and reads
the armored signature from standard output. Verification writes the signature
to a temporary file, scoped to the call, and runs `ssh-keygen -Y verify`
against an allowed signers file.
"""

import logging
import os
import pathlib
import subprocess
import tempfile
from typing import Any

from typing_extensions import override

from index_signing import annotations
from index_signing import errors
from index_signing._signing import signing


logger = logging.getLogger(__name__)


class Backend(signing.Backend):
    """Backend delegating to the `ssh-keygen` binary."""

    signature_type = "ssh"

    def __init__(
        self,
        *,
        executable: str | os.PathLike = "ssh-keygen",
        namespace: str = annotations.DEFAULT_SCHEME.namespace,
        timeout: float | None = None,
    ):
        """Initializes the backend.

        Args:
            executable: The `ssh-keygen` binary to run.
            namespace: The signing domain passed to `ssh-keygen -n`.
            timeout: Optional limit in seconds for each invocation.
        """
        self._executable = os.fspath(executable)
        self._namespace = namespace
        self._timeout = timeout

    def _run(
        self, args: list[str], payload: bytes
    ) -> subprocess.CompletedProcess:
        command = [self._executable, "-Y", *args, "-n", self._namespace]
        logger.debug("Running %s", command)
        return subprocess.run(
            command,
            input=payload,
            capture_output=True,
            check=False,
            timeout=self._timeout,
        )

    @override
    def sign(
        self, payload: bytes, identity: str, key_ref: signing.KeyRef
    ) -> bytes:
        key_file = signing.check_key_ref(key_ref)
        try:
            result = self._run(["sign", "-f", key_file], payload)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise errors.SigningUnavailableError(
                f"Error calling {self._executable}: {e}"
            ) from e

        if result.returncode != 0:
            diagnostics = _diagnostics(result)
            raise errors.SigningRejectedError(
                f"{self._executable} failed to sign: {diagnostics}",
                diagnostics,
            )
        return result.stdout

    @override
    def verify(
        self, payload: bytes, signature: bytes, identity: str, authorized: Any
    ) -> None:
        allowed_signers = os.fspath(authorized)
        with tempfile.TemporaryDirectory() as tmp:
            signature_file = pathlib.Path(tmp) / "signature"
            signature_file.write_bytes(signature)
            args = [
                "verify",
                "-f",
                allowed_signers,
                "-I",
                identity,
                "-s",
                str(signature_file),
            ]
            try:
                result = self._run(args, payload)
            except (OSError, subprocess.TimeoutExpired) as e:
                raise errors.BackendUnavailableError(
                    f"Error calling {self._executable}: {e}"
                ) from e

        if result.returncode != 0:
            diagnostics = _diagnostics(result)
            raise errors.VerificationFailedError(
                f"Signature validation failed: {diagnostics}", diagnostics
            )
        logger.debug(
            "%s: %s", self._executable, result.stdout.decode(errors="replace")
        )


def _diagnostics(result: subprocess.CompletedProcess) -> str:
    output = b"\n".join(o.strip() for o in (result.stdout, result.stderr) if o)
    return output.decode("utf-8", errors="replace")
