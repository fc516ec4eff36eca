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

"""Parser for OpenSSH allowed signers files.

This is the format consumed by `ssh-keygen -Y verify -f`, described in the
ALLOWED SIGNERS section of `ssh-keygen(1)`. Each line lists the principals a
key is allowed to sign for, optional options, and the public key:

```
alice@example.com,alice ssh-ed25519 AAAAC3Nza... alice's laptop
*@example.com namespaces="org.notaryproject.sign" ecdsa-sha2-nistp256 AAAA...
```

Certificate authorities are not supported and their lines are skipped. The
`valid-after` and `valid-before` options are parsed but not enforced.
"""

import base64
import binascii
from collections.abc import Iterable, Iterator
import dataclasses
import fnmatch
import logging
import os
import pathlib
import re
import sys


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)


def _matches(principal: str, patterns: Iterable[str]) -> bool:
    """Matches `principal` against an OpenSSH pattern list."""
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if fnmatch.fnmatchcase(principal, pattern[1:]):
                return False
        elif fnmatch.fnmatchcase(principal, pattern):
            matched = True
    return matched


@dataclasses.dataclass(frozen=True)
class Entry:
    """One line of an allowed signers file.

    Attributes:
        principals: Principal patterns the key may sign for.
        key_type: The SSH key type, e.g. `ssh-ed25519`.
        key_blob: The public key in SSH wire format.
        namespaces: Namespace patterns the key may sign in. Empty means any.
        cert_authority: Whether the key is a certificate authority.
        comment: Trailing free form text.
    """

    principals: tuple[str, ...]
    key_type: str
    key_blob: bytes
    namespaces: tuple[str, ...] = ()
    cert_authority: bool = False
    comment: str = ""

    def allows(self, identity: str, namespace: str) -> bool:
        """Whether this entry authorizes `identity` in `namespace`."""
        if not _matches(identity, self.principals):
            return False
        return not self.namespaces or _matches(namespace, self.namespaces)


class AllowedSigners:
    """The set of keys authorized to sign, with their principals."""

    def __init__(self, entries: Iterable[Entry]):
        self._entries = list(entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def is_allowed(
        self, identity: str, namespace: str, key_blob: bytes
    ) -> bool:
        """Whether `key_blob` may sign in `namespace` as `identity`."""
        return any(
            not entry.cert_authority
            and entry.key_blob == key_blob
            and entry.allows(identity, namespace)
            for entry in self._entries
        )

    @classmethod
    def parse(cls, text: str) -> Self:
        """Parses the content of an allowed signers file.

        Raises:
            ValueError: A line is malformed.
        """
        entries = []
        for number, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                entry = _parse_line(line)
            except ValueError as e:
                raise ValueError(f"line {number}: {e}") from e
            if entry.cert_authority:
                logger.warning(
                    "Skipping certificate authority on line %d: "
                    "certificates are not supported",
                    number,
                )
            entries.append(entry)
        return cls(entries)

    @classmethod
    def read(cls, path: str | os.PathLike) -> Self:
        """Reads and parses an allowed signers file."""
        return cls.parse(pathlib.Path(path).read_text(encoding="utf-8"))


_TOKEN_RE = re.compile(r'(?:[^\s"]|"[^"]*")+')
_OPTION_RE = re.compile(r'(?:[^,"]|"[^"]*")+')


def _unquote(value: str) -> str:
    return value.replace('"', "")


def _is_key_type(token: str) -> bool:
    return token.startswith(("ssh-", "ecdsa-", "sk-", "rsa-"))


def _parse_line(line: str) -> Entry:
    if line.count('"') % 2:
        raise ValueError("unbalanced quotes")
    tokens = _TOKEN_RE.findall(line)
    if len(tokens) < 3:
        raise ValueError("expected principals, key type and key")

    principals = tuple(p for p in _unquote(tokens[0]).split(",") if p)
    if not principals:
        raise ValueError("no principals")

    namespaces: tuple[str, ...] = ()
    cert_authority = False
    position = 1
    if not _is_key_type(tokens[position]):
        for option in _OPTION_RE.findall(tokens[position]):
            name, _, value = option.partition("=")
            value = _unquote(value)
            match name.lower():
                case "cert-authority":
                    cert_authority = True
                case "namespaces":
                    namespaces = tuple(n for n in value.split(",") if n)
                case "valid-after" | "valid-before":
                    pass
                case _:
                    raise ValueError(f"unknown option {name!r}")
        position += 1

    if len(tokens) < position + 2:
        raise ValueError("missing public key")
    key_type = tokens[position]
    if not _is_key_type(key_type):
        raise ValueError(f"unknown key type {key_type!r}")
    try:
        key_blob = base64.b64decode(tokens[position + 1], validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid public key encoding: {e}") from e

    return Entry(
        principals=principals,
        key_type=key_type,
        key_blob=key_blob,
        namespaces=namespaces,
        cert_authority=cert_authority,
        comment=" ".join(tokens[position + 2 :]),
    )
