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

"""Reading and writing image indexes on disk.

An index is either a standalone JSON file or the `index.json` of an OCI image
layout directory. Writes replace the file atomically, so a concurrent reader
sees either the old or the new index.
"""

import json
import logging
import os
import pathlib
import tempfile

from index_signing import descriptor as descriptor_lib


logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"
OCI_LAYOUT_FILE = "oci-layout"
OCI_LAYOUT_VERSION = "1.0.0"


def _index_file(path: str | os.PathLike) -> pathlib.Path:
    path = pathlib.Path(path)
    if path.is_dir():
        return path / INDEX_FILE
    return path


def read_index(path: str | os.PathLike) -> descriptor_lib.Index:
    """Reads an index from a JSON file or an OCI image layout directory.

    Raises:
        OSError: The index cannot be read.
        ValueError: The file is not a valid image index.
    """
    index_file = _index_file(path)
    logger.debug("Reading index from %s", index_file)
    with index_file.open("rb") as f:
        try:
            data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid index {index_file}: {e}") from e
    return descriptor_lib.Index.from_dict(data)


def _write_atomic(path: pathlib.Path, content: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        pathlib.Path(tmp).unlink(missing_ok=True)
        raise


def write_index(path: str | os.PathLike, index: descriptor_lib.Index) -> None:
    """Writes an index to a JSON file or an OCI image layout directory.

    When `path` is a directory, the index goes to its `index.json` and an
    `oci-layout` marker is created if there is none.
    """
    path = pathlib.Path(path)
    if path.is_dir():
        marker = path / OCI_LAYOUT_FILE
        if not marker.exists():
            layout = {"imageLayoutVersion": OCI_LAYOUT_VERSION}
            _write_atomic(marker, json.dumps(layout).encode("utf-8"))
    index_file = _index_file(path)

    content = json.dumps(index.to_dict(), indent=2) + "\n"
    _write_atomic(index_file, content.encode("utf-8"))
    logger.info("Wrote index to %s", index_file)
