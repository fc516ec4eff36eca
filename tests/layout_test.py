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

"""Tests for reading and writing indexes on disk."""

import json

import pytest

from index_signing import layout
from tests import test_support


class TestReadIndex:
    def test_file(self, index_file, sample_index):
        assert layout.read_index(index_file) == sample_index

    def test_directory(self, layout_dir, sample_index):
        assert layout.read_index(layout_dir) == sample_index

    def test_missing(self, tmp_path):
        with pytest.raises(OSError):
            layout.read_index(tmp_path / "index.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "index.json"
        path.write_text("{")
        with pytest.raises(ValueError, match="Invalid index"):
            layout.read_index(path)

    def test_not_an_index(self, tmp_path):
        path = tmp_path / "index.json"
        path.write_text(json.dumps({"manifests": "none"}))
        with pytest.raises(ValueError, match="manifests"):
            layout.read_index(path)


class TestWriteIndex:
    def test_file(self, tmp_path, sample_index):
        path = tmp_path / "signed.json"
        layout.write_index(path, sample_index)
        assert layout.read_index(path) == sample_index
        assert [p.name for p in tmp_path.iterdir()] == ["signed.json"]

    def test_creates_layout_marker(self, tmp_path, sample_index):
        layout.write_index(tmp_path, sample_index)
        marker = json.loads((tmp_path / "oci-layout").read_text())
        assert marker == {"imageLayoutVersion": "1.0.0"}
        assert layout.read_index(tmp_path) == sample_index

    def test_keeps_layout_marker(self, layout_dir, sample_index):
        marker = layout_dir / "oci-layout"
        marker.write_text('{"imageLayoutVersion": "1.1.0"}')
        layout.write_index(layout_dir, sample_index)
        assert "1.1.0" in marker.read_text()

    def test_replaces_existing(self, index_file):
        index = test_support.make_index().with_manifests([])
        layout.write_index(index_file, index)
        assert layout.read_index(index_file).manifests == ()

    def test_keeps_unknown_fields(self, tmp_path, sample_index):
        path = tmp_path / "index.json"
        data = sample_index.to_dict()
        data["subject"] = {"digest": test_support.OTHER_DIGEST}
        path.write_text(json.dumps(data))

        layout.write_index(path, layout.read_index(path))

        assert json.loads(path.read_text()) == data

    def test_failed_write_leaves_no_temporary(
        self, tmp_path, sample_index, monkeypatch
    ):
        path = tmp_path / "index.json"

        def fail(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(layout.os, "replace", fail)
        with pytest.raises(OSError, match="disk full"):
            layout.write_index(path, sample_index)
        assert not list(tmp_path.iterdir())
