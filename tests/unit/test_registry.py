# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for the registry module.
"""
import pytest
from stackdecl.REGISTRY.image_reference import ImageReference

DIGEST = "sha256:" + "a" * 64


class TestImageReference:
    """Tests for ImageReference parsing."""

    def test_parse_simple_name(self):
        """An official image without a tag stays unpinned."""
        ref = ImageReference.parse("postgres")
        assert ref.registry == "docker.io"
        assert ref.repository == "library/postgres"
        assert ref.tag is None
        assert ref.effective_tag == "latest"
        assert not ref.is_pinned

    def test_parse_with_tag(self):
        """Test parsing image with tag."""
        ref = ImageReference.parse("ipfs/go-ipfs:v0.10.0")
        assert ref.registry == "docker.io"
        assert ref.repository == "ipfs/go-ipfs"
        assert ref.tag == "v0.10.0"
        assert ref.is_pinned

    def test_latest_is_not_pinned(self):
        ref = ImageReference.parse("grafana/grafana-enterprise:latest")
        assert ref.tag == "latest"
        assert not ref.is_pinned

    def test_parse_full_reference(self):
        """Test parsing full registry reference."""
        ref = ImageReference.parse("gcr.io/project/image:1.0")
        assert ref.registry == "gcr.io"
        assert ref.repository == "project/image"
        assert ref.tag == "1.0"

    def test_registry_with_port(self):
        """A colon before the last slash is a registry port, not a tag."""
        ref = ImageReference.parse("localhost:5000/team/app")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "team/app"
        assert ref.tag is None

    def test_digest(self):
        ref = ImageReference.parse(f"prom/prometheus@{DIGEST}")
        assert ref.digest == DIGEST
        assert ref.tag is None
        assert ref.is_pinned
        assert ref.full_name == f"docker.io/prom/prometheus@{DIGEST}"

    def test_names(self):
        ref = ImageReference.parse("postgres:16")
        assert ref.full_name == "docker.io/library/postgres:16"
        assert ref.short_name == "postgres:16"
        assert str(ImageReference.parse("prom/prometheus")) == "prom/prometheus"

    @pytest.mark.parametrize("reference", ["", "   ", "Postgres", "nginx:", "a b", "repo@sha256:xyz", "/nginx"])
    def test_invalid(self, reference):
        with pytest.raises(ValueError):
            ImageReference.parse(reference)
