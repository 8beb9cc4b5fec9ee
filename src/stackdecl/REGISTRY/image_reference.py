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
Image reference parsing for the ``image`` attribute of a service declaration.
Understands references like 'postgres', 'ipfs/go-ipfs:v0.10.0' or
'localhost:5000/team/app@sha256:...'.
"""

import re
from typing import Optional
from dataclasses import dataclass

# Lowercase path components separated by '.', '_', '__' or '-' runs.
_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    The tag is left as ``None`` when the reference does not carry one, so that
    unpinned images can be told apart from images explicitly tagged ``latest``.

    Examples:
        - postgres -> docker.io/library/postgres (no tag)
        - prom/prometheus:latest -> docker.io/prom/prometheus:latest
        - ipfs/go-ipfs:v0.10.0 -> docker.io/ipfs/go-ipfs:v0.10.0
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference as written in the manifest.

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        if not reference or not reference.strip():
            raise ValueError("Empty image reference")
        if reference != reference.strip() or " " in reference:
            raise ValueError(f"Image reference contains whitespace: {reference!r}")

        remainder = reference
        digest = None
        if "@" in remainder:
            remainder, digest = remainder.rsplit("@", 1)
            if not _DIGEST.match(digest):
                raise ValueError(f"Invalid digest in image reference: {reference!r}")

        tag = None
        last_slash = remainder.rfind("/")
        last_colon = remainder.rfind(":")
        # A colon before the last slash belongs to a registry port.
        if last_colon > last_slash:
            remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
            if not _TAG.match(tag):
                raise ValueError(f"Invalid tag in image reference: {reference!r}")

        parts = remainder.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            path = parts[1:]
        else:
            registry = cls.DEFAULT_REGISTRY
            path = parts

        if not path or not all(_COMPONENT.match(component) for component in path):
            raise ValueError(f"Invalid repository in image reference: {reference!r}")

        if registry == cls.DEFAULT_REGISTRY and len(path) == 1:
            path = ["library"] + path

        return cls(registry=registry, repository="/".join(path), tag=tag, digest=digest)

    @property
    def effective_tag(self) -> str:
        """The tag the runtime will pull when none is given."""
        return self.tag or self.DEFAULT_TAG

    @property
    def is_pinned(self) -> bool:
        """True when the reference names an exact version or digest."""
        if self.digest:
            return True
        return self.tag is not None and self.tag != self.DEFAULT_TAG

    @property
    def full_name(self) -> str:
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        return f"{name}:{self.effective_tag}"

    @property
    def short_name(self) -> str:
        """Image name as a user would write it, without the default registry."""
        if self.registry != self.DEFAULT_REGISTRY:
            name = f"{self.registry}/{self.repository}"
        elif self.repository.startswith("library/"):
            name = self.repository[len("library/") :]
        else:
            name = self.repository
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name

    def __str__(self) -> str:
        return self.short_name
