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
Structural checks for a deployment manifest: unique names, port collisions,
volume host paths, image pinning and dependencies.
"""
import os
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..MODELS.deployment_manifest import DeploymentManifest
from ..MODELS.service_declaration import PortBinding, VolumeBinding


class Severity(str, Enum):
    """Severity of a finding."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class Violation:
    """A single finding against a manifest."""

    rule: str
    severity: Severity
    message: str
    service: Optional[str] = None

    def __str__(self) -> str:
        where = f"[{self.service}] " if self.service else ""
        return f"{self.severity.value}: {where}{self.message} ({self.rule})"


@dataclass
class ValidationReport:
    """All findings for one manifest."""

    violations: List[Violation] = field(default_factory=list)

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == Severity.WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors

    def by_rule(self, rule: str) -> List[Violation]:
        return [v for v in self.violations if v.rule == rule]


# Host-side key a port occupies: (host ip, port, protocol)
PortKey = Tuple[str, int, str]


def _port_keys(binding: PortBinding) -> List[PortKey]:
    """One key per host port; a published range occupies all of its ports."""
    return [(binding.host_ip or "0.0.0.0", port, binding.protocol.value) for port in binding.host_ports]


def _collides(a: PortKey, b: PortKey) -> bool:
    """Two host ports collide when they share port and protocol and either binds all interfaces."""
    if a[1] != b[1] or a[2] != b[2]:
        return False
    return a[0] == b[0] or "0.0.0.0" in (a[0], b[0])


class TopologyValidator:
    """
    Checks the structural properties of a deployment manifest.

    Disabled declarations never contribute errors, so the errors reported for
    a manifest do not change when commented-out services are added or removed.
    """

    def __init__(self, base_dir: str = ".", data_dir: Optional[str] = None, strict_images: bool = False):
        """
        Initializes the validator.

        :param base_dir: Repository root that host paths are relative to.
        :param data_dir: When set, persistent-state directories must live under it.
        :param strict_images: Report unpinned images as errors instead of warnings.
        """
        self.base_dir = os.path.abspath(base_dir)
        self.data_dir = os.path.abspath(os.path.join(self.base_dir, data_dir)) if data_dir else None
        self.strict_images = strict_images

    def validate(self, manifest: DeploymentManifest) -> ValidationReport:
        """
        Runs every check against the manifest.

        :param manifest: The parsed manifest.
        :return: The findings, in rule order.
        """
        report = ValidationReport()
        report.violations.extend(self.check_unique_names(manifest))
        report.violations.extend(self.check_port_collisions(manifest))
        report.violations.extend(self.check_volume_paths(manifest))
        report.violations.extend(self.check_disabled_isolation(manifest))
        report.violations.extend(self.check_images(manifest))
        report.violations.extend(self.check_dependencies(manifest))
        return report

    def check_unique_names(self, manifest: DeploymentManifest) -> List[Violation]:
        violations = []
        active = [svc.name for svc in manifest.services.values()]
        for key, svc in manifest.services.items():
            if key != svc.name:
                violations.append(Violation(
                    "unique-name", Severity.ERROR,
                    f"declared under key {key!r} but named {svc.name!r}", svc.name))
        for name, count in Counter(active).items():
            if count > 1:
                violations.append(Violation(
                    "unique-name", Severity.ERROR, f"name is used by {count} active services", name))
        for name in manifest.disabled:
            if name in active:
                violations.append(Violation(
                    "unique-name", Severity.WARNING,
                    "a disabled declaration shares this name with an active one", name))
        return violations

    def check_port_collisions(self, manifest: DeploymentManifest) -> List[Violation]:
        """
        Every host port may be bound at most once across active services.
        """
        violations = []
        seen: List[Tuple[PortKey, str]] = []
        for svc in manifest.services.values():
            for binding in svc.ports:
                keys = _port_keys(binding)
                clash = next(((key, owner) for key in keys for other_key, owner in seen
                              if _collides(key, other_key)), None)
                if clash:
                    (_, port, protocol), owner = clash
                    violations.append(Violation(
                        "port-collision", Severity.ERROR,
                        f"host port {port}/{protocol} is already bound by {owner!r}", svc.name))
                seen.extend((key, svc.name) for key in keys)
        return violations

    def check_volume_paths(self, manifest: DeploymentManifest) -> List[Violation]:
        """
        Bind volume sources must be relative paths inside the repository
        (and inside the data directory for state directories when one is set).
        """
        violations = []
        for svc in manifest.services.values():
            for volume in svc.bind_volumes:
                problem = self._volume_problem(volume)
                if problem:
                    violations.append(Violation("volume-path", Severity.ERROR, problem, svc.name))
        return violations

    def check_disabled_isolation(self, manifest: DeploymentManifest) -> List[Violation]:
        """
        Reports the host ports a disabled declaration would collide on if it
        were activated. These are warnings only.
        """
        violations = []
        active: List[Tuple[PortKey, str]] = [
            (key, svc.name)
            for svc in manifest.services.values() for b in svc.ports for key in _port_keys(b)
        ]
        for svc in manifest.disabled.values():
            for binding in svc.ports:
                keys = _port_keys(binding)
                owners = sorted({owner for key in keys for other, owner in active if _collides(key, other)})
                if owners:
                    violations.append(Violation(
                        "disabled-isolation", Severity.WARNING,
                        f"host port {binding.published}/{binding.protocol.value} would collide with "
                        f"{', '.join(owners)} if activated", svc.name))
        return violations

    def check_images(self, manifest: DeploymentManifest) -> List[Violation]:
        violations = []
        pin_severity = Severity.ERROR if self.strict_images else Severity.WARNING
        for svc in manifest.services.values():
            try:
                reference = svc.image_reference
            except ValueError as e:
                violations.append(Violation("image-reference", Severity.ERROR, str(e), svc.name))
                continue
            if not reference.is_pinned:
                violations.append(Violation(
                    "image-pinned", pin_severity,
                    f"image {svc.image!r} is not pinned to a version", svc.name))
        return violations

    def check_dependencies(self, manifest: DeploymentManifest) -> List[Violation]:
        violations = []
        for svc in manifest.all_declarations():
            severity = Severity.ERROR if svc.enabled else Severity.WARNING
            for dep in svc.depends_on:
                if dep not in manifest.services:
                    violations.append(Violation(
                        "depends-on", severity, f"depends on {dep!r}, which is not an active service", svc.name))
        return violations

    def _volume_problem(self, volume: VolumeBinding) -> Optional[str]:
        source = volume.source
        if os.path.isabs(source) or source.startswith('~'):
            return f"host path {source!r} must be relative to the repository"

        resolved = os.path.abspath(os.path.join(self.base_dir, source))
        if not _is_within(resolved, self.base_dir):
            return f"host path {source!r} escapes the repository"

        if self.data_dir and self._is_state_directory(resolved) and not _is_within(resolved, self.data_dir):
            return f"host path {source!r} is not under the data directory"
        return None

    def _is_state_directory(self, path: str) -> bool:
        """Directories hold persistent state; mounted files and file-like names do not."""
        if os.path.isfile(path):
            return False
        return not os.path.splitext(path)[1]


def _is_within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        return False
