"""
Host provisioning for a deployment: the directories, files and ports a
deployer has to provide before the container runtime can start the services.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

from ..MODELS.deployment_manifest import DeploymentManifest
from ..UTILS.port_finder import is_port_free, port_owner


@dataclass
class HostPath:
    """A host path one service mounts."""

    service: str
    source: str
    path: str
    target: str
    read_only: bool = False


@dataclass
class HostPort:
    """A host port one service binds."""

    service: str
    host_port: int
    container_port: int
    protocol: str = "tcp"
    host_ip: Optional[str] = None
    # Set when the runtime picks one port from host_port..host_port_end
    host_port_end: Optional[int] = None

    @property
    def label(self) -> str:
        ports = f"{self.host_port}-{self.host_port_end}" if self.host_port_end else str(self.host_port)
        return f"{ports}/{self.protocol}"


@dataclass
class PortStatus:
    """Availability of a planned host port."""

    port: HostPort
    free: bool
    owner_pid: Optional[int] = None
    owner_name: Optional[str] = None


@dataclass
class ProvisionPlan:
    """Everything the active services need from the host."""

    directories: List[HostPath] = field(default_factory=list)
    files: List[HostPath] = field(default_factory=list)
    ports: List[HostPort] = field(default_factory=list)


class ProvisionManager:
    """
    Works out and prepares the host side of a manifest's volume and port bindings.
    Only active services are considered.
    """
    def __init__(self, manifest: DeploymentManifest, base_dir: str = "."):
        """
        Initializes the provision manager.

        :param manifest: The parsed manifest.
        :param base_dir: The directory relative host paths are resolved against.
        """
        self.manifest = manifest
        self.base_dir = os.path.abspath(base_dir)

    def plan(self) -> ProvisionPlan:
        """
        Lists the host directories, files and ports the active services use.
        Bind sources that exist as files, or whose names carry an extension,
        are treated as files; everything else as a directory.
        """
        plan = ProvisionPlan()
        for svc in self.manifest.services.values():
            for volume in svc.bind_volumes:
                host_path = HostPath(
                    service=svc.name,
                    source=volume.source,
                    path=self.resolve_source(volume.source),
                    target=volume.target,
                    read_only=volume.read_only,
                )
                if self._is_file(host_path.path):
                    plan.files.append(host_path)
                else:
                    plan.directories.append(host_path)
            for binding in svc.ports:
                if binding.host_port is None:
                    continue
                plan.ports.append(HostPort(
                    service=svc.name,
                    host_port=binding.host_port,
                    container_port=binding.container_port,
                    protocol=binding.protocol.value,
                    host_ip=binding.host_ip,
                    host_port_end=binding.host_port_end,
                ))
        return plan

    def missing(self) -> List[HostPath]:
        """
        Planned directories and files that do not exist yet.
        """
        plan = self.plan()
        return [p for p in plan.directories + plan.files if not os.path.exists(p.path)]

    def apply(self) -> List[HostPath]:
        """
        Creates missing host directories. Files are never created.

        :return: Planned files that are still missing.
        """
        plan = self.plan()
        for directory in plan.directories:
            if not os.path.exists(directory.path):
                print(f"Creating directory: {directory.path}")
                os.makedirs(directory.path, exist_ok=True)
        return [f for f in plan.files if not os.path.exists(f.path)]

    def check_ports(self) -> List[PortStatus]:
        """
        Checks whether each planned host port is free on this machine. A
        published range is free while any one of its ports is.
        """
        statuses = []
        for port in self.plan().ports:
            candidates = range(port.host_port, (port.host_port_end or port.host_port) + 1)
            free = any(is_port_free(p, port.protocol, port.host_ip or "") for p in candidates)
            status = PortStatus(port=port, free=free)
            if not free:
                owner = port_owner(port.host_port, port.protocol)
                if owner:
                    status.owner_pid, status.owner_name = owner
            statuses.append(status)
        return statuses

    def resolve_source(self, source: str) -> str:
        """
        Resolves the host path of a bind volume.

        :param source: The host path as written in the manifest.
        :return: The absolute path.
        """
        return os.path.abspath(os.path.join(self.base_dir, os.path.expanduser(source)))

    def _is_file(self, path: str) -> bool:
        if os.path.isdir(path):
            return False
        return os.path.isfile(path) or bool(os.path.splitext(path)[1])
