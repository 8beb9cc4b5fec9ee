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
Models for service declarations, including port and volume bindings.
"""
import copy
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from ..REGISTRY.image_reference import ImageReference


class ManifestError(ValueError):
    """
    Raised when a deployment manifest cannot be understood.
    """


class Protocol(str, Enum):
    """
    Transport protocol of a port binding.
    """
    TCP = "tcp"
    UDP = "udp"


# Short syntax sources starting with these are host paths
_BIND_PREFIXES = ('.', '/', '~')


def _port_number(value: str, spec: Any) -> int:
    """
    Converts one side of a port binding to an int in the valid range.
    """
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ManifestError(f"Invalid port {value!r} in binding {spec!r}")
    if not 0 < port < 65536:
        raise ManifestError(f"Port {port} out of range in binding {spec!r}")
    return port


def _port_range(value: str, spec: Any) -> List[int]:
    """
    Expands '8000' or '8000-8002' into a list of port numbers.
    """
    if '-' in value:
        start, end = value.split('-', 1)
        first, last = _port_number(start, spec), _port_number(end, spec)
        if last < first:
            raise ManifestError(f"Descending port range in binding {spec!r}")
        return list(range(first, last + 1))
    return [_port_number(value, spec)]


class PortBinding(BaseModel):
    """
    A mapping from a host network port to a container port.
    """
    container_port: int
    host_port: Optional[int] = None
    # Last port of a published range the runtime picks one host port from
    host_port_end: Optional[int] = None
    protocol: Protocol = Protocol.TCP
    host_ip: Optional[str] = None

    @classmethod
    def parse(cls, spec: Any) -> List["PortBinding"]:
        """
        Parses a compose port entry into one or more bindings.

        Accepts the short syntax ('5432:5432', '127.0.0.1:80:80', '53/udp',
        '8000-8001:8000-8001', '8000-8010:80'), bare integers and the long mapping syntax.

        :param spec: The raw port entry.
        :return: The bindings described by the entry.
        :raises ManifestError: If the entry is malformed.
        """
        if isinstance(spec, bool):
            raise ManifestError(f"Invalid port binding {spec!r}")
        if isinstance(spec, int):
            return [cls(container_port=_port_number(spec, spec))]
        if isinstance(spec, dict):
            if 'target' not in spec:
                raise ManifestError(f"Port binding {spec!r} has no target")
            published = spec.get('published')
            host_ports = _port_range(str(published), spec) if published not in (None, '') else []
            return [cls(
                container_port=_port_number(spec['target'], spec),
                host_port=host_ports[0] if host_ports else None,
                host_port_end=host_ports[-1] if len(host_ports) > 1 else None,
                protocol=cls._protocol(spec.get('protocol', 'tcp'), spec),
                host_ip=spec.get('host_ip'),
            )]
        if not isinstance(spec, str) or not spec.strip():
            raise ManifestError(f"Invalid port binding {spec!r}")

        text = spec.strip()
        protocol = Protocol.TCP
        if '/' in text:
            text, proto = text.rsplit('/', 1)
            protocol = cls._protocol(proto, spec)

        parts = text.rsplit(':', 2)
        host_ip = None
        host_part = None
        if len(parts) == 3:
            host_ip, host_part, container_part = parts
        elif len(parts) == 2:
            host_part, container_part = parts
        else:
            container_part = parts[0]

        container_ports = _port_range(container_part, spec)
        if not host_part:
            return [cls(container_port=port, protocol=protocol, host_ip=host_ip or None)
                    for port in container_ports]

        host_ports = _port_range(host_part, spec)
        if len(host_ports) > 1 and len(container_ports) == 1:
            return [cls(container_port=container_ports[0], host_port=host_ports[0], host_port_end=host_ports[-1],
                        protocol=protocol, host_ip=host_ip or None)]
        if len(host_ports) != len(container_ports):
            raise ManifestError(f"Host and container port ranges differ in binding {spec!r}")
        return [
            cls(container_port=c, host_port=h, protocol=protocol, host_ip=host_ip or None)
            for h, c in zip(host_ports, container_ports)
        ]

    @staticmethod
    def _protocol(value: Any, spec: Any) -> Protocol:
        try:
            return Protocol(str(value).lower())
        except ValueError:
            raise ManifestError(f"Unknown protocol {value!r} in binding {spec!r}")

    @property
    def published(self) -> Optional[str]:
        """The host side as written: '8000', '8000-8010' or None."""
        if self.host_port is None:
            return None
        if self.host_port_end:
            return f"{self.host_port}-{self.host_port_end}"
        return str(self.host_port)

    @property
    def host_ports(self) -> List[int]:
        """Every host port the binding may occupy."""
        if self.host_port is None:
            return []
        return list(range(self.host_port, (self.host_port_end or self.host_port) + 1))

    def to_short_syntax(self) -> str:
        """
        Renders the binding in compose short syntax.
        """
        text = str(self.container_port)
        if self.host_port is not None:
            text = f"{self.published}:{text}"
            if self.host_ip:
                text = f"{self.host_ip}:{text}"
        if self.protocol != Protocol.TCP:
            text = f"{text}/{self.protocol.value}"
        return text


class VolumeBinding(BaseModel):
    """
    A mapping between a host path (or named volume) and a container path.
    """
    target: str
    source: Optional[str] = None
    read_only: bool = False
    # Long syntax 'type' (bind, volume, tmpfs, ...) when given
    type: Optional[str] = None

    @classmethod
    def parse(cls, spec: Any) -> "VolumeBinding":
        """
        Parses a compose volume entry.

        :param spec: 'source:target[:mode]', 'target' or a long syntax mapping.
        :return: The parsed binding.
        :raises ManifestError: If the entry is malformed.
        """
        if isinstance(spec, dict):
            if not spec.get('target'):
                raise ManifestError(f"Volume binding {spec!r} has no target")
            return cls(
                source=spec.get('source'),
                type=str(spec['type']) if spec.get('type') else None,
                target=str(spec['target']),
                read_only=bool(spec.get('read_only', False)),
            )
        if not isinstance(spec, str) or not spec.strip():
            raise ManifestError(f"Invalid volume binding {spec!r}")

        parts = spec.strip().split(':')
        if len(parts) == 1:
            return cls(target=parts[0])
        if len(parts) == 2:
            source, target = parts
            mode = ''
        elif len(parts) == 3:
            source, target, mode = parts
        else:
            raise ManifestError(f"Invalid volume binding {spec!r}")
        if not source or not target:
            raise ManifestError(f"Invalid volume binding {spec!r}")
        return cls(source=source, target=target, read_only='ro' in mode.split(','))

    @property
    def is_bind(self) -> bool:
        """True when the source is a host path rather than a named volume."""
        if not self.source:
            return False
        if self.type:
            return self.type == 'bind'
        return self.source.startswith(_BIND_PREFIXES)

    def to_short_syntax(self) -> str:
        if not self.source:
            return self.target
        source = self.source
        if self.is_bind and not source.startswith(_BIND_PREFIXES):
            source = f"./{source}"
        text = f"{source}:{self.target}"
        if self.read_only:
            text += ":ro"
        return text


class ServiceDeclaration(BaseModel):
    """
    A named record describing how to run one externally built container image.
    """
    name: str
    image: str

    # Execution
    command: List[str] = []
    environment: Dict[str, str] = {}

    # Networking
    ports: List[PortBinding] = []
    extra_hosts: List[str] = []
    container_name: Optional[str] = None

    # Storage
    volumes: List[VolumeBinding] = []

    # Ordering
    depends_on: List[str] = []

    # False for declarations recovered from commented-out blocks
    enabled: bool = True

    # The body as written, before variable interpolation
    raw: Dict[str, Any] = {}

    @property
    def image_reference(self) -> ImageReference:
        """
        The parsed image reference.

        :raises ValueError: If the image reference is malformed.
        """
        return ImageReference.parse(self.image)

    @property
    def host_ports(self) -> List[int]:
        return [port for p in self.ports for port in p.host_ports]

    @property
    def bind_volumes(self) -> List[VolumeBinding]:
        return [v for v in self.volumes if v.is_bind]

    def to_compose(self) -> Dict[str, Any]:
        """
        Converts the declaration back to a compose service mapping. The body
        as written is returned when known, so variable references and '$$'
        escapes survive; otherwise empty attributes are left out.
        """
        if self.raw:
            return copy.deepcopy(self.raw)
        body: Dict[str, Any] = {'image': self.image}
        if self.container_name:
            body['container_name'] = self.container_name
        if self.ports:
            body['ports'] = [p.to_short_syntax() for p in self.ports]
        if self.depends_on:
            body['depends_on'] = list(self.depends_on)
        if self.extra_hosts:
            body['extra_hosts'] = list(self.extra_hosts)
        if self.command:
            body['command'] = list(self.command)
        if self.environment:
            body['environment'] = dict(self.environment)
        if self.volumes:
            body['volumes'] = [v.to_short_syntax() for v in self.volumes]
        return body
