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
Parser for deployment manifests in docker-compose.yml form, including
service declarations that are commented out.
"""
import os
import re
import shlex
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from yaml.constructor import ConstructorError

from ..MODELS.deployment_manifest import DeploymentManifest
from ..MODELS.service_declaration import ManifestError, PortBinding, ServiceDeclaration, VolumeBinding
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .env_loader import EnvLoader

_INT_TAG = 'tag:yaml.org,2002:int'
_SERVICES_LINE = re.compile(r'^services\s*:\s*(#.*)?$')
_KEY_LINE = re.compile(r'^([A-Za-z0-9][A-Za-z0-9_.-]*)\s*:\s*(#.*)?$')
_NESTED_KEY_LINE = re.compile(r'^\s+[A-Za-z_][A-Za-z0-9_.-]*\s*:(\s|$)')


class ManifestLoader(yaml.SafeLoader):
    """
    Safe YAML loader that rejects duplicate mapping keys and does not read
    'HH:MM' style scalars as base-60 integers.
    """
    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
            seen = set()
            for key_node, _ in node.value:
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    # unhashable keys are reported by the base constructor
                    break
                if duplicate:
                    raise ConstructorError(
                        "while constructing a mapping", node.start_mark,
                        f"found duplicate key {key!r}", key_node.start_mark)
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _INT_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ManifestLoader.add_implicit_resolver(
    _INT_TAG,
    re.compile(r'''^(?:[-+]?0b[0-1_]+
                    |[-+]?0[0-7_]+
                    |[-+]?(?:0|[1-9][0-9_]*)
                    |[-+]?0x[0-9a-fA-F_]+)$''', re.X),
    list('-+0123456789'))


def load_yaml(content: str) -> Any:
    """
    Loads YAML with the manifest loader.

    :raises ManifestError: If the YAML is invalid or has duplicate keys.
    """
    try:
        return yaml.load(content, Loader=ManifestLoader)
    except (yaml.YAMLError, ValueError) as e:
        raise ManifestError(f"Invalid manifest YAML: {e}") from e


class ManifestParser:
    """
    Parser for docker-compose.yml deployment manifests.
    """
    def __init__(self, context: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None):
        """
        Initializes the parser.

        :param context: Environment variables for interpolation. Defaults to
            the process environment.
        :param env_file: Optional .env file layered under the context.
        """
        self.context = context
        self.env_file = env_file

    def parse(self, manifest_path: str) -> DeploymentManifest:
        """
        Parses a manifest from a path. A .env file beside the manifest is
        used for interpolation when no env file was given.

        :param manifest_path: Path to the manifest.
        :return: Parsed manifest.
        :raises FileNotFoundError: If the manifest does not exist.
        """
        with open(manifest_path, 'r') as f:
            content = f.read()

        env_file = self.env_file
        if env_file is None:
            candidate = os.path.join(os.path.dirname(os.path.abspath(manifest_path)), '.env')
            if os.path.isfile(candidate):
                env_file = candidate
        context = EnvLoader.build_context(env_file, self.context)
        return self._parse(content, context, source_path=manifest_path)

    def parse_from_string(self, content: str, source_path: Optional[str] = None) -> DeploymentManifest:
        """
        Parses a manifest from a string.

        :param content: YAML content of the manifest.
        :param source_path: Where the content came from, if anywhere.
        :return: Parsed manifest.
        """
        context = EnvLoader.build_context(self.env_file, self.context)
        return self._parse(content, context, source_path=source_path)

    def _parse(self, content: str, context: Mapping[str, str], source_path: Optional[str]) -> DeploymentManifest:
        data = load_yaml(content)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a mapping at the top level")

        interpolator = EnvironmentInterpolator(context)
        warnings: List[str] = []

        raw_services = data.get('services') or {}
        if not isinstance(raw_services, dict):
            raise ManifestError("'services' must be a mapping")

        services: Dict[str, ServiceDeclaration] = {}
        for name, spec in raw_services.items():
            services[str(name)] = self._parse_service(str(name), spec, interpolator, enabled=True)

        disabled: Dict[str, ServiceDeclaration] = {}
        blocks, unreadable = _load_disabled_blocks(content)
        for name, error in unreadable:
            warnings.append(f"Skipping unreadable disabled service {name!r}: {error}")
        for name, spec in blocks:
            if name in disabled:
                warnings.append(f"Disabled service {name!r} is declared more than once; keeping the first")
                continue
            if name in services:
                warnings.append(f"Disabled service {name!r} shares its name with an active service")
            try:
                disabled[name] = self._parse_service(name, spec, interpolator, enabled=False)
            except ManifestError as e:
                warnings.append(f"Skipping unreadable disabled service {name!r}: {e}")

        for var in interpolator.missing:
            warnings.append(f"Variable {var!r} is not set; defaulting to an empty string")

        order = [name for name, _ in self._declaration_lines(content, services, disabled)]

        version = data.get('version')
        return DeploymentManifest(
            version=str(version) if version is not None else None,
            services=services,
            disabled=disabled,
            order=order,
            networks=self._names(data.get('networks'), 'networks'),
            volumes=self._names(data.get('volumes'), 'volumes'),
            source_path=source_path,
            warnings=warnings,
        )

    def _parse_service(self, name: str, spec: Any, interpolator: EnvironmentInterpolator,
                       enabled: bool) -> ServiceDeclaration:
        """
        Parses a single service declaration.

        :param name: The name of the service.
        :param spec: The service body from the manifest.
        :param interpolator: Interpolator for string values.
        :param enabled: False for commented-out declarations.
        :return: A ServiceDeclaration instance.
        """
        if not isinstance(spec, dict):
            raise ManifestError(f"Service {name!r} must be a mapping")
        raw = {str(k): v for k, v in spec.items()}
        try:
            spec = interpolator.interpolate_tree(spec)
        except KeyError as e:
            raise ManifestError(f"Service {name!r}: {e.args[0]}") from e

        image = spec.get('image')
        if not image or not isinstance(image, str):
            raise ManifestError(f"Service {name!r} has no image")

        try:
            ports: List[PortBinding] = []
            for entry in self._to_list(spec.get('ports'), name, 'ports'):
                ports.extend(PortBinding.parse(entry))
            volumes = [VolumeBinding.parse(v) for v in self._to_list(spec.get('volumes'), name, 'volumes')]
        except ManifestError as e:
            raise ManifestError(f"Service {name!r}: {e}") from e

        return ServiceDeclaration(
            name=name,
            image=image,
            command=self._command(spec.get('command'), name),
            environment=self._environment(spec.get('environment'), name, interpolator.context),
            ports=ports,
            extra_hosts=self._extra_hosts(spec.get('extra_hosts'), name),
            container_name=str(spec['container_name']) if spec.get('container_name') else None,
            volumes=volumes,
            depends_on=self._depends_on(spec.get('depends_on'), name),
            enabled=enabled,
            raw=raw,
        )

    def _command(self, value: Any, name: str) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            try:
                return shlex.split(value)
            except ValueError as e:
                raise ManifestError(f"Service {name!r}: invalid command {value!r}: {e}") from e
        return [str(arg) for arg in self._to_list(value, name, 'command')]

    def _environment(self, value: Any, name: str, context: Mapping[str, str]) -> Dict[str, str]:
        """
        Normalizes the list or mapping form of 'environment'. Variables
        without a value are passed through from the context.
        """
        if value is None:
            return {}
        pairs: List[Tuple[str, Any]] = []
        if isinstance(value, dict):
            pairs = [(str(k), v) for k, v in value.items()]
        elif isinstance(value, list):
            for entry in value:
                key, sep, val = str(entry).partition('=')
                pairs.append((key, val if sep else None))
        else:
            raise ManifestError(f"Service {name!r}: 'environment' must be a mapping or a list")

        environment = {}
        for key, val in pairs:
            if val is None:
                val = context.get(key, '')
            elif isinstance(val, bool):
                val = 'true' if val else 'false'
            environment[key] = str(val)
        return environment

    def _depends_on(self, value: Any, name: str) -> List[str]:
        if isinstance(value, dict):
            return [str(k) for k in value]
        return [str(v) for v in self._to_list(value, name, 'depends_on')]

    def _extra_hosts(self, value: Any, name: str) -> List[str]:
        if isinstance(value, dict):
            return [f"{k}:{v}" for k, v in value.items()]
        return [str(v) for v in self._to_list(value, name, 'extra_hosts')]

    def _names(self, value: Any, field: str) -> List[str]:
        if value is None:
            return []
        if isinstance(value, dict):
            return [str(k) for k in value]
        if isinstance(value, list):
            return [str(v) for v in value]
        raise ManifestError(f"'{field}' must be a mapping")

    def _to_list(self, val: Any, name: str, field: str) -> List[Any]:
        """
        Helper to ensure a value is a list.
        """
        if val is None:
            return []
        if isinstance(val, list):
            return val
        if isinstance(val, (str, int)):
            return [val]
        raise ManifestError(f"Service {name!r}: '{field}' must be a list")

    def _declaration_lines(self, content, services, disabled) -> List[Tuple[str, int]]:
        """
        Returns (name, line number) for every declaration, sorted by position.
        """
        positions = {}
        section = _services_section(content.splitlines())
        if section is not None:
            lines, start, indent = section
            for offset, line in enumerate(lines):
                match = _KEY_LINE.match(line.strip())
                if match and _indent(line) == indent and not line.lstrip().startswith('#'):
                    positions.setdefault(match.group(1), start + offset)
            for name, line_no in _disabled_block_starts(lines, indent):
                positions.setdefault(name, start + line_no)
        names = list(services) + [n for n in disabled if n not in services]
        fallback = len(content.splitlines())
        return sorted(((n, positions.get(n, fallback)) for n in names), key=lambda item: item[1])


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(' '))


def _uncomment(line: str) -> Optional[Tuple[int, str]]:
    """
    Splits a comment line into the column its content would sit at once
    uncommented, and that content.
    """
    stripped = line.lstrip(' ')
    if not stripped.startswith('#'):
        return None
    hash_col = len(line) - len(stripped)
    body = stripped[1:]
    if body.startswith(' '):
        body = body[1:]
    content = body.lstrip(' ')
    return hash_col + len(body) - len(content), content.rstrip()


def _services_section(lines: List[str]) -> Optional[Tuple[List[str], int, int]]:
    """
    Finds the lines of the top-level 'services' mapping.

    :return: (section lines, index of the first section line, service
        indentation) or None when there is no services section.
    """
    start = None
    for i, line in enumerate(lines):
        if _SERVICES_LINE.match(line):
            start = i + 1
            break
    if start is None:
        return None

    end = len(lines)
    for i in range(start, len(lines)):
        line = lines[i]
        if line.strip() and not line.startswith((' ', '#')):
            end = i
            break
    section = lines[start:end]

    indent = None
    for line in section:
        if line.strip() and not line.lstrip().startswith('#'):
            indent = _indent(line)
            break
    if indent is None:
        for line in section:
            uncommented = _uncomment(line)
            if uncommented and _KEY_LINE.match(uncommented[1]):
                indent = uncommented[0]
                break
    if indent is None or indent == 0:
        return None
    return section, start, indent


def _disabled_block_starts(lines: List[str], indent: int) -> List[Tuple[str, int]]:
    return [(name, start) for name, start, _ in _disabled_blocks(lines, indent)]


def _disabled_blocks(lines: List[str], indent: int) -> List[Tuple[str, int, str]]:
    """
    Collects commented-out blocks whose first line is a key at the service
    indentation, followed by comment lines nested deeper.
    """
    blocks = []
    i = 0
    while i < len(lines):
        uncommented = _uncomment(lines[i])
        match = _KEY_LINE.match(uncommented[1]) if uncommented else None
        if not match or uncommented[0] != indent:
            i += 1
            continue

        start = i
        body = [f"{match.group(1)}:"]
        i += 1
        while i < len(lines):
            nested = _uncomment(lines[i])
            if nested is None:
                break
            column, text = nested
            if text and column <= indent:
                break
            body.append(' ' * max(column - indent, 0) + text if text else '')
            i += 1
        blocks.append((match.group(1), start, '\n'.join(body)))
    return blocks


def find_disabled_blocks(content: str) -> List[Tuple[str, Dict[str, Any]]]:
    """
    Finds service declarations that are commented out under 'services'.

    Blocks that do not load as a mapping of settings, such as prose comments
    that happen to end in a colon, are ignored.

    :param content: Raw manifest text.
    :return: (name, service body) pairs in file order.
    """
    return _load_disabled_blocks(content)[0]


def _load_disabled_blocks(content: str) -> Tuple[List[Tuple[str, Dict[str, Any]]], List[Tuple[str, str]]]:
    """
    Loads the commented-out blocks under 'services'.

    :return: (name, service body) pairs, and (name, error) pairs for blocks
        that look like service declarations but do not load.
    """
    section = _services_section(content.splitlines())
    if section is None:
        return [], []
    lines, _, indent = section

    found = []
    unreadable = []
    for name, _, text in _disabled_blocks(lines, indent):
        try:
            data = yaml.load(text, Loader=ManifestLoader)
        except (yaml.YAMLError, ValueError) as e:
            nested = [line for line in text.splitlines()[1:] if line.strip()]
            if nested and _NESTED_KEY_LINE.match(nested[0]):
                unreadable.append((name, ' '.join(str(e).split())))
            continue
        if isinstance(data, dict) and isinstance(data.get(name), dict):
            found.append((name, data[name]))
    return found, unreadable
