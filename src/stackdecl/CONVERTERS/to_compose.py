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
Converter that writes a manifest back out as a canonical compose file.
Disabled declarations are emitted as commented-out blocks in their original place.
"""
import os
from typing import List, Optional

import yaml

from ..MODELS.deployment_manifest import DeploymentManifest
from ..MODELS.service_declaration import ServiceDeclaration

SERVICE_INDENT = "  "


class ComposeConverter:
    """
    Renders a DeploymentManifest as docker-compose YAML.
    """

    def __init__(self, manifest: DeploymentManifest):
        """
        Initializes the compose converter.

        :param manifest: The manifest to render.
        """
        self.manifest = manifest

    def render(self) -> str:
        """
        Renders the manifest.

        :return: The compose document as text.
        """
        lines: List[str] = []
        if self.manifest.version:
            lines.append(yaml.safe_dump({'version': self.manifest.version}, default_flow_style=False).rstrip())
        lines.append("services:")

        blocks = [self._render_service(svc) for svc in self.manifest.all_declarations()]
        lines.append("\n\n".join(blocks))

        for key in ('networks', 'volumes'):
            names = getattr(self.manifest, key)
            if names:
                lines.append("")
                lines.append(yaml.safe_dump({key: {name: None for name in names}},
                                            default_flow_style=False).rstrip())
        return "\n".join(lines) + "\n"

    def convert(self, output_path: Optional[str] = None) -> str:
        """
        Writes the rendered compose file.

        :param output_path: Destination file. Defaults to 'docker-compose.yml'.
        :return: The path written.
        """
        output_path = output_path or "docker-compose.yml"
        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(output_path, "w") as f:
            f.write(self.render())
        return output_path

    def _render_service(self, svc: ServiceDeclaration) -> str:
        body = yaml.safe_dump({svc.name: svc.to_compose()}, default_flow_style=False,
                              sort_keys=False, width=4096)
        prefix = SERVICE_INDENT if svc.enabled else SERVICE_INDENT + "# "
        return "\n".join(prefix + line for line in body.rstrip().splitlines())
