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
Models for a whole deployment manifest.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel
from .service_declaration import ManifestError, ServiceDeclaration


class DeploymentManifest(BaseModel):
    """
    The static service topology of one deployment.
    Equivalent to a parsed docker-compose.yml file, commented-out services included.
    """
    version: Optional[str] = None
    services: Dict[str, ServiceDeclaration] = {}
    disabled: Dict[str, ServiceDeclaration] = {}
    # File order of every declaration, active and disabled
    order: List[str] = []
    networks: List[str] = []
    volumes: List[str] = []
    source_path: Optional[str] = None
    warnings: List[str] = []

    def active_names(self) -> List[str]:
        return [name for name in self._ordered_names() if name in self.services]

    def disabled_names(self) -> List[str]:
        return [name for name in self._ordered_names() if name in self.disabled]

    def get(self, name: str) -> ServiceDeclaration:
        """
        Looks up an active or disabled declaration by name.

        :raises KeyError: If no declaration has that name.
        """
        if name in self.services:
            return self.services[name]
        if name in self.disabled:
            return self.disabled[name]
        raise KeyError(f"No service named {name!r}")

    def all_declarations(self) -> List[ServiceDeclaration]:
        """
        Every declaration in file order. An active declaration wins over a
        disabled one that shares its name.
        """
        declarations = []
        for name in self._ordered_names():
            if name in self.services:
                declarations.append(self.services[name])
            elif name in self.disabled:
                declarations.append(self.disabled[name])
        return declarations

    def activate(self, name: str) -> "DeploymentManifest":
        """
        Returns a copy of the manifest with a disabled declaration made active.
        Every other declaration is left as it is.

        :param name: The disabled service to activate.
        :raises KeyError: If there is no disabled service with that name.
        :raises ManifestError: If an active service already uses the name.
        """
        if name not in self.disabled:
            raise KeyError(f"No disabled service named {name!r}")
        if name in self.services:
            raise ManifestError(f"Service {name!r} is already active")

        declaration = self.disabled[name].model_copy(update={'enabled': True})
        services = dict(self.services)
        services[name] = declaration
        disabled = {k: v for k, v in self.disabled.items() if k != name}
        return self.model_copy(update={'services': self._reorder(services), 'disabled': disabled})

    def deactivate(self, name: str) -> "DeploymentManifest":
        """
        Returns a copy of the manifest with an active declaration commented out.

        :param name: The active service to deactivate.
        :raises KeyError: If there is no active service with that name.
        :raises ManifestError: If a disabled service already uses the name.
        """
        if name not in self.services:
            raise KeyError(f"No active service named {name!r}")
        if name in self.disabled:
            raise ManifestError(f"A disabled service named {name!r} already exists")

        declaration = self.services[name].model_copy(update={'enabled': False})
        disabled = dict(self.disabled)
        disabled[name] = declaration
        services = {k: v for k, v in self.services.items() if k != name}
        return self.model_copy(update={'services': services, 'disabled': self._reorder(disabled)})

    def _ordered_names(self) -> List[str]:
        names = list(self.order)
        for name in list(self.services) + list(self.disabled):
            if name not in names:
                names.append(name)
        return names

    def _reorder(self, declarations: Dict[str, ServiceDeclaration]) -> Dict[str, ServiceDeclaration]:
        return {name: declarations[name] for name in self._ordered_names() if name in declarations}
