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
Converter that renders a Markdown provisioning report for a manifest.
"""
import os
from typing import Optional
from jinja2 import Template

from ..MODELS.deployment_manifest import DeploymentManifest
from ..MANAGERS.provision_manager import ProvisionManager
from ..VALIDATORS.topology_validator import TopologyValidator, ValidationReport

REPORT_TEMPLATE = """\
# Deployment report{% if source %}: {{ source }}{% endif %}

## Services

| Service | Image | Ports | Volumes |
|---------|-------|-------|---------|
{% for svc in services -%}
| {{ svc.name }} | `{{ svc.image }}` | {{ svc.ports | join(', ') or '-' }} | {{ svc.volumes | join(', ') or '-' }} |
{% endfor %}
{%- if disabled %}

Disabled: {{ disabled | join(', ') }}
{% endif %}

## Host provisioning

### Directories
{% for d in plan.directories %}
- `{{ d.source }}` for {{ d.service }} (mounted at `{{ d.target }}`)
{%- else %}
- none
{%- endfor %}

### Files
{% for f in plan.files %}
- `{{ f.source }}` for {{ f.service }} (mounted at `{{ f.target }}`{% if f.read_only %}, read-only{% endif %})
{%- else %}
- none
{%- endfor %}

### Ports
{% for p in plan.ports %}
- {{ p.label }} -> {{ p.service }}:{{ p.container_port }}
{%- else %}
- none
{%- endfor %}

## Findings
{% for v in findings %}
- **{{ v.severity.value }}** `{{ v.rule }}`{% if v.service %} [{{ v.service }}]{% endif %}: {{ v.message }}
{%- else %}
- none
{%- endfor %}
"""


class ReportConverter:
    """
    Renders a Markdown summary of the services, the host provisioning they
    need and the validation findings.
    """

    def __init__(self, manifest: DeploymentManifest, base_dir: str = ".",
                 report: Optional[ValidationReport] = None):
        """
        Initializes the report converter.

        :param manifest: The parsed manifest.
        :param base_dir: The directory host paths are resolved against.
        :param report: Validation findings; computed when not given.
        """
        self.manifest = manifest
        self.base_dir = os.path.abspath(base_dir)
        if report is None:
            report = TopologyValidator(base_dir=base_dir).validate(manifest)
        self.report = report
        self.template = Template(REPORT_TEMPLATE)

    def render(self) -> str:
        services = [
            {
                'name': svc.name,
                'image': svc.image,
                'ports': [p.to_short_syntax() for p in svc.ports],
                'volumes': [v.to_short_syntax() for v in svc.volumes],
            }
            for svc in self.manifest.services.values()
        ]
        return self.template.render(
            source=self.manifest.source_path,
            services=services,
            disabled=self.manifest.disabled_names(),
            plan=ProvisionManager(self.manifest, base_dir=self.base_dir).plan(),
            findings=self.report.violations,
        )

    def convert(self, output_path: str = "DEPLOYMENT.md") -> str:
        """
        Writes the report.

        :param output_path: Destination file.
        :return: The path written.
        """
        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(output_path, "w") as f:
            f.write(self.render())
        return output_path
