import os
from stackdecl.PARSERS.manifest_parser import ManifestParser
from stackdecl.VALIDATORS.topology_validator import TopologyValidator
from stackdecl.MANAGERS.provision_manager import ProvisionManager
from stackdecl.CONVERTERS.to_compose import ComposeConverter


def test_reference_deployment_end_to_end(project_dir):
    manifest_path = os.path.join(str(project_dir), "docker-compose.yml")
    manifest = ManifestParser(context={}).parse(manifest_path)

    # Four active services, nothing active from the commented blocks
    assert manifest.active_names() == ['ipfs', 'postgres', 'prometheus', 'grafana']
    assert set(manifest.disabled_names()) == {'graph-node', 'pg-test'}

    report = TopologyValidator(base_dir=str(project_dir)).validate(manifest)
    assert report.ok

    # What a deployer must provide
    manager = ProvisionManager(manifest, base_dir=str(project_dir))
    plan = manager.plan()
    assert sorted(p.host_port for p in plan.ports) == [3000, 5001, 5432, 9090]
    assert {f.service for f in plan.files} == {'prometheus', 'grafana'}

    manager.apply()
    (project_dir / "prometheus.yml").write_text("global:\n  scrape_interval: 15s\n")
    (project_dir / "grafana" / "custom.ini").write_text("[server]\nhttp_port = 3000\n")
    assert manager.missing() == []

    # Rewriting the manifest keeps the topology
    out = project_dir / "docker-compose.rendered.yml"
    ComposeConverter(manifest).convert(str(out))
    rendered = ManifestParser(context={}).parse(str(out))
    assert rendered.services == manifest.services
    assert rendered.disabled == manifest.disabled
