import textwrap
import pytest
import yaml
from stackdecl.PARSERS.manifest_parser import ManifestParser, find_disabled_blocks, load_yaml
from stackdecl.MODELS.service_declaration import ManifestError


def test_parse(tmp_path):
    compose_content = {
        'version': '3.8',
        'services': {
            'web': {
                'image': 'nginx:1.25',
                'ports': ['8080:80'],
                'environment': {
                    'DEBUG': 'true'
                },
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['db_data:/var/lib/postgresql/data']
            }
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    parser = ManifestParser(context={})
    manifest = parser.parse(str(compose_file))

    assert set(manifest.active_names()) == {'db', 'web'}
    assert manifest.version == '3.8'
    web = manifest.services['web']
    assert web.image == 'nginx:1.25'
    assert web.ports[0].host_port == 8080
    assert web.ports[0].container_port == 80
    assert web.environment['DEBUG'] == 'true'

    assert 'db_data' in manifest.volumes
    assert manifest.services['db'].volumes[0].source == 'db_data'
    assert manifest.services['db'].volumes[0].target == '/var/lib/postgresql/data'
    assert not manifest.services['db'].volumes[0].is_bind


class TestReferenceManifest:
    """Parsing the reference deployment manifest."""

    def test_active_services(self, reference_manifest):
        assert reference_manifest.active_names() == ['ipfs', 'postgres', 'prometheus', 'grafana']

    def test_disabled_services(self, reference_manifest):
        assert reference_manifest.disabled_names() == ['graph-node', 'pg-test']
        assert all(not svc.enabled for svc in reference_manifest.disabled.values())
        assert not set(reference_manifest.disabled) & set(reference_manifest.services)

    def test_file_order(self, reference_manifest):
        assert reference_manifest.order == ['graph-node', 'ipfs', 'postgres', 'pg-test', 'prometheus', 'grafana']

    def test_storage_node(self, reference_manifest):
        ipfs = reference_manifest.services['ipfs']
        assert ipfs.image == 'ipfs/go-ipfs:v0.10.0'
        assert ipfs.host_ports == [5001]
        assert [v.to_short_syntax() for v in ipfs.volumes] == ['./data/ipfs:/data/ipfs']

    def test_database(self, reference_manifest):
        postgres = reference_manifest.services['postgres']
        assert postgres.command == ['postgres', '-cshared_preload_libraries=pg_stat_statements']
        assert postgres.environment == {
            'POSTGRES_USER': 'graph-node',
            'POSTGRES_PASSWORD': 'let-me-in',
            'POSTGRES_DB': 'graph-node',
            'PGDATA': '/var/lib/postgresql/data',
            'POSTGRES_INITDB_ARGS': '-E UTF8 --locale=C',
        }
        assert postgres.volumes[0].source == './data/postgres'

    def test_metrics_collector(self, reference_manifest):
        prometheus = reference_manifest.services['prometheus']
        assert prometheus.container_name == 'prometheus'
        assert len(prometheus.command) == 6
        assert '--storage.tsdb.retention.time=200h' in prometheus.command
        assert '--web.enable-lifecycle' in prometheus.command
        # unquoted 9090:9090 must not be read as a base-60 integer
        assert prometheus.ports[0].host_port == 9090
        assert prometheus.ports[0].container_port == 9090

    def test_dashboard_server(self, reference_manifest):
        grafana = reference_manifest.services['grafana']
        assert grafana.command == ['--config=/etc/grafana/custom.ini']
        assert grafana.host_ports == [3000]
        assert [v.source for v in grafana.volumes] == ['./grafana', './grafana/custom.ini']

    def test_disabled_graph_node(self, reference_manifest):
        node = reference_manifest.disabled['graph-node']
        assert node.image == 'graphprotocol/graph-node'
        assert node.host_ports == [8000, 8001, 8020, 8030, 8040]
        assert node.depends_on == ['ipfs', 'postgres']
        assert node.extra_hosts == ['host.docker.internal:host-gateway']
        assert node.environment['ethereum'] == 'mainnet:http://host.docker.internal:8545'

    def test_fixme_comment_is_not_a_service(self, reference_manifest):
        names = reference_manifest.active_names() + reference_manifest.disabled_names()
        assert not any(name.startswith('FIXME') for name in names)
        assert reference_manifest.warnings == []


def test_duplicate_service_name_is_rejected():
    content = textwrap.dedent("""
        services:
          db:
            image: postgres
          db:
            image: mysql
    """)
    with pytest.raises(ManifestError, match="duplicate key"):
        ManifestParser(context={}).parse_from_string(content)


def test_duplicate_keys_rejected_in_nested_mappings():
    with pytest.raises(ManifestError):
        load_yaml("a:\n  b: 1\n  b: 2\n")


def test_sexagesimal_ports_stay_strings():
    assert load_yaml("ports:\n  - 22:22\n") == {'ports': ['22:22']}
    assert load_yaml("n: 42") == {'n': 42}


def test_interpolation_from_context():
    content = textwrap.dedent("""
        services:
          db:
            image: postgres:${PG_TAG:-16}
            environment:
              POSTGRES_PASSWORD: ${PG_PASSWORD}
              UNSET: ${NOPE}
              COST: $$5
    """)
    manifest = ManifestParser(context={'PG_PASSWORD': 'secret'}).parse_from_string(content)
    db = manifest.services['db']
    assert db.image == 'postgres:16'
    assert db.environment['POSTGRES_PASSWORD'] == 'secret'
    assert db.environment['UNSET'] == ''
    assert db.environment['COST'] == '$5'
    assert any('NOPE' in w for w in manifest.warnings)


def test_required_variable_raises():
    content = "services:\n  db:\n    image: postgres:${TAG:?a tag is required}\n"
    with pytest.raises(ManifestError, match="a tag is required"):
        ManifestParser(context={}).parse_from_string(content)


def test_env_file_beside_manifest(tmp_path):
    (tmp_path / ".env").write_text("IMAGE_TAG=1.2.3\n")
    (tmp_path / "docker-compose.yml").write_text(
        "services:\n  app:\n    image: example/app:${IMAGE_TAG}\n")
    manifest = ManifestParser(context={}).parse(str(tmp_path / "docker-compose.yml"))
    assert manifest.services['app'].image == 'example/app:1.2.3'


def test_process_environment_wins_over_env_file(tmp_path):
    (tmp_path / ".env").write_text("IMAGE_TAG=1.2.3\n")
    (tmp_path / "docker-compose.yml").write_text(
        "services:\n  app:\n    image: example/app:${IMAGE_TAG}\n")
    manifest = ManifestParser(context={'IMAGE_TAG': '9.9.9'}).parse(str(tmp_path / "docker-compose.yml"))
    assert manifest.services['app'].image == 'example/app:9.9.9'


def test_list_environment_and_string_command():
    content = textwrap.dedent("""
        services:
          app:
            image: example/app:1
            command: serve --port 8080 "--name=my app"
            environment:
              - MODE=prod
              - FROM_HOST
    """)
    manifest = ManifestParser(context={'FROM_HOST': 'yes'}).parse_from_string(content)
    app = manifest.services['app']
    assert app.command == ['serve', '--port', '8080', '--name=my app']
    assert app.environment == {'MODE': 'prod', 'FROM_HOST': 'yes'}


def test_missing_image_is_an_error():
    with pytest.raises(ManifestError, match="'app' has no image"):
        ManifestParser(context={}).parse_from_string("services:\n  app:\n    ports: ['80:80']\n")


def test_bad_port_names_the_service():
    with pytest.raises(ManifestError, match="'app'"):
        ManifestParser(context={}).parse_from_string(
            "services:\n  app:\n    image: x/y:1\n    ports: ['eighty:80']\n")


@pytest.mark.parametrize("content", ["just a string", "- a\n- b\n", "services: [a, b]\n", "a: [\n"])
def test_malformed_documents(content):
    with pytest.raises(ManifestError):
        ManifestParser(context={}).parse_from_string(content)


def test_empty_document():
    manifest = ManifestParser(context={}).parse_from_string("")
    assert manifest.services == {}
    assert manifest.disabled == {}


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        ManifestParser(context={}).parse("non_existent_file_12345.yml")


class TestDisabledBlocks:
    """Recovery of commented-out service declarations."""

    def test_prose_comment_ending_in_colon_is_ignored(self):
        content = textwrap.dedent("""
            services:
              # Notes:
              #   remember to rotate the password
              db:
                image: postgres:16
        """)
        assert find_disabled_blocks(content) == []

    def test_all_services_commented_out(self):
        content = textwrap.dedent("""
            services:
              # cache:
              #   image: redis:7
              #   ports:
              #     - '6379:6379'
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.active_names() == []
        assert manifest.disabled_names() == ['cache']
        assert manifest.disabled['cache'].host_ports == [6379]

    def test_top_level_comments_are_not_services(self):
        content = textwrap.dedent("""
            services:
              db:
                image: postgres:16
            # volumes:
            #   data:
        """)
        assert find_disabled_blocks(content) == []

    def test_unreadable_disabled_block_is_a_warning(self):
        content = textwrap.dedent("""
            services:
              # broken:
              #   ports:
              #     - '80:80'
              web:
                image: nginx:1.25
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.disabled_names() == []
        assert any('broken' in w for w in manifest.warnings)

    def test_commented_lines_inside_active_service(self):
        content = textwrap.dedent("""
            services:
              web:
                image: nginx:1.25
                # ports:
                #   - '80:80'
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.active_names() == ['web']
        assert manifest.disabled_names() == []

    def test_disabled_name_shared_with_active_service_is_a_warning(self):
        content = textwrap.dedent("""
            services:
              # db:
              #   image: postgres:15
              db:
                image: postgres:16
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.active_names() == ['db']
        assert manifest.get('db').image == 'postgres:16'
        assert any("'db'" in w and 'active' in w for w in manifest.warnings)

    def test_disabled_block_that_does_not_load_is_a_warning(self):
        content = textwrap.dedent("""
            services:
              # cache:
              #   image: redis:7
              #   image: redis:6
              web:
                image: nginx:1.25
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.disabled_names() == []
        assert any('cache' in w and 'duplicate key' in w for w in manifest.warnings)

    def test_prose_that_does_not_load_is_ignored(self):
        content = textwrap.dedent("""
            services:
              # Careful:
              #   [ports below are temporary
              web:
                image: nginx:1.25
        """)
        manifest = ManifestParser(context={}).parse_from_string(content)
        assert manifest.disabled_names() == []
        assert manifest.warnings == []
