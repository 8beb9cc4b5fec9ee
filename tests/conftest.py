import os
import shutil
import pytest
from stackdecl.PARSERS.manifest_parser import ManifestParser

FIXTURES = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fixtures")
REFERENCE_MANIFEST = os.path.join(FIXTURES, "docker-compose.yml")


@pytest.fixture
def reference_text():
    with open(REFERENCE_MANIFEST) as f:
        return f.read()


@pytest.fixture
def reference_manifest():
    return ManifestParser(context={}).parse(REFERENCE_MANIFEST)


@pytest.fixture
def project_dir(tmp_path):
    """A copy of the reference manifest in an empty project directory."""
    shutil.copy(REFERENCE_MANIFEST, tmp_path / "docker-compose.yml")
    return tmp_path
