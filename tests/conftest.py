"""
Shared fixtures
===============

Most suites run once per storage backend: the `repository` and `service`
fixtures are parametrized over the file and SQLite backends.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ucm.file_repository import FileRepository
from ucm.service import UseCaseService
from ucm.sql_repository import SqlRepository

BACKENDS = ["file", "sqlite"]


def make_repository(backend: str, root: Path):
    if backend == "file":
        return FileRepository(root)
    return SqlRepository(root)


@pytest.fixture(params=BACKENDS)
def backend(request):
    return request.param


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def repository(backend, storage_dir):
    repo = make_repository(backend, storage_dir)
    yield repo
    repo.close()


@pytest.fixture
def service(repository):
    return UseCaseService(repository)
