from __future__ import annotations

import os
import sys

import pytest

# le paquet invoicing (sans __init__.py) doit être importable depuis la racine
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, BASE_DIR)

from invoicing.services.invoice_service import InvoiceService  # noqa: E402
from invoicing.storage.repo import InMemoryInvoiceRepository  # noqa: E402
from invoicing.storage.sql_repo import SqlInvoiceRepository  # noqa: E402


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{(tmp_path / 'invoice-test.db').as_posix()}"


@pytest.fixture
def sql_repo(db_url):
    repo = SqlInvoiceRepository(db_url)
    yield repo
    repo.engine.dispose()


@pytest.fixture
def memory_repo():
    return InMemoryInvoiceRepository()


@pytest.fixture(params=["memory", "sql"])
def repo(request):
    """Contrat commun : chaque test tourne sur les deux backends."""
    return request.getfixturevalue(f"{request.param}_repo")


@pytest.fixture
def service(repo):
    return InvoiceService(repo)
