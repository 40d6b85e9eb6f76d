# tests/conftest.py
import os

# La base de tests es SQLite en memoria; debe definirse antes de importar ispscore
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CLIENT_BATCH_DELAY", "0")

import pytest

from ispscore.tests.erp_fakes import FakeErp


@pytest.fixture
def fake_erp():
    return FakeErp()
