import sys
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Prevent Prisma init
sys.modules.setdefault("prisma", MagicMock())

from API_LAYER import app as app_module
from tests.fakes import make_pipeline


@pytest.fixture
def pipeline():
    active = make_pipeline()
    # API tests must NOT hit a real DB or provider
    with patch.object(app_module, "pipeline", active):
        yield active


@pytest.fixture
def client(pipeline):
    return TestClient(app_module.app)
