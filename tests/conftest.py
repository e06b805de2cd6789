import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from tortoise.contrib.test import tortoise_test_context

from cms_infra.core.db import MODELS_MODULES
from cms_infra.main import app


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with the outbox schema, per test."""
    async with tortoise_test_context(MODELS_MODULES) as ctx:
        yield ctx


@pytest.fixture
def client():
    # No context manager: the lifespan (DB, Redis, dispatcher) is not started
    yield TestClient(app)
    app.dependency_overrides.clear()
