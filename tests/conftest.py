"""Root conftest: placeholder Cosmos settings and shared fixtures."""

import os

# facility_api.db reads these at import time
os.environ.setdefault("COSMOSDB_ENDPOINT", "https://localhost:8081/")
os.environ.setdefault("COSMOSDB_DATABASE", "facility-test")
os.environ.setdefault("COSMOSDB_CONTAINER_LOCATIONS", "locations")
os.environ.setdefault("COSMOSDB_CONTAINER_PATIENTS", "patients")

import pytest
from httpx import ASGITransport, AsyncClient

from facility_api.crud.location_crud import LocationRegistry
from facility_api.crud.profile_crud import ProfileStore
from tests.fakes import InMemoryLocationGateway


@pytest.fixture
def gateway():
    return InMemoryLocationGateway()


@pytest.fixture
async def registry(gateway):
    """Registry over an in-memory gateway with the skeleton already in place."""
    registry = LocationRegistry(gateway)
    await registry.bootstrap()
    return registry


@pytest.fixture
def profile_store(tmp_path):
    return ProfileStore(profile_dir=tmp_path / "profiles", state_file=tmp_path / "current")


@pytest.fixture
async def client(registry, profile_store):
    """API client with app state wired to the in-memory registry."""
    from function_app import app

    app.state.location_registry = registry
    app.state.profile_store = profile_store
    app.state.initialized = True

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"x-functions-key": "test-key"},
    ) as c:
        yield c

    app.state.initialized = False
