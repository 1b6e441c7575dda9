# tests/test_routes/conftest.py
import pytest
from httpx import ASGITransport, AsyncClient

from syncbridge.core.config import get_settings
from syncbridge.dependencies import get_db, get_platforms, get_queue_consumer
from syncbridge.main import app


@pytest.fixture
async def client(session_factory, platforms, settings):
    """HTTP client against the app with the test database and mock platforms."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_platforms] = lambda: platforms
    app.dependency_overrides[get_queue_consumer] = lambda: None
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
