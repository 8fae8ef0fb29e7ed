"""Fixtures driving the FastAPI app in-process"""
import pytest
from httpx import ASGITransport, AsyncClient

from main import app


@pytest.fixture
def api():
    """The application, with dependency overrides cleared after each test"""
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(api):
    transport = ASGITransport(app=api)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
