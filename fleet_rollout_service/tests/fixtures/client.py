"""
HTTP client fixture.

Routes run against the test database through a ``get_db`` override. The
ASGI transport does not run the app lifespan, so no tick scheduler is
attached and routes never schedule background ticks.
"""
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fleet_rollout_service.db import get_db
from fleet_rollout_service.main import app


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
