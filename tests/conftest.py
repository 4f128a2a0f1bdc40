import pytest
from aiohttp import ClientSession

from webhook_service.main import create_app
from webhook_service.repositories import InMemoryWebhookStore
from webhook_service.services.rate_limit import FixedWindowRateLimiter


@pytest.fixture
def store() -> InMemoryWebhookStore:
    return InMemoryWebhookStore()


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(limit=100, window_seconds=60)


@pytest.fixture
async def service_client(aiohttp_client, store, rate_limiter):
    """Client for the full application backed by the in-memory store."""
    app = create_app(store=store, rate_limiter=rate_limiter, start_workers=False)
    return await aiohttp_client(app)


@pytest.fixture
async def http_session():
    async with ClientSession() as session:
        yield session
