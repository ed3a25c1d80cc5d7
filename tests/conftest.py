"""Shared test configuration."""

import os

import pytest_asyncio
from aiohttp.test_utils import TestServer

# Keep the developer's environment out of module-level configuration
for _name in (
    "RECORDBASE_VERIFY_SSL",
    "RECORDBASE_ALLOW_INSECURE",
    "RECORDBASE_CA_BUNDLE",
    "RECORDBASE_TOKEN_TTL",
):
    os.environ.pop(_name, None)

from fake_backend import FakeBackend  # noqa: E402
from recordbase import Client  # noqa: E402


@pytest_asyncio.fixture
async def backend():
    """A running FakeBackend on a random local port."""
    fake = FakeBackend()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.url = str(server.make_url("/")).rstrip("/")
    try:
        yield fake
    finally:
        fake.stop()
        await server.close()


@pytest_asyncio.fixture
async def client(backend):
    """A Client pointed at the backend with a short subscribe deadline."""
    c = Client(backend.url, subscribe_timeout=2)
    try:
        yield c
    finally:
        await c.close()
