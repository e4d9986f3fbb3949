"""Fixtures for integration tests."""

from collections.abc import AsyncGenerator

import pytest
from aiohttp.test_utils import TestServer
from pydantic import SecretStr

from testkube_run_action.connection import Connection, ConnectionConfig
from testkube_run_action.testing.server import FakeTestkube, build_app


@pytest.fixture
def testkube() -> FakeTestkube:
    """Create empty API state."""
    return FakeTestkube()


@pytest.fixture
async def server(testkube: FakeTestkube) -> AsyncGenerator[TestServer, None]:
    """Serve the API on a local port."""
    async with TestServer(build_app(testkube)) as test_server:
        yield test_server


@pytest.fixture
def base_url(server: TestServer) -> str:
    """Host and port of the local API, without scheme."""
    return f"{server.host}:{server.port}"


@pytest.fixture
async def connection(base_url: str) -> AsyncGenerator[Connection, None]:
    """Create a connection to the local API."""
    config = ConnectionConfig(
        url=f"http://{base_url}/v1",
        ws=f"ws://{base_url}/v1",
        token=SecretStr("tkcapi_secret"),
    )
    async with Connection.from_config(config) as impl:
        yield impl
