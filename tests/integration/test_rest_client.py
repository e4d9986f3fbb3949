"""Integration tests for the Testkube REST client."""

import asyncio
from collections.abc import AsyncGenerator

import aiohttp
import pytest
from aioresponses import aioresponses as aioresponses_cls
from pydantic import SecretStr
from yarl import URL

from testkube_run_action.connection import (
    Connection,
    ConnectionConfig,
    TestkubeAPIError,
)
from testkube_run_action.entities import TestSuiteEntity
from testkube_run_action.models.execution import ExecutionData, RunningContext
from testkube_run_action.models.status import ExecutionStatus
from testkube_run_action.testing import payloads

API_BASE_URL = "https://api.testkube.test/organizations/o/environments/e/agent"
WS_BASE_URL = "wss://websockets.testkube.test/organizations/o/environments/e/agent"


@pytest.fixture
def config() -> ConnectionConfig:
    """Create test configuration."""
    return ConnectionConfig(
        url=API_BASE_URL,
        ws=WS_BASE_URL,
        token=SecretStr("tkcapi_secret"),
        cloud=True,
    )


@pytest.fixture
async def client(
    config: ConnectionConfig, aioresponses: aioresponses_cls
) -> AsyncGenerator[Connection, None]:
    """Create connection with managed session."""
    async with Connection.from_config(config) as impl:
        yield impl


async def test_sends_bearer_token(client: Connection) -> None:
    """Authenticates every request with the API token."""
    assert client.session.headers["Authorization"] == "Bearer tkcapi_secret"


async def test_logs_stream_url(client: Connection) -> None:
    """The stream URL carries the token as a query parameter."""
    url = client.logs_stream_url("exec-123")

    assert url.path.endswith("/agent/executions/exec-123/logs/stream")
    assert url.query["token"] == "tkcapi_secret"
    assert url.scheme == "wss"


async def test_get_test_details(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Parses test definitions."""
    aioresponses.get(
        f"{API_BASE_URL}/tests/smoke",
        payload=payloads.definition(content_type=None, source="repo"),
    )

    details = await client.get_test_details("smoke")

    assert details.name == "smoke-test"
    assert details.source == "repo"
    assert details.content is None
    assert details.execution_request is not None
    assert not details.execution_request.negative_test


async def test_get_v2_suite_details(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Older suite definitions are normalized to grouped steps."""
    aioresponses.get(
        f"{API_BASE_URL}/test-suites/nightly", payload=payloads.suite_definition_v2()
    )

    details = await client.get_test_suite_details("nightly")

    assert [step.stop_on_failure for step in details.steps] == [True, False]
    assert [step.execute[0].display_name for step in details.steps] == [
        "smoke-test",
        "🕑 1000ms",
    ]


async def test_schedule_test_suite_execution(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Posts the schedule request and parses the created execution."""
    url = f"{API_BASE_URL}/test-suites/nightly/executions"
    aioresponses.post(
        url,
        status=201,
        payload=payloads.suite_execution_v2(
            status="queued", steps=[{"test": "smoke-test", "status": "queued"}]
        ),
    )
    data = ExecutionData(
        namespace="ci",
        running_context=RunningContext(type="githubaction", context="ctx"),
    )

    execution = await client.schedule_test_suite_execution("nightly", data)

    assert execution.id == "suite-exec-123"
    assert execution.status is ExecutionStatus.QUEUED
    assert [step.step.test for step in execution.steps] == ["smoke-test"]
    call = aioresponses.requests[("POST", URL(url))][0]
    assert call.kwargs["json"] == {
        "namespace": "ci",
        "runningContext": {"type": "githubaction", "context": "ctx"},
    }


async def test_get_test_execution_details(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Parses the execution result, including unknown statuses."""
    aioresponses.get(
        f"{API_BASE_URL}/executions/exec-123",
        payload=payloads.execution(status="paused"),
    )

    execution = await client.get_test_execution_details("exec-123")

    assert execution.execution_result.status is ExecutionStatus.QUEUED


async def test_error_detail_is_reported(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Problem details of failed requests end up in the error."""
    aioresponses.get(
        f"{API_BASE_URL}/test-suite-executions/missing",
        status=404,
        body='{"title": "Not Found", "detail": "execution not found"}',
    )

    with pytest.raises(TestkubeAPIError, match="404 execution not found") as info:
        await client.get_test_suite_execution_details("missing")

    assert info.value.status == 404


async def test_transport_error_is_wrapped(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Connection failures surface as API errors."""
    aioresponses.get(
        f"{API_BASE_URL}/test-sources/repo",
        exception=aiohttp.ClientConnectionError("connection reset"),
    )

    with pytest.raises(TestkubeAPIError, match="connection reset") as info:
        await client.get_source_details("repo")

    assert info.value.status is None


async def test_suite_watch_outlasts_malformed_payloads(
    client: Connection, aioresponses: aioresponses_cls
) -> None:
    """Bodies that are not suite executions are polled past as queued."""
    url = f"{API_BASE_URL}/test-suite-executions/suite-exec-123"
    aioresponses.get(url, body="null")
    aioresponses.get(url, payload=[])
    aioresponses.get(url, payload={"stepResults": [None]})
    aioresponses.get(url, payload=payloads.suite_execution(status="passed"))
    entity = TestSuiteEntity(client=client, id="nightly", poll_interval=0.001)

    result = await asyncio.wait_for(
        entity.watch_execution("suite-exec-123"), timeout=5
    )

    assert result.status is ExecutionStatus.SUCCEEDED
    assert len(aioresponses.requests[("GET", URL(url))]) == 4
