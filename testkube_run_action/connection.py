"""Connection to the Testkube API: base URL resolution, REST and log streams."""

import json
import logging
import re
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import aiohttp
from pydantic import BaseModel, SecretStr
from yarl import URL

from testkube_run_action.instances import (
    DEFAULT_INSTANCE,
    KNOWN_SUFFIXES,
    detect_instance,
)
from testkube_run_action.models.execution import (
    ExecutionData,
    TestDetails,
    TestExecution,
    TestSource,
    TestSuiteDetails,
    TestSuiteExecution,
    parse_suite,
    parse_suite_execution,
)
from testkube_run_action.models.input import ActionInput

log = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, TimeoutError, ValueError)


class TestkubeAPIError(RuntimeError):
    """Raised when a Testkube API request fails."""

    __test__ = False

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigurationError(Exception):
    """Raised when the connection settings cannot be resolved."""


class ConnectionConfig(BaseModel):
    """Resolved base URLs and credentials of a Testkube instance."""

    url: str
    ws: str
    dashboard: str | None = None
    token: SecretStr | None = None
    cloud: bool = False


def sanitize_url(url: str, protocol: str) -> str:
    """Normalize a base URL to the given protocol family.

    Trailing slashes are removed, a missing scheme is added, and a scheme of
    the other family (http vs. ws) is switched while keeping TLS, so
    ``https://host`` becomes ``wss://host`` for ``protocol="ws"``.
    """
    url = url.rstrip("/")
    match = re.match(r"^([^:]+)://", url)
    if not match:
        return f"{protocol}://{url}"

    current = match.group(1)
    if current not in (protocol, f"{protocol}s"):
        secure = "s" if current.endswith("s") else ""
        url = f"{protocol}{secure}://{url[len(current) + 3 :]}"
    return url


def infer_dashboard_url(api_url: str) -> str | None:
    """Guess the dashboard URL from common API URL layouts."""
    if api_url.endswith("/results/v1"):
        return api_url.removesuffix("/results/v1")
    if re.match(r"^https?://api\.[^/]+$", api_url):
        return api_url.replace("//api.", "//app.", 1)
    return None


def extract_error_detail(body: str) -> str | None:
    """Return the ``detail`` field of a problem+json error body, if any."""
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if isinstance(data, Mapping) and data.get("detail"):
        return str(data["detail"])
    return None


def _same_server(api_url: str, ws_url: str) -> bool:
    return api_url.split(":", 1)[-1] == ws_url.split(":", 1)[-1]


async def probe_api_url(
    session: aiohttp.ClientSession, base_url: str, ws_url: str
) -> tuple[str, str]:
    """Find which REST suffix a self-hosted instance serves its API under.

    Returns:
        The API base URL (after redirects) and the matching WebSocket URL

    Raises:
        ConfigurationError: If no suffix answers with a JSON ``/info`` document

    """
    last_error: BaseException | None = None
    for suffix in KNOWN_SUFFIXES:
        info_url = f"{base_url}{suffix}/info"
        try:
            async with session.get(info_url) as response:
                if response.status >= 400:
                    raise TestkubeAPIError(
                        f"{response.status} {response.reason}", response.status
                    )
                await response.json(content_type=None)
                final_url = str(response.url)
        except (*TRANSPORT_ERRORS, TestkubeAPIError) as error:
            log.debug("No API at %s: %s", info_url, error)
            last_error = error
            continue

        api_url = final_url.removesuffix("/info")
        if _same_server(base_url, ws_url):
            ws_url = sanitize_url(api_url, "ws")
        return api_url, ws_url

    raise ConfigurationError(f"Cannot connect to {base_url}: {last_error}")


async def resolve_config(action_input: ActionInput) -> ConnectionConfig:
    """Resolve API, WebSocket and dashboard URLs from the action input.

    Hosted instances are detected from their hostname (or aliases) and use
    the organization/environment agent paths. Anything else is treated as a
    self-hosted instance and probed for its API suffix.
    """
    api_url = sanitize_url(action_input.url or DEFAULT_INSTANCE, "http")
    ws_url = sanitize_url(action_input.ws or api_url, "ws")
    dashboard_url = (
        sanitize_url(action_input.dashboard_url, "http")
        if action_input.dashboard_url
        else None
    )

    detected = detect_instance(urlsplit(api_url).netloc)
    cloud = bool(detected or action_input.organization or action_input.environment)
    if detected:
        api_url, ws_url = detected.api, detected.ws
        dashboard_url = detected.dashboard

    if not dashboard_url:
        dashboard_url = infer_dashboard_url(api_url)

    if cloud:
        if not action_input.organization or not action_input.environment:
            raise ConfigurationError(
                "Both organization and environment are required for the Testkube Cloud"
            )
        agent_path = (
            f"/organizations/{action_input.organization}"
            f"/environments/{action_input.environment}/agent"
        )
        api_url = f"{api_url}{agent_path}"
        ws_url = f"{ws_url}{agent_path}"
        if dashboard_url:
            dashboard_url = (
                f"{dashboard_url}/organization/{action_input.organization}"
                f"/environment/{action_input.environment}/dashboard"
            )
    else:
        async with aiohttp.ClientSession() as session:
            api_url, ws_url = await probe_api_url(session, api_url, ws_url)

    log.info("Resolved API URL: %s (cloud=%s)", api_url, cloud)
    return ConnectionConfig(
        url=api_url,
        ws=ws_url,
        dashboard=dashboard_url,
        token=action_input.token,
        cloud=cloud,
    )


@dataclass(frozen=True, kw_only=True)
class Connection:
    """REST and WebSocket client bound to one Testkube instance."""

    config: ConnectionConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: ConnectionConfig
    ) -> AsyncGenerator["Connection", None]:
        """Create connection with managed session lifecycle."""
        headers = (
            {"Authorization": f"Bearer {config.token.get_secret_value()}"}
            if config.token
            else {}
        )
        async with aiohttp.ClientSession(headers=headers) as session:
            yield cls(config=config, session=session)

    async def request(
        self, method: str, path: str, payload: Mapping[str, Any] | None = None
    ) -> Any:
        """Send a request to the API and return the decoded JSON body.

        Raises:
            TestkubeAPIError: On transport failure, error status or invalid JSON

        """
        url = f"{self.config.url}{path}"
        try:
            async with self.session.request(method, url, json=payload) as response:
                if response.status >= 400:
                    text = await response.text()
                    detail = extract_error_detail(text) or text
                    raise TestkubeAPIError(
                        f"{method} {path} failed: {response.status} {detail}",
                        response.status,
                    )
                return await response.json(content_type=None)
        except TRANSPORT_ERRORS as error:
            raise TestkubeAPIError(f"{method} {path} failed: {error}") from error

    async def get(self, path: str) -> Any:
        """GET a JSON document."""
        return await self.request("GET", path)

    async def post(self, path: str, payload: Mapping[str, Any]) -> Any:
        """POST a JSON body and return the JSON response."""
        return await self.request("POST", path, payload)

    def logs_stream_url(self, execution_id: str) -> URL:
        """WebSocket URL streaming the logs of an execution."""
        url = URL(f"{self.config.ws}/executions/{execution_id}/logs/stream")
        if self.config.token:
            url = url.update_query(token=self.config.token.get_secret_value())
        return url

    async def open_logs_socket(
        self, execution_id: str
    ) -> aiohttp.ClientWebSocketResponse:
        """Open the log stream of an execution."""
        return await self.session.ws_connect(self.logs_stream_url(execution_id))

    async def get_test_details(self, test_id: str) -> TestDetails:
        """Get a test definition."""
        return TestDetails.model_validate(await self.get(f"/tests/{test_id}"))

    async def get_test_suite_details(self, test_suite_id: str) -> TestSuiteDetails:
        """Get a test suite definition."""
        return parse_suite(await self.get(f"/test-suites/{test_suite_id}"))

    async def get_source_details(self, source_id: str) -> TestSource:
        """Get a shared test source."""
        return TestSource.model_validate(await self.get(f"/test-sources/{source_id}"))

    async def schedule_test_execution(
        self, test_id: str, data: ExecutionData
    ) -> TestExecution:
        """Schedule a test execution."""
        response = await self.post(f"/tests/{test_id}/executions", data.to_payload())
        return TestExecution.model_validate(response)

    async def schedule_test_suite_execution(
        self, test_suite_id: str, data: ExecutionData
    ) -> TestSuiteExecution:
        """Schedule a test suite execution."""
        response = await self.post(
            f"/test-suites/{test_suite_id}/executions", data.to_payload()
        )
        return parse_suite_execution(response)

    async def get_test_execution_details(self, execution_id: str) -> TestExecution:
        """Get the current state of a test execution."""
        return TestExecution.model_validate(
            await self.get(f"/executions/{execution_id}")
        )

    async def get_test_suite_execution_details(
        self, execution_id: str
    ) -> TestSuiteExecution:
        """Get the current state of a test suite execution."""
        return parse_suite_execution(
            await self.get(f"/test-suite-executions/{execution_id}")
        )
