"""Listener for the WebSocket log stream of a single execution."""

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from testkube_run_action.models.execution import ExecutionResult
from testkube_run_action.models.status import ExecutionStatus, parse_status

log = logging.getLogger(__name__)

# Only these statuses end the watch straight from the stream; the rest are
# confirmed by polling.
STREAM_TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    [ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED]
)


class LogSocket(Protocol):
    """The part of an aiohttp client WebSocket used by the listener."""

    def __aiter__(self) -> AsyncIterator[aiohttp.WSMessage]: ...

    async def close(self) -> bool: ...


@dataclass(frozen=True, kw_only=True)
class LogMessage:
    """What a single stream message carries."""

    output: str | None = None
    terminal: ExecutionResult | None = None


def _first_str(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def parse_log_message(raw: str | bytes) -> LogMessage | None:
    """Extract output text and terminal status from a raw stream message.

    Never raises: anything that is not a JSON object is passed through as
    output text. Returns None for empty messages.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text:
        return None

    try:
        data = json.loads(text)
    except ValueError:
        return LogMessage(output=text)
    if not isinstance(data, Mapping):
        return LogMessage(output=text)

    result = data.get("result")
    result = result if isinstance(result, Mapping) else {}

    output = _first_str(result.get("output"), data.get("output"), data.get("log"))
    if output is None:
        return LogMessage(output=_first_str(data.get("content")) or text)

    token = data.get("status") or result.get("status")
    status = parse_status(token)
    if status not in STREAM_TERMINAL_STATUSES:
        return LogMessage(output=output)

    error_message = _first_str(data.get("errorMessage"), result.get("errorMessage"))
    return LogMessage(
        output=output,
        terminal=ExecutionResult(status=status, error_message=error_message),
    )


class StreamListener:
    """Owns one log stream connection and reports what arrives on it.

    Output and terminal signals are pushed to the callbacks. ``run`` returns
    when the connection ends, telling whether it ended with an error; what to
    do next is up to the owner.
    """

    def __init__(
        self,
        *,
        open_socket: Callable[[], Awaitable[LogSocket]],
        on_output: Callable[[str], None],
        on_terminal: Callable[[ExecutionResult], None],
    ) -> None:
        self._open_socket = open_socket
        self._on_output = on_output
        self._on_terminal = on_terminal
        self._socket: LogSocket | None = None

    async def run(self) -> bool:
        """Connect and consume messages until the connection ends.

        Returns:
            True if the connection failed or ended with an error,
            False on a clean close

        """
        try:
            self._socket = await self._open_socket()
        except (aiohttp.ClientError, TimeoutError) as error:
            log.debug("Log stream connection failed: %s", error)
            return True

        try:
            async for message in self._socket:
                if message.type is aiohttp.WSMsgType.ERROR:
                    log.debug("Log stream error: %s", message.data)
                    return True
                if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self.handle(message.data)
        except (aiohttp.ClientError, TimeoutError) as error:
            log.debug("Log stream dropped: %s", error)
            return True
        finally:
            await self.close()
        return False

    def handle(self, raw: str | bytes) -> None:
        """Dispatch one raw message to the callbacks."""
        parsed = parse_log_message(raw)
        if parsed is None:
            return
        if parsed.output is not None:
            self._on_output(parsed.output)
        if parsed.terminal is not None:
            self._on_terminal(parsed.terminal)

    async def close(self) -> None:
        """Close the connection; closing twice is a no-op."""
        socket, self._socket = self._socket, None
        if socket is not None:
            await socket.close()
