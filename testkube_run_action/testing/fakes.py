"""In-memory doubles of the log stream and the watched entity."""

import asyncio
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import aiohttp

from testkube_run_action.models.execution import (
    ExecutionResult,
    StepExecution,
    TestSuiteExecution,
)


class FakeLogSocket:
    """Stand-in for an aiohttp client WebSocket fed from a queue."""

    def __init__(self) -> None:
        self._messages: asyncio.Queue[aiohttp.WSMessage | None] = asyncio.Queue()
        self.closed = False
        self.close_calls = 0

    def send_text(self, data: str) -> None:
        """Queue a text frame."""
        self._messages.put_nowait(
            aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, data, None)
        )

    def send_json(self, data: Any) -> None:
        """Queue a JSON text frame."""
        self.send_text(json.dumps(data))

    def send_error(self, error: BaseException | None = None) -> None:
        """Queue an error frame, as aiohttp yields on a broken connection."""
        self._messages.put_nowait(
            aiohttp.WSMessage(
                aiohttp.WSMsgType.ERROR, error or ConnectionResetError(), None
            )
        )

    def end(self) -> None:
        """Close the stream cleanly from the server side."""
        self._messages.put_nowait(None)

    def __aiter__(self) -> "FakeLogSocket":
        return self

    async def __anext__(self) -> aiohttp.WSMessage:
        if self.closed:
            raise StopAsyncIteration
        message = await self._messages.get()
        if message is None:
            self.closed = True
            raise StopAsyncIteration
        return message

    async def close(self) -> bool:
        self.close_calls += 1
        was_open = not self.closed
        self.closed = True
        return was_open


FakeExecution: TypeAlias = ExecutionResult | TestSuiteExecution


@dataclass(kw_only=True)
class FakeWatchTarget:
    """Watch target answering from scripted sockets and executions.

    ``sockets`` are handed out in order; once exhausted, each new connection
    stays silent. ``executions`` are returned in order; the last one repeats.
    Exceptions in either list are raised instead.
    """

    streams_logs: bool = True
    sockets: list[FakeLogSocket | BaseException] = field(default_factory=list)
    executions: list[FakeExecution | BaseException] = field(default_factory=list)
    opened: list[FakeLogSocket] = field(default_factory=list)
    fetch_count: int = 0

    async def open_logs_socket(self, execution_id: str) -> FakeLogSocket:
        item = self.sockets.pop(0) if self.sockets else FakeLogSocket()
        if isinstance(item, BaseException):
            raise item
        self.opened.append(item)
        return item

    async def get_execution(self, execution_id: str) -> FakeExecution:
        self.fetch_count += 1
        index = min(self.fetch_count, len(self.executions)) - 1
        item = self.executions[index] if self.executions else ExecutionResult()
        if isinstance(item, BaseException):
            raise item
        return item

    def result_of(self, execution: FakeExecution) -> ExecutionResult:
        if isinstance(execution, TestSuiteExecution):
            return ExecutionResult(status=execution.status)
        return execution

    def steps_of(self, execution: FakeExecution) -> Sequence[StepExecution]:
        if isinstance(execution, TestSuiteExecution):
            return execution.steps
        return []
