"""Periodic status polling, the fallback signal of an execution watch."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from testkube_run_action.connection import TestkubeAPIError
from testkube_run_action.models.execution import ExecutionResult
from testkube_run_action.models.status import ExecutionStatus, is_terminal

log = logging.getLogger(__name__)

POLL_INTERVAL = 2.0


@dataclass(frozen=True, kw_only=True)
class PollLoop:
    """Fetches the execution status every ``interval`` seconds until terminal.

    Fetch failures never escape: they read as QUEUED and the loop carries on.
    Cancel the task running ``run`` to stop it.
    """

    fetch: Callable[[], Awaitable[ExecutionResult]]
    on_terminal: Callable[[ExecutionResult], None]
    interval: float = POLL_INTERVAL

    async def run(self) -> None:
        """Poll until a terminal status is seen, then report it."""
        while True:
            await asyncio.sleep(self.interval)
            result = await self.poll_once()
            if is_terminal(result.status):
                self.on_terminal(result)
                return

    async def poll_once(self) -> ExecutionResult:
        """Fetch the status once, substituting QUEUED on failure."""
        try:
            return await self.fetch()
        except (TestkubeAPIError, ValidationError) as error:
            log.debug("Status poll failed, assuming queued: %s", error)
            return ExecutionResult(status=ExecutionStatus.QUEUED)
