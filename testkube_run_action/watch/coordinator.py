"""Watching an execution until it reaches a terminal status.

Two unreliable signals are combined: the log stream, which pushes output and
sometimes the final status, and a status poll. Whichever reports a terminal
status first wins; the session is finalized exactly once and later signals
are ignored.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from testkube_run_action.models.execution import ExecutionResult, StepExecution
from testkube_run_action.models.status import ExecutionStatus, is_terminal
from testkube_run_action.watch.poll import POLL_INTERVAL, PollLoop
from testkube_run_action.watch.stream import LogSocket, StreamListener

log = logging.getLogger(__name__)

RECONNECT_DELAY = 5.0


class ClosePolicy(StrEnum):
    """What a clean close of the log stream means when the run is not done."""

    # Re-check after a delay and reconnect; the service may drop the channel
    # without the execution having finished.
    REVERIFY = "reverify"
    # A clean close ends the watch.
    TRUST = "trust"


class WatchTarget(Protocol):
    """What the coordinator needs to know about the watched entity."""

    streams_logs: bool

    async def get_execution(self, execution_id: str) -> Any: ...

    def result_of(self, execution: Any) -> ExecutionResult: ...

    def steps_of(self, execution: Any) -> Sequence[StepExecution]: ...

    async def open_logs_socket(self, execution_id: str) -> LogSocket: ...


def log_output(text: str) -> None:
    """Default sink for streamed output."""
    log.info("%s", text.rstrip("\n"))


@dataclass(kw_only=True)
class WatchSession:
    """Process-local state of one watch."""

    execution_id: str
    result: asyncio.Future[ExecutionResult]
    reported_steps: defaultdict[ExecutionStatus, set[int]] = field(
        default_factory=lambda: defaultdict(set)
    )
    stream: StreamListener | None = None
    stream_task: asyncio.Task[None] | None = None
    poll_task: asyncio.Task[None] | None = None

    @property
    def finalized(self) -> bool:
        """Whether the session has resolved."""
        return self.result.done()


class WatchCoordinator:
    """Watches one execution; a coordinator is used for a single watch only."""

    def __init__(
        self,
        *,
        target: WatchTarget,
        execution_id: str,
        poll_interval: float = POLL_INTERVAL,
        reconnect_delay: float = RECONNECT_DELAY,
        close_policy: ClosePolicy = ClosePolicy.REVERIFY,
        on_output: Callable[[str], None] = log_output,
    ) -> None:
        self.target = target
        self.execution_id = execution_id
        self.reconnect_delay = reconnect_delay
        self.close_policy = close_policy
        self.on_output = on_output
        self.poll = PollLoop(
            fetch=self.fetch_result,
            on_terminal=self.finalize,
            interval=poll_interval,
        )
        self.session: WatchSession | None = None

    async def watch(self) -> ExecutionResult:
        """Wait until the execution is terminal.

        Returns:
            The first terminal result reported by either signal. Under the
            trusting close policy this may be a non-terminal status.

        """
        if self.session is not None:
            raise RuntimeError("Watch coordinator cannot be reused")

        session = WatchSession(
            execution_id=self.execution_id,
            result=asyncio.get_running_loop().create_future(),
        )
        self.session = session
        session.poll_task = asyncio.create_task(self.poll.run())
        if self.target.streams_logs:
            session.stream_task = asyncio.create_task(self._run_stream())

        try:
            return await session.result
        finally:
            await self._teardown()

    def finalize(self, result: ExecutionResult) -> None:
        """Resolve the watch with ``result`` unless already resolved."""
        session = self.session
        if session is None or session.finalized:
            return

        log.debug("Watch of %s finalized: %s", self.execution_id, result.status)
        session.result.set_result(result)
        # Cancelling the stream task closes its connection.
        for task in (session.poll_task, session.stream_task):
            if task is not None:
                task.cancel()

    async def fetch_result(self) -> ExecutionResult:
        """Fetch the current execution, reporting step progress on the way."""
        execution = await self.target.get_execution(self.execution_id)
        self.report_steps(self.target.steps_of(execution))
        return self.target.result_of(execution)

    def report_steps(self, steps: Sequence[StepExecution]) -> None:
        """Log each step the first time it is seen in a given status."""
        if self.session is None:
            return
        for index, step in enumerate(steps):
            status = step.execution.execution_result.status
            if status is ExecutionStatus.QUEUED:
                continue
            reported = self.session.reported_steps[status]
            if index in reported:
                continue
            reported.add(index)
            log.info("[%s] %s", status, step.step.display_name)

    def _on_stream_terminal(self, result: ExecutionResult) -> None:
        if self.session is None or self.session.finalized:
            return
        if result.status is ExecutionStatus.SUCCEEDED:
            log.info("Test run succeeded")
        else:
            log.info("Test run failed: %s", result.error_message or "failure")
        self.finalize(result)

    def _on_stream_output(self, text: str) -> None:
        if self.session is not None and not self.session.finalized:
            self.on_output(text)

    async def _open_socket(self) -> LogSocket:
        return await self.target.open_logs_socket(self.execution_id)

    async def _run_stream(self) -> None:
        session = self.session
        assert session is not None

        while not session.finalized:
            session.stream = StreamListener(
                open_socket=self._open_socket,
                on_output=self._on_stream_output,
                on_terminal=self._on_stream_terminal,
            )
            was_error = await session.stream.run()
            if session.finalized:
                return

            if was_error:
                log.info("Reconnecting...")
                continue

            result = await self.poll.poll_once()
            if is_terminal(result.status) or self.close_policy is ClosePolicy.TRUST:
                self.finalize(result)
                return

            log.info(
                "Log stream closed while execution is %s, reconnecting in %.0fs",
                result.status,
                self.reconnect_delay,
            )
            await asyncio.sleep(self.reconnect_delay)

    async def _teardown(self) -> None:
        session = self.session
        assert session is not None

        tasks = [t for t in (session.poll_task, session.stream_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if session.stream is not None:
            await session.stream.close()
