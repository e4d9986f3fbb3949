"""Tests and test suites as things that can be scheduled and watched."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from testkube_run_action.connection import Connection
from testkube_run_action.models.execution import (
    ExecutionData,
    ExecutionResult,
    StepExecution,
    TestDetails,
    TestExecution,
    TestSuiteDetails,
    TestSuiteExecution,
)
from testkube_run_action.results import Verdict, single_test_verdict, suite_verdict
from testkube_run_action.watch import ClosePolicy, WatchCoordinator
from testkube_run_action.watch.poll import POLL_INTERVAL
from testkube_run_action.watch.stream import LogSocket

DetailsT = TypeVar("DetailsT")
ExecutionT = TypeVar("ExecutionT")


@dataclass(frozen=True, kw_only=True)
class Entity(ABC, Generic[DetailsT, ExecutionT]):
    """A schedulable Testkube object.

    Generic type DetailsT is the definition payload and ExecutionT the
    execution payload of the entity kind.
    """

    client: Connection
    id: str
    close_policy: ClosePolicy = ClosePolicy.REVERIFY
    poll_interval: float = POLL_INTERVAL

    streams_logs: bool = False

    @property
    @abstractmethod
    def dashboard_path(self) -> str:
        """Dashboard path prefix listing executions of this entity."""

    @abstractmethod
    async def get(self) -> DetailsT:
        """Fetch the definition."""

    @abstractmethod
    async def schedule(self, data: ExecutionData) -> ExecutionT:
        """Schedule a new execution."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> ExecutionT:
        """Fetch the current state of an execution."""

    @abstractmethod
    def result_of(self, execution: ExecutionT) -> ExecutionResult:
        """Current status of an execution."""

    @abstractmethod
    def get_result(self, execution: ExecutionT) -> Verdict:
        """Aggregate verdict of a finished execution."""

    def steps_of(self, execution: ExecutionT) -> Sequence[StepExecution]:
        """Step executions to report progress for."""
        return []

    async def open_logs_socket(self, execution_id: str) -> LogSocket:
        """Open the log stream of an execution."""
        return await self.client.open_logs_socket(execution_id)

    def execution_url(self, execution_id: str) -> str | None:
        """Dashboard URL of an execution, when the dashboard is known."""
        if not self.client.config.dashboard:
            return None
        return f"{self.client.config.dashboard}/{self.dashboard_path}/{execution_id}"

    async def watch_execution(self, execution_id: str) -> ExecutionResult:
        """Wait until the execution reaches a terminal status."""
        coordinator = WatchCoordinator(
            target=self,
            execution_id=execution_id,
            poll_interval=self.poll_interval,
            close_policy=self.close_policy,
        )
        return await coordinator.watch()


@dataclass(frozen=True, kw_only=True)
class TestEntity(Entity[TestDetails, TestExecution]):
    """A single test; its logs are streamed while it runs."""

    __test__ = False

    streams_logs: bool = True

    @property
    def dashboard_path(self) -> str:
        return f"tests/executions/{self.id}/execution"

    async def get(self) -> TestDetails:
        return await self.client.get_test_details(self.id)

    async def schedule(self, data: ExecutionData) -> TestExecution:
        return await self.client.schedule_test_execution(self.id, data)

    async def get_execution(self, execution_id: str) -> TestExecution:
        return await self.client.get_test_execution_details(execution_id)

    def result_of(self, execution: TestExecution) -> ExecutionResult:
        return execution.execution_result

    def get_result(self, execution: TestExecution) -> Verdict:
        return single_test_verdict(execution)


@dataclass(frozen=True, kw_only=True)
class TestSuiteEntity(Entity[TestSuiteDetails, TestSuiteExecution]):
    """A test suite; progress is reported per step from polling."""

    __test__ = False

    @property
    def dashboard_path(self) -> str:
        return f"test-suites/executions/{self.id}/execution"

    async def get(self) -> TestSuiteDetails:
        return await self.client.get_test_suite_details(self.id)

    async def schedule(self, data: ExecutionData) -> TestSuiteExecution:
        return await self.client.schedule_test_suite_execution(self.id, data)

    async def get_execution(self, execution_id: str) -> TestSuiteExecution:
        return await self.client.get_test_suite_execution_details(execution_id)

    def result_of(self, execution: TestSuiteExecution) -> ExecutionResult:
        return ExecutionResult(status=execution.status)

    def steps_of(self, execution: TestSuiteExecution) -> Sequence[StepExecution]:
        return execution.steps

    def get_result(self, execution: TestSuiteExecution) -> Verdict:
        return suite_verdict(execution)
