"""Reduction of execution payloads into a single verdict."""

from collections.abc import Iterable
from dataclasses import dataclass

from testkube_run_action.models.execution import (
    ExecutionResult,
    StepExecution,
    TestExecution,
    TestSuiteExecution,
)
from testkube_run_action.models.status import ExecutionStatus, is_failure

DEFAULT_FAILURE_MESSAGE = "failure"


@dataclass(frozen=True, kw_only=True)
class Verdict:
    """Aggregate status of an execution and its failure message.

    ``error_message`` is always a string; it is empty when the status is not
    a failure or when no failed step reported a message.
    """

    status: ExecutionStatus
    error_message: str = ""

    @property
    def display_message(self) -> str:
        """Error message to show, falling back to a generic one."""
        return self.error_message or DEFAULT_FAILURE_MESSAGE


def _failure_message(result: ExecutionResult) -> str:
    if is_failure(result.status) and result.error_message:
        return result.error_message
    return ""


def join_step_errors(steps: Iterable[StepExecution]) -> str:
    """Join the messages of failed steps, in step order."""
    messages = (_failure_message(step.execution.execution_result) for step in steps)
    return ", ".join(message for message in messages if message)


def single_test_verdict(execution: TestExecution) -> Verdict:
    """Verdict of a single test execution."""
    result = execution.execution_result
    return Verdict(status=result.status, error_message=_failure_message(result))


def suite_verdict(execution: TestSuiteExecution) -> Verdict:
    """Verdict of a suite execution.

    The status is the one computed by the service for the whole suite; only
    the message is derived, from the failed steps across all step groups.
    """
    return Verdict(
        status=execution.status,
        error_message=join_step_errors(execution.steps),
    )

