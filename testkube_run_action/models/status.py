"""Execution status tokens and their terminal classification."""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any


class ExecutionStatus(StrEnum):
    """Status of a test or test suite execution, valued by its wire token."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "passed"
    FAILED = "failed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    TIMED_OUT = "timeout"


class StatusClass(StrEnum):
    """Whether a status is final, and which way it went."""

    NON_TERMINAL = "non-terminal"
    SUCCESS = "success"
    FAILURE = "failure"


STATUS_CLASSES: Mapping[ExecutionStatus, StatusClass] = {
    ExecutionStatus.QUEUED: StatusClass.NON_TERMINAL,
    ExecutionStatus.RUNNING: StatusClass.NON_TERMINAL,
    ExecutionStatus.SUCCEEDED: StatusClass.SUCCESS,
    ExecutionStatus.FAILED: StatusClass.FAILURE,
    ExecutionStatus.ABORTED: StatusClass.FAILURE,
    ExecutionStatus.CANCELLED: StatusClass.FAILURE,
    ExecutionStatus.TIMED_OUT: StatusClass.FAILURE,
}


def parse_status(token: Any) -> ExecutionStatus:
    """Parse a raw status token.

    Missing or unrecognized tokens are read as QUEUED, so the watcher keeps
    waiting for a later recognized status instead of failing.
    """
    if isinstance(token, ExecutionStatus):
        return token
    try:
        return ExecutionStatus(token)
    except ValueError:
        return ExecutionStatus.QUEUED


def classify_status(status: ExecutionStatus | str | None) -> StatusClass:
    """Classify a status (or raw token) as non-terminal, success or failure."""
    return STATUS_CLASSES[parse_status(status)]


def is_terminal(status: ExecutionStatus | str | None) -> bool:
    """Check if no further state changes follow this status."""
    return classify_status(status) is not StatusClass.NON_TERMINAL


def is_failure(status: ExecutionStatus | str | None) -> bool:
    """Check if the status is a terminal failure of any kind."""
    return classify_status(status) is StatusClass.FAILURE
