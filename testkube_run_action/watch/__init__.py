"""Execution watching: log stream, status poll and their coordination."""

from testkube_run_action.watch.coordinator import (
    ClosePolicy,
    WatchCoordinator,
    WatchSession,
    WatchTarget,
)
from testkube_run_action.watch.poll import PollLoop
from testkube_run_action.watch.stream import (
    LogMessage,
    StreamListener,
    parse_log_message,
)

__all__ = [
    "ClosePolicy",
    "LogMessage",
    "PollLoop",
    "StreamListener",
    "WatchCoordinator",
    "WatchSession",
    "WatchTarget",
    "parse_log_message",
]
