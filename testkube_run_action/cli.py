"""CLI entry point for running a Testkube test or test suite."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from testkube_run_action.connection import (
    ConfigurationError,
    Connection,
    TestkubeAPIError,
    resolve_config,
)
from testkube_run_action.entities import Entity, TestEntity, TestSuiteEntity
from testkube_run_action.models.execution import (
    ContentRequest,
    ExecutionData,
    RunningContext,
    TestDetails,
    TestSuiteDetails,
    Variable,
)
from testkube_run_action.models.input import ActionInput, InvalidInputError
from testkube_run_action.models.status import ExecutionStatus
from testkube_run_action.results import Verdict
from testkube_run_action.watch import ClosePolicy

GIT_SOURCE_TYPES = frozenset(["git", "git-dir", "git-file"])

# Give the service time to settle the execution record after it ends.
RESULT_SETTLE_DELAY = 0.5

# (flag, GitHub Actions input name, help)
ARGUMENTS: Sequence[tuple[str, str, str]] = (
    ("--test", "test", "ID of the test to run"),
    ("--test-suite", "testSuite", "ID of the test suite to run"),
    ("--ref", "ref", "Git revision to run the test against"),
    ("--variables", "variables", "Variables in dotenv format"),
    ("--secret-variables", "secretVariables", "Secret variables in dotenv format"),
    ("--pre-run-script", "preRunScript", "Script to run before the test"),
    ("--namespace", "namespace", "Namespace to run the execution in"),
    ("--execution-name", "executionName", "Custom name of the execution"),
    ("--url", "url", "URL of the Testkube instance API"),
    ("--ws", "ws", "URL of the Testkube WebSocket API"),
    ("--dashboard-url", "dashboardUrl", "URL of the Testkube dashboard"),
    ("--organization", "organization", "Testkube Cloud organization ID"),
    ("--environment", "environment", "Testkube Cloud environment ID"),
    ("--token", "token", "Testkube Cloud API token"),
)

STATUS_SYMBOLS = {
    ExecutionStatus.SUCCEEDED: "✔",
    ExecutionStatus.CANCELLED: "×",
    ExecutionStatus.ABORTED: "×",
}


def action_env_name(input_name: str) -> str:
    """Environment variable GitHub Actions uses to pass an input."""
    return f"INPUT_{input_name.replace(' ', '_').upper()}"


def log_header(log: logging.Logger, title: str) -> None:
    """Log a section header."""
    log.info("⸻ %s", title)


def log_verdict(log: logging.Logger, verdict: Verdict, negative_test: bool) -> None:
    """Log the human-readable verdict of a finished execution."""
    symbol = STATUS_SYMBOLS.get(verdict.status, "×")
    if verdict.status is ExecutionStatus.SUCCEEDED:
        log.info("%s The run was successful", symbol)
    elif verdict.status in (ExecutionStatus.CANCELLED, ExecutionStatus.ABORTED):
        log.info("%s The run has been cancelled", symbol)
    else:
        log.info("%s The run has failed: %s", symbol, verdict.display_message)

    if negative_test:
        if verdict.status is ExecutionStatus.SUCCEEDED:
            log.info("  Test run was expected to fail, and it failed as expected")
        elif verdict.status is ExecutionStatus.FAILED:
            log.info("  Test run was expected to fail, but it succeeded")


def format_variables(
    variables: Mapping[str, str], secret_variables: Mapping[str, str]
) -> dict[str, Variable]:
    """Build execution variables from plain and secret inputs."""
    formatted = {
        name: Variable(name=name, type="basic", value=value)
        for name, value in variables.items()
    }
    formatted.update(
        {
            name: Variable(name=name, type="secret", value=value)
            for name, value in secret_variables.items()
        }
    )
    return formatted


def running_context(env: Mapping[str, str]) -> RunningContext:
    """Describe the CI run triggering the execution."""
    return RunningContext(
        type="githubaction",
        context=(
            f"{env.get('GITHUB_SERVER_URL', '')}/{env.get('GITHUB_REPOSITORY', '')}"
            f"/actions/runs/{env.get('GITHUB_RUN_ID', '')}"
        ),
    )


def build_execution_data(
    action_input: ActionInput,
    details: TestDetails | TestSuiteDetails,
    env: Mapping[str, str],
) -> ExecutionData:
    """Build the schedule request from inputs and the entity's defaults."""
    variables = format_variables(action_input.variables, action_input.secret_variables)
    if variables and details.execution_request:
        variables = {**details.execution_request.variables, **variables}

    return ExecutionData(
        name=action_input.execution_name or None,
        pre_run_script=action_input.pre_run_script or None,
        namespace=action_input.namespace or None,
        variables=variables or None,
        content_request=(
            ContentRequest(repository={"commit": action_input.ref})
            if action_input.ref
            else None
        ),
        running_context=running_context(env),
    )


async def ensure_git_source(client: Connection, details: TestDetails) -> None:
    """Check that a test can be run against a Git revision.

    Raises:
        InvalidInputError: If neither the test content nor its source is Git

    """
    content_type = details.content.type if details.content else None
    if not content_type and details.source:
        content_type = (await client.get_source_details(details.source)).type
    if content_type not in GIT_SOURCE_TYPES:
        raise InvalidInputError(
            "Git revision provided, but the test is not sourced from Git."
        )


def format_output(
    execution_id: str,
    execution_name: str,
    verdict: Verdict,
    dashboard_url: str | None,
) -> dict[str, Any]:
    """Format the verdict for JSON output."""
    return {
        "execution_id": execution_id,
        "execution_name": execution_name,
        "status": str(verdict.status),
        "passed": verdict.status is ExecutionStatus.SUCCEEDED,
        "error_message": verdict.error_message or None,
        "dashboard_url": dashboard_url,
    }


async def run_entity(
    entity: Entity[Any, Any],
    action_input: ActionInput,
    env: Mapping[str, str],
) -> int:
    """Schedule an execution of the entity, watch it and report the verdict."""
    log = logging.getLogger("testkube_run_action")

    log_header(log, "Obtaining details")
    details = await entity.get()
    if action_input.ref and isinstance(details, TestDetails):
        await ensure_git_source(entity.client, details)

    log_header(log, "Scheduling test execution")
    execution = await entity.schedule(
        build_execution_data(action_input, details, env)
    )
    log.info("Execution scheduled: %s (%s)", execution.name, execution.id)
    dashboard_url = entity.execution_url(execution.id)
    if dashboard_url:
        log.info("Dashboard URL: %s", dashboard_url)

    log_header(log, "Attaching to logs")
    await entity.watch_execution(execution.id)

    log_header(log, "Obtaining results")
    await asyncio.sleep(RESULT_SETTLE_DELAY)
    verdict = entity.get_result(await entity.get_execution(execution.id))

    negative_test = bool(
        details.execution_request and details.execution_request.negative_test
    )
    log_verdict(log, verdict, negative_test)
    print(
        json.dumps(
            format_output(execution.id, execution.name, verdict, dashboard_url),
            indent=2,
        )
    )

    return 0 if verdict.status is ExecutionStatus.SUCCEEDED else 1


async def run(
    action_input: ActionInput,
    close_policy: ClosePolicy = ClosePolicy.REVERIFY,
    env: Mapping[str, str] | None = None,
) -> int:
    """Run the requested test or suite and return exit code."""
    log = logging.getLogger("testkube_run_action")
    env = os.environ if env is None else env

    try:
        config = await resolve_config(action_input)
        async with Connection.from_config(config) as client:
            entity: Entity[Any, Any]
            if action_input.test:
                entity = TestEntity(
                    client=client, id=action_input.test, close_policy=close_policy
                )
            else:
                entity = TestSuiteEntity(
                    client=client, id=action_input.test_suite, close_policy=close_policy
                )
            return await run_entity(entity, action_input, env)
    except (TestkubeAPIError, ConfigurationError, InvalidInputError) as error:
        log.error("Error: %s", error)
        return 1
    except ValidationError as error:
        log.error("Error: unexpected response from Testkube: %s", error)
        return 1


def parse_action_input(args: argparse.Namespace) -> ActionInput:
    """Build the action input from parsed arguments."""
    return ActionInput(
        **{
            key: value
            for key, value in vars(args).items()
            if key in ActionInput.model_fields
        }
    )


def build_parser(env: Mapping[str, str]) -> argparse.ArgumentParser:
    """Create the argument parser; defaults come from action input variables."""
    parser = argparse.ArgumentParser(
        description="Run a Testkube test or test suite and wait for its result"
    )
    for flag, input_name, help_text in ARGUMENTS:
        parser.add_argument(
            flag,
            default=env.get(action_env_name(input_name), ""),
            help=f"{help_text} (env: {action_env_name(input_name)})",
        )
    parser.add_argument(
        "--close-policy",
        type=ClosePolicy,
        choices=list(ClosePolicy),
        default=env.get(action_env_name("closePolicy")) or ClosePolicy.REVERIFY,
        help="How to treat a log stream that closes before the run is finished",
    )
    return parser


def main() -> None:
    """CLI entry point."""
    args = build_parser(os.environ).parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    log = logging.getLogger("testkube_run_action")

    try:
        action_input = parse_action_input(args)
    except ValidationError as error:
        for detail in error.errors():
            log.error("Error: %s", detail["msg"])
        sys.exit(1)

    exit_code = asyncio.run(
        run(action_input, close_policy=ClosePolicy(args.close_policy))
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
