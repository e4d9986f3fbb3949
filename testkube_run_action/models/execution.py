"""Pydantic models for Testkube test, suite and execution payloads.

Test suites and their executions exist in two schema versions. The V2 layout
carries one execution per step (``stepResults``); the V3 layout groups step
executions (``executeStepResults``), so a single step may hold several
executions. Both are normalized to V3 on ingestion by the adapters at the
bottom of this module.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Literal

from pydantic import Field, field_validator

from testkube_run_action.models.base import Model
from testkube_run_action.models.status import ExecutionStatus, parse_status


class ExecutionResult(Model):
    """Outcome of one execution as reported by the service."""

    status: ExecutionStatus = ExecutionStatus.QUEUED
    error_message: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> ExecutionStatus:
        return parse_status(value)


class TestExecution(Model):
    """Execution of a single test."""

    __test__ = False

    id: str = ""
    name: str = ""
    execution_result: ExecutionResult = Field(default_factory=ExecutionResult)

    @field_validator("execution_result", mode="before")
    @classmethod
    def _default_result(cls, value: Any) -> Any:
        return {} if value is None else value


class StepDescriptor(Model):
    """What a suite step does: run a named test, or wait."""

    test: str | None = None
    delay: str | None = None

    @field_validator("delay", mode="before")
    @classmethod
    def _delay_to_str(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return f"{value}ms"

    @property
    def display_name(self) -> str:
        """Human-readable step label."""
        if self.delay:
            return f"🕑 {self.delay}"
        return self.test or ""


class StepExecution(Model):
    """One execution inside a suite run, with the step that produced it."""

    step: StepDescriptor = Field(default_factory=StepDescriptor)
    execution: TestExecution = Field(default_factory=TestExecution)


class StepGroupResult(Model):
    """Executions of one suite step (several for grouped steps)."""

    execute: Sequence[StepExecution] = Field(default_factory=list)


class TestSuiteExecution(Model):
    """Execution of a test suite."""

    __test__ = False

    id: str = ""
    name: str = ""
    status: ExecutionStatus = ExecutionStatus.QUEUED
    execute_step_results: Sequence[StepGroupResult] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> ExecutionStatus:
        return parse_status(value)

    @field_validator("execute_step_results", mode="before")
    @classmethod
    def _default_steps(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def steps(self) -> Sequence[StepExecution]:
        """All step executions across all groups, in order."""
        return [step for group in self.execute_step_results for step in group.execute]


class Variable(Model):
    """Execution variable, either inline or backed by a secret."""

    name: str
    type: Literal["basic", "secret"] = "basic"
    value: str | None = None
    secret_ref: Mapping[str, str] | None = None


class ExecutionRequest(Model):
    """Default execution settings stored on a test or suite."""

    negative_test: bool = False
    variables: Mapping[str, Variable] = Field(default_factory=dict)

    @field_validator("negative_test", mode="before")
    @classmethod
    def _default_negative(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("variables", mode="before")
    @classmethod
    def _default_variables(cls, value: Any) -> Any:
        return {} if value is None else value


class TestContent(Model):
    """Content definition of a test (where its files come from)."""

    __test__ = False

    type: str | None = None


class TestDetails(Model):
    """A test definition."""

    __test__ = False

    name: str = ""
    type: str | None = None
    source: str | None = None
    content: TestContent | None = None
    execution_request: ExecutionRequest | None = None


class TestSource(Model):
    """A shared test source definition."""

    __test__ = False

    name: str = ""
    type: str | None = None


class TestSuiteStep(Model):
    """One step of a suite definition."""

    __test__ = False

    stop_on_failure: bool = False
    execute: Sequence[StepDescriptor] = Field(default_factory=list)


class TestSuiteDetails(Model):
    """A test suite definition."""

    __test__ = False

    name: str = ""
    steps: Sequence[TestSuiteStep] = Field(default_factory=list)
    execution_request: ExecutionRequest | None = None


class ContentRequest(Model):
    """Overrides for the content of a test execution."""

    repository: Mapping[str, str]


class RunningContext(Model):
    """Where the execution was triggered from."""

    type: str
    context: str


class ExecutionData(Model):
    """Body of a schedule request for a test or a test suite."""

    name: str | None = None
    pre_run_script: str | None = None
    namespace: str | None = None
    variables: Mapping[str, Variable] | None = None
    content_request: ContentRequest | None = None
    running_context: RunningContext | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase request body, omitting unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def map_execute(execute: Any) -> list[Any]:
    """Convert V2 step targets (``{name}`` / ``{duration}``) to V3 descriptors.

    Entries that are not objects are passed through for validation to reject.
    """
    if not execute:
        return []
    items = execute if isinstance(execute, list) else [execute]
    mapped: list[Any] = []
    for item in items:
        if not isinstance(item, Mapping):
            mapped.append(item)
        elif "name" in item:
            mapped.append({"test": item["name"]})
        elif "duration" in item:
            mapped.append({"delay": item["duration"]})
        else:
            mapped.append(item)
    return mapped


def is_suite_v2(data: Any) -> bool:
    """Check if a suite definition uses the V2 step layout."""
    if not isinstance(data, Mapping):
        return False
    steps = data.get("steps")
    if not steps or not isinstance(steps, list) or not isinstance(steps[0], Mapping):
        return False
    return not isinstance(steps[0].get("execute") or [], list)


def is_suite_execution_v2(data: Any) -> bool:
    """Check if a suite execution uses the V2 step result layout."""
    return isinstance(data, Mapping) and "stepResults" in data


def suite_from_v2(data: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a V2 suite definition payload to the V3 layout."""
    return {
        **data,
        "steps": [
            {
                "stopOnFailure": step.get("stopTestOnFailure", False),
                "execute": map_execute(step.get("execute") or step.get("delay")),
            }
            if isinstance(step, Mapping)
            else step
            for step in data.get("steps") or []
        ],
    }


def step_result_from_v2(result: Any) -> Any:
    """Convert one V2 step result to a V3 step group, if it is an object."""
    if not isinstance(result, Mapping):
        return result
    step = result.get("step") or {}
    if not isinstance(step, Mapping):
        return {"execute": [{"step": step, "execution": result.get("execution")}]}
    execute = map_execute(step.get("execute") or step.get("delay"))
    return {
        "step": {**step, "execute": execute},
        "execute": [
            {
                "execution": result.get("execution"),
                "step": execute[0] if execute else {},
            }
        ],
    }


def suite_execution_from_v2(data: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a V2 suite execution payload to the V3 layout."""
    rest = {key: value for key, value in data.items() if key != "stepResults"}
    results = data.get("stepResults") or []
    if not isinstance(results, list):
        return {**rest, "executeStepResults": results}
    return {
        **rest,
        "executeStepResults": [step_result_from_v2(result) for result in results],
    }


def parse_suite(data: Any) -> TestSuiteDetails:
    """Validate a suite definition payload of either schema version.

    Raises ``pydantic.ValidationError`` for anything that is not a suite,
    including non-object bodies.
    """
    if is_suite_v2(data):
        data = suite_from_v2(data)
    return TestSuiteDetails.model_validate(data)


def parse_suite_execution(data: Any) -> TestSuiteExecution:
    """Validate a suite execution payload of either schema version.

    Raises ``pydantic.ValidationError`` for anything that is not a suite
    execution, including non-object bodies.
    """
    if is_suite_execution_v2(data):
        data = suite_execution_from_v2(data)
    return TestSuiteExecution.model_validate(data)
