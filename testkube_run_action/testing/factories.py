"""Test factories for generating test data."""

from polyfactory import Use
from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory

from testkube_run_action.models.execution import (
    ExecutionResult,
    StepDescriptor,
    StepExecution,
    StepGroupResult,
    TestExecution,
    TestSuiteExecution,
)
from testkube_run_action.models.status import ExecutionStatus
from testkube_run_action.results import Verdict


class ExecutionResultFactory(ModelFactory[ExecutionResult]):
    """Factory for ExecutionResult."""

    error_message = None


class ExecutionFactory(ModelFactory[TestExecution]):
    """Factory for TestExecution."""

    __model__ = TestExecution

    execution_result = Use(ExecutionResultFactory.build)


class StepDescriptorFactory(ModelFactory[StepDescriptor]):
    """Factory for StepDescriptor of a test step."""

    delay = None


class StepExecutionFactory(ModelFactory[StepExecution]):
    """Factory for StepExecution."""

    step = Use(StepDescriptorFactory.build)
    execution = Use(ExecutionFactory.build)


class StepGroupResultFactory(ModelFactory[StepGroupResult]):
    """Factory for StepGroupResult."""

    execute = Use(lambda: [StepExecutionFactory.build()])


class SuiteExecutionFactory(ModelFactory[TestSuiteExecution]):
    """Factory for TestSuiteExecution."""

    __model__ = TestSuiteExecution

    execute_step_results = Use(list[StepGroupResult])


class VerdictFactory(DataclassFactory[Verdict]):
    """Factory for Verdict."""

    __model__ = Verdict

    status = ExecutionStatus.SUCCEEDED
    error_message = ""
