"""Action inputs and their validation."""

import io
from collections.abc import Mapping
from typing import Any, Self

from dotenv import dotenv_values
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class InvalidInputError(ValueError):
    """Raised when inputs do not fit the test being run."""


def parse_env_text(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines (dotenv syntax) into a mapping."""
    if not text.strip():
        return {}
    values = dotenv_values(stream=io.StringIO(text))
    return {key: value or "" for key, value in values.items()}


class ActionInput(BaseModel):
    """Inputs of a single action run.

    Empty strings mean "not provided", mirroring how CI systems pass unset
    inputs.
    """

    test: str = ""
    test_suite: str = ""
    ref: str = ""
    variables: Mapping[str, str] = Field(default_factory=dict)
    secret_variables: Mapping[str, str] = Field(default_factory=dict)
    pre_run_script: str = ""
    namespace: str = ""
    execution_name: str = ""

    url: str = ""
    ws: str = ""
    dashboard_url: str = ""

    organization: str = ""
    environment: str = ""
    token: SecretStr | None = None

    @field_validator("variables", "secret_variables", mode="before")
    @classmethod
    def _parse_env(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return parse_env_text(value)
        return value

    @field_validator("token", mode="before")
    @classmethod
    def _empty_token(cls, value: Any) -> Any:
        return value or None

    @model_validator(mode="after")
    def _check_combination(self) -> Self:
        if not self.test and not self.test_suite:
            raise ValueError("You need to provide test ID or testSuite ID to run")
        if self.test_suite and self.ref:
            raise ValueError("You cannot override Git ref for the test suite")
        if self.test_suite and self.pre_run_script:
            raise ValueError("You cannot override pre-run script for the test suite")
        if (
            bool(self.environment) != bool(self.organization)
            or bool(self.organization) != bool(self.token)
        ):
            raise ValueError(
                "You need to pass both environment, organization and token "
                "parameters when connecting to Cloud"
            )
        if not self.organization and not self.url:
            raise ValueError(
                "You need to either pass URL of Testkube instance, "
                "or credentials for the Cloud"
            )
        return self
