"""Base model configuration for Testkube API payloads."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Model(BaseModel):
    """Base model for camelCase API payloads.

    Fields are declared in snake_case and accepted under either name.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
