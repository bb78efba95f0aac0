"""Base pydantic classes used to define the Engine API models."""

from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Model = TypeVar("Model", bound=BaseModel)


class EngineTestBaseModel(BaseModel):
    """Base model for all models exchanged with the client under test."""

    def serialize(
        self,
        mode: Literal["json", "python"],
        by_alias: bool,
        exclude_none: bool = True,
    ) -> dict[str, Any]:
        """
        Serialize the model to the specified format with the given parameters.

        :param mode: `json` returns only JSON serializable types, `python` may return any
            Python object.
        :param by_alias: Whether to use aliases for field names.
        :param exclude_none: Whether to exclude fields with None values, default is True.
        """
        return self.model_dump(mode=mode, by_alias=by_alias, exclude_none=exclude_none)


class CopyValidateModel(EngineTestBaseModel):
    """Model that supports copying with validation."""

    def copy(self: Model, **kwargs) -> Model:
        """Create a copy of the model with the updated fields that are validated."""
        return self.__class__(**(self.model_dump(exclude_unset=True) | kwargs))


class CamelModel(CopyValidateModel):
    """
    A base model that converts field names to camel case when serializing.

    For example, the field name `blob_gas_used` in a Python model is represented as
    `blobGasUsed` when it is sent to the client.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
    )
