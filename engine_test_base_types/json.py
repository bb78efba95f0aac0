"""JSON encoding of the Engine API models."""

from typing import Any, AnyStr, List

from .pydantic import EngineTestBaseModel


def to_json(
    input: EngineTestBaseModel | AnyStr | List[EngineTestBaseModel | AnyStr] | None,
) -> Any:
    """Convert a model, or a list of them, to its JSON-RPC parameter representation."""
    if input is None:
        return None
    if isinstance(input, list):
        return [to_json(item) for item in input]
    elif isinstance(input, EngineTestBaseModel):
        return input.serialize(mode="json", by_alias=True)
    else:
        return str(input)
