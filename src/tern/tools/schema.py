"""Tool schemas backed by pydantic input models."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_core import ErrorDetails

from tern.errors import SchemaValidationError

# pydantic error types that mean "wrong JSON type", keyed to the JSON name.
_TYPE_ERRORS = {
    "string_type": "string",
    "int_type": "integer",
    "int_from_float": "integer",
    "float_type": "number",
    "bool_type": "boolean",
    "list_type": "array",
    "tuple_type": "array",
    "dict_type": "object",
    "model_type": "object",
}


class ToolInput(BaseModel):
    """Base for tool arguments: strict JSON types, unknown keys rejected."""

    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)


class OpenToolInput(ToolInput):
    """Tool arguments that also keep undeclared keys."""

    model_config = ConfigDict(extra="allow")


class EmptyInput(ToolInput):
    """No arguments."""


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _stage(error: ErrorDetails) -> int:
    kind = error["type"]
    if kind == "missing":
        return 0
    if kind in _TYPE_ERRORS or kind.endswith("_type"):
        return 1
    if kind == "extra_forbidden":
        return 3
    return 2


def _reason(error: ErrorDetails) -> str:
    kind = error["type"]
    if kind == "missing":
        return "missing required parameter"
    if kind == "extra_forbidden":
        return "unexpected parameter"
    if _stage(error) == 1:
        expected = _TYPE_ERRORS.get(kind, kind.removesuffix("_type"))
        return f"expected {expected}, got {_describe(error.get('input'))}"
    return error["msg"]


def first_error(model: type[BaseModel], exc: ValidationError) -> SchemaValidationError:
    """Pick the error to report: missing, then type, then constraint, then extra keys.

    Within a stage declared fields come first in declaration order and extra
    keys follow sorted by name.
    """
    declared = list(model.model_fields)

    def _key(error: ErrorDetails) -> tuple[int, int, str]:
        name = str(error["loc"][0]) if error["loc"] else "<arguments>"
        position = declared.index(name) if name in declared else len(declared)
        return _stage(error), position, name

    error = min(exc.errors(), key=_key)
    parameter = str(error["loc"][0]) if error["loc"] else "<arguments>"
    return SchemaValidationError(parameter, _reason(error))


@dataclass(frozen=True)
class ToolSchema:
    """Immutable tool contract: a name, a description and an input model."""

    name: str
    description: str
    input_model: type[BaseModel] = EmptyInput

    @property
    def closed(self) -> bool:
        return self.input_model.model_config.get("extra") != "allow"

    def parameter_names(self) -> list[str]:
        return list(self.input_model.model_fields)

    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema of the arguments object, without pydantic titles."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        schema.pop("description", None)
        schema.setdefault("properties", {})
        for prop in schema["properties"].values():
            prop.pop("title", None)
        return schema

    def to_function(self) -> dict[str, Any]:
        """Render as an OpenAI-compatible function tool declaration."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }

    def validate(self, arguments: Mapping[str, Any]) -> ValidatedArguments:
        if not isinstance(arguments, Mapping):
            raise SchemaValidationError("<arguments>", f"expected object, got {_describe(arguments)}")
        try:
            params = self.input_model.model_validate(dict(arguments))
        except ValidationError as exc:
            raise first_error(self.input_model, exc) from None
        return ValidatedArguments(tool=self.name, params=params)


@dataclass(frozen=True)
class ValidatedArguments(Mapping[str, Any]):
    """A validated input model for one tool, readable as a mapping with defaults applied."""

    tool: str
    params: BaseModel = field(default_factory=EmptyInput)
    _values: Mapping[str, Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_values", MappingProxyType(self.params.model_dump()))

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)
