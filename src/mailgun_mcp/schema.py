"""Schema descriptors built from resolved OpenAPI schema fragments.

Every fragment becomes exactly one descriptor variant. Schemas that use
combinators or types we do not model become :class:`UnvalidatedSchema`,
which only checks that a value has the top-level shape of one of its
declared alternatives. ``descriptor.degraded`` exposes that outcome.

Validation goes through pydantic: each descriptor renders a type annotation
(``StrictStr``, ``Literal[...]``, nested ``create_model`` models and so on)
and pydantic errors are mapped back onto dotted field paths.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import (
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    create_model,
)

from .refs import CIRCULAR_REF_KEY

logger = logging.getLogger(__name__)

# Keywords that switch a schema to the unvalidated variant.
DEGRADED_KEYWORDS: Tuple[str, ...] = ("oneOf", "anyOf", "allOf", "not")

_MODEL_NAME = re.compile(r"\W+")


class SchemaKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ENUM = "enum"
    UNVALIDATED = "unvalidated"


class SchemaValidationError(Exception):
    """Input does not satisfy a tool's input schema."""

    def __init__(self, field_path: str, message: str) -> None:
        super().__init__(f"{field_path}: {message}" if field_path else message)
        self.field_path = field_path
        self.message = message


def _child(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _integral_float(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


Integer = Annotated[StrictInt, BeforeValidator(_integral_float)]
Number = Union[StrictInt, StrictFloat]


def model_name(name: str) -> str:
    return _MODEL_NAME.sub("_", name).strip("_") or "Value"


def alias_fields(entries: Sequence[Tuple[str, Any, bool, Optional[str]]]) -> Dict[str, Any]:
    """``create_model`` field definitions keyed by position, aliased to the real names.

    Property names such as ``from`` or ``o:tag`` are not identifiers, so the
    model attribute is synthetic and validation and dumping go by alias.
    """
    fields: Dict[str, Any] = {}
    for index, (name, annotation, required, description) in enumerate(entries):
        fields[f"field_{index}"] = (
            annotation,
            Field(... if required else None, alias=name, description=description),
        )
    return fields


def error_path(loc: Sequence[Union[str, int]], root: Any, prefix: str = "") -> str:
    """Turn a pydantic error ``loc`` into a dotted path, skipping union member tags."""
    path = prefix
    current: Any = root
    for part in loc:
        if isinstance(current, Mapping):
            path = _child(path, str(part))
            current = current.get(part)
        elif isinstance(current, ObjectSchema) and isinstance(part, str):
            path = _child(path, part)
            current = current.properties.get(part)
        elif isinstance(current, ArraySchema) and isinstance(part, int):
            path = f"{path}[{part}]"
            current = current.items
    return path


def to_schema_error(exc: ValidationError, root: Any, prefix: str = "") -> SchemaValidationError:
    first = exc.errors()[0]
    return SchemaValidationError(error_path(first["loc"], root, prefix), first["msg"])


@dataclass(frozen=True, kw_only=True)
class SchemaDescriptor:
    kind: ClassVar[SchemaKind]

    description: Optional[str] = None
    default: Any = None
    has_default: bool = False
    nullable: bool = False

    @property
    def degraded(self) -> bool:
        return False

    def annotation(self, name: str = "Value", nullable: Optional[bool] = None) -> Any:
        """Pydantic type for values of this schema; ``nullable`` overrides the declared flag."""
        base = self._annotation(name)
        allow_null = self.nullable if nullable is None else nullable
        return Optional[base] if allow_null else base

    def shape_annotation(self) -> Any:
        """Pydantic type checking only the top-level shape."""
        base = self._shape()
        return Optional[base] if self.nullable else base

    def validate(self, value: Any, path: str = "") -> Any:
        adapter: TypeAdapter[Any] = TypeAdapter(self.annotation(path or "Value"))
        try:
            validated = adapter.validate_python(value)
        except ValidationError as exc:
            raise to_schema_error(exc, self, path) from exc
        return adapter.dump_python(validated, by_alias=True, exclude_unset=True)

    def to_json_schema(self) -> Dict[str, Any]:
        schema = self._json_schema()
        if self.description:
            schema["description"] = self.description
        if self.has_default:
            schema["default"] = self.default
        if self.nullable and "type" in schema:
            schema["type"] = [schema["type"], "null"]
        return schema

    def _annotation(self, name: str) -> Any:
        raise NotImplementedError

    def _shape(self) -> Any:
        return self._annotation("Shape")

    def _json_schema(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class StringSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.STRING
    format: Optional[str] = None

    def _annotation(self, name: str) -> Any:
        return StrictStr

    def _json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "string"}
        if self.format:
            schema["format"] = self.format
        return schema


@dataclass(frozen=True, kw_only=True)
class NumberSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.NUMBER

    def _annotation(self, name: str) -> Any:
        return Number

    def _json_schema(self) -> Dict[str, Any]:
        return {"type": "number"}


@dataclass(frozen=True, kw_only=True)
class IntegerSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.INTEGER

    def _annotation(self, name: str) -> Any:
        return Integer

    def _json_schema(self) -> Dict[str, Any]:
        return {"type": "integer"}


@dataclass(frozen=True, kw_only=True)
class BooleanSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.BOOLEAN

    def _annotation(self, name: str) -> Any:
        return StrictBool

    def _json_schema(self) -> Dict[str, Any]:
        return {"type": "boolean"}


@dataclass(frozen=True, kw_only=True)
class EnumSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.ENUM
    values: Tuple[Any, ...] = ()
    base_type: Optional[str] = None

    def _annotation(self, name: str) -> Any:
        if self.values and all(isinstance(item, (str, int, float, bool)) for item in self.values):
            return Literal[self.values]  # type: ignore[valid-type]
        # object or array members cannot be Literal arguments
        return Any

    def _json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"enum": list(self.values)}
        if self.base_type:
            schema["type"] = self.base_type
        return schema


@dataclass(frozen=True, kw_only=True)
class ArraySchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.ARRAY
    items: SchemaDescriptor = field(default_factory=lambda: UnvalidatedSchema(reason="untyped items"))

    def _annotation(self, name: str) -> Any:
        return List[self.items.annotation(f"{name}_item")]  # type: ignore[misc]

    def _shape(self) -> Any:
        return List[Any]

    def _json_schema(self) -> Dict[str, Any]:
        return {"type": "array", "items": self.items.to_json_schema()}


@dataclass(frozen=True, kw_only=True)
class ObjectSchema(SchemaDescriptor):
    kind: ClassVar[SchemaKind] = SchemaKind.OBJECT
    properties: Mapping[str, SchemaDescriptor] = field(default_factory=dict)
    required: FrozenSet[str] = frozenset()

    def _annotation(self, name: str) -> Any:
        if not self.properties:
            return Dict[str, Any]
        fields = alias_fields(
            [
                (prop, descriptor.annotation(f"{name}_{prop}"), prop in self.required, descriptor.description)
                for prop, descriptor in self.properties.items()
            ]
        )
        return create_model(model_name(name), __config__=ConfigDict(extra="allow"), **fields)

    def _shape(self) -> Any:
        return Dict[str, Any]

    def _json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "object"}
        if self.properties:
            schema["properties"] = {
                name: descriptor.to_json_schema() for name, descriptor in self.properties.items()
            }
        if self.required:
            schema["required"] = sorted(self.required)
        return schema


@dataclass(frozen=True, kw_only=True)
class UnvalidatedSchema(SchemaDescriptor):
    """Accepts any value that has the top-level shape of one of ``variants``.

    With no variants every value is accepted.
    """

    kind: ClassVar[SchemaKind] = SchemaKind.UNVALIDATED
    reason: str = "unsupported schema"
    variants: Tuple[SchemaDescriptor, ...] = ()

    @property
    def degraded(self) -> bool:
        return True

    def _annotation(self, name: str) -> Any:
        shapes = tuple(variant.shape_annotation() for variant in self.variants)
        if not shapes:
            return Any
        if len(shapes) == 1:
            return shapes[0]
        return Union[shapes]  # type: ignore[valid-type]

    def _shape(self) -> Any:
        return Any

    def _json_schema(self) -> Dict[str, Any]:
        if self.variants:
            return {"anyOf": [variant.to_json_schema() for variant in self.variants]}
        return {}


_SCALARS = {
    "string": StringSchema,
    "number": NumberSchema,
    "integer": IntegerSchema,
    "boolean": BooleanSchema,
}


def build_schema(schema: Any) -> SchemaDescriptor:
    """Translate one ``$ref``-resolved schema fragment into a descriptor."""
    if not isinstance(schema, Mapping):
        return UnvalidatedSchema(reason="schema is not an object")

    common: Dict[str, Any] = {
        "description": schema.get("description") or schema.get("title"),
        "nullable": bool(schema.get("nullable", False)),
    }
    if "default" in schema:
        common["default"] = schema["default"]
        common["has_default"] = True

    if CIRCULAR_REF_KEY in schema:
        return UnvalidatedSchema(reason="circular reference", **common)

    combinators = [keyword for keyword in DEGRADED_KEYWORDS if keyword in schema]
    if combinators:
        variants = tuple(
            build_schema(option)
            for keyword in combinators
            if keyword != "not"
            for option in (schema.get(keyword) or [])
        )
        logger.debug("Schema uses %s; validation degraded", ", ".join(combinators))
        return UnvalidatedSchema(reason=f"combinator {combinators[0]}", variants=variants, **common)

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        types = [item for item in schema_type if item != "null"]
        if len(types) != len(schema_type):
            common["nullable"] = True
        if len(types) == 1:
            schema_type = types[0]
        else:
            variants = tuple(build_schema({**schema, "type": item}) for item in types)
            return UnvalidatedSchema(reason="multiple types", variants=variants, **common)

    if "enum" in schema and isinstance(schema["enum"], list):
        values = tuple(item for item in schema["enum"] if item is not None)
        if len(values) != len(schema["enum"]):
            common["nullable"] = True
        return EnumSchema(
            values=values,
            base_type=schema_type if isinstance(schema_type, str) else None,
            **common,
        )

    if schema_type is None:
        if "properties" in schema:
            schema_type = "object"
        elif "items" in schema:
            schema_type = "array"
        else:
            return UnvalidatedSchema(reason="untyped schema", **common)

    if schema_type in _SCALARS:
        scalar = _SCALARS[schema_type]
        if scalar is StringSchema:
            return StringSchema(format=schema.get("format"), **common)
        return scalar(**common)

    if schema_type == "array":
        items = schema.get("items")
        return ArraySchema(
            items=build_schema(items) if items is not None else UnvalidatedSchema(reason="untyped items"),
            **common,
        )

    if schema_type == "object":
        properties = schema.get("properties") or {}
        return ObjectSchema(
            properties={name: build_schema(value) for name, value in properties.items()},
            required=frozenset(schema.get("required") or []),
            **common,
        )

    return UnvalidatedSchema(reason=f"unsupported type {schema_type!r}", **common)
