"""Internal models for operations and tool definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, create_model

from .schema import SchemaDescriptor, alias_fields, model_name

LOCATION_KEY = "x-location"


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    BODY = "body"


@dataclass(frozen=True)
class OpenAPIOperation:
    method: str
    path: str
    operation_id: Optional[str]
    summary: str
    description: str
    parameters: List[Dict[str, Any]] = field(default_factory=list)
    shared_parameters: List[Dict[str, Any]] = field(default_factory=list)
    request_body: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ToolField:
    name: str
    location: ParameterLocation
    schema: SchemaDescriptor
    required: bool
    wire_name: str
    description: Optional[str] = None
    explode: bool = True

    @property
    def accepts_null(self) -> bool:
        # a path segment cannot be left out
        return self.schema.nullable and self.location is not ParameterLocation.PATH

    def to_json_schema(self) -> Dict[str, Any]:
        schema = self.schema.to_json_schema()
        if self.description and "description" not in schema:
            schema["description"] = self.description
        schema[LOCATION_KEY] = self.location.value
        return schema


@dataclass(frozen=True)
class ClassifiedParameters:
    path: Tuple[ToolField, ...] = ()
    query: Tuple[ToolField, ...] = ()
    header: Tuple[ToolField, ...] = ()
    body: Tuple[ToolField, ...] = ()
    body_media_type: Optional[str] = None
    body_expanded: bool = False

    def all_fields(self) -> Tuple[ToolField, ...]:
        return (*self.path, *self.query, *self.header, *self.body)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    method: str
    path: str
    parameters: ClassifiedParameters
    operation_id: Optional[str] = None

    @property
    def fields(self) -> Tuple[ToolField, ...]:
        return self.parameters.all_fields()

    def input_schema(self) -> Dict[str, Any]:
        fields = self.fields
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {item.name: item.to_json_schema() for item in fields},
        }
        required = [item.name for item in fields if item.required]
        if required:
            schema["required"] = required
        return schema

    @cached_property
    def input_model(self) -> Type[BaseModel]:
        """Pydantic model validating tool arguments; unknown keys are dropped."""
        fields = alias_fields(
            [
                (
                    item.name,
                    item.schema.annotation(f"{self.name}_{item.name}", nullable=item.accepts_null),
                    item.required,
                    item.description,
                )
                for item in self.fields
            ]
        )
        return create_model(f"{model_name(self.name)}Input", __config__=ConfigDict(extra="ignore"), **fields)

    @property
    def degraded_fields(self) -> List[str]:
        return [item.name for item in self.fields if item.schema.degraded]
