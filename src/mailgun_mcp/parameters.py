"""Partition an operation's inputs into path, query, header and body fields."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .models import ClassifiedParameters, OpenAPIOperation, ParameterLocation, ToolField
from .refs import resolve_refs
from .schema import DEGRADED_KEYWORDS, StringSchema, build_schema

logger = logging.getLogger(__name__)

PREFERRED_MEDIA_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)

_PATH_TEMPLATE = re.compile(r"{([^{}]+)}")
_PARAMETER_LOCATIONS = {
    "path": ParameterLocation.PATH,
    "query": ParameterLocation.QUERY,
    "header": ParameterLocation.HEADER,
}


class OperationError(Exception):
    """A single operation is malformed and cannot become a tool."""


def path_template_names(path: str) -> List[str]:
    return _PATH_TEMPLATE.findall(path)


def classify_parameters(document: Dict[str, Any], operation: OpenAPIOperation) -> ClassifiedParameters:
    """Split ``operation`` inputs by location.

    Operation-level parameters shadow path-item-level parameters with the
    same name. Path parameters are always required.
    """
    declared = _merge_parameters(document, operation)

    buckets: Dict[ParameterLocation, List[ToolField]] = {
        location: [] for location in _PARAMETER_LOCATIONS.values()
    }
    for parameter in declared:
        location_name = parameter.get("in")
        if location_name == "cookie":
            logger.debug("Ignoring cookie parameter %s on %s %s", parameter["name"], operation.method, operation.path)
            continue
        location = _PARAMETER_LOCATIONS.get(location_name)
        if location is None:
            raise OperationError(f"parameter {parameter['name']!r} has invalid location {location_name!r}")
        buckets[location].append(_parameter_field(parameter, location))

    template_names = path_template_names(operation.path)
    declared_path = {item.name for item in buckets[ParameterLocation.PATH]}
    for name in declared_path:
        if name not in template_names:
            raise OperationError(f"path parameter {name!r} does not appear in {operation.path!r}")
    for name in template_names:
        if name not in declared_path:
            buckets[ParameterLocation.PATH].append(
                ToolField(
                    name=name,
                    location=ParameterLocation.PATH,
                    schema=StringSchema(),
                    required=True,
                    wire_name=name,
                )
            )

    taken = {item.name for fields in buckets.values() for item in fields}
    body_fields, media_type, expanded = _body_fields(document, operation.request_body, taken)

    return ClassifiedParameters(
        path=tuple(buckets[ParameterLocation.PATH]),
        query=tuple(buckets[ParameterLocation.QUERY]),
        header=tuple(buckets[ParameterLocation.HEADER]),
        body=body_fields,
        body_media_type=media_type,
        body_expanded=expanded,
    )


def _merge_parameters(document: Dict[str, Any], operation: OpenAPIOperation) -> List[Dict[str, Any]]:
    merged: Dict[str, Dict[str, Any]] = {}
    for raw in [*operation.shared_parameters, *operation.parameters]:
        parameter = resolve_refs(document, raw)
        if not isinstance(parameter, dict):
            raise OperationError("parameter is not an object")
        name = parameter.get("name")
        if not name or not isinstance(name, str):
            raise OperationError("parameter without a name")
        merged.pop(name, None)
        merged[name] = parameter
    return list(merged.values())


def _parameter_field(parameter: Dict[str, Any], location: ParameterLocation) -> ToolField:
    schema = parameter.get("schema")
    if schema is None:
        # content-style parameters carry their schema under a media type
        content = parameter.get("content") or {}
        schema = next((media.get("schema") for media in content.values() if isinstance(media, dict)), None)

    required = location is ParameterLocation.PATH or bool(parameter.get("required", False))
    if location is ParameterLocation.PATH and not parameter.get("required", False):
        logger.debug("Path parameter %s marked optional; treating as required", parameter["name"])

    return ToolField(
        name=parameter["name"],
        location=location,
        schema=build_schema(schema if schema is not None else {"type": "string"}),
        required=required,
        wire_name=parameter["name"],
        description=parameter.get("description"),
        explode=bool(parameter.get("explode", parameter.get("style", "form") == "form")),
    )


def _select_media_type(content: Dict[str, Any]) -> Optional[str]:
    for media_type in PREFERRED_MEDIA_TYPES:
        if media_type in content:
            return media_type
    return next(iter(content), None)


def _is_expandable(schema: Any) -> bool:
    if not isinstance(schema, dict):
        return False
    if any(keyword in schema for keyword in DEGRADED_KEYWORDS):
        return False
    if schema.get("type") not in (None, "object"):
        return False
    return isinstance(schema.get("properties"), dict) and bool(schema["properties"])


def _body_fields(
    document: Dict[str, Any],
    request_body: Optional[Dict[str, Any]],
    taken: set,
) -> Tuple[Tuple[ToolField, ...], Optional[str], bool]:
    if not request_body:
        return (), None, False

    body = resolve_refs(document, request_body)
    if not isinstance(body, dict):
        raise OperationError("requestBody is not an object")
    content = body.get("content") or {}
    media_type = _select_media_type(content)
    if media_type is None:
        return (), None, False

    body_required = bool(body.get("required", False))
    schema = (content.get(media_type) or {}).get("schema") or {}

    if not _is_expandable(schema):
        name = "body" if "body" not in taken else "request_body"
        field = ToolField(
            name=name,
            location=ParameterLocation.BODY,
            schema=build_schema(schema) if schema else build_schema({}),
            required=body_required,
            wire_name="body",
            description=body.get("description") or "Request body",
        )
        return (field,), media_type, False

    schema_required = set(schema.get("required") or [])
    fields: List[ToolField] = []
    for name, property_schema in schema["properties"].items():
        descriptor = build_schema(property_schema)
        fields.append(
            ToolField(
                name=f"body_{name}" if name in taken else name,
                location=ParameterLocation.BODY,
                schema=descriptor,
                required=body_required and name in schema_required,
                wire_name=name,
                description=descriptor.description,
            )
        )
    return tuple(fields), media_type, True
