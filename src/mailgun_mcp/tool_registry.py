"""Tool generation from an OpenAPI document."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .models import OpenAPIOperation, ToolDefinition
from .naming import tool_name
from .openapi import OpenAPILoader
from .parameters import OperationError, classify_parameters
from .refs import UnresolvedReferenceError

logger = logging.getLogger(__name__)


class ToolGenerationError(Exception):
    """The document cannot produce a usable tool set."""


class ToolNameCollisionError(ToolGenerationError):
    def __init__(self, name: str, first: OpenAPIOperation, second: OpenAPIOperation) -> None:
        super().__init__(
            f"Tool name {name!r} produced by both {first.method.upper()} {first.path} "
            f"and {second.method.upper()} {second.path}"
        )
        self.name = name


class ToolRegistry:
    def __init__(self, openapi_loader: OpenAPILoader) -> None:
        self.openapi_loader = openapi_loader

    def generate(self, document: Dict[str, Any]) -> List[ToolDefinition]:
        """Build one tool per operation, skipping malformed operations."""
        tools: List[ToolDefinition] = []
        origins: Dict[str, OpenAPIOperation] = {}

        for operation in self.openapi_loader.extract_operations(document):
            try:
                tool = self.build_tool(document, operation)
            except (OperationError, UnresolvedReferenceError, AttributeError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping operation %s %s: %s", operation.method.upper(), operation.path, exc
                )
                continue

            if tool.name in origins:
                raise ToolNameCollisionError(tool.name, origins[tool.name], operation)
            origins[tool.name] = operation

            if tool.degraded_fields:
                logger.debug(
                    "Tool %s has unvalidated fields: %s", tool.name, ", ".join(tool.degraded_fields)
                )
            tools.append(tool)

        if not tools:
            raise ToolGenerationError("OpenAPI document produced no tools")
        return tools

    def build_tool(self, document: Dict[str, Any], operation: OpenAPIOperation) -> ToolDefinition:
        operation_id = operation.operation_id
        if operation_id is not None and not isinstance(operation_id, str):
            raise OperationError(f"operationId must be a string, got {type(operation_id).__name__}")

        parameters = classify_parameters(document, operation)
        return ToolDefinition(
            name=tool_name(operation.method, operation.path, operation_id),
            description=self._describe(operation),
            method=operation.method,
            path=operation.path,
            parameters=parameters,
            operation_id=operation_id,
        )

    def _describe(self, operation: OpenAPIOperation) -> str:
        parts = [text.strip() for text in (operation.summary, operation.description) if text.strip()]
        if len(parts) == 2 and parts[1].startswith(parts[0]):
            parts = parts[1:]
        parts.append(f"{operation.method.upper()} {operation.path}")
        return "\n\n".join(parts)
