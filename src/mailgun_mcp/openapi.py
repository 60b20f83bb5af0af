"""OpenAPI document loader and operation parser."""

from __future__ import annotations

import json
import logging
import time
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import yaml

from .models import OpenAPIOperation
from .refs import UnresolvedReferenceError, check_references

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "patch", "head", "options", "trace")
BUNDLED_DOCUMENT = "mailgun-openapi.yaml"


class OpenAPIError(Exception):
    """The OpenAPI document cannot be used at all."""


class DocumentLoadError(OpenAPIError):
    pass


class OpenAPILoader:
    def __init__(self, cache_seconds: int = 3600, timeout_seconds: float = 30) -> None:
        self.cache_seconds = cache_seconds
        self.timeout_seconds = timeout_seconds
        self._cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    async def load(self, location: Optional[str] = None) -> Dict[str, Any]:
        """Load, parse and check a document from a URL, a path, or the bundled copy."""
        if location is None:
            text = (resources.files("mailgun_mcp") / "data" / BUNDLED_DOCUMENT).read_text("utf-8")
            document = self.parse(text, BUNDLED_DOCUMENT)
        elif location.startswith(("http://", "https://")):
            document = await self._load_url(location)
        else:
            path = Path(location)
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise DocumentLoadError(f"Cannot read OpenAPI document {location}: {exc}") from exc
            document = self.parse(text, location)

        self.check(document)
        logger.info(
            "Loaded OpenAPI document %s (%s paths)",
            location or BUNDLED_DOCUMENT,
            len(document["paths"]),
        )
        return document

    async def _load_url(self, url: str) -> Dict[str, Any]:
        cached = self._cache.get(url)
        if cached and time.time() - cached[0] < self.cache_seconds:
            return cached[1]

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise DocumentLoadError(f"Failed to fetch OpenAPI document {url}: {exc}") from exc
        if response.status_code != 200:
            raise DocumentLoadError(f"Failed to fetch OpenAPI document {url} ({response.status_code})")

        data = self.parse(response.text, url)
        self._cache[url] = (time.time(), data)
        return data

    @staticmethod
    def parse(text: str, source: str = "<string>") -> Dict[str, Any]:
        try:
            if source.endswith(".json"):
                data = json.loads(text)
            else:
                # YAML is a superset of JSON
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise DocumentLoadError(f"Cannot parse OpenAPI document {source}: {exc}") from exc
        if not isinstance(data, dict):
            raise DocumentLoadError(f"OpenAPI document {source} is not a mapping")
        return data

    @staticmethod
    def check(document: Dict[str, Any]) -> None:
        if not isinstance(document.get("paths"), dict):
            raise DocumentLoadError("OpenAPI document has no 'paths' mapping")
        try:
            check_references(document)
        except UnresolvedReferenceError as exc:
            raise DocumentLoadError(str(exc)) from exc

    def extract_operations(self, document: Dict[str, Any]) -> List[OpenAPIOperation]:
        operations: List[OpenAPIOperation] = []
        for path, path_item in (document.get("paths") or {}).items():
            if not isinstance(path_item, dict):
                logger.warning("Skipping path %s: path item is not an object", path)
                continue
            shared_parameters = path_item.get("parameters") or []
            for method, operation in path_item.items():
                if method.lower() not in HTTP_METHODS:
                    continue
                if not isinstance(operation, dict):
                    logger.warning("Skipping %s %s: operation is not an object", method.upper(), path)
                    continue
                operations.append(
                    OpenAPIOperation(
                        method=method.lower(),
                        path=path,
                        operation_id=operation.get("operationId"),
                        summary=operation.get("summary") or "",
                        description=operation.get("description") or "",
                        parameters=list(operation.get("parameters") or []),
                        shared_parameters=list(shared_parameters),
                        request_body=operation.get("requestBody"),
                    )
                )
        return operations

    def server_url(self, document: Dict[str, Any]) -> Optional[str]:
        servers = document.get("servers") or []
        if not servers:
            return None
        server = servers[0]
        if isinstance(server, dict):
            return server.get("url")
        return None
