"""Execution layer turning tool invocations into upstream REST calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .logging import redact_payload
from .models import ToolDefinition, ToolField
from .schema import to_schema_error

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class ExecutionError(Exception):
    pass


class UpstreamUnavailableError(ExecutionError):
    """The upstream could not be reached (DNS, refused connection, timeout)."""


@dataclass(frozen=True)
class UpstreamCredential:
    secret: str = field(repr=False)
    scheme: str = "basic"
    username: str = "api"

    def auth(self) -> Optional[httpx.Auth]:
        if not self.secret:
            return None
        if self.scheme == "bearer":
            return _BearerAuth(self.secret)
        return httpx.BasicAuth(self.username, self.secret)


class _BearerAuth(httpx.Auth):
    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request):  # type: ignore[no-untyped-def]
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class RestExecutor:
    def __init__(
        self,
        base_url: str,
        credential: Optional[UpstreamCredential] = None,
        timeout_seconds: float = 30,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credential = credential
        self.timeout_seconds = timeout_seconds
        self.verify_ssl = verify_ssl
        self._transport = transport
        if credential is None or not credential.secret:
            logger.warning("No upstream credential configured; requests will be unauthenticated")

    def validate(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Check ``arguments`` against the tool's fields and return the accepted values."""
        known = {item.name: item for item in tool.fields}
        unknown = sorted(set(arguments) - set(known))
        if unknown:
            logger.debug("Ignoring unknown arguments for tool=%s: %s", tool.name, unknown)

        supplied = {
            name: value
            for name, value in arguments.items()
            if name in known and (value is not None or known[name].required or known[name].accepts_null)
        }
        try:
            validated = tool.input_model.model_validate(supplied)
        except ValidationError as exc:
            raise to_schema_error(exc, {name: item.schema for name, item in known.items()}) from exc
        return validated.model_dump(by_alias=True, exclude_unset=True)

    def build_request(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> httpx.Request:
        """Assemble the upstream request from already validated arguments."""
        params = tool.parameters

        path = tool.path
        for tool_field in params.path:
            value = quote(_to_text(arguments[tool_field.name]), safe="")
            path = path.replace(f"{{{tool_field.wire_name}}}", value)

        query = self._query_pairs(params.query, arguments)
        headers = {
            tool_field.wire_name: _to_text(arguments[tool_field.name])
            for tool_field in params.header
            if arguments.get(tool_field.name) is not None
        }

        body_kwargs: Dict[str, Any] = {}
        body = self._body(tool, arguments)
        if body is not None:
            media_type = params.body_media_type or JSON_MEDIA_TYPE
            if media_type in FORM_MEDIA_TYPES and isinstance(body, dict):
                body_kwargs["data"] = {
                    key: [_to_text(item) for item in value] if isinstance(value, list) else _to_text(value)
                    for key, value in body.items()
                }
            elif media_type == JSON_MEDIA_TYPE or media_type.endswith("+json"):
                body_kwargs["json"] = body
            else:
                headers["Content-Type"] = media_type
                body_kwargs["content"] = body if isinstance(body, (str, bytes)) else _to_text(body)

        return httpx.Request(
            tool.method.upper(),
            self.base_url + path,
            params=query,
            headers=headers,
            **body_kwargs,
        )

    async def execute(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> UpstreamResponse:
        request = self.build_request(tool, arguments)
        logger.info(
            "Calling upstream %s %s tool=%s payload=%s",
            request.method,
            request.url.path,
            tool.name,
            redact_payload(arguments),
        )

        auth = self.credential.auth() if self.credential else None
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, verify=self.verify_ssl, transport=self._transport
            ) as client:
                response = await client.send(request, auth=auth)
        except httpx.TransportError as exc:
            raise UpstreamUnavailableError(
                f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc}"
            ) from exc

        logger.info("Upstream responded %s for tool=%s", response.status_code, tool.name)
        return UpstreamResponse(status_code=response.status_code, body=self._parse_body(response))

    def _query_pairs(self, fields: Tuple[ToolField, ...], arguments: Dict[str, Any]) -> List[Tuple[str, str]]:
        pairs: List[Tuple[str, str]] = []
        for tool_field in fields:
            if tool_field.name not in arguments or arguments[tool_field.name] is None:
                continue
            value = arguments[tool_field.name]
            if isinstance(value, list):
                if tool_field.explode:
                    pairs.extend((tool_field.wire_name, _to_text(item)) for item in value)
                else:
                    pairs.append((tool_field.wire_name, ",".join(_to_text(item) for item in value)))
            else:
                pairs.append((tool_field.wire_name, _to_text(value)))
        return pairs

    def _body(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> Any:
        params = tool.parameters
        if not params.body:
            return None
        if not params.body_expanded:
            body_field = params.body[0]
            return arguments.get(body_field.name)

        body = {
            tool_field.wire_name: arguments[tool_field.name]
            for tool_field in params.body
            if tool_field.name in arguments
        }
        return body or None

    def _parse_body(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                logger.debug("Upstream declared JSON but sent an unparsable body")
        return response.text

