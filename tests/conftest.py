"""Shared fixtures for mailgun-mcp tests."""

from __future__ import annotations

import copy
from typing import Any, Dict

import pytest

from mailgun_mcp.config import Settings

_DOCUMENT: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Test API", "version": "1.0"},
    "servers": [{"url": "https://api.example.test"}],
    "paths": {
        "/v3/{domain}/messages": {
            "parameters": [
                {"name": "domain", "in": "path", "required": True, "schema": {"type": "string"}},
            ],
            "post": {
                "operationId": "sendMessage",
                "summary": "Send a message",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {
                            "schema": {"$ref": "#/components/schemas/Message"},
                        }
                    },
                },
                "responses": {"200": {"description": "ok"}},
            },
        },
        "/domains/{name}/messages": {
            "get": {
                "summary": "List messages for a domain",
                "parameters": [
                    {"name": "name", "in": "path", "required": False, "schema": {"type": "string"}},
                    {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 100}},
                    {
                        "name": "tags",
                        "in": "query",
                        "schema": {"type": "array", "items": {"type": "string"}},
                    },
                    {"name": "X-Trace", "in": "header", "schema": {"type": "string"}},
                ],
                "responses": {"200": {"description": "ok"}},
            },
        },
    },
    "components": {
        "schemas": {
            "Message": {
                "type": "object",
                "required": ["to"],
                "properties": {
                    "to": {"type": "string"},
                    "subject": {"type": "string"},
                    "priority": {"type": "string", "enum": ["low", "high"]},
                },
            },
        }
    },
}


@pytest.fixture
def document() -> Dict[str, Any]:
    return copy.deepcopy(_DOCUMENT)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        mailgun_api_key="key-test",
        transport="http",
        mcp_json_response=True,
        upstream_base_url="https://api.example.test",
    )
