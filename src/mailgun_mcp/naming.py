"""Deterministic, protocol-legal tool names."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

MAX_TOOL_NAME_LENGTH = 64
HASH_SUFFIX_LENGTH = 8

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_ILLEGAL = re.compile(r"[^A-Za-z0-9_-]+")
_REPEATED_SEPARATORS = re.compile(r"([_-])[_-]+")


def _collapse(name: str) -> str:
    return _REPEATED_SEPARATORS.sub(r"\1", name).strip("_-")


def truncate_name(name: str, limit: int = MAX_TOOL_NAME_LENGTH) -> str:
    """Shorten ``name`` to ``limit`` characters keeping a content hash suffix."""
    if len(name) <= limit:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:HASH_SUFFIX_LENGTH]
    head = name[: limit - HASH_SUFFIX_LENGTH - 1].rstrip("_-")
    return f"{head}-{digest}"


def sanitize_operation_id(operation_id: str) -> str:
    return truncate_name(_collapse(_ILLEGAL.sub("_", operation_id.strip())))


def sanitize_path(method: str, path: str) -> str:
    raw = f"{method}-{path}".lower()
    raw = re.sub(r"[/{}]", "-", raw)
    raw = re.sub(r"[^a-z0-9_-]", "", raw)
    return truncate_name(_collapse(raw))


def tool_name(method: str, path: str, operation_id: Optional[str] = None) -> str:
    """Name for an operation: its ``operationId`` if usable, else method + path."""
    if operation_id:
        name = sanitize_operation_id(operation_id)
        if name:
            return name
    name = sanitize_path(method, path)
    return name or truncate_name(method.lower() or "operation")
