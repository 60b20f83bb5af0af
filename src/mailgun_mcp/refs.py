"""Local ``$ref`` resolution for OpenAPI documents."""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterator, List

CIRCULAR_REF_KEY = "x-circular-ref"


class UnresolvedReferenceError(Exception):
    """A ``$ref`` pointer does not lead to a node inside the document."""

    def __init__(self, ref: str, reason: str = "target not found") -> None:
        super().__init__(f"Cannot resolve $ref {ref!r}: {reason}")
        self.ref = ref


def lookup_pointer(document: Dict[str, Any], ref: str) -> Any:
    """Return the node a local JSON pointer (``#/a/b``) refers to."""
    if not isinstance(ref, str) or not ref.startswith("#"):
        raise UnresolvedReferenceError(str(ref), "only local references are supported")

    node: Any = document
    pointer = ref[1:]
    if not pointer:
        return node
    if not pointer.startswith("/"):
        raise UnresolvedReferenceError(ref, "malformed JSON pointer")

    for raw_token in pointer[1:].split("/"):
        token = raw_token.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            raise UnresolvedReferenceError(ref)
    return node


def resolve_refs(document: Dict[str, Any], fragment: Any) -> Any:
    """Inline every ``$ref`` reachable from ``fragment``.

    Keywords written next to a ``$ref`` are merged over the target's keywords,
    local ones winning. A reference that reappears along the current walk is
    a cycle; it is replaced by a ``{"x-circular-ref": pointer}`` placeholder
    instead of being expanded again. The input is never mutated.
    """
    return _resolve(document, fragment, frozenset())


def _resolve(document: Dict[str, Any], node: Any, seen: FrozenSet[str]) -> Any:
    if isinstance(node, list):
        return [_resolve(document, item, seen) for item in node]
    if not isinstance(node, dict):
        return node

    ref = node.get("$ref")
    if not isinstance(ref, str):
        return {key: _resolve(document, value, seen) for key, value in node.items()}

    siblings = {key: value for key, value in node.items() if key != "$ref"}
    if ref in seen:
        placeholder: Dict[str, Any] = {CIRCULAR_REF_KEY: ref}
        placeholder.update(_resolve(document, siblings, seen))
        return placeholder

    target = _resolve(document, lookup_pointer(document, ref), seen | {ref})
    resolved_siblings = _resolve(document, siblings, seen)
    if not isinstance(target, dict):
        return target if not resolved_siblings else resolved_siblings

    merged = dict(target)
    merged.update(resolved_siblings)
    return merged


def iter_refs(node: Any) -> Iterator[str]:
    """Yield every ``$ref`` string found anywhere under ``node``."""
    stack: List[Any] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            ref = current.get("$ref")
            if isinstance(ref, str):
                yield ref
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)


def check_references(document: Dict[str, Any]) -> None:
    """Raise :class:`UnresolvedReferenceError` for the first dangling ``$ref``."""
    for ref in iter_refs(document):
        lookup_pointer(document, ref)
