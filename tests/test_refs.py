"""Tests for $ref resolution."""

from __future__ import annotations

import copy

import pytest

from mailgun_mcp.refs import (
    CIRCULAR_REF_KEY,
    UnresolvedReferenceError,
    check_references,
    lookup_pointer,
    resolve_refs,
)


class TestResolveRefs:
    def test_schema_without_refs_is_returned_unchanged(self):
        document = {"paths": {}}
        schema = {"type": "object", "properties": {"a": {"type": "string"}}, "required": ["a"]}

        assert resolve_refs(document, schema) == schema

    def test_inlines_component_reference(self, document):
        resolved = resolve_refs(document, {"$ref": "#/components/schemas/Message"})

        assert resolved["type"] == "object"
        assert set(resolved["properties"]) == {"to", "subject", "priority"}

    def test_sibling_keywords_override_target(self, document):
        resolved = resolve_refs(
            document,
            {"$ref": "#/components/schemas/Message", "description": "Local text", "required": []},
        )

        assert resolved["description"] == "Local text"
        assert resolved["required"] == []
        assert "to" in resolved["properties"]

    def test_nested_references_are_resolved(self):
        document = {
            "components": {
                "schemas": {
                    "Outer": {"type": "object", "properties": {"inner": {"$ref": "#/components/schemas/Inner"}}},
                    "Inner": {"type": "integer"},
                }
            }
        }

        resolved = resolve_refs(document, {"$ref": "#/components/schemas/Outer"})

        assert resolved["properties"]["inner"] == {"type": "integer"}

    def test_does_not_mutate_document(self, document):
        before = copy.deepcopy(document)

        resolve_refs(document, {"$ref": "#/components/schemas/Message", "description": "x"})

        assert document == before

    def test_cyclic_reference_terminates_with_placeholder(self):
        document = {
            "components": {
                "schemas": {
                    "Node": {
                        "type": "object",
                        "properties": {
                            "value": {"type": "string"},
                            "children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}},
                        },
                    }
                }
            }
        }

        resolved = resolve_refs(document, {"$ref": "#/components/schemas/Node"})

        items = resolved["properties"]["children"]["items"]
        assert items == {CIRCULAR_REF_KEY: "#/components/schemas/Node"}

    def test_mutual_recursion_terminates(self):
        document = {
            "components": {
                "schemas": {
                    "A": {"type": "object", "properties": {"b": {"$ref": "#/components/schemas/B"}}},
                    "B": {"type": "object", "properties": {"a": {"$ref": "#/components/schemas/A"}}},
                }
            }
        }

        resolved = resolve_refs(document, {"$ref": "#/components/schemas/A"})

        assert resolved["properties"]["b"]["properties"]["a"][CIRCULAR_REF_KEY] == "#/components/schemas/A"

    def test_same_reference_in_siblings_is_not_a_cycle(self):
        document = {"components": {"schemas": {"S": {"type": "string"}}}}
        schema = {
            "type": "object",
            "properties": {"a": {"$ref": "#/components/schemas/S"}, "b": {"$ref": "#/components/schemas/S"}},
        }

        resolved = resolve_refs(document, schema)

        assert resolved["properties"] == {"a": {"type": "string"}, "b": {"type": "string"}}

    def test_unresolved_reference_raises(self, document):
        with pytest.raises(UnresolvedReferenceError) as excinfo:
            resolve_refs(document, {"$ref": "#/components/schemas/Missing"})

        assert excinfo.value.ref == "#/components/schemas/Missing"


class TestPointers:
    def test_escaped_tokens_are_decoded(self):
        document = {"paths": {"/a/{b}": {"x~y": 1}}}

        assert lookup_pointer(document, "#/paths/~1a~1{b}/x~0y") == 1

    def test_remote_reference_is_rejected(self):
        with pytest.raises(UnresolvedReferenceError):
            lookup_pointer({}, "other.yaml#/components/schemas/X")

    def test_check_references_finds_dangling_ref(self, document):
        document["paths"]["/v3/{domain}/messages"]["post"]["requestBody"]["content"]["application/json"][
            "schema"
        ] = {"$ref": "#/components/schemas/Nope"}

        with pytest.raises(UnresolvedReferenceError):
            check_references(document)

    def test_check_references_accepts_valid_document(self, document):
        check_references(document)
