"""Tests for the attribute registry."""
from __future__ import annotations

import aws_cdk as cdk
import pytest

from src.common.errors import ValidationError
from src.tables.registry import AttributeRegistry
from src.tables.shared import HASH_KEY_TYPE, RANGE_KEY_TYPE, Attribute, AttributeType


class TestAttributeRegistry:
    """Test attribute and key schema registration."""

    def test_register_same_attribute_twice_is_a_noop(self, stack: cdk.Stack) -> None:
        """Registering an attribute again with the same type keeps one definition."""
        registry = AttributeRegistry(stack)
        registry.register(Attribute("pk", AttributeType.STRING))
        registry.register(Attribute("pk", AttributeType.STRING))

        assert len(registry) == 1
        assert "pk" in registry
        assert registry.attribute_type("pk") == AttributeType.STRING

    def test_register_conflicting_type_fails(self, stack: cdk.Stack) -> None:
        """A name can only ever have one type."""
        registry = AttributeRegistry(stack)
        registry.register(Attribute("pk", AttributeType.STRING))

        with pytest.raises(ValidationError, match="Unable to specify pk as N because it was already defined as S"):
            registry.register(Attribute("pk", AttributeType.NUMBER))

    def test_error_carries_construct_path(self, stack: cdk.Stack) -> None:
        """Validation errors point at the construct that declared them."""
        registry = AttributeRegistry(stack)
        registry.register(Attribute("pk", AttributeType.STRING))

        with pytest.raises(ValidationError) as excinfo:
            registry.register(Attribute("pk", AttributeType.BINARY))

        assert excinfo.value.path == "TestStack"
        assert str(excinfo.value).endswith("(at TestStack)")

    def test_add_key(self, stack: cdk.Stack) -> None:
        """Keys are recorded in the key schema and as attribute definitions."""
        registry = AttributeRegistry(stack)
        registry.add_key(Attribute("pk", AttributeType.STRING), HASH_KEY_TYPE)
        registry.add_key(Attribute("sk", AttributeType.NUMBER), RANGE_KEY_TYPE)

        assert registry.partition_key_name == "pk"
        assert registry.find_key(RANGE_KEY_TYPE) == "sk"
        assert [(k.attribute_name, k.key_type) for k in registry.render_key_schema()] == [
            ("pk", "HASH"),
            ("sk", "RANGE"),
        ]
        assert [(a.attribute_name, a.attribute_type) for a in registry.render_attribute_definitions()] == [
            ("pk", "S"),
            ("sk", "N"),
        ]

    def test_duplicate_key_type_fails(self, stack: cdk.Stack) -> None:
        """A table has at most one partition key."""
        registry = AttributeRegistry(stack)
        registry.add_key(Attribute("pk", AttributeType.STRING), HASH_KEY_TYPE)

        with pytest.raises(ValidationError, match="because pk is a HASH key"):
            registry.add_key(Attribute("other", AttributeType.STRING), HASH_KEY_TYPE)

    def test_missing_key(self, stack: cdk.Stack) -> None:
        registry = AttributeRegistry(stack)

        assert registry.partition_key_name is None
        assert registry.find_key(RANGE_KEY_TYPE) is None
