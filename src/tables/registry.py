from __future__ import annotations

from aws_cdk import aws_dynamodb as dynamodb
from constructs import IConstruct

from src.common.errors import ValidationError
from src.tables.shared import HASH_KEY_TYPE, Attribute, AttributeType


class AttributeRegistry:
    """Attribute definitions and the table key schema of one table declaration.

    Both collections only grow. Registering an attribute name twice is a no-op
    when the type matches and an error when it does not.
    """

    def __init__(self, scope: IConstruct) -> None:
        self._scope = scope
        self._definitions: dict[str, AttributeType] = {}
        self._key_schema: list[tuple[str, str]] = []

    def register(self, attribute: Attribute) -> None:
        existing = self._definitions.get(attribute.name)
        if existing is not None and existing != attribute.type:
            raise ValidationError(
                f"Unable to specify {attribute.name} as {attribute.type.value} "
                f"because it was already defined as {existing.value}",
                self._scope,
            )
        if existing is None:
            self._definitions[attribute.name] = attribute.type

    def add_key(self, attribute: Attribute, key_type: str) -> None:
        existing = self.find_key(key_type)
        if existing is not None:
            raise ValidationError(
                f"Unable to set {attribute.name} as a {key_type} key, "
                f"because {existing} is a {key_type} key",
                self._scope,
            )
        self.register(attribute)
        self._key_schema.append((attribute.name, key_type))

    def find_key(self, key_type: str) -> str | None:
        return next((name for name, kind in self._key_schema if kind == key_type), None)

    @property
    def partition_key_name(self) -> str | None:
        return self.find_key(HASH_KEY_TYPE)

    def attribute_type(self, name: str) -> AttributeType | None:
        return self._definitions.get(name)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def render_attribute_definitions(self) -> list[dynamodb.CfnTable.AttributeDefinitionProperty]:
        return [
            dynamodb.CfnTable.AttributeDefinitionProperty(attribute_name=name, attribute_type=kind.value)
            for name, kind in self._definitions.items()
        ]

    def render_key_schema(self) -> list[dynamodb.CfnTable.KeySchemaProperty]:
        return [
            dynamodb.CfnTable.KeySchemaProperty(attribute_name=name, key_type=key_type)
            for name, key_type in self._key_schema
        ]
