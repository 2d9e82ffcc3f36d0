from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from aws_cdk import aws_dynamodb as dynamodb
from constructs import IConstruct

from src.common.errors import ValidationError
from src.tables.registry import AttributeRegistry
from src.tables.shared import (
    HASH_KEY_TYPE,
    MAX_LOCAL_SECONDARY_INDEX_COUNT,
    MAX_NON_KEY_ATTRIBUTES,
    RANGE_KEY_TYPE,
    Attribute,
    BillingMode,
    ProjectionType,
    SchemaOptions,
)

DEFAULT_CAPACITY = 5


@dataclass(frozen=True)
class GlobalSecondaryIndexProps:
    index_name: str
    partition_key: Attribute
    sort_key: Attribute | None = None
    projection_type: ProjectionType | None = None
    non_key_attributes: Sequence[str] | None = None
    read_capacity: int | None = None
    write_capacity: int | None = None
    max_read_request_units: int | None = None
    max_write_request_units: int | None = None
    contributor_insights_enabled: bool | None = None


@dataclass(frozen=True)
class LocalSecondaryIndexProps:
    index_name: str
    sort_key: Attribute
    projection_type: ProjectionType | None = None
    non_key_attributes: Sequence[str] | None = None


def validate_provisioning(
    scope: IConstruct,
    billing_mode: BillingMode,
    read_capacity: int | None,
    write_capacity: int | None,
) -> None:
    """Capacity can only be provisioned on PROVISIONED tables."""
    if billing_mode == BillingMode.PAY_PER_REQUEST and (read_capacity is not None or write_capacity is not None):
        raise ValidationError(
            "you cannot provision read and write capacity for a table with PAY_PER_REQUEST billing mode",
            scope,
        )


def render_provisioned_throughput(
    billing_mode: BillingMode,
    read_capacity: int | None,
    write_capacity: int | None,
) -> dynamodb.CfnTable.ProvisionedThroughputProperty | None:
    if billing_mode == BillingMode.PAY_PER_REQUEST:
        return None
    return dynamodb.CfnTable.ProvisionedThroughputProperty(
        read_capacity_units=read_capacity or DEFAULT_CAPACITY,
        write_capacity_units=write_capacity or DEFAULT_CAPACITY,
    )


def render_on_demand_throughput(
    billing_mode: BillingMode,
    max_read_request_units: int | None,
    max_write_request_units: int | None,
) -> dynamodb.CfnTable.OnDemandThroughputProperty | None:
    if billing_mode == BillingMode.PROVISIONED or not (max_read_request_units or max_write_request_units):
        return None
    return dynamodb.CfnTable.OnDemandThroughputProperty(
        max_read_request_units=max_read_request_units or None,
        max_write_request_units=max_write_request_units or None,
    )


class IndexBuilder:
    """Builds global and local secondary index definitions for one table.

    Index key attributes go through the table's ``AttributeRegistry`` so the
    attribute definitions stay deduplicated across table and index keys.
    """

    def __init__(
        self,
        scope: IConstruct,
        registry: AttributeRegistry,
        billing_mode: BillingMode,
        table_schema: SchemaOptions,
    ) -> None:
        self._scope = scope
        self._registry = registry
        self._billing_mode = billing_mode
        self._table_schema = table_schema
        self._global_indexes: list[dynamodb.CfnTable.GlobalSecondaryIndexProperty] = []
        self._local_indexes: list[dynamodb.CfnTable.LocalSecondaryIndexProperty] = []
        self._schemas: dict[str, SchemaOptions] = {}
        self._non_key_attributes: set[str] = set()

    @property
    def has_index(self) -> bool:
        return len(self._global_indexes) + len(self._local_indexes) > 0

    @property
    def global_index_names(self) -> list[str]:
        return [gsi.index_name for gsi in self._global_indexes]

    @property
    def local_index_names(self) -> list[str]:
        return [lsi.index_name for lsi in self._local_indexes]

    def add_global(self, props: GlobalSecondaryIndexProps) -> dynamodb.CfnTable.GlobalSecondaryIndexProperty:
        validate_provisioning(self._scope, self._billing_mode, props.read_capacity, props.write_capacity)
        self._validate_index_name(props.index_name)

        key_schema = self._build_key_schema(props.partition_key, props.sort_key)
        projection = self._build_projection(props.projection_type, props.non_key_attributes)

        gsi = dynamodb.CfnTable.GlobalSecondaryIndexProperty(
            index_name=props.index_name,
            key_schema=key_schema,
            projection=projection,
            contributor_insights_specification=(
                dynamodb.CfnTable.ContributorInsightsSpecificationProperty(
                    enabled=props.contributor_insights_enabled,
                )
                if props.contributor_insights_enabled is not None
                else None
            ),
            provisioned_throughput=render_provisioned_throughput(
                self._billing_mode, props.read_capacity, props.write_capacity,
            ),
            on_demand_throughput=render_on_demand_throughput(
                self._billing_mode, props.max_read_request_units, props.max_write_request_units,
            ),
        )
        self._global_indexes.append(gsi)
        self._schemas[props.index_name] = SchemaOptions(props.partition_key, props.sort_key)
        return gsi

    def add_local(self, props: LocalSecondaryIndexProps) -> dynamodb.CfnTable.LocalSecondaryIndexProperty:
        if len(self._local_indexes) >= MAX_LOCAL_SECONDARY_INDEX_COUNT:
            raise ValidationError(
                f"a maximum number of local secondary index per table is {MAX_LOCAL_SECONDARY_INDEX_COUNT}",
                self._scope,
            )
        if self._table_schema.sort_key is None:
            raise ValidationError(
                "a sort key of the table must be specified to add local secondary indexes",
                self._scope,
            )
        self._validate_index_name(props.index_name)

        partition_key = self._table_schema.partition_key
        key_schema = self._build_key_schema(partition_key, props.sort_key)
        projection = self._build_projection(props.projection_type, props.non_key_attributes)

        lsi = dynamodb.CfnTable.LocalSecondaryIndexProperty(
            index_name=props.index_name,
            key_schema=key_schema,
            projection=projection,
        )
        self._local_indexes.append(lsi)
        self._schemas[props.index_name] = SchemaOptions(partition_key, props.sort_key)
        return lsi

    def schema(self, index_name: str) -> SchemaOptions:
        schema = self._schemas.get(index_name)
        if schema is None:
            raise ValidationError(
                f"Cannot find schema for index: {index_name}. "
                "Use 'add_global_secondary_index' or 'add_local_secondary_index' to add index",
                self._scope,
            )
        return schema

    def render_global(self) -> list[dynamodb.CfnTable.GlobalSecondaryIndexProperty] | None:
        return list(self._global_indexes) or None

    def render_local(self) -> list[dynamodb.CfnTable.LocalSecondaryIndexProperty] | None:
        return list(self._local_indexes) or None

    # === Validation helpers ===
    def _validate_index_name(self, index_name: str) -> None:
        if index_name in self._schemas:
            # CloudFormation rejects duplicate index names with a 400 at deploy time
            raise ValidationError(f"a duplicate index name, {index_name}, is not allowed", self._scope)

    def _validate_non_key_attributes(self, non_key_attributes: Sequence[str]) -> None:
        if len(self._non_key_attributes) + len(non_key_attributes) > MAX_NON_KEY_ATTRIBUTES:
            raise ValidationError(
                f"a maximum number of nonKeyAttributes across all of secondary indexes is {MAX_NON_KEY_ATTRIBUTES}",
                self._scope,
            )
        self._non_key_attributes.update(non_key_attributes)

    def _build_key_schema(
        self,
        partition_key: Attribute,
        sort_key: Attribute | None,
    ) -> list[dynamodb.CfnTable.KeySchemaProperty]:
        self._registry.register(partition_key)
        key_schema = [dynamodb.CfnTable.KeySchemaProperty(attribute_name=partition_key.name, key_type=HASH_KEY_TYPE)]
        if sort_key is not None:
            self._registry.register(sort_key)
            key_schema.append(dynamodb.CfnTable.KeySchemaProperty(attribute_name=sort_key.name, key_type=RANGE_KEY_TYPE))
        return key_schema

    def _build_projection(
        self,
        projection_type: ProjectionType | None,
        non_key_attributes: Sequence[str] | None,
    ) -> dynamodb.CfnTable.ProjectionProperty:
        if projection_type == ProjectionType.INCLUDE and not non_key_attributes:
            raise ValidationError(
                f"non-key attributes should be specified when using {ProjectionType.INCLUDE.value} projection type",
                self._scope,
            )
        if projection_type != ProjectionType.INCLUDE and non_key_attributes:
            raise ValidationError(
                f"non-key attributes should not be specified when not using {ProjectionType.INCLUDE.value} projection type",
                self._scope,
            )
        if non_key_attributes:
            self._validate_non_key_attributes(non_key_attributes)

        return dynamodb.CfnTable.ProjectionProperty(
            projection_type=(projection_type or ProjectionType.ALL).value,
            non_key_attributes=list(non_key_attributes) if non_key_attributes else None,
        )
