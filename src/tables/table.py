from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from aws_cdk import ArnFormat, Duration, RemovalPolicy, Resource, Stack
from aws_cdk import aws_cloudwatch as cw
from aws_cdk import aws_dynamodb as dynamodb
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kinesis as kinesis
from aws_cdk import aws_kms as kms
from constructs import Construct

from src.common.errors import ValidationError
from src.tables.access import TableAccess
from src.tables.indexes import (
    GlobalSecondaryIndexProps,
    IndexBuilder,
    LocalSecondaryIndexProps,
    render_on_demand_throughput,
    render_provisioned_throughput,
    validate_provisioning,
)
from src.tables.policy_tracker import PolicyAttachmentTracker
from src.tables.registry import AttributeRegistry
from src.tables.replicas import ReplicaNode, ReplicaSequencer
from src.tables.shared import (
    HASH_KEY_TYPE,
    RANGE_KEY_TYPE,
    ApproximateCreationDateTimePrecision,
    Attribute,
    BillingMode,
    ImportSourceSpecification,
    Operation,
    PointInTimeRecoverySpecification,
    SchemaOptions,
    StreamViewType,
    TableClass,
    TableEncryption,
)

RETAIN_TABLE_REPLICA_CONTEXT = "retain_table_replica"


class _TableAccessMixin:
    """Grant and metric methods forwarded to the table's ``TableAccess``."""

    _access: TableAccess

    @property
    def regional_arns(self) -> list[str]:
        return self._access.regional_arns

    # === Grants ===
    def grant(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant:
        return self._access.grant(grantee, *actions)

    def grant_stream(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant:
        return self._access.grant_stream(grantee, *actions)

    def grant_table_list_streams(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_table_list_streams(grantee)

    def grant_read_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_read_data(grantee)

    def grant_write_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_write_data(grantee)

    def grant_read_write_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_read_write_data(grantee)

    def grant_full_access(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_full_access(grantee)

    def grant_stream_read(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._access.grant_stream_read(grantee)

    # === Metrics ===
    def metric(self, metric_name: str, **props: Any) -> cw.Metric:
        return self._access.metric(metric_name, **props)

    def metric_consumed_read_capacity_units(self, **props: Any) -> cw.Metric:
        return self._access.metric_consumed_read_capacity_units(**props)

    def metric_consumed_write_capacity_units(self, **props: Any) -> cw.Metric:
        return self._access.metric_consumed_write_capacity_units(**props)

    def metric_conditional_check_failed_requests(self, **props: Any) -> cw.Metric:
        return self._access.metric_conditional_check_failed_requests(**props)

    def metric_user_errors(self, **props: Any) -> cw.Metric:
        return self._access.metric_user_errors(**props)

    def metric_throttled_requests_for_operation(self, operation: Operation | str, **props: Any) -> cw.Metric:
        return self._access.metric_throttled_requests_for_operation(operation, **props)

    def metric_successful_request_latency(self, operation: Operation | str, **props: Any) -> cw.Metric:
        return self._access.metric_successful_request_latency(operation, **props)


class ImportedTable(_TableAccessMixin, Resource):
    """A table defined outside of this app, referenced by name or ARN."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        table_arn: str,
        table_name: str,
        table_stream_arn: str | None = None,
        encryption_key: kms.IKey | None = None,
        has_index: bool = False,
    ) -> None:
        super().__init__(scope, construct_id)
        self._access = TableAccess(
            self,
            table_arn=table_arn,
            table_name=table_name,
            table_stream_arn=table_stream_arn,
            encryption_key=encryption_key,
            has_index=lambda: has_index,
        )

    @property
    def table_arn(self) -> str:
        return self._access.table_arn

    @property
    def table_name(self) -> str:
        return self._access.table_name

    @property
    def table_stream_arn(self) -> str | None:
        return self._access.table_stream_arn

    @property
    def encryption_key(self) -> kms.IKey | None:
        return self._access.encryption_key


class Table(_TableAccessMixin, Resource):
    """A DynamoDB table, optionally replicated to other regions.

    Exposes:
      - self.table_arn / self.table_name / self.table_stream_arn
      - self.encryption_key (customer managed encryption only)
      - self.replicas (one node per replication region, in chain order)

    Replicas are added one region at a time through a ``Custom::DynamoDBReplica``
    resource per region, see ``ReplicaSequencer``.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        partition_key: Attribute,
        sort_key: Attribute | None = None,
        table_name: str | None = None,
        billing_mode: BillingMode | None = None,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        max_read_request_units: int | None = None,
        max_write_request_units: int | None = None,
        stream: StreamViewType | None = None,
        time_to_live_attribute: str | None = None,
        point_in_time_recovery_specification: PointInTimeRecoverySpecification | None = None,
        encryption: TableEncryption | None = None,
        encryption_key: kms.IKey | None = None,
        table_class: TableClass | None = None,
        contributor_insights_enabled: bool | None = None,
        deletion_protection: bool | None = None,
        kinesis_stream: kinesis.IStream | None = None,
        kinesis_precision_timestamp: ApproximateCreationDateTimePrecision | None = None,
        import_source: ImportSourceSpecification | None = None,
        removal_policy: RemovalPolicy | None = None,
        replication_regions: Sequence[str] | None = None,
        replication_timeout: Duration | None = None,
        wait_for_replication_to_finish: bool | None = None,
        replica_removal_policy: RemovalPolicy | None = None,
    ) -> None:
        super().__init__(scope, construct_id, physical_name=table_name)

        replicated = bool(replication_regions)
        sse_specification, self.encryption_key = self._parse_encryption(encryption, encryption_key, replicated)
        pitr_specification = self._validate_pitr(point_in_time_recovery_specification)

        stream_specification: dynamodb.CfnTable.StreamSpecificationProperty | None = None
        if replicated:
            if stream is not None and stream != StreamViewType.NEW_AND_OLD_IMAGES:
                raise ValidationError(
                    "`stream` must be set to `NEW_AND_OLD_IMAGES` when specifying `replication_regions`",
                    self,
                )
            stream_specification = dynamodb.CfnTable.StreamSpecificationProperty(
                stream_view_type=StreamViewType.NEW_AND_OLD_IMAGES.value,
            )
            self.billing_mode = billing_mode or BillingMode.PAY_PER_REQUEST
            if self.billing_mode == BillingMode.PROVISIONED:
                raise ValidationError(
                    "A global Table that uses PROVISIONED as the billing mode needs auto-scaled write capacity, "
                    "which is not supported. Use PAY_PER_REQUEST instead",
                    self,
                )
        else:
            self.billing_mode = billing_mode or BillingMode.PROVISIONED
            if stream is not None:
                stream_specification = dynamodb.CfnTable.StreamSpecificationProperty(stream_view_type=stream.value)
        validate_provisioning(self, self.billing_mode, read_capacity, write_capacity)

        # === Key schema ===
        self._registry = AttributeRegistry(self)
        self._registry.add_key(partition_key, HASH_KEY_TYPE)
        if sort_key is not None:
            self._registry.add_key(sort_key, RANGE_KEY_TYPE)
        self._table_schema = SchemaOptions(partition_key, sort_key)
        self._indexes = IndexBuilder(self, self._registry, self.billing_mode, self._table_schema)

        self._resource = dynamodb.CfnTable(
            self,
            "Resource",
            table_name=self._physical_name,
            key_schema=self._registry.render_key_schema(),
            attribute_definitions=self._registry.render_attribute_definitions(),
            point_in_time_recovery_specification=(
                dynamodb.CfnTable.PointInTimeRecoverySpecificationProperty(
                    point_in_time_recovery_enabled=pitr_specification.point_in_time_recovery_enabled,
                    recovery_period_in_days=pitr_specification.recovery_period_in_days,
                )
                if pitr_specification is not None
                else None
            ),
            billing_mode=self.billing_mode.value if self.billing_mode == BillingMode.PAY_PER_REQUEST else None,
            provisioned_throughput=render_provisioned_throughput(self.billing_mode, read_capacity, write_capacity),
            on_demand_throughput=render_on_demand_throughput(
                self.billing_mode, max_read_request_units, max_write_request_units,
            ),
            sse_specification=sse_specification,
            stream_specification=stream_specification,
            table_class=table_class.value if table_class is not None else None,
            time_to_live_specification=(
                dynamodb.CfnTable.TimeToLiveSpecificationProperty(attribute_name=time_to_live_attribute, enabled=True)
                if time_to_live_attribute
                else None
            ),
            contributor_insights_specification=(
                dynamodb.CfnTable.ContributorInsightsSpecificationProperty(enabled=contributor_insights_enabled)
                if contributor_insights_enabled is not None
                else None
            ),
            kinesis_stream_specification=(
                dynamodb.CfnTable.KinesisStreamSpecificationProperty(
                    stream_arn=kinesis_stream.stream_arn,
                    approximate_creation_date_time_precision=(
                        kinesis_precision_timestamp.value if kinesis_precision_timestamp is not None else None
                    ),
                )
                if kinesis_stream is not None
                else None
            ),
            deletion_protection_enabled=deletion_protection,
            import_source_specification=import_source.render() if import_source is not None else None,
        )
        self._resource.apply_removal_policy(removal_policy or RemovalPolicy.RETAIN)

        table_arn = self._get_resource_arn_attribute(
            self._resource.attr_arn,
            service="dynamodb",
            resource="table",
            resource_name=self._physical_name,
        )
        resolved_table_name = self._get_resource_name_attribute(self._resource.ref)
        if table_name:
            self.node.add_metadata("aws:cdk:hasPhysicalName", resolved_table_name)

        self._access = TableAccess(
            self,
            table_arn=table_arn,
            table_name=resolved_table_name,
            table_stream_arn=self._resource.attr_stream_arn if stream_specification is not None else None,
            encryption_key=self.encryption_key,
            has_index=lambda: self._indexes.has_index,
        )

        self._sequencer = ReplicaSequencer(
            self,
            table_name=resolved_table_name,
            table_resource=self._resource,
            access=self._access,
            policies=PolicyAttachmentTracker(self, resolved_table_name),
            retain_replicas=self._retain_replicas(),
        )
        if replication_regions:
            self._sequencer.sequence(
                replication_regions,
                timeout=replication_timeout,
                wait_for_replication_to_finish=wait_for_replication_to_finish,
                replica_removal_policy=replica_removal_policy,
            )

    # === Factories ===
    @classmethod
    def from_table_name(cls, scope: Construct, construct_id: str, table_name: str) -> ImportedTable:
        return cls.from_table_attributes(scope, construct_id, table_name=table_name)

    @classmethod
    def from_table_arn(cls, scope: Construct, construct_id: str, table_arn: str) -> ImportedTable:
        return cls.from_table_attributes(scope, construct_id, table_arn=table_arn)

    @classmethod
    def from_table_attributes(
        cls,
        scope: Construct,
        construct_id: str,
        *,
        table_arn: str | None = None,
        table_name: str | None = None,
        table_stream_arn: str | None = None,
        encryption_key: kms.IKey | None = None,
        grant_index_permissions: bool = False,
        global_indexes: Sequence[str] | None = None,
        local_indexes: Sequence[str] | None = None,
    ) -> ImportedTable:
        """Reference an existing table. Exactly one of ``table_name`` and ``table_arn`` is required."""
        stack = Stack.of(scope)
        if not table_name:
            if not table_arn:
                raise ValidationError("One of table_name or table_arn is required!", scope)
            table_name = stack.split_arn(table_arn, ArnFormat.SLASH_RESOURCE_NAME).resource_name
            if not table_name:
                raise ValidationError(
                    "ARN for DynamoDB table must be in the form: arn:<partition>:dynamodb:<region>:<account>:table/<name>",
                    scope,
                )
        else:
            if table_arn:
                raise ValidationError("Only one of table_arn or table_name can be provided", scope)
            table_arn = stack.format_arn(service="dynamodb", resource="table", resource_name=table_name)

        return ImportedTable(
            scope,
            construct_id,
            table_arn=table_arn,
            table_name=table_name,
            table_stream_arn=table_stream_arn,
            encryption_key=encryption_key,
            has_index=grant_index_permissions or bool(global_indexes) or bool(local_indexes),
        )

    # === Attributes ===
    @property
    def table_arn(self) -> str:
        return self._access.table_arn

    @property
    def table_name(self) -> str:
        return self._access.table_name

    @property
    def table_stream_arn(self) -> str | None:
        return self._access.table_stream_arn

    @property
    def replicas(self) -> list[ReplicaNode]:
        return list(self._sequencer.nodes)

    @property
    def cfn_table(self) -> dynamodb.CfnTable:
        return self._resource

    # === Secondary indexes ===
    def add_global_secondary_index(self, **props: Any) -> None:
        """Add a global secondary index, see ``GlobalSecondaryIndexProps`` for the arguments."""
        self._indexes.add_global(GlobalSecondaryIndexProps(**props))
        self._sync_schema()
        self._resource.global_secondary_indexes = self._indexes.render_global()

    def add_local_secondary_index(self, **props: Any) -> None:
        """Add a local secondary index, see ``LocalSecondaryIndexProps`` for the arguments."""
        self._indexes.add_local(LocalSecondaryIndexProps(**props))
        self._sync_schema()
        self._resource.local_secondary_indexes = self._indexes.render_local()

    def schema(self, index_name: str | None = None) -> SchemaOptions:
        """Key schema of the table, or of one of its secondary indexes."""
        if index_name is None:
            return self._table_schema
        return self._indexes.schema(index_name)

    def _sync_schema(self) -> None:
        # CfnTable holds copies of the lists it was given
        self._resource.attribute_definitions = self._registry.render_attribute_definitions()

    # === Validation helpers ===
    def _retain_replicas(self) -> bool:
        value = self.node.try_get_context(RETAIN_TABLE_REPLICA_CONTEXT)
        if value is None:
            return True
        return str(value).lower() != "false"

    def _validate_pitr(
        self,
        specification: PointInTimeRecoverySpecification | None,
    ) -> PointInTimeRecoverySpecification | None:
        if specification is None:
            return None
        recovery_period_in_days = specification.recovery_period_in_days
        if not specification.point_in_time_recovery_enabled and recovery_period_in_days:
            raise ValidationError(
                "Cannot set `recovery_period_in_days` while `point_in_time_recovery_enabled` is set to false.",
                self,
            )
        if recovery_period_in_days is not None and not 1 <= recovery_period_in_days <= 35:
            raise ValidationError("`recovery_period_in_days` must be a value between `1` and `35`.", self)
        return specification

    def _parse_encryption(
        self,
        encryption: TableEncryption | None,
        encryption_key: kms.IKey | None,
        replicated: bool,
    ) -> tuple[dynamodb.CfnTable.SSESpecificationProperty | None, kms.IKey | None]:
        if encryption is None and encryption_key is not None:
            encryption = TableEncryption.CUSTOMER_MANAGED

        if encryption != TableEncryption.CUSTOMER_MANAGED and encryption_key is not None:
            raise ValidationError(
                "encryption_key cannot be specified unless encryption is set to "
                f"TableEncryption.CUSTOMER_MANAGED (it was set to {encryption})",
                self,
            )
        if encryption == TableEncryption.CUSTOMER_MANAGED and replicated:
            raise ValidationError(
                "TableEncryption.CUSTOMER_MANAGED is not supported by DynamoDB Global Tables "
                "(where replication_regions was set)",
                self,
            )

        if encryption == TableEncryption.CUSTOMER_MANAGED:
            key = encryption_key or kms.Key(
                self,
                "Key",
                description=f"Customer-managed key auto-created for encrypting DynamoDB table at {self.node.path}",
                enable_key_rotation=True,
            )
            return (
                dynamodb.CfnTable.SSESpecificationProperty(
                    sse_enabled=True,
                    kms_master_key_id=key.key_arn,
                    sse_type="KMS",
                ),
                key,
            )
        if encryption == TableEncryption.AWS_MANAGED:
            # No sse_type here, existing stacks would see a phantom change
            return dynamodb.CfnTable.SSESpecificationProperty(sse_enabled=True), None
        if encryption == TableEncryption.DEFAULT:
            return dynamodb.CfnTable.SSESpecificationProperty(sse_enabled=False), None
        return None, None
