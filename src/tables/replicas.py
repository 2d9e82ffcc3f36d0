from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, cast

from aws_cdk import (
    Annotations,
    Aws,
    CfnCondition,
    CfnDeletionPolicy,
    CfnResource,
    CustomResource,
    Duration,
    Fn,
    RemovalPolicy,
    Stack,
    Token,
)
from constructs import Construct

from src.common.deferred import deferred_any
from src.common.errors import ValidationError
from src.tables.access import TableAccess
from src.tables.policy_tracker import PolicyAttachmentTracker
from src.tables.replica_provider import ReplicaProvider
from src.tables.shared import DESCRIBE_TABLE

REPLICA_RESOURCE_TYPE = "Custom::DynamoDBReplica"
REPLICATION_DEPENDENCY_METADATA = "DynamoDbReplicationDependency"


@dataclass(frozen=True)
class ReplicaRequest:
    """What one replica custom resource is asked to do."""

    region: str
    timeout: Duration | None = None
    skip_deletion: Any = None
    skip_completion_wait: str | None = None

    def properties(self, table_name: str) -> dict[str, Any]:
        properties: dict[str, Any] = {"TableName": table_name, "Region": self.region}
        if self.skip_deletion is not None:
            properties["SkipReplicaDeletion"] = self.skip_deletion
        if self.skip_completion_wait is not None:
            properties["SkipReplicationCompletedWait"] = self.skip_completion_wait
        return properties


@dataclass(frozen=True)
class ReplicaNode:
    """A replica custom resource and its place in the replication chain."""

    request: ReplicaRequest
    resource: CustomResource
    depends_on: ReplicaNode | None = None
    condition: CfnCondition | None = None

    @property
    def region(self) -> str:
        return self.request.region

    @property
    def cfn_resource(self) -> CfnResource:
        return cast(CfnResource, self.resource.node.default_child)


def unique_regions(regions: Iterable[str]) -> list[str]:
    """Regions without duplicates, in first-occurrence order."""
    return list(dict.fromkeys(regions))


class ReplicaSequencer:
    """Declares the replicas of a table as a strict chain, one region at a time.

    DynamoDB applies at most one replica change per table update, so each
    replica custom resource waits for the one declared before it. When the
    stack region is only known at deploy time, every replica is guarded by a
    condition that drops it if it targets the stack's own region; a guarded
    predecessor is then referenced through ``Fn::If`` instead of ``DependsOn``.
    """

    def __init__(
        self,
        table: Construct,
        *,
        table_name: str,
        table_resource: CfnResource,
        access: TableAccess,
        policies: PolicyAttachmentTracker,
        retain_replicas: bool = True,
    ) -> None:
        self._table = table
        self._table_name = table_name
        self._table_resource = table_resource
        self._access = access
        self._policies = policies
        self._retain_replicas = retain_replicas
        self.nodes: list[ReplicaNode] = []

    def sequence(
        self,
        regions: Iterable[str],
        *,
        timeout: Duration | None = None,
        wait_for_replication_to_finish: bool | None = None,
        replica_removal_policy: RemovalPolicy | None = None,
    ) -> list[ReplicaNode]:
        regions = unique_regions(regions)
        stack = Stack.of(self._table)
        region_is_token = Token.is_unresolved(stack.region)

        if not region_is_token and stack.region in regions:
            raise ValidationError(
                "`replication_regions` cannot include the region where this stack is deployed.",
                self._table,
            )

        if wait_for_replication_to_finish is False:
            Annotations.of(self._table).add_warning_v2(
                "regional-constructs:tables:replicationWaitDisabled",
                "wait_for_replication_to_finish is disabled: do not add or remove more than "
                "one replication region per deployment.",
            )

        provider = ReplicaProvider.get_or_create(self._table, timeout=timeout)
        on_event_policy = self._policies.attachment_for(provider.on_event_role)
        is_complete_policy = self._policies.attachment_for(provider.is_complete_role)

        # Permissions in the source region
        source_arns = self._access.resource_arns([self._access.table_arn])
        on_event_policy.grant(["dynamodb:*"], source_arns)
        is_complete_policy.grant([DESCRIBE_TABLE], source_arns)

        skip_deletion = self._skip_deletion(replica_removal_policy) if self._retain_replicas else None
        # Custom resource properties are strings downstream
        skip_completion_wait = (
            None if wait_for_replication_to_finish is None else str(not wait_for_replication_to_finish).lower()
        )

        previous: ReplicaNode | None = None
        for region in regions:
            request = ReplicaRequest(
                region=region,
                timeout=timeout,
                skip_deletion=skip_deletion,
                skip_completion_wait=skip_completion_wait,
            )
            resource = CustomResource(
                self._table,
                f"Replica{region}",
                service_token=provider.service_token,
                resource_type=REPLICA_RESOURCE_TYPE,
                properties=request.properties(self._table_name),
            )
            resource.node.add_dependency(on_event_policy.policy, is_complete_policy.policy)

            condition: CfnCondition | None = None
            if region_is_token:
                condition = CfnCondition(
                    self._table,
                    f"StackRegionNotEquals{region}",
                    expression=Fn.condition_not(Fn.condition_equals(region, Aws.REGION)),
                )
                cast(CfnResource, resource.node.default_child).cfn_options.condition = condition

            self._access.regional_arns.append(
                stack.format_arn(
                    region=region,
                    service="dynamodb",
                    resource="table",
                    resource_name=self._table_name,
                ),
            )

            node = ReplicaNode(request=request, resource=resource, depends_on=previous, condition=condition)
            if previous is not None:
                self._link(node, previous)

            self.nodes.append(node)
            previous = node

        # Permissions in the destination regions
        regional_arns = list(self._access.regional_arns)
        on_event_policy.grant(["dynamodb:*"], regional_arns)
        is_complete_policy.grant([DESCRIBE_TABLE], regional_arns)

        return list(self.nodes)

    def _link(self, node: ReplicaNode, previous: ReplicaNode) -> None:
        if previous.condition is None:
            node.resource.node.add_dependency(previous.resource)
            return
        # DependsOn cannot point at a conditional resource, so reference it
        # through Fn::If and let the Ref carry the implicit dependency.
        node.cfn_resource.add_metadata(
            REPLICATION_DEPENDENCY_METADATA,
            Fn.condition_if(previous.condition.logical_id, previous.cfn_resource.ref, Aws.NO_VALUE),
        )

    def _skip_deletion(self, replica_removal_policy: RemovalPolicy | None) -> Any:
        def produce() -> bool:
            if replica_removal_policy is not None:
                return replica_removal_policy == RemovalPolicy.RETAIN
            return self._table_resource.cfn_options.deletion_policy == CfnDeletionPolicy.RETAIN

        return deferred_any(produce)
