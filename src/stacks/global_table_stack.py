from __future__ import annotations

from aws_cdk import Duration, RemovalPolicy, Stack
from constructs import Construct

from src.tables.shared import (
    Attribute,
    AttributeType,
    BillingMode,
    PointInTimeRecoverySpecification,
    ProjectionType,
)
from src.tables.table import Table


class GlobalTableStack(Stack):
    """A table replicated to the regions listed in the ``replication_regions`` context.

    Contains:
      * DynamoDB table with streams, a GSI on ``gsi1pk``/``gsi1sk`` and one replica per region
    """

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        regions = self.node.try_get_context("replication_regions") or []
        if isinstance(regions, str):
            regions = [region.strip() for region in regions.split(",") if region.strip()]

        self.table: Table = Table(
            self,
            "GlobalTable",
            partition_key=Attribute(name="pk", type=AttributeType.STRING),
            sort_key=Attribute(name="sk", type=AttributeType.STRING),
            billing_mode=BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery_specification=PointInTimeRecoverySpecification(point_in_time_recovery_enabled=True),
            time_to_live_attribute="expiresAt",
            replication_regions=regions,
            replication_timeout=Duration.hours(1),
            removal_policy=(
                RemovalPolicy.DESTROY
                if self.node.try_get_context("remove_on_delete")
                else RemovalPolicy.RETAIN
            ),
        )
        self.table.add_global_secondary_index(
            index_name="gsi1",
            partition_key=Attribute(name="gsi1pk", type=AttributeType.STRING),
            sort_key=Attribute(name="gsi1sk", type=AttributeType.STRING),
            projection_type=ProjectionType.ALL,
        )
