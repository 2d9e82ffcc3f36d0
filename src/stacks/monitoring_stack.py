from __future__ import annotations

from aws_cdk import Stack
from aws_cdk import aws_cloudwatch as cw
from constructs import Construct

from src.tables.access import TableHandle
from src.tables.shared import Operation


class MonitoringStack(Stack):
    """CloudWatch dashboard and basic alarms for a table."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        table: TableHandle,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        dashboard = cw.Dashboard(self, "GlobalTableDashboard")

        # Capacity widgets
        dashboard.add_widgets(
            cw.GraphWidget(
                title="DynamoDB – Consumed capacity",
                left=[table.metric("ConsumedReadCapacityUnits", statistic="Sum")],
                right=[table.metric("ConsumedWriteCapacityUnits", statistic="Sum")],
            ),
        )

        # Latency widgets
        dashboard.add_widgets(
            cw.GraphWidget(
                title="DynamoDB – Latency",
                left=[
                    table.metric(
                        "SuccessfulRequestLatency",
                        dimensions_map={"TableName": table.table_name, "Operation": op.value},
                    )
                    for op in (Operation.GET_ITEM, Operation.PUT_ITEM, Operation.QUERY)
                ],
            ),
        )

        # Throttles/errors widgets
        dashboard.add_widgets(
            cw.GraphWidget(
                title="DynamoDB – Throttles/Errors",
                left=[
                    table.metric("ReadThrottleEvents", statistic="Sum"),
                    table.metric("WriteThrottleEvents", statistic="Sum"),
                ],
                right=[
                    table.metric("UserErrors", statistic="Sum", dimensions_map={}),
                ],
            ),
        )

        # Replication lag
        self.replication_latency = cw.Alarm(
            self,
            "ReplicationLatencyAlarm",
            metric=table.metric("ReplicationLatency", statistic="Maximum"),
            threshold=60_000,
            evaluation_periods=3,
            treat_missing_data=cw.TreatMissingData.NOT_BREACHING,
            alarm_description=f"Replication of {table.table_name} lags more than a minute",
        )
        dashboard.add_widgets(cw.AlarmWidget(title="DynamoDB – Replication latency", alarm=self.replication_latency))
