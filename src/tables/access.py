from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from aws_cdk import Aws
from aws_cdk import aws_cloudwatch as cw
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kms as kms
from constructs import Construct

from src.common.deferred import deferred_string
from src.common.errors import ValidationError
from src.tables.shared import (
    DESCRIBE_TABLE,
    KEY_READ_ACTIONS,
    KEY_WRITE_ACTIONS,
    READ_DATA_ACTIONS,
    READ_STREAM_DATA_ACTIONS,
    WRITE_DATA_ACTIONS,
    Operation,
)


class TableHandle(Protocol):
    """What every table, owned or imported, can do."""

    @property
    def table_arn(self) -> str: ...

    @property
    def table_name(self) -> str: ...

    @property
    def table_stream_arn(self) -> str | None: ...

    def grant(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant: ...

    def grant_read_data(self, grantee: iam.IGrantable) -> iam.Grant: ...

    def grant_write_data(self, grantee: iam.IGrantable) -> iam.Grant: ...

    def grant_read_write_data(self, grantee: iam.IGrantable) -> iam.Grant: ...

    def grant_stream_read(self, grantee: iam.IGrantable) -> iam.Grant: ...

    def metric(self, metric_name: str, **props: Any) -> cw.Metric: ...


class TableAccess:
    """Grant and metric helpers shared by owned and imported tables.

    ``regional_arns`` is the table's append-only set of replica ARNs; every
    table grant covers them, and their ``/index/*`` ARNs when the table has
    an index.
    """

    def __init__(
        self,
        scope: Construct,
        *,
        table_arn: str,
        table_name: str,
        has_index: Callable[[], bool],
        table_stream_arn: str | None = None,
        encryption_key: kms.IKey | None = None,
        regional_arns: list[str] | None = None,
    ) -> None:
        self._scope = scope
        self._has_index = has_index
        self.table_arn = table_arn
        self.table_name = table_name
        self.table_stream_arn = table_stream_arn
        self.encryption_key = encryption_key
        self.regional_arns: list[str] = regional_arns if regional_arns is not None else []

    def _index_arn(self, arn: str) -> str:
        return deferred_string(lambda: f"{arn}/index/*" if self._has_index() else Aws.NO_VALUE)

    def resource_arns(self, arns: Sequence[str] | None = None) -> list[str]:
        """Table ARNs a grant applies to, index ARNs included."""
        arns = [self.table_arn, *self.regional_arns] if arns is None else list(arns)
        return [*arns, *(self._index_arn(arn) for arn in arns)]

    # === Grants ===
    def grant(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant:
        return iam.Grant.add_to_principal(
            grantee=grantee,
            actions=list(actions),
            resource_arns=self.resource_arns(),
            scope=self._scope,
        )

    def grant_stream(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant:
        return iam.Grant.add_to_principal(
            grantee=grantee,
            actions=list(actions),
            resource_arns=[self._require_stream()],
            scope=self._scope,
        )

    def grant_table_list_streams(self, grantee: iam.IGrantable) -> iam.Grant:
        self._require_stream()
        return iam.Grant.add_to_principal(
            grantee=grantee,
            actions=["dynamodb:ListStreams"],
            resource_arns=["*"],
        )

    def grant_read_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._combined_grant(
            grantee,
            key_actions=KEY_READ_ACTIONS,
            table_actions=[*READ_DATA_ACTIONS, DESCRIBE_TABLE],
        )

    def grant_write_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._combined_grant(
            grantee,
            key_actions=[*KEY_READ_ACTIONS, *KEY_WRITE_ACTIONS],
            table_actions=[*WRITE_DATA_ACTIONS, DESCRIBE_TABLE],
        )

    def grant_read_write_data(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._combined_grant(
            grantee,
            key_actions=[*KEY_READ_ACTIONS, *KEY_WRITE_ACTIONS],
            table_actions=[*READ_DATA_ACTIONS, *WRITE_DATA_ACTIONS, DESCRIBE_TABLE],
        )

    def grant_full_access(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._combined_grant(
            grantee,
            key_actions=[*KEY_READ_ACTIONS, *KEY_WRITE_ACTIONS],
            table_actions=["dynamodb:*"],
        )

    def grant_stream_read(self, grantee: iam.IGrantable) -> iam.Grant:
        self.grant_table_list_streams(grantee)
        if self.encryption_key is not None:
            self.encryption_key.grant(grantee, *KEY_READ_ACTIONS)
        return self.grant_stream(grantee, *READ_STREAM_DATA_ACTIONS)

    def _combined_grant(
        self,
        grantee: iam.IGrantable,
        *,
        key_actions: Sequence[str],
        table_actions: Sequence[str],
    ) -> iam.Grant:
        if self.encryption_key is not None:
            self.encryption_key.grant(grantee, *key_actions)
        return self.grant(grantee, *table_actions)

    def _require_stream(self) -> str:
        if not self.table_stream_arn:
            raise ValidationError(
                f"DynamoDB Streams must be enabled on the table {self._scope.node.path}",
                self._scope,
            )
        return self.table_stream_arn

    # === Metrics ===
    def metric(self, metric_name: str, *, dimensions_map: Mapping[str, str] | None = None, **props: Any) -> cw.Metric:
        """Named metric for this table, averaged over 5 minutes unless overridden."""
        return cw.Metric(
            namespace="AWS/DynamoDB",
            metric_name=metric_name,
            dimensions_map=dict(dimensions_map) if dimensions_map is not None else {"TableName": self.table_name},
            **props,
        )

    def metric_consumed_read_capacity_units(self, **props: Any) -> cw.Metric:
        return self.metric("ConsumedReadCapacityUnits", **{"statistic": "Sum", **props})

    def metric_consumed_write_capacity_units(self, **props: Any) -> cw.Metric:
        return self.metric("ConsumedWriteCapacityUnits", **{"statistic": "Sum", **props})

    def metric_conditional_check_failed_requests(self, **props: Any) -> cw.Metric:
        return self.metric("ConditionalCheckFailedRequests", **{"statistic": "Sum", **props})

    def metric_user_errors(self, **props: Any) -> cw.Metric:
        # UserErrors is reported per account and region, not per table
        if "dimensions_map" in props:
            raise ValidationError("'dimensions_map' is not supported for the 'UserErrors' metric", self._scope)
        return self.metric("UserErrors", dimensions_map={}, **{"statistic": "Sum", **props})

    def metric_throttled_requests_for_operation(self, operation: Operation | str, **props: Any) -> cw.Metric:
        return self.metric(
            "ThrottledRequests",
            dimensions_map={"TableName": self.table_name, "Operation": _operation_name(operation)},
            **{"statistic": "Sum", **props},
        )

    def metric_successful_request_latency(self, operation: Operation | str, **props: Any) -> cw.Metric:
        return self.metric(
            "SuccessfulRequestLatency",
            dimensions_map={"TableName": self.table_name, "Operation": _operation_name(operation)},
            **{"statistic": "Average", **props},
        )


def _operation_name(operation: Operation | str) -> str:
    return operation.value if isinstance(operation, Operation) else operation
