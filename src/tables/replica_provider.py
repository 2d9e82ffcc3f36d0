from __future__ import annotations

from pathlib import Path
from typing import cast

from aws_cdk import Duration, Stack
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as _lambda
from aws_cdk import aws_logs as logs
from aws_cdk import custom_resources as cr
from constructs import Construct

HANDLER_ROOT = str(Path(__file__).resolve().parent / "replica_handler")

DEFAULT_REPLICATION_TIMEOUT = Duration.minutes(30)


class ReplicaProvider(Construct):
    """Custom resource provider that adds and removes table replicas.

    One provider is shared by every replicated table of a stack. Exposes:
      - self.on_event_handler (issues the UpdateTable calls)
      - self.is_complete_handler (polls until the replica settles)
      - self.provider (custom resource framework)
    """

    UID = "regional-constructs.tables.ReplicaProvider"

    @classmethod
    def get_or_create(cls, scope: Construct, *, timeout: Duration | None = None) -> ReplicaProvider:
        stack = Stack.of(scope)
        existing = stack.node.try_find_child(cls.UID)
        if existing is not None:
            return cast(ReplicaProvider, existing)
        return cls(stack, cls.UID, timeout=timeout)

    def __init__(self, scope: Construct, construct_id: str, *, timeout: Duration | None = None) -> None:
        super().__init__(scope, construct_id)

        # Issues UpdateTable API calls
        self.on_event_handler = _lambda.Function(
            self,
            "OnEventHandler",
            code=_lambda.Code.from_asset(HANDLER_ROOT),
            handler="index.on_event_handler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            timeout=Duration.minutes(5),
            log_group=logs.LogGroup(
                self,
                "OnEventHandlerLogGroup",
                retention=logs.RetentionDays.THREE_MONTHS,
            ),
        )

        # Checks whether the table and its replica are back to ACTIVE
        self.is_complete_handler = _lambda.Function(
            self,
            "IsCompleteHandler",
            code=_lambda.Code.from_asset(HANDLER_ROOT),
            handler="index.is_complete_handler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            timeout=Duration.seconds(30),
            log_group=logs.LogGroup(
                self,
                "IsCompleteHandlerLogGroup",
                retention=logs.RetentionDays.THREE_MONTHS,
            ),
        )

        # Allows the creation of the AWSServiceRoleForDynamoDBReplication service linked role
        self.on_event_handler.add_to_role_policy(
            iam.PolicyStatement(
                actions=["iam:CreateServiceLinkedRole"],
                resources=[
                    Stack.of(self).format_arn(
                        service="iam",
                        region="",
                        resource="role",
                        resource_name=(
                            "aws-service-role/replication.dynamodb.amazonaws.com/"
                            "AWSServiceRoleForDynamoDBReplication"
                        ),
                    ),
                ],
            ),
        )

        # Required for replica table creation
        self.on_event_handler.add_to_role_policy(
            iam.PolicyStatement(
                actions=["dynamodb:DescribeLimits"],
                resources=["*"],
            ),
        )

        self.provider = cr.Provider(
            self,
            "Provider",
            on_event_handler=self.on_event_handler,
            is_complete_handler=self.is_complete_handler,
            query_interval=Duration.seconds(10),
            total_timeout=timeout or DEFAULT_REPLICATION_TIMEOUT,
        )

    @property
    def service_token(self) -> str:
        return self.provider.service_token

    @property
    def on_event_role(self) -> iam.IRole:
        return cast(iam.IRole, self.on_event_handler.role)

    @property
    def is_complete_role(self) -> iam.IRole:
        return cast(iam.IRole, self.is_complete_handler.role)
