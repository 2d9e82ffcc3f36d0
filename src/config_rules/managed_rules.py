from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from aws_cdk import Duration, Stack
from aws_cdk import aws_config as config
from aws_cdk import aws_iam as iam
from aws_cdk import aws_sns as sns
from constructs import Construct

from src.common.deferred import deferred_string
from src.common.errors import ValidationError

MAX_NOTIFICATION_TOPICS = 5


class AccessKeysRotated(config.ManagedRule):
    """Checks that active IAM access keys are rotated within ``max_age``."""

    def __init__(self, scope: Construct, construct_id: str, *, max_age: Duration | None = None, **kwargs: Any) -> None:
        super().__init__(
            scope,
            construct_id,
            identifier=config.ManagedRuleIdentifiers.ACCESS_KEYS_ROTATED,
            input_parameters={"maxAccessKeyAge": max_age.to_days()} if max_age is not None else {},
            **kwargs,
        )


class CloudFormationStackDriftDetectionCheck(config.ManagedRule):
    """Checks whether CloudFormation stacks have drifted from their template.

    Config assumes ``role`` to run drift detection; a role with ReadOnlyAccess
    is created when none is given.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        own_stack_only: bool = False,
        role: iam.IRole | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            scope,
            construct_id,
            identifier=config.ManagedRuleIdentifiers.CLOUDFORMATION_STACK_DRIFT_DETECTION_CHECK,
            input_parameters={"cloudformationRoleArn": deferred_string(lambda: self.role.role_arn)},
            rule_scope=config.RuleScope.from_resource(
                config.ResourceType.CLOUDFORMATION_STACK,
                Stack.of(scope).stack_id if own_stack_only else None,
            ),
            **kwargs,
        )

        self.role: iam.IRole = role or iam.Role(
            self,
            "Role",
            assumed_by=iam.ServicePrincipal("config.amazonaws.com"),
            managed_policies=[iam.ManagedPolicy.from_aws_managed_policy_name("ReadOnlyAccess")],
        )


class CloudFormationStackNotificationCheck(config.ManagedRule):
    """Checks that CloudFormation stacks send events to the given SNS topics."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        topics: Sequence[sns.ITopic] | None = None,
        **kwargs: Any,
    ) -> None:
        if topics and len(topics) > MAX_NOTIFICATION_TOPICS:
            raise ValidationError(f"At most {MAX_NOTIFICATION_TOPICS} topics can be specified.", scope)

        super().__init__(
            scope,
            construct_id,
            identifier=config.ManagedRuleIdentifiers.CLOUDFORMATION_STACK_NOTIFICATION_CHECK,
            input_parameters=(
                {f"snsTopic{idx}": topic.topic_arn for idx, topic in enumerate(topics, start=1)}
                if topics
                else None
            ),
            rule_scope=config.RuleScope.from_resources([config.ResourceType.CLOUDFORMATION_STACK]),
            **kwargs,
        )
