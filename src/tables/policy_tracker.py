from __future__ import annotations

from collections.abc import Sequence

from aws_cdk import Names
from aws_cdk import aws_iam as iam
from constructs import Construct


class SourceTableAttachedPolicy(Construct):
    """A managed policy logically bound to the source table of a replicated table.

    Replica permissions live in this standalone policy instead of inline on the
    handler role, so CloudFormation removes them during the CleanUp phase of a
    stack update, after the replicas that need them have been deleted.
    """

    def __init__(self, source_table: Construct, role: iam.IRole, *, table_name: str) -> None:
        super().__init__(source_table, f"SourceTableAttachedManagedPolicy-{Names.node_unique_id(role.node)}")
        self.role = role
        # A new description replaces the policy, so a table rename gets a new one
        self.policy = iam.ManagedPolicy(
            self,
            "Resource",
            description=f"DynamoDB replication managed policy for table {table_name}",
            roles=[role],
        )

    def grant(self, actions: Sequence[str], resource_arns: Sequence[str]) -> iam.PolicyStatement:
        statement = iam.PolicyStatement(actions=list(actions), resources=list(resource_arns))
        self.policy.add_statements(statement)
        return statement


class PolicyAttachmentTracker:
    """Hands out exactly one ``SourceTableAttachedPolicy`` per role for a table."""

    def __init__(self, source_table: Construct, table_name: str) -> None:
        self._source_table = source_table
        self._table_name = table_name
        self._attachments: dict[str, SourceTableAttachedPolicy] = {}

    def attachment_for(self, role: iam.IRole) -> SourceTableAttachedPolicy:
        key = Names.node_unique_id(role.node)
        attachment = self._attachments.get(key)
        if attachment is None:
            attachment = SourceTableAttachedPolicy(self._source_table, role, table_name=self._table_name)
            self._attachments[key] = attachment
        return attachment

    @property
    def attachments(self) -> list[SourceTableAttachedPolicy]:
        return list(self._attachments.values())
