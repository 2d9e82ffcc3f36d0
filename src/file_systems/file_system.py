from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import jsii
from aws_cdk import ArnFormat, FeatureFlags, Names, RemovalPolicy, Resource, Size, Stack, Tags, Token
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_efs as efs
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kms as kms
from constructs import Construct, DependencyGroup

from src.common.deferred import deferred_any
from src.common.errors import ValidationError

DEFAULT_PORT = 2049

DEFAULT_ENCRYPTION_AT_REST_FLAG = "@aws-cdk/aws-efs:defaultEncryptionAtRest"
DENY_ANONYMOUS_ACCESS_FLAG = "@aws-cdk/aws-efs:denyAnonymousAccess"

ACCESSED_VIA_MOUNT_TARGET = {"Bool": {"elasticfilesystem:AccessedViaMountTarget": "true"}}


class LifecyclePolicy(str, Enum):
    AFTER_1_DAY = "AFTER_1_DAY"
    AFTER_7_DAYS = "AFTER_7_DAYS"
    AFTER_14_DAYS = "AFTER_14_DAYS"
    AFTER_30_DAYS = "AFTER_30_DAYS"
    AFTER_60_DAYS = "AFTER_60_DAYS"
    AFTER_90_DAYS = "AFTER_90_DAYS"
    AFTER_180_DAYS = "AFTER_180_DAYS"
    AFTER_270_DAYS = "AFTER_270_DAYS"
    AFTER_365_DAYS = "AFTER_365_DAYS"


class OutOfInfrequentAccessPolicy(str, Enum):
    AFTER_1_ACCESS = "AFTER_1_ACCESS"


class PerformanceMode(str, Enum):
    GENERAL_PURPOSE = "generalPurpose"
    MAX_IO = "maxIO"


class ThroughputMode(str, Enum):
    BURSTING = "bursting"
    PROVISIONED = "provisioned"
    ELASTIC = "elastic"


class ReplicationOverwriteProtection(str, Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class ClientAction(str, Enum):
    MOUNT = "elasticfilesystem:ClientMount"
    WRITE = "elasticfilesystem:ClientWrite"
    ROOT_ACCESS = "elasticfilesystem:ClientRootAccess"


@dataclass(frozen=True)
class ReplicationConfiguration:
    """Where a file system replicates to.

    Use one of the factories: an existing file system, a new regional file
    system, or a new One Zone file system in a given availability zone.
    """

    destination_file_system: _FileSystemBase | None = None
    kms_key: kms.IKey | None = None
    region: str | None = None
    availability_zone: str | None = None

    @classmethod
    def existing_file_system(cls, destination_file_system: _FileSystemBase) -> ReplicationConfiguration:
        return cls(destination_file_system=destination_file_system)

    @classmethod
    def regional_file_system(
        cls,
        region: str | None = None,
        kms_key: kms.IKey | None = None,
    ) -> ReplicationConfiguration:
        return cls(region=region, kms_key=kms_key)

    @classmethod
    def one_zone_file_system(
        cls,
        region: str,
        availability_zone: str,
        kms_key: kms.IKey | None = None,
    ) -> ReplicationConfiguration:
        return cls(region=region, availability_zone=availability_zone, kms_key=kms_key)

    def render(self, scope: Construct) -> efs.CfnFileSystem.ReplicationConfigurationProperty:
        if self.destination_file_system is not None:
            region = self.destination_file_system.env.region
        else:
            region = self.region if self.region is not None else Stack.of(scope).region
        return efs.CfnFileSystem.ReplicationConfigurationProperty(
            destinations=[
                efs.CfnFileSystem.ReplicationDestinationProperty(
                    file_system_id=(
                        self.destination_file_system.file_system_id
                        if self.destination_file_system is not None
                        else None
                    ),
                    kms_key_id=self.kms_key.key_arn if self.kms_key is not None else None,
                    region=region,
                    availability_zone_name=self.availability_zone,
                ),
            ],
        )


@jsii.implements(iam.IResourceWithPolicy)
class _FileSystemBase(Resource):
    """Grant methods shared by owned and imported file systems."""

    file_system_id: str
    file_system_arn: str
    connections: ec2.Connections
    mount_targets_available: DependencyGroup

    def __init__(self, scope: Construct, construct_id: str, **kwargs: Any) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self._file_system_policy: iam.PolicyDocument | None = None
        self._granted_client = False
        self._owns_resource = False

    # === Grants ===
    def grant(self, grantee: iam.IGrantable, *actions: str) -> iam.Grant:
        return iam.Grant.add_to_principal_or_resource(
            grantee=grantee,
            actions=list(actions),
            resource_arns=[self.file_system_arn],
            resource=self,
        )

    def grant_read(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._grant_client(grantee, [ClientAction.MOUNT])

    def grant_read_write(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._grant_client(grantee, [ClientAction.MOUNT, ClientAction.WRITE])

    def grant_root_access(self, grantee: iam.IGrantable) -> iam.Grant:
        return self._grant_client(grantee, [ClientAction.MOUNT, ClientAction.WRITE, ClientAction.ROOT_ACCESS])

    def add_to_resource_policy(self, statement: iam.PolicyStatement) -> iam.AddToResourcePolicyResult:
        """Add a statement to the file system policy. Imported file systems have none."""
        if not self._owns_resource:
            return iam.AddToResourcePolicyResult(statement_added=False)
        if self._file_system_policy is None:
            self._file_system_policy = iam.PolicyDocument(statements=[])
        self._file_system_policy.add_statements(statement)
        return iam.AddToResourcePolicyResult(statement_added=True, policy_dependable=self)

    def _grant_client(self, grantee: iam.IGrantable, actions: list[ClientAction]) -> iam.Grant:
        # Granting client access turns off anonymous access unless asked for explicitly
        self._granted_client = True
        return iam.Grant.add_to_principal_or_resource(
            grantee=grantee,
            actions=[action.value for action in actions],
            resource_arns=[self.file_system_arn],
            resource=self,
            conditions=ACCESSED_VIA_MOUNT_TARGET,
        )


class ImportedFileSystem(_FileSystemBase):
    """A file system defined outside of this app, referenced by ID or ARN."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        security_group: ec2.ISecurityGroup,
        file_system_id: str | None = None,
        file_system_arn: str | None = None,
    ) -> None:
        super().__init__(scope, construct_id)

        if bool(file_system_id) == bool(file_system_arn):
            raise ValidationError("One of file_system_id or file_system_arn, but not both, must be provided.", self)

        stack = Stack.of(scope)
        self.file_system_arn = file_system_arn or stack.format_arn(
            service="elasticfilesystem",
            resource="file-system",
            resource_name=file_system_id,
        )
        resource_name = stack.split_arn(self.file_system_arn, ArnFormat.SLASH_RESOURCE_NAME).resource_name
        if not resource_name:
            raise ValidationError(f"Invalid FileSystem Arn {self.file_system_arn}", self)
        self.file_system_id = file_system_id or resource_name

        self.connections = ec2.Connections(
            security_groups=[security_group],
            default_port=ec2.Port.tcp(DEFAULT_PORT),
        )
        self.mount_targets_available = DependencyGroup()


class FileSystem(_FileSystemBase):
    """An Amazon EFS file system with one mount target per selected subnet.

    Exposes:
      - self.file_system_id / self.file_system_arn
      - self.connections (default port 2049)
      - self.mount_targets_available, a dependable over every mount target

    The file system policy is rendered at synthesis. When a client grant was
    made, or the deny-anonymous-access flag is on, and ``allow_anonymous_access``
    is not given, a statement restricting anonymous clients to mount-only access
    is added to it.
    """

    DEFAULT_PORT = DEFAULT_PORT

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        security_group: ec2.ISecurityGroup | None = None,
        vpc_subnets: ec2.SubnetSelection | None = None,
        encrypted: bool | None = None,
        file_system_name: str | None = None,
        kms_key: kms.IKey | None = None,
        lifecycle_policy: LifecyclePolicy | None = None,
        out_of_infrequent_access_policy: OutOfInfrequentAccessPolicy | None = None,
        transition_to_archive_policy: LifecyclePolicy | None = None,
        performance_mode: PerformanceMode | None = None,
        throughput_mode: ThroughputMode | None = None,
        provisioned_throughput_per_second: Size | None = None,
        removal_policy: RemovalPolicy | None = None,
        enable_automatic_backups: bool = False,
        file_system_policy: iam.PolicyDocument | None = None,
        allow_anonymous_access: bool | None = None,
        one_zone: bool = False,
        replication_overwrite_protection: ReplicationOverwriteProtection | None = None,
        replication_configuration: ReplicationConfiguration | None = None,
    ) -> None:
        super().__init__(scope, construct_id)
        self._owns_resource = True

        if performance_mode == PerformanceMode.MAX_IO and one_zone:
            raise ValidationError("performance_mode MAX_IO is not supported for One Zone file systems.", self)
        if one_zone:
            self._validate_one_zone(vpc, vpc_subnets)
        if throughput_mode == ThroughputMode.PROVISIONED and provisioned_throughput_per_second is None:
            raise ValidationError(
                "Property provisioned_throughput_per_second is required when throughput_mode is PROVISIONED",
                self,
            )
        if throughput_mode == ThroughputMode.ELASTIC and performance_mode == PerformanceMode.MAX_IO:
            raise ValidationError(
                "ThroughputMode ELASTIC is not supported for file systems with performance_mode MAX_IO",
                self,
            )
        if (
            replication_configuration is not None
            and replication_overwrite_protection == ReplicationOverwriteProtection.DISABLED
        ):
            raise ValidationError(
                "Cannot configure 'replication_configuration' when "
                "'replication_overwrite_protection' is set to 'DISABLED'",
                self,
            )

        # An unset value stays unset, CloudFormation treats false as a change
        if encrypted is None and FeatureFlags.of(self).is_enabled(DEFAULT_ENCRYPTION_AT_REST_FLAG):
            encrypted = True

        # One policy per entry
        lifecycle_policies: list[efs.CfnFileSystem.LifecyclePolicyProperty] = []
        if lifecycle_policy is not None:
            lifecycle_policies.append(efs.CfnFileSystem.LifecyclePolicyProperty(
                transition_to_ia=lifecycle_policy.value,
            ))
        if out_of_infrequent_access_policy is not None:
            lifecycle_policies.append(efs.CfnFileSystem.LifecyclePolicyProperty(
                transition_to_primary_storage_class=out_of_infrequent_access_policy.value,
            ))
        if transition_to_archive_policy is not None:
            lifecycle_policies.append(efs.CfnFileSystem.LifecyclePolicyProperty(
                transition_to_archive=transition_to_archive_policy.value,
            ))

        one_zone_az = (
            vpc_subnets.availability_zones[0]
            if vpc_subnets is not None and vpc_subnets.availability_zones
            else vpc.availability_zones[0]
        )

        self._allow_anonymous_access = allow_anonymous_access
        self._resource = efs.CfnFileSystem(
            self,
            "Resource",
            encrypted=encrypted,
            kms_key_id=kms_key.key_arn if kms_key is not None else None,
            lifecycle_policies=lifecycle_policies or None,
            performance_mode=performance_mode.value if performance_mode is not None else None,
            throughput_mode=throughput_mode.value if throughput_mode is not None else None,
            provisioned_throughput_in_mibps=(
                provisioned_throughput_per_second.to_mebibytes()
                if provisioned_throughput_per_second is not None
                else None
            ),
            backup_policy=(
                efs.CfnFileSystem.BackupPolicyProperty(status="ENABLED") if enable_automatic_backups else None
            ),
            file_system_policy=deferred_any(self._render_file_system_policy),
            file_system_protection=(
                efs.CfnFileSystem.FileSystemProtectionProperty(
                    replication_overwrite_protection=replication_overwrite_protection.value,
                )
                if replication_overwrite_protection is not None
                else None
            ),
            availability_zone_name=one_zone_az if one_zone else None,
            replication_configuration=(
                replication_configuration.render(self) if replication_configuration is not None else None
            ),
        )
        self._resource.apply_removal_policy(removal_policy or RemovalPolicy.RETAIN)

        self.file_system_id = self._resource.ref
        self.file_system_arn = self._resource.attr_arn
        self._file_system_policy = file_system_policy

        Tags.of(self).add("Name", file_system_name or self.node.path)

        if security_group is None:
            security_group = ec2.SecurityGroup(self, "EfsSecurityGroup", vpc=vpc)
        self.connections = ec2.Connections(
            security_groups=[security_group],
            default_port=ec2.Port.tcp(DEFAULT_PORT),
        )

        # A One Zone file system only gets a mount target in its own zone
        if one_zone:
            subnet_selection = ec2.SubnetSelection(availability_zones=[one_zone_az])
        else:
            subnet_selection = vpc_subnets or ec2.SubnetSelection(one_per_az=True)

        self.mount_targets_available = DependencyGroup()
        for subnet in vpc.select_subnets(**subnet_selection._values).subnets:
            subnet_id = (
                Names.unique_resource_name(subnet, max_length=16)
                if Token.is_unresolved(subnet.node.id)
                else subnet.node.id
            )
            mount_target = efs.CfnMountTarget(
                self,
                f"EfsMountTarget-{subnet_id}",
                file_system_id=self.file_system_id,
                security_groups=[security_group.security_group_id],
                subnet_id=subnet.subnet_id,
            )
            self.mount_targets_available.add(mount_target)

    @classmethod
    def from_file_system_attributes(
        cls,
        scope: Construct,
        construct_id: str,
        *,
        security_group: ec2.ISecurityGroup,
        file_system_id: str | None = None,
        file_system_arn: str | None = None,
    ) -> ImportedFileSystem:
        """Reference an existing file system. Exactly one of ``file_system_id`` and ``file_system_arn`` is required."""
        return ImportedFileSystem(
            scope,
            construct_id,
            security_group=security_group,
            file_system_id=file_system_id,
            file_system_arn=file_system_arn,
        )

    @property
    def cfn_file_system(self) -> efs.CfnFileSystem:
        return self._resource

    def _render_file_system_policy(self) -> iam.PolicyDocument | None:
        deny_by_default = bool(FeatureFlags.of(self).is_enabled(DENY_ANONYMOUS_ACCESS_FLAG)) or self._granted_client
        allow_anonymous_access = (
            self._allow_anonymous_access if self._allow_anonymous_access is not None else not deny_by_default
        )
        if not allow_anonymous_access:
            self.add_to_resource_policy(iam.PolicyStatement(
                principals=[iam.AnyPrincipal()],
                actions=[ClientAction.WRITE.value, ClientAction.ROOT_ACCESS.value],
                conditions=ACCESSED_VIA_MOUNT_TARGET,
            ))
        return self._file_system_policy

    def _validate_one_zone(self, vpc: ec2.IVpc, vpc_subnets: ec2.SubnetSelection | None) -> None:
        if vpc_subnets is None:
            return
        zones = vpc_subnets.availability_zones
        if not zones:
            raise ValidationError(
                "When one_zone is enabled and vpc_subnets defined, vpc_subnets.availability_zones can not be undefined.",
                self,
            )
        if len(zones) != 1:
            raise ValidationError(
                "When one_zone is enabled, vpc_subnets.availability_zones should exactly have one zone.",
                self,
            )
        # Only checked against real zone names, not tokens or dummy values
        vpc_zones = vpc.availability_zones
        if (
            all(not Token.is_unresolved(zone) and not zone.startswith("dummy") for zone in vpc_zones)
            and zones[0] not in vpc_zones
        ):
            raise ValidationError("vpc_subnets.availability_zones specified is not in vpc.availability_zones.", self)
