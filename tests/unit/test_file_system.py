"""Tests for the EFS FileSystem construct."""
from __future__ import annotations

import aws_cdk as cdk
import aws_cdk.assertions as assertions
import pytest
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kms as kms

from src.common.errors import ValidationError
from src.file_systems.file_system import (
    FileSystem,
    ImportedFileSystem,
    LifecyclePolicy,
    OutOfInfrequentAccessPolicy,
    PerformanceMode,
    ReplicationConfiguration,
    ReplicationOverwriteProtection,
    ThroughputMode,
)

FILE_SYSTEM_ARN = "arn:aws:elasticfilesystem:us-east-1:123456789012:file-system/fs-12345678"


@pytest.fixture
def vpc(stack: cdk.Stack) -> ec2.Vpc:
    return ec2.Vpc(stack, "Vpc")


def _role(stack: cdk.Stack) -> iam.Role:
    return iam.Role(stack, "Role", assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"))


class TestFileSystem:
    """Test the file system resource."""

    def test_defaults(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(stack, "FileSystem", vpc=vpc)
        template = assertions.Template.from_stack(stack)

        template.has_resource("AWS::EFS::FileSystem", {
            "DeletionPolicy": "Retain",
            "UpdateReplacePolicy": "Retain",
        })
        template.has_resource_properties("AWS::EFS::FileSystem", {
            "FileSystemTags": [{"Key": "Name", "Value": "TestStack/FileSystem"}],
            "PerformanceMode": assertions.Match.absent(),
            "LifecyclePolicies": assertions.Match.absent(),
            "FileSystemPolicy": assertions.Match.absent(),
        })
        # one mount target per availability zone
        template.resource_count_is("AWS::EFS::MountTarget", len(vpc.availability_zones))
        template.resource_count_is("AWS::EC2::SecurityGroup", 1)

    def test_all_properties(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        key = kms.Key(stack, "Key")
        FileSystem(
            stack,
            "FileSystem",
            vpc=vpc,
            encrypted=True,
            kms_key=key,
            file_system_name="shared",
            lifecycle_policy=LifecyclePolicy.AFTER_30_DAYS,
            out_of_infrequent_access_policy=OutOfInfrequentAccessPolicy.AFTER_1_ACCESS,
            transition_to_archive_policy=LifecyclePolicy.AFTER_90_DAYS,
            performance_mode=PerformanceMode.MAX_IO,
            throughput_mode=ThroughputMode.PROVISIONED,
            provisioned_throughput_per_second=cdk.Size.mebibytes(10),
            enable_automatic_backups=True,
            removal_policy=cdk.RemovalPolicy.DESTROY,
            replication_overwrite_protection=ReplicationOverwriteProtection.ENABLED,
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource("AWS::EFS::FileSystem", {"DeletionPolicy": "Delete"})
        template.has_resource_properties("AWS::EFS::FileSystem", {
            "Encrypted": True,
            "KmsKeyId": {"Fn::GetAtt": [assertions.Match.any_value(), "Arn"]},
            "FileSystemTags": [{"Key": "Name", "Value": "shared"}],
            "LifecyclePolicies": [
                {"TransitionToIA": "AFTER_30_DAYS"},
                {"TransitionToPrimaryStorageClass": "AFTER_1_ACCESS"},
                {"TransitionToArchive": "AFTER_90_DAYS"},
            ],
            "PerformanceMode": "maxIO",
            "ThroughputMode": "provisioned",
            "ProvisionedThroughputInMibps": 10,
            "BackupPolicy": {"Status": "ENABLED"},
            "FileSystemProtection": {"ReplicationOverwriteProtection": "ENABLED"},
        })

    def test_encryption_can_be_disabled(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(stack, "FileSystem", vpc=vpc, encrypted=False)
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {"Encrypted": False})

    def test_one_zone(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(stack, "FileSystem", vpc=vpc, one_zone=True)
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "AvailabilityZoneName": vpc.availability_zones[0],
        })
        template.resource_count_is("AWS::EFS::MountTarget", 1)

    def test_existing_security_group(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        security_group = ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc)
        FileSystem(stack, "FileSystem", vpc=vpc, security_group=security_group)
        template = assertions.Template.from_stack(stack)

        template.resource_count_is("AWS::EC2::SecurityGroup", 1)
        template.has_resource_properties("AWS::EFS::MountTarget", {
            "SecurityGroups": [{"Fn::GetAtt": [stack.get_logical_id(security_group.node.default_child), "GroupId"]}],
        })

    def test_attributes_reference_the_resource(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem(stack, "FileSystem", vpc=vpc)
        logical_id = stack.get_logical_id(file_system.cfn_file_system)

        assert stack.resolve(file_system.file_system_id) == {"Ref": logical_id}
        assert stack.resolve(file_system.file_system_arn) == {"Fn::GetAtt": [logical_id, "Arn"]}


class TestFileSystemValidation:
    """Test the property combinations the file system rejects."""

    def test_max_io_one_zone_fails(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="MAX_IO is not supported for One Zone"):
            FileSystem(stack, "FileSystem", vpc=vpc, one_zone=True, performance_mode=PerformanceMode.MAX_IO)

    def test_provisioned_requires_throughput(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="provisioned_throughput_per_second is required"):
            FileSystem(stack, "FileSystem", vpc=vpc, throughput_mode=ThroughputMode.PROVISIONED)

    def test_elastic_max_io_fails(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="ELASTIC is not supported"):
            FileSystem(
                stack,
                "FileSystem",
                vpc=vpc,
                throughput_mode=ThroughputMode.ELASTIC,
                performance_mode=PerformanceMode.MAX_IO,
            )

    def test_replication_without_overwrite_protection_fails(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="Cannot configure 'replication_configuration'"):
            FileSystem(
                stack,
                "FileSystem",
                vpc=vpc,
                replication_configuration=ReplicationConfiguration.regional_file_system("eu-west-1"),
                replication_overwrite_protection=ReplicationOverwriteProtection.DISABLED,
            )

    def test_one_zone_subnets_need_zones(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="availability_zones can not be undefined"):
            FileSystem(
                stack,
                "FileSystem",
                vpc=vpc,
                one_zone=True,
                vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            )

    def test_one_zone_subnets_single_zone(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        with pytest.raises(ValidationError, match="should exactly have one zone"):
            FileSystem(
                stack,
                "FileSystem",
                vpc=vpc,
                one_zone=True,
                vpc_subnets=ec2.SubnetSelection(availability_zones=list(vpc.availability_zones)),
            )


class TestReplication:
    """Test replication destinations."""

    def test_regional_destination(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(
            stack,
            "FileSystem",
            vpc=vpc,
            replication_configuration=ReplicationConfiguration.regional_file_system("eu-west-1"),
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "ReplicationConfiguration": {"Destinations": [{"Region": "eu-west-1"}]},
        })

    def test_regional_destination_defaults_to_stack_region(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(
            stack,
            "FileSystem",
            vpc=vpc,
            replication_configuration=ReplicationConfiguration.regional_file_system(),
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "ReplicationConfiguration": {"Destinations": [{"Region": "us-east-1"}]},
        })

    def test_one_zone_destination(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        FileSystem(
            stack,
            "FileSystem",
            vpc=vpc,
            replication_configuration=ReplicationConfiguration.one_zone_file_system("eu-west-1", "eu-west-1a"),
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "ReplicationConfiguration": {
                "Destinations": [{"Region": "eu-west-1", "AvailabilityZoneName": "eu-west-1a"}],
            },
        })

    def test_existing_destination(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        destination = FileSystem.from_file_system_attributes(
            stack,
            "Destination",
            security_group=ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc),
            file_system_id="fs-12345678",
        )
        FileSystem(
            stack,
            "FileSystem",
            vpc=vpc,
            replication_configuration=ReplicationConfiguration.existing_file_system(destination),
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "ReplicationConfiguration": {
                "Destinations": [{"FileSystemId": "fs-12345678", "Region": "us-east-1"}],
            },
        })


class TestFileSystemGrants:
    """Test grants and the file system policy."""

    def test_grant_read_restricts_anonymous_clients(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem(stack, "FileSystem", vpc=vpc)
        file_system.grant_read(_role(stack))
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::IAM::Policy", {
            "PolicyDocument": {
                "Statement": [{
                    "Action": "elasticfilesystem:ClientMount",
                    "Condition": {"Bool": {"elasticfilesystem:AccessedViaMountTarget": "true"}},
                    "Effect": "Allow",
                    "Resource": {"Fn::GetAtt": [assertions.Match.any_value(), "Arn"]},
                }],
            },
        })
        template.has_resource_properties("AWS::EFS::FileSystem", {
            "FileSystemPolicy": {
                "Statement": [{
                    "Action": ["elasticfilesystem:ClientWrite", "elasticfilesystem:ClientRootAccess"],
                    "Condition": {"Bool": {"elasticfilesystem:AccessedViaMountTarget": "true"}},
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                }],
            },
        })

    def test_allow_anonymous_access_keeps_policy_empty(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem(stack, "FileSystem", vpc=vpc, allow_anonymous_access=True)
        file_system.grant_root_access(_role(stack))
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::EFS::FileSystem", {
            "FileSystemPolicy": assertions.Match.absent(),
        })
        template.has_resource_properties("AWS::IAM::Policy", {
            "PolicyDocument": {
                "Statement": [assertions.Match.object_like({
                    "Action": [
                        "elasticfilesystem:ClientMount",
                        "elasticfilesystem:ClientWrite",
                        "elasticfilesystem:ClientRootAccess",
                    ],
                })],
            },
        })

    def test_resource_policy_statement(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem(stack, "FileSystem", vpc=vpc, allow_anonymous_access=True)
        result = file_system.add_to_resource_policy(iam.PolicyStatement(
            principals=[iam.AccountRootPrincipal()],
            actions=["elasticfilesystem:ClientMount"],
        ))
        template = assertions.Template.from_stack(stack)

        assert result.statement_added
        template.has_resource_properties("AWS::EFS::FileSystem", {
            "FileSystemPolicy": {
                "Statement": [assertions.Match.object_like({"Action": "elasticfilesystem:ClientMount"})],
            },
        })

    def test_grant_custom_actions(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem(stack, "FileSystem", vpc=vpc)
        file_system.grant(_role(stack), "elasticfilesystem:DescribeMountTargets")
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties("AWS::IAM::Policy", {
            "PolicyDocument": {
                "Statement": [assertions.Match.object_like({
                    "Action": "elasticfilesystem:DescribeMountTargets",
                    "Condition": assertions.Match.absent(),
                })],
            },
        })


class TestImportedFileSystem:
    """Test referencing existing file systems."""

    def test_from_id(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem.from_file_system_attributes(
            stack,
            "Imported",
            security_group=ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc),
            file_system_id="fs-12345678",
        )

        assert isinstance(file_system, ImportedFileSystem)
        assert file_system.file_system_id == "fs-12345678"
        assert stack.resolve(file_system.file_system_arn) == {
            "Fn::Join": ["", [
                "arn:", {"Ref": "AWS::Partition"},
                ":elasticfilesystem:us-east-1:123456789012:file-system/fs-12345678",
            ]],
        }

    def test_from_arn(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem.from_file_system_attributes(
            stack,
            "Imported",
            security_group=ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc),
            file_system_arn=FILE_SYSTEM_ARN,
        )

        assert file_system.file_system_id == "fs-12345678"
        assert file_system.file_system_arn == FILE_SYSTEM_ARN

    @pytest.mark.parametrize("file_system_id,file_system_arn", [
        (None, None),
        ("fs-12345678", FILE_SYSTEM_ARN),
    ])
    def test_exactly_one_of_id_or_arn(
        self,
        stack: cdk.Stack,
        vpc: ec2.Vpc,
        file_system_id: str | None,
        file_system_arn: str | None,
    ) -> None:
        with pytest.raises(ValidationError, match="One of file_system_id or file_system_arn, but not both"):
            FileSystem.from_file_system_attributes(
                stack,
                "Imported",
                security_group=ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc),
                file_system_id=file_system_id,
                file_system_arn=file_system_arn,
            )

    def test_resource_policy_not_added(self, stack: cdk.Stack, vpc: ec2.Vpc) -> None:
        file_system = FileSystem.from_file_system_attributes(
            stack,
            "Imported",
            security_group=ec2.SecurityGroup(stack, "SecurityGroup", vpc=vpc),
            file_system_arn=FILE_SYSTEM_ARN,
        )
        result = file_system.add_to_resource_policy(iam.PolicyStatement(
            principals=[iam.AccountRootPrincipal()],
            actions=["elasticfilesystem:ClientMount"],
        ))

        assert not result.statement_added
