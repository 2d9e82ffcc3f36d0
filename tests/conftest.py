from __future__ import annotations

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import aws_cdk as cdk
import pytest

# Handler modules create their boto3 clients at import time
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

ACCOUNT = "123456789012"
REGION = "us-east-1"


@pytest.fixture(autouse=True)
def mock_environment() -> Generator[None]:
    """Mock environment variables for all tests."""
    with patch.dict(os.environ, {
        'AWS_DEFAULT_REGION': REGION,
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'CDK_DOCKER': 'false',
    }):
        yield


@pytest.fixture
def app() -> cdk.App:
    return cdk.App()


@pytest.fixture
def stack(app: cdk.App) -> cdk.Stack:
    """Stack with a concrete account and region."""
    return cdk.Stack(app, "TestStack", env=cdk.Environment(account=ACCOUNT, region=REGION))


@pytest.fixture
def agnostic_stack(app: cdk.App) -> cdk.Stack:
    """Environment-agnostic stack, its region is an unresolved token."""
    return cdk.Stack(app, "AgnosticStack")


@pytest.fixture
def sample_replica_properties() -> dict[str, Any]:
    """Sample ResourceProperties of a Custom::DynamoDBReplica."""
    return {
        "ServiceToken": f"arn:aws:lambda:{REGION}:{ACCOUNT}:function:provider",
        "TableName": "test-table",
        "Region": "eu-west-1",
    }


@pytest.fixture
def replica_event(sample_replica_properties: dict[str, Any]):
    """Factory for custom resource events of the replica provider."""
    def _event(request_type: str, **properties: Any) -> dict[str, Any]:
        return {
            "RequestType": request_type,
            "ResponseURL": "https://cloudformation-custom-resource-response.s3.amazonaws.com/secret",
            "StackId": f"arn:aws:cloudformation:{REGION}:{ACCOUNT}:stack/TestStack/guid",
            "RequestId": "request-id",
            "LogicalResourceId": "TableReplicaeuwest1",
            "ResourceType": "Custom::DynamoDBReplica",
            "ResourceProperties": {**sample_replica_properties, **properties},
        }
    return _event


@pytest.fixture
def mock_lambda_context() -> MagicMock:
    """Mock AWS Lambda context object."""
    context = MagicMock()
    context.function_name = "test-function"
    context.function_version = "1"
    context.invoked_function_arn = f"arn:aws:lambda:{REGION}:{ACCOUNT}:function:test-function"
    context.memory_limit_in_mb = "128"
    context.remaining_time_in_millis = lambda: 30000
    context.request_id = "test-request-id"
    context.log_group_name = "/aws/lambda/test-function"
    context.log_stream_name = "2023/10/19/[$LATEST]test-stream"
    return context
