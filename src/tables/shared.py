from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from aws_cdk import aws_dynamodb as dynamodb
from aws_cdk import aws_s3 as s3

from src.common.errors import ValidationError

HASH_KEY_TYPE = "HASH"
RANGE_KEY_TYPE = "RANGE"

# https://docs.aws.amazon.com/amazondynamodb/latest/developerguide/Limits.html#limits-secondary-indexes
MAX_LOCAL_SECONDARY_INDEX_COUNT = 5
MAX_NON_KEY_ATTRIBUTES = 100


class AttributeType(str, Enum):
    BINARY = "B"
    NUMBER = "N"
    STRING = "S"


class BillingMode(str, Enum):
    PAY_PER_REQUEST = "PAY_PER_REQUEST"
    PROVISIONED = "PROVISIONED"


class ProjectionType(str, Enum):
    KEYS_ONLY = "KEYS_ONLY"
    INCLUDE = "INCLUDE"
    ALL = "ALL"


class StreamViewType(str, Enum):
    NEW_IMAGE = "NEW_IMAGE"
    OLD_IMAGE = "OLD_IMAGE"
    NEW_AND_OLD_IMAGES = "NEW_AND_OLD_IMAGES"
    KEYS_ONLY = "KEYS_ONLY"


class TableClass(str, Enum):
    STANDARD = "STANDARD"
    STANDARD_INFREQUENT_ACCESS = "STANDARD_INFREQUENT_ACCESS"


class TableEncryption(str, Enum):
    DEFAULT = "AWS_OWNED"
    CUSTOMER_MANAGED = "CUSTOMER_MANAGED"
    AWS_MANAGED = "AWS_MANAGED"


class InputCompressionType(str, Enum):
    GZIP = "GZIP"
    ZSTD = "ZSTD"
    NONE = "NONE"


class ApproximateCreationDateTimePrecision(str, Enum):
    MILLISECOND = "MILLISECOND"
    MICROSECOND = "MICROSECOND"


class Operation(str, Enum):
    """Operations reported in the per-operation DynamoDB metrics."""

    GET_ITEM = "GetItem"
    BATCH_GET_ITEM = "BatchGetItem"
    SCAN = "Scan"
    QUERY = "Query"
    GET_RECORDS = "GetRecords"
    PUT_ITEM = "PutItem"
    DELETE_ITEM = "DeleteItem"
    UPDATE_ITEM = "UpdateItem"
    BATCH_WRITE_ITEM = "BatchWriteItem"
    TRANSACT_WRITE_ITEMS = "TransactWriteItems"
    TRANSACT_GET_ITEMS = "TransactGetItems"
    EXECUTE_TRANSACTION = "ExecuteTransaction"
    BATCH_EXECUTE_STATEMENT = "BatchExecuteStatement"
    EXECUTE_STATEMENT = "ExecuteStatement"


@dataclass(frozen=True)
class Attribute:
    """A key attribute of a table or secondary index."""

    name: str
    type: AttributeType


@dataclass(frozen=True)
class SchemaOptions:
    partition_key: Attribute
    sort_key: Attribute | None = None


# === IAM action sets used by the grant helpers ===
READ_DATA_ACTIONS = [
    "dynamodb:BatchGetItem",
    "dynamodb:GetRecords",
    "dynamodb:GetShardIterator",
    "dynamodb:Query",
    "dynamodb:GetItem",
    "dynamodb:Scan",
    "dynamodb:ConditionCheckItem",
]
WRITE_DATA_ACTIONS = [
    "dynamodb:BatchWriteItem",
    "dynamodb:PutItem",
    "dynamodb:UpdateItem",
    "dynamodb:DeleteItem",
]
DESCRIBE_TABLE = "dynamodb:DescribeTable"
READ_STREAM_DATA_ACTIONS = [
    "dynamodb:DescribeStream",
    "dynamodb:GetRecords",
    "dynamodb:GetShardIterator",
]
KEY_READ_ACTIONS = [
    "kms:Decrypt",
    "kms:DescribeKey",
]
KEY_WRITE_ACTIONS = [
    "kms:Encrypt",
    "kms:ReEncrypt*",
    "kms:GenerateDataKey*",
]


# === S3 import ===
_VALID_CSV_DELIMITERS = [",", "\t", ":", ";", "|", " "]
_READABLE_CSV_DELIMITERS = ["comma (,)", "tab (\\t)", "colon (:)", "semicolon (;)", "pipe (|)", "space ( )"]


class InputFormat:
    """Format of the S3 objects a table is seeded from."""

    def __init__(self, input_format: str, input_format_options: dict[str, Any] | None = None) -> None:
        self.input_format = input_format
        self.input_format_options = input_format_options

    @classmethod
    def dynamodb_json(cls) -> InputFormat:
        return cls("DYNAMODB_JSON")

    @classmethod
    def ion(cls) -> InputFormat:
        return cls("ION")

    @classmethod
    def csv(cls, *, delimiter: str | None = None, header_list: list[str] | None = None) -> InputFormat:
        if delimiter is not None and (delimiter not in _VALID_CSV_DELIMITERS or len(delimiter) != 1):
            raise ValidationError(" ".join([
                "Delimiter must be a single character and one of the following:",
                f"{', '.join(_READABLE_CSV_DELIMITERS)},",
                f"got '{delimiter}'",
            ]))
        return cls("CSV", {"csv": {"delimiter": delimiter, "header_list": header_list}})

    def render(self) -> dict[str, Any]:
        rendered: dict[str, Any] = {"input_format": self.input_format}
        if self.input_format_options is not None:
            csv = self.input_format_options["csv"]
            rendered["input_format_options"] = dynamodb.CfnTable.InputFormatOptionsProperty(
                csv=dynamodb.CfnTable.CsvProperty(
                    delimiter=csv["delimiter"],
                    header_list=csv["header_list"],
                ),
            )
        return rendered


@dataclass(frozen=True)
class ImportSourceSpecification:
    """Data to import from S3 when the table is created."""

    input_format: InputFormat
    bucket: s3.IBucket
    compression_type: InputCompressionType | None = None
    bucket_owner: str | None = None
    key_prefix: str | None = None

    def render(self) -> dynamodb.CfnTable.ImportSourceSpecificationProperty:
        return dynamodb.CfnTable.ImportSourceSpecificationProperty(
            **self.input_format.render(),
            input_compression_type=self.compression_type.value if self.compression_type else None,
            s3_bucket_source=dynamodb.CfnTable.S3BucketSourceProperty(
                s3_bucket=self.bucket.bucket_name,
                s3_bucket_owner=self.bucket_owner,
                s3_key_prefix=self.key_prefix,
            ),
        )


@dataclass(frozen=True)
class PointInTimeRecoverySpecification:
    point_in_time_recovery_enabled: bool
    recovery_period_in_days: int | None = None
