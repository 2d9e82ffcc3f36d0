from __future__ import annotations

import json
import logging
from typing import Any, Literal, TypedDict

import boto3
from botocore.client import BaseClient

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

RequestType = Literal["Create", "Update", "Delete"]


class ReplicaProperties(TypedDict, total=False):
    TableName: str
    Region: str
    SkipReplicaDeletion: str
    SkipReplicationCompletedWait: str


class ReplicaEvent(TypedDict, total=False):
    RequestType: RequestType
    ResourceProperties: ReplicaProperties
    PhysicalResourceId: str
    ResponseURL: str


ddb: BaseClient = boto3.client("dynamodb")


def _log_event(event: ReplicaEvent) -> None:
    # ResponseURL is a presigned S3 URL
    logger.info("Event: %s", json.dumps({**event, "ResponseURL": "..."}, default=str))


def _find_replica(table: dict[str, Any], region: str) -> dict[str, Any] | None:
    return next((r for r in table.get("Replicas", []) if r.get("RegionName") == region), None)


def on_event_handler(event: ReplicaEvent, _context: Any) -> dict[str, Any] | None:
    """Adds or removes the replica of a table in one region.

    Create and Delete issue the matching UpdateTable call. Update only creates
    the replica when DescribeTable shows it is missing.
    """
    _log_event(event)

    props = event["ResourceProperties"]
    table_name = props["TableName"]
    region = props["Region"]
    request_type = event["RequestType"]

    update_table_action: str | None = None
    if request_type in ("Create", "Delete"):
        update_table_action = request_type
    elif request_type == "Update":
        data = ddb.describe_table(TableName=table_name)
        logger.info("Describe table: %s", json.dumps(data, default=str))
        if _find_replica(data["Table"], region) is None:
            update_table_action = "Create"

    if update_table_action == "Delete" and props.get("SkipReplicaDeletion") == "true":
        logger.info("Skipping deletion of replica in %s for table %s", region, table_name)
        return None

    if update_table_action is not None:
        data = ddb.update_table(
            TableName=table_name,
            ReplicaUpdates=[{update_table_action: {"RegionName": region}}],
        )
        logger.info("Update table: %s", json.dumps(data, default=str))
    else:
        logger.info("Skipping updating table %s, a replica in %s already exists", table_name, region)

    if request_type in ("Create", "Update"):
        return {"PhysicalResourceId": f"{table_name}-{region}"}
    return None


def is_complete_handler(event: ReplicaEvent, _context: Any) -> dict[str, bool]:
    """Reports whether the replica change requested by ``on_event_handler`` has settled."""
    _log_event(event)

    props = event["ResourceProperties"]
    table_name = props["TableName"]
    region = props["Region"]
    request_type = event["RequestType"]

    data = ddb.describe_table(TableName=table_name)
    logger.info("Describe table: %s", json.dumps(data, default=str))

    table = data["Table"]
    table_active = table.get("TableStatus") == "ACTIVE"
    replica = _find_replica(table, region)
    replica_active = replica is not None and replica.get("ReplicaStatus") == "ACTIVE"
    skip_replication_completed_wait = props.get("SkipReplicationCompletedWait") == "true"

    if request_type in ("Create", "Update"):
        return {"IsComplete": table_active and (replica_active or skip_replication_completed_wait)}

    if request_type == "Delete":
        if props.get("SkipReplicaDeletion") == "true":
            return {"IsComplete": True}
        return {"IsComplete": table_active and replica is None}

    raise ValueError(f"Unsupported request type: {request_type}")
