from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Any

import boto3
from dotenv import load_dotenv

load_dotenv(".env")

SETTLED_STATUSES = ("ACTIVE",)


def get_replica_statuses(client, table_name: str) -> dict[str, str]:
    """Map each replica region of a table to its replica status."""
    table: dict[str, Any] = client.describe_table(TableName=table_name)["Table"]
    return {
        replica["RegionName"]: replica.get("ReplicaStatus", "UNKNOWN")
        for replica in table.get("Replicas", [])
    }


def all_active(statuses: dict[str, str], expected_regions: list[str] | None = None) -> bool:
    if expected_regions and any(region not in statuses for region in expected_regions):
        return False
    return all(status in SETTLED_STATUSES for status in statuses.values())


def print_statuses(table_name: str, statuses: dict[str, str]) -> None:
    if not statuses:
        print(f"{table_name}: no replicas")
        return
    for region, status in sorted(statuses.items()):
        print(f"{table_name} [{region}] {status}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show the replica status of a global table")
    parser.add_argument("table_name")
    parser.add_argument("--region", default=os.environ.get("AWS_REGION"))
    parser.add_argument(
        "--expect", action="append", default=[], help="Region that must be listed as a replica (repeatable)")
    parser.add_argument("--wait", action="store_true", help="Poll until every replica is ACTIVE")
    parser.add_argument("--interval", type=float, default=10.0, help="Seconds between polls")
    parser.add_argument("--max-attempts", type=int, default=180)

    args = parser.parse_args(argv)

    ddb = boto3.client("dynamodb", region_name=args.region)

    statuses = get_replica_statuses(ddb, args.table_name)
    print_statuses(args.table_name, statuses)
    if not args.wait:
        return 0 if all_active(statuses, args.expect) else 1

    attempts = 1
    while not all_active(statuses, args.expect):
        if attempts >= args.max_attempts:
            print(f"Gave up after {attempts} attempts")
            return 1
        time.sleep(args.interval)
        attempts += 1
        statuses = get_replica_statuses(ddb, args.table_name)
        print(f"\n=== Attempt {attempts} ===")
        print_statuses(args.table_name, statuses)

    print("All replicas ACTIVE")
    return 0


if __name__ == "__main__":
    sys.exit(main())
