from __future__ import annotations

from typing import Any

from aws_cdk import Duration, Resource
from aws_cdk import aws_events as events
from constructs import Construct

# EventPattern attribute -> CloudFormation key
_EVENT_PATTERN_KEYS = {
    "account": "account",
    "detail": "detail",
    "detail_type": "detail-type",
    "id": "id",
    "region": "region",
    "resources": "resources",
    "source": "source",
    "time": "time",
    "version": "version",
}


def render_event_pattern(pattern: events.EventPattern) -> dict[str, Any]:
    rendered: dict[str, Any] = {}
    for attribute, key in _EVENT_PATTERN_KEYS.items():
        value = getattr(pattern, attribute)
        if value is not None:
            rendered[key] = value
    return rendered


class Archive(Resource):
    """Archives the events of a bus that match a pattern.

    Exposes:
      - self.archive_name
      - self.archive_arn
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        source_event_bus: events.IEventBus,
        event_pattern: events.EventPattern,
        archive_name: str | None = None,
        description: str | None = None,
        retention: Duration | None = None,
    ) -> None:
        super().__init__(scope, construct_id, physical_name=archive_name)

        archive = events.CfnArchive(
            self,
            "Archive",
            source_arn=source_event_bus.event_bus_arn,
            description=description,
            event_pattern=render_event_pattern(event_pattern),
            # 0 keeps events forever
            retention_days=retention.to_days(integral=True) if retention is not None else 0,
            archive_name=self._physical_name,
        )

        self.archive_arn = archive.attr_arn
        self.archive_name = archive.ref
        self.node.default_child = archive
