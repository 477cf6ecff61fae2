"""
Ledger of snapshots created by this tool.

Entries are keyed by (resource, created_at) where created_at is the snapshot
start time truncated to the minute, so the key does not move with sub-minute
jitter between EC2's start time and the moment the entry is written.
Entries are only ever stored or deleted, never updated.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .tag_policy import format_rfc3339

logger = structlog.get_logger(__name__)


class LedgerError(Exception):
    pass


def truncate_to_minute(ts: dt.datetime) -> dt.datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc).replace(second=0, microsecond=0)


@dataclass(frozen=True)
class LedgerEntry:
    resource_id: str
    snapshot_id: str
    created_at: dt.datetime

    @classmethod
    def create(cls, resource_id: str, snapshot_id: str, start_time: dt.datetime) -> "LedgerEntry":
        return cls(resource_id, snapshot_id, truncate_to_minute(start_time))

    @property
    def key(self) -> Tuple[str, str]:
        return self.resource_id, format_rfc3339(self.created_at)


class Ledger:
    def store(self, entry: LedgerEntry) -> None:
        raise NotImplementedError

    def delete(self, entry: LedgerEntry) -> None:
        raise NotImplementedError


class NullLedger(Ledger):
    def store(self, entry: LedgerEntry) -> None:
        logger.debug("Discarding ledger entry", snapshot_id=entry.snapshot_id)

    def delete(self, entry: LedgerEntry) -> None:
        logger.debug("Discarding ledger delete", snapshot_id=entry.snapshot_id)


class MemoryLedger(Ledger):
    def __init__(self):
        self.entries: Dict[Tuple[str, str], LedgerEntry] = {}

    def store(self, entry: LedgerEntry) -> None:
        self.entries[entry.key] = entry

    def delete(self, entry: LedgerEntry) -> None:
        current = self.entries.get(entry.key)
        if current is None or current.snapshot_id != entry.snapshot_id:
            raise LedgerError(f"no ledger entry for {entry.resource_id}/{entry.snapshot_id}")
        del self.entries[entry.key]

    def for_resource(self, resource_id: str) -> List[LedgerEntry]:
        return sorted(
            (e for e in self.entries.values() if e.resource_id == resource_id),
            key=lambda e: e.created_at,
        )


class DynamoDBLedger(Ledger):
    """
    Ledger kept in a DynamoDB table.

    Table layout: partition key `Resource` (S), sort key `CreatedAt` (S, RFC 3339
    minute), attribute `SnapshotID` (S).
    """

    def __init__(self, table):
        self.table = table

    @classmethod
    def from_session(cls, sess, table_name: str, region: Optional[str] = None) -> "DynamoDBLedger":
        resource = sess.resource("dynamodb", region_name=region) if region else sess.resource("dynamodb")
        return cls(resource.Table(table_name))

    def store(self, entry: LedgerEntry) -> None:
        resource, created_at = entry.key
        try:
            self.table.put_item(Item={
                "Resource": resource,
                "CreatedAt": created_at,
                "SnapshotID": entry.snapshot_id,
            })
        except (BotoCoreError, ClientError) as e:
            raise LedgerError(f"storing {entry.snapshot_id}: {e}") from e

    def delete(self, entry: LedgerEntry) -> None:
        resource, created_at = entry.key
        try:
            self.table.delete_item(
                Key={"Resource": resource, "CreatedAt": created_at},
                ConditionExpression="SnapshotID = :sid",
                ExpressionAttributeValues={":sid": entry.snapshot_id},
            )
        except (BotoCoreError, ClientError) as e:
            raise LedgerError(f"deleting {entry.snapshot_id}: {e}") from e
