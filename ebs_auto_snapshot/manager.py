"""
Snapshot manager: creates EBS snapshots for volumes carrying the backup tag and
prunes snapshots whose delete-after tag has passed.

Resources are handled one at a time. A failure on one volume or snapshot is
logged and the run moves on to the next; only a failed listing (or a
cancellation) ends a workflow early.
"""
from __future__ import annotations

import datetime as dt
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import SnapshotConfig
from .gateway import Ec2Gateway
from .ledger import Ledger, LedgerEntry, LedgerError
from .run_context import DeadlineExceeded, RunContext
from .tag_policy import (
    compute_delete_after,
    find_tag,
    format_rfc3339,
    is_eligible_for_backup,
    is_expired,
    parse_rfc3339,
    resolve_retention_days,
)

COMPONENT = "ebs-snapshot-manager"
NAME_TAG = "Name"
VOLUME_NAME_TAG = "volume-name"

RESOURCE_ERRORS = (BotoCoreError, ClientError, DeadlineExceeded)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class RunSummary:
    workflow: str
    examined: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    ledger_errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SnapshotManager:
    def __init__(
        self,
        gateway: Ec2Gateway,
        ledger: Ledger,
        config: Optional[SnapshotConfig] = None,
        clock: Callable[[], dt.datetime] = utcnow,
        logger=None,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.config = config or SnapshotConfig()
        self.clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def log(self):
        return self._logger.bind(component=COMPONENT)

    def snapshot_name(self, volume_id: str) -> str:
        return f"{volume_id}-{time.time_ns()}-{self.config.suffix}"

    # Snapshot workflow

    def snapshot(self, ctx: RunContext) -> RunSummary:
        """Snapshot every volume carrying the backup tag. Raises only if listing fails."""
        volumes = self.gateway.list_eligible_volumes(ctx)
        summary = RunSummary("snapshot")
        self.log.info("Found volumes to snapshot", count=len(volumes))
        for volume in volumes:
            summary.examined += 1
            vctx = ctx.child(self.config.volume_timeout)
            try:
                self._snapshot_volume(vctx, volume, summary)
            finally:
                vctx.cancel()
        return summary

    def _snapshot_volume(self, ctx: RunContext, volume: Dict[str, Any], summary: RunSummary) -> None:
        volume_id = volume["VolumeId"]
        name = self.snapshot_name(volume_id)
        log = self.log.bind(**{"volume-id": volume_id, "snapshot-name": name})

        tags = volume.get("Tags") or []
        if not is_eligible_for_backup(tags, self.config.backup_tag):
            log.warning("Volume has no backup tag, skipping", tag=self.config.backup_tag)
            summary.skipped += 1
            return

        days = resolve_retention_days(tags, self.config.retention_tag, self.config.default_retention_days, log)
        try:
            delete_after = compute_delete_after(self.clock(), days)
        except OverflowError:
            log.error("Retention days out of range", retention_days=days)
            summary.failed += 1
            return

        log.info("Creating snapshot")
        try:
            snapshot = self.gateway.create_snapshot(ctx, volume_id, self.config.description)
        except RESOURCE_ERRORS as e:
            log.error("Couldn't create snapshot", error=str(e))
            summary.failed += 1
            return

        snapshot_id = snapshot.get("SnapshotId")
        if not snapshot_id:
            log.error("Snapshot ID is empty")
            summary.failed += 1
            return
        log = log.bind(**{"snapshot-id": snapshot_id})

        try:
            self.gateway.tag_resource(ctx, snapshot_id, self.snapshot_tags(name, delete_after, tags))
        except RESOURCE_ERRORS as e:
            log.error("Couldn't tag snapshot", error=str(e))
            summary.failed += 1
            return
        summary.succeeded += 1
        log.info("Snapshot scheduled for deletion", delete_after=format_rfc3339(delete_after), retention_days=days)

        start_time = snapshot.get("StartTime")
        if start_time is None:
            log.error("Snapshot has no start time, not recording it in the ledger")
            summary.ledger_errors += 1
            return
        try:
            ctx.check()
            self.ledger.store(LedgerEntry.create(volume_id, snapshot_id, start_time))
        except (LedgerError, DeadlineExceeded) as e:
            log.error("Couldn't record snapshot in ledger", error=str(e))
            summary.ledger_errors += 1

    def snapshot_tags(self, name: str, delete_after: dt.datetime, volume_tags) -> list:
        tags = [
            {"Key": NAME_TAG, "Value": name},
            {"Key": self.config.delete_after_tag, "Value": format_rfc3339(delete_after)},
        ]
        volume_name = find_tag(volume_tags, NAME_TAG)
        if volume_name is not None and volume_name.get("Value") is not None:
            tags.append({"Key": VOLUME_NAME_TAG, "Value": volume_name["Value"]})
        return tags

    # Prune workflow

    def prune(self, ctx: RunContext) -> RunSummary:
        """Delete every snapshot whose delete-after tag has passed. Raises only if listing fails."""
        snapshots = self.gateway.list_candidate_snapshots(ctx)
        summary = RunSummary("prune")
        self.log.info("Found snapshots to evaluate", count=len(snapshots), tag=self.config.delete_after_tag)
        for snap in snapshots:
            summary.examined += 1
            self._prune_snapshot(ctx, snap, summary)
        return summary

    def _prune_snapshot(self, ctx: RunContext, snap: Dict[str, Any], summary: RunSummary) -> None:
        snapshot_id = snap["SnapshotId"]
        log = self.log.bind(snapshotID=snapshot_id)
        log.info("Processing snapshot")

        tag = find_tag(snap.get("Tags"), self.config.delete_after_tag)
        if tag is None:
            log.info("Snapshot has no delete after tag, skipping", tag=self.config.delete_after_tag)
            summary.skipped += 1
            return

        value = tag.get("Value")
        if value is None:
            log.error("Delete after tag value is empty")
            summary.failed += 1
            return
        try:
            delete_after = parse_rfc3339(value)
        except ValueError as e:
            log.error("Couldn't parse delete after tag value", error=str(e))
            summary.failed += 1
            return

        if not is_expired(delete_after, self.clock()):
            log.info("Snapshot not yet scheduled for deletion")
            summary.skipped += 1
            return

        try:
            self.gateway.delete_snapshot(ctx, snapshot_id)
        except RESOURCE_ERRORS as e:
            log.error("Couldn't delete snapshot", error=str(e))
            summary.failed += 1
            return
        summary.succeeded += 1
        log.info("Successfully deleted snapshot")

        # the deletion stands even if the ledger can't be updated
        volume_id = snap.get("VolumeId")
        start_time = snap.get("StartTime")
        if not volume_id or start_time is None:
            log.error("Snapshot lacks volume id or start time, can't remove ledger entry")
            summary.ledger_errors += 1
            return
        try:
            ctx.check()
            self.ledger.delete(LedgerEntry.create(volume_id, snapshot_id, start_time))
        except (LedgerError, DeadlineExceeded) as e:
            log.error("Couldn't remove ledger entry", error=str(e))
            summary.ledger_errors += 1
