"""
EC2 access for the snapshot manager.

Listings walk NextToken pages until none is left and return every page's items
in the order EC2 produced them. A failing page raises and the items gathered
so far are dropped. botocore errors are never wrapped.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import boto3
import structlog
from botocore.config import Config

from .config import SnapshotConfig
from .metrics import RequestMetrics
from .run_context import RunContext
from .tag_policy import Tags, backup_tag_filter_values

logger = structlog.get_logger(__name__)


def session(profile: Optional[str]):
    if profile:
        return boto3.Session(profile_name=profile)
    return boto3.Session()


def make_ec2_client(sess, region: Optional[str] = None, timeout: int = 60):
    cfg = Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"total_max_attempts": 1},
    )
    if region:
        return sess.client("ec2", region_name=region, config=cfg)
    return sess.client("ec2", config=cfg)


class Ec2Gateway:
    def __init__(self, client, metrics: RequestMetrics, config: SnapshotConfig):
        self.client = client
        self.metrics = metrics
        self.config = config

    def list_eligible_volumes(self, ctx: RunContext) -> List[Dict[str, Any]]:
        filters = [{"Name": "tag-key", "Values": backup_tag_filter_values(self.config.backup_tag)}]
        return self._walk(ctx, self.client.describe_volumes, self.metrics.inc_describe_volumes,
                          {"Filters": filters}, "Volumes", "VolumeId")

    def list_candidate_snapshots(self, ctx: RunContext) -> List[Dict[str, Any]]:
        filters = [{"Name": "tag-key", "Values": [self.config.delete_after_tag]}]
        return self._walk(ctx, self.client.describe_snapshots, self.metrics.inc_describe_snapshots,
                          {"OwnerIds": ["self"], "Filters": filters}, "Snapshots", "SnapshotId")

    def _walk(self, ctx, call, count, base_kwargs, result_key, id_key) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        token = None
        while True:
            ctx.check()
            kwargs = dict(base_kwargs)
            if token:
                kwargs["NextToken"] = token
            count()
            resp = call(**kwargs)
            for item in resp.get(result_key, []) or []:
                if not item.get(id_key):
                    logger.debug("Skipping entry without id", result_key=result_key, id_key=id_key)
                    continue
                out.append(item)
            token = resp.get("NextToken")
            if not token:
                break
        return out

    def create_snapshot(self, ctx: RunContext, volume_id: str, description: str) -> Dict[str, Any]:
        ctx.check()
        self.metrics.inc_create_snapshot()
        return self.client.create_snapshot(VolumeId=volume_id, Description=description)

    def tag_resource(self, ctx: RunContext, resource_id: str, tags: Tags) -> None:
        ctx.check()
        self.metrics.inc_create_tags()
        self.client.create_tags(Resources=[resource_id], Tags=tags)

    def delete_snapshot(self, ctx: RunContext, snapshot_id: str) -> None:
        ctx.check()
        self.metrics.inc_delete_snapshot()
        self.client.delete_snapshot(SnapshotId=snapshot_id)
