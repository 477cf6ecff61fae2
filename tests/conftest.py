from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

import boto3
import pytest
from botocore.exceptions import ClientError

from ebs_auto_snapshot.config import SnapshotConfig
from ebs_auto_snapshot.gateway import make_ec2_client
from ebs_auto_snapshot.ledger import MemoryLedger
from ebs_auto_snapshot.manager import SnapshotManager
from ebs_auto_snapshot.metrics import RequestMetrics

NOW = dt.datetime(2024, 5, 1, 12, 0, 30, tzinfo=dt.timezone.utc)


def client_error(op: str, code: str = "InternalError") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, op)


class FakeGateway:
    """Records every call; failures are injected per resource id."""

    def __init__(self, volumes=None, snapshots=None):
        self.volumes: List[Dict[str, Any]] = volumes or []
        self.snapshots: List[Dict[str, Any]] = snapshots or []
        self.create_failures: Dict[str, Exception] = {}
        self.tag_failures: Dict[str, Exception] = {}
        self.delete_failures: Dict[str, Exception] = {}
        self.list_error: Optional[Exception] = None
        self.created: List[str] = []
        self.tagged: Dict[str, List[Dict[str, str]]] = {}
        self.deleted: List[str] = []
        self.empty_snapshot_id = False
        self._n = 0

    def list_eligible_volumes(self, ctx):
        ctx.check()
        if self.list_error:
            raise self.list_error
        return list(self.volumes)

    def list_candidate_snapshots(self, ctx):
        ctx.check()
        if self.list_error:
            raise self.list_error
        return list(self.snapshots)

    def create_snapshot(self, ctx, volume_id, description):
        ctx.check()
        self.created.append(volume_id)
        if volume_id in self.create_failures:
            raise self.create_failures[volume_id]
        self._n += 1
        snapshot_id = "" if self.empty_snapshot_id else f"snap-{self._n}"
        return {"SnapshotId": snapshot_id, "VolumeId": volume_id, "StartTime": NOW, "Description": description}

    def tag_resource(self, ctx, resource_id, tags):
        ctx.check()
        if resource_id in self.tag_failures:
            raise self.tag_failures[resource_id]
        self.tagged[resource_id] = tags

    def delete_snapshot(self, ctx, snapshot_id):
        ctx.check()
        if snapshot_id in self.delete_failures:
            raise self.delete_failures[snapshot_id]
        self.deleted.append(snapshot_id)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def manager(fake_gateway, ledger):
    return SnapshotManager(fake_gateway, ledger, SnapshotConfig(), clock=lambda: NOW)


@pytest.fixture
def ec2_client():
    sess = boto3.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )
    return make_ec2_client(sess, "us-east-1")


@pytest.fixture
def metrics():
    return RequestMetrics()
