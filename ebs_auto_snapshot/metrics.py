from __future__ import annotations

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter

REQUEST_COUNTERS = {
    "describe_volumes": ("ec2_describe_volumes_requests_total", "Total number of describe volumes requests"),
    "describe_snapshots": ("ec2_describe_snapshots_requests_total", "Total number of describe snapshots requests"),
    "create_snapshot": ("ec2_create_snapshot_requests_total", "Total number of create snapshot requests"),
    "create_tags": ("ec2_create_tags_requests_total", "Total number of create tags requests"),
    "delete_snapshot": ("ec2_delete_snapshot_requests_total", "Total number of delete snapshot requests"),
}


class RequestMetrics:
    """Per-kind counters of EC2 requests issued, successful or not."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._counters: Dict[str, Counter] = {
            kind: Counter(name, doc, registry=self.registry)
            for kind, (name, doc) in REQUEST_COUNTERS.items()
        }

    def inc_describe_volumes(self) -> None:
        self._counters["describe_volumes"].inc()

    def inc_describe_snapshots(self) -> None:
        self._counters["describe_snapshots"].inc()

    def inc_create_snapshot(self) -> None:
        self._counters["create_snapshot"].inc()

    def inc_create_tags(self) -> None:
        self._counters["create_tags"].inc()

    def inc_delete_snapshot(self) -> None:
        self._counters["delete_snapshot"].inc()

    def as_dict(self) -> Dict[str, int]:
        out = {}
        for name, _ in REQUEST_COUNTERS.values():
            value = self.registry.get_sample_value(name)
            out[name] = int(value or 0)
        return out
