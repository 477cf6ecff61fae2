from __future__ import annotations

from ebs_auto_snapshot.metrics import RequestMetrics


def test_counters_live_in_own_registry():
    first = RequestMetrics()
    second = RequestMetrics()

    first.inc_describe_volumes()
    first.inc_describe_volumes()
    first.inc_delete_snapshot()

    assert first.registry.get_sample_value("ec2_describe_volumes_requests_total") == 2.0
    assert first.as_dict() == {
        "ec2_describe_volumes_requests_total": 2,
        "ec2_describe_snapshots_requests_total": 0,
        "ec2_create_snapshot_requests_total": 0,
        "ec2_create_tags_requests_total": 0,
        "ec2_delete_snapshot_requests_total": 1,
    }
    assert set(second.as_dict().values()) == {0}
