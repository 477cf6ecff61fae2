#!/usr/bin/env python3
"""
ebs-auto-snapshot

Purpose:
  Snapshot EBS volumes tagged for backup and prune the snapshots this tool
  created once their delete-after date has passed. Meant to run on a schedule
  (cron, ECS scheduled task, Kubernetes CronJob) and exit.

Workflows:
  snapshot  For every volume with the backup tag (default: backup, any casing of
            the configured key or its lowercase form), create a snapshot and tag it
            with Name, _DELETE_AFTER (now + retention days, RFC 3339) and the
            volume's Name as volume-name. Retention comes from the volume's
            retention tag, default 7 days.
  prune     Delete snapshots whose _DELETE_AFTER timestamp is not in the future.
  run       snapshot, then prune.

Ledger:
  Each created snapshot is recorded as (volume, snapshot, start minute) in a
  ledger and removed when the snapshot is deleted. --ledger dynamodb keeps it
  in the table given by --ledger-table.

Permissions:
  - ec2:DescribeVolumes, ec2:DescribeSnapshots, ec2:CreateSnapshot,
    ec2:CreateTags, ec2:DeleteSnapshot
  - dynamodb:PutItem, dynamodb:DeleteItem (with --ledger dynamodb)

Examples:
  python -m ebs_auto_snapshot snapshot --region eu-central-1
  python -m ebs_auto_snapshot prune --profile prod --json
  python -m ebs_auto_snapshot run --ledger dynamodb --ledger-table ebs-snapshots

Exit Codes:
  0 success (per-resource failures are only logged)
  1 listing, configuration or unexpected error
  130 interrupted
"""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import ConfigError, SnapshotConfig, resolve_region
from .gateway import Ec2Gateway, make_ec2_client, session
from .ledger import DynamoDBLedger, Ledger, MemoryLedger, NullLedger
from .manager import SnapshotManager
from .metrics import RequestMetrics
from .run_context import RunCancelled, RunContext

logger = structlog.get_logger("ebs_auto_snapshot")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(prog="ebs-auto-snapshot", description="Create and prune tagged EBS snapshots")
    p.add_argument("command", choices=["snapshot", "prune", "run"], help="Workflow to run")
    p.add_argument("--profile", help="AWS profile name")
    p.add_argument("--region", help="AWS region (default: AWS_REGION / AWS_DEFAULT_REGION / profile)")
    p.add_argument("--backup-tag", help="Tag key marking volumes for backup (default: backup)")
    p.add_argument("--retention-tag", help="Tag key holding retention days (default: retention)")
    p.add_argument("--suffix", help="Snapshot name suffix (default: auto-snapshot)")
    p.add_argument("--delete-after-tag", help="Tag key holding the deletion timestamp (default: _DELETE_AFTER)")
    p.add_argument("--default-retention-days", type=int, help="Retention when a volume has none (default: 7)")
    p.add_argument("--volume-timeout", type=int, help="Seconds allowed per volume (default: 300)")
    p.add_argument("--ledger", choices=["none", "memory", "dynamodb"], default="none", help="Ledger backend (default: none)")
    p.add_argument("--ledger-table", help="DynamoDB table for --ledger dynamodb")
    p.add_argument("--json", action="store_true", help="JSON summary output")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not debug:
        for noisy in ("botocore", "boto3", "urllib3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "logger", "event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def build_config(args) -> SnapshotConfig:
    return SnapshotConfig.from_env().override(
        backup_tag=args.backup_tag,
        retention_tag=args.retention_tag,
        suffix=args.suffix,
        delete_after_tag=args.delete_after_tag,
        default_retention_days=args.default_retention_days,
        volume_timeout=args.volume_timeout,
    )


def build_ledger(args, sess, region: Optional[str]) -> Ledger:
    if args.ledger == "dynamodb":
        if not args.ledger_table:
            raise ConfigError("--ledger-table is required with --ledger dynamodb")
        return DynamoDBLedger.from_session(sess, args.ledger_table, region)
    if args.ledger == "memory":
        return MemoryLedger()
    return NullLedger()


def install_signal_handlers(ctx: RunContext) -> None:
    def _cancel(signum, frame):
        logger.warning("Received signal, cancelling run", signal=signum)
        ctx.cancel()
    for signum in (signal.SIGTERM, signal.SIGINT):
        signal.signal(signum, _cancel)


def print_summary(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return
    for s in payload["workflows"]:
        print(f"{s['workflow']}: examined={s['examined']} succeeded={s['succeeded']} "
              f"skipped={s['skipped']} failed={s['failed']} ledger_errors={s['ledger_errors']}")
    print("requests: " + " ".join(f"{k}={v}" for k, v in payload["requests"].items()))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    region = resolve_region(args.region)
    sess = session(args.profile)
    try:
        ledger = build_ledger(args, sess, region)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    metrics = RequestMetrics()
    gateway = Ec2Gateway(make_ec2_client(sess, region), metrics, config)
    manager = SnapshotManager(gateway, ledger, config)

    ctx = RunContext()
    install_signal_handlers(ctx)

    summaries = []
    try:
        if args.command in ("snapshot", "run"):
            summaries.append(manager.snapshot(ctx))
        if args.command in ("prune", "run"):
            summaries.append(manager.prune(ctx))
    except RunCancelled:
        logger.warning("Run cancelled")
        return 130
    except (BotoCoreError, ClientError) as e:
        logger.error("Listing failed", error=str(e))
        return 1
    finally:
        logger.debug("Request counts", **metrics.as_dict())

    print_summary({
        "region": region,
        "workflows": [s.as_dict() for s in summaries],
        "requests": metrics.as_dict(),
    }, args.json)
    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
