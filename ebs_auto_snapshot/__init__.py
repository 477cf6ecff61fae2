"""Scheduled EBS snapshot creation and pruning driven by volume tags."""

from .config import SnapshotConfig
from .gateway import Ec2Gateway
from .ledger import DynamoDBLedger, LedgerEntry, LedgerError, MemoryLedger, NullLedger
from .manager import RunSummary, SnapshotManager
from .metrics import RequestMetrics
from .run_context import DeadlineExceeded, RunCancelled, RunContext

__version__ = "0.1.0"
