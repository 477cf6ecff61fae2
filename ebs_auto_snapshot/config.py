"""
Settings for the snapshot manager.

Defaults can be overridden per field through EBS_AUTO_SNAPSHOT_<FIELD>
environment variables, and again by command line flags.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

DEFAULT_BACKUP_TAG = "backup"
DEFAULT_RETENTION_TAG = "retention"
DEFAULT_SNAPSHOT_SUFFIX = "auto-snapshot"
DEFAULT_DELETE_AFTER_TAG = "_DELETE_AFTER"
DEFAULT_RETENTION_DAYS = 7
DEFAULT_DESCRIPTION = "auto snapshot created by ebs-auto-snapshot"
DEFAULT_VOLUME_TIMEOUT = 300  # seconds per volume

ENV_PREFIX = "EBS_AUTO_SNAPSHOT_"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class SnapshotConfig:
    backup_tag: str = DEFAULT_BACKUP_TAG
    retention_tag: str = DEFAULT_RETENTION_TAG
    suffix: str = DEFAULT_SNAPSHOT_SUFFIX
    delete_after_tag: str = DEFAULT_DELETE_AFTER_TAG
    default_retention_days: int = DEFAULT_RETENTION_DAYS
    description: str = DEFAULT_DESCRIPTION
    volume_timeout: int = DEFAULT_VOLUME_TIMEOUT

    def __post_init__(self):
        for name in ("backup_tag", "retention_tag", "delete_after_tag"):
            if not getattr(self, name):
                raise ConfigError(f"{name} must not be empty")
        if self.default_retention_days <= 0:
            raise ConfigError("default_retention_days must be positive")
        if self.volume_timeout <= 0:
            raise ConfigError("volume_timeout must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SnapshotConfig":
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            if f.type in (int, "int"):
                try:
                    values[f.name] = int(raw, 10)
                except ValueError:
                    raise ConfigError(f"{ENV_PREFIX + f.name.upper()}: not an integer: {raw!r}")
            else:
                values[f.name] = raw
        return cls(**values)

    def override(self, **changes: Any) -> "SnapshotConfig":
        """Return a copy with every non-None value in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def resolve_region(explicit: Optional[str], environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    environ = os.environ if environ is None else environ
    return explicit or environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or None
