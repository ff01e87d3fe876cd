"""Labeller configuration."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import field_validator
from pydantic_settings import BaseSettings

from labeller.labels import validate_prefix
from labeller.models import SnapshotPolicy, TickMode


class Settings(BaseSettings):
    """Labeller settings loaded from environment variables."""

    # Node identity
    node_name: str = ""  # Explicit override; falls back to hostname_file, then hostname
    hostname_file: str = "/labeller/hostname"

    # Label ownership
    label_prefix: str = "g4v.dev"
    label_value: str = "true"

    # Trigger scheduling
    poll_interval: float = 60.0  # seconds
    tick_mode: TickMode = TickMode.BLOCKING
    snapshot_policy: SnapshotPolicy = SnapshotPolicy.STARTUP

    # Capability discovery
    usb_sysfs_path: str = "/sys/bus/usb/devices"

    # Cluster connection
    kubeconfig: str = ""  # Empty means in-cluster first, then default kubeconfig
    watch_timeout: int = 300  # seconds per watch stream before it is reopened
    watch_retry_delay: float = 5.0

    # Requeue backoff after a failed cycle (seconds)
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 60.0

    # Observability
    metrics_port: int = 0  # 0 disables the metrics endpoint
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    @field_validator("label_prefix")
    @classmethod
    def _check_label_prefix(cls, value: str) -> str:
        return validate_prefix(value)

    class Config:
        env_prefix = "USB_LABELLER_"


settings = Settings()


@dataclass(frozen=True)
class LabellerConfig:
    """Immutable run configuration handed to the engine and controller.

    Built once at startup from ``Settings`` plus the resolved node identity,
    so nothing downstream reads process-wide state.
    """

    node_name: str
    label_prefix: str = "g4v.dev"
    label_value: str = "true"
    poll_interval: float = 60.0
    tick_mode: TickMode = TickMode.BLOCKING
    snapshot_policy: SnapshotPolicy = SnapshotPolicy.STARTUP
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 60.0
    dry_run: bool = False

    def __post_init__(self) -> None:
        validate_prefix(self.label_prefix)

    @classmethod
    def from_settings(
        cls, source: Settings, node_name: str, *, dry_run: bool = False
    ) -> LabellerConfig:
        return cls(
            node_name=node_name,
            label_prefix=source.label_prefix,
            label_value=source.label_value,
            poll_interval=source.poll_interval,
            tick_mode=source.tick_mode,
            snapshot_policy=source.snapshot_policy,
            retry_backoff_base=source.retry_backoff_base,
            retry_backoff_max=source.retry_backoff_max,
            dry_run=dry_run,
        )
