"""
Reconcile stages for obsconverge.

Each stage is responsible for one part of the stack:
- prometheus-installation: Install the Prometheus operator and wait for it
- migration: One-time teardown of legacy-named resources
- configuration: Sync the Prometheus, Alertmanager, Grafana and Promtail workloads
- token: Remove observatorium credentials on teardown
"""

from .base import Stage, StageResult
from .installation import OperatorInstallationStage
from .migration import LEGACY_SUBSYSTEMS, LegacySubsystem, MigrationGate
from .sync import ResourceSyncStage, SyncTarget, TokenStage, configuration_targets

__all__ = [
    "Stage",
    "StageResult",
    "OperatorInstallationStage",
    "LEGACY_SUBSYSTEMS",
    "LegacySubsystem",
    "MigrationGate",
    "ResourceSyncStage",
    "SyncTarget",
    "TokenStage",
    "configuration_targets",
]
