"""Ingestion orchestration and the scheduled miner entry point."""

from energy_miner.ingest.orchestrator import (
    FamilyOutcome,
    IngestionOrchestrator,
    MiningWindows,
    PointUpdate,
    RegionOutcome,
    RunReport,
)

__all__ = [
    "FamilyOutcome",
    "IngestionOrchestrator",
    "MiningWindows",
    "PointUpdate",
    "RegionOutcome",
    "RunReport",
]
