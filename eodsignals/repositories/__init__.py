"""Data access layer.

``base`` declares the storage protocols the engine depends on, ``sql``
implements them with SQLAlchemy and ``memory`` with plain dictionaries.
"""

from .base import (
    BarStore,
    DecisionStore,
    PositionReader,
    ReportStore,
    SectorListStore,
    SectorTagReader,
    SnapshotStore,
    StopStateStore,
)
from .memory import (
    MemoryBarStore,
    MemoryDecisionStore,
    MemoryPositionReader,
    MemoryReportStore,
    MemorySectorListStore,
    MemorySectorTagReader,
    MemorySnapshotStore,
    MemoryStopStateStore,
)
from .sql import (
    SqlBarStore,
    SqlDecisionStore,
    SqlPositionReader,
    SqlReportStore,
    SqlSectorListStore,
    SqlSectorTagReader,
    SqlSnapshotStore,
    SqlStopStateStore,
)

__all__ = [
    # Protocols
    "BarStore",
    "DecisionStore",
    "PositionReader",
    "ReportStore",
    "SectorListStore",
    "SectorTagReader",
    "SnapshotStore",
    "StopStateStore",
    # In-memory
    "MemoryBarStore",
    "MemoryDecisionStore",
    "MemoryPositionReader",
    "MemoryReportStore",
    "MemorySectorListStore",
    "MemorySectorTagReader",
    "MemorySnapshotStore",
    "MemoryStopStateStore",
    # SQLAlchemy
    "SqlBarStore",
    "SqlDecisionStore",
    "SqlPositionReader",
    "SqlReportStore",
    "SqlSectorListStore",
    "SqlSectorTagReader",
    "SqlSnapshotStore",
    "SqlStopStateStore",
]
