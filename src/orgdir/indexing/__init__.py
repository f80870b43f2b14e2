"""Text index synchronization and maintenance."""

from orgdir.indexing.maintenance import IndexMaintenance
from orgdir.indexing.records import EntityRef, IndexRecord, LinkedIndex, StandaloneIndex
from orgdir.indexing.scheduler import MaintenanceScheduler
from orgdir.indexing.schemas import IndexHealth, RebuildScope
from orgdir.indexing.writer import DirectoryWriter

__all__ = [
    "DirectoryWriter",
    "EntityRef",
    "IndexHealth",
    "IndexMaintenance",
    "IndexRecord",
    "LinkedIndex",
    "MaintenanceScheduler",
    "RebuildScope",
    "StandaloneIndex",
]
