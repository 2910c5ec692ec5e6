"""同步核心模块"""

from .batch_writer import BatchWriter
from .conflict_resolver import ConflictResolver
from .diff_engine import DiffEngine
from .entity_mapper import SHEET_HEADERS, EntityMapper
from .field_validator import FieldValidator
from .orchestrator import SyncOrchestrator

__all__ = [
    "BatchWriter",
    "ConflictResolver",
    "DiffEngine",
    "EntityMapper",
    "FieldValidator",
    "SHEET_HEADERS",
    "SyncOrchestrator",
]
