"""context-compactor: bounded-memory compaction for long-running LLM agent sessions."""

from .config import load_config
from .core.ledger import materialize, record_edit
from .core.persistence import load_ledger, save_ledger
from .engine import ContextCompactor
from .types import (
    CompactionReport,
    CompactorConfig,
    ContentBlock,
    DeletionRange,
    Edit,
    IntegrityError,
    Message,
    Usage,
)

__version__ = "0.1.0"

__all__ = [
    "ContextCompactor",
    "load_config",
    "record_edit",
    "materialize",
    "save_ledger",
    "load_ledger",
    "CompactionReport",
    "CompactorConfig",
    "ContentBlock",
    "DeletionRange",
    "Edit",
    "IntegrityError",
    "Message",
    "Usage",
]
