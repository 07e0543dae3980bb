"""All dataclasses, enums, and errors for context-compactor."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

class BlockType(str, Enum):
    TEXT = "text"
    FILE_CONTENT = "file_content"
    TOOL_RESULT = "tool_result"
    IMAGE = "image"


@dataclass
class ContentBlock:
    type: BlockType = BlockType.TEXT
    text: str = ""
    tool_name: str = ""  # tool_result only
    path: str = ""       # file_content / tool_result when the tool targets a file
    metadata: dict = field(default_factory=dict)


@dataclass
class Message:
    role: str  # "user" or "assistant"
    blocks: list[ContentBlock] = field(default_factory=list)
    timestamp: datetime | None = None
    metadata: dict | None = None

    @property
    def content(self) -> str:
        """All block text joined, images excluded."""
        return "\n".join(b.text for b in self.blocks if b.type != BlockType.IMAGE and b.text)

    @classmethod
    def from_text(cls, role: str, text: str, timestamp: datetime | None = None) -> Message:
        return cls(role=role, blocks=[ContentBlock(type=BlockType.TEXT, text=text)], timestamp=timestamp)


# ---------------------------------------------------------------------------
# Size accounting
# ---------------------------------------------------------------------------

@dataclass
class Usage:
    """Token usage reported by the provider for the most recent exchange."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total(self) -> int:
        return (
            self.input_tokens + self.output_tokens
            + self.cache_write_tokens + self.cache_read_tokens
        )


class KeepPolicy(str, Enum):
    """How much of the non-anchor history truncation keeps."""
    NONE = "none"
    LAST_TWO = "lastTwo"
    HALF = "half"
    QUARTER = "quarter"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class EditReason(str, Enum):
    DUPLICATE = "duplicate"
    COMPRESSED = "compressed"
    RELEVANCE = "relevance"
    SOFTENED = "softened"


@dataclass
class Edit:
    """A content override for one block. Never mutates the original block."""
    timestamp: float
    content: str
    reason: EditReason | str = EditReason.DUPLICATE
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DeletionRange:
    """Inclusive span of physically removed messages."""
    start: int
    end: int

    def __contains__(self, idx: int) -> bool:
        return self.start <= idx <= self.end

    @property
    def removed_count(self) -> int:
        return self.end - self.start + 1

    def as_list(self) -> list[int]:
        return [self.start, self.end]


# ---------------------------------------------------------------------------
# File references
# ---------------------------------------------------------------------------

class AccessKind(str, Enum):
    TOOL_READ = "tool_read"
    MENTION = "mention"
    WRITE = "write"


@dataclass
class FileRefMatch:
    """One recognised file occurrence inside a block.

    ``span`` is the (start, end) slice of the block text covered by the
    occurrence, or None when the whole block is the occurrence.
    """
    kind: AccessKind
    path: str
    content: str
    span: tuple[int, int] | None = None
    label: str = ""  # tool name shown in the superseded notice


@dataclass
class FileReference:
    path: str
    msg_idx: int
    block_idx: int
    content_hash: str
    kind: AccessKind
    span: tuple[int, int] | None = None
    label: str = ""

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.msg_idx, self.block_idx, self.span[0] if self.span else -1)


# ---------------------------------------------------------------------------
# Passes & validation
# ---------------------------------------------------------------------------

@dataclass
class ProposedChange:
    """One pass's proposed rewrite of one message."""
    msg_idx: int
    reason: EditReason
    block_edits: dict[int, str] = field(default_factory=dict)  # block_idx -> replacement
    original: dict[int, str] = field(default_factory=dict)     # block_idx -> text replaced
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def chars_saved(self) -> int:
        return sum(len(self.original.get(b, "")) - len(t) for b, t in self.block_edits.items())


class Decision(str, Enum):
    APPROVE = "approve"
    MODIFY = "modify"
    REJECT = "reject"


@dataclass
class RiskBreakdown:
    critical_path: float = 0.0
    discourse_marker: float = 0.0
    coherence: float = 0.0
    referential: float = 0.0
    total: float = 0.0


@dataclass
class ChangeDecision:
    change: ProposedChange
    decision: Decision
    risk: RiskBreakdown = field(default_factory=RiskBreakdown)
    block_edits: dict[int, str] = field(default_factory=dict)  # what actually gets recorded


@dataclass
class RelevanceRecord:
    msg_idx: int
    score: float = 0.0
    temporal: float = 0.0
    semantic: float = 0.0
    dependency: float = 0.0
    phase: float = 0.0
    obsolescence: float = 0.0
    phase_label: str = "discussion"
    incoming: set[int] = field(default_factory=set)


@dataclass
class FileEvent:
    path: str
    kind: str = "change"  # "change", "create", "delete"
    timestamp: float = 0.0


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@dataclass
class CompactionReport:
    chars_saved: int = 0
    chars_saved_ratio: float = 0.0
    truncation_applied: bool = False
    new_deletion_range: DeletionRange | None = None
    triggered: bool = False
    total_chars: int = 0
    keep: KeepPolicy | None = None
    pass_savings: dict[str, int] = field(default_factory=dict)
    failed_passes: list[str] = field(default_factory=list)
    changes_approved: int = 0
    changes_modified: int = 0
    changes_rejected: int = 0
    tokens_saved_estimate: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class IntegrityError(Exception):
    """A structural invariant of the transcript or ledger would be violated."""

    def __init__(self, message: str, msg_idx: int | None = None, block_idx: int | None = None):
        super().__init__(message)
        self.msg_idx = msg_idx
        self.block_idx = block_idx


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_BUFFER_POLICY: dict[int, int] = {
    64_000: 27_000,
    128_000: 30_000,
    200_000: 40_000,
}


@dataclass
class AccountantConfig:
    buffer_policy: dict[int, int] = field(default_factory=lambda: dict(DEFAULT_BUFFER_POLICY))
    default_min_buffer: int = 40_000
    default_buffer_ratio: float = 0.20


@dataclass
class DedupConfig:
    read_tools: list[str] = field(default_factory=lambda: [
        "read_file", "Read", "view", "cat",
    ])
    write_tools: list[str] = field(default_factory=lambda: [
        "write_to_file", "replace_in_file", "Write", "Edit", "MultiEdit", "apply_diff",
    ])


@dataclass
class CompressorConfig:
    min_compression_ratio: float = 0.60
    max_importance: float = 0.80
    min_block_chars: int = 400
    max_error_lines: int = 3
    command_tools: list[str] = field(default_factory=lambda: [
        "execute_command", "bash", "Bash", "shell", "run_command",
    ])


@dataclass
class RelevanceConfig:
    weights: dict[str, float] = field(default_factory=lambda: {
        "temporal": 0.25,
        "semantic": 0.20,
        "dependency": 0.20,
        "phase": 0.20,
        "obsolescence": 0.15,
    })
    decay_hours: float = 8.0
    removal_threshold: float = 0.30
    fallback_hours_per_message: float = 0.25
    min_message_chars: int = 300
    min_savings_chars: int = 100
    back_reference_lookback: int = 10


@dataclass
class ValidatorConfig:
    reject_threshold: float = 0.70
    modify_threshold: float = 0.40
    weights: dict[str, float] = field(default_factory=lambda: {
        "critical_path": 0.4,
        "discourse_marker": 0.3,
        "coherence": 0.2,
        "referential": 0.1,
    })
    chain_window: int = 6
    max_bridge_lines: int = 3


@dataclass
class TruncationConfig:
    keep: str = "auto"  # "auto" or one of KeepPolicy values
    savings_threshold: float = 0.30


@dataclass
class FileEventConfig:
    debounce_ms: int = 200
    max_events: int = 256


@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "filesystem", "sqlite", or "none"
    root: str = ".context-compactor/ledger"
    sqlite_path: str = ".context-compactor/ledger.db"


@dataclass
class CompactorConfig:
    version: str = "0.1"
    context_window: int = 200_000
    token_counter: str = "estimate"
    recent_window_pairs: int = 3
    accountant: AccountantConfig = field(default_factory=AccountantConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    compressor: CompressorConfig = field(default_factory=CompressorConfig)
    relevance: RelevanceConfig = field(default_factory=RelevanceConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    truncation: TruncationConfig = field(default_factory=TruncationConfig)
    file_events: FileEventConfig = field(default_factory=FileEventConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
