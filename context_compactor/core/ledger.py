"""UpdateLedger: append-only, timestamped content overrides keyed by (message, block)."""

from __future__ import annotations

import copy
import time
from dataclasses import replace
from typing import Callable, Iterable

from ..types import (
    BlockType,
    ContentBlock,
    DeletionRange,
    Edit,
    IntegrityError,
    Message,
    ProposedChange,
)

BlockKey = tuple[int, int]


class UpdateLedger:
    """Store of content overrides.

    Edits are never removed: a newer edit for the same ``(msg_idx, block_idx)``
    supersedes the older ones, which stay available through :meth:`history`.
    The active edit is the one with the greatest timestamp; on a tie the one
    recorded last wins.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._edits: dict[BlockKey, list[Edit]] = {}
        self._edit_types: dict[int, str] = {}
        self._clock = clock or time.time
        self._last_timestamp = 0.0

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def next_timestamp(self) -> float:
        """Clock reading that is strictly greater than any stamp handed out before."""
        now = self._clock()
        if now <= self._last_timestamp:
            now = self._last_timestamp + 1e-6
        self._last_timestamp = now
        return now

    def record_edit(
        self,
        msg_idx: int,
        block_idx: int,
        edit: Edit,
        transcript: list[Message] | None = None,
    ) -> None:
        """Append *edit* for one block. Validates indices when *transcript* is given."""
        if transcript is not None:
            self._check_index(transcript, msg_idx, block_idx)
        self._store(msg_idx, block_idx, edit)

    def record_batch(
        self,
        items: Iterable[tuple[int, int, Edit]],
        transcript: list[Message] | None = None,
    ) -> int:
        """Record several edits atomically: all indices are checked before any is stored."""
        items = list(items)
        if transcript is not None:
            for msg_idx, block_idx, _ in items:
                self._check_index(transcript, msg_idx, block_idx)
        for msg_idx, block_idx, edit in items:
            self._store(msg_idx, block_idx, edit)
        return len(items)

    def restore_edit_type(self, msg_idx: int, edit_type: str) -> None:
        """Set the message label directly, used when loading a snapshot."""
        self._edit_types[msg_idx] = edit_type

    def _store(self, msg_idx: int, block_idx: int, edit: Edit) -> None:
        if msg_idx < 0 or block_idx < 0:
            raise IntegrityError(
                f"Negative index in edit ({msg_idx}, {block_idx})", msg_idx, block_idx,
            )
        self._edits.setdefault((msg_idx, block_idx), []).append(edit)
        reason = edit.reason.value if hasattr(edit.reason, "value") else str(edit.reason)
        self._edit_types.setdefault(msg_idx, reason)
        self._last_timestamp = max(self._last_timestamp, edit.timestamp)

    @staticmethod
    def _check_index(transcript: list[Message], msg_idx: int, block_idx: int) -> None:
        if not 0 <= msg_idx < len(transcript):
            raise IntegrityError(
                f"Edit references message {msg_idx}, transcript has {len(transcript)}",
                msg_idx, block_idx,
            )
        blocks = transcript[msg_idx].blocks
        if not 0 <= block_idx < len(blocks):
            raise IntegrityError(
                f"Edit references block {block_idx} of message {msg_idx}, "
                f"which has {len(blocks)} blocks",
                msg_idx, block_idx,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_edit(self, msg_idx: int, block_idx: int) -> Edit | None:
        edits = self._edits.get((msg_idx, block_idx))
        if not edits:
            return None
        best = edits[0]
        for edit in edits[1:]:
            if edit.timestamp >= best.timestamp:
                best = edit
        return best

    def history(self, msg_idx: int, block_idx: int) -> list[Edit]:
        return list(self._edits.get((msg_idx, block_idx), []))

    def edit_type(self, msg_idx: int) -> str:
        return self._edit_types.get(msg_idx, "")

    def keys(self) -> list[BlockKey]:
        return sorted(self._edits)

    def message_indices(self) -> list[int]:
        return sorted({m for m, _ in self._edits})

    @property
    def edit_count(self) -> int:
        return sum(len(v) for v in self._edits.values())

    @property
    def is_empty(self) -> bool:
        return not self._edits

    def validate(self, transcript: list[Message]) -> list[str]:
        """Return a description of every edit key that does not fit *transcript*."""
        errors: list[str] = []
        for msg_idx, block_idx in self.keys():
            try:
                self._check_index(transcript, msg_idx, block_idx)
            except IntegrityError as e:
                errors.append(str(e))
        return errors

    def current_text(self, transcript: list[Message], msg_idx: int, block_idx: int) -> str:
        edit = self.active_edit(msg_idx, block_idx)
        if edit is not None:
            return edit.content
        return transcript[msg_idx].blocks[block_idx].text

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def materialize(
        self,
        transcript: list[Message],
        deletion_range: DeletionRange | None = None,
    ) -> list[Message]:
        """Produce the transcript actually sent: active edits applied, deleted messages dropped.

        The input messages are never mutated.
        """
        errors = self.validate(transcript)
        if errors:
            raise IntegrityError(f"Ledger does not match transcript: {errors[0]}")

        rendered: list[Message] = []
        for msg_idx, msg in enumerate(transcript):
            if deletion_range is not None and msg_idx in deletion_range:
                continue
            blocks: list[ContentBlock] = []
            changed = False
            for block_idx, block in enumerate(msg.blocks):
                edit = self.active_edit(msg_idx, block_idx)
                if edit is None:
                    blocks.append(block)
                    continue
                reason = edit.reason.value if hasattr(edit.reason, "value") else str(edit.reason)
                blocks.append(replace(
                    block,
                    text=edit.content,
                    metadata={**block.metadata, "edited": reason},
                ))
                changed = True
            rendered.append(replace(msg, blocks=blocks) if changed else msg)
        return rendered

    def copy(self) -> UpdateLedger:
        clone = UpdateLedger(clock=self._clock)
        clone._edits = {k: list(v) for k, v in self._edits.items()}
        clone._edit_types = dict(self._edit_types)
        clone._last_timestamp = self._last_timestamp
        return clone


def record_edit(
    ledger: UpdateLedger,
    msg_idx: int,
    block_idx: int,
    edit: Edit,
    transcript: list[Message] | None = None,
) -> None:
    """Functional form of :meth:`UpdateLedger.record_edit`."""
    ledger.record_edit(msg_idx, block_idx, edit, transcript)


def materialize(
    ledger: UpdateLedger,
    transcript: list[Message],
    deletion_range: DeletionRange | None = None,
) -> list[Message]:
    """Functional form of :meth:`UpdateLedger.materialize`."""
    return ledger.materialize(transcript, deletion_range)


class TranscriptView:
    """Current view of a transcript during one compaction cycle.

    Reads resolve in order: changes staged this cycle, then the ledger's
    active edit, then the original block text.  Passes only ever read through
    the view; the orchestrator stages each pass's proposals so the next pass
    sees them.
    """

    def __init__(
        self,
        transcript: list[Message],
        ledger: UpdateLedger,
        deletion_range: DeletionRange | None = None,
        recent_window_pairs: int = 3,
    ) -> None:
        self.transcript = transcript
        self.ledger = ledger
        self.deletion_range = deletion_range
        self.recent_start = max(2, len(transcript) - recent_window_pairs * 2)
        self._staged: dict[BlockKey, str] = {}

    def __len__(self) -> int:
        return len(self.transcript)

    def role(self, msg_idx: int) -> str:
        return self.transcript[msg_idx].role

    def block(self, msg_idx: int, block_idx: int) -> ContentBlock:
        return self.transcript[msg_idx].blocks[block_idx]

    def text(self, msg_idx: int, block_idx: int) -> str:
        key = (msg_idx, block_idx)
        if key in self._staged:
            return self._staged[key]
        return self.ledger.current_text(self.transcript, msg_idx, block_idx)

    def message_text(self, msg_idx: int) -> str:
        parts = []
        for block_idx, block in enumerate(self.transcript[msg_idx].blocks):
            if block.type == BlockType.IMAGE:
                continue
            text = self.text(msg_idx, block_idx)
            if isinstance(text, str) and text:
                parts.append(text)
        return "\n".join(parts)

    def is_deleted(self, msg_idx: int) -> bool:
        return self.deletion_range is not None and msg_idx in self.deletion_range

    def is_anchor(self, msg_idx: int) -> bool:
        return msg_idx < 2

    def is_recent(self, msg_idx: int) -> bool:
        return msg_idx >= self.recent_start

    def is_protected(self, msg_idx: int) -> bool:
        """Anchor pair, recent window and deleted messages are off-limits to passes."""
        return self.is_anchor(msg_idx) or self.is_recent(msg_idx) or self.is_deleted(msg_idx)

    def visible_indices(self) -> list[int]:
        return [i for i in range(len(self.transcript)) if not self.is_deleted(i)]

    def editable_indices(self) -> list[int]:
        return [i for i in range(len(self.transcript)) if not self.is_protected(i)]

    def recent_text(self) -> str:
        return "\n".join(
            self.message_text(i)
            for i in range(self.recent_start, len(self.transcript))
            if not self.is_deleted(i)
        )

    def total_chars(self) -> int:
        total = 0
        for msg_idx in self.visible_indices():
            for block_idx in range(len(self.transcript[msg_idx].blocks)):
                text = self.text(msg_idx, block_idx)
                total += len(text) if isinstance(text, str) else 0
        return total

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage(self, change: ProposedChange, block_edits: dict[int, str] | None = None) -> None:
        for block_idx, text in (block_edits if block_edits is not None else change.block_edits).items():
            self._staged[(change.msg_idx, block_idx)] = text

    def staged_keys(self) -> list[BlockKey]:
        return sorted(self._staged)

    def fork(self) -> TranscriptView:
        """A view sharing transcript and ledger but with an independent staging area."""
        clone = copy.copy(self)
        clone._staged = dict(self._staged)
        return clone

    def base(self) -> TranscriptView:
        """The view as it was before anything was staged this cycle."""
        clone = copy.copy(self)
        clone._staged = {}
        return clone
