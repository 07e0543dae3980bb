"""ContextCompactor: main orchestrator wiring all components together."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from .config import load_config
from .core.accountant import SizeAccountant
from .core.compressor import Compressor
from .core.deduplicator import Deduplicator
from .core.file_events import FileEventQueue
from .core.ledger import TranscriptView, UpdateLedger
from .core.relevance import RelevanceFilter
from .core.store import LedgerStore
from .core.truncation import TruncationFallback
from .core.validator import StructureValidator
from .storage.filesystem import FilesystemStore
from .storage.sqlite import SQLiteStore
from .token_counter import count_view_tokens, create_token_counter
from .types import (
    ChangeDecision,
    CompactionReport,
    CompactorConfig,
    Decision,
    DeletionRange,
    Edit,
    EditReason,
    KeepPolicy,
    Message,
    ProposedChange,
    Usage,
)

logger = logging.getLogger(__name__)


class ContextCompactor:
    """Keeps one session's transcript inside the context window.

    Usage:
        compactor = ContextCompactor(config_path="./context-compactor.yaml")

        # After every provider response
        messages, report = compactor.compact(transcript, usage, context_window=128_000)

    The transcript passed in is never modified; ``messages`` is the
    materialized view to send on the next request.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: CompactorConfig | None = None,
        store: LedgerStore | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self._token_counter = create_token_counter(self.config.token_counter)

        self._init_store(store)
        self._init_passes()
        self.file_events = FileEventQueue(self.config.file_events)

        self._ledger = UpdateLedger()
        self._deletion_range: DeletionRange | None = None
        self._changed_files: dict[str, int] = {}
        self._last_compacted_len: int | None = None
        self._state_checked = False

        self._load_persisted_state()

    def _init_store(self, store: LedgerStore | None) -> None:
        """Initialize the storage backend."""
        if store is not None:
            self._store: LedgerStore | None = store
        elif self.config.storage.backend == "sqlite":
            self._store = SQLiteStore(db_path=self.config.storage.sqlite_path)
        elif self.config.storage.backend == "none":
            self._store = None
        else:
            self._store = FilesystemStore(root=self.config.storage.root)

    def _init_passes(self) -> None:
        self._accountant = SizeAccountant(self.config.accountant)
        self._deduplicator = Deduplicator(self.config.dedup)
        # compressor and relevance share the dedup tool names to recognise file blocks
        extractor = self._deduplicator.extractor
        self._compressor = Compressor(self.config.compressor, extractor=extractor)
        self._relevance = RelevanceFilter(self.config.relevance, extractor=extractor)
        self._validator = StructureValidator(self.config.validator)
        self._truncation = TruncationFallback()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> UpdateLedger:
        return self._ledger

    @property
    def deletion_range(self) -> DeletionRange | None:
        return self._deletion_range

    def _load_persisted_state(self) -> None:
        """Restore the ledger and deletion range from the store if available."""
        if self._store is None:
            return
        try:
            ledger, deletion_range = self._store.load(self.config.session_id)
        except Exception as e:
            logger.warning("Could not load ledger state: %s", e)
            return
        self._ledger, self._deletion_range = ledger, deletion_range
        if not ledger.is_empty or deletion_range is not None:
            logger.info(
                "Restored ledger state: session=%s, edits=%d, deletion_range=%s",
                self.config.session_id[:12], ledger.edit_count,
                deletion_range.as_list() if deletion_range else None,
            )

    def _save_state(self) -> None:
        """Persist current ledger state to store."""
        if self._store is None:
            return
        try:
            self._store.save(self.config.session_id, self._ledger, self._deletion_range)
        except Exception as e:
            logger.error("Failed to save ledger state: %s", e)

    def _check_state(self, transcript: list[Message]) -> None:
        """Drop restored state that does not fit the transcript it is applied to."""
        if self._state_checked:
            return
        self._state_checked = True
        errors = self._ledger.validate(transcript)
        rng = self._deletion_range
        if rng is not None and rng.end >= len(transcript):
            errors.append(f"deletion range ends at {rng.end}, transcript has {len(transcript)}")
        if errors:
            logger.warning("Restored ledger does not match transcript, resetting: %s", errors[0])
            self.reset()

    def reset(self) -> None:
        """Forget every edit and the deletion range."""
        self._ledger = UpdateLedger()
        self._deletion_range = None
        self._changed_files = {}
        self._last_compacted_len = None

    def close(self) -> None:
        if self._store is not None:
            self._store.close()

    # ------------------------------------------------------------------
    # File events
    # ------------------------------------------------------------------

    def notify_file_change(self, path: str, kind: str = "change") -> None:
        """Record that *path* changed on disk; thread-safe."""
        self.file_events.push(path, kind)

    def _absorb_file_events(self, transcript_len: int) -> None:
        for event in self.file_events.drain():
            # copies held by messages before this point are stale
            self._changed_files[event.path] = transcript_len

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def view(self, transcript: list[Message]) -> TranscriptView:
        return TranscriptView(
            transcript, self._ledger, self._deletion_range,
            recent_window_pairs=self.config.recent_window_pairs,
        )

    def materialize(self, transcript: list[Message]) -> list[Message]:
        return self._ledger.materialize(transcript, self._deletion_range)

    def compact(
        self,
        transcript: list[Message],
        usage: Usage | int,
        context_window: int | None = None,
        now: datetime | None = None,
    ) -> tuple[list[Message], CompactionReport]:
        """Run one compaction cycle if the last exchange exceeded the budget.

        Returns the materialized transcript and a report of what happened.
        Calling again without new messages is a no-op.
        """
        window = context_window or self.config.context_window
        self._check_state(transcript)
        self._absorb_file_events(len(transcript))

        report = CompactionReport()
        view = self.view(transcript)
        report.total_chars = view.total_chars()

        if len(transcript) == self._last_compacted_len:
            logger.debug("No new messages since last compaction, skipping")
            return self.materialize(transcript), report
        if not self._accountant.should_compact(usage, window):
            return self.materialize(transcript), report

        report.triggered = True
        tokens_before = count_view_tokens(view, self._token_counter)

        proposals = self._run_passes(view, report, now)
        try:
            decisions = self._validator.review(proposals, view)
        except Exception as e:
            logger.warning("Structure validator failed, discarding %d proposals: %s", len(proposals), e)
            report.failed_passes.append("validator")
            decisions = []

        if self._record(decisions, transcript, report):
            self._save_state()

        after = self.view(transcript)
        report.chars_saved = report.total_chars - after.total_chars()
        report.chars_saved_ratio = report.chars_saved / report.total_chars if report.total_chars else 0.0
        tokens_after = count_view_tokens(after, self._token_counter)
        report.tokens_saved_estimate = max(0, tokens_before - tokens_after)

        if report.chars_saved_ratio < self.config.truncation.savings_threshold:
            self._truncate(transcript, usage, window, report)

        self._last_compacted_len = len(transcript)
        logger.info(
            "Compaction: saved %d/%d chars (%.0f%%), approved=%d modified=%d rejected=%d, truncation=%s",
            report.chars_saved, report.total_chars, report.chars_saved_ratio * 100,
            report.changes_approved, report.changes_modified, report.changes_rejected,
            report.new_deletion_range.as_list() if report.new_deletion_range else None,
        )
        return self.materialize(transcript), report

    def _run_passes(
        self,
        view: TranscriptView,
        report: CompactionReport,
        now: datetime | None,
    ) -> list[ProposedChange]:
        """Run each pass against the view; a failing pass contributes nothing."""
        passes = [
            ("dedup", lambda: self._deduplicator.propose(view)),
            ("compress", lambda: self._compressor.propose(view)),
            ("relevance", lambda: self._relevance.propose(
                view, now=now, changed_files=self._changed_files,
            )),
        ]
        proposals: list[ProposedChange] = []
        for name, run in passes:
            try:
                changes = run()
            except Exception as e:
                logger.warning("Compaction pass '%s' failed, discarding its proposals: %s", name, e)
                report.failed_passes.append(name)
                continue
            for change in changes:
                view.stage(change)
            proposals.extend(changes)
        return proposals

    def _record(
        self,
        decisions: list[ChangeDecision],
        transcript: list[Message],
        report: CompactionReport,
    ) -> int:
        """Write approved and softened changes to the ledger as one batch."""
        timestamp = self._ledger.next_timestamp()
        items: list[tuple[int, int, Edit]] = []
        for d in decisions:
            if d.decision == Decision.REJECT:
                report.changes_rejected += 1
                continue
            change = d.change
            softened = d.decision == Decision.MODIFY
            if softened:
                report.changes_modified += 1
            else:
                report.changes_approved += 1
            pass_name = EditReason(change.reason).value
            saved = 0
            for block_idx, text in sorted(d.block_edits.items()):
                original = change.original.get(block_idx, "")
                if text == original:
                    continue
                saved += len(original) - len(text)
                items.append((change.msg_idx, block_idx, Edit(
                    timestamp=timestamp,
                    content=text,
                    reason=EditReason.SOFTENED if softened else change.reason,
                    metadata={
                        "pass": pass_name,
                        "risk": round(d.risk.total, 3),
                        "softened": softened,
                    },
                )))
            report.pass_savings[pass_name] = report.pass_savings.get(pass_name, 0) + saved
        return self._ledger.record_batch(items, transcript)

    def _truncate(
        self,
        transcript: list[Message],
        usage: Usage | int,
        window: int,
        report: CompactionReport,
    ) -> None:
        keep_setting = self.config.truncation.keep
        if keep_setting == "auto":
            keep = self._accountant.select_keep(usage, window)
        else:
            keep = KeepPolicy(keep_setting)
        report.keep = keep

        new_range = self._truncation.next_range(transcript, self._deletion_range, keep)
        if new_range is None:
            return
        self._deletion_range = new_range
        report.truncation_applied = True
        report.new_deletion_range = new_range
        self._save_state()
