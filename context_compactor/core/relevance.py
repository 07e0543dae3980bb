"""RelevanceFilter: score messages for continued relevance and propose stale removals."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime

from .file_refs import FileReferenceExtractor
from .ledger import TranscriptView
from .text_utils import (
    compile_patterns,
    cosine_similarity,
    extract_paths,
    first_sentence,
    matches_any,
    term_vector,
)
from ..patterns import (
    DEFAULT_BACK_REFERENCE_PATTERNS,
    DEFAULT_DECISION_PATTERNS,
    DEFAULT_PROBLEM_PATTERNS,
    DEFAULT_VERIFY_PATTERNS,
    QUESTION_PATTERN,
)
from ..types import BlockType, EditReason, ProposedChange, RelevanceConfig, RelevanceRecord

logger = logging.getLogger(__name__)

RELEVANCE_NOTICE_PREFIX = "[earlier "

PHASE_IMPORTANCE = {
    "planning": 1.0,
    "debugging": 0.8,        # unresolved
    "request": 0.6,
    "discussion": 0.4,
    "exploration": 0.3,
    "resolved debugging": 0.3,
}

# How far ahead a verification may appear and still resolve a problem
RESOLUTION_WINDOW = 10


class RelevanceFilter:
    """Dependency graph + composite score over the visible transcript.

    Usage:
        records = relevance.score(view)
        changes = relevance.propose(view)
    """

    def __init__(
        self,
        config: RelevanceConfig | None = None,
        extractor: FileReferenceExtractor | None = None,
    ) -> None:
        self.config = config or RelevanceConfig()
        self.extractor = extractor or FileReferenceExtractor()
        self._back_refs = compile_patterns(DEFAULT_BACK_REFERENCE_PATTERNS)
        self._decisions = compile_patterns(DEFAULT_DECISION_PATTERNS)
        self._problems = compile_patterns(DEFAULT_PROBLEM_PATTERNS)
        self._verify = compile_patterns(DEFAULT_VERIFY_PATTERNS)
        self._outcomes: dict[int, str] = {}
        self._question = compile_patterns([QUESTION_PATTERN], flags=re.MULTILINE)

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def file_paths(self, view: TranscriptView, msg_idx: int) -> set[str]:
        """Paths the message read, wrote or embedded (not mere mentions)."""
        paths: set[str] = set()
        for block_idx, block in enumerate(view.transcript[msg_idx].blocks):
            try:
                for match in self.extractor.extract_all(block, view.text(msg_idx, block_idx)):
                    paths.add(match.path)
            except Exception as e:
                logger.debug("Skipping malformed block (%d, %d): %s", msg_idx, block_idx, e)
        return paths

    def build_graph(self, view: TranscriptView) -> dict[int, set[int]]:
        """Map each visible message to the later messages that depend on it."""
        visible = view.visible_indices()
        texts = {i: view.message_text(i) for i in visible}
        vectors = {i: term_vector(texts[i]) for i in visible}
        incoming: dict[int, set[int]] = {i: set() for i in visible}
        last_holder: dict[str, int] = {}

        for pos, j in enumerate(visible):
            mentioned = extract_paths(texts[j]) | self.file_paths(view, j)
            for path in mentioned:
                holder = last_holder.get(path)
                if holder is not None and holder != j:
                    incoming[holder].add(j)

            if pos > 0 and matches_any(self._back_refs, texts[j]):
                window = visible[max(0, pos - self.config.back_reference_lookback):pos]
                best, best_sim = window[-1], 0.0
                for i in window:
                    sim = cosine_similarity(vectors[j], vectors[i])
                    if sim > best_sim:
                        best, best_sim = i, sim
                if best_sim < 0.15:
                    best = window[-1]
                incoming[best].add(j)

            if pos > 0:
                prev = visible[pos - 1]
                if view.role(prev) != view.role(j) and matches_any(self._question, texts[prev]):
                    incoming[prev].add(j)

            for path in mentioned:
                last_holder[path] = j
        return incoming

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _is_resolved(self, view: TranscriptView, msg_idx: int, visible: list[int]) -> str | None:
        """Verification line following a problem, or None if it is still open."""
        later = [i for i in visible if i > msg_idx][:RESOLUTION_WINDOW]
        for i in later:
            text = view.message_text(i)
            for line in text.splitlines():
                if matches_any(self._verify, line):
                    return first_sentence(line, 80)
        return None

    def phase(self, view: TranscriptView, msg_idx: int, visible: list[int]) -> tuple[str, str | None]:
        """(phase label, resolution outcome if any)."""
        text = view.message_text(msg_idx)
        if matches_any(self._decisions, text):
            return "planning", None
        if matches_any(self._problems, text):
            outcome = self._is_resolved(view, msg_idx, visible)
            if outcome:
                return "resolved debugging", outcome
            return "debugging", None
        blocks = view.transcript[msg_idx].blocks
        if any(b.type in (BlockType.TOOL_RESULT, BlockType.FILE_CONTENT) for b in blocks):
            return "exploration", None
        if view.role(msg_idx) == "user":
            return "request", None
        return "discussion", None

    def _age_hours(self, view: TranscriptView, msg_idx: int, now: datetime | None, last_idx: int) -> float:
        ts = view.transcript[msg_idx].timestamp
        if ts is not None and now is not None:
            return max(0.0, (now - ts).total_seconds() / 3600)
        return (last_idx - msg_idx) * self.config.fallback_hours_per_message

    def score(
        self,
        view: TranscriptView,
        now: datetime | None = None,
        changed_files: dict[str, int] | None = None,
    ) -> dict[int, RelevanceRecord]:
        """Relevance record for every visible message.

        *changed_files* maps a path to the transcript length at the moment the
        file changed on disk; messages before that index hold a stale copy.
        """
        changed_files = changed_files or {}
        visible = view.visible_indices()
        if not visible:
            return {}
        if now is None:
            stamps = [view.transcript[i].timestamp for i in visible if view.transcript[i].timestamp]
            now = max(stamps) if stamps else None
        incoming = self.build_graph(view)
        recent_vec = term_vector(view.recent_text())
        last_idx = visible[-1]
        w = self.config.weights

        # last message holding each path, for obsolescence
        holders: dict[str, list[int]] = {}
        file_paths = {i: self.file_paths(view, i) for i in visible}
        for i in visible:
            for path in file_paths[i]:
                holders.setdefault(path, []).append(i)

        records: dict[int, RelevanceRecord] = {}
        self._outcomes = {}
        for i in visible:
            text = view.message_text(i)
            label, outcome = self.phase(view, i, visible)
            temporal = math.exp(-self._age_hours(view, i, now, last_idx) / self.config.decay_hours)
            semantic = cosine_similarity(term_vector(text), recent_vec)
            dependency = min(1.0, len(incoming[i]) / 3)
            phase = PHASE_IMPORTANCE[label]

            obsolescence = 0.0
            paths = file_paths[i]
            if paths and all(
                holders[p][-1] > i or changed_files.get(p, -1) > i for p in paths
            ):
                obsolescence = 1.0
            elif outcome:
                obsolescence = 0.5

            score = (
                w["temporal"] * temporal
                + w["semantic"] * semantic
                + w["dependency"] * dependency
                + w["phase"] * phase
                - w["obsolescence"] * obsolescence
            )
            records[i] = RelevanceRecord(
                msg_idx=i,
                score=score,
                temporal=temporal,
                semantic=semantic,
                dependency=dependency,
                phase=phase,
                obsolescence=obsolescence,
                phase_label=label,
                incoming=set(incoming[i]),
            )
            if outcome:
                self._outcomes[i] = outcome
        return records

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def notice(self, record: RelevanceRecord, text: str, outcome: str | None = None) -> str:
        if record.phase_label == "resolved debugging" and outcome:
            return f"{RELEVANCE_NOTICE_PREFIX}debugging exchange, resolved: {outcome}]"
        gist = first_sentence(text, 100)
        return f"{RELEVANCE_NOTICE_PREFIX}{record.phase_label} message removed: {gist}]"

    def propose(
        self,
        view: TranscriptView,
        now: datetime | None = None,
        changed_files: dict[str, int] | None = None,
    ) -> list[ProposedChange]:
        records = self.score(view, now=now, changed_files=changed_files)
        candidates: set[int] = set()
        changes: list[ProposedChange] = []

        # newest first, so a stale chain of references is removed together
        for msg_idx in sorted(view.editable_indices(), reverse=True):
            record = records.get(msg_idx)
            if record is None or record.score >= self.config.removal_threshold:
                continue
            if any(src not in candidates for src in record.incoming):
                continue
            change = self._removal(view, msg_idx, record)
            if change is None:
                continue
            candidates.add(msg_idx)
            changes.append(change)

        changes.reverse()
        if changes:
            logger.info(
                "Relevance: %d stale messages proposed for removal (%d chars)",
                len(changes), sum(c.chars_saved for c in changes),
            )
        return changes

    def _removal(self, view: TranscriptView, msg_idx: int, record: RelevanceRecord) -> ProposedChange | None:
        blocks = view.transcript[msg_idx].blocks
        text = view.message_text(msg_idx)
        if len(text) < self.config.min_message_chars or text.startswith(RELEVANCE_NOTICE_PREFIX):
            return None

        notice = self.notice(record, text, self._outcomes.get(msg_idx))
        block_edits: dict[int, str] = {}
        original: dict[int, str] = {}
        for block_idx, block in enumerate(blocks):
            if block.type == BlockType.IMAGE:
                continue
            current = view.text(msg_idx, block_idx)
            if not isinstance(current, str):
                continue
            replacement = notice if not block_edits else ""
            if replacement == current:
                continue
            block_edits[block_idx] = replacement
            original[block_idx] = current

        change = ProposedChange(
            msg_idx=msg_idx,
            reason=EditReason.RELEVANCE,
            block_edits=block_edits,
            original=original,
            metadata={
                "score": round(record.score, 3),
                "phase": record.phase_label,
            },
        )
        if not block_edits or change.chars_saved < self.config.min_savings_chars:
            return None
        return change
