"""StructureValidator: veto or soften proposals that would break the conversation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .ledger import TranscriptView
from .text_utils import compile_patterns, count_matches, extract_identifiers, matches_any
from ..patterns import (
    DEFAULT_FIX_PATTERNS,
    DEFAULT_FOLLOW_UP_PATTERNS,
    DEFAULT_PROBLEM_PATTERNS,
    DEFAULT_VERIFY_PATTERNS,
    ERROR_LINE_PATTERN,
    QUESTION_PATTERN,
    REPLY_CUE_PATTERN,
)
from ..types import (
    BlockType,
    ChangeDecision,
    Decision,
    EditReason,
    ProposedChange,
    RiskBreakdown,
    ValidatorConfig,
)

logger = logging.getLogger(__name__)

# How much of a change's information survives elsewhere; scales structural risk
PRESERVATION_FACTOR = {
    EditReason.DUPLICATE: 0.25,
    EditReason.COMPRESSED: 0.6,
    EditReason.RELEVANCE: 1.0,
}

_ERROR_LINE_RE = re.compile(ERROR_LINE_PATTERN)


@dataclass
class ConversationStructure:
    """Discourse structure of the transcript before this cycle's changes."""
    qa_partner: dict[int, int] = field(default_factory=dict)
    unresolved: set[int] = field(default_factory=set)
    resolved: set[int] = field(default_factory=set)
    follow_ups: set[int] = field(default_factory=set)


class StructureValidator:
    """Score each proposed change for structural risk and decide its fate.

    ``risk = w.critical_path * critical + w.discourse_marker * discourse
    + w.coherence * coherence + w.referential * referential``; above
    ``reject_threshold`` the change is dropped, between the two thresholds it
    is softened, below ``modify_threshold`` it goes through as proposed.
    """

    def __init__(self, config: ValidatorConfig | None = None) -> None:
        self.config = config or ValidatorConfig()
        self._questions = compile_patterns([QUESTION_PATTERN], flags=re.MULTILINE)
        self._follow_ups = compile_patterns(DEFAULT_FOLLOW_UP_PATTERNS)
        self._problems = compile_patterns(DEFAULT_PROBLEM_PATTERNS)
        self._fixes = compile_patterns(DEFAULT_FIX_PATTERNS)
        self._verify = compile_patterns(DEFAULT_VERIFY_PATTERNS)
        self._reply_cue = compile_patterns([REPLY_CUE_PATTERN])

    # ------------------------------------------------------------------
    # Structure detection
    # ------------------------------------------------------------------

    def analyze(self, view: TranscriptView) -> ConversationStructure:
        structure = ConversationStructure()
        visible = view.visible_indices()
        texts = {i: view.message_text(i) for i in visible}

        for pos, i in enumerate(visible[:-1]):
            nxt = visible[pos + 1]
            if view.role(i) != view.role(nxt) and matches_any(self._questions, texts[i]):
                structure.qa_partner[i] = nxt
                structure.qa_partner.setdefault(nxt, i)

        window = self.config.chain_window
        for pos, i in enumerate(visible):
            if matches_any(self._follow_ups, texts[i]):
                structure.follow_ups.add(i)
            if not matches_any(self._problems, texts[i]):
                continue
            last = i
            fix = self._find_after(visible, texts, pos, window, self._fixes)
            verify = None
            if fix is not None:
                last = fix
                verify = self._find_after(visible, texts, visible.index(fix), window, self._verify)
                if verify is not None:
                    last = verify
            members = {m for m in visible if i <= m <= last}
            if verify is not None:
                structure.resolved |= members
            else:
                structure.unresolved |= members

        # a message in any open chain counts as open
        structure.resolved -= structure.unresolved
        return structure

    @staticmethod
    def _find_after(
        visible: list[int],
        texts: dict[int, str],
        pos: int,
        window: int,
        patterns: list[re.Pattern],
    ) -> int | None:
        start = visible[pos]
        for j in visible[pos + 1:]:
            if j - start > window:
                break
            if matches_any(patterns, texts[j]):
                return j
        return None

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def _markers(self, text: str) -> int:
        return count_matches(self._questions, text) + count_matches(self._follow_ups, text)

    def assess(
        self,
        change: ProposedChange,
        view: TranscriptView,
        structure: ConversationStructure,
        removed: set[int],
    ) -> RiskBreakdown:
        """Risk of *change*; *view* already has every proposal of the cycle staged."""
        msg_idx = change.msg_idx
        factor = PRESERVATION_FACTOR.get(EditReason(change.reason), 1.0)
        original = "\n".join(change.original.values())
        replacement = "\n".join(change.block_edits.values())

        critical = 0.0
        if msg_idx in structure.unresolved:
            critical = 1.0
        elif msg_idx in structure.qa_partner:
            critical = 0.7
        elif msg_idx in structure.resolved:
            critical = 0.5
        critical *= factor

        before = self._markers(original)
        discourse = 0.0
        if before:
            discourse = max(0, before - self._markers(replacement)) / before * factor

        coherence = 0.0
        partner = structure.qa_partner.get(msg_idx)
        if change.reason == EditReason.RELEVANCE and partner is not None and partner in removed:
            coherence = 1.0
        else:
            nxt = next((i for i in view.visible_indices() if i > msg_idx), None)
            if nxt is not None and matches_any(self._reply_cue, view.base().message_text(nxt)):
                coherence = 0.6
            elif msg_idx == view.recent_start - 1:
                coherence = 0.4

        referential = self._referential(change, view, original, replacement)

        w = self.config.weights
        total = (
            w["critical_path"] * critical
            + w["discourse_marker"] * discourse
            + w["coherence"] * coherence
            + w["referential"] * referential
        )
        return RiskBreakdown(
            critical_path=critical,
            discourse_marker=discourse,
            coherence=coherence,
            referential=referential,
            total=total,
        )

    def _referential(self, change: ProposedChange, view: TranscriptView, original: str, replacement: str) -> float:
        dropped = extract_identifiers(original) - extract_identifiers(replacement)
        if not dropped:
            return 0.0
        later = "\n".join(
            view.message_text(i) for i in view.visible_indices() if i > change.msg_idx
        )
        # tool results and file blocks left standing after this cycle
        surviving = []
        for i in view.visible_indices():
            for b, block in enumerate(view.transcript[i].blocks):
                if block.type not in (BlockType.TOOL_RESULT, BlockType.FILE_CONTENT):
                    continue
                if i == change.msg_idx and b in change.block_edits:
                    continue
                surviving.append(view.text(i, b))
        surviving_text = "\n".join(t for t in surviving if isinstance(t, str))
        broken = [tok for tok in dropped if tok in later and tok not in surviving_text]
        return len(broken) / len(dropped)

    # ------------------------------------------------------------------
    # Softening
    # ------------------------------------------------------------------

    def salient_lines(self, text: str, later: str) -> list[str]:
        """Original lines a softened replacement should carry along."""
        picked: list[str] = []
        for line in text.splitlines():
            stripped = line.strip()
            if not stripped or stripped in picked:
                continue
            referenced = any(tok in later for tok in extract_identifiers(stripped))
            if (
                referenced
                or matches_any(self._questions, stripped)
                or matches_any(self._follow_ups, stripped)
                or _ERROR_LINE_RE.search(stripped)
            ):
                picked.append(stripped[:200])
            if len(picked) >= self.config.max_bridge_lines:
                break
        return picked

    def soften(self, change: ProposedChange, view: TranscriptView) -> dict[int, str] | None:
        """Replacement plus a bridging excerpt, or None if there is nothing to bridge or no saving."""
        later = "\n".join(
            view.message_text(i) for i in view.visible_indices() if i > change.msg_idx
        )
        original = "\n".join(change.original.values())
        bridge = self.salient_lines(original, later)
        if not bridge:
            # nothing salient: carry the opening lines the replacement does not already hold
            replacement = "\n".join(change.block_edits.values())
            opening = (line.strip()[:200] for line in original.splitlines())
            bridge = [line for line in opening if line and line not in replacement]
            bridge = bridge[: self.config.max_bridge_lines]
        if not bridge:
            return None

        softened = dict(change.block_edits)
        target = next((b for b, t in softened.items() if t), None)
        if target is None:
            target = min(softened)
        softened[target] = "\n".join([softened[target], *bridge]).strip("\n")

        saved = sum(len(change.original.get(b, "")) - len(t) for b, t in softened.items())
        if saved <= 0:
            return None
        return softened

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review(self, changes: list[ProposedChange], view: TranscriptView) -> list[ChangeDecision]:
        """Decide every proposal of the cycle."""
        if not changes:
            return []
        structure = self.analyze(view.base())
        removed = {c.msg_idx for c in changes if c.reason == EditReason.RELEVANCE}

        decisions: list[ChangeDecision] = []
        for change in changes:
            risk = self.assess(change, view, structure, removed)
            if risk.total > self.config.reject_threshold:
                decisions.append(ChangeDecision(change, Decision.REJECT, risk))
            elif risk.total >= self.config.modify_threshold:
                softened = self.soften(change, view)
                if softened is None:
                    decisions.append(ChangeDecision(change, Decision.REJECT, risk))
                else:
                    decisions.append(ChangeDecision(change, Decision.MODIFY, risk, softened))
            else:
                decisions.append(ChangeDecision(change, Decision.APPROVE, risk, dict(change.block_edits)))

        counts = {d: sum(1 for x in decisions if x.decision == d) for d in Decision}
        logger.info(
            "Validator: %d approved, %d modified, %d rejected",
            counts[Decision.APPROVE], counts[Decision.MODIFY], counts[Decision.REJECT],
        )
        return decisions
