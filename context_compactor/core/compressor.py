"""Compressor: shrink verbose, well-structured blocks down to their key facts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .file_refs import FileReferenceExtractor, is_superseded
from .ledger import TranscriptView
from .text_utils import compile_patterns, extract_identifiers, matches_any
from ..patterns import DEFAULT_VERIFY_PATTERNS, ERROR_LINE_PATTERN
from ..types import BlockType, CompressorConfig, EditReason, ProposedChange

logger = logging.getLogger(__name__)

COMPRESSED_PREFIX = "[compressed "

SHAPE_COMMAND = "command output"
SHAPE_STACK_TRACE = "stack trace"
SHAPE_LISTING = "directory listing"
SHAPE_GENERIC = "output"

# Importance before error and reference bonuses
SHAPE_BASE_IMPORTANCE = {
    SHAPE_COMMAND: 0.30,
    SHAPE_STACK_TRACE: 0.45,
    SHAPE_LISTING: 0.15,
    SHAPE_GENERIC: 0.25,
}

_EXIT_CODE_RE = re.compile(r"(?i)\bexit(?:ed)? (?:code|status)[:= ]*(-?\d+)")
_PROMPT_RE = re.compile(r"^\s*(?:\$|>|PS [^>]*>)\s+(\S.*)$")
_PY_FRAME_RE = re.compile(r'^\s*File "(?P<file>[^"]+)", line (?P<line>\d+)')
_JS_FRAME_RE = re.compile(r"^\s*at .*?\(?(?P<file>[^\s()]+?):(?P<line>\d+)(?::\d+)?\)?\s*$")
_ERROR_TYPE_RE = re.compile(
    r"^\s*(?P<type>[A-Za-z_][\w.]*(?:Error|Exception|Exit|Interrupt|Warning|Fault))\b:?\s*(?P<msg>.*)$"
)
_LISTING_LINE_RE = re.compile(r"^[\s│├└─|`+\-]*[^\s│├└─|`]+/?\s*$")
_ERROR_LINE_RE = re.compile(ERROR_LINE_PATTERN)


@dataclass
class CompressionFacts:
    """Must-preserve facts pulled out of a block before it is summarised."""
    shape: str
    line_count: int
    command: str | None = None
    exit_code: int | None = None
    error: str | None = None
    location: str | None = None
    final_line: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    highlights: list[str] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return bool(self.error) or (self.exit_code is not None and self.exit_code != 0)

    def identifiers(self) -> set[str]:
        found: set[str] = set()
        for value in (self.error, self.location, self.final_line, self.command):
            if value:
                found |= extract_identifiers(value)
        if self.error:
            found.add(self.error.split(":", 1)[0].strip())
        return found


def classify(text: str, tool_name: str = "", command_tools: list[str] | tuple = ()) -> str:
    """Coarse content shape of a block."""
    lines = [ln for ln in text.splitlines() if ln.strip()]
    if not lines:
        return SHAPE_GENERIC
    if (
        tool_name in command_tools
        or _PROMPT_RE.match(lines[0])
        or _EXIT_CODE_RE.search(text)
    ):
        return SHAPE_COMMAND
    frames = sum(1 for ln in lines if _PY_FRAME_RE.match(ln) or _JS_FRAME_RE.match(ln))
    if "Traceback (most recent call last)" in text or frames >= 3:
        return SHAPE_STACK_TRACE
    if len(lines) >= 8:
        listing_like = sum(1 for ln in lines if _LISTING_LINE_RE.match(ln))
        if listing_like / len(lines) >= 0.8:
            return SHAPE_LISTING
    return SHAPE_GENERIC


def _error_summary(lines: list[str]) -> tuple[str | None, str | None]:
    """(primary error, innermost location) from a trace or log."""
    error = None
    for line in reversed(lines):
        m = _ERROR_TYPE_RE.match(line)
        if m:
            msg = m.group("msg").strip()
            error = f"{m.group('type')}: {msg}" if msg else m.group("type")
            break
    location = None
    for line in reversed(lines):
        m = _PY_FRAME_RE.match(line) or _JS_FRAME_RE.match(line)
        if m:
            location = f"{m.group('file')}:{m.group('line')}"
            break
    return error, location


def extract_facts(text: str, shape: str, max_error_lines: int = 3) -> CompressionFacts:
    lines = text.splitlines()
    non_empty = [ln.rstrip() for ln in lines if ln.strip()]
    facts = CompressionFacts(shape=shape, line_count=len(lines))
    if non_empty:
        facts.final_line = non_empty[-1].strip()

    if shape == SHAPE_COMMAND:
        for line in non_empty[:3]:
            m = _PROMPT_RE.match(line)
            if m:
                facts.command = m.group(1).strip()
                break
        m = _EXIT_CODE_RE.search(text)
        if m:
            facts.exit_code = int(m.group(1))
        facts.error, facts.location = _error_summary(non_empty)
        facts.highlights = [
            ln.strip() for ln in non_empty if _ERROR_LINE_RE.search(ln)
        ][:max_error_lines]
    elif shape == SHAPE_STACK_TRACE:
        facts.error, facts.location = _error_summary(non_empty)
        facts.counts["frames"] = sum(
            1 for ln in non_empty if _PY_FRAME_RE.match(ln) or _JS_FRAME_RE.match(ln)
        )
    elif shape == SHAPE_LISTING:
        entries = [ln.strip(" │├└─|`+-") for ln in non_empty]
        dirs = [e for e in entries if e.endswith("/")]
        facts.counts["entries"] = len(entries)
        facts.counts["directories"] = len(dirs)
        facts.counts["files"] = len(entries) - len(dirs)
        facts.highlights = (dirs or entries)[:5]
        facts.final_line = None
    else:
        facts.error, facts.location = _error_summary(non_empty)
        facts.highlights = non_empty[:2]
        errors = [ln.strip() for ln in non_empty if _ERROR_LINE_RE.search(ln)]
        facts.highlights += [e for e in errors if e not in facts.highlights][:max_error_lines]
    return facts


def render_summary(facts: CompressionFacts) -> str:
    parts = [f"{COMPRESSED_PREFIX}{facts.shape}: {facts.line_count} lines]"]
    if facts.command:
        parts.append(f"command: {facts.command}")
    if facts.exit_code is not None:
        parts.append(f"exit code: {facts.exit_code}")
    if facts.error:
        err = facts.error if len(facts.error) <= 160 else facts.error[:157] + "..."
        parts.append(f"error: {err}" + (f" ({facts.location})" if facts.location else ""))
    elif facts.location:
        parts.append(f"at: {facts.location}")
    if facts.counts:
        parts.append(", ".join(f"{k}: {v}" for k, v in facts.counts.items()))
    for line in facts.highlights:
        parts.append(f"  {line[:160]}")
    if facts.final_line and facts.final_line not in facts.highlights:
        parts.append(f"last: {facts.final_line[:160]}")
    return "\n".join(parts)


class Compressor:
    """Replace low-information blocks with a summary of their must-preserve facts.

    A block is rewritten only when the summary is at least
    ``min_compression_ratio`` smaller and the block's importance stays below
    ``max_importance``: content that is both very compressible and very
    important is left alone.
    """

    def __init__(
        self,
        config: CompressorConfig | None = None,
        extractor: FileReferenceExtractor | None = None,
    ) -> None:
        self.config = config or CompressorConfig()
        self.extractor = extractor or FileReferenceExtractor()
        self._verify = compile_patterns(DEFAULT_VERIFY_PATTERNS)

    def importance(self, view: TranscriptView, msg_idx: int, facts: CompressionFacts, text: str) -> float:
        score = SHAPE_BASE_IMPORTANCE.get(facts.shape, 0.25)
        if facts.has_error:
            later = "\n".join(
                view.message_text(i) for i in view.visible_indices() if i > msg_idx
            )
            score += 0.10 if matches_any(self._verify, later) else 0.35
        recent = view.recent_text()
        salient = facts.identifiers() | extract_identifiers("\n".join(text.splitlines()[:5]))
        if any(tok and tok in recent for tok in salient):
            score += 0.30
        return min(1.0, score)

    def propose(self, view: TranscriptView) -> list[ProposedChange]:
        changes: list[ProposedChange] = []
        for msg_idx in view.editable_indices():
            for block_idx, block in enumerate(view.transcript[msg_idx].blocks):
                try:
                    change = self._propose_block(view, msg_idx, block_idx)
                except Exception as e:  # malformed block: skip it, keep scanning
                    logger.debug("Skipping malformed block (%d, %d): %s", msg_idx, block_idx, e)
                    continue
                if change is not None:
                    changes.append(change)
        if changes:
            logger.info(
                "Compressor: %d blocks compressed, %d chars saved",
                len(changes), sum(c.chars_saved for c in changes),
            )
        return changes

    def _propose_block(self, view: TranscriptView, msg_idx: int, block_idx: int) -> ProposedChange | None:
        block = view.block(msg_idx, block_idx)
        if block.type in (BlockType.IMAGE, BlockType.FILE_CONTENT):
            return None
        text = view.text(msg_idx, block_idx)
        if not isinstance(text, str):
            raise TypeError(f"block text is {type(text).__name__}")
        if len(text) < self.config.min_block_chars:
            return None
        if text.startswith(COMPRESSED_PREFIX) or is_superseded(text):
            return None
        # file contents belong to the deduplicator
        if self.extractor.extract_all(block, text):
            return None

        shape = classify(text, block.tool_name, self.config.command_tools)
        if shape == SHAPE_GENERIC and block.type != BlockType.TOOL_RESULT:
            return None

        facts = extract_facts(text, shape, self.config.max_error_lines)
        summary = render_summary(facts)
        ratio = 1.0 - len(summary) / len(text)
        if ratio < self.config.min_compression_ratio:
            return None
        importance = self.importance(view, msg_idx, facts, text)
        if importance >= self.config.max_importance:
            logger.debug(
                "Keeping block (%d, %d): importance %.2f >= %.2f",
                msg_idx, block_idx, importance, self.config.max_importance,
            )
            return None

        return ProposedChange(
            msg_idx=msg_idx,
            reason=EditReason.COMPRESSED,
            block_edits={block_idx: summary},
            original={block_idx: text},
            metadata={
                "shape": shape,
                "compression_ratio": round(ratio, 3),
                "importance": round(importance, 3),
            },
        )
