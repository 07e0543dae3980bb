"""Deduplicator: supersede earlier reads of a file once a later one exists."""

from __future__ import annotations

import logging

from .file_refs import FileReferenceExtractor, content_hash, superseded_notice
from .ledger import TranscriptView
from ..types import DedupConfig, EditReason, FileRefMatch, FileReference, ProposedChange

logger = logging.getLogger(__name__)


class Deduplicator:
    """Keep the most recent occurrence of every file, replace the rest with a notice.

    Occurrences are grouped by path across the three reference shapes, so a
    write result supersedes an earlier read of the same file and vice versa.
    """

    def __init__(self, config: DedupConfig | None = None) -> None:
        self.config = config or DedupConfig()
        self.extractor = FileReferenceExtractor(self.config)

    def build_record(self, view: TranscriptView) -> dict[str, list[tuple[FileReference, FileRefMatch]]]:
        """File Reference Record: path -> occurrences in transcript order.

        Every visible message is scanned, including the protected ones: a
        read in the recent window still supersedes older reads.
        """
        record: dict[str, list[tuple[FileReference, FileRefMatch]]] = {}
        for msg_idx in view.visible_indices():
            for block_idx, block in enumerate(view.transcript[msg_idx].blocks):
                try:
                    matches = self.extractor.extract_all(block, view.text(msg_idx, block_idx))
                except Exception as e:  # malformed block: skip it, keep scanning
                    logger.debug("Skipping malformed block (%d, %d): %s", msg_idx, block_idx, e)
                    continue
                for match in matches:
                    ref = FileReference(
                        path=match.path,
                        msg_idx=msg_idx,
                        block_idx=block_idx,
                        content_hash=content_hash(match.content),
                        kind=match.kind,
                        span=match.span,
                        label=match.label,
                    )
                    record.setdefault(match.path, []).append((ref, match))
        return record

    def propose(self, view: TranscriptView) -> list[ProposedChange]:
        record = self.build_record(view)

        # per-block bookkeeping: whole-block notice, or span -> replacement
        whole: dict[tuple[int, int], tuple[str, str]] = {}
        spans: dict[tuple[int, int], dict[tuple[int, int], str]] = {}
        superseded_paths: dict[tuple[int, int], list[str]] = {}

        for path, occurrences in record.items():
            if len(occurrences) < 2:
                continue
            occurrences.sort(key=lambda pair: pair[0].sort_key)
            latest_ref = occurrences[-1][0]
            for ref, match in occurrences[:-1]:
                key = (ref.msg_idx, ref.block_idx)
                if view.is_deleted(ref.msg_idx) or view.is_anchor(ref.msg_idx):
                    continue
                if key == (latest_ref.msg_idx, latest_ref.block_idx) and match.span is None:
                    continue
                notice = superseded_notice(match)
                if match.span is None:
                    whole[key] = (notice, path)
                else:
                    spans.setdefault(key, {}).setdefault(match.span, notice)
                superseded_paths.setdefault(key, []).append(path)

        changes: list[ProposedChange] = []
        for key in sorted(set(whole) | set(spans)):
            msg_idx, block_idx = key
            current = view.text(msg_idx, block_idx)
            if key in whole:
                replacement = whole[key][0]
            else:
                replacement = current
                # apply right-to-left so earlier spans keep their offsets
                for (start, end), notice in sorted(spans[key].items(), reverse=True):
                    replacement = replacement[:start] + notice + replacement[end:]
            if replacement == current or len(replacement) >= len(current):
                continue
            changes.append(ProposedChange(
                msg_idx=msg_idx,
                reason=EditReason.DUPLICATE,
                block_edits={block_idx: replacement},
                original={block_idx: current},
                metadata={"paths": sorted(set(superseded_paths[key]))},
            ))

        if changes:
            logger.info(
                "Dedup: %d blocks superseded across %d paths",
                len(changes), len({p for c in changes for p in c.metadata["paths"]}),
            )
        return changes
