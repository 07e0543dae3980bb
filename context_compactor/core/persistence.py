"""Snapshot codec for the ledger and deletion range.

Document layout::

    {
      "version": 1,
      "deletion_range": [start, end] | null,
      "edits": [
        [msg_idx, edit_type, [[block_idx, [[timestamp, content, metadata], ...]], ...]],
        ...
      ]
    }

An edit's reason travels inside its metadata under ``"reason"``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from .ledger import UpdateLedger
from ..types import DeletionRange, Edit, EditReason, IntegrityError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _reason_value(reason: EditReason | str) -> str:
    return reason.value if hasattr(reason, "value") else str(reason)


def _parse_reason(value: str) -> EditReason | str:
    try:
        return EditReason(value)
    except ValueError:
        return value


def snapshot_dict(ledger: UpdateLedger, deletion_range: DeletionRange | None) -> dict:
    by_message: dict[int, list] = {}
    for msg_idx, block_idx in ledger.keys():
        edits = [
            [e.timestamp, e.content, {**e.metadata, "reason": _reason_value(e.reason)}]
            for e in ledger.history(msg_idx, block_idx)
        ]
        by_message.setdefault(msg_idx, []).append([block_idx, edits])
    return {
        "version": SNAPSHOT_VERSION,
        "deletion_range": deletion_range.as_list() if deletion_range else None,
        "edits": [
            [msg_idx, ledger.edit_type(msg_idx), blocks]
            for msg_idx, blocks in sorted(by_message.items())
        ],
    }


def save_snapshot(ledger: UpdateLedger, deletion_range: DeletionRange | None) -> bytes:
    return json.dumps(snapshot_dict(ledger, deletion_range), ensure_ascii=False).encode("utf-8")


def _from_dict(data: dict) -> tuple[UpdateLedger, DeletionRange | None]:
    if not isinstance(data, dict):
        raise ValueError("snapshot is not an object")
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version {version!r}")

    rng = data.get("deletion_range")
    deletion_range = None
    if rng is not None:
        start, end = (int(x) for x in rng)
        if start < 2 or end < start:
            raise ValueError(f"invalid deletion range {rng!r}")
        deletion_range = DeletionRange(start, end)

    ledger = UpdateLedger()
    for msg_idx, edit_type, blocks in data.get("edits", []):
        if edit_type:
            ledger.restore_edit_type(int(msg_idx), str(edit_type))
        for block_idx, edits in blocks:
            for timestamp, content, metadata in edits:
                metadata = dict(metadata or {})
                reason = _parse_reason(metadata.pop("reason", edit_type or EditReason.DUPLICATE.value))
                ledger.record_edit(
                    int(msg_idx), int(block_idx),
                    Edit(timestamp=float(timestamp), content=str(content), reason=reason, metadata=metadata),
                )
    return ledger, deletion_range


def load_snapshot(data: bytes | str) -> tuple[UpdateLedger, DeletionRange | None]:
    """Decode a snapshot; anything unreadable yields an empty ledger and no range."""
    try:
        return _from_dict(json.loads(data))
    except (ValueError, TypeError, KeyError, RecursionError, IntegrityError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        logger.warning("Discarding corrupt ledger snapshot: %s", e)
        return UpdateLedger(), None


def save_ledger(path: str | Path, ledger: UpdateLedger, deletion_range: DeletionRange | None) -> None:
    """Write a snapshot to *path* atomically (temp file + replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(save_snapshot(ledger, deletion_range))
    os.replace(tmp, path)


def load_ledger(path: str | Path) -> tuple[UpdateLedger, DeletionRange | None]:
    """Read a snapshot from *path*; a missing file is an empty state."""
    path = Path(path)
    if not path.is_file():
        return UpdateLedger(), None
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.warning("Could not read ledger snapshot %s: %s", path, e)
        return UpdateLedger(), None
    return load_snapshot(data)
