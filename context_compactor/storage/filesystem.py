"""FilesystemStore: one JSON snapshot file per session."""

from __future__ import annotations

import re
from pathlib import Path

from ..core.ledger import UpdateLedger
from ..core.persistence import load_ledger, save_ledger
from ..core.store import LedgerStore
from ..types import DeletionRange

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


class FilesystemStore(LedgerStore):
    """Snapshots live at ``<root>/<session_id>.json``, written via temp file + replace."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.root / f"{_UNSAFE_RE.sub('_', session_id)}.json"

    def save(self, session_id: str, ledger: UpdateLedger, deletion_range: DeletionRange | None) -> None:
        save_ledger(self._path(session_id), ledger, deletion_range)

    def load(self, session_id: str) -> tuple[UpdateLedger, DeletionRange | None]:
        return load_ledger(self._path(session_id))

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if path.exists():
            path.unlink()
            return True
        return False

    def list_sessions(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))
