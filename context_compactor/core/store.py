"""LedgerStore abstract base class: per-session snapshot storage."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .ledger import UpdateLedger
from ..types import DeletionRange


class LedgerStore(ABC):
    """Pluggable storage backend for ledger snapshots, one per session."""

    @abstractmethod
    def save(self, session_id: str, ledger: UpdateLedger, deletion_range: DeletionRange | None) -> None:
        """Persist the session's state, replacing any earlier snapshot."""

    @abstractmethod
    def load(self, session_id: str) -> tuple[UpdateLedger, DeletionRange | None]:
        """Load the session's state. Empty ledger and no range if nothing usable is stored."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Delete a session's snapshot. Returns True if one existed."""

    @abstractmethod
    def list_sessions(self) -> list[str]:
        """Session ids with a stored snapshot."""

    def close(self) -> None:
        """Release any held resources."""
