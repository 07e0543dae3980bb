"""Shared fixtures for context-compactor tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from context_compactor.config import load_config
from context_compactor.core.ledger import TranscriptView, UpdateLedger
from context_compactor.types import BlockType, CompactorConfig, ContentBlock, Message

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def code_body(n_chars: int, prefix: str = "value") -> str:
    """Plain assignment lines, exactly *n_chars* long."""
    lines = []
    i = 0
    while sum(len(ln) for ln in lines) < n_chars:
        lines.append(f"{prefix}_{i} = {i}\n")
        i += 1
    return "".join(lines)[:n_chars]


def read_block(path: str, body: str, tool: str = "read_file") -> ContentBlock:
    return ContentBlock(type=BlockType.TOOL_RESULT, text=body, tool_name=tool, path=path)


def filler(idx: int) -> Message:
    role = "user" if idx % 2 == 0 else "assistant"
    return Message.from_text(role, f"Step {idx} of the walkthrough.")


def build_transcript(n: int, special: dict[int, Message] | None = None) -> list[Message]:
    """*n* alternating messages (user first); *special* replaces chosen indices."""
    special = special or {}
    return [special.get(i, filler(i)) for i in range(n)]


@pytest.fixture
def make_transcript():
    return build_transcript


@pytest.fixture
def make_view():
    def _make(transcript, ledger=None, deletion_range=None, recent_window_pairs=3):
        return TranscriptView(
            transcript, ledger or UpdateLedger(), deletion_range,
            recent_window_pairs=recent_window_pairs,
        )
    return _make


@pytest.fixture
def dedup_transcript() -> list[Message]:
    """20 messages; the same 500-char file is read at messages 3, 9 and 15."""
    body = code_body(500)
    special = {}
    for idx in (3, 9, 15):
        special[idx] = Message(
            role="assistant",
            blocks=[
                ContentBlock(type=BlockType.TEXT, text=f"Reading src/app.py (pass {idx})."),
                read_block("src/app.py", body),
            ],
        )
    return build_transcript(20, special)


@pytest.fixture
def timestamped():
    def _stamp(transcript, start=BASE_TIME, step=timedelta(minutes=5)):
        for i, msg in enumerate(transcript):
            msg.timestamp = start + step * i
        return transcript
    return _stamp


@pytest.fixture
def memory_config() -> CompactorConfig:
    """Default config with persistence disabled."""
    return load_config(config_dict={"storage": {"backend": "none"}})


@pytest.fixture
def tmp_sqlite_db(tmp_path):
    return tmp_path / "ledger.db"
