"""Token estimates for the compaction report.

Compaction decisions use the provider's reported usage and savings are
measured in characters; tokens here only feed ``tokens_saved_estimate``.
"""

from __future__ import annotations

from typing import Callable

from .core.ledger import TranscriptView

CHARS_PER_TOKEN = 4
DEFAULT_ENCODING = "cl100k_base"

TokenCounter = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token."""
    return len(text) // CHARS_PER_TOKEN


def create_token_counter(mode: str = "estimate") -> TokenCounter:
    """Counter for the configured ``token_counter`` mode.

    Modes:
        "estimate" - len(text) // 4 (zero deps)
        "tiktoken" or "tiktoken:<encoding>" - requires the tiktoken extra
    """
    if mode == "estimate":
        return estimate_tokens

    name, _, encoding = mode.partition(":")
    if name == "tiktoken":
        try:
            import tiktoken
        except ImportError:
            raise ImportError(
                "tiktoken not installed. Install with: pip install context-compactor[tiktoken]"
            )
        enc = tiktoken.get_encoding(encoding or DEFAULT_ENCODING)
        return lambda text: len(enc.encode(text))

    raise ValueError(f"Unknown token counter mode: {mode}")


def count_view_tokens(view: TranscriptView, counter: TokenCounter = estimate_tokens) -> int:
    """Tokens of every visible text block as the view currently renders it."""
    total = 0
    for msg_idx in view.visible_indices():
        for block_idx in range(len(view.transcript[msg_idx].blocks)):
            text = view.text(msg_idx, block_idx)
            if isinstance(text, str) and text:
                total += counter(text)
    return total
