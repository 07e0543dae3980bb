"""SizeAccountant: decides from reported usage whether the budget is exceeded."""

from __future__ import annotations

from ..types import AccountantConfig, KeepPolicy, Usage


class SizeAccountant:
    """Compare actual provider usage against the usable part of the context window.

    The usable part is ``context_window - buffer(context_window)``; the buffer
    reserves room for the response and system overhead.  Known window sizes
    use the configured table, anything else reserves
    ``max(default_min_buffer, default_buffer_ratio * window)``.
    """

    def __init__(self, config: AccountantConfig | None = None) -> None:
        self.config = config or AccountantConfig()

    def buffer(self, context_window: int) -> int:
        if context_window in self.config.buffer_policy:
            return self.config.buffer_policy[context_window]
        return max(
            self.config.default_min_buffer,
            int(context_window * self.config.default_buffer_ratio),
        )

    def max_allowed_size(self, context_window: int) -> int:
        return context_window - self.buffer(context_window)

    def should_compact(self, usage: Usage | int, context_window: int) -> bool:
        """True when the last exchange's usage reached the budget. Pure query."""
        return _total(usage) >= self.max_allowed_size(context_window)

    def select_keep(self, usage: Usage | int, context_window: int) -> KeepPolicy:
        """Quarter when usage is more than twice the budget, else half."""
        if _total(usage) / 2 > self.max_allowed_size(context_window):
            return KeepPolicy.QUARTER
        return KeepPolicy.HALF


def _total(usage: Usage | int) -> int:
    if isinstance(usage, Usage):
        return usage.total
    return int(usage)
