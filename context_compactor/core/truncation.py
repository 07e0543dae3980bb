"""TruncationFallback: grow the deletion range when the passes did not save enough."""

from __future__ import annotations

import logging

from ..types import DeletionRange, IntegrityError, KeepPolicy, Message

logger = logging.getLogger(__name__)

# messages 0 and 1 (the task statement and its first answer) are never removed
FIRST_REMOVABLE = 2


def removal_count(rest: int, keep: KeepPolicy) -> int:
    """How many of the *rest* messages after the existing range to drop."""
    if rest <= 0:
        return 0
    if keep == KeepPolicy.NONE:
        return rest
    if keep == KeepPolicy.LAST_TWO:
        return max(0, rest - 2)
    if keep == KeepPolicy.HALF:
        return (rest // 4) * 2
    if keep == KeepPolicy.QUARTER:
        return int(rest * 3 / 4 / 2) * 2
    raise ValueError(f"Unknown keep policy: {keep!r}")


class TruncationFallback:
    """Compute the next Deletion Range.

    The range always starts at the existing start (or 2), only grows forward,
    and always ends on an assistant message so the remaining transcript keeps
    strict user/assistant alternation after the anchor pair.
    """

    def next_range(
        self,
        transcript: list[Message],
        current: DeletionRange | None,
        keep: KeepPolicy | str,
    ) -> DeletionRange | None:
        keep = KeepPolicy(keep)
        start_of_rest = current.end + 1 if current is not None else FIRST_REMOVABLE
        start_of_rest = max(start_of_rest, FIRST_REMOVABLE)
        rest = len(transcript) - start_of_rest
        # whole pairs only
        n = removal_count(rest, keep)
        n -= n % 2
        if n <= 0:
            logger.debug("Truncation: nothing to remove (rest=%d, keep=%s)", rest, keep.value)
            return None

        end = self._assistant_end(transcript, start_of_rest, start_of_rest + n - 1)
        start = current.start if current is not None else FIRST_REMOVABLE
        new_range = DeletionRange(start, end)
        self._check_remaining_pair(transcript, new_range)
        logger.info(
            "Truncation: keep=%s, removing messages %d-%d (%d total)",
            keep.value, new_range.start, new_range.end, new_range.removed_count,
        )
        return new_range

    @staticmethod
    def _assistant_end(transcript: list[Message], start_of_rest: int, end: int) -> int:
        """*end* itself, else one pair earlier, else one pair later, if that lands on an assistant."""
        for candidate in (end, end - 2, end + 2):
            if start_of_rest < candidate < len(transcript) and transcript[candidate].role == "assistant":
                return candidate
        raise IntegrityError(
            f"Truncation end index {end} does not land on an assistant message",
            msg_idx=end,
        )

    @staticmethod
    def _check_remaining_pair(transcript: list[Message], deletion_range: DeletionRange) -> None:
        remaining = [m.role for m in transcript[:deletion_range.start]]
        remaining += [m.role for m in transcript[deletion_range.end + 1:]]
        for a, b in zip(remaining, remaining[1:]):
            if a == "user" and b == "assistant":
                return
        raise IntegrityError(
            f"Deletion range {deletion_range.start}-{deletion_range.end} would leave "
            "no complete user/assistant pair",
            msg_idx=deletion_range.end,
        )
