"""Tests for SizeAccountant."""

import pytest

from context_compactor.core.accountant import SizeAccountant
from context_compactor.types import AccountantConfig, KeepPolicy, Usage


@pytest.fixture
def accountant():
    return SizeAccountant()


class TestBuffer:
    @pytest.mark.parametrize("window,buffer", [
        (64_000, 27_000),
        (128_000, 30_000),
        (200_000, 40_000),
    ])
    def test_known_windows(self, accountant, window, buffer):
        assert accountant.buffer(window) == buffer
        assert accountant.max_allowed_size(window) == window - buffer

    def test_unknown_small_window_uses_floor(self, accountant):
        assert accountant.buffer(100_000) == 40_000

    def test_unknown_large_window_uses_ratio(self, accountant):
        assert accountant.buffer(1_000_000) == 200_000

    def test_custom_policy(self):
        acc = SizeAccountant(AccountantConfig(buffer_policy={32_000: 8_000}))
        assert acc.max_allowed_size(32_000) == 24_000
        assert acc.buffer(128_000) == 40_000


class TestShouldCompact:
    def test_128k_scenario(self, accountant):
        usage = Usage(input_tokens=95_000, output_tokens=2_000, cache_write_tokens=500, cache_read_tokens=500)
        assert usage.total == 98_000
        assert accountant.should_compact(usage, 128_000) is True

    def test_below_budget(self, accountant):
        usage = Usage(input_tokens=90_000, output_tokens=7_999)
        assert accountant.should_compact(usage, 128_000) is False

    def test_accepts_plain_int(self, accountant):
        assert accountant.should_compact(160_000, 200_000) is True
        assert accountant.should_compact(159_999, 200_000) is False

    def test_is_pure(self, accountant):
        usage = Usage(input_tokens=120_000)
        first = accountant.should_compact(usage, 128_000)
        assert accountant.should_compact(usage, 128_000) == first
        assert usage.input_tokens == 120_000


class TestSelectKeep:
    def test_quarter_when_double_budget(self, accountant):
        assert accountant.select_keep(200_000, 128_000) == KeepPolicy.QUARTER

    def test_half_otherwise(self, accountant):
        assert accountant.select_keep(100_000, 128_000) == KeepPolicy.HALF
