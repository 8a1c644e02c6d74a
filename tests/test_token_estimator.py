"""Tests for token_estimator.py."""

import math

import pytest

from token_estimator import count_cjk, estimate_tokens


class TestCountCjk:
    def test_mixed_text(self):
        assert count_cjk("hi你好") == (2, 2)

    def test_kana_and_hangul(self):
        assert count_cjk("ひらカタ한국") == (6, 0)

    def test_empty_and_none(self):
        assert count_cjk("") == (0, 0)
        assert count_cjk(None) == (0, 0)

    def test_fullwidth_punctuation_is_not_cjk(self):
        assert count_cjk("。，") == (0, 2)


class TestEstimateTokens:
    @pytest.mark.parametrize("n", [1, 2, 3, 4, 10, 31, 300])
    def test_pure_cjk(self, n):
        assert estimate_tokens("字" * n) == math.ceil(n / 1.5)

    @pytest.mark.parametrize("n", [1, 3, 4, 7, 8, 100, 351])
    def test_pure_latin(self, n):
        assert estimate_tokens("a" * n) == math.ceil(n / 3.5)

    def test_partials_rounded_separately(self):
        # 1 CJK -> 1 token, 1 latin -> 1 token; combined rounding would give 1
        assert estimate_tokens("字a") == 2

    def test_empty(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0
