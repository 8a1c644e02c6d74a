"""Tests for duration.py."""

from datetime import datetime, timedelta

import pytest

from duration import (
    TimedMessage,
    estimate_daily_durations,
    interaction_minutes,
    round_half_up,
    session_minutes,
)

BASE = datetime(2024, 1, 15, 10, 0)


def _msg(minutes: float, text: str = "hi", is_user: bool = True) -> TimedMessage:
    return TimedMessage(BASE + timedelta(minutes=minutes), text, is_user)


class TestInteractionMinutes:
    def test_empty_text_costs_half_minute(self):
        assert interaction_minutes("", True) == 0.5
        assert interaction_minutes("", False) == 0.5

    def test_user_typing_speed(self):
        assert interaction_minutes("a" * 400, True) == pytest.approx(2.0)
        assert interaction_minutes("字" * 120, True) == pytest.approx(2.0)

    def test_user_floor(self):
        assert interaction_minutes("ok", True) == 0.25

    def test_reading_speed(self):
        assert interaction_minutes("a" * 1600, False) == pytest.approx(2.0)
        assert interaction_minutes("字" * 800, False) == pytest.approx(2.0)

    def test_reading_floor(self):
        assert interaction_minutes("ok", False) == 0.1


class TestSessionMinutes:
    def test_no_messages(self):
        assert session_minutes([]) == 0

    def test_single_short_session_floored_at_one_minute(self):
        assert session_minutes([_msg(0), _msg(2)]) == 1

    def test_gap_over_thirty_minutes_splits_sessions(self):
        # three messages 2 min apart, a 40 min gap, then one more
        messages = [_msg(0), _msg(2), _msg(4), _msg(44)]
        # 0.75 min -> floored to 1, 0.25 min -> floored to 1
        assert session_minutes(messages) == 2

    def test_gap_of_exactly_thirty_minutes_keeps_session(self):
        assert session_minutes([_msg(0), _msg(30)]) == 1

    def test_unsorted_input_is_sorted(self):
        messages = [_msg(44), _msg(0), _msg(4), _msg(2)]
        assert session_minutes(messages) == 2

    def test_long_session_sums_interaction_time(self):
        messages = [_msg(i, "a" * 400, True) for i in range(3)]
        assert session_minutes(messages) == 6

    def test_half_rounds_up(self):
        # 2.5 minutes of typing in one session
        assert session_minutes([_msg(0, "a" * 500, True)]) == 3


class TestEstimateDailyDurations:
    def test_per_day_totals(self):
        by_day = {
            "2024-01-16": [_msg(24 * 60, "a" * 400)],
            "2024-01-15": [_msg(0), _msg(50)],
        }
        assert estimate_daily_durations(by_day) == {"2024-01-15": 2, "2024-01-16": 2}

    def test_empty_days_dropped(self):
        assert estimate_daily_durations({"2024-01-15": []}) == {}


class TestRoundHalfUp:
    @pytest.mark.parametrize("value, expected", [(0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2), (0, 0)])
    def test_values(self, value, expected):
        assert round_half_up(value) == expected
