"""Tests for brewnet.utils.pro_expiry - tolerant expiry timestamp parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from brewnet.utils.pro_expiry import can_like, is_pro_active, parse_pro_end


EXPECTED = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestParseProEnd:

    @pytest.mark.parametrize("value", [
        "2024-03-01T12:00:00.123Z",
        "2024-03-01T12:00:00+0000",
        "2024-03-01 12:00:00+00:00",
        "2024-03-01 12:00:00",
    ])
    def test_known_spellings_resolve_to_the_same_instant(self, value):
        parsed = parse_pro_end(value)
        assert parsed is not None
        assert parsed.replace(microsecond=0) == EXPECTED

    def test_garbage_returns_none(self):
        assert parse_pro_end("not-a-date") is None

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values_return_none(self, value):
        assert parse_pro_end(value) is None

    def test_surrounding_whitespace_is_ignored(self):
        assert parse_pro_end("  2024-03-01T12:00:00Z \n") == EXPECTED

    def test_offset_is_converted_to_utc(self):
        parsed = parse_pro_end("2024-03-01T14:00:00+02:00")
        assert parsed == EXPECTED
        assert parsed.tzinfo == timezone.utc

    def test_hours_only_offset(self):
        assert parse_pro_end("2024-03-01 13:00:00+01") == EXPECTED

    def test_more_than_six_fraction_digits(self):
        parsed = parse_pro_end("2024-03-01T12:00:00.123456789Z")
        assert parsed is not None
        assert parsed.replace(microsecond=0) == EXPECTED


class TestIsProActive:

    NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_false_when_expiry_unparseable(self):
        assert is_pro_active(True, "not-a-date", now=self.NOW) is False

    def test_false_when_expiry_in_past(self):
        past = (self.NOW - timedelta(days=1)).isoformat()
        assert is_pro_active(True, past, now=self.NOW) is False

    def test_true_when_expiry_in_future(self):
        future = (self.NOW + timedelta(days=1)).isoformat()
        assert is_pro_active(True, future, now=self.NOW) is True

    def test_false_when_flag_not_set(self):
        future = (self.NOW + timedelta(days=1)).isoformat()
        assert is_pro_active(False, future, now=self.NOW) is False

    def test_expiry_exactly_now_is_not_active(self):
        assert is_pro_active(True, self.NOW.isoformat(), now=self.NOW) is False


class TestCanLike:

    NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_free_user_with_likes_left(self):
        assert can_like(False, None, 3, now=self.NOW) is True

    def test_free_user_out_of_likes(self):
        assert can_like(False, None, 0, now=self.NOW) is False

    def test_active_pro_ignores_counter(self):
        future = (self.NOW + timedelta(days=3)).isoformat()
        assert can_like(True, future, 0, now=self.NOW) is True
