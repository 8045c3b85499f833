"""
Tests for datetime helpers.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytz
from pickleball_elo.utils.datetime_utils import (
    ensure_utc,
    isoformat_or_none,
    parse_game_time,
    utcnow,
)


def test_utcnow_is_aware():
    assert utcnow().tzinfo is not None


def test_ensure_utc_naive_is_treated_as_utc():
    value = ensure_utc(datetime(2026, 1, 5, 18, 0))
    assert value == pytz.UTC.localize(datetime(2026, 1, 5, 18, 0))


def test_ensure_utc_converts_offsets():
    eastern = datetime(2026, 1, 5, 13, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert ensure_utc(eastern) == pytz.UTC.localize(datetime(2026, 1, 5, 18, 0))


@pytest.mark.parametrize(
    "raw",
    ["2026-01-05T18:00:00Z", "2026-01-05T18:00:00+00:00", "2026-01-05T13:00:00-05:00"],
)
def test_parse_game_time(raw):
    assert parse_game_time(raw) == pytz.UTC.localize(datetime(2026, 1, 5, 18, 0))


def test_parse_game_time_defaults_to_now():
    before = utcnow()
    parsed = parse_game_time(None)
    assert before <= parsed <= utcnow()


@pytest.mark.parametrize("raw", ["yesterday", "05/01/2026", 12345])
def test_parse_game_time_rejects(raw):
    with pytest.raises(ValueError):
        parse_game_time(raw)


def test_isoformat_or_none():
    assert isoformat_or_none(None) is None
    assert isoformat_or_none(datetime(2026, 1, 5, 18, 0)) == "2026-01-05T18:00:00+00:00"
