"""Tests for owner-side score statistics."""

import pytest

from roadtrack.ledger.analytics import average_from_total, summarize_scores


def test_empty_history():
    summary = summarize_scores([])
    assert summary.count == 0
    assert summary.average is None
    assert summary.trend is None


def test_single_score_has_no_trend():
    summary = summarize_scores([72])
    assert summary.count == 1
    assert summary.average == 72.0
    assert summary.highest == summary.lowest == 72
    assert summary.trend is None


def test_summary_over_history():
    summary = summarize_scores([70, 95, 80, 90])
    assert summary.count == 4
    assert summary.average == pytest.approx(83.75)
    assert summary.highest == 95
    assert summary.lowest == 70
    assert summary.trend == 10


def test_negative_trend():
    assert summarize_scores([70, 60]).trend == -10


def test_average_from_total():
    assert average_from_total(240, 3) == 80.0
    assert average_from_total(0, 0) is None
