"""
Tests for the probability blender

Run with: pytest tests/test_blender.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from slip_edge.core.errors import InvalidOddsError
from slip_edge.core.odds_math import american_to_decimal
from slip_edge.core.provider import OddsQuote
from slip_edge.services.blender import (
    ProbabilityBlender,
    consensus_probability,
    entry_book_opposite_decimal,
    sharp_probability,
)
from slip_edge.services.historical import HistoricalStat

T0 = datetime(2025, 1, 15, 16, 0, tzinfo=timezone.utc)
CONSENSUS = {"draftkings", "fanduel", "betmgm", "caesars"}


def _quote(book, selection, decimal_odds, minutes=0):
    return OddsQuote(
        game_key="g1",
        sportsbook=book,
        market_type="moneyline",
        selection=selection,
        price=decimal_odds,
        price_format="decimal",
        decimal_odds=decimal_odds,
        observed_at=T0 + timedelta(minutes=minutes),
    )


def _stat(hit_rate, tier):
    return HistoricalStat(
        sport="nba",
        market_type="moneyline",
        selection_key="Home",
        lookback_days=90,
        hit_rate=hit_rate,
        wins=0,
        losses=0,
        sample_size=0,
        confidence_tier=tier,
        computed_at=T0,
    )


class TestSharpProbability:

    def test_no_vig_two_way(self):
        quotes = [_quote("pinnacle", "Home", 1.80), _quote("pinnacle", "Away", 2.10)]
        assert sharp_probability(quotes, "Home", "pinnacle") == pytest.approx(0.5385, abs=1e-4)

    def test_latest_quote_per_side_wins(self):
        quotes = [
            _quote("pinnacle", "Home", 2.50, minutes=0),
            _quote("pinnacle", "Away", 1.60, minutes=0),
            _quote("pinnacle", "Home", 1.80, minutes=30),
            _quote("pinnacle", "Away", 2.10, minutes=30),
        ]
        assert sharp_probability(quotes, "Home", "Pinnacle") == pytest.approx(0.5385, abs=1e-4)

    def test_missing_book_or_selection(self):
        quotes = [_quote("draftkings", "Home", 1.80), _quote("pinnacle", "Away", 2.10)]
        assert sharp_probability(quotes, "Home", "circa") is None
        assert sharp_probability(quotes, "Home", "pinnacle") is None

    def test_single_side_haircut(self):
        quotes = [_quote("pinnacle", "Home", 2.0)]
        assert sharp_probability(quotes, "Home", "pinnacle") == pytest.approx(0.485)


class TestEntryBookOpposite:

    def test_latest_opposing_price_at_entry_book(self):
        quotes = [
            _quote("fanduel", "Home", 1.91), _quote("fanduel", "Away", 1.80),
            _quote("fanduel", "Away", 1.77, minutes=30),
            _quote("draftkings", "Away", 2.20),
        ]
        assert entry_book_opposite_decimal(quotes, "Home", "FanDuel") == 1.77

    def test_entry_book_must_quote_both_sides(self):
        quotes = [_quote("fanduel", "Away", 1.80), _quote("draftkings", "Home", 1.91)]
        assert entry_book_opposite_decimal(quotes, "Home", "fanduel") is None
        assert entry_book_opposite_decimal(quotes, "Home", "") is None

    def test_three_way_market_has_no_single_opposite(self):
        quotes = [
            _quote("fanduel", "Home", 2.40), _quote("fanduel", "Draw", 3.30), _quote("fanduel", "Away", 3.00),
        ]
        assert entry_book_opposite_decimal(quotes, "Home", "fanduel") is None

class TestConsensusProbability:

    def test_mean_of_book_no_vig(self):
        quotes = [
            _quote("draftkings", "Home", 1.80), _quote("draftkings", "Away", 2.00),
            _quote("fanduel", "Home", 1.85), _quote("fanduel", "Away", 1.95),
            _quote("pinnacle", "Home", 1.50), _quote("pinnacle", "Away", 2.80),
        ]
        estimate = consensus_probability(quotes, "Home", CONSENSUS)

        assert estimate.book_count == 2
        assert estimate.probability == pytest.approx(0.5197, abs=1e-4)

    def test_below_min_books(self):
        quotes = [_quote("draftkings", "Home", 1.80), _quote("draftkings", "Away", 2.00)]
        assert consensus_probability(quotes, "Home", CONSENSUS, min_books=2) is None
        assert consensus_probability(quotes, "Home", CONSENSUS, min_books=1).book_count == 1


class TestBlend:
    """Weighted blend, fallback and confidence scoring."""

    def setup_method(self):
        self.blender = ProbabilityBlender()

    def test_no_data_falls_back_to_entry_price(self):
        result = self.blender.blend(american_to_decimal(-110))

        assert result.probabilities.implied == pytest.approx(0.5238, abs=1e-4)
        assert result.probabilities.true == pytest.approx(0.5238, abs=1e-4)
        assert result.probabilities.sharp is None
        assert result.confidence.sharp_available is False
        assert result.confidence.fallback_used is True
        assert result.confidence.score == 10

    def test_fallback_devigs_against_opposite(self):
        d = american_to_decimal(-110)
        result = self.blender.blend(d, opposite_decimal=d)
        assert result.probabilities.true == pytest.approx(0.5)

    def test_sharp_only(self):
        result = self.blender.blend(2.0, sharp=0.55)
        assert result.probabilities.true == pytest.approx(0.55)
        assert result.confidence.score == 50
        assert result.confidence.fallback_used is False

    def test_sharp_and_full_consensus(self):
        result = self.blender.blend(2.0, sharp=0.55, consensus=0.50, consensus_books=4)
        # (0.60·0.55 + 0.25·0.50) / 0.85
        assert result.probabilities.true == pytest.approx(0.5353, abs=1e-4)
        assert result.confidence.score == 80

    def test_consensus_weight_scales_with_books(self):
        result = self.blender.blend(2.0, sharp=0.55, consensus=0.50, consensus_books=2)
        # consensus weight 0.25 · 2/4
        assert result.probabilities.true == pytest.approx(0.5414, abs=1e-4)

    def test_consensus_only(self):
        result = self.blender.blend(2.0, consensus=0.48, consensus_books=3)
        assert result.probabilities.true == pytest.approx(0.48)
        assert result.confidence.score == 30
        assert result.confidence.sharp_available is False

    def test_high_tier_prior_full_weight(self):
        result = self.blender.blend(
            2.0, sharp=0.55, consensus=0.50, consensus_books=4, prior=_stat(0.60, "high"),
        )
        assert result.probabilities.true == pytest.approx(0.545)
        assert result.probabilities.prior == 0.60
        assert result.confidence.score == 100

    def test_perfect_record_prior_clamped(self):
        result = self.blender.blend(
            2.0, sharp=0.55, consensus=0.50, consensus_books=4, prior=_stat(1.0, "high"),
        )
        assert result.probabilities.prior == 0.99
        assert result.probabilities.true == pytest.approx(0.6035)

    def test_winless_prior_clamped(self):
        result = self.blender.blend(
            2.0, sharp=0.55, consensus=0.50, consensus_books=4, prior=_stat(0.0, "high"),
        )
        assert result.probabilities.prior == 0.01
        assert result.probabilities.true == pytest.approx(0.4565)

    def test_very_low_prior_reported_but_not_weighted(self):
        result = self.blender.blend(2.0, sharp=0.55, prior=_stat(0.90, "very_low"))
        assert result.probabilities.true == pytest.approx(0.55)
        assert result.probabilities.prior == 0.90
        assert result.confidence.prior_available is True
        assert result.confidence.score == 50

    def test_score_monotonic_in_available_estimators(self):
        full = self.blender.blend(2.0, sharp=0.55, consensus=0.5, consensus_books=4, prior=_stat(0.6, "high"))
        two = self.blender.blend(2.0, sharp=0.55, consensus=0.5, consensus_books=4)
        one = self.blender.blend(2.0, sharp=0.55)
        none = self.blender.blend(2.0)

        assert full.confidence.score > two.confidence.score > one.confidence.score > none.confidence.score

    def test_clamped_inside_unit_interval(self):
        result = self.blender.blend(1.02, sharp=0.999)
        assert result.probabilities.true == 0.99

    def test_invalid_entry_raises(self):
        with pytest.raises(InvalidOddsError):
            self.blender.blend(1.0)
