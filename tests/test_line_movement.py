"""
Tests for line movement signals and recommendations

Run with: pytest tests/test_line_movement.py -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from slip_edge.core.config import EngineConfig
from slip_edge.core.errors import LookupFailure
from slip_edge.core.provider import BaseDataProvider, ClosingOddsRecord, OddsQuote
from slip_edge.services.data_provider import InMemoryDataProvider
from slip_edge.services.line_movement import (
    HEDGE,
    HOLD,
    REPLACE,
    STRONG_HOLD,
    LineMovementEngine,
    MovementSignal,
    favorite_pressure,
    line_move_signal,
    movement_anchors,
    movement_favorability,
    movement_recommendation,
    movement_summary,
    normalize_signals,
    spread_tightening,
    velocity,
)

COMMENCE = datetime(2025, 1, 15, 19, 0, tzinfo=timezone.utc)
ML_BOUNDS = EngineConfig.default().movement.moneyline


def _quote(selection, prob, minutes_before, book="pinnacle", market="moneyline", point=None, game_key="g1"):
    return OddsQuote(
        game_key=game_key,
        sportsbook=book,
        market_type=market,
        selection=selection,
        price=1.0 / prob,
        price_format="decimal",
        decimal_odds=1.0 / prob,
        observed_at=COMMENCE - timedelta(minutes=minutes_before),
        point=point,
    )


def _closing(selection, prob):
    return ClosingOddsRecord(
        game_key="g1", market="moneyline", sportsbook="pinnacle", outcome=selection,
        closing_price=1.0 / prob, closing_decimal=1.0 / prob,
        closing_observed_at=COMMENCE - timedelta(minutes=1),
    )


def _signal(**overrides):
    values = dict(
        game_key="g1", market="moneyline", sharp_book="pinnacle", outcome="Fav",
        drift_open=0.0, drift_60=0.0, velocity_120=0.0, favorite_pressure=0.0,
        lm_signal=0.0, vel_signal=0.0, fp_signal=0.0,
    )
    values.update(overrides)
    return MovementSignal(**values)


# ---------------------------------------------------------------------------
# Pure signal math
# ---------------------------------------------------------------------------

class TestFavoritePressure:

    def test_favorite_shortening_while_dog_drifts(self):
        fp = favorite_pressure({"Fav": (0.60, 0.68), "Dog": (0.40, 0.36)})
        assert fp == pytest.approx(0.12)

    def test_favorite_chosen_by_closing_probability(self):
        fp = favorite_pressure({"A": (0.55, 0.45), "B": (0.45, 0.55)})
        # B closes as favourite: (+0.10) - (-0.10)
        assert fp == pytest.approx(0.20)

    def test_single_side_is_zero(self):
        assert favorite_pressure({"Fav": (0.60, 0.68)}) == 0.0

    def test_three_way_market_is_zero(self):
        sides = {"Home": (0.45, 0.50), "Draw": (0.28, 0.26), "Away": (0.27, 0.24)}
        assert favorite_pressure(sides) == 0.0


class TestNormalize:

    def test_signals_scaled_and_clipped(self):
        lm, vel, fp = normalize_signals(-0.05, 0.10, 0.04, ML_BOUNDS)
        assert lm == pytest.approx(0.5)
        assert vel == 1.0
        assert fp == pytest.approx(0.5)

    def test_line_move_signal(self):
        assert line_move_signal(0.4, 0.6) == pytest.approx(0.5)

    def test_favorability_toward_selection(self):
        assert movement_favorability(_signal(drift_open=0.05, lm_signal=0.5, velocity_120=0.02, vel_signal=0.4)) == pytest.approx(0.45)

    def test_favorability_away_from_selection(self):
        assert movement_favorability(_signal(drift_open=-0.05, lm_signal=0.5, velocity_120=-0.02, vel_signal=0.4)) == pytest.approx(-0.45)

    def test_favorability_mixed_and_missing(self):
        assert movement_favorability(_signal(drift_open=0.05, lm_signal=0.5, velocity_120=-0.02, vel_signal=0.5)) == pytest.approx(0.0)
        assert movement_favorability(None) == 0.0


class TestAnchors:

    def _series(self):
        return [
            _quote("Fav", 0.50, 180),
            _quote("Fav", 0.52, 90),
            _quote("Fav", 0.55, 30),
            _quote("Fav", 0.60, -5),
        ]

    def test_with_commence_time(self):
        anchors = movement_anchors(self._series(), commence_time=COMMENCE)
        assert anchors.open == pytest.approx(2.0)
        assert anchors.t60 == pytest.approx(1 / 0.52)
        assert anchors.close == pytest.approx(1 / 0.55)

    def test_closing_record_overrides_close(self):
        anchors = movement_anchors(self._series(), commence_time=COMMENCE, closing_decimal=1.75)
        assert anchors.close == 1.75

    def test_without_commence_time(self):
        anchors = movement_anchors(self._series())
        assert anchors.t60 == anchors.open
        assert anchors.close == pytest.approx(1 / 0.60)

    def test_t60_falls_back_to_open(self):
        series = [_quote("Fav", 0.50, 45), _quote("Fav", 0.55, 10)]
        anchors = movement_anchors(series, commence_time=COMMENCE)
        assert anchors.t60 == anchors.open

    def test_empty_series(self):
        assert movement_anchors([]) is None


class TestVelocity:

    def test_linear_slope_per_hour(self):
        series = [_quote("Fav", 0.50, 90), _quote("Fav", 0.51, 60), _quote("Fav", 0.52, 30)]
        assert velocity(series, COMMENCE, 120) == pytest.approx(0.02)

    def test_quotes_outside_window_ignored(self):
        series = [_quote("Fav", 0.30, 300), _quote("Fav", 0.50, 90), _quote("Fav", 0.51, 30)]
        assert velocity(series, COMMENCE, 120) == pytest.approx(0.01)

    def test_needs_two_points(self):
        assert velocity([_quote("Fav", 0.50, 30)], COMMENCE) == 0.0

    def test_identical_timestamps(self):
        series = [_quote("Fav", 0.50, 30), _quote("Fav", 0.55, 30)]
        assert velocity(series, COMMENCE) == 0.0


class TestRecommendation:

    def test_no_signal_holds(self):
        assert movement_recommendation(None, 0.05) == HOLD

    def test_replace(self):
        signal = _signal(fp_signal=0.8, drift_open=-0.03)
        assert movement_recommendation(signal, 0.005) == REPLACE

    def test_replace_takes_precedence_over_hedge(self):
        signal = _signal(fp_signal=0.8, drift_open=-0.03, drift_60=-0.03)
        assert movement_recommendation(signal, -0.01) == REPLACE

    def test_hedge(self):
        signal = _signal(drift_60=-0.03)
        assert movement_recommendation(signal, -0.01) == HEDGE

    def test_strong_hold(self):
        signal = _signal(lm_signal=0.7, drift_open=0.07)
        assert movement_recommendation(signal, 0.03) == STRONG_HOLD

    def test_default_hold(self):
        signal = _signal(lm_signal=0.7)
        assert movement_recommendation(signal, 0.01) == HOLD


class TestSpreadTightening:

    def test_spread_shrinks(self):
        series = [
            _quote("Home", 0.5, 300, market="spread", point=-7.5),
            _quote("Home", 0.5, 100, market="spread", point=-6.5),
            _quote("Home", 0.5, 10, market="spread", point=-6.0),
        ]
        assert spread_tightening(series) == pytest.approx(1.5)

    def test_needs_two_points(self):
        assert spread_tightening([_quote("Home", 0.5, 10, market="spread", point=-6.0)]) == 0.0


class TestSummary:

    def test_no_data(self):
        assert movement_summary(None) == "No movement data"

    def test_stable(self):
        assert movement_summary(_signal()) == "Stable line"

    def test_toward_with_pressure(self):
        text = movement_summary(_signal(drift_open=0.05, velocity_120=0.02, fp_signal=0.9))
        assert text == "Line moved toward selection, accelerating toward, high favorite pressure"

    def test_away(self):
        assert movement_summary(_signal(drift_open=-0.03)).startswith("Line moved away")


# ---------------------------------------------------------------------------
# Provider-backed engine
# ---------------------------------------------------------------------------

def _moneyline_provider():
    quotes = [
        _quote("Fav", 0.60, 24 * 60),
        _quote("Fav", 0.64, 90),
        _quote("Fav", 0.66, 30),
        _quote("Dog", 0.40, 24 * 60),
        _quote("Dog", 0.37, 30),
        _quote("Fav", 0.20, 30, book="draftkings"),
    ]
    return InMemoryDataProvider(
        quotes=quotes,
        closing=[_closing("Fav", 0.68), _closing("Dog", 0.36)],
        commence_times={"g1": COMMENCE},
    )


class TestLineMovementEngine:

    def test_favorite_signals(self):
        signal = LineMovementEngine(_moneyline_provider()).compute_signals("g1", "h2h", "Fav")

        assert signal.market == "moneyline"
        assert signal.drift_open == pytest.approx(0.08)
        assert signal.drift_60 == pytest.approx(0.04)
        assert signal.velocity_120 == pytest.approx(0.02)
        assert signal.favorite_pressure == pytest.approx(0.12)
        assert signal.lm_signal == pytest.approx(0.8)
        assert signal.vel_signal == pytest.approx(0.4)
        assert signal.fp_signal == 1.0
        assert signal.line_move_signal == pytest.approx(0.6)
        assert movement_recommendation(signal, 0.03) == STRONG_HOLD

    def test_underdog_replace(self):
        signal = LineMovementEngine(_moneyline_provider()).compute_signals("g1", "moneyline", "Dog")

        assert signal.drift_open == pytest.approx(-0.04)
        assert movement_recommendation(signal, 0.005) == REPLACE

    def test_no_history(self):
        engine = LineMovementEngine(_moneyline_provider())
        assert engine.compute_signals("g1", "moneyline", "Nobody") is None
        assert engine.compute_signals("g2", "moneyline", "Fav") is None

    def test_non_moneyline_has_no_favorite_pressure(self):
        provider = InMemoryDataProvider(
            quotes=[
                _quote("Over", 0.50, 180, market="total"),
                _quote("Over", 0.55, 30, market="total"),
                _quote("Under", 0.50, 180, market="total"),
                _quote("Under", 0.45, 30, market="total"),
            ],
            commence_times={"g1": COMMENCE},
        )
        signal = LineMovementEngine(provider).compute_signals("g1", "totals", "Over")

        assert signal.favorite_pressure == 0.0
        assert signal.drift_open == pytest.approx(0.05)
        # total bounds: drift 0.12
        assert signal.lm_signal == pytest.approx(0.05 / 0.12)

    def test_provider_failure_propagates(self):
        provider = MagicMock(spec=BaseDataProvider)
        provider.query_quotes.side_effect = LookupFailure("timeout")
        with pytest.raises(LookupFailure):
            LineMovementEngine(provider).compute_signals("g1", "moneyline", "Fav")

    def test_spread_signal_carries_tightening(self):
        provider = InMemoryDataProvider(quotes=[
            _quote("Home", 0.5, 300, market="spread", point=-7.5),
            _quote("Home", 0.5, 10, market="spread", point=-6.0),
        ])
        signal = LineMovementEngine(provider).compute_signals("g1", "spreads", "Home")

        assert signal.market == "spread"
        assert signal.spread_tightening == pytest.approx(1.5)
        assert signal.favorite_pressure == 0.0

    def test_moneyline_signal_has_no_tightening(self):
        signal = LineMovementEngine(_moneyline_provider()).compute_signals("g1", "moneyline", "Fav")
        assert signal.spread_tightening == 0.0

    def test_favorability_signed_by_direction(self):
        engine = LineMovementEngine(_moneyline_provider())
        fav = engine.compute_signals("g1", "moneyline", "Fav")
        dog = engine.compute_signals("g1", "moneyline", "Dog")

        assert fav.favorability == pytest.approx(0.6)
        assert dog.favorability < 0
        # one dog quote inside the velocity window, so only the drift counts
        assert dog.velocity_120 == 0.0
        assert dog.favorability == pytest.approx(-0.5 * dog.lm_signal)
