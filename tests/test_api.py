"""
API tests (FastAPI TestClient, in-memory provider and SQLite)

Run with: pytest tests/test_api.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slip_edge.core.provider import ClosingOddsRecord, OddsQuote
import slip_edge.main as main_module
from slip_edge.main import app, get_analyzer
from slip_edge.models import get_db
from slip_edge.services.analysis import SlipAnalyzer
from slip_edge.services.data_provider import InMemoryDataProvider

COMMENCE = datetime(2025, 1, 15, 19, 0, tzinfo=timezone.utc)


def _quote(selection, decimal_odds, minutes_before, book="pinnacle"):
    return OddsQuote(
        game_key="g1",
        sportsbook=book,
        market_type="moneyline",
        selection=selection,
        price=decimal_odds,
        price_format="decimal",
        decimal_odds=decimal_odds,
        observed_at=COMMENCE - timedelta(minutes=minutes_before),
    )


def _provider():
    return InMemoryDataProvider(
        quotes=[
            _quote("Home", 1.80, 600),
            _quote("Away", 2.10, 600),
            _quote("Home", 1.70, 30),
            _quote("Away", 2.25, 30),
            _quote("Home", 2.00, 600, book="draftkings"),
        ],
        closing=[
            ClosingOddsRecord("g1", "moneyline", "draftkings", "Home", 1.95, 1.95, COMMENCE),
        ],
        commence_times={"g1": COMMENCE},
    )


@pytest.fixture
def client():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    analyzer = SlipAnalyzer(_provider())
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_analyzer] = lambda: analyzer

    # No context manager: the lifespan (DB init and scheduler) is not started.
    yield TestClient(app)

    app.dependency_overrides.clear()


SLIP = {
    "legs": [
        {"game_key": "g1", "sport": "nba", "selection": "Home", "price": 2.0,
         "price_format": "decimal", "sportsbook": "DraftKings"},
        {"game_key": "g2", "sport": "nba", "market_type": "totals", "selection": "Over",
         "price": -110},
    ],
}


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Slip Edge Analyzer"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["model_version"] == "v2.1"


class TestAnalyzeSlipEndpoint:

    def test_success(self, client):
        response = client.post("/api/analyze-slip", json=SLIP)
        assert response.status_code == 200

        analysis = response.json()["analysis"]
        assert response.json()["success"] is True
        assert analysis["summary"]["verdict"]
        assert len(analysis["legs_detail"]) == 2

        home = analysis["legs_detail"][0]
        assert home["position"] == 1
        assert home["sportsbook"] == "draftkings"
        assert home["american_odds"] == 100
        assert home["clv"]["closing_status"] == "available"
        assert home["clv"]["grade"] == "negative"
        assert home["movement"]["outcome"] == "Home"

        over = analysis["legs_detail"][1]
        assert "No sharp line available" in over["issues"]
        assert over["movement"] is None

        assert analysis["hedge_options"] is not None
        [arb] = analysis["recommendations"]["arbitrage"]
        assert (arb["selection_book"], arb["opposite_book"]) == ("draftkings", "pinnacle")
        assert arb["profit_percent"] == pytest.approx((1 - (1 / 2.0 + 1 / 2.25)) * 100)
        assert "all_pass" in analysis["quality_gates"]

    def test_empty_slip_rejected(self, client):
        response = client.post("/api/analyze-slip", json={"legs": []})
        assert response.status_code == 400

    @pytest.mark.parametrize("price, fmt", [("abc", "american"), (-50, "american"), (1.0, "decimal")])
    def test_invalid_price_rejected(self, client, price, fmt):
        leg = {"game_key": "g1", "selection": "Home", "price": price, "price_format": fmt}
        response = client.post("/api/analyze-slip", json={"legs": [leg]})
        assert response.status_code == 400

    def test_malformed_body(self, client):
        response = client.post("/api/analyze-slip", json={"legs": [{"game_key": "g1", "price": 2.0}]})
        assert response.status_code == 422


class TestMovementEndpoint:

    def test_signals(self, client):
        response = client.get("/api/line-movement/signals/g1", params={"outcome": "Home", "ev": 0.05})
        assert response.status_code == 200

        body = response.json()
        assert body["sharp_book"] == "pinnacle"
        assert body["drift_open"] > 0
        assert body["favorite_pressure"] > 0
        assert body["recommendation"] in {"hold", "strong_hold"}
        assert body["summary"].startswith("Line moved toward selection")
        assert body["favorability"] > 0
        assert body["spread_tightening"] == 0.0

    def test_unknown_outcome(self, client):
        response = client.get("/api/line-movement/signals/g1", params={"outcome": "Nobody"})
        assert response.status_code == 404

    def test_outcome_required(self, client):
        assert client.get("/api/line-movement/signals/g1").status_code == 422


class TestCLVEndpoint:

    def test_parlay_clv(self, client):
        payload = {"legs": [
            {"game_key": "g1", "sportsbook": "draftkings", "outcome": "Home", "entry_odds": 1.80},
            {"game_key": "g1", "sportsbook": "fanduel", "outcome": "Away", "entry_odds": 2.10},
        ]}
        response = client.post("/api/clv/parlay", json=payload)
        assert response.status_code == 200

        body = response.json()
        first, second = body["legs_clv"]
        assert first["closing_status"] == "available"
        assert first["clv_percent"] == pytest.approx((1.95 - 1.80) / 1.80)
        assert first["beat_market"] is True
        assert second["closing_status"] == "unknown"
        assert body["aggregate"]["legs_with_data"] == 1
        assert body["aggregate"]["beat_market_count"] == 1

    def test_empty_rejected(self, client):
        assert client.post("/api/clv/parlay", json={"legs": []}).status_code == 400

    def test_invalid_entry_odds(self, client):
        payload = {"legs": [{"game_key": "g1", "outcome": "Home", "entry_odds": 0.9}]}
        assert client.post("/api/clv/parlay", json=payload).status_code == 400


class TestAdmin:

    def test_clear_cache(self, client):
        response = client.post("/admin/cache/clear")
        assert response.status_code == 200
        assert response.json()["message"] == "Historical prior cache cleared"


class TestGenerateParlaysEndpoint:

    def _two_game_analyzer(self):
        provider = _provider()
        provider.quotes += [
            OddsQuote("g2", "pinnacle", "total", "Over", 1.95, "decimal", 1.95, COMMENCE - timedelta(minutes=60)),
            OddsQuote("g2", "pinnacle", "total", "Under", 1.87, "decimal", 1.87, COMMENCE - timedelta(minutes=60)),
        ]
        return SlipAnalyzer(provider)

    def test_generates_cross_game_ticket(self, client):
        analyzer = self._two_game_analyzer()
        app.dependency_overrides[get_analyzer] = lambda: analyzer
        payload = {
            "legs": [
                {"game_key": "g1", "selection": "Home", "price": 2.0, "price_format": "decimal",
                 "sportsbook": "draftkings"},
                {"game_key": "g2", "market_type": "totals", "selection": "Over", "price": 2.10,
                 "price_format": "decimal"},
            ],
        }
        response = client.post("/api/parlays/generate", json=payload)
        assert response.status_code == 200

        body = response.json()
        assert body["candidates"] == 2
        [ticket] = body["parlays"]
        assert ticket["legs"] == ["Home", "Over"]
        assert ticket["num_legs"] == 2
        assert ticket["recommended_units"] >= 0.05
        assert ticket["ticket_text"].startswith("2-Leg Parlay @")

    def test_no_qualifying_legs(self, client):
        response = client.post("/api/parlays/generate", json=SLIP)
        assert response.status_code == 200
        assert response.json()["parlays"] == []

    def test_empty_pool_rejected(self, client):
        assert client.post("/api/parlays/generate", json={"legs": []}).status_code == 400

    def test_max_legs_bounded(self, client):
        payload = {**SLIP, "max_legs": 6}
        assert client.post("/api/parlays/generate", json=payload).status_code == 422


class TestLifespan:

    def test_analyzer_built_once_at_startup(self, monkeypatch):
        built = []

        def fake_build():
            analyzer = SlipAnalyzer(_provider())
            built.append(analyzer)
            return analyzer

        monkeypatch.setattr(main_module, "init_db", lambda: None)
        monkeypatch.setattr(main_module, "build_analyzer", fake_build)

        with TestClient(app) as lifespan_client:
            params = {"outcome": "Home"}
            assert lifespan_client.get("/api/line-movement/signals/g1", params=params).status_code == 200
            assert lifespan_client.post("/admin/cache/clear").status_code == 200
            assert lifespan_client.get("/api/line-movement/signals/g1", params=params).status_code == 200

            assert len(built) == 1
            assert app.state.analyzer is built[0]
