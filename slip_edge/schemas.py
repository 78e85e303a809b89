"""
Pydantic request/response schemas for the Slip Edge API.

Requests are validated here (422 on malformed bodies); odds that parse but
are structurally invalid are rejected later by the engine with a 400.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from slip_edge.services.ev import Leg

PriceFormat = Literal["american", "decimal", "fractional", "auto"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LegIn(BaseModel):
    """One leg of a submitted slip."""

    game_key: str = Field(..., min_length=1, description="Stable game identifier")
    sport: Optional[str] = Field(None, description='e.g. "nba", "ncaab"')
    market_type: str = Field("moneyline", description="moneyline | spread | total (feed aliases accepted)")
    selection: str = Field(..., min_length=1, max_length=120)
    price: Union[float, str] = Field(..., description='Entry price, e.g. -110, 2.10 or "5/4"')
    price_format: PriceFormat = "american"
    sportsbook: str = Field("", max_length=60)
    opposite_price: Optional[Union[float, str]] = Field(
        None, description="Opposing side at the entry book, used to de-vig when no sharp line exists"
    )
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    point: Optional[float] = None

    @field_validator("sportsbook")
    @classmethod
    def normalise_book(cls, v: str) -> str:
        return v.strip().lower()

    def to_leg(self) -> Leg:
        """Raises InvalidOddsError for an unparseable or impossible price."""
        return Leg(
            game_key=self.game_key,
            sport=self.sport,
            market_type=self.market_type,
            selection=self.selection,
            price=self.price,
            price_format=self.price_format,
            sportsbook=self.sportsbook,
            opposite_price=self.opposite_price,
            home_team=self.home_team,
            away_team=self.away_team,
            point=self.point,
        )


class AnalyzeSlipRequest(BaseModel):
    legs: List[LegIn] = Field(default_factory=list)
    track: bool = Field(False, description="Record legs for CLV follow-up when parlay EV > 0")

    model_config = {
        "json_schema_extra": {
            "example": {
                "legs": [
                    {
                        "game_key": "bos-nyk-2025-01-15",
                        "sport": "nba",
                        "market_type": "moneyline",
                        "selection": "Boston Celtics",
                        "price": -150,
                        "sportsbook": "draftkings",
                    },
                    {
                        "game_key": "lal-gsw-2025-01-15",
                        "sport": "nba",
                        "market_type": "total",
                        "selection": "Over",
                        "price": 1.91,
                        "price_format": "decimal",
                        "sportsbook": "fanduel",
                    },
                ],
                "track": False,
            }
        }
    }


class CLVLegIn(BaseModel):
    game_key: str = Field(..., min_length=1)
    market: str = "moneyline"
    sportsbook: str = ""
    outcome: str = Field(..., min_length=1)
    entry_odds: Union[float, str]
    price_format: PriceFormat = "decimal"

    def to_leg(self) -> Leg:
        return Leg(
            game_key=self.game_key,
            sport=None,
            market_type=self.market,
            selection=self.outcome,
            price=self.entry_odds,
            price_format=self.price_format,
            sportsbook=self.sportsbook.strip().lower(),
        )


class ParlayCLVRequest(BaseModel):
    legs: List[CLVLegIn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class LegCLVResponse(BaseModel):
    game_key: str
    market: str
    selection: str
    sportsbook: str
    entry_decimal: float
    closing_status: str
    closing_decimal: Optional[float] = None
    closing_observed_at: Optional[datetime] = None
    clv_percent: Optional[float] = None
    beat_market: bool
    grade: str


class CLVAggregateResponse(BaseModel):
    clv_mean: Optional[float] = None
    clv_worst: Optional[float] = None
    beat_market_count: int
    lagged_market_count: int
    legs_with_data: int


class ParlayCLVResponse(BaseModel):
    legs_clv: List[LegCLVResponse]
    aggregate: CLVAggregateResponse


class MovementSignalResponse(BaseModel):
    game_key: str
    market: str
    sharp_book: str
    outcome: str
    drift_open: float
    drift_60: float
    velocity_120: float
    favorite_pressure: float
    lm_signal: float
    vel_signal: float
    fp_signal: float
    spread_tightening: float = 0.0
    line_move_signal: float
    favorability: float
    recommendation: str
    summary: str


class CacheClearResponse(BaseModel):
    cleared_entries: int
    message: str


class AnalyzeSlipResponse(BaseModel):
    success: bool = True
    analysis: Dict[str, Any]


class GenerateParlaysRequest(BaseModel):
    """Candidate pool for cross-game parlay generation."""

    legs: List[LegIn] = Field(default_factory=list)
    max_legs: int = Field(3, ge=2, le=4)
    max_parlays: int = Field(10, ge=1, le=50)


class ParlayTicketResponse(BaseModel):
    legs: List[str]
    num_legs: int
    parlay_odds: float
    parlay_american_odds: int
    joint_prob: float
    expected_value: float
    kelly_fractional: float
    recommended_units: float
    leg_summary: str
    ticket_text: str


class GenerateParlaysResponse(BaseModel):
    candidates: int
    parlays: List[ParlayTicketResponse]
