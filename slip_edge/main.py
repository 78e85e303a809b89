"""
FastAPI application for Slip Edge
REST API for slip analysis, CLV and line-movement signals
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slip_edge.core.cache import TTLCache
from slip_edge.core.config import EngineConfig
from slip_edge.core.errors import DataUnavailable, EmptySlipError, InvalidOddsError
from slip_edge.models import get_db, init_db
from slip_edge.schemas import (
    AnalyzeSlipRequest,
    AnalyzeSlipResponse,
    CacheClearResponse,
    CLVAggregateResponse,
    GenerateParlaysRequest,
    GenerateParlaysResponse,
    LegCLVResponse,
    MovementSignalResponse,
    ParlayCLVRequest,
    ParlayCLVResponse,
    ParlayTicketResponse,
)
from slip_edge.services.analysis import LegAnalysis, SlipAnalysis, SlipAnalyzer
from slip_edge.services.clv import LegCLV, aggregate_clv, calculate_leg_clv
from slip_edge.services.data_provider import SQLDataProvider
from slip_edge.services.historical import HistoricalPriorService
from slip_edge.services.line_movement import movement_recommendation, movement_summary
from slip_edge.services.parlay_engine import format_parlay_ticket

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def build_analyzer() -> SlipAnalyzer:
    """Process-wide analyzer built from the environment."""
    config = EngineConfig.from_env()
    provider = SQLDataProvider()
    cache = TTLCache(config.prior_cache_ttl_seconds)
    analyzer = SlipAnalyzer(
        provider,
        config=config,
        historical=HistoricalPriorService(provider, config=config, cache=cache),
    )
    logger.info("Analyzer initialised: %r", config)
    return analyzer


def get_analyzer(request: Request) -> SlipAnalyzer:
    """The analyzer built at startup."""
    return request.app.state.analyzer


def _purge_cache_job(analyzer: SlipAnalyzer):
    """Drop expired prior-cache entries."""
    dropped = analyzer.historical.purge_expired()
    if dropped:
        logger.info("Prior cache purge: %d expired entries dropped", dropped)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Slip Edge")
    init_db()
    app.state.analyzer = build_analyzer()

    scheduler = BackgroundScheduler()
    purge_minutes = int(os.getenv("CACHE_PURGE_INTERVAL_MIN", "15"))
    scheduler.add_job(
        _purge_cache_job,
        IntervalTrigger(minutes=purge_minutes),
        args=[app.state.analyzer],
        id="purge_prior_cache",
        name="Purge Expired Prior Cache",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: prior cache purge every %dmin", purge_minutes)

    yield

    logger.info("Shutting down Slip Edge")
    scheduler.shutdown()


app = FastAPI(
    title="Slip Edge Analyzer",
    description="Blended-probability EV, Kelly, CLV and line-movement analysis for bet slips",
    version="2.1",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SERIALISATION
# ============================================================================

def _leg_clv_response(clv: LegCLV) -> LegCLVResponse:
    return LegCLVResponse(
        game_key=clv.game_key,
        market=clv.market,
        selection=clv.selection,
        sportsbook=clv.sportsbook,
        entry_decimal=clv.entry_decimal,
        closing_status=clv.closing_status,
        closing_decimal=clv.closing_decimal,
        closing_observed_at=clv.closing_observed_at,
        clv_percent=clv.clv_percent,
        beat_market=clv.beat_market,
        grade=clv.grade(),
    )


def _leg_detail(position: int, la: LegAnalysis) -> Dict[str, Any]:
    leg = la.leg
    movement = None
    if la.movement is not None:
        movement = {
            **asdict(la.movement),
            "line_move_signal": la.movement.line_move_signal,
            "favorability": la.movement.favorability,
            "summary": la.movement_summary,
        }
    return {
        "position": position,
        "game_key": leg.game_key,
        "selection": leg.selection,
        "market_type": leg.market_type,
        "sportsbook": leg.sportsbook,
        "decimal_odds": leg.decimal_odds,
        "american_odds": leg.american_odds,
        "probabilities": asdict(leg.probabilities),
        "metrics": asdict(leg.metrics),
        "confidence": asdict(leg.confidence),
        "issues": la.issues,
        "clv": _leg_clv_response(la.clv).model_dump(mode="json"),
        "movement": movement,
        "movement_recommendation": la.movement_recommendation,
    }


def slip_to_dict(result: SlipAnalysis) -> Dict[str, Any]:
    parlay = result.parlay
    recs = result.recommendations
    return {
        "summary": {
            "odds": asdict(parlay.odds),
            "probability": asdict(parlay.probability),
            "metrics": asdict(parlay.metrics),
            "verdict": parlay.verdict,
            "confidence": parlay.confidence,
        },
        "quality_gates": {**asdict(parlay.quality_gates), "all_pass": parlay.quality_gates.all_pass},
        "correlated_pairs": [asdict(p) for p in parlay.correlated_pairs],
        "clv_analysis": {
            "aggregate": asdict(result.clv),
            "has_clv_data": result.clv.has_data,
        },
        "legs_detail": [_leg_detail(i, la) for i, la in enumerate(result.legs, start=1)],
        "recommendations": {
            "primary_action": recs.primary_action,
            "weak_legs": recs.weak_legs,
            "line_shopping": [
                {**asdict(o), "ev_gain_percent": o.ev_gain_percent} for o in recs.line_shopping
            ],
            "arbitrage": [
                {**asdict(a), "profit_percent": a.profit_percent} for a in recs.arbitrage
            ],
            "improvements": recs.improvements,
            "suggested_stake": recs.suggested_stake,
        },
        "hedge_options": result.hedge_options,
        "tracked_ids": result.tracked_ids,
    }


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {"name": "Slip Edge Analyzer", "version": app.version, "docs": "/docs"}


@app.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    analyzer: SlipAnalyzer = Depends(get_analyzer),
):
    """Health check endpoint"""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as exc:
        logger.error("Health check database error: %s", exc)
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "model_version": analyzer.config.model_version,
        "prior_cache_entries": analyzer.historical.cache_size,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/analyze-slip", response_model=AnalyzeSlipResponse)
async def analyze_slip(
    request: AnalyzeSlipRequest,
    analyzer: SlipAnalyzer = Depends(get_analyzer),
):
    """Full blended-probability analysis of a slip."""
    try:
        legs = [leg.to_leg() for leg in request.legs]
        result = analyzer.analyze_slip(legs, track=request.track)
    except (InvalidOddsError, EmptySlipError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return AnalyzeSlipResponse(success=True, analysis=slip_to_dict(result))


@app.post("/api/parlays/generate", response_model=GenerateParlaysResponse)
async def generate_parlays(
    request: GenerateParlaysRequest,
    analyzer: SlipAnalyzer = Depends(get_analyzer),
):
    """Best non-overlapping cross-game parlays from a pool of candidate legs."""
    try:
        candidates = [leg.to_leg() for leg in request.legs]
        tickets = analyzer.generate_parlays(
            candidates,
            max_legs=request.max_legs,
            max_parlays=request.max_parlays,
        )
    except (InvalidOddsError, EmptySlipError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    parlays = [
        ParlayTicketResponse(
            legs=[leg.selection for leg in t["legs"]],
            num_legs=t["num_legs"],
            parlay_odds=t["parlay_odds"],
            parlay_american_odds=t["parlay_american_odds"],
            joint_prob=t["joint_prob"],
            expected_value=t["expected_value"],
            kelly_fractional=t["kelly_fractional"],
            recommended_units=t["recommended_units"],
            leg_summary=t["leg_summary"],
            ticket_text=format_parlay_ticket(t),
        )
        for t in tickets
    ]
    return GenerateParlaysResponse(candidates=len(candidates), parlays=parlays)


@app.get("/api/line-movement/signals/{game_key}",response_model=MovementSignalResponse)
async def line_movement_signals(
    game_key: str,
    outcome: str = Query(..., min_length=1),
    market: str = Query("moneyline"),
    ev: float = Query(0.0, description="Leg EV (fraction) used for the recommendation"),
    analyzer: SlipAnalyzer = Depends(get_analyzer),
):
    """Sharp-book movement signals and hold/hedge/replace call for one outcome."""
    try:
        signal = analyzer.movement.compute_signals(game_key, market, outcome)
    except DataUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Movement lookup failed: {exc}")

    if signal is None:
        raise HTTPException(status_code=404, detail=f"No movement data for {game_key} {market} {outcome}")

    return MovementSignalResponse(
        **asdict(signal),
        line_move_signal=signal.line_move_signal,
        favorability=signal.favorability,
        recommendation=movement_recommendation(signal, ev),
        summary=movement_summary(signal),
    )


@app.post("/api/clv/parlay", response_model=ParlayCLVResponse)
async def parlay_clv(
    request: ParlayCLVRequest,
    analyzer: SlipAnalyzer = Depends(get_analyzer),
):
    """Per-leg CLV against closing prices plus the aggregate."""
    if not request.legs:
        raise HTTPException(status_code=400, detail="At least one leg is required")

    lookup = partial(analyzer.historical.get_closing_price, strict=True)
    try:
        leg_clvs = [calculate_leg_clv(leg.to_leg(), lookup) for leg in request.legs]
    except InvalidOddsError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    aggregate = aggregate_clv(leg_clvs)
    return ParlayCLVResponse(
        legs_clv=[_leg_clv_response(c) for c in leg_clvs],
        aggregate=CLVAggregateResponse(**asdict(aggregate)),
    )


# ============================================================================
# ADMIN
# ============================================================================

@app.post("/admin/cache/clear", response_model=CacheClearResponse)
async def clear_prior_cache(analyzer: SlipAnalyzer = Depends(get_analyzer)):
    """Force-refresh historical priors."""
    cleared = analyzer.historical.cache_size
    analyzer.clear_cache()
    return CacheClearResponse(cleared_entries=cleared, message="Historical prior cache cleared")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "slip_edge.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )
