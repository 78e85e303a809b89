"""
Data provider implementations.

    SQLDataProvider      - reads/writes through the SQLAlchemy models
    InMemoryDataProvider - list-backed provider for tests and scripts

Both return the frozen DTOs from ``slip_edge.core.provider`` with UTC-aware
datetimes.  SQL errors surface as ``LookupFailure``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slip_edge.core.config import canonical_market
from slip_edge.core.errors import LookupFailure
from slip_edge.core.provider import BaseDataProvider, ClosingOddsRecord, OddsQuote, ResultRow
from slip_edge.models import (
    ClosingOdds,
    GameSchedule,
    OddsQuoteRecord,
    ResultLog,
    SessionLocal,
    TrackedLeg,
)

logger = logging.getLogger(__name__)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; treat naive timestamps as UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _price(raw: str) -> float | str:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return raw


class SQLDataProvider(BaseDataProvider):
    """
    Provider over the ORM models.

    Each call opens its own session from ``session_factory`` so the provider
    is safe to share across enrichment threads.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def _run(self, what: str, fn: Callable[[Session], Any]) -> Any:
        db = self._session_factory()
        try:
            return fn(db)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("%s failed: %s", what, exc)
            raise LookupFailure(f"{what} failed: {exc}") from exc
        finally:
            db.close()

    # -- reads -------------------------------------------------------------

    def query_quotes(self, game_key, market, sportsbook=None, since=None) -> List[OddsQuote]:
        def _query(db: Session):
            q = db.query(OddsQuoteRecord).filter(
                OddsQuoteRecord.game_key == game_key,
                OddsQuoteRecord.market == canonical_market(market),
            )
            if sportsbook:
                q = q.filter(OddsQuoteRecord.sportsbook == sportsbook.lower())
            if since is not None:
                q = q.filter(OddsQuoteRecord.observed_at >= since)
            rows = q.order_by(OddsQuoteRecord.observed_at.asc(), OddsQuoteRecord.id.asc()).all()
            return [
                OddsQuote(
                    game_key=r.game_key,
                    sportsbook=r.sportsbook,
                    market_type=r.market,
                    selection=r.selection,
                    price=_price(r.price),
                    price_format=r.price_format or "american",
                    decimal_odds=r.decimal_odds,
                    observed_at=_utc(r.observed_at),
                    point=r.point,
                )
                for r in rows
            ]

        return self._run("query_quotes", _query)

    def query_results(self, since, sport=None, market_type=None, team=None) -> List[ResultRow]:
        def _query(db: Session):
            q = db.query(ResultLog).filter(ResultLog.commence_time >= since)
            if sport:
                q = q.filter(ResultLog.sport == sport)
            if market_type:
                q = q.filter(ResultLog.market_type == canonical_market(market_type))
            if team:
                q = q.filter(or_(ResultLog.home_team == team, ResultLog.away_team == team))
            return [
                ResultRow(
                    result=r.result,
                    market_type=r.market_type,
                    selection=r.selection,
                    sport=r.sport,
                    home_team=r.home_team,
                    away_team=r.away_team,
                    commence_time=_utc(r.commence_time),
                )
                for r in q.all()
            ]

        return self._run("query_results", _query)

    def query_closing_record(self, game_key, market, selection, sportsbook=None) -> Optional[ClosingOddsRecord]:
        def _query(db: Session):
            q = db.query(ClosingOdds).filter(
                ClosingOdds.game_key == game_key,
                ClosingOdds.market == canonical_market(market),
                ClosingOdds.outcome == selection,
            )
            if sportsbook:
                q = q.filter(ClosingOdds.sportsbook == sportsbook.lower())
            r = q.order_by(ClosingOdds.closing_observed_at.desc()).first()
            if r is None:
                return None
            return ClosingOddsRecord(
                game_key=r.game_key,
                market=r.market,
                sportsbook=r.sportsbook,
                outcome=r.outcome,
                closing_price=_price(r.closing_price),
                closing_decimal=r.closing_decimal,
                closing_observed_at=_utc(r.closing_observed_at),
            )

        return self._run("query_closing_record", _query)

    def query_commence_time(self, game_key) -> Optional[datetime]:
        def _query(db: Session):
            game = db.query(GameSchedule).filter(GameSchedule.game_key == game_key).first()
            return _utc(game.commence_time) if game else None

        return self._run("query_commence_time", _query)

    # -- writes ------------------------------------------------------------

    def _write(self, what: str, obj) -> int:
        def _insert(db: Session):
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return obj.id

        return self._run(what, _insert)

    def record_quote(self, quote: OddsQuote) -> int:
        return self._write("record_quote", OddsQuoteRecord(
            game_key=quote.game_key,
            sportsbook=quote.sportsbook.lower(),
            market=canonical_market(quote.market_type),
            selection=quote.selection,
            price=str(quote.price),
            price_format=quote.price_format,
            decimal_odds=quote.decimal_odds,
            point=quote.point,
            observed_at=quote.observed_at,
        ))

    def record_closing(self, record: ClosingOddsRecord) -> int:
        return self._write("record_closing", ClosingOdds(
            game_key=record.game_key,
            market=canonical_market(record.market),
            sportsbook=record.sportsbook.lower(),
            outcome=record.outcome,
            closing_price=str(record.closing_price),
            closing_decimal=record.closing_decimal,
            closing_observed_at=record.closing_observed_at,
        ))

    def record_result(self, row: ResultRow, game_key: Optional[str] = None) -> int:
        return self._write("record_result", ResultLog(
            game_key=game_key,
            sport=row.sport,
            market_type=canonical_market(row.market_type),
            selection=row.selection,
            home_team=row.home_team,
            away_team=row.away_team,
            commence_time=row.commence_time,
            result=row.result,
        ))

    def schedule_game(self, game_key: str, commence_time: datetime, sport=None, home_team=None, away_team=None) -> int:
        return self._write("schedule_game", GameSchedule(
            game_key=game_key,
            sport=sport,
            home_team=home_team,
            away_team=away_team,
            commence_time=commence_time,
        ))

    def record_leg(self, record: Dict[str, Any]) -> int:
        """Persist a ``LegAnalysis.to_tracking_record()`` dict."""
        columns = {c.name for c in TrackedLeg.__table__.columns} - {"id", "created_at"}
        leg_id = self._write("record_leg", TrackedLeg(**{k: v for k, v in record.items() if k in columns}))
        logger.info("Tracked leg %s (%s) as id=%d", record.get("selection"), record.get("game_key"), leg_id)
        return leg_id


class InMemoryDataProvider(BaseDataProvider):
    """List-backed provider.  Filtering mirrors ``SQLDataProvider``."""

    def __init__(
        self,
        quotes: Iterable[OddsQuote] = (),
        results: Iterable[ResultRow] = (),
        closing: Iterable[ClosingOddsRecord] = (),
        commence_times: Optional[Dict[str, datetime]] = None,
    ):
        self.quotes: List[OddsQuote] = list(quotes)
        self.results: List[ResultRow] = list(results)
        self.closing: List[ClosingOddsRecord] = list(closing)
        self.commence_times: Dict[str, datetime] = dict(commence_times or {})
        self.tracked: List[Dict[str, Any]] = []

    def query_quotes(self, game_key, market, sportsbook=None, since=None) -> List[OddsQuote]:
        market = canonical_market(market)
        rows = [
            q for q in self.quotes
            if q.game_key == game_key
            and canonical_market(q.market_type) == market
            and (sportsbook is None or q.sportsbook.lower() == sportsbook.lower())
            and (since is None or q.observed_at >= since)
        ]
        return sorted(rows, key=lambda q: q.observed_at)

    def query_results(self, since, sport=None, market_type=None, team=None) -> List[ResultRow]:
        market = canonical_market(market_type) if market_type else None
        return [
            r for r in self.results
            if r.commence_time >= since
            and (sport is None or r.sport == sport)
            and (market is None or canonical_market(r.market_type) == market)
            and (team is None or team in (r.home_team, r.away_team))
        ]

    def query_closing_record(self, game_key, market, selection, sportsbook=None) -> Optional[ClosingOddsRecord]:
        market = canonical_market(market)
        matches = [
            c for c in self.closing
            if c.game_key == game_key
            and canonical_market(c.market) == market
            and c.outcome == selection
            and (sportsbook is None or c.sportsbook.lower() == sportsbook.lower())
        ]
        if not matches:
            return None
        return max(matches, key=lambda c: c.closing_observed_at)

    def query_commence_time(self, game_key) -> Optional[datetime]:
        return self.commence_times.get(game_key)

    def record_leg(self, record: Dict[str, Any]) -> int:
        self.tracked.append(dict(record))
        return len(self.tracked)
