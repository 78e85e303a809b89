"""
Database models for Slip Edge
SQLAlchemy ORM (SQLite by default, PostgreSQL via DATABASE_URL)
"""

import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slip_edge.db")

# Leg enrichment runs on a thread pool; SQLite connections must be shareable.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class GameSchedule(Base):
    """Scheduled game with its start time"""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    game_key = Column(String, unique=True, nullable=False, index=True)
    sport = Column(String, index=True)
    home_team = Column(String)
    away_team = Column(String)
    commence_time = Column(DateTime(timezone=True), index=True)


class OddsQuoteRecord(Base):
    """One observed price at one book (append-only history)"""

    __tablename__ = "odds_quotes"

    id = Column(Integer, primary_key=True, index=True)
    game_key = Column(String, nullable=False, index=True)
    sportsbook = Column(String, nullable=False, index=True)
    market = Column(String, nullable=False, index=True)  # "moneyline" | "spread" | "total"
    selection = Column(String, nullable=False)
    price = Column(String, nullable=False)  # As quoted, e.g. "-110", "2.10", "5/4"
    price_format = Column(String, default="american")
    decimal_odds = Column(Float, nullable=False)
    point = Column(Float)  # Spread / total line
    observed_at = Column(DateTime(timezone=True), nullable=False, index=True)


class ClosingOdds(Base):
    """Final pre-event price per outcome, written once at close"""

    __tablename__ = "closing_odds"
    __table_args__ = (
        UniqueConstraint("game_key", "market", "sportsbook", "outcome", name="uq_closing_outcome"),
    )

    id = Column(Integer, primary_key=True, index=True)
    game_key = Column(String, nullable=False, index=True)
    market = Column(String, nullable=False)
    sportsbook = Column(String, nullable=False)
    outcome = Column(String, nullable=False)
    closing_price = Column(String, nullable=False)
    closing_decimal = Column(Float, nullable=False)
    closing_observed_at = Column(DateTime(timezone=True), nullable=False)


class ResultLog(Base):
    """Graded historical leg (win / loss / push / void)"""

    __tablename__ = "result_log"

    id = Column(Integer, primary_key=True, index=True)
    game_key = Column(String, index=True)
    sport = Column(String, index=True)
    market_type = Column(String, index=True)
    selection = Column(String, nullable=False)
    home_team = Column(String, index=True)
    away_team = Column(String, index=True)
    commence_time = Column(DateTime(timezone=True), nullable=False, index=True)
    result = Column(String, nullable=False)


class TrackedLeg(Base):
    """Suggested leg recorded at analysis time for later CLV grading"""

    __tablename__ = "tracked_legs"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    game_key = Column(String, nullable=False, index=True)
    sport = Column(String)
    market_type = Column(String)
    selection = Column(String, nullable=False)
    opening_sportsbook = Column(String)
    opening_odds = Column(Float, nullable=False)  # Decimal price at suggestion
    opening_odds_american = Column(Integer)
    suggested_probability = Column(Float, nullable=False)
    ev_at_suggestion = Column(Float, nullable=False)
    kelly_size_suggested = Column(Float, nullable=False)
    confidence_score = Column(Float)
    model_version = Column(String, nullable=False)
    notes = Column(Text)


def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)
