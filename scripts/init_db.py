#!/usr/bin/env python3
"""
Database initialization script
Creates all tables and optionally seeds a demo slate
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv
load_dotenv()

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from slip_edge.core.errors import LookupFailure
from slip_edge.core.odds_math import to_decimal
from slip_edge.core.provider import ClosingOddsRecord, OddsQuote, ResultRow
from slip_edge.models import Base, SessionLocal, engine
from slip_edge.services.data_provider import SQLDataProvider

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("Initializing Slip Edge database...")

    if drop_existing:
        logger.warning("Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return False

        Base.metadata.drop_all(bind=engine)
        logger.info("Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    tables = inspect(engine).get_table_names()
    logger.info("Tables: %s", ", ".join(tables))
    return True


def seed_demo_data():
    """One NBA moneyline with sharp/consensus history, a closing line and graded results."""
    provider = SQLDataProvider()
    now = datetime.now(timezone.utc)
    game_key = "bos-nyk-demo"
    commence = now + timedelta(hours=3)

    history = {
        "pinnacle": [(-140, 120, 24), (-150, 130, 6), (-158, 138, 2)],
        "draftkings": [(-155, 130, 2)],
        "fanduel": [(-150, 126, 2)],
        "betmgm": [(-160, 135, 2)],
    }

    try:
        provider.schedule_game(game_key, commence, sport="nba", home_team="Boston Celtics", away_team="New York Knicks")
        for book, rows in history.items():
            for home_price, away_price, hours_before in rows:
                observed = commence - timedelta(hours=hours_before)
                for selection, price in (("Boston Celtics", home_price), ("New York Knicks", away_price)):
                    provider.record_quote(OddsQuote(
                        game_key=game_key,
                        sportsbook=book,
                        market_type="moneyline",
                        selection=selection,
                        price=price,
                        price_format="american",
                        decimal_odds=to_decimal(price, "american"),
                        observed_at=observed,
                    ))

        provider.record_closing(ClosingOddsRecord(
            game_key=game_key,
            market="moneyline",
            sportsbook="pinnacle",
            outcome="Boston Celtics",
            closing_price=-158,
            closing_decimal=to_decimal(-158, "american"),
            closing_observed_at=commence - timedelta(minutes=1),
        ))

        for days_ago in range(1, 41):
            provider.record_result(ResultRow(
                result="win" if days_ago % 3 else "loss",
                market_type="moneyline",
                selection="Boston Celtics",
                sport="nba",
                home_team="Boston Celtics",
                away_team="Opponent",
                commence_time=now - timedelta(days=days_ago),
            ))
        logger.info("Demo slate seeded (%s)", game_key)

    except LookupFailure as e:
        logger.error("Error seeding data: %s", e)


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except SQLAlchemyError as e:
        logger.error("Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize Slip Edge database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--seed", action="store_true", help="Seed a demo slate")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    else:
        if check_connection():
            if init_database(drop_existing=args.drop) and args.seed:
                seed_demo_data()
            logger.info("Database initialization complete!")
        else:
            logger.error("Cannot initialize database - connection failed")
            sys.exit(1)
