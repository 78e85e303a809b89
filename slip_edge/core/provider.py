"""Data-provider contract and the DTOs that cross it.

The engine never talks to a database directly.  Every service accepts a
:class:`BaseDataProvider` at construction time, which enables:

* **Unit testing**: inject an in-memory provider holding fixed quotes and
  results, or a ``MagicMock`` whose methods raise :class:`LookupFailure`.
* **Storage independence**: the SQLAlchemy-backed provider in
  :mod:`slip_edge.services.data_provider` is one implementation; any store
  that honours these four read methods works.

Design choices
--------------
* :class:`BaseDataProvider` is an ABC rather than a ``typing.Protocol`` so
  that ``isinstance`` checks work at runtime and implementers read the
  contract explicitly.
* The DTOs are frozen and slotted: quotes and closing records are immutable
  once observed, and frozen objects are safe to share across the enrichment
  thread pool.
* Providers signal errors/timeouts by raising
  :class:`~slip_edge.core.errors.LookupFailure`.  "No data" is an empty list
  or ``None``, never an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

ResultValue = Literal["win", "loss", "push", "void"]

#: Results that count toward a hit rate.  Pushes and voids are excluded
#: from the denominator.
DECISIVE_RESULTS: frozenset[str] = frozenset({"win", "loss"})


# ---------------------------------------------------------------------------
# Data transfer objects
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OddsQuote:
    """One price observed at one book at one instant.

    Attributes:
        game_key: Stable game identifier shared across books.
        sportsbook: Lower-case book key (``"pinnacle"``, ``"draftkings"``).
        market_type: Canonical market (``"moneyline"``, ``"spread"``, ``"total"``).
        selection: Outcome name (team name, ``"Over"``, ``"Under"``, ``"home"``).
        price: Price as quoted by the book, in ``price_format``.
        price_format: ``"american"``, ``"decimal"`` or ``"fractional"``.
        decimal_odds: The same price normalised to decimal.
        point: Spread or total line; ``None`` for moneylines.
        observed_at: When the quote was recorded.
    """

    game_key: str
    sportsbook: str
    market_type: str
    selection: str
    price: float | str
    price_format: str
    decimal_odds: float
    observed_at: datetime
    point: Optional[float] = None


@dataclass(slots=True, frozen=True)
class ResultRow:
    """A graded historical leg used for empirical hit rates."""

    result: str
    market_type: str
    selection: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime


@dataclass(slots=True, frozen=True)
class ClosingOddsRecord:
    """The final pre-event price for one outcome at one book.

    Written once when the market closes; read-only afterwards.
    """

    game_key: str
    market: str
    sportsbook: str
    outcome: str
    closing_price: float | str
    closing_decimal: float
    closing_observed_at: datetime


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------


class BaseDataProvider(ABC):
    """Read contract the engine requires of the persistent store."""

    @abstractmethod
    def query_quotes(
        self,
        game_key: str,
        market: str,
        sportsbook: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[OddsQuote]:
        """Return quotes for a game/market ordered by ``observed_at`` ascending.

        Raises:
            LookupFailure: On provider error or timeout.
        """

    @abstractmethod
    def query_results(
        self,
        since: datetime,
        sport: Optional[str] = None,
        market_type: Optional[str] = None,
        team: Optional[str] = None,
    ) -> list[ResultRow]:
        """Return graded legs whose game started at or after ``since``.

        ``team`` matches either the home or the away team.

        Raises:
            LookupFailure: On provider error or timeout.
        """

    @abstractmethod
    def query_closing_record(
        self,
        game_key: str,
        market: str,
        selection: str,
        sportsbook: Optional[str] = None,
    ) -> Optional[ClosingOddsRecord]:
        """Return the persisted closing snapshot, or ``None`` if not closed.

        Raises:
            LookupFailure: On provider error or timeout.
        """

    @abstractmethod
    def query_commence_time(self, game_key: str) -> Optional[datetime]:
        """Return the scheduled start of a game, or ``None`` if unknown.

        Raises:
            LookupFailure: On provider error or timeout.
        """
