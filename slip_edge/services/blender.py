"""
Probability blender.

Combines up to three independent estimates of a selection's win probability
into the single "true" probability every downstream calculation uses:

    sharp      - no-vig probability at the designated sharp book (anchor)
    consensus  - mean no-vig probability across the retail consensus books
    prior      - empirical hit rate from the historical result log

Each estimator's weight comes from ``BlendWeights`` and is scaled by the
estimator's own confidence: consensus by the number of quoting books, the
prior by its sample-size tier.  Missing estimators are ``None``; their
weight is redistributed proportionally over the ones that are present.

If neither sharp nor consensus exists the de-vigged entry price takes the
anchor slot and the confidence score is penalised.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional

from slip_edge.core.config import EngineConfig
from slip_edge.core.odds_math import implied_probability, remove_vig, validate_decimal_price
from slip_edge.core.provider import OddsQuote
from slip_edge.services.historical import HistoricalStat, prior_weight

logger = logging.getLogger(__name__)

# Blended probabilities are kept strictly inside (0, 1).
PROB_FLOOR = 0.01
PROB_CEIL = 0.99

# Haircut applied to a lone quoted side when no opposing price exists.
SINGLE_SIDE_VIG_HAIRCUT = 0.97


@dataclass(frozen=True)
class LegProbabilities:
    implied: float
    sharp: Optional[float]
    consensus: Optional[float]
    prior: Optional[float]
    true: float


@dataclass(frozen=True)
class BlendConfidence:
    score: float
    sharp_available: bool
    consensus_available: bool
    prior_available: bool
    fallback_used: bool = False


@dataclass(frozen=True)
class BlendResult:
    probabilities: LegProbabilities
    confidence: BlendConfidence


class ConsensusEstimate(NamedTuple):
    probability: float
    book_count: int


# ---------------------------------------------------------------------------
# Estimator extraction from raw quotes
# ---------------------------------------------------------------------------

def _latest_by_book(quotes: Iterable[OddsQuote]) -> Dict[str, Dict[str, OddsQuote]]:
    """book -> selection -> most recent quote."""
    latest: Dict[str, Dict[str, OddsQuote]] = {}
    for q in quotes:
        book = latest.setdefault(q.sportsbook.lower(), {})
        current = book.get(q.selection)
        if current is None or q.observed_at >= current.observed_at:
            book[q.selection] = q
    return latest


def _book_no_vig(book_quotes: Dict[str, OddsQuote], selection: str) -> Optional[float]:
    """No-vig probability of ``selection`` within a single book's market."""
    if selection not in book_quotes:
        return None
    names = list(book_quotes)
    if len(names) < 2:
        return implied_probability(book_quotes[selection].decimal_odds) * SINGLE_SIDE_VIG_HAIRCUT
    fair = remove_vig([implied_probability(book_quotes[n].decimal_odds) for n in names])
    return fair[names.index(selection)]


def sharp_probability(
    quotes: Iterable[OddsQuote],
    selection: str,
    sharp_book: str,
) -> Optional[float]:
    """No-vig probability of ``selection`` at the sharp book, or None."""
    book_quotes = _latest_by_book(quotes).get(sharp_book.lower())
    if not book_quotes:
        return None
    return _book_no_vig(book_quotes, selection)


def entry_book_opposite_decimal(
    quotes: Iterable[OddsQuote],
    selection: str,
    sportsbook: Optional[str],
) -> Optional[float]:
    """
    Latest opposing price at the entry book, for de-vigging the entry price.

    Only two-way markets qualify: None unless the book quotes ``selection``
    and exactly one other side.
    """
    if not sportsbook:
        return None
    book_quotes = _latest_by_book(quotes).get(sportsbook.lower(), {})
    others = [q for name, q in book_quotes.items() if name != selection]
    if selection not in book_quotes or len(others) != 1:
        return None
    return others[0].decimal_odds


def consensus_probability(
    quotes: Iterable[OddsQuote],
    selection: str,
    books: Iterable[str],
    min_books: int = 2,
) -> Optional[ConsensusEstimate]:
    """
    Mean of per-book no-vig probabilities across the consensus books.

    Returns None when fewer than ``min_books`` of them quote the selection.
    """
    wanted = {b.lower() for b in books}
    per_book: List[float] = []
    for book, book_quotes in _latest_by_book(quotes).items():
        if book not in wanted:
            continue
        p = _book_no_vig(book_quotes, selection)
        if p is not None:
            per_book.append(p)

    if len(per_book) < min_books:
        return None
    return ConsensusEstimate(sum(per_book) / len(per_book), len(per_book))


# ---------------------------------------------------------------------------
# Blender
# ---------------------------------------------------------------------------

class ProbabilityBlender:
    """Weighted blend of sharp, consensus and prior estimates."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.default()

    def _consensus_scale(self, book_count: Optional[int]) -> float:
        if book_count is None:
            return 1.0
        full = max(1, self.config.blend.consensus_full_books)
        return min(book_count, full) / full

    def blend(
        self,
        entry_decimal: float,
        *,
        opposite_decimal: Optional[float] = None,
        sharp: Optional[float] = None,
        consensus: Optional[float] = None,
        consensus_books: Optional[int] = None,
        prior: Optional[HistoricalStat] = None,
    ) -> BlendResult:
        """
        Blend the available estimators for one leg.

        Only ``entry_decimal`` is required; every other estimator may be None.
        Raises InvalidOddsError only for a structurally invalid entry price.
        """
        validate_decimal_price(entry_decimal, "entry_decimal")
        weights = self.config.blend
        implied = implied_probability(entry_decimal)

        prior_prob = None
        if prior is not None:
            # all-win or all-loss samples stay inside (0, 1)
            prior_prob = min(PROB_CEIL, max(PROB_FLOOR, prior.hit_rate))
        prior_scale = prior_weight(prior.confidence_tier) if prior is not None else 0.0

        components: List[tuple] = []
        fallback_used = False
        score = 0.0

        if sharp is not None:
            components.append((sharp, weights.sharp))
            score += weights.confidence_sharp
        if consensus is not None:
            components.append((consensus, weights.consensus * self._consensus_scale(consensus_books)))
            score += weights.confidence_consensus

        if sharp is None and consensus is None:
            fallback_used = True
            if opposite_decimal is not None:
                validate_decimal_price(opposite_decimal, "opposite_decimal")
                entry_fair = remove_vig([implied, implied_probability(opposite_decimal)])[0]
            else:
                entry_fair = implied
            components.append((entry_fair, weights.sharp))
            score += weights.fallback_confidence

        if prior_prob is not None and prior_scale > 0:
            components.append((prior_prob, weights.prior * prior_scale))
        if prior_prob is not None:
            score += weights.confidence_prior * prior_scale

        total_weight = sum(w for _, w in components)
        if total_weight > 0:
            blended = sum(p * w for p, w in components) / total_weight
        else:
            blended = implied
        blended = min(PROB_CEIL, max(PROB_FLOOR, blended))

        if fallback_used:
            logger.debug("No sharp or consensus line; falling back to entry price (p=%.4f)", blended)

        return BlendResult(
            probabilities=LegProbabilities(
                implied=implied,
                sharp=sharp,
                consensus=consensus,
                prior=prior_prob,
                true=blended,
            ),
            confidence=BlendConfidence(
                score=round(min(100.0, score), 2),
                sharp_available=sharp is not None,
                consensus_available=consensus is not None,
                prior_available=prior_prob is not None,
                fallback_used=fallback_used,
            ),
        )
