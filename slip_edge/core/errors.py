"""Error taxonomy for the slip analysis engine.

Only two conditions are ever fatal to a caller:

* :class:`InvalidOddsError`: a price that cannot be a real market price
  (unparseable, decimal ≤ 1.0, below the 1.01 floor) or a probability outside
  ``(0, 1)``.  Fatal to that leg; fatal to a parlay aggregation only because
  no meaningful combined price exists.
* :class:`EmptySlipError`: a parlay with zero legs.

Missing data is *never* fatal.  Data providers may raise
:class:`DataUnavailable` (or its subclass :class:`LookupFailure` for
errors/timeouts); the services catch both, log, and surface the absence as
``None`` fields plus reduced confidence.
"""

from __future__ import annotations


class SlipEdgeError(Exception):
    """Base class for every error raised by this package."""


class InvalidOddsError(SlipEdgeError, ValueError):
    """Malformed or impossible price / probability."""


class EmptySlipError(SlipEdgeError, ValueError):
    """A parlay aggregation was requested with zero legs."""


class DataUnavailable(SlipEdgeError):
    """No sharp / consensus / historical / closing data exists for a query."""


class LookupFailure(DataUnavailable):
    """The data provider errored or timed out.

    Subclasses :class:`DataUnavailable` so ``except DataUnavailable`` handles
    an outage exactly like an empty result.
    """
