"""Core mathematics, configuration and contracts for the Slip Edge engine.

This package contains pure, storage-agnostic building blocks:

- ``odds_math``: odds conversion, implied probability, proportional vig removal
- ``kelly``: expected value and Kelly sizing
- ``config``: the ``EngineConfig`` registry of weights and thresholds
- ``cache``: injectable TTL cache used by the historical prior service
- ``provider``: data-provider ABC and the DTOs that cross it
- ``errors``: the error taxonomy

Nothing in this package imports from ``slip_edge.services`` or
``slip_edge.models``.  All modules are side-effect-free and unit-testable in
isolation.
"""
