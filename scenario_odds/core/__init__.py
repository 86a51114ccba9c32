"""Core mathematics, types and configuration for the scenario odds engine.

This package contains pure building blocks:

- ``odds_math``:    American odds ↔ probability, display rounding, compounding
- ``distributions``: threshold tails, Poisson-binomial counts, race model
- ``calibration``:  the immutable, versioned model parameter bundle
- ``interfaces``:   entities, outcome descriptors, tagged results, resolver ABC

Nothing in this package imports from ``scenario_odds.services``.
All modules are side-effect-free and unit-testable in isolation.
"""
