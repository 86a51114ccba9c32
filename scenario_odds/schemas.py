"""
Pydantic result schema for the public ``estimate`` operation.

Every call returns an EstimateResult: priced scenarios and declined
scenarios share one shape, so a consumer only needs ``source_type`` (or
``declined``) to tell them apart.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from scenario_odds.core.odds_math import ODDS_PATTERN

# Fixed sentinel price for every declined scenario.
SENTINEL_ODDS = "+100000"
SENTINEL_IMPLIED_PCT = 0.1


class EstimateResult(BaseModel):
    """
    Result of one estimate.

    ``implied_probability`` is always re-derived from ``odds``.  For a
    declined scenario ``odds`` is the sentinel line, ``source_type`` is the
    decline kind and ``reason`` explains the refusal.
    """

    prompt: str = Field(..., description="Caller's raw text")
    odds: str = Field(..., description='Signed American line, e.g. "+450"')
    implied_probability: float = Field(..., gt=0, lt=100, description="Percent")
    confidence: Literal["Low", "Medium", "High"]
    source_type: str
    label: str = ""
    rationale: str = ""
    assumptions: List[str] = Field(default_factory=list)
    trace: List[str] = Field(default_factory=list)
    as_of: str = Field(..., description="ISO date the estimate was computed for")
    declined: bool = False
    reason: Optional[str] = None
    cache_tier: Optional[str] = None
    calibration_version: str = ""

    @field_validator("odds")
    @classmethod
    def validate_american_odds(cls, v: str) -> str:
        if not ODDS_PATTERN.match(v):
            raise ValueError(f"odds={v!r} is not a signed American line")
        if abs(int(v)) < 100:
            raise ValueError(
                f"odds={v} is not valid American odds. Must be >= +100 or <= -100."
            )
        return v

    @property
    def probability(self) -> float:
        """Implied probability as a fraction."""
        return self.implied_probability / 100.0


class RefreshStatus(BaseModel):
    """Outcome of one background refresh run."""

    job: str
    ok: bool
    detail: str = ""
