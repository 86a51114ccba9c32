"""
Estimation cache: one manager, named tiers, explicit TTL and drift policy.

Tiers
-----
  ephemeral         every successful result, short TTL.
  canonical         same key space, longer TTL; survives ephemeral eviction.
  stable            low-volatility prompts only (career, comparative,
                    multi-year).  Served only while the snapshot recorded at
                    write time still matches a freshly computed one.
  market_reference  per (market, team) reference lines from the odds feed.

Snapshots are flat ``{signal_name: value}`` dicts.  Signal names are
prefixed by family:

  market:<market>:<team>   season probability (pct); tolerant to small moves
  roster                   roster digest; exact match
  player:<name>            status/team fingerprint; exact match
  calibration              calibration signature; exact match

A market signal counts as drifted only when it moves by more than
``MARKET_DRIFT_ABS_PCT`` points AND by more than ``MARKET_DRIFT_REL`` of its
stored value.  Any other signal drifts on any change, and a signal present on
one side but not the other always drifts.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

EPHEMERAL = "ephemeral"
CANONICAL = "canonical"
STABLE = "stable"
MARKET_REFERENCE = "market_reference"

DEFAULT_TTLS: Dict[str, float] = {
    EPHEMERAL: 600.0,
    CANONICAL: 86400.0,
    STABLE: 30 * 86400.0,
    MARKET_REFERENCE: float(os.getenv("MARKET_REFERENCE_TTL_SECONDS", "600")),
}

MARKET_DRIFT_ABS_PCT = 1.5
MARKET_DRIFT_REL = 0.15

Snapshot = Dict[str, Any]


@dataclass
class CacheEntry:
    key: str
    created_at: float
    tier: str
    value: Any
    snapshot: Optional[Snapshot] = None


@dataclass
class CacheStats:
    hits: Dict[str, int] = field(default_factory=dict)
    misses: int = 0
    drift_evictions: int = 0
    expired: int = 0


def signal_drifted(name: str, stored: Any, current: Any) -> bool:
    """True when one snapshot signal is out of tolerance."""
    if stored is None or current is None:
        return stored is not current
    if name.startswith("market:"):
        try:
            before = float(stored)
            after = float(current)
        except (TypeError, ValueError):
            return stored != current
        moved = abs(after - before)
        relative = moved / before if before > 0 else float("inf")
        return moved > MARKET_DRIFT_ABS_PCT and relative > MARKET_DRIFT_REL
    return stored != current


def snapshot_drift(stored: Snapshot, current: Snapshot) -> list[str]:
    """Names of every signal that drifted between two snapshots."""
    drifted = []
    for name in sorted(set(stored) | set(current)):
        if signal_drifted(name, stored.get(name), current.get(name)):
            drifted.append(name)
    return drifted


class CacheManager:
    """In-process multi-tier cache with an injectable clock."""

    def __init__(
        self,
        ttls: Optional[Dict[str, float]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)
        self.clock = clock or time.time
        self._tiers: Dict[str, Dict[str, CacheEntry]] = {name: {} for name in self.ttls}
        self.stats = CacheStats()

    # ------------------------------------------------------------------ #
    #  Plain TTL tiers                                                     #
    # ------------------------------------------------------------------ #

    def get(self, tier: str, key: str) -> Optional[Any]:
        """Return the live value for ``key`` in ``tier``, or None."""
        entry = self._tiers[tier].get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._tiers[tier][key]
            self.stats.expired += 1
            return None
        self.stats.hits[tier] = self.stats.hits.get(tier, 0) + 1
        return entry.value

    def put(self, tier: str, key: str, value: Any, snapshot: Optional[Snapshot] = None) -> None:
        self._tiers[tier][key] = CacheEntry(
            key=key,
            created_at=self.clock(),
            tier=tier,
            value=value,
            snapshot=dict(snapshot) if snapshot is not None else None,
        )

    def lookup(self, key: str) -> tuple[Optional[Any], Optional[str]]:
        """Check ephemeral, then canonical.  Returns ``(value, tier)``."""
        for tier in (EPHEMERAL, CANONICAL):
            value = self.get(tier, key)
            if value is not None:
                return value, tier
        self.stats.misses += 1
        return None, None

    def store(self, key: str, value: Any) -> None:
        """Write a fresh result to both short-lived tiers."""
        self.put(EPHEMERAL, key, value)
        self.put(CANONICAL, key, value)

    # ------------------------------------------------------------------ #
    #  Stable tier                                                         #
    # ------------------------------------------------------------------ #

    def stable_snapshot(self, key: str) -> Optional[Snapshot]:
        """Snapshot stored with a live stable entry (used to rebuild signals)."""
        entry = self._tiers[STABLE].get(key)
        if entry is None or self._expired(entry):
            return None
        return entry.snapshot

    def get_stable(self, key: str, current: Snapshot) -> Optional[Any]:
        """Serve a stable entry only when ``current`` matches its snapshot."""
        entry = self._tiers[STABLE].get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._tiers[STABLE][key]
            self.stats.expired += 1
            return None
        drifted = snapshot_drift(entry.snapshot or {}, current)
        if drifted:
            logger.warning(
                "Stable cache entry %r evicted on drift: %s", key, ", ".join(drifted)
            )
            del self._tiers[STABLE][key]
            self.stats.drift_evictions += 1
            return None
        self.stats.hits[STABLE] = self.stats.hits.get(STABLE, 0) + 1
        return entry.value

    def put_stable(self, key: str, value: Any, snapshot: Snapshot) -> None:
        self.put(STABLE, key, value, snapshot=snapshot)

    # ------------------------------------------------------------------ #
    #  Maintenance                                                         #
    # ------------------------------------------------------------------ #

    def purge_expired(self) -> int:
        """Drop every expired entry in every tier.  Returns the count."""
        removed = 0
        for entries in self._tiers.values():
            for key in [k for k, e in entries.items() if self._expired(e)]:
                del entries[key]
                removed += 1
        if removed:
            logger.debug("Cache purge removed %d expired entries", removed)
        self.stats.expired += removed
        return removed

    def clear(self, tier: Optional[str] = None) -> None:
        if tier is None:
            for entries in self._tiers.values():
                entries.clear()
        else:
            self._tiers[tier].clear()

    def size(self, tier: str) -> int:
        return len(self._tiers[tier])

    def _expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.created_at >= self.ttls[entry.tier]
