"""
Roster / entity index provider.

Sources (in priority order):
    1. Sleeper NFL players feed (public JSON, refreshed on a multi-hour TTL)
    2. Bundled seed roster (curated active, retired and deceased figures)

The live feed only lists current and recently active players, so the seed's
retired and deceased legends are always merged in underneath it.  The
engine consumes the index read-only; a refresh swaps in a new index object
rather than mutating the current one.
"""

import asyncio
import hashlib
import logging
import os
import re
from datetime import datetime
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from scenario_odds.core.interfaces import Player

load_dotenv()

logger = logging.getLogger(__name__)

SLEEPER_PLAYERS_URL = os.getenv(
    "SLEEPER_PLAYERS_URL", "https://api.sleeper.app/v1/players/nfl"
)
ROSTER_TIMEOUT_SECONDS = float(os.getenv("ROSTER_TIMEOUT_SECONDS", "12"))

# ---------------------------------------------------------------------------
# Seed roster
# ---------------------------------------------------------------------------

# (name, team, position, status, years_exp, age, popularity_rank)
_SEED_ROWS = [
    # Quarterbacks
    ("Patrick Mahomes", "KC", "QB", "active", 8, 30, 1),
    ("Josh Allen", "BUF", "QB", "active", 7, 29, 2),
    ("Joe Burrow", "CIN", "QB", "active", 5, 28, 3),
    ("Lamar Jackson", "BAL", "QB", "active", 7, 28, 4),
    ("Jalen Hurts", "PHI", "QB", "active", 5, 27, 6),
    ("Justin Herbert", "LAC", "QB", "active", 5, 27, 10),
    ("CJ Stroud", "HOU", "QB", "active", 2, 24, 12),
    ("Drake Maye", "NE", "QB", "active", 1, 23, 14),
    ("Caleb Williams", "CHI", "QB", "active", 1, 23, 15),
    ("Jayden Daniels", "WAS", "QB", "active", 1, 24, 9),
    ("Dak Prescott", "DAL", "QB", "active", 9, 32, 20),
    ("Jared Goff", "DET", "QB", "active", 9, 31, 18),
    ("Brock Purdy", "SF", "QB", "active", 3, 25, 19),
    ("Jordan Love", "GB", "QB", "active", 5, 26, 22),
    ("Tua Tagovailoa", "MIA", "QB", "active", 5, 27, 25),
    ("Bo Nix", "DEN", "QB", "active", 1, 25, 24),
    ("Aaron Rodgers", "PIT", "QB", "active", 20, 41, 16),
    # Running backs
    ("Christian McCaffrey", "SF", "RB", "active", 8, 29, 5),
    ("Saquon Barkley", "PHI", "RB", "active", 7, 28, 7),
    ("Derrick Henry", "BAL", "RB", "active", 9, 31, 11),
    ("Bijan Robinson", "ATL", "RB", "active", 2, 23, 8),
    ("Jahmyr Gibbs", "DET", "RB", "active", 2, 23, 13),
    # Receivers
    ("Justin Jefferson", "MIN", "WR", "active", 5, 26, 17),
    ("Ja'Marr Chase", "CIN", "WR", "active", 4, 25, 21),
    ("CeeDee Lamb", "DAL", "WR", "active", 5, 26, 23),
    ("Amon-Ra St. Brown", "DET", "WR", "active", 4, 25, 26),
    ("Tyreek Hill", "MIA", "WR", "active", 9, 31, 27),
    ("Puka Nacua", "LAR", "WR", "active", 2, 24, 28),
    ("Travis Kelce", "KC", "TE", "active", 12, 35, 29),
    ("George Kittle", "SF", "TE", "active", 8, 31, 35),
    # Defense
    ("T.J. Watt", "PIT", "LB", "active", 8, 30, 40),
    ("Myles Garrett", "CLE", "DE", "active", 8, 29, 41),
    ("Micah Parsons", "GB", "LB", "active", 4, 26, 42),
    ("Josh Allen", "JAX", "LB", "active", 6, 28, 300),
    ("Sauce Gardner", "NYJ", "CB", "active", 3, 25, 60),
    # Line / specialists
    ("Trent Williams", "SF", "OT", "active", 15, 37, 120),
    ("Lane Johnson", "PHI", "OT", "active", 12, 35, 140),
    ("Justin Tucker", None, "K", "unknown", 13, 35, 150),
    # Retired
    ("Tom Brady", None, "QB", "retired", 23, 48, 30),
    ("Peyton Manning", None, "QB", "retired", 18, 49, 50),
    ("Drew Brees", None, "QB", "retired", 20, 46, 55),
    ("Rob Gronkowski", None, "TE", "retired", 11, 36, 65),
    ("Matt Ryan", None, "QB", "retired", 15, 40, 90),
    ("J.J. Watt", None, "DE", "retired", 12, 36, 80),
    # Deceased
    ("Walter Payton", None, "RB", "deceased", 13, None, 100),
    ("Johnny Unitas", None, "QB", "deceased", 18, None, 110),
    ("Reggie White", None, "DE", "deceased", 15, None, 115),
    ("Sean Taylor", None, "S", "deceased", 4, None, 130),
]

#: Names the live feed cannot mark as deceased.
DECEASED_NAMES = frozenset(
    row[0].lower() for row in _SEED_ROWS if row[3] == "deceased"
)

# Sleeper status strings that still mean "on an NFL roster".
_ACTIVE_STATUSES = {
    "active",
    "injured reserve",
    "physically unable to perform",
    "pup",
    "reserve",
    "practice squad",
    "non football injury",
    "suspended",
}


def seed_players() -> List[Player]:
    """Return the bundled roster seed."""
    return [
        Player(
            name=name,
            team=team,
            position=pos,
            status=status,
            experience_years=exp,
            age=age,
            player_id=f"seed-{i}",
            popularity_rank=rank,
        )
        for i, (name, team, pos, status, exp, age, rank) in enumerate(_SEED_ROWS)
    ]


# ---------------------------------------------------------------------------
# Sleeper feed
# ---------------------------------------------------------------------------

def map_sleeper_status(raw: Dict) -> str:
    """
    Map a Sleeper player record onto active / retired / deceased / unknown.

    Active, IR, PUP, reserve and practice-squad designations are all
    "active".  An explicit retired flag, or no team while not active, is
    "retired".  Deceased comes only from the curated list.
    """
    name = (raw.get("full_name") or "").lower()
    if name in DECEASED_NAMES:
        return "deceased"
    status = str(raw.get("status") or "").strip().lower()
    if "retired" in status:
        return "retired"
    if raw.get("active") is True or status in _ACTIVE_STATUSES:
        return "active"
    if not raw.get("team"):
        return "retired"
    return "unknown"


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_sleeper_players(payload: Dict) -> List[Player]:
    """Convert the Sleeper ``/players/nfl`` payload into Player records."""
    players: List[Player] = []
    for player_id, raw in (payload or {}).items():
        if not isinstance(raw, dict):
            continue
        name = raw.get("full_name") or " ".join(
            p for p in (raw.get("first_name"), raw.get("last_name")) if p
        )
        position = raw.get("position") or ""
        if not name or not position:
            continue
        players.append(
            Player(
                name=name.strip(),
                team=raw.get("team") or None,
                position=str(position).upper(),
                status=map_sleeper_status({**raw, "full_name": name}),
                experience_years=_as_int(raw.get("years_exp")),
                age=_as_int(raw.get("age")),
                player_id=str(player_id),
                popularity_rank=_as_int(raw.get("search_rank")) or 9999,
            )
        )
    return players


class SleeperRosterClient:
    """Pull interface over the Sleeper players endpoint."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or SLEEPER_PLAYERS_URL
        self.timeout = timeout if timeout is not None else ROSTER_TIMEOUT_SECONDS

    def list_players(self) -> List[Player]:
        """Fetch every NFL player.  Returns [] on any transport failure."""
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as exc:
            logger.error("Sleeper roster fetch failed: %s", exc)
            return []
        except ValueError as exc:
            logger.error("Sleeper roster payload is not JSON: %s", exc)
            return []

        players = parse_sleeper_players(payload)
        logger.info("Sleeper: loaded %d players", len(players))
        return players


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

def name_key(name: str) -> str:
    """Lower-case, drop periods and apostrophes, split hyphens."""
    key = re.sub(r"[.'’]", "", name.lower()).replace("-", " ")
    return re.sub(r"\s+", " ", key).strip()


class RosterIndex:
    """Immutable name / last-name index over a list of players."""

    def __init__(self, players: List[Player]):
        self._players = list(players)
        self._by_name: Dict[str, List[Player]] = {}
        self._by_last: Dict[str, List[Player]] = {}
        for player in self._players:
            key = name_key(player.name)
            if not key:
                continue
            self._by_name.setdefault(key, []).append(player)
            self._by_last.setdefault(key.split()[-1], []).append(player)
        self._digest = self._compute_digest()

    def __len__(self) -> int:
        return len(self._players)

    @property
    def players(self) -> List[Player]:
        return list(self._players)

    def by_name(self, key: str) -> List[Player]:
        return list(self._by_name.get(name_key(key), []))

    def by_last_name(self, last: str) -> List[Player]:
        return list(self._by_last.get(name_key(last), []))

    def name_keys(self) -> List[str]:
        return list(self._by_name)

    def find(self, name: str) -> Optional[Player]:
        """Exact-name lookup; ties broken by active status then popularity."""
        matches = self.by_name(name)
        if not matches:
            return None
        return sorted(matches, key=lambda p: (p.status != "active", p.popularity_rank))[0]

    def digest(self) -> str:
        """SHA-1 over sorted name/team/status rows."""
        return self._digest

    def player_fingerprint(self, name: str) -> Optional[str]:
        player = self.find(name)
        if player is None:
            return None
        return f"{player.team or '-'}|{player.status}|{player.position}"

    def _compute_digest(self) -> str:
        rows = sorted(
            f"{name_key(p.name)}|{p.team or '-'}|{p.status}" for p in self._players
        )
        return hashlib.sha1("\n".join(rows).encode("utf-8")).hexdigest()


def merge_with_seed(live: List[Player], seed: Optional[List[Player]] = None) -> List[Player]:
    """Live players take priority; seed entries fill names the feed lacks."""
    seed = seed_players() if seed is None else seed
    live_names = {name_key(p.name) for p in live}
    merged = list(live)
    merged.extend(p for p in seed if name_key(p.name) not in live_names)
    return merged


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class RosterService:
    """Holds the current RosterIndex and refreshes it from the live feed."""

    def __init__(self, client: Optional[SleeperRosterClient] = None, offline: bool = False):
        self.client = client or SleeperRosterClient()
        self.offline = offline
        self._index = RosterIndex(seed_players())
        self.refreshed_at: Optional[datetime] = None

    @property
    def index(self) -> RosterIndex:
        return self._index

    def refresh(self) -> bool:
        """Replace the index from the live feed.  Keeps the old one on failure."""
        if self.offline:
            return False
        live = self.client.list_players()
        if not live:
            logger.warning("Roster refresh returned 0 players; keeping current index")
            return False
        self._index = RosterIndex(merge_with_seed(live))
        self.refreshed_at = datetime.utcnow()
        logger.info("Roster index rebuilt: %d players", len(self._index))
        return True

    async def refresh_async(self, timeout: Optional[float] = None) -> bool:
        """Run :meth:`refresh` in a worker thread under a hard timeout."""
        limit = timeout if timeout is not None else self.client.timeout + 2.0
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.refresh), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning("Roster refresh timed out after %.1fs", limit)
            return False


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_roster_service: Optional[RosterService] = None


def get_roster_service() -> RosterService:
    global _roster_service
    if _roster_service is None:
        _roster_service = RosterService()
    return _roster_service
