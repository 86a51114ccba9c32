"""
Generative fallback gateway.

Last resort for prompts no deterministic resolver can price.  The gateway
runs only when a strict eligibility gate passes:

  1. the prompt names a measurable outcome (win, make, throws N, MVP ...),
  2. it is not a known subjective or impossible pattern,
  3. it carries strong football vocabulary,
  4. at least one player or team was concretely resolved.

Provider order
--------------
  OpenAI Responses API   strict JSON schema, validated with pydantic,
                         run in a worker thread under FALLBACK_TIMEOUT_SECONDS
  heuristic              digest-seeded base with keyword adjustments
                         (only when FALLBACK_ALLOW_HEURISTIC is true)
  sentinel               constraint_violation "insufficient data"

Every priced result passes the same sanity caps and the n-fold
monotonicity cap used by the deterministic path.
"""

import asyncio
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Literal, Optional

import openai
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    CONSTRAINT_VIOLATION,
    INCONSISTENT,
    Declined,
    Entity,
    Estimate,
    Outcome,
    Player,
    Resolved,
)
from scenario_odds.core.odds_math import clamp
from scenario_odds.services.intent import detect_unsupportable

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
FALLBACK_TIMEOUT_SECONDS = float(os.getenv("FALLBACK_TIMEOUT_SECONDS", "35"))
FALLBACK_ALLOW_HEURISTIC = os.getenv("FALLBACK_ALLOW_HEURISTIC", "true").lower() in {
    "1", "true", "yes", "on",
}

# Heuristic output range (percent).
HEURISTIC_BOUNDS = (0.5, 95.0)

# Generative output range (percent), mirrored in the JSON schema.
GENERATIVE_BOUNDS = (1.0, 95.0)

_MEASURABLE = re.compile(
    r"\b(win|wins|won|make|makes|made|reach|reaches|throws?|catch(?:es)?|rush(?:es|ing)?"
    r"|retire(?:d|ment|s|ing)?|returns?|comeback|playoffs?|mvp|yards?|touchdowns?|tds?"
    r"|interceptions?|ints?|sacks?|record|awards?|super bowl|championship|finals?"
    r"|0-17|17-0|hall of fame)\b"
)
_SPORTS_DOMAIN = re.compile(
    r"\b(nfl|super bowl|afc|nfc|playoffs?|mvp|hall of fame|touchdowns?|tds?"
    r"|interceptions?|ints?|passing|receiving|rushing|wins?)\b"
)

_TD_MILESTONE = re.compile(r"\bthrows?\s+(\d{2})\s*(?:passing\s+)?(?:tds?|touchdowns?)\b")
_MULTI_ACHIEVEMENT = re.compile(
    r"\b(win|wins|won)\s+(\d+)\s+(super bowls?|mvps?|championships?|titles?|rings?)\b"
)
_SUPER_BOWL_COUNT = re.compile(r"\bwins?\s+(\d+)\s+super\s*bowls?\b")
_COMEBACK = re.compile(r"\b(retire|retirement|return|returns|comeback|comes? out|play again)\b")

_TITLE_CLAUSE = re.compile(r"\bwins? (?:the )?(?:super bowl|afc|nfc)\b")
_MISS_CLAUSE = re.compile(r"\bmiss(?:es)? the playoffs\b")

# Seed-based baseline adjustments, applied in order.
_KEYWORD_ADJUSTMENTS = (
    (re.compile(r"\b(win|wins|make|makes|reach|reaches|beat|beats)\b"), 4.0),
    (re.compile(r"\b(miss|misses|lose|loses|doesn't|won't)\b"), -3.0),
    (re.compile(r"\b(next year|next season|career)\b"), -3.0),
    (re.compile(r"\b(retire|retires|retirement|comeback|comes out)\b"), -8.0),
)

# (minimum threshold, cap pct), first match wins.
_TD_MILESTONE_CAPS = ((50, 0.8), (45, 3.0), (40, 7.0), (35, 17.0))

_LONG_SHOT = re.compile(r"\b0-17\b|\b17-0\b|\bpunter\b.*\bmvp\b")


# ---------------------------------------------------------------------------
# Structured response
# ---------------------------------------------------------------------------

class FallbackEstimate(BaseModel):
    """Structured object returned by the generative provider."""

    probability_pct: float = Field(ge=GENERATIVE_BOUNDS[0], le=GENERATIVE_BOUNDS[1])
    confidence: Literal["Low", "Medium", "High"]
    assumptions: List[str] = Field(min_length=1, max_length=3)
    player_name: str = ""
    team_name: str = ""
    summary_label: str = ""


FALLBACK_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "probability_pct": {
            "type": "number",
            "minimum": GENERATIVE_BOUNDS[0],
            "maximum": GENERATIVE_BOUNDS[1],
        },
        "confidence": {"type": "string", "enum": ["Low", "Medium", "High"]},
        "assumptions": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
            "maxItems": 3,
        },
        "player_name": {"type": "string"},
        "team_name": {"type": "string"},
        "summary_label": {"type": "string"},
    },
    "required": [
        "probability_pct",
        "confidence",
        "assumptions",
        "player_name",
        "team_name",
        "summary_label",
    ],
}

_INSTRUCTIONS = (
    "You estimate probabilities for NFL hypotheticals. "
    "Return a single probability in percent between 1 and 95, a confidence tag, "
    "and one to three short assumptions. Never quote odds or percentages in the "
    "assumptions. Respect the reference anchors when they apply."
)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def is_eligible(text: str, entities: List[Entity]) -> bool:
    """The strict gate in front of every fallback provider."""
    if not _MEASURABLE.search(text):
        return False
    if detect_unsupportable(text) is not None:
        return False
    if not _SPORTS_DOMAIN.search(text):
        return False
    return bool(entities)


def text_contradiction(text: str) -> Optional[Declined]:
    """Title plus missed playoffs joined by and/but, with or without entities."""
    for joiner in (" and ", " but "):
        if joiner not in text:
            continue
        left, _, right = text.partition(joiner)
        for a, b in ((left, right), (right, left)):
            if _TITLE_CLAUSE.search(a) and _MISS_CLAUSE.search(b):
                return Declined(
                    INCONSISTENT, "A team cannot win a title while missing the playoffs."
                )
    return None


def touchdown_milestone(text: str) -> Optional[int]:
    match = _TD_MILESTONE.search(text)
    return int(match.group(1)) if match else None


def _seed_fraction(text: str) -> float:
    digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
    return (int(digest[:8], 16) % 1000) / 1000.0


def heuristic_base_pct(text: str, calibration: CalibrationConfig) -> float:
    """
    Deterministic baseline for an unpriceable prompt.

    The digest of the text picks a point inside
    ``calibration.heuristic_base_range``; keyword adjustments and the
    touchdown milestone caps then move it.
    """
    lo, hi = calibration.heuristic_base_range
    pct = lo + _seed_fraction(text) * (hi - lo)
    for pattern, delta in _KEYWORD_ADJUSTMENTS:
        if pattern.search(text):
            pct += delta

    milestone = touchdown_milestone(text)
    if milestone is not None:
        for minimum, cap in _TD_MILESTONE_CAPS:
            if milestone >= minimum:
                pct = min(pct, cap)
                break

    if _LONG_SHOT.search(text):
        pct = min(pct, 1.6)
    return clamp(pct, *HEURISTIC_BOUNDS)


def sanity_caps(text: str, pct: float, entities: List[Entity]) -> float:
    """Hard ceilings for repeat titles, comebacks and ownership stakes."""
    match = _SUPER_BOWL_COUNT.search(text)
    if match:
        count = int(match.group(1))
        if count >= 2:
            pct = min(pct, 38.0 * 0.55 ** (count - 1))

    comeback = bool(_COMEBACK.search(text))
    if comeback and re.search(r"\b(owner|ownership|stake)\b", text):
        pct = min(pct, 1.2)
    if comeback and any(
        isinstance(e, Player) and e.status in {"retired", "deceased"} for e in entities
    ):
        pct = min(pct, 0.9)

    milestone = touchdown_milestone(text)
    if milestone is not None and milestone >= 40:
        for minimum, cap in _TD_MILESTONE_CAPS[:3]:
            if milestone >= minimum:
                pct = min(pct, cap)
                break
    return clamp(pct, *HEURISTIC_BOUNDS)


def single_achievement_text(text: str) -> Optional[str]:
    """``"wins 3 super bowls"`` -> ``"wins 1 super bowl"``, or None."""
    match = _MULTI_ACHIEVEMENT.search(text)
    if not match or int(match.group(2)) < 2:
        return None
    noun = match.group(3)
    if noun.endswith("ies"):
        noun = noun[:-3] + "y"
    elif noun.endswith("s"):
        noun = noun[:-1]
    return text.replace(match.group(0), f"{match.group(1)} 1 {noun}", 1)


def describe_entities(entities: List[Entity]) -> List[str]:
    lines = []
    for entity in entities:
        if isinstance(entity, Player):
            team = entity.team or "no team"
            lines.append(f"Player: {entity.name}, {entity.position or '?'}, {team}, {entity.status}")
        else:
            lines.append(f"Team: {entity.name} ({entity.abbreviation}, {entity.division})")
    return lines


# ---------------------------------------------------------------------------
# OpenAI provider
# ---------------------------------------------------------------------------

class OpenAIFallbackProvider:
    """Structured single-number estimates from the OpenAI Responses API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        self.model = model or OPENAI_MODEL
        self.timeout = timeout if timeout is not None else FALLBACK_TIMEOUT_SECONDS
        if client is None:
            key = api_key or OPENAI_API_KEY
            if not key:
                raise ValueError("OPENAI_API_KEY not set in environment")
            kwargs = {"api_key": key}
            if base_url or OPENAI_BASE_URL:
                kwargs["base_url"] = base_url or OPENAI_BASE_URL
            client = openai.OpenAI(**kwargs)
        self.client = client

    def request(self, text: str, context_lines: List[str]) -> FallbackEstimate:
        """
        Blocking call.  Raises openai.OpenAIError, ValidationError or
        ValueError (non-JSON output); the async wrapper handles them.
        """
        context = "\n".join(context_lines) if context_lines else "No resolved context."
        response = self.client.responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": _INSTRUCTIONS},
                {"role": "user", "content": f"Scenario: {text}\n\nContext:\n{context}"},
            ],
            text={
                "format": {
                    "type": "json_schema",
                    "name": "scenario_probability",
                    "strict": True,
                    "schema": FALLBACK_SCHEMA,
                }
            },
        )
        payload = json.loads(response.output_text)
        return FallbackEstimate.model_validate(payload)

    async def estimate(self, text: str, context_lines: List[str]) -> Optional[FallbackEstimate]:
        """Returns None on timeout, transport error or malformed output."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.request, text, context_lines),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Generative fallback timed out after %.1fs", self.timeout)
        except openai.OpenAIError as e:
            logger.error("Generative fallback error: %s", e)
        except (ValidationError, ValueError) as e:
            logger.warning("Malformed generative response: %s", e)
        return None


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

@dataclass
class FallbackPrice:
    pct: float
    confidence: str
    source_type: str
    assumptions: List[str]


class FallbackGateway:
    """Prices prompts the deterministic path declined."""

    def __init__(
        self,
        calibration: CalibrationConfig,
        provider: Optional[OpenAIFallbackProvider] = None,
        allow_heuristic: Optional[bool] = None,
        offline: bool = False,
    ):
        if provider is None and not offline and OPENAI_API_KEY:
            provider = OpenAIFallbackProvider()
        self.provider = None if offline else provider
        self.calibration = calibration
        self.allow_heuristic = (
            FALLBACK_ALLOW_HEURISTIC if allow_heuristic is None else allow_heuristic
        )

    async def estimate(
        self,
        text: str,
        entities: List[Entity],
        declined: Declined,
        anchors: Optional[List[str]] = None,
    ) -> Outcome:
        """
        Try to price ``text`` after the deterministic path returned
        ``declined``.  Returns ``declined`` unchanged when the gate fails.
        """
        contradiction = text_contradiction(text)
        if contradiction is not None:
            return contradiction
        if not is_eligible(text, entities):
            logger.debug("Fallback gate closed for %r", text)
            return declined

        context_lines = describe_entities(entities) + list(anchors or [])
        price = await self._price(text, entities, context_lines)
        if price is None:
            return Declined(
                CONSTRAINT_VIOLATION,
                "Insufficient data to price this scenario without a deterministic model.",
            )

        single_text = single_achievement_text(text)
        trace = [f"fallback:{price.source_type}"]
        if single_text is not None:
            single = await self._price(single_text, entities, context_lines)
            if single is not None:
                cap = single.pct * self.calibration.monotonic_damping
                if price.pct > cap:
                    price.pct = cap
                    trace.append("consistency:monotonic_cap")
            price.confidence = "Low"

        return Resolved(Estimate(
            probability_pct=price.pct,
            confidence=price.confidence,
            source_type=price.source_type,
            label=text,
            assumptions=tuple(price.assumptions[:3]),
            trace=tuple(trace),
            event_key=f"fallback:{hashlib.sha1(text.encode('utf-8')).hexdigest()[:12]}",
        ))

    async def _price(
        self,
        text: str,
        entities: List[Entity],
        context_lines: List[str],
    ) -> Optional[FallbackPrice]:
        if self.provider is not None:
            result = await self.provider.estimate(text, context_lines)
            if result is not None:
                return FallbackPrice(
                    pct=sanity_caps(text, result.probability_pct, entities),
                    confidence=result.confidence,
                    source_type="generative",
                    assumptions=list(result.assumptions),
                )
        if not self.allow_heuristic:
            return None
        pct = sanity_caps(text, heuristic_base_pct(text, self.calibration), entities)
        return FallbackPrice(
            pct=pct,
            confidence="Low",
            source_type="heuristic",
            assumptions=[
                "Fast fallback estimate; no deterministic model covers this scenario.",
                "Hypothetical entertainment model with conservative priors.",
            ],
        )
