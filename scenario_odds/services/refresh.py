"""
Background refresh jobs.

Runs on an APScheduler AsyncIOScheduler bound to the engine's event loop,
decoupled from request latency:

  roster_refresh     every ROSTER_REFRESH_HOURS, rebuilds the roster index
  market_refresh     every MARKET_REFERENCE_TTL_SECONDS, re-fetches the
                     outright boards and purges expired cache entries

Both jobs log and swallow provider failures; the previous roster index and
cached boards stay in place until the next successful run.
"""

import logging
import os
from typing import TYPE_CHECKING, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from scenario_odds.schemas import RefreshStatus

if TYPE_CHECKING:
    from scenario_odds.engine import ScenarioEngine

load_dotenv()

logger = logging.getLogger(__name__)

ROSTER_REFRESH_HOURS = float(os.getenv("ROSTER_REFRESH_HOURS", "12"))
MARKET_REFERENCE_TTL_SECONDS = float(os.getenv("MARKET_REFERENCE_TTL_SECONDS", "600"))


async def roster_refresh_job(engine: "ScenarioEngine") -> RefreshStatus:
    """Rebuild the roster index from the live feed."""
    ok = await engine.roster.refresh_async()
    detail = f"{len(engine.roster.index)} players"
    if ok:
        logger.info("Roster refresh complete: %s", detail)
    else:
        logger.warning("Roster refresh failed; keeping %s", detail)
    return RefreshStatus(job="roster_refresh", ok=ok, detail=detail)


async def market_refresh_job(engine: "ScenarioEngine") -> RefreshStatus:
    """Re-fetch outright boards, then purge expired cache entries."""
    quoted = await engine.markets.refresh()
    purged = engine.cache.purge_expired()
    logger.info("Market refresh: %d team lines, %d expired cache entries purged", quoted, purged)
    return RefreshStatus(
        job="market_refresh",
        ok=quoted > 0 or not engine.markets.available,
        detail=f"{quoted} lines, {purged} purged",
    )


class BackgroundRefresher:
    """Owns the scheduler and its two refresh jobs."""

    def __init__(
        self,
        engine: "ScenarioEngine",
        scheduler: Optional[AsyncIOScheduler] = None,
        roster_hours: Optional[float] = None,
        market_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.scheduler = scheduler or AsyncIOScheduler()
        self.roster_hours = roster_hours if roster_hours is not None else ROSTER_REFRESH_HOURS
        self.market_seconds = (
            market_seconds if market_seconds is not None else MARKET_REFERENCE_TTL_SECONDS
        )

    def register(self) -> None:
        self.scheduler.add_job(
            roster_refresh_job,
            IntervalTrigger(hours=self.roster_hours),
            args=[self.engine],
            id="roster_refresh",
            name="Roster Index Refresh",
            replace_existing=True,
        )
        self.scheduler.add_job(
            market_refresh_job,
            IntervalTrigger(seconds=self.market_seconds),
            args=[self.engine],
            id="market_refresh",
            name="Market Reference Refresh",
            replace_existing=True,
        )

    def start(self) -> None:
        """Register jobs and start.  Must be called inside a running event loop."""
        self.register()
        self.scheduler.start()
        logger.info(
            "Refresh scheduler started: roster every %.1fh, markets every %.0fs",
            self.roster_hours, self.market_seconds,
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Refresh scheduler stopped")

    def status(self) -> Dict:
        jobs: List[Dict] = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return {"running": self.scheduler.running, "jobs": jobs}
