"""tasks.py – housekeeping schedule on APScheduler.

• every ``session_sweep_interval_min`` – drop expired and cancelled booking sessions
• every ``quote_cache_ttl_s`` – drop stale quotes from the cache
• monthly on ``billing_reset_day`` at 00:00 UTC – start a new rate-budget period

Sessions, cache and budget live in memory, so the jobs must run in the process
that serves searches and bookings through the same engine.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .booking_engine import BookingEngine
from .config import Settings

logger = logging.getLogger(__name__)


def build_scheduler(engine: BookingEngine, settings: Settings) -> BackgroundScheduler:
    """Register the housekeeping jobs for *engine* on a fresh scheduler."""
    sched = BackgroundScheduler(timezone="UTC")
    orchestrator = engine.orchestrator

    def session_sweep_job() -> None:
        """Remove expired and cancelled booking sessions."""
        removed = engine.cleanup_expired_sessions()
        logger.debug("Session sweep removed %d session(s)", removed)

    def cache_sweep_job() -> None:
        """Remove stale quotes."""
        orchestrator.cache.sweep()

    def budget_reset_job() -> None:
        """Start a new billing period."""
        orchestrator.budget.start_new_period()

    sched.add_job(
        session_sweep_job,
        "interval",
        minutes=settings.session_sweep_interval_min,
        id="session_sweep",
    )
    sched.add_job(
        cache_sweep_job,
        "interval",
        seconds=settings.quote_cache_ttl_s,
        id="cache_sweep",
    )
    sched.add_job(
        budget_reset_job,
        "cron",
        day=settings.billing_reset_day,
        hour=0,
        minute=0,
        id="budget_reset",
    )
    logger.info(
        "Scheduled session sweep every %d min, cache sweep every %d s, budget reset on day %d",
        settings.session_sweep_interval_min,
        settings.quote_cache_ttl_s,
        settings.billing_reset_day,
    )
    return sched


def start_housekeeping(engine: BookingEngine, settings: Settings) -> BackgroundScheduler:
    """Start the housekeeping jobs beside *engine*; call ``shutdown()`` on exit."""
    sched = build_scheduler(engine, settings)
    sched.start()
    logger.info("Housekeeping started for booking engine")
    return sched


__all__ = ["build_scheduler", "start_housekeeping"]
