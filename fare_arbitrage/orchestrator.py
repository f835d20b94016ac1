"""
orchestrator – runs every search strategy under the rate budget and ranks
the merged candidates.

Standard always runs first because every other strategy's savings are
measured against it.  The remaining strategies run in parallel, each one only
after its worst-case call count has been reserved in full.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .models import Offer, PriceRange, SearchRequest, Strategy, sort_key
from .quote_cache import QuoteCache
from .quote_client import AmadeusQuoteClient
from .rate_budget import RateBudget, Reservation
from .strategies import (
    Quoter,
    StrategyOutcome,
    StrategyRunner,
    default_runners,
    rank_offers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SearchMetadata:
    strategies_run: Tuple[str, ...]
    strategies_skipped: Dict[str, str]
    total_api_calls: int
    cache_hits: int
    errors: Tuple[str, ...]
    budget_remaining: int
    per_strategy: Dict[str, dict] = field(default_factory=dict)
    searched_at: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )
    elapsed_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "strategiesSearched": list(self.strategies_run),
            "strategiesSkipped": dict(self.strategies_skipped),
            "totalApiCalls": self.total_api_calls,
            "cacheHits": self.cache_hits,
            "errors": list(self.errors),
            "budgetRemaining": self.budget_remaining,
            "perStrategy": dict(self.per_strategy),
            "timestamp": self.searched_at.isoformat(),
            "elapsedMs": self.elapsed_ms,
        }


@dataclass(frozen=True, slots=True)
class SearchResult:
    request: SearchRequest
    standard: Optional[Offer]
    best: Optional[Offer]
    all_options: Tuple[Offer, ...]
    price_range: Optional[PriceRange]
    metadata: SearchMetadata

    def find(self, offer_id: str) -> Optional[Offer]:
        return next((off for off in self.all_options if off.id == offer_id), None)

    @property
    def savings(self):
        if self.standard is None or self.best is None:
            return None
        return self.standard.total_price - self.best.total_price

    def to_dict(self) -> dict:
        return {
            "standard": self.standard.to_dict() if self.standard else None,
            "best": self.best.to_dict() if self.best else None,
            "allOptions": [off.to_dict() for off in self.all_options],
            "priceRange": self.price_range.to_dict() if self.price_range else None,
            "metadata": self.metadata.to_dict(),
        }


class ArbitrageOrchestrator:
    """Search all strategies for one request and merge the results."""

    OPTIONAL_STRATEGIES = (
        Strategy.SPLIT_TICKET,
        Strategy.NEARBY_AIRPORT,
        Strategy.FLEXIBLE_DATE,
    )

    def __init__(
        self,
        client,
        cache: QuoteCache,
        budget: RateBudget,
        *,
        max_workers: int = 8,
        runners: Optional[Dict[Strategy, StrategyRunner]] = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.budget = budget
        self.max_workers = max_workers
        self.runners = runners or default_runners()
        missing = set(Strategy) - set(self.runners)
        if missing:
            raise ValueError(
                "missing runners for: " + ", ".join(sorted(s.value for s in missing))
            )

    @classmethod
    def from_settings(cls, settings, client=None) -> ArbitrageOrchestrator:
        return cls(
            client or AmadeusQuoteClient.from_settings(settings),
            QuoteCache(
                settings.quote_cache_ttl_s,
                max_entries=settings.quote_cache_max_entries,
            ),
            RateBudget(settings.rate_budget_ceiling),
            max_workers=settings.max_workers,
        )

    # ──────────────────────────────────────────────────────────

    def _run(
        self,
        strategy: Strategy,
        reservation: Reservation,
        request: SearchRequest,
        baseline,
    ) -> StrategyOutcome:
        with reservation:
            quoter = Quoter(
                self.client, self.cache, reservation, max_workers=self.max_workers
            )
            return self.runners[strategy].run(request, quoter, baseline)

    def search(self, request: SearchRequest) -> SearchResult:
        """Run every affordable strategy and rank what they found."""
        started = time.monotonic()
        logger.info(
            "Arbitrage search %s→%s %s%s",
            request.origin,
            request.destination,
            request.departure_date,
            f" / {request.return_date}" if request.return_date else "",
        )

        outcomes: Dict[Strategy, StrategyOutcome] = {}
        skipped: Dict[str, str] = {}

        standard_runner = self.runners[Strategy.STANDARD]
        reservation = self.budget.reserve(standard_runner.worst_case_calls(request))
        if reservation is None:
            logger.warning("Rate budget exhausted, standard search served from cache only")
            reservation = self.budget.empty_reservation()
        outcomes[Strategy.STANDARD] = self._run(
            Strategy.STANDARD, reservation, request, None
        )
        standard = min(outcomes[Strategy.STANDARD].offers, key=sort_key, default=None)
        baseline = standard.total_price if standard else None

        planned: List[Tuple[Strategy, Reservation]] = []
        for strategy in self.OPTIONAL_STRATEGIES:
            runner = self.runners[strategy]
            reason = None
            if baseline is None:
                reason = "no standard baseline"
            else:
                reason = runner.skip_reason(request)
            if reason is None:
                reservation = self.budget.reserve(runner.worst_case_calls(request))
                if reservation is None:
                    reason = "rate budget exhausted"
                else:
                    planned.append((strategy, reservation))
            if reason is not None:
                logger.info("Skipping %s: %s", strategy.value, reason)
                skipped[strategy.value] = reason

        if planned:
            with ThreadPoolExecutor(max_workers=len(planned)) as pool:
                futures = {
                    strategy: pool.submit(self._run, strategy, res, request, baseline)
                    for strategy, res in planned
                }
                for strategy, future in futures.items():
                    outcomes[strategy] = future.result()

        ordered = [outcomes[s] for s in Strategy if s in outcomes]
        all_options = tuple(
            rank_offers(off for outcome in ordered for off in outcome.offers)
        )
        best = all_options[0] if all_options else None
        price_range = None
        if all_options:
            price_range = PriceRange(
                min=all_options[0].total_price,
                max=max(off.total_price for off in all_options),
                currency=best.currency,
            )

        metadata = SearchMetadata(
            strategies_run=tuple(outcome.strategy.value for outcome in ordered),
            strategies_skipped=skipped,
            total_api_calls=sum(o.api_calls for o in ordered),
            cache_hits=sum(o.cache_hits for o in ordered),
            errors=tuple(err for o in ordered for err in o.errors),
            budget_remaining=self.budget.remaining,
            per_strategy={o.strategy.value: o.to_dict() for o in ordered},
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        result = SearchResult(
            request=request,
            standard=standard,
            best=best,
            all_options=all_options,
            price_range=price_range,
            metadata=metadata,
        )

        logger.info(
            "Search complete: %d option(s), %d API call(s), %d cache hit(s), strategies: %s",
            len(all_options),
            metadata.total_api_calls,
            metadata.cache_hits,
            ", ".join(metadata.strategies_run),
        )
        if result.savings:
            logger.info("Best saves %s %s vs standard", best.currency, result.savings)
        return result


__all__ = ["ArbitrageOrchestrator", "SearchMetadata", "SearchResult"]
