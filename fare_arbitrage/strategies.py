# -*- coding: utf-8 -*-
"""
strategies – the four search strategies and the cache/budget-aware quoter.

Every runner plans a list of independent sub-queries, runs them concurrently
through a :class:`Quoter` and turns the quotes into surfaced offers.  A failed
sub-query is recorded and never aborts its siblings.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from .airports import nearby_airports
from .models import (
    Direction,
    Offer,
    SearchRequest,
    Strategy,
    money,
    sort_key,
)
from .quote_cache import QuoteCache, cache_key
from .quote_client import ProviderError
from .rate_budget import Reservation

logger = logging.getLogger(__name__)

DEPARTURE_OFFSETS = (-3, -2, -1, 1, 2, 3)
RETURN_OFFSETS = (-2, -1, 1, 2)

SPLIT_TICKET_RISKS = (
    "No airline protection if you miss a connection between tickets",
    "Bags must be collected and re-checked between tickets",
    "Separate check-in required for each ticket",
)
FLEXIBLE_DATE_RISKS = (
    "Date change required",
    "May affect accommodation plans",
)


class SubQuery(NamedTuple):
    label: str
    request: SearchRequest
    context: Any = None


@dataclass(frozen=True, slots=True)
class StrategyOutcome:
    strategy: Strategy
    offers: Tuple[Offer, ...]
    api_calls: int
    cache_hits: int
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "offers": len(self.offers),
            "apiCalls": self.api_calls,
            "cacheHits": self.cache_hits,
            "errors": list(self.errors),
        }


class Quoter:
    """Cache-checked upstream queries charged against one reservation."""

    def __init__(
        self,
        client,
        cache: QuoteCache,
        reservation: Reservation,
        *,
        max_workers: int = 8,
    ) -> None:
        self.client = client
        self.cache = cache
        self.reservation = reservation
        self.max_workers = max_workers
        self.api_calls = 0
        self.cache_hits = 0
        self.errors: List[str] = []
        self._lock = threading.Lock()

    def quote(self, label: str, request: SearchRequest) -> Tuple[Offer, ...]:
        """Return offers for *request*; raises ``ProviderError`` on failure."""
        key = cache_key(label, request)
        cached = self.cache.get(key)
        if cached is not None:
            with self._lock:
                self.cache_hits += 1
            return cached

        self.reservation.charge()
        with self._lock:
            self.api_calls += 1
        offers = tuple(self.client.search_offers(request))
        # empty results are not cached, the next search retries them
        if offers:
            self.cache.put(key, offers)
        return offers

    def _safe_quote(self, sub: SubQuery) -> Optional[Tuple[Offer, ...]]:
        try:
            return self.quote(sub.label, sub.request)
        except ProviderError as exc:
            logger.warning("Sub-query %s failed: %s", sub.label, exc)
            with self._lock:
                self.errors.append(f"{sub.label}: {exc}")
            return None

    def quote_all(
        self, plan: List[SubQuery]
    ) -> List[Tuple[SubQuery, Optional[Tuple[Offer, ...]]]]:
        """Run *plan* concurrently; results keep the plan's order."""
        if len(plan) <= 1:
            return [(sub, self._safe_quote(sub)) for sub in plan]
        workers = min(len(plan), self.max_workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self._safe_quote, plan))
        return list(zip(plan, results))


def _cheapest(offers: Optional[Iterable[Offer]]) -> Optional[Offer]:
    if not offers:
        return None
    return min(offers, key=lambda off: off.total_price)


def _day_word(days: int) -> str:
    return "day" if abs(days) == 1 else "days"


def rank_offers(offers: Iterable[Offer]) -> List[Offer]:
    """Ascending total price; exact ties keep strategy priority order."""
    return sorted(offers, key=sort_key)


# ────────────────────────────────────────────────────────────────
# Runners
# ────────────────────────────────────────────────────────────────


class StrategyRunner:
    strategy: Strategy

    def plan(self, request: SearchRequest) -> List[SubQuery]:
        raise NotImplementedError

    def skip_reason(self, request: SearchRequest) -> Optional[str]:
        """Why this strategy cannot run for *request*, if it cannot."""
        return None if self.plan(request) else "nothing to query"

    def worst_case_calls(self, request: SearchRequest) -> int:
        return len(self.plan(request))

    def build_offers(
        self,
        request: SearchRequest,
        results: List[Tuple[SubQuery, Optional[Tuple[Offer, ...]]]],
        baseline: Optional[Decimal],
    ) -> List[Offer]:
        raise NotImplementedError

    def run(
        self,
        request: SearchRequest,
        quoter: Quoter,
        baseline: Optional[Decimal] = None,
    ) -> StrategyOutcome:
        results = quoter.quote_all(self.plan(request))
        offers = self.build_offers(request, results, baseline)
        logger.info(
            "%s: %d offer(s), %d call(s), %d cache hit(s), %d error(s)",
            self.strategy.value,
            len(offers),
            quoter.api_calls,
            quoter.cache_hits,
            len(quoter.errors),
        )
        return StrategyOutcome(
            strategy=self.strategy,
            offers=tuple(offers),
            api_calls=quoter.api_calls,
            cache_hits=quoter.cache_hits,
            errors=tuple(quoter.errors),
        )


class StandardRunner(StrategyRunner):
    """The request exactly as given; its cheapest offer is the baseline."""

    strategy = Strategy.STANDARD

    def plan(self, request: SearchRequest) -> List[SubQuery]:
        return [SubQuery("standard", request)]

    def build_offers(self, request, results, baseline):
        trip = "round-trip" if request.is_round_trip else "one-way"
        offers = []
        for sub, quoted in results:
            for idx, off in enumerate(quoted or ()):
                carrier = off.segments[0].carrier if off.segments else "unknown carrier"
                offers.append(
                    off.with_strategy(
                        self.strategy,
                        offer_id=f"{sub.label}-{off.id or idx + 1}",
                        description=f"Standard {trip} booking via {carrier}",
                    )
                )
        return offers


class SplitTicketRunner(StrategyRunner):
    """Two one-way tickets combined into one round trip."""

    strategy = Strategy.SPLIT_TICKET

    def skip_reason(self, request):
        if not request.is_round_trip:
            return "no return date"
        return None

    def plan(self, request):
        if not request.is_round_trip:
            return []
        return [
            SubQuery("split-outbound", request.one_way(), Direction.OUTBOUND),
            SubQuery("split-return", request.reversed_leg(), Direction.RETURN),
        ]

    def build_offers(self, request, results, baseline):
        legs: Dict[Direction, Offer] = {}
        for sub, quoted in results:
            cheapest = _cheapest(quoted)
            if cheapest is None:
                return []
            legs[sub.context] = cheapest
        if len(legs) != 2:
            return []

        out, ret = legs[Direction.OUTBOUND], legs[Direction.RETURN]
        if out.currency != ret.currency:
            logger.warning(
                "Split ticket legs priced in %s and %s, not combined",
                out.currency,
                ret.currency,
            )
            return []

        total = money(out.total_price + ret.total_price)
        if baseline is None or total >= baseline:
            return []

        segments = tuple(
            [replace(s, direction=Direction.OUTBOUND) for s in out.segments]
            + [replace(s, direction=Direction.RETURN) for s in ret.segments]
        )
        combined = Offer(
            id=f"split-ticket-{out.id}+{ret.id}",
            segments=segments,
            total_price=total,
            currency=out.currency,
            per_person_price=money(total / Decimal(request.travellers)),
            strategy=self.strategy,
            description=(
                "Separate one-way tickets: "
                f"{request.origin}→{request.destination} on {request.departure_date} "
                f"and {request.destination}→{request.origin} on {request.return_date}"
            ),
            risks=SPLIT_TICKET_RISKS,
            savings_vs_standard=money(baseline - total),
            quotes=tuple(sub.request for sub, _ in results),
        )
        return [combined]


class NearbyAirportRunner(StrategyRunner):
    """One query per alternate origin and per alternate destination."""

    strategy = Strategy.NEARBY_AIRPORT

    def skip_reason(self, request):
        if not self.plan(request):
            return "no nearby airports"
        return None

    def plan(self, request):
        plan = [
            SubQuery(f"nearby-origin-{alt.code}", request.with_origin(alt.code), ("origin", alt))
            for alt in nearby_airports(request.origin)
            if alt.code != request.destination
        ]
        plan += [
            SubQuery(f"nearby-dest-{alt.code}", request.with_destination(alt.code), ("destination", alt))
            for alt in nearby_airports(request.destination)
            if alt.code != request.origin
        ]
        return plan

    def build_offers(self, request, results, baseline):
        offers = []
        for sub, quoted in results:
            cheapest = _cheapest(quoted)
            if cheapest is None or baseline is None:
                continue
            savings = baseline - cheapest.total_price
            if savings <= 0:
                continue

            leg, alt = sub.context
            if leg == "origin":
                description = f"Fly from {alt.name} ({alt.code}) instead of {request.origin}"
                risks = (
                    f"Origin airport changed: departs from {alt.code} instead of {request.origin}",
                )
            else:
                description = f"Fly to {alt.name} ({alt.code}) instead of {request.destination}"
                risks = (
                    f"Destination airport changed: arrives at {alt.code} instead of {request.destination}",
                )
            risks += (
                f"Ground transport to/from {alt.code} ({alt.distance_km} km away) "
                "is not included in the displayed price",
                "More complex itinerary",
            )
            offers.append(
                cheapest.with_strategy(
                    self.strategy,
                    offer_id=f"{sub.label}-{cheapest.id}",
                    description=description,
                    risks=risks,
                    savings=savings,
                )
            )
        return offers


class FlexibleDateRunner(StrategyRunner):
    """Shift the departure (±1..3 days) or the return (±1..2 days)."""

    strategy = Strategy.FLEXIBLE_DATE

    def __init__(self, today: Callable[[], dt.date] = dt.date.today) -> None:
        self._today = today

    def skip_reason(self, request):
        if not self.plan(request):
            return "no valid alternative dates"
        return None

    def plan(self, request):
        today = self._today()
        plan = []
        for offset in DEPARTURE_OFFSETS:
            dep = request.departure_date + dt.timedelta(days=offset)
            if dep < today or (request.return_date and dep > request.return_date):
                continue
            plan.append(
                SubQuery(
                    f"flex-dep{offset:+d}",
                    request.with_dates(dep, request.return_date),
                    ("depart", offset, dep),
                )
            )
        if request.return_date:
            for offset in RETURN_OFFSETS:
                ret = request.return_date + dt.timedelta(days=offset)
                if ret < request.departure_date or ret < today:
                    continue
                plan.append(
                    SubQuery(
                        f"flex-ret{offset:+d}",
                        request.with_dates(request.departure_date, ret),
                        ("return", offset, ret),
                    )
                )
        return plan

    def build_offers(self, request, results, baseline):
        offers = []
        for sub, quoted in results:
            cheapest = _cheapest(quoted)
            if cheapest is None or baseline is None:
                continue
            savings = baseline - cheapest.total_price
            if savings <= 0:
                continue

            which, offset, new_date = sub.context
            when = "later" if offset > 0 else "earlier"
            description = (
                f"{'Depart' if which == 'depart' else 'Return'} "
                f"{abs(offset)} {_day_word(offset)} {when} on {new_date.isoformat()}"
            )
            offers.append(
                cheapest.with_strategy(
                    self.strategy,
                    offer_id=f"{sub.label}-{cheapest.id}",
                    description=description,
                    risks=FLEXIBLE_DATE_RISKS,
                    savings=savings,
                )
            )
        return offers


def default_runners() -> Dict[Strategy, StrategyRunner]:
    runners: Dict[Strategy, StrategyRunner] = {
        Strategy.STANDARD: StandardRunner(),
        Strategy.SPLIT_TICKET: SplitTicketRunner(),
        Strategy.NEARBY_AIRPORT: NearbyAirportRunner(),
        Strategy.FLEXIBLE_DATE: FlexibleDateRunner(),
    }
    return runners


__all__ = [
    "FlexibleDateRunner",
    "NearbyAirportRunner",
    "Quoter",
    "SplitTicketRunner",
    "StandardRunner",
    "StrategyOutcome",
    "StrategyRunner",
    "SubQuery",
    "default_runners",
    "rank_offers",
]
