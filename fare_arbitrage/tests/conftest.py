import datetime as dt
import threading
from decimal import Decimal

import pytest

from fare_arbitrage.booking_engine import BookingEngine
from fare_arbitrage.booking_store import SessionStore
from fare_arbitrage.models import Offer, SearchRequest, Segment, money
from fare_arbitrage.orchestrator import ArbitrageOrchestrator
from fare_arbitrage.quote_cache import QuoteCache
from fare_arbitrage.rate_budget import RateBudget


def _make_offer(
    request: SearchRequest,
    price,
    *,
    offer_id: str = "1",
    flight_number: str = "BA304",
    carrier: str = "BA",
    currency: str | None = None,
) -> Offer:
    dep = dt.datetime.combine(request.departure_date, dt.time(8, 0))
    segments = [
        Segment(request.origin, request.destination, dep,
                dep + dt.timedelta(minutes=75), carrier, flight_number, 75)
    ]
    if request.return_date:
        back = dt.datetime.combine(request.return_date, dt.time(18, 0))
        segments.append(
            Segment(request.destination, request.origin, back,
                    back + dt.timedelta(minutes=80), carrier, f"{flight_number}R", 80)
        )
    total = money(price)
    return Offer(
        id=offer_id,
        segments=tuple(segments),
        total_price=total,
        currency=currency or request.currency,
        per_person_price=money(total / Decimal(request.travellers)),
        description=f"Direct booking via {carrier}",
        quotes=(request,),
    )


class FakeQuoteClient:
    """Answers every query through ``route(request)``; records the requests.

    ``route`` returns a list of offers, or an exception instance to raise.
    """

    def __init__(self, route=None):
        self.route = route or (lambda request: [])
        self.calls = []
        self._lock = threading.Lock()

    def search_offers(self, request):
        with self._lock:
            self.calls.append(request)
        answer = self.route(request)
        if isinstance(answer, Exception):
            raise answer
        return list(answer)


class Clock:
    def __init__(self, now: dt.datetime):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += dt.timedelta(**delta)


@pytest.fixture
def make_offer():
    return _make_offer


@pytest.fixture
def future():
    """A departure date comfortably in the future."""
    return dt.date.today() + dt.timedelta(days=30)


@pytest.fixture
def quote_client():
    return FakeQuoteClient()


@pytest.fixture
def budget():
    return RateBudget(1800)


@pytest.fixture
def orchestrator(quote_client, budget):
    return ArbitrageOrchestrator(quote_client, QuoteCache(), budget, max_workers=4)


@pytest.fixture
def clock():
    return Clock(dt.datetime.now(dt.timezone.utc))


@pytest.fixture
def engine(orchestrator, clock):
    return BookingEngine(orchestrator, store=SessionStore(clock))
