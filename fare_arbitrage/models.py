"""Data models used throughout the project."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

CENT = Decimal("0.01")


class CabinClass(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class Strategy(str, Enum):
    """Search strategies, declared in tie-break priority order."""

    STANDARD = "standard"
    SPLIT_TICKET = "split-ticket"
    NEARBY_AIRPORT = "nearby-airport"
    FLEXIBLE_DATE = "flexible-date"

    @property
    def priority(self) -> int:
        return _STRATEGY_ORDER.index(self)


_STRATEGY_ORDER = list(Strategy)


class Direction(str, Enum):
    OUTBOUND = "OUTBOUND"
    RETURN = "RETURN"


def money(value) -> Decimal:
    """Coerce *value* to a two-decimal ``Decimal``."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT)


@dataclass(frozen=True, slots=True)
class SearchRequest:
    origin: str
    destination: str
    departure_date: dt.date
    return_date: Optional[dt.date] = None
    adults: int = 1
    children: int = 0
    infants: int = 0
    cabin_class: CabinClass = CabinClass.ECONOMY
    currency: str = "GBP"

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "origin", self.origin.strip().upper())
        object.__setattr__(self, "destination", self.destination.strip().upper())
        object.__setattr__(self, "currency", self.currency.strip().upper())
        object.__setattr__(self, "cabin_class", CabinClass(self.cabin_class))

        for name in ("origin", "destination"):
            code = getattr(self, name)
            if len(code) != 3 or not code.isalpha():
                raise ValueError(f"{name} must be a 3-letter IATA code, got {code!r}")
        if self.origin == self.destination:
            raise ValueError("origin and destination must differ")
        if self.adults < 1:
            raise ValueError("at least one adult is required")
        if self.children < 0 or self.infants < 0:
            raise ValueError("passenger counts must be non-negative")
        if self.infants > self.adults:
            raise ValueError("each infant must travel with an adult")
        if self.return_date and self.return_date < self.departure_date:
            raise ValueError("return date cannot be earlier than departure date")

    @property
    def travellers(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def is_round_trip(self) -> bool:
        return self.return_date is not None

    def one_way(self) -> SearchRequest:
        return replace(self, return_date=None)

    def reversed_leg(self) -> SearchRequest:
        """Return the inbound leg as a one-way request."""
        if self.return_date is None:
            raise ValueError("one-way request has no return leg")
        return replace(
            self,
            origin=self.destination,
            destination=self.origin,
            departure_date=self.return_date,
            return_date=None,
        )

    def with_origin(self, origin: str) -> SearchRequest:
        return replace(self, origin=origin)

    def with_destination(self, destination: str) -> SearchRequest:
        return replace(self, destination=destination)

    def with_dates(
        self, departure_date: dt.date, return_date: Optional[dt.date]
    ) -> SearchRequest:
        return replace(self, departure_date=departure_date, return_date=return_date)

    def to_dict(self) -> dict:
        return {
            "origin": self.origin,
            "destination": self.destination,
            "departureDate": self.departure_date.isoformat(),
            "returnDate": self.return_date.isoformat() if self.return_date else None,
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "cabinClass": self.cabin_class.value,
            "currency": self.currency,
        }


@dataclass(frozen=True, slots=True)
class Segment:
    origin: str
    destination: str
    departure_at: dt.datetime
    arrival_at: dt.datetime
    carrier: str
    flight_number: str
    duration_minutes: int
    direction: Optional[Direction] = None

    @property
    def is_overnight(self) -> bool:
        return self.arrival_at.date() != self.departure_at.date()

    def to_dict(self) -> dict:
        return {
            "origin": self.origin,
            "destination": self.destination,
            "departureAt": self.departure_at.isoformat(),
            "arrivalAt": self.arrival_at.isoformat(),
            "carrier": self.carrier,
            "flightNumber": self.flight_number,
            "durationMinutes": self.duration_minutes,
            "direction": self.direction.value if self.direction else None,
        }


@dataclass(frozen=True, slots=True)
class Offer:
    id: str
    segments: Tuple[Segment, ...]
    total_price: Decimal
    currency: str
    per_person_price: Decimal
    strategy: Strategy = Strategy.STANDARD
    description: str = ""
    risks: Tuple[str, ...] = ()
    savings_vs_standard: Decimal = Decimal("0.00")
    # requests needed to re-quote this offer, one per upstream query
    quotes: Tuple[SearchRequest, ...] = field(default=(), compare=False)

    @property
    def origin(self) -> str:
        return self.segments[0].origin if self.segments else ""

    @property
    def destination(self) -> str:
        if not self.segments:
            return ""
        outbound = [s for s in self.segments if s.direction != Direction.RETURN]
        return (outbound or list(self.segments))[-1].destination

    @property
    def journey_minutes(self) -> int:
        if not self.segments:
            return 0
        span = self.segments[-1].arrival_at - self.segments[0].departure_at
        return int(span.total_seconds() // 60)

    def with_strategy(
        self,
        strategy: Strategy,
        *,
        offer_id: str,
        description: str,
        risks: Tuple[str, ...] = (),
        savings: Decimal = Decimal("0.00"),
    ) -> Offer:
        return replace(
            self,
            id=offer_id,
            strategy=strategy,
            description=description,
            risks=tuple(risks),
            savings_vs_standard=money(savings),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "strategy": self.strategy.value,
            "description": self.description,
            "totalPrice": str(self.total_price),
            "perPersonPrice": str(self.per_person_price),
            "currency": self.currency,
            "savingsVsStandard": str(self.savings_vs_standard),
            "risks": list(self.risks),
            "segments": [s.to_dict() for s in self.segments],
        }


def sort_key(offer: Offer) -> tuple:
    """Ascending total price, ties broken by strategy priority."""
    return (offer.total_price, offer.strategy.priority)


@dataclass(frozen=True, slots=True)
class PriceRange:
    min: Decimal
    max: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {"min": str(self.min), "max": str(self.max), "currency": self.currency}


__all__ = [
    "CabinClass",
    "Direction",
    "Offer",
    "PriceRange",
    "SearchRequest",
    "Segment",
    "Strategy",
    "money",
    "sort_key",
]
