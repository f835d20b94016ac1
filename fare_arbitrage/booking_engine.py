# -*- coding: utf-8 -*-
"""
booking_engine – turns a chosen offer into a booking through an explicit
state machine:

    searching → selecting → validating → booking → confirmed

``cancelled`` is reachable from every non-terminal state and ``expired`` is
entered automatically once a session outlives its expiry.  Every operation
takes the session's own lock, so concurrent calls on one id are serialized.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import random
import re
import string
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .airports import is_international
from .booking_store import SessionStore, utcnow
from .models import CENT, Direction, Offer, SearchRequest, Segment
from .orchestrator import ArbitrageOrchestrator, SearchResult
from .quote_client import ProviderError, ProviderUnavailable
from .rate_budget import RateBudget

logger = logging.getLogger(__name__)

SESSION_TIMEOUT_MINUTES = 30
PRICE_LOCK_MINUTES = 5
PRICE_ALERT_RATIO = Decimal("1.10")
PASSPORT_VALIDITY_MONTHS = 6

_REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9][0-9 ()-]{5,18}[0-9]$")


# ────────────────────────────────────────────────────────────────
# Types
# ────────────────────────────────────────────────────────────────


class BookingStatus(str, Enum):
    SEARCHING = "searching"
    SELECTING = "selecting"
    VALIDATING = "validating"
    BOOKING = "booking"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED}
)

PROGRESS = {
    BookingStatus.SEARCHING: 10,
    BookingStatus.SELECTING: 30,
    BookingStatus.VALIDATING: 50,
    BookingStatus.BOOKING: 70,
    BookingStatus.CONFIRMED: 100,
}


class PassengerType(str, Enum):
    ADULT = "adult"
    CHILD = "child"
    INFANT = "infant"


@dataclass(frozen=True, slots=True)
class PassengerDetails:
    first_name: str
    last_name: str
    date_of_birth: str
    nationality: str
    type: PassengerType = PassengerType.ADULT
    title: str = ""
    passport_number: Optional[str] = None
    passport_expiry: Optional[str] = None
    passport_country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    special_requests: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


CARD_METHODS = frozenset({PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PaymentDetails:
    method: PaymentMethod
    currency: str
    amount: Decimal
    card_number: Optional[str] = None
    card_holder: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None

    def __post_init__(self) -> None:
        # kept as given, never rounded to cents
        amount = str(self.amount) if isinstance(self.amount, float) else self.amount
        try:
            object.__setattr__(self, "amount", Decimal(amount))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValueError(f"invalid payment amount: {self.amount!r}") from exc
        object.__setattr__(self, "method", PaymentMethod(self.method))
        object.__setattr__(self, "status", PaymentStatus(self.status))
        object.__setattr__(self, "currency", self.currency.strip().upper())


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    seats_available: Optional[bool]
    price_changed: bool
    old_price: Decimal
    new_price: Optional[Decimal]
    currency: str
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()
    validated_at: dt.datetime = field(default_factory=utcnow)

    @property
    def price_delta(self) -> Optional[Decimal]:
        if self.new_price is None:
            return None
        return self.new_price - self.old_price

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "seatsAvailable": self.seats_available,
            "priceChanged": self.price_changed,
            "oldPrice": str(self.old_price),
            "newPrice": str(self.new_price) if self.new_price is not None else None,
            "priceDelta": str(self.price_delta) if self.price_delta is not None else None,
            "currency": self.currency,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "validatedAt": self.validated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ETicket:
    passenger_id: str
    passenger_name: str
    ticket_number: str
    segments: Tuple[Segment, ...]


@dataclass(frozen=True, slots=True)
class Confirmation:
    booking_reference: str
    e_tickets: Tuple[ETicket, ...]
    issued_at: dt.datetime
    transaction_id: Optional[str]
    total_journey_minutes: int

    @property
    def ticket_numbers(self) -> List[str]:
        return [t.ticket_number for t in self.e_tickets]

    def to_dict(self) -> dict:
        return {
            "bookingReference": self.booking_reference,
            "ticketNumbers": self.ticket_numbers,
            "issuedAt": self.issued_at.isoformat(),
            "transactionId": self.transaction_id,
            "totalJourneyMinutes": self.total_journey_minutes,
        }


@dataclass(slots=True)
class BookingSession:
    id: str
    created_at: dt.datetime
    expires_at: dt.datetime
    user_timezone: str = "UTC"
    status: BookingStatus = BookingStatus.SEARCHING
    search_request: Optional[SearchRequest] = None
    candidates: Tuple[Offer, ...] = ()
    selected: Optional[Offer] = None
    price_locked_until: Optional[dt.datetime] = None
    validation: Optional[ValidationResult] = None
    passengers: Tuple[PassengerDetails, ...] = ()
    payment: Optional[PaymentDetails] = None
    confirmation: Optional[Confirmation] = None
    cancel_reason: Optional[str] = None
    updated_at: Optional[dt.datetime] = None

    def is_expired(self, now: dt.datetime) -> bool:
        return self.status == BookingStatus.EXPIRED or now > self.expires_at

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    def local_time(self, moment: dt.datetime) -> dt.datetime:
        """*moment* (UTC) as seen in the user's timezone."""
        return moment.astimezone(ZoneInfo(self.user_timezone))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": booking_progress(self),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "expiresAtLocal": self.local_time(self.expires_at).isoformat(),
            "userTimezone": self.user_timezone,
            "searchParams": self.search_request.to_dict() if self.search_request else None,
            "candidates": [off.to_dict() for off in self.candidates],
            "selected": self.selected.to_dict() if self.selected else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "passengers": len(self.passengers),
            "paymentStatus": self.payment.status.value if self.payment else None,
            "confirmation": self.confirmation.to_dict() if self.confirmation else None,
        }


@dataclass(frozen=True, slots=True)
class Selection:
    session: BookingSession
    offer: Offer
    warnings: Tuple[str, ...] = ()


# ────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────


class BookingError(Exception):
    """Base class of errors surfaced verbatim to the booking caller."""

    code = "BOOKING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        recoverable: bool = False,
        suggested_action: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
                "suggestedAction": self.suggested_action,
                "details": self.details,
            },
        }


class ValidationError(BookingError):
    """Malformed passenger or payment input; carries every offending field."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: Sequence[str], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(
            message or f"{len(self.errors)} validation error(s)",
            recoverable=True,
            suggested_action="Correct the listed fields and resubmit",
            details={"errors": self.errors},
        )


class StateError(BookingError):
    """Operation attempted from the wrong booking state."""

    code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        current_state: BookingStatus,
        *,
        code: Optional[str] = None,
        recoverable: bool = False,
        suggested_action: Optional[str] = None,
    ) -> None:
        self.current_state = current_state
        super().__init__(
            f"{message} (current state: {current_state.value})",
            code=code,
            recoverable=recoverable,
            suggested_action=suggested_action,
            details={"currentState": current_state.value},
        )


class SessionExpiredError(StateError):
    code = "BOOKING_EXPIRED"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Booking session {session_id} has expired",
            BookingStatus.EXPIRED,
            recoverable=True,
            suggested_action="Restart booking with saved search parameters",
        )


class NotFoundError(BookingError):
    code = "BOOKING_NOT_FOUND"


class AmountMismatchError(BookingError):
    code = "PAYMENT_AMOUNT_MISMATCH"

    def __init__(self, amount: Decimal, expected: Decimal, currency: str) -> None:
        self.amount = amount
        self.expected = expected
        super().__init__(
            f"Payment amount {amount} does not match flight price {expected} {currency}",
            recoverable=True,
            suggested_action="Update payment amount to match flight price",
            details={"amount": str(amount), "expected": str(expected), "currency": currency},
        )


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────


def booking_progress(session: BookingSession) -> int:
    """Display-only completion percentage for the session's state."""
    return PROGRESS.get(session.status, 0)


def can_modify(session: BookingSession, now: Optional[dt.datetime] = None) -> bool:
    now = now or utcnow()
    return not session.status.is_terminal and not session.is_expired(now)


def add_months(day: dt.date, months: int) -> dt.date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(day.day, last_day))


def _parse_date(value: Optional[str]) -> Optional[dt.date]:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _last_travel_date(offer: Optional[Offer], request: Optional[SearchRequest]) -> Optional[dt.date]:
    if offer and offer.segments:
        return offer.segments[-1].arrival_at.date()
    if request:
        return request.return_date or request.departure_date
    return None


def validate_passengers(
    passengers: Sequence[PassengerDetails],
    *,
    request: Optional[SearchRequest] = None,
    offer: Optional[Offer] = None,
    today: Optional[dt.date] = None,
) -> List[str]:
    """Return every problem found in *passengers*; empty when valid."""
    today = today or dt.date.today()
    errors: List[str] = []

    if not passengers:
        return ["At least one passenger is required"]
    if request and len(passengers) != request.travellers:
        errors.append(
            f"Expected {request.travellers} passenger(s), got {len(passengers)}"
        )

    if offer and offer.segments:
        airports = [code for seg in offer.segments for code in (seg.origin, seg.destination)]
    elif request:
        airports = [request.origin, request.destination]
    else:
        airports = []
    international = bool(airports) and is_international(airports)
    travel_end = _last_travel_date(offer, request) or today

    for idx, pax in enumerate(passengers, start=1):
        prefix = f"Passenger {idx}"
        if not (pax.first_name or "").strip():
            errors.append(f"{prefix}: first name is required")
        if not (pax.last_name or "").strip():
            errors.append(f"{prefix}: last name is required")

        if not pax.date_of_birth:
            errors.append(f"{prefix}: date of birth is required")
        else:
            dob = _parse_date(pax.date_of_birth)
            if dob is None:
                errors.append(f"{prefix}: date of birth must be YYYY-MM-DD")
            elif dob > today:
                errors.append(f"{prefix}: date of birth cannot be in the future")

        if not (pax.nationality or "").strip():
            errors.append(f"{prefix}: nationality is required")

        if international:
            if not (pax.passport_number or "").strip():
                errors.append(f"{prefix}: passport number required for international travel")
            if not (pax.passport_country or "").strip():
                errors.append(f"{prefix}: passport issuing country required for international travel")
            if not pax.passport_expiry:
                errors.append(f"{prefix}: passport expiry date required")
            else:
                expiry = _parse_date(pax.passport_expiry)
                if expiry is None:
                    errors.append(f"{prefix}: passport expiry must be YYYY-MM-DD")
                elif expiry < add_months(travel_end, PASSPORT_VALIDITY_MONTHS):
                    errors.append(
                        f"{prefix}: passport must be valid for at least "
                        f"{PASSPORT_VALIDITY_MONTHS} months after travel"
                    )

        if idx == 1:
            if not pax.email:
                errors.append(f"{prefix}: email is required for the lead passenger")
            elif not _EMAIL_RE.match(pax.email):
                errors.append(f"{prefix}: email address is not valid")
            if pax.phone and not _PHONE_RE.match(pax.phone.strip()):
                errors.append(f"{prefix}: phone number is not valid")

    return errors


def _booking_reference() -> str:
    return "".join(random.choices(_REFERENCE_ALPHABET, k=6))


def _ticket_number() -> str:
    return "157" + "".join(random.choices(string.digits, k=10))


def _flight_numbers(segments: Sequence[Segment]) -> Tuple[str, ...]:
    return tuple(seg.flight_number for seg in segments)


# ────────────────────────────────────────────────────────────────
# Engine
# ────────────────────────────────────────────────────────────────


class BookingEngine:
    """Drives booking sessions through the booking state machine."""

    def __init__(
        self,
        orchestrator: ArbitrageOrchestrator,
        client=None,
        store: Optional[SessionStore] = None,
        budget: Optional[RateBudget] = None,
        *,
        session_ttl_minutes: int = SESSION_TIMEOUT_MINUTES,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.client = client or orchestrator.client
        self.budget = budget or orchestrator.budget
        self.store = store if store is not None else SessionStore(clock or utcnow)
        self.session_ttl = dt.timedelta(minutes=session_ttl_minutes)

    @classmethod
    def from_settings(cls, settings, client=None) -> BookingEngine:
        orchestrator = ArbitrageOrchestrator.from_settings(settings, client)
        return cls(orchestrator, session_ttl_minutes=settings.session_ttl_minutes)

    def _now(self) -> dt.datetime:
        return self.store.now()

    @contextmanager
    def _session(
        self, session_id: str, *, allow_terminal: bool = False
    ) -> Iterator[BookingSession]:
        with self.store.locked(session_id) as session:
            if session is None:
                raise NotFoundError(f"Booking session {session_id} not found")
            now = self._now()
            if not session.status.is_terminal and session.is_expired(now):
                logger.info("Booking %s expired at %s", session.id, session.expires_at)
                session.status = BookingStatus.EXPIRED
            if not allow_terminal:
                if session.status == BookingStatus.EXPIRED:
                    raise SessionExpiredError(session.id)
                if session.status.is_terminal:
                    raise StateError(
                        f"Booking {session.id} is {session.status.value}",
                        session.status,
                    )
            yield session
            session.updated_at = now

    @staticmethod
    def _require(session: BookingSession, *allowed: BookingStatus, action: str) -> None:
        if session.status not in allowed:
            raise StateError(
                f"Cannot {action}; expected "
                + " or ".join(s.value for s in allowed),
                session.status,
            )

    def _transition(self, session: BookingSession, status: BookingStatus) -> None:
        logger.info("Booking %s: %s → %s", session.id, session.status.value, status.value)
        session.status = status

    # ── lifecycle ────────────────────────────────────────────────

    def create_booking(
        self, timezone: str = "UTC", search_request: Optional[SearchRequest] = None
    ) -> BookingSession:
        timezone = timezone or "UTC"
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError([f"Unknown timezone: {timezone}"])

        now = self._now()
        session = BookingSession(
            id=str(uuid.uuid4()),
            created_at=now,
            expires_at=now + self.session_ttl,
            user_timezone=timezone,
            search_request=search_request,
            updated_at=now,
        )
        self.store.put(session)
        logger.info("Created booking %s (expires %s)", session.id, session.expires_at)
        return session

    def get_booking(self, session_id: str) -> Optional[BookingSession]:
        """Return a live session; expired and cancelled sessions are hidden."""
        return self.store.get(session_id)

    # ── state machine ────────────────────────────────────────────

    def search_flights(self, session_id: str, request: SearchRequest) -> SearchResult:
        with self._session(session_id) as session:
            self._require(session, BookingStatus.SEARCHING, action="search flights")
            session.search_request = request
            result = self.orchestrator.search(request)

            if not result.all_options:
                if result.metadata.errors:
                    raise ProviderUnavailable(
                        "No flights could be quoted: " + "; ".join(result.metadata.errors)
                    )
                logger.info("Booking %s: no flights found, still searching", session.id)
                return result

            session.candidates = result.all_options
            session.selected = None
            self._transition(session, BookingStatus.SELECTING)
            return result

    def select_flight(self, session_id: str, offer_id: str) -> Selection:
        with self._session(session_id) as session:
            # re-selection is allowed until passenger details are in
            self._require(
                session,
                BookingStatus.SELECTING,
                BookingStatus.VALIDATING,
                action="select a flight",
            )
            offer = next((off for off in session.candidates if off.id == offer_id), None)
            if offer is None:
                raise NotFoundError(
                    f"Flight {offer_id} not found in search results",
                    code="FLIGHT_NOT_FOUND",
                    recoverable=True,
                    suggested_action="Select one of the offers from the last search",
                )

            now = self._now()
            session.selected = offer
            session.price_locked_until = now + dt.timedelta(minutes=PRICE_LOCK_MINUTES)
            session.validation = None

            warnings = [
                f"Overnight flight {seg.flight_number}: departs {seg.departure_at:%a %d %b %H:%M}, "
                f"arrives {seg.arrival_at:%a %d %b %H:%M} (+1 day)"
                for seg in offer.segments
                if seg.is_overnight
            ]
            warnings.extend(offer.risks)

            self._transition(session, BookingStatus.VALIDATING)
            return Selection(session=session, offer=offer, warnings=tuple(warnings))

    def _requote(self, request: SearchRequest) -> List[Offer]:
        if not self.budget.admit(1):
            raise ProviderError("rate budget exhausted, cannot re-validate price")
        return self.client.search_offers(request)

    def validate_flight(self, session_id: str) -> ValidationResult:
        with self._session(session_id) as session:
            self._require(session, BookingStatus.VALIDATING, action="validate the flight")
            offer = session.selected
            quotes = offer.quotes or (session.search_request,)

            warnings: List[str] = []
            errors: List[str] = []
            seats_available: Optional[bool] = True
            new_price: Optional[Decimal] = Decimal("0")

            for idx, quote in enumerate(quotes):
                if len(quotes) > 1:
                    direction = Direction.OUTBOUND if idx == 0 else Direction.RETURN
                    wanted = [s for s in offer.segments if s.direction == direction]
                else:
                    wanted = list(offer.segments)

                try:
                    fresh = self._requote(quote)
                except ProviderError as exc:
                    logger.warning("Re-validation of booking %s failed: %s", session.id, exc)
                    errors.append(str(exc))
                    seats_available = None
                    new_price = None
                    break

                match = next(
                    (f for f in fresh if _flight_numbers(f.segments) == _flight_numbers(wanted)),
                    None,
                )
                if match is None:
                    seats_available = False
                    new_price = None
                    errors.append(
                        f"Flight {' / '.join(_flight_numbers(wanted))} is no longer available"
                    )
                    break
                new_price += match.total_price

            price_changed = new_price is not None and new_price != offer.total_price
            if price_changed:
                warnings.append(
                    f"Price changed from {offer.currency} {offer.total_price} "
                    f"to {offer.currency} {new_price}"
                )
                if new_price > offer.total_price * PRICE_ALERT_RATIO:
                    warnings.append(
                        "Price increased by more than 10%. Please review before continuing."
                    )
            if session.price_locked_until and self._now() > session.price_locked_until:
                locked = session.local_time(session.price_locked_until)
                warnings.append(
                    f"Price lock has expired ({locked:%H:%M %Z}). "
                    "Current price may be different."
                )
            if seats_available is False:
                warnings.append("Select another flight from the search results")

            result = ValidationResult(
                is_valid=not errors,
                seats_available=seats_available,
                price_changed=price_changed,
                old_price=offer.total_price,
                new_price=new_price,
                currency=offer.currency,
                warnings=tuple(warnings),
                errors=tuple(errors),
                validated_at=self._now(),
            )
            session.validation = result
            logger.info(
                "Booking %s validated: valid=%s seats=%s price_changed=%s",
                session.id,
                result.is_valid,
                result.seats_available,
                result.price_changed,
            )
            return result

    def submit_passenger_details(
        self, session_id: str, passengers: Sequence[PassengerDetails]
    ) -> BookingSession:
        with self._session(session_id) as session:
            self._require(
                session, BookingStatus.VALIDATING, action="submit passenger details"
            )
            if session.validation and session.validation.seats_available is False:
                raise StateError(
                    "Selected flight is no longer available, select another flight",
                    session.status,
                    code="FLIGHT_UNAVAILABLE",
                    recoverable=True,
                )

            errors = validate_passengers(
                passengers,
                request=session.search_request,
                offer=session.selected,
                today=self._now().date(),
            )
            if errors:
                raise ValidationError(errors, "Passenger details are invalid")

            session.passengers = tuple(passengers)
            self._transition(session, BookingStatus.BOOKING)
            return session

    def process_payment(self, session_id: str, payment: PaymentDetails) -> BookingSession:
        with self._session(session_id) as session:
            self._require(session, BookingStatus.BOOKING, action="process payment")
            if session.payment and session.payment.status == PaymentStatus.AUTHORIZED:
                raise StateError("Payment already authorized", session.status)

            offer = session.selected
            amount = payment.amount
            if (
                not amount.is_finite()
                or amount != amount.quantize(CENT)
                or amount != offer.total_price
            ):
                raise AmountMismatchError(payment.amount, offer.total_price, offer.currency)

            errors = []
            if payment.currency != offer.currency:
                errors.append(
                    f"Payment currency {payment.currency} does not match {offer.currency}"
                )
            if payment.method in CARD_METHODS:
                digits = re.sub(r"[\s-]", "", payment.card_number or "")
                if not digits.isdigit() or not 13 <= len(digits) <= 19:
                    errors.append("Invalid card number")
                if not (payment.card_holder or "").strip():
                    errors.append("Card holder name is required")
            if errors:
                raise ValidationError(errors, "Payment details are invalid")

            masked = None
            if payment.card_number:
                masked = "**** " + re.sub(r"[\s-]", "", payment.card_number)[-4:]
            session.payment = replace(
                payment,
                card_number=masked,
                status=PaymentStatus.AUTHORIZED,
                transaction_id=f"TXN-{uuid.uuid4().hex[:8].upper()}",
            )
            logger.info(
                "Booking %s: payment %s authorized for %s %s",
                session.id,
                session.payment.transaction_id,
                payment.amount,
                payment.currency,
            )
            return session

    def confirm_booking(self, session_id: str) -> Confirmation:
        with self._session(session_id) as session:
            self._require(session, BookingStatus.BOOKING, action="confirm the booking")
            if not session.payment or session.payment.status != PaymentStatus.AUTHORIZED:
                raise StateError(
                    "Payment must be authorized before confirmation",
                    session.status,
                    code="PAYMENT_REQUIRED",
                    recoverable=True,
                    suggested_action="Complete payment step",
                )

            offer = session.selected
            confirmation = Confirmation(
                booking_reference=_booking_reference(),
                e_tickets=tuple(
                    ETicket(
                        passenger_id=pax.id,
                        passenger_name=pax.full_name,
                        ticket_number=_ticket_number(),
                        segments=offer.segments,
                    )
                    for pax in session.passengers
                ),
                issued_at=self._now(),
                transaction_id=session.payment.transaction_id,
                total_journey_minutes=offer.journey_minutes,
            )
            session.confirmation = confirmation
            self._transition(session, BookingStatus.CONFIRMED)
            logger.info("Booking %s confirmed: %s", session.id, confirmation.booking_reference)
            return confirmation

    # ── recovery ─────────────────────────────────────────────────

    def cancel_booking(self, session_id: str, reason: Optional[str] = None) -> bool:
        with self._session(session_id) as session:
            session.cancel_reason = reason
            self._transition(session, BookingStatus.CANCELLED)
            logger.info("Booking %s cancelled: %s", session.id, reason or "not specified")
            return True

    def extend_session(self, session_id: str, minutes: int = 15) -> BookingSession:
        if minutes <= 0:
            raise ValidationError([f"minutes must be positive, got {minutes}"])
        with self._session(session_id) as session:
            session.expires_at += dt.timedelta(minutes=minutes)
            logger.info("Booking %s extended to %s", session.id, session.expires_at)
            return session

    def restart_booking(self, session_id: str) -> BookingSession:
        """New session seeded with the old search; the old one is untouched."""
        with self.store.locked(session_id) as old:
            if old is None:
                raise NotFoundError(f"Booking session {session_id} not found")
            timezone, request = old.user_timezone, old.search_request
        fresh = self.create_booking(timezone, search_request=request)
        logger.info("Booking %s restarted as %s", session_id, fresh.id)
        return fresh

    def get_alternative_flights(self, session_id: str) -> List[Offer]:
        with self._session(session_id, allow_terminal=True) as session:
            return [off for off in session.candidates if off is not session.selected]

    # ── housekeeping ─────────────────────────────────────────────

    def get_stats(self) -> dict:
        now = self._now()
        by_status: Dict[str, int] = {status.value: 0 for status in BookingStatus}
        sessions = self.store.all()
        for session in sessions:
            status = session.status
            if not status.is_terminal and session.is_expired(now):
                status = BookingStatus.EXPIRED
            by_status[status.value] += 1
        return {
            "totalBookings": len(sessions),
            "byStatus": by_status,
            "expiredCount": by_status[BookingStatus.EXPIRED.value],
        }

    def cleanup_expired_sessions(self) -> int:
        return self.store.sweep()


__all__ = [
    "AmountMismatchError",
    "BookingEngine",
    "BookingError",
    "BookingSession",
    "BookingStatus",
    "Confirmation",
    "ETicket",
    "NotFoundError",
    "PassengerDetails",
    "PassengerType",
    "PaymentDetails",
    "PaymentMethod",
    "PaymentStatus",
    "Selection",
    "SessionExpiredError",
    "StateError",
    "ValidationError",
    "ValidationResult",
    "booking_progress",
    "can_modify",
    "validate_passengers",
]
