import datetime as dt
import threading
from decimal import Decimal

import pytest

from fare_arbitrage.booking_engine import (
    AmountMismatchError,
    BookingStatus,
    NotFoundError,
    PassengerDetails,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    SessionExpiredError,
    StateError,
    ValidationError,
    booking_progress,
    can_modify,
    validate_passengers,
)
from fare_arbitrage.models import SearchRequest, Strategy
from fare_arbitrage.quote_client import ProviderUnavailable

REFERENCE_ALPHABET = set("ABCDEFGHJKLMNPQRSTUVWXYZ23456789")


@pytest.fixture
def trip(future):
    return SearchRequest("LHR", "CDG", future, future + dt.timedelta(days=7))


@pytest.fixture
def fares():
    """Live fares per flight number; tests mutate it to move the market."""
    return {"BA304": "299", "AF1081": "349"}


@pytest.fixture(autouse=True)
def market(quote_client, trip, make_offer, fares):
    def route(req):
        if req != trip:
            return []
        offers = []
        if "BA304" in fares:
            offers.append(make_offer(req, fares["BA304"], offer_id="1", flight_number="BA304"))
        if "AF1081" in fares:
            offers.append(
                make_offer(req, fares["AF1081"], offer_id="2", flight_number="AF1081", carrier="AF")
            )
        return offers

    quote_client.route = route


def adult(**overrides):
    data = dict(
        first_name="Ada",
        last_name="Lovelace",
        date_of_birth="1985-04-12",
        nationality="GB",
        passport_number="123456789",
        passport_expiry="2045-01-01",
        passport_country="GB",
        email="ada@example.com",
        phone="+44 20 7946 0958",
    )
    data.update(overrides)
    return PassengerDetails(**data)


def card(amount="299.00", number="4111 1111 1111 1111"):
    return PaymentDetails(
        method=PaymentMethod.CREDIT_CARD,
        currency="GBP",
        amount=amount,
        card_number=number,
        card_holder="Ada Lovelace",
    )


def selected(engine, trip, offer_id="standard-1"):
    session = engine.create_booking()
    engine.search_flights(session.id, trip)
    engine.select_flight(session.id, offer_id)
    return session


def booking(engine, trip):
    session = selected(engine, trip)
    engine.validate_flight(session.id)
    engine.submit_passenger_details(session.id, [adult()])
    return session


# ── happy path ───────────────────────────────────────────────────


def test_full_booking_flow(engine, trip, clock):
    session = engine.create_booking(timezone="Europe/London")
    assert session.status == BookingStatus.SEARCHING
    assert session.expires_at == clock.now + dt.timedelta(minutes=30)
    assert booking_progress(session) == 10

    result = engine.search_flights(session.id, trip)
    assert session.status == BookingStatus.SELECTING
    assert [off.id for off in result.all_options] == ["standard-1", "standard-2"]
    assert result.best.total_price == Decimal("299.00")

    selection = engine.select_flight(session.id, "standard-1")
    assert session.status == BookingStatus.VALIDATING
    assert selection.offer.total_price == Decimal("299.00")
    assert selection.warnings == ()
    assert session.price_locked_until == clock.now + dt.timedelta(minutes=5)

    validation = engine.validate_flight(session.id)
    assert validation.is_valid and validation.seats_available
    assert not validation.price_changed
    assert validation.new_price == Decimal("299.00")
    assert session.status == BookingStatus.VALIDATING

    engine.submit_passenger_details(session.id, [adult()])
    assert session.status == BookingStatus.BOOKING
    assert booking_progress(session) == 70

    engine.process_payment(session.id, card())
    assert session.payment.status == PaymentStatus.AUTHORIZED
    assert session.payment.transaction_id.startswith("TXN-")
    assert session.payment.card_number == "**** 1111"

    confirmation = engine.confirm_booking(session.id)
    assert session.status == BookingStatus.CONFIRMED
    assert booking_progress(session) == 100
    assert len(confirmation.booking_reference) == 6
    assert set(confirmation.booking_reference) <= REFERENCE_ALPHABET
    [ticket] = confirmation.ticket_numbers
    assert ticket.startswith("157") and len(ticket) == 13 and ticket.isdigit()
    assert confirmation.e_tickets[0].passenger_name == "Ada Lovelace"
    assert confirmation.total_journey_minutes == session.selected.journey_minutes
    assert not can_modify(session, clock.now)


def test_confirmed_session_rejects_further_transitions(engine, trip):
    session = booking(engine, trip)
    engine.process_payment(session.id, card())
    engine.confirm_booking(session.id)

    with pytest.raises(StateError) as exc:
        engine.cancel_booking(session.id)
    assert exc.value.current_state == BookingStatus.CONFIRMED
    with pytest.raises(StateError):
        engine.process_payment(session.id, card())


# ── state guards ─────────────────────────────────────────────────


def test_out_of_order_operation_names_current_state(engine):
    session = engine.create_booking()
    with pytest.raises(StateError) as exc:
        engine.validate_flight(session.id)
    assert "searching" in str(exc.value)
    assert exc.value.to_dict()["error"]["code"] == "INVALID_STATE"
    assert session.status == BookingStatus.SEARCHING


def test_unknown_session(engine):
    with pytest.raises(NotFoundError) as exc:
        engine.search_flights("nope", None)
    assert exc.value.code == "BOOKING_NOT_FOUND"
    assert engine.get_booking("nope") is None


def test_select_unknown_offer(engine, trip):
    session = engine.create_booking()
    engine.search_flights(session.id, trip)
    with pytest.raises(NotFoundError) as exc:
        engine.select_flight(session.id, "standard-99")
    assert exc.value.code == "FLIGHT_NOT_FOUND"
    assert session.status == BookingStatus.SELECTING


def test_reselect_while_validating(engine, trip):
    session = selected(engine, trip)
    engine.select_flight(session.id, "standard-2")
    assert session.selected.id == "standard-2"
    assert session.status == BookingStatus.VALIDATING


def test_alternative_flights_exclude_selection(engine, trip):
    session = selected(engine, trip)
    assert [off.id for off in engine.get_alternative_flights(session.id)] == ["standard-2"]


# ── search ───────────────────────────────────────────────────────


def test_search_without_results_stays_searching(engine, trip, fares):
    fares.clear()
    session = engine.create_booking()
    result = engine.search_flights(session.id, trip)
    assert result.all_options == ()
    assert session.status == BookingStatus.SEARCHING


def test_search_outage_surfaces_error(engine, quote_client, trip):
    quote_client.route = lambda req: ProviderUnavailable("HTTP 503")
    session = engine.create_booking()
    with pytest.raises(ProviderUnavailable):
        engine.search_flights(session.id, trip)
    assert session.status == BookingStatus.SEARCHING


# ── validation ───────────────────────────────────────────────────


def test_price_change_reported_not_applied(engine, trip, fares):
    session = selected(engine, trip)
    fares["BA304"] = "349"

    result = engine.validate_flight(session.id)

    assert result.price_changed
    assert result.old_price == Decimal("299.00")
    assert result.new_price == Decimal("349.00")
    assert result.price_delta == Decimal("50.00")
    assert any("more than 10%" in w for w in result.warnings)
    assert session.selected.total_price == Decimal("299.00")
    assert session.status == BookingStatus.VALIDATING


def test_unavailable_flight_blocks_passenger_step(engine, trip, fares):
    session = selected(engine, trip)
    del fares["BA304"]

    result = engine.validate_flight(session.id)
    assert result.seats_available is False
    assert not result.is_valid
    assert session.status == BookingStatus.VALIDATING

    with pytest.raises(StateError) as exc:
        engine.submit_passenger_details(session.id, [adult()])
    assert exc.value.code == "FLIGHT_UNAVAILABLE"

    engine.select_flight(session.id, "standard-2")
    assert engine.validate_flight(session.id).is_valid


def test_validation_uses_rate_budget(engine, budget, trip):
    session = selected(engine, trip)
    used = budget.used
    engine.validate_flight(session.id)
    assert budget.used == used + 1


def test_validation_refused_by_budget(engine, budget, trip):
    session = selected(engine, trip)
    budget.admit(budget.remaining)

    result = engine.validate_flight(session.id)

    assert not result.is_valid
    assert result.seats_available is None
    assert "rate budget" in result.errors[0]


def test_price_lock_expiry_warning(engine, trip, clock):
    session = selected(engine, trip)
    clock.advance(minutes=6)
    result = engine.validate_flight(session.id)
    assert any("Price lock has expired" in w for w in result.warnings)


def test_times_are_shown_in_user_timezone(engine, trip, clock):
    session = engine.create_booking(timezone="Asia/Tokyo")
    engine.search_flights(session.id, trip)
    engine.select_flight(session.id, "standard-1")
    locked_local = session.price_locked_until.astimezone(dt.timezone(dt.timedelta(hours=9)))

    assert session.to_dict()["expiresAtLocal"].endswith("+09:00")

    clock.advance(minutes=6)
    result = engine.validate_flight(session.id)
    assert f"Price lock has expired ({locked_local:%H:%M} JST)" in result.warnings[-1]


def test_unknown_timezone_rejected(engine):
    with pytest.raises(ValidationError) as exc:
        engine.create_booking(timezone="Mars/Olympus_Mons")
    assert "Unknown timezone" in exc.value.errors[0]
    assert len(engine.store) == 0


def test_split_ticket_revalidates_both_legs(engine, quote_client, budget, trip, make_offer):
    def route(req):
        if req == trip:
            return [make_offer(req, "299")]
        if req.return_date is None and {req.origin, req.destination} == {"LHR", "CDG"}:
            return [make_offer(req, "100")]
        return []

    quote_client.route = route
    session = engine.create_booking()
    result = engine.search_flights(session.id, trip)
    assert result.best.strategy == Strategy.SPLIT_TICKET

    engine.select_flight(session.id, result.best.id)
    used = budget.used
    validation = engine.validate_flight(session.id)

    assert validation.is_valid
    assert validation.new_price == Decimal("200.00")
    assert budget.used == used + 2


# ── passengers ───────────────────────────────────────────────────


def test_passenger_errors_are_collected(engine, trip):
    session = selected(engine, trip)
    engine.validate_flight(session.id)
    bad = adult(first_name=" ", date_of_birth="2999-01-01", passport_number=None, email="nope")

    with pytest.raises(ValidationError) as exc:
        engine.submit_passenger_details(session.id, [bad])

    errors = exc.value.errors
    assert len(errors) == 4
    assert any("first name" in e for e in errors)
    assert any("future" in e for e in errors)
    assert any("passport number" in e for e in errors)
    assert any("email" in e for e in errors)
    assert exc.value.to_dict()["error"]["details"]["errors"] == errors
    assert session.status == BookingStatus.VALIDATING


def test_passenger_count_must_match_request(engine, trip):
    session = selected(engine, trip)
    with pytest.raises(ValidationError) as exc:
        engine.submit_passenger_details(session.id, [adult(), adult(first_name="Charles")])
    assert "Expected 1 passenger(s), got 2" in exc.value.errors


def test_domestic_trip_needs_no_passport(future):
    req = SearchRequest("LHR", "MAN", future)
    pax = adult(passport_number=None, passport_expiry=None, passport_country=None)
    assert validate_passengers([pax], request=req) == []


def test_passport_must_outlast_travel(trip):
    expiry = (trip.return_date + dt.timedelta(days=90)).isoformat()
    errors = validate_passengers([adult(passport_expiry=expiry)], request=trip)
    assert errors == ["Passenger 1: passport must be valid for at least 6 months after travel"]


def test_no_passengers():
    assert validate_passengers([]) == ["At least one passenger is required"]


# ── payment ──────────────────────────────────────────────────────


def test_payment_amount_mismatch(engine, trip):
    session = booking(engine, trip)
    with pytest.raises(AmountMismatchError) as exc:
        engine.process_payment(session.id, card(amount="300.00"))
    assert exc.value.to_dict()["error"]["code"] == "PAYMENT_AMOUNT_MISMATCH"
    assert session.payment is None
    assert session.status == BookingStatus.BOOKING


@pytest.mark.parametrize("amount", ["298.995", "299.004", "299.001", "NaN"])
def test_sub_cent_amount_is_not_rounded_into_a_match(engine, trip, amount):
    session = booking(engine, trip)
    payment = PaymentDetails(method=PaymentMethod.PAYPAL, currency="GBP", amount=amount)
    assert payment.amount == Decimal(amount) or payment.amount.is_nan()

    with pytest.raises(AmountMismatchError) as exc:
        engine.process_payment(session.id, payment)
    assert exc.value.details["amount"] == amount
    assert session.payment is None


def test_equal_amount_with_extra_zeros_is_accepted(engine, trip):
    session = booking(engine, trip)
    engine.process_payment(session.id, card(amount="299.000"))
    assert session.payment.status == PaymentStatus.AUTHORIZED


def test_invalid_card_number(engine, trip):
    session = booking(engine, trip)
    with pytest.raises(ValidationError) as exc:
        engine.process_payment(session.id, card(number="1234"))
    assert "Invalid card number" in exc.value.errors


def test_wallet_payment_needs_no_card(engine, trip):
    session = booking(engine, trip)
    engine.process_payment(
        session.id, PaymentDetails(method=PaymentMethod.PAYPAL, currency="GBP", amount=299)
    )
    assert session.payment.status == PaymentStatus.AUTHORIZED
    assert session.payment.card_number is None


def test_payment_only_once(engine, trip):
    session = booking(engine, trip)
    engine.process_payment(session.id, card())
    with pytest.raises(StateError):
        engine.process_payment(session.id, card())


def test_confirm_requires_payment(engine, trip):
    session = booking(engine, trip)
    with pytest.raises(StateError) as exc:
        engine.confirm_booking(session.id)
    assert exc.value.code == "PAYMENT_REQUIRED"
    assert session.status == BookingStatus.BOOKING


# ── expiry, cancel, restart ──────────────────────────────────────


def test_expired_session_then_restart(engine, trip, clock):
    session = engine.create_booking()
    engine.search_flights(session.id, trip)
    clock.advance(minutes=31)

    with pytest.raises(SessionExpiredError) as exc:
        engine.select_flight(session.id, "standard-1")
    assert isinstance(exc.value, StateError)
    assert exc.value.code == "BOOKING_EXPIRED"
    assert session.status == BookingStatus.EXPIRED
    assert engine.get_booking(session.id) is None

    fresh = engine.restart_booking(session.id)
    assert fresh.id != session.id
    assert fresh.status == BookingStatus.SEARCHING
    assert fresh.search_request == trip

    assert engine.cleanup_expired_sessions() == 1
    assert engine.get_booking(fresh.id) is fresh
    with pytest.raises(NotFoundError):
        engine.restart_booking(session.id)


def test_extend_session(engine, clock):
    session = engine.create_booking()
    original = session.expires_at
    engine.extend_session(session.id)
    assert session.expires_at == original + dt.timedelta(minutes=15)

    clock.advance(minutes=40)
    assert engine.get_booking(session.id) is session

    with pytest.raises(ValidationError):
        engine.extend_session(session.id, 0)


def test_concurrent_extends_are_serialized(engine):
    session = engine.create_booking()
    original = session.expires_at

    def worker():
        for _ in range(5):
            engine.extend_session(session.id, 1)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert session.expires_at == original + dt.timedelta(minutes=50)


def test_cancel_booking(engine, trip):
    session = selected(engine, trip)
    assert engine.cancel_booking(session.id, reason="changed plans")

    assert engine.get_booking(session.id) is None
    assert booking_progress(session) == 0
    with pytest.raises(StateError):
        engine.validate_flight(session.id)
    with pytest.raises(StateError):
        engine.cancel_booking(session.id)
    assert engine.cleanup_expired_sessions() == 1


def test_stats(engine, clock):
    old = engine.create_booking()
    clock.advance(minutes=20)
    engine.create_booking()
    engine.cancel_booking(engine.create_booking().id)
    clock.advance(minutes=15)

    stats = engine.get_stats()

    assert stats["totalBookings"] == 3
    assert stats["byStatus"]["searching"] == 1
    assert stats["byStatus"]["cancelled"] == 1
    assert stats["expiredCount"] == 1
    assert old.status == BookingStatus.SEARCHING


def test_restart_stores_session_fully_seeded(engine, trip, monkeypatch):
    session = engine.create_booking(timezone="Europe/London")
    engine.search_flights(session.id, trip)
    seen = []
    put = engine.store.put

    def recording_put(new):
        seen.append((new.search_request, new.user_timezone))
        put(new)

    monkeypatch.setattr(engine.store, "put", recording_put)
    fresh = engine.restart_booking(session.id)

    assert seen == [(trip, "Europe/London")]
    assert fresh.search_request == trip


def test_restart_leaves_original_untouched(engine, trip):
    session = selected(engine, trip)
    fresh = engine.restart_booking(session.id)

    assert fresh.id != session.id
    assert fresh.search_request.origin == "LHR"
    assert fresh.search_request.destination == "CDG"
    assert engine.get_booking(session.id) is session
    assert session.status == BookingStatus.VALIDATING
    assert session.selected.id == "standard-1"


# ── end to end ───────────────────────────────────────────────────


def test_one_way_lhr_cdg_scenario(engine, quote_client, make_offer):
    one_way = SearchRequest("LHR", "CDG", dt.date(2024, 6, 15))

    def route(req):
        if req != one_way:
            return []
        return [
            make_offer(req, "299", offer_id="1", flight_number="BA304"),
            make_offer(req, "349", offer_id="2", flight_number="AF1081", carrier="AF"),
        ]

    quote_client.route = route
    session = engine.create_booking()
    result = engine.search_flights(session.id, one_way)
    cheapest = next(off for off in result.all_options if off.total_price == Decimal("299.00"))
    assert result.metadata.strategies_skipped["split-ticket"] == "no return date"

    engine.select_flight(session.id, cheapest.id)
    assert session.status == BookingStatus.VALIDATING
    assert engine.validate_flight(session.id).seats_available is True

    with pytest.raises(ValidationError) as exc:
        engine.submit_passenger_details(session.id, [adult(first_name="")])
    assert exc.value.to_dict()["success"] is False
    assert exc.value.errors

    engine.submit_passenger_details(session.id, [adult()])
    assert session.status == BookingStatus.BOOKING

    for wrong in ("100", "0", "-299"):
        with pytest.raises(AmountMismatchError):
            engine.process_payment(session.id, card(amount=wrong))
    engine.process_payment(session.id, card(amount=299))

    confirmation = engine.confirm_booking(session.id)
    assert confirmation.booking_reference
    assert session.status == BookingStatus.CONFIRMED
