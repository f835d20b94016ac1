from __future__ import annotations

import datetime as dt
import logging
import re
import threading
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from .models import Offer, SearchRequest, Segment, money

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?")


class ProviderError(RuntimeError):
    """Upstream flight-offer provider failed for one query."""


class ProviderUnavailable(ProviderError):
    """Transport failure, timeout or 5xx from the provider."""


class ProviderRateLimited(ProviderError):
    """Provider answered HTTP 429."""


def parse_duration(value: str | None) -> int:
    """``PT2H30M`` -> 150 minutes."""
    if not value:
        return 0
    match = _DURATION_RE.match(value)
    if not match:
        return 0
    hours, minutes = match.groups()
    return int(hours or 0) * 60 + int(minutes or 0)


class AmadeusQuoteClient:
    """
    Client of the Amadeus Flight Offers Search API (*/v2/shopping/flight-offers*).
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://test.api.amadeus.com",
        *,
        timeout: float = 15.0,
        max_results: int = 10,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_results = max_results
        self._token: Optional[str] = None
        self._token_expires_at: Optional[dt.datetime] = None
        self._token_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> AmadeusQuoteClient:
        return cls(
            settings.amadeus_api_key,
            settings.amadeus_api_secret,
            settings.amadeus_base_url,
            timeout=settings.request_timeout_s,
            max_results=settings.max_results,
        )

    # ──────────────────────────────────────────────────────────

    def _access_token(self) -> str:
        """Return a cached OAuth2 token, refreshing it 60 s before expiry."""
        with self._token_lock:
            now = dt.datetime.now(dt.timezone.utc)
            if self._token and self._token_expires_at and now < self._token_expires_at:
                return self._token

            try:
                resp = requests.post(
                    f"{self.base_url}/v1/security/oauth2/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.api_key,
                        "client_secret": self.api_secret,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as exc:
                raise ProviderUnavailable(f"token request failed: {exc}") from exc

            if resp.status_code != 200:
                raise ProviderUnavailable(
                    f"token HTTP {resp.status_code} – {resp.text[:120]}"
                )

            try:
                data = resp.json()
                token = str(data["access_token"])
                expires_in = int(data.get("expires_in", 1799))
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                raise ProviderUnavailable(f"malformed token response: {exc!r}") from exc
            self._token = token
            self._token_expires_at = now + dt.timedelta(seconds=max(expires_in - 60, 0))
            logger.info("Amadeus token acquired, expires in %ss", expires_in)
            return self._token

    def search_offers(self, request: SearchRequest) -> list[Offer]:
        """Return offers for *request*, cheapest first; ``[]`` when none exist."""
        params = {
            "originLocationCode": request.origin,
            "destinationLocationCode": request.destination,
            "departureDate": request.departure_date.isoformat(),
            "adults": request.adults,
            "currencyCode": request.currency,
            "max": self.max_results,
        }
        if request.return_date:
            params["returnDate"] = request.return_date.isoformat()
        if request.children:
            params["children"] = request.children
        if request.infants:
            params["infants"] = request.infants
        params["travelClass"] = request.cabin_class.value

        token = self._access_token()
        logger.info(
            "Quoting %s→%s %s%s",
            request.origin,
            request.destination,
            request.departure_date,
            f" / {request.return_date}" if request.return_date else "",
        )
        try:
            resp = requests.get(
                f"{self.base_url}/v2/shopping/flight-offers",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise ProviderUnavailable(f"timeout after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderUnavailable(f"transport failure: {exc}") from exc

        if resp.status_code == 429:
            raise ProviderRateLimited("HTTP 429 – provider quota exceeded")
        if resp.status_code == 400:
            raise ProviderError(f"HTTP 400 – {resp.text[:120]}")
        if resp.status_code != 200:
            raise ProviderUnavailable(f"HTTP {resp.status_code} – {resp.text[:120]}")

        try:
            items = resp.json().get("data") or []
            if not isinstance(items, list):
                raise TypeError(f"'data' is {type(items).__name__}, expected a list")
        except (ValueError, TypeError, AttributeError) as exc:
            raise ProviderUnavailable(f"malformed response body: {exc!r}") from exc

        offers = [self._to_offer(item, request) for item in items]
        offers = [off for off in offers if off]
        offers.sort(key=lambda off: off.total_price)
        logger.info("Found %d offers", len(offers))
        return offers

    def _to_offer(self, item: dict, request: SearchRequest) -> Offer | None:
        """Map one flight-offer record onto an ``Offer``."""
        if not isinstance(item, dict):
            logger.warning("Skipping malformed offer: %r", item)
            return None
        try:
            total = money(item["price"]["total"])
            currency = item["price"].get("currency", request.currency)
            segments = [
                Segment(
                    origin=seg["departure"]["iataCode"],
                    destination=seg["arrival"]["iataCode"],
                    departure_at=dt.datetime.fromisoformat(seg["departure"]["at"]),
                    arrival_at=dt.datetime.fromisoformat(seg["arrival"]["at"]),
                    carrier=seg["carrierCode"],
                    flight_number=f"{seg['carrierCode']}{seg.get('number', '')}",
                    duration_minutes=parse_duration(seg.get("duration")),
                )
                for itinerary in item["itineraries"]
                for seg in itinerary["segments"]
            ]
        except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as exc:
            logger.warning("Skipping malformed offer %s: %s", item.get("id"), exc)
            return None

        if not segments:
            return None

        carriers = item.get("validatingAirlineCodes") or [segments[0].carrier]
        return Offer(
            id=str(item.get("id", "")),
            segments=tuple(segments),
            total_price=total,
            currency=currency,
            per_person_price=money(total / Decimal(request.travellers)),
            description=f"Direct booking via {carriers[0]}",
            quotes=(request,),
        )


__all__ = [
    "AmadeusQuoteClient",
    "ProviderError",
    "ProviderRateLimited",
    "ProviderUnavailable",
    "parse_duration",
]
