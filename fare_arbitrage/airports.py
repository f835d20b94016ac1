"""Static airport reference data: nearby alternates and countries."""

from __future__ import annotations

from typing import Dict, Iterable, List, NamedTuple, Optional


class NearbyAirport(NamedTuple):
    code: str
    name: str
    distance_km: int


NEARBY_AIRPORTS: Dict[str, List[NearbyAirport]] = {
    # London
    "LHR": [
        NearbyAirport("LGW", "London Gatwick", 45),
        NearbyAirport("STN", "London Stansted", 65),
        NearbyAirport("LTN", "London Luton", 55),
    ],
    "LGW": [
        NearbyAirport("LHR", "London Heathrow", 45),
        NearbyAirport("STN", "London Stansted", 85),
    ],
    # Paris
    "CDG": [
        NearbyAirport("ORY", "Paris Orly", 35),
        NearbyAirport("BVA", "Paris Beauvais", 85),
    ],
    # New York
    "JFK": [
        NearbyAirport("EWR", "Newark", 35),
        NearbyAirport("LGA", "LaGuardia", 20),
    ],
    "AMS": [
        NearbyAirport("RTM", "Rotterdam", 60),
        NearbyAirport("EIN", "Eindhoven", 110),
    ],
    "FRA": [
        NearbyAirport("HHN", "Frankfurt Hahn", 120),
        NearbyAirport("CGN", "Cologne", 150),
    ],
    "DXB": [
        NearbyAirport("DWC", "Dubai Al Maktoum", 60),
        NearbyAirport("SHJ", "Sharjah", 25),
    ],
    "SIN": [NearbyAirport("JHB", "Johor Bahru", 55)],
    "BKK": [NearbyAirport("DMK", "Don Mueang", 30)],
    "NRT": [NearbyAirport("HND", "Haneda", 60)],
    "HND": [NearbyAirport("NRT", "Narita", 60)],
    "SYD": [NearbyAirport("BWU", "Bankstown", 25)],
    "LAX": [
        NearbyAirport("BUR", "Burbank", 30),
        NearbyAirport("LGB", "Long Beach", 35),
        NearbyAirport("SNA", "Orange County", 50),
    ],
    "SFO": [
        NearbyAirport("OAK", "Oakland", 25),
        NearbyAirport("SJC", "San Jose", 50),
    ],
    "ORD": [NearbyAirport("MDW", "Midway", 25)],
    "MIA": [NearbyAirport("FLL", "Fort Lauderdale", 40)],
    "YYZ": [NearbyAirport("YTZ", "Billy Bishop", 25)],
    "YVR": [NearbyAirport("YXX", "Abbotsford", 65)],
    "HKG": [
        NearbyAirport("SZX", "Shenzhen", 45),
        NearbyAirport("MFM", "Macau", 65),
    ],
}

# ISO 3166-1 alpha-2 country per airport
AIRPORT_COUNTRIES: Dict[str, str] = {
    **dict.fromkeys(
        ["LHR", "LGW", "STN", "LTN", "LCY", "SEN", "MAN", "EDI", "GLA", "BHX",
         "BRS", "NCL", "LBA", "LPL", "BFS"],
        "GB",
    ),
    "DUB": "IE",
    **dict.fromkeys(["CDG", "ORY", "BVA", "NCE", "LYS", "MRS"], "FR"),
    **dict.fromkeys(["AMS", "RTM", "EIN"], "NL"),
    **dict.fromkeys(["FRA", "HHN", "CGN", "MUC", "BER", "HAM", "DUS"], "DE"),
    **dict.fromkeys(["MAD", "BCN", "AGP", "PMI"], "ES"),
    **dict.fromkeys(["FCO", "CIA", "MXP", "LIN", "BGY"], "IT"),
    **dict.fromkeys(["ZRH", "GVA", "BSL"], "CH"),
    "VIE": "AT",
    "CPH": "DK",
    "ARN": "SE",
    "OSL": "NO",
    "HEL": "FI",
    "ATH": "GR",
    **dict.fromkeys(["LIS", "OPO"], "PT"),
    "WAW": "PL",
    "PRG": "CZ",
    "BUD": "HU",
    **dict.fromkeys(["DXB", "DWC", "AUH"], "AE"),
    "SHJ": "AE",
    "DOH": "QA",
    **dict.fromkeys(["IST", "SAW"], "TR"),
    "SIN": "SG",
    "JHB": "MY",
    "KUL": "MY",
    "HKG": "HK",
    "MFM": "MO",
    **dict.fromkeys(["SZX", "PVG", "SHA", "PEK", "PKX", "CAN"], "CN"),
    **dict.fromkeys(["NRT", "HND", "KIX"], "JP"),
    **dict.fromkeys(["ICN", "GMP"], "KR"),
    **dict.fromkeys(["BKK", "DMK"], "TH"),
    **dict.fromkeys(["DEL", "BOM", "BLR", "MAA", "HYD"], "IN"),
    **dict.fromkeys(
        ["JFK", "LGA", "EWR", "BOS", "PHL", "DCA", "IAD", "BWI", "ATL", "MCO",
         "MIA", "FLL", "TPA", "ORD", "MDW", "DFW", "DAL", "IAH", "HOU", "DEN",
         "PHX", "LAX", "BUR", "LGB", "SNA", "SFO", "OAK", "SJC", "SAN", "SEA",
         "LAS"],
        "US",
    ),
    **dict.fromkeys(["YYZ", "YTZ", "YVR", "YXX", "YUL", "YYC"], "CA"),
    **dict.fromkeys(["SYD", "BWU", "MEL", "BNE", "PER"], "AU"),
    **dict.fromkeys(["AKL", "CHC"], "NZ"),
    **dict.fromkeys(["GRU", "GIG"], "BR"),
    "MEX": "MX",
    "CUN": "MX",
    **dict.fromkeys(["JNB", "CPT"], "ZA"),
}

_AIRPORT_NAMES: Dict[str, str] = {
    alt.code: alt.name for alts in NEARBY_AIRPORTS.values() for alt in alts
}
_AIRPORT_NAMES.update(
    {
        "LHR": "London Heathrow",
        "CDG": "Paris Charles de Gaulle",
        "AMS": "Amsterdam Schiphol",
        "FRA": "Frankfurt",
        "DXB": "Dubai International",
        "SIN": "Singapore Changi",
        "BKK": "Bangkok Suvarnabhumi",
        "SYD": "Sydney Kingsford Smith",
        "LAX": "Los Angeles",
        "SFO": "San Francisco",
        "ORD": "Chicago O'Hare",
        "MIA": "Miami",
        "YYZ": "Toronto Pearson",
        "YVR": "Vancouver",
        "HKG": "Hong Kong",
        "JFK": "New York JFK",
    }
)


def nearby_airports(code: str) -> List[NearbyAirport]:
    """Alternates for *code* from the static proximity table."""
    return list(NEARBY_AIRPORTS.get(code.upper(), []))


def airport_name(code: str) -> str:
    return _AIRPORT_NAMES.get(code.upper(), code.upper())


def country_of(code: str) -> Optional[str]:
    return AIRPORT_COUNTRIES.get(code.upper())


def is_international(codes: Iterable[str]) -> bool:
    """True unless every airport is known and in the same country."""
    countries = {country_of(code) for code in codes}
    return None in countries or len(countries) > 1


__all__ = [
    "AIRPORT_COUNTRIES",
    "NEARBY_AIRPORTS",
    "NearbyAirport",
    "airport_name",
    "country_of",
    "is_international",
    "nearby_airports",
]
