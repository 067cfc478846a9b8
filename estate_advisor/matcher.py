"""Deterministic keyword matching of a message against the listing snapshot.

Extracts property type, location, and price constraints from Spanish or English text
and filters the snapshot with them. No external calls; always available.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from .listings import TYPE_SYNONYMS, Listing, ListingType, SearchCriteria, filter_listings
from .utils import message_has_any_term, normalize_text, strip_accents

PRICE_RE = re.compile(
    r"(\d+(?:[.,]\d+)*)\s*(millones|millon|millions|million|mdp|mil|thousand|k|m)?\b"
)
UNIT_MULTIPLIERS = {
    "millones": 1_000_000,
    "millon": 1_000_000,
    "million": 1_000_000,
    "millions": 1_000_000,
    "mdp": 1_000_000,
    "m": 1_000_000,
    "mil": 1_000,
    "thousand": 1_000,
    "k": 1_000,
}
# A bare number below this is a bedroom count or an area, not a price.
MIN_BARE_PRICE = 10_000
# Words that let "2 y 3 millones" share the trailing unit.
UNIT_JOINERS = {"y", "and", "a", "-", "to", "o", "or"}

MAX_PRICE_TERMS = [
    "menos de",
    "no mas de",
    "maximo",
    "hasta",
    "debajo de",
    "por debajo de",
    "under",
    "less than",
    "below",
    "at most",
    "up to",
    "max",
]
MIN_PRICE_TERMS = [
    "mas de",
    "minimo",
    "desde",
    "arriba de",
    "por encima de",
    "over",
    "more than",
    "above",
    "at least",
    "min",
]
RANGE_TERMS = ["entre", "between", "de rango", "range"]
SINGLE_PRICE_BAND = 0.2

INVENTORY_TERMS = [
    "inventario",
    "catalogo",
    "listado",
    "propiedades disponibles",
    "que propiedades",
    "que tienen",
    "que tienes",
    "todas las propiedades",
    "inventory",
    "listings",
    "available properties",
    "what properties",
    "all properties",
]

SPANISH_HINTS = {
    "hola", "que", "de", "la", "el", "en", "quiero", "busco", "por", "para", "tienen",
    "gracias", "si", "precio", "cuanto", "cuesta", "donde", "una", "un", "los", "las",
    "con", "me", "mi", "casa", "departamento", "terreno", "buenas", "buenos", "dias",
    "tardes", "noches", "venta", "renta", "hay", "es", "y",
}
ENGLISH_HINTS = {
    "hello", "hi", "the", "what", "is", "are", "do", "you", "house", "want", "looking",
    "for", "price", "how", "much", "where", "an", "with", "my", "please", "thanks",
    "thank", "i", "yes", "have", "any", "apartment", "apartments", "houses", "sale", "rent",
    "there", "and", "under", "over", "below", "above", "between", "million", "bedrooms", "show",
}


def detect_language(text: str) -> str:
    """Purpose: Guess es/en from common function words when no model is consulted.
    Inputs/Outputs: Input is message text; output is "es" or "en".
    Side Effects / State: None.
    Dependencies: SPANISH_HINTS / ENGLISH_HINTS.
    Failure Modes: Ties and unknown languages return "es".
    If Removed: Locally short-circuited turns cannot pick a reply language.
    Testing Notes: "houses under 2 million" -> "en"; "casa menos de 2 millones" -> "es".
    """
    tokens = normalize_text(text).split()
    spanish = sum(1 for token in tokens if token in SPANISH_HINTS)
    english = sum(1 for token in tokens if token in ENGLISH_HINTS)
    return "en" if english > spanish else "es"


def is_inventory_request(text: str) -> bool:
    return message_has_any_term(normalize_text(text), INVENTORY_TERMS)


def detect_property_type(normalized: str) -> Optional[ListingType]:
    # First vocabulary hit wins; order follows ListingType.
    for listing_type, words in TYPE_SYNONYMS.items():
        if message_has_any_term(normalized, words):
            return listing_type
    return None


def detect_location(normalized: str, listings: Sequence[Listing]) -> Optional[str]:
    """Purpose: Find a snapshot location named in the message.
    Inputs/Outputs: Inputs are normalized text and listings; output is the location
        as written in the listing, or None.
    Side Effects / State: None.
    Dependencies: normalize_text, message_has_any_term.
    Failure Modes: Returns None when nothing matches; longest name wins on overlap.
    If Removed: "casa en Escobedo" no longer narrows results by location.
    Testing Notes: "zona tec" picks "Zona TEC" over any shorter overlapping name.
    """
    candidates = {}
    for listing in listings:
        key = normalize_text(listing.location)
        if key and key not in candidates:
            candidates[key] = listing.location
    for key in sorted(candidates, key=len, reverse=True):
        if message_has_any_term(normalized, [key]):
            return candidates[key]
    return None


def _parse_amount(number: str, unit: Optional[str]) -> Optional[int]:
    if unit:
        if re.fullmatch(r"\d+[.,]\d{1,2}", number):
            value = float(number.replace(",", "."))
        else:
            value = float(re.sub(r"[.,]", "", number))
        return int(round(value * UNIT_MULTIPLIERS[unit]))
    value = int(re.sub(r"[.,]", "", number))
    if value < MIN_BARE_PRICE:
        return None
    return value


def extract_prices(text: str) -> List[int]:
    """Purpose: Extract price amounts mentioned in a message, units applied.
    Inputs/Outputs: Input is raw text; output is amounts in message order.
    Side Effects / State: None.
    Dependencies: PRICE_RE, UNIT_MULTIPLIERS, strip_accents.
    Failure Modes: Bare numbers under MIN_BARE_PRICE are ignored.
    If Removed: Price phrases no longer constrain the local match.
    Testing Notes: "entre 2 y 3 millones" -> [2000000, 3000000]; "800 mil" -> [800000].
    """
    lowered = strip_accents(text)
    matches = list(PRICE_RE.finditer(lowered))
    units: List[Optional[str]] = [match.group(2) for match in matches]
    # Let "2 y 3 millones" inherit the unit from its right-hand neighbour.
    for index in range(len(matches) - 2, -1, -1):
        if units[index] is None and units[index + 1] is not None:
            between = lowered[matches[index].end() : matches[index + 1].start()].strip()
            if between in UNIT_JOINERS:
                units[index] = units[index + 1]
    prices: List[int] = []
    for match, unit in zip(matches, units):
        amount = _parse_amount(match.group(1), unit)
        if amount is not None:
            prices.append(amount)
    return prices


def extract_price_bounds(text: str) -> Tuple[Optional[int], Optional[int]]:
    """Purpose: Turn price phrases into (min_price, max_price) bounds.
    Inputs/Outputs: Input is raw text; output is a (min, max) tuple of optionals.
    Side Effects / State: None.
    Dependencies: extract_prices and the *_PRICE_TERMS lists.
    Failure Modes: Returns (None, None) when no price is mentioned.
    If Removed: "under X" / "between X and Y" stop filtering listings.
    Testing Notes: "menos de 2 millones" -> (None, 2000000); a single bare price
        gives a +/-20% band.
    """
    prices = extract_prices(text)
    if not prices:
        return None, None
    normalized = normalize_text(text)
    has_max = message_has_any_term(normalized, MAX_PRICE_TERMS)
    has_min = message_has_any_term(normalized, MIN_PRICE_TERMS)
    has_range = message_has_any_term(normalized, RANGE_TERMS)
    if len(prices) >= 2 and (has_range or (has_min and has_max)):
        return min(prices), max(prices)
    if has_max:
        return None, min(prices)
    if has_min:
        return max(prices), None
    if len(prices) >= 2:
        return min(prices), max(prices)
    price = prices[0]
    return int(round(price * (1 - SINGLE_PRICE_BAND))), int(round(price * (1 + SINGLE_PRICE_BAND)))


def extract_criteria(text: str, listings: Sequence[Listing]) -> SearchCriteria:
    normalized = normalize_text(text)
    min_price, max_price = extract_price_bounds(text)
    return SearchCriteria(
        property_type=detect_property_type(normalized),
        location=detect_location(normalized, listings),
        min_price=min_price,
        max_price=max_price,
    )


def match_listings(text: str, listings: Sequence[Listing]) -> Tuple[SearchCriteria, List[Listing]]:
    """Purpose: Extract criteria from a message and filter the snapshot with them.
    Inputs/Outputs: Inputs are message text and listings; output is (criteria, matches).
    Side Effects / State: None.
    Dependencies: extract_criteria, filter_listings.
    Failure Modes: Empty criteria yield no matches rather than the whole snapshot.
    If Removed: The classifier loses its deterministic listing match.
    Testing Notes: "casa menos de 2 millones" over houses at 1.8M and 4M -> 1.8M only.
    """
    criteria = extract_criteria(text, listings)
    if criteria.is_empty():
        return criteria, []
    return criteria, filter_listings(listings, criteria)
