"""Listing sources and the per-turn listing catalog.

Listings come either from a local JSON file (the shipped sample inventory) or from a
Supabase table read through its REST interface. Records are normalized into Listing
objects with synonym-tolerant field lookup, so Spanish column names (titulo, precio,
ubicacion, tipopropiedad) and English ones map to the same shape.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from .utils import normalize_text

logger = logging.getLogger("estate_advisor.listings")

ID_KEYS = ["id", "listing_id", "clave"]
TITLE_KEYS = ["title", "titulo", "nombre", "name"]
LOCATION_KEYS = ["location", "ubicacion", "zona", "colonia"]
PRICE_KEYS = ["price", "precio"]
TYPE_KEYS = ["type", "tipopropiedad", "tipo_propiedad", "tipo"]
DESC_KEYS = ["description", "descripcion", "detalle"]
IMAGE_KEYS = ["image_url", "imagen", "image", "foto", "url_imagen"]
ACTIVE_KEYS = ["active", "activa", "activo"]

DEFAULT_INSTRUCTIONS_TABLE = "instrucciones"


class ListingSourceError(Exception):
    """Raised when a listing source cannot be read."""


class ListingType(str, Enum):
    HOUSE = "house"
    APARTMENT = "apartment"
    LAND = "land"
    OTHER = "other"


TYPE_SYNONYMS: Dict[ListingType, List[str]] = {
    ListingType.HOUSE: ["casa", "casas", "house", "houses", "home", "homes", "residencia"],
    ListingType.APARTMENT: [
        "departamento",
        "departamentos",
        "depa",
        "depas",
        "apartment",
        "apartments",
        "flat",
        "condo",
    ],
    ListingType.LAND: ["terreno", "terrenos", "lote", "lotes", "land", "lot", "lots", "plot"],
    ListingType.OTHER: ["quinta", "quintas", "rancho", "ranch", "bodega"],
}

# Values stored in the Supabase type column.
TYPE_DB_VALUES = {
    ListingType.HOUSE: "casa",
    ListingType.APARTMENT: "departamento",
    ListingType.LAND: "terreno",
}


@dataclass
class Listing:
    """Normalized view of a property record with the raw backing dict."""
    id: str
    title: str
    location: str
    price: int
    type: ListingType
    description: str = ""
    image_url: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_prompt_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "location": self.location,
            "price": self.price,
            "type": self.type.value,
            "description": self.description,
        }


@dataclass
class SearchCriteria:
    """Constraints extracted from a message or supplied by a caller."""
    property_type: Optional[ListingType] = None
    location: Optional[str] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    def is_empty(self) -> bool:
        return (
            self.property_type is None
            and not self.location
            and self.min_price is None
            and self.max_price is None
        )


def parse_listing_type(value: Any) -> ListingType:
    """Purpose: Map a free-text type label onto ListingType.
    Inputs/Outputs: Input is any raw value; output is a ListingType.
    Side Effects / State: None.
    Dependencies: TYPE_SYNONYMS and normalize_text.
    Failure Modes: Unknown or missing labels map to OTHER.
    If Removed: Type filtering cannot compare Spanish and English labels.
    Testing Notes: "Departamento" -> APARTMENT; "quinta" -> OTHER.
    """
    normalized = normalize_text(str(value or ""))
    if not normalized:
        return ListingType.OTHER
    for listing_type in ListingType:
        if normalized == listing_type.value:
            return listing_type
    for listing_type, words in TYPE_SYNONYMS.items():
        if normalized in words:
            return listing_type
    return ListingType.OTHER


def parse_price(value: Any) -> int:
    """Purpose: Convert a raw price (number or "$4,750,000" string) to int units.
    Inputs/Outputs: Input is any raw value; output is an integer (0 if unknown).
    Side Effects / State: None.
    Dependencies: Regex digit extraction.
    Failure Modes: Unparseable values return 0.
    If Removed: Price filters and formatting break on string prices.
    Testing Notes: "$4,750,000 MXN" -> 4750000; 1800000.0 -> 1800000.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(round(value))
    text = re.sub(r"[^\d.,]", "", str(value))
    # A trailing ".5" or ".00" is a decimal part, anything else is grouping.
    text = re.sub(r"\.\d{1,2}$", "", text)
    digits = re.sub(r"[.,]", "", text)
    return int(digits) if digits else 0


def listing_from_record(record: Dict[str, Any]) -> Listing:
    """Purpose: Normalize one raw record into a Listing.
    Inputs/Outputs: Input is a raw dict; output is a Listing.
    Side Effects / State: None.
    Dependencies: _get_first_value with the *_KEYS synonym lists.
    Failure Modes: Missing fields become empty strings / zero price.
    If Removed: Sources cannot hand uniform objects to the matcher and composer.
    Testing Notes: Spanish and English column names produce equal Listings.
    """
    # Resolve each field through its synonym list.
    return Listing(
        id=str(_get_first_value(record, ID_KEYS) or "").strip(),
        title=str(_get_first_value(record, TITLE_KEYS) or "").strip(),
        location=str(_get_first_value(record, LOCATION_KEYS) or "").strip(),
        price=parse_price(_get_first_value(record, PRICE_KEYS)),
        type=parse_listing_type(_get_first_value(record, TYPE_KEYS)),
        description=str(_get_first_value(record, DESC_KEYS) or "").strip(),
        image_url=str(_get_first_value(record, IMAGE_KEYS) or "").strip(),
        raw=record,
    )


def is_active_record(record: Dict[str, Any]) -> bool:
    # Records without an explicit flag count as active.
    for key in ACTIVE_KEYS:
        if key in record:
            return bool(record[key])
    return True


def filter_listings(listings: Sequence[Listing], criteria: SearchCriteria) -> List[Listing]:
    """Purpose: Apply type, location, and price constraints to a snapshot.
    Inputs/Outputs: Inputs are listings and criteria; output keeps snapshot order.
    Side Effects / State: None.
    Dependencies: normalize_text for location comparison.
    Failure Modes: Empty criteria return every listing.
    If Removed: Local keyword matching and file-backed search stop working.
    Testing Notes: max_price=2_000_000 keeps a 1.8M house, drops a 4M one.
    """
    location = normalize_text(criteria.location or "")
    results: List[Listing] = []
    for listing in listings:
        if criteria.property_type is not None and listing.type != criteria.property_type:
            continue
        if location and location not in normalize_text(listing.location):
            continue
        if criteria.min_price is not None and listing.price < criteria.min_price:
            continue
        if criteria.max_price is not None and listing.price > criteria.max_price:
            continue
        results.append(listing)
    return results


class ListingSource(Protocol):
    async def fetch_active_listings(self) -> List[Listing]: ...

    async def search_listings(self, criteria: SearchCriteria) -> List[Listing]: ...

    async def fetch_instructions(self) -> List[str]: ...


class JsonListingSource:
    """Listing source backed by a JSON file ({"items": [...], "instructions": [...]})."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def _read(self) -> Tuple[List[Dict[str, Any]], List[str]]:
        """Purpose: Read and decode the listings file.
        Inputs/Outputs: No inputs; returns raw records and instruction strings.
        Side Effects / State: Reads the file on every call (no caching).
        Dependencies: json, Path.
        Failure Modes: Missing file or bad JSON raise ListingSourceError.
        If Removed: The file-backed inventory cannot be loaded.
        Testing Notes: Accepts both a top-level list and an {"items": [...]} object.
        """
        try:
            data = json.loads(self._path.read_bytes().decode("utf-8-sig"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ListingSourceError(f"cannot read {self._path}: {exc}") from exc
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)], []
        if isinstance(data, dict):
            items = [item for item in data.get("items", []) if isinstance(item, dict)]
            instructions = [str(text) for text in data.get("instructions", []) if str(text).strip()]
            return items, instructions
        return [], []

    async def fetch_active_listings(self) -> List[Listing]:
        records, _ = self._read()
        return [listing_from_record(record) for record in records if is_active_record(record)]

    async def search_listings(self, criteria: SearchCriteria) -> List[Listing]:
        return filter_listings(await self.fetch_active_listings(), criteria)

    async def fetch_instructions(self) -> List[str]:
        _, instructions = self._read()
        return instructions


class SupabaseListingSource:
    """Listing source reading a Supabase table through its REST interface."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "propiedades",
        instructions_table: str = DEFAULT_INSTRUCTIONS_TABLE,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._table = table
        self._instructions_table = instructions_table
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }

    async def _select(self, table: str, params: List[Tuple[str, str]]) -> List[Dict[str, Any]]:
        """Purpose: Run one REST select and return the decoded rows.
        Inputs/Outputs: Inputs are table name and query params; output is a row list.
        Side Effects / State: Performs an HTTP GET.
        Dependencies: httpx.AsyncClient.
        Failure Modes: Network errors, HTTP >= 400, and non-list bodies raise
            ListingSourceError.
        If Removed: Supabase-backed listings and instructions cannot be fetched.
        Testing Notes: Use httpx.MockTransport to return canned rows.
        """
        url = f"{self._base_url}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._headers(), params=params)
        except httpx.HTTPError as exc:
            raise ListingSourceError(f"request to {table} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ListingSourceError(f"{table} returned HTTP {response.status_code}")
        try:
            rows = response.json()
        except ValueError as exc:
            raise ListingSourceError(f"{table} returned invalid JSON") from exc
        if not isinstance(rows, list):
            raise ListingSourceError(f"{table} returned a non-list body")
        return [row for row in rows if isinstance(row, dict)]

    async def fetch_active_listings(self) -> List[Listing]:
        rows = await self._select(self._table, [("select", "*"), ("activa", "eq.true")])
        return [listing_from_record(row) for row in rows]

    async def search_listings(self, criteria: SearchCriteria) -> List[Listing]:
        # Same filters the original property search pushed down to the table.
        params: List[Tuple[str, str]] = [("select", "*"), ("activa", "eq.true")]
        db_type = TYPE_DB_VALUES.get(criteria.property_type) if criteria.property_type else None
        if db_type:
            params.append(("tipopropiedad", f"eq.{db_type}"))
        if criteria.min_price is not None:
            params.append(("precio", f"gte.{criteria.min_price}"))
        if criteria.max_price is not None:
            params.append(("precio", f"lte.{criteria.max_price}"))
        if criteria.location:
            params.append(("ubicacion", f"ilike.*{criteria.location}*"))
        rows = await self._select(self._table, params)
        return [listing_from_record(row) for row in rows]

    async def fetch_instructions(self) -> List[str]:
        rows = await self._select(self._instructions_table, [("select", "*")])
        instructions = []
        for row in rows:
            text = row.get("instruction") or row.get("instruccion")
            if text and str(text).strip():
                instructions.append(str(text).strip())
        return instructions


class ListingCatalog:
    """Wraps a listing source with last-known-good fallback."""

    def __init__(self, source: ListingSource) -> None:
        self._source = source
        self._last_good: List[Listing] = []

    async def fetch_active_listings(self) -> List[Listing]:
        """Purpose: Fetch the per-turn snapshot, degrading instead of failing.
        Inputs/Outputs: No inputs; returns the active listings.
        Side Effects / State: Remembers the last successful snapshot.
        Dependencies: The configured ListingSource.
        Failure Modes: ListingSourceError returns the last good snapshot (or []).
        If Removed: A listing outage fails every conversational turn.
        Testing Notes: Make the source raise after one success; the first result returns.
        """
        try:
            listings = await self._source.fetch_active_listings()
        except ListingSourceError as exc:
            logger.warning("listing_fetch_failed error=%s fallback_size=%s", exc, len(self._last_good))
            return list(self._last_good)
        self._last_good = list(listings)
        logger.debug("listing_snapshot size=%s", len(listings))
        return listings

    async def search_listings(self, criteria: SearchCriteria) -> List[Listing]:
        try:
            return await self._source.search_listings(criteria)
        except ListingSourceError as exc:
            logger.warning("listing_search_failed error=%s", exc)
            return filter_listings(self._last_good, criteria)

    async def fetch_instructions(self) -> List[str]:
        try:
            return await self._source.fetch_instructions()
        except ListingSourceError as exc:
            logger.warning("instructions_fetch_failed error=%s", exc)
            return []


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first matching field in a dict by key synonyms.
    Inputs/Outputs: Input is a raw dict and a list of candidate keys; returns value or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_text and _has_value.
    Failure Modes: Returns None when no keys match or values are empty.
    If Removed: Field mapping for title/location/price/type fails.
    Testing Notes: "Precio" and "price" both resolve the price column.
    """
    # Normalize keys and look for exact synonym matches.
    normalized_map = {normalize_text(str(k)).replace(" ", "_"): k for k in item.keys()}
    for key in keys:
        actual = normalized_map.get(normalize_text(key).replace(" ", "_"))
        if actual is not None and _has_value(item.get(actual)):
            return item.get(actual)
    return None


def _has_value(value: Any) -> bool:
    # Treat None or blank strings as missing.
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True
