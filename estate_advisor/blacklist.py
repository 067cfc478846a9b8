from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Set

import httpx

from .utils import normalize_phone, phone_key

logger = logging.getLogger("estate_advisor.blacklist")


class ContactListError(Exception):
    """Raised when the remote contact list cannot be fetched."""


class LocalBlacklist:
    """Persisted set of blocked numbers managed by admins and the HTTP API."""

    def __init__(self, path: Path) -> None:
        """Purpose: Initialize the blacklist and load prior numbers from disk.
        Inputs/Outputs: Input is a Path; no return value.
        Side Effects / State: Loads numbers into an in-memory set.
        Dependencies: Calls _load; uses a JSON file on disk.
        Failure Modes: JSON decode errors are logged, leaving an empty set.
        If Removed: Operators cannot block numbers without a redeploy.
        Testing Notes: Ensure an added number is persisted and reloaded.
        """
        # Keep the backing file path and hydrate cached numbers.
        self._path = path
        self._numbers: Set[str] = set()
        self._load()

    def _load(self) -> None:
        """Purpose: Load the number list from the JSON file if it exists.
        Inputs/Outputs: Reads self._path; no return value.
        Side Effects / State: Populates self._numbers.
        Dependencies: json.loads and Path.read_text.
        Failure Modes: Missing file or JSONDecodeError results in an empty set.
        If Removed: Blocked numbers are forgotten on restart.
        Testing Notes: Validate behavior with missing and malformed files.
        """
        # Read and parse the JSON number list.
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("blacklist_file_invalid path=%s", self._path)
            return
        numbers = data.get("numbers", []) if isinstance(data, dict) else data
        if isinstance(numbers, list):
            self._numbers = {normalize_phone(str(n)) for n in numbers if normalize_phone(str(n))}

    def _persist(self) -> None:
        """Purpose: Write the number set to disk.
        Inputs/Outputs: Writes a JSON file; no return value.
        Side Effects / State: Persists the current number set.
        Dependencies: json.dumps and Path.write_text.
        Failure Modes: IO errors raise (not handled here).
        If Removed: Changes made through the API are lost on restart.
        Testing Notes: Ensure file content matches the in-memory set.
        """
        # Persist sorted numbers so diffs stay readable.
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"numbers": sorted(self._numbers)}
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def add(self, number: str) -> bool:
        digits = normalize_phone(number)
        if not digits or digits in self._numbers:
            return False
        self._numbers.add(digits)
        self._persist()
        logger.info("blacklist_add number=%s", digits)
        return True

    def remove(self, number: str) -> bool:
        key = phone_key(number)
        matched = {n for n in self._numbers if key and phone_key(n) == key}
        if not matched:
            return False
        self._numbers -= matched
        self._persist()
        logger.info("blacklist_remove number=%s", normalize_phone(number))
        return True

    def contains(self, number: str) -> bool:
        # Compare on the last ten digits so "+52 1" prefixes do not matter.
        key = phone_key(number)
        if not key:
            return False
        return any(phone_key(n) == key for n in self._numbers)

    def all(self) -> List[str]:
        return sorted(self._numbers)


class RemoteContactList:
    """Contact numbers kept in a Supabase table, cached for a short TTL."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "watsapps",
        column: str = "numero",
        ttl_seconds: float = 60.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._api_key = api_key
        self._table = table
        self._column = column
        self._ttl = ttl_seconds
        self._timeout = timeout
        self._transport = transport
        self._clock = clock
        self._cache: Optional[Set[str]] = None
        self._fetched_at = 0.0

    async def _fetch(self) -> Set[str]:
        """Purpose: Download the contact numbers and reduce them to ten-digit keys.
        Inputs/Outputs: No inputs; returns a set of phone keys.
        Side Effects / State: Performs an HTTP GET.
        Dependencies: httpx.AsyncClient and Supabase REST conventions.
        Failure Modes: Network errors, HTTP >= 400, and bad bodies raise ContactListError.
        If Removed: The second blacklist source disappears.
        Testing Notes: Use httpx.MockTransport to return [{"numero": "..."}].
        """
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._url, headers=headers, params={"select": self._column})
        except httpx.HTTPError as exc:
            raise ContactListError(f"request to {self._table} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ContactListError(f"{self._table} returned HTTP {response.status_code}")
        try:
            rows = response.json()
        except ValueError as exc:
            raise ContactListError(f"{self._table} returned invalid JSON") from exc
        if not isinstance(rows, list):
            raise ContactListError(f"{self._table} returned a non-list body")
        keys = set()
        for row in rows:
            if isinstance(row, dict) and row.get(self._column):
                key = phone_key(str(row[self._column]))
                if key:
                    keys.add(key)
        return keys

    async def contains(self, number: str) -> bool:
        # Refresh the cache when it is missing or older than the TTL.
        now = self._clock()
        if self._cache is None or now - self._fetched_at >= self._ttl:
            self._cache = await self._fetch()
            self._fetched_at = now
            logger.debug("contact_list_refreshed size=%s", len(self._cache))
        key = phone_key(number)
        return bool(key) and key in self._cache


class BlacklistRegistry:
    """Union of the local blacklist and the optional remote contact list."""

    def __init__(self, local: LocalBlacklist, remote: Optional[RemoteContactList] = None) -> None:
        self.local = local
        self._remote = remote

    async def contains(self, number: str) -> bool:
        """Purpose: Decide whether a sender is blocked by either source.
        Inputs/Outputs: Input is the sender number; output is a bool.
        Side Effects / State: May refresh the remote cache.
        Dependencies: LocalBlacklist.contains, RemoteContactList.contains.
        Failure Modes: Remote failures are logged and count as "not listed";
            the local list still applies.
        If Removed: Blocked numbers would receive replies.
        Testing Notes: A number only in the remote list is blocked; a failing remote
            does not raise.
        """
        if self.local.contains(number):
            return True
        if self._remote is None:
            return False
        try:
            return await self._remote.contains(number)
        except ContactListError as exc:
            logger.warning("contact_list_unavailable number=%s error=%s", normalize_phone(number), exc)
            return False

