"""
Holiday Calendar for deadline calculations.

Fetches the national holidays of a calendar year from an external provider
and caches them per year.

Key Rules:
- A cache entry younger than the TTL (6 hours) is served without a fetch
- A failed fetch never raises: it serves the previous entry, or an empty set
- After a failed fetch the provider is not asked again for that year until
  the retry-after window passes
- Each year is cached independently
- Concurrent misses for the same year trigger a single fetch
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional

import httpx

from practicas.core.config import settings
from practicas.core.exceptions import HolidayProviderError


logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# CACHE
# ==========================================

class HolidayCache(ABC):
    """Storage for per-year holiday sets."""

    @abstractmethod
    def get(self, year: int) -> tuple[Optional[frozenset[date]], bool]:
        """Return ``(holidays, is_fresh)``. ``holidays`` is None when nothing is cached."""

    @abstractmethod
    def put(self, year: int, holidays: frozenset[date]) -> None:
        """Store the holidays for ``year`` and restart its TTL."""


class InMemoryHolidayCache(HolidayCache):
    """Process-local cache with a fixed TTL per year."""

    def __init__(self, ttl: timedelta = timedelta(hours=6), clock: Clock = _utc_now):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[int, tuple[frozenset[date], datetime]] = {}
        self._lock = threading.Lock()

    def get(self, year: int) -> tuple[Optional[frozenset[date]], bool]:
        with self._lock:
            entry = self._entries.get(year)
        if entry is None:
            return None, False
        holidays, cached_at = entry
        return holidays, self._clock() - cached_at < self.ttl

    def put(self, year: int, holidays: frozenset[date]) -> None:
        with self._lock:
            self._entries[year] = (frozenset(holidays), self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# ==========================================
# PROVIDER
# ==========================================

class HolidayProvider:
    """
    HTTP client for the public holiday API.

    Expected payload::

        {"status": "success", "data": [{"date": "2025-09-18", "title": "..."}]}

    Only the ``date`` field of each entry is consumed.
    """

    def __init__(
        self,
        url_template: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        self.url_template = url_template or settings.holiday_api_url
        self.timeout = timeout if timeout is not None else settings.holiday_fetch_timeout_seconds
        self._client = client

    def fetch(self, year: int) -> frozenset[date]:
        """
        Fetch holidays for ``year``.

        Raises:
            HolidayProviderError: non-success status or malformed payload
            httpx.HTTPError: transport failure or timeout
        """
        url = self.url_template.format(year=year)

        if self._client is not None:
            response = self._client.get(url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url)

        if response.status_code != 200:
            raise HolidayProviderError(
                f"Holiday provider returned HTTP {response.status_code}",
                year=year
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise HolidayProviderError("Holiday provider returned invalid JSON", year, str(e))

        return self._parse(payload, year)

    @staticmethod
    def _parse(payload: object, year: int) -> frozenset[date]:
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise HolidayProviderError("Holiday provider reported a non-success status", year)

        entries = payload.get("data")
        if not isinstance(entries, list):
            raise HolidayProviderError("Holiday payload has no data list", year)

        holidays = set()
        for entry in entries:
            try:
                holidays.add(date.fromisoformat(entry["date"]))
            except (KeyError, TypeError, ValueError) as e:
                raise HolidayProviderError("Malformed holiday entry", year, repr(e))
        return frozenset(holidays)


# ==========================================
# CALENDAR
# ==========================================

class HolidayCalendar:
    """Fail-open, per-year cached view over a holiday provider."""

    def __init__(
        self,
        provider: Optional[HolidayProvider] = None,
        cache: Optional[HolidayCache] = None,
        retry_after: Optional[timedelta] = None,
        clock: Clock = _utc_now
    ):
        self.provider = provider or HolidayProvider()
        self.cache = cache or InMemoryHolidayCache(
            ttl=timedelta(hours=settings.holiday_cache_ttl_hours)
        )
        self.retry_after = retry_after or timedelta(minutes=settings.holiday_retry_after_minutes)
        self._clock = clock
        self._retry_at: dict[int, datetime] = {}
        self._year_locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, year: int) -> threading.Lock:
        with self._locks_guard:
            return self._year_locks.setdefault(year, threading.Lock())

    def holidays_for_year(self, year: int) -> frozenset[date]:
        """Return the holidays of ``year``. Never raises on provider failure."""
        holidays, is_fresh = self.cache.get(year)
        if holidays is not None and is_fresh:
            return holidays

        with self._lock_for(year):
            # Another thread may have refreshed the entry while we waited
            holidays, is_fresh = self.cache.get(year)
            if holidays is not None and is_fresh:
                return holidays

            retry_at = self._retry_at.get(year)
            if retry_at is not None and self._clock() < retry_at:
                return holidays if holidays is not None else frozenset()

            try:
                fetched = self.provider.fetch(year)
            except (httpx.HTTPError, HolidayProviderError) as e:
                self._retry_at[year] = self._clock() + self.retry_after
                if holidays is not None:
                    logger.warning(f"Holiday fetch for {year} failed, serving stale data: {e}")
                    return holidays
                logger.warning(f"Holiday fetch for {year} failed, no cached data: {e}")
                return frozenset()

            self._retry_at.pop(year, None)
            self.cache.put(year, fetched)
            logger.info(f"Loaded {len(fetched)} holidays for {year}")
            return fetched

    def is_holiday(self, check_date: date) -> bool:
        return check_date in self.holidays_for_year(check_date.year)

    def holidays_between(self, start: date, end: date) -> list[date]:
        """Sorted holidays in ``[start, end]`` inclusive."""
        result = []
        for year in range(start.year, end.year + 1):
            result.extend(d for d in self.holidays_for_year(year) if start <= d <= end)
        return sorted(result)


@lru_cache
def get_holiday_calendar() -> HolidayCalendar:
    """Shared calendar used by routes and scheduled jobs."""
    return HolidayCalendar()
