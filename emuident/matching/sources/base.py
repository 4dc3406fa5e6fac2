from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter

from emuident.common.exceptions import (
    SourceRateLimitedError,
    SourceResponseError,
    SourceTimeoutError,
    SourceUnavailableError,
)
from emuident.config import DEFAULT_SOURCE_INTERVAL_S, DEFAULT_SOURCE_TIMEOUT_S
from emuident.core.models import HashSet, MatchCandidate
from emuident.logging_cfg import get_logger
from emuident.matching.rate_limiter import RateLimiter


class IdentitySource(ABC):
    """A service that can propose identities for a unit.

    Sources declare what they can do through the ``supports_*`` flags; the
    orchestrator only calls the operations a source supports. Every source
    owns its own :class:`RateLimiter`, so pacing is per source.
    """

    name: str = "source"
    supports_hash_lookup: bool = False
    supports_name_search: bool = False
    supports_id_lookup: bool = False

    def __init__(
        self,
        priority: int = 0,
        interval: float = DEFAULT_SOURCE_INTERVAL_S,
        timeout: float = DEFAULT_SOURCE_TIMEOUT_S,
    ):
        self.priority = priority
        self.timeout = timeout
        self.limiter = RateLimiter(interval)

    @property
    def requires_auth(self) -> bool:
        return False

    def is_available(self) -> bool:
        return not self.requires_auth

    def lookup_by_hash(self, hashes: HashSet, system: Optional[str] = None) -> Optional[MatchCandidate]:
        return None

    def search_by_name(self, title: str, system: Optional[str] = None) -> list[MatchCandidate]:
        return []

    def lookup_by_id(self, source_id: str) -> Optional[MatchCandidate]:
        return None

    def reset_session(self) -> None:
        """Called after a call was abandoned on timeout."""

    @abstractmethod
    def describe(self) -> str:
        """One-line description shown in listings."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} priority={self.priority}>"


class SourceRegistry:
    """Sources kept in descending priority order.

    Sources of equal priority keep their registration order.
    """

    def __init__(self, sources: Iterable[IdentitySource] = ()):
        self._sources: list[IdentitySource] = []
        for source in sources:
            self.register(source)

    def register(self, source: IdentitySource) -> None:
        if self.get(source.name) is not None:
            raise ValueError(f"Source already registered: {source.name}")
        self._sources.append(source)
        self._sources.sort(key=lambda s: -s.priority)

    def unregister(self, name: str) -> Optional[IdentitySource]:
        source = self.get(name)
        if source is not None:
            self._sources.remove(source)
        return source

    def get(self, name: str) -> Optional[IdentitySource]:
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def available(self) -> list[IdentitySource]:
        return [s for s in self._sources if s.is_available()]

    def __iter__(self) -> Iterator[IdentitySource]:
        return iter(list(self._sources))

    def __len__(self) -> int:
        return len(self._sources)


class HttpIdentitySource(IdentitySource):
    """Base for sources reached over HTTP with a shared ``requests`` session."""

    base_url: str = ""

    def __init__(self, session: Optional[requests.Session] = None, **kwargs):
        super().__init__(**kwargs)
        self.session = self._mount(session or requests.Session())
        self.logger = get_logger(f"matching.{self.name}")

    @staticmethod
    def _mount(session: requests.Session) -> requests.Session:
        adapter = HTTPAdapter(max_retries=2)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def reset_session(self) -> None:
        # the abandoned call keeps the old session to itself
        self.logger.debug("Replacing HTTP session of %s after a timeout", self.name)
        self.session = self._mount(requests.Session())

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _request(self, method: str, endpoint: str, **kwargs) -> Optional[Any]:
        """Send one request and decode its JSON body.

        Returns ``None`` for 404, which these services use for "no match".

        Raises:
            SourceTimeoutError: no answer within ``self.timeout``.
            SourceUnavailableError: connection failure, auth refused or 5xx.
            SourceRateLimitedError: the service answered 429.
            SourceResponseError: any other error status or a non-JSON body.
        """
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.Timeout as e:
            raise SourceTimeoutError(self.name, self.timeout) from e
        except requests.RequestException as e:
            raise SourceUnavailableError(self.name, str(e)) from e

        status = resp.status_code
        if status == 404:
            return None
        if status == 429:
            retry_after = resp.headers.get("Retry-After")
            try:
                retry = float(retry_after) if retry_after else None
            except ValueError:
                retry = None
            raise SourceRateLimitedError(self.name, retry)
        if status in (401, 403) or status >= 500:
            raise SourceUnavailableError(self.name, f"HTTP {status}")
        if status >= 400:
            raise SourceResponseError(self.name, f"HTTP {status}")
        try:
            return resp.json()
        except ValueError as e:
            raise SourceResponseError(self.name, f"invalid JSON: {e}") from e
