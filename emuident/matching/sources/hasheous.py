from __future__ import annotations

import os
from typing import Optional

from emuident.config import CONFIDENCE_HASH
from emuident.core.models import HashSet, MatchCandidate, MatchMethod
from emuident.matching.sources.base import HttpIdentitySource

API_KEY_ENV = "EMUIDENT_HASHEOUS_API_KEY"

# request body field names used by the lookup endpoint
_BODY_FIELDS = (("crc32", "crc"), ("md5", "mD5"), ("sha1", "shA1"))


class HasheousSource(HttpIdentitySource):
    """Hash lookup against the Hasheous signature service.

    No credentials are needed for lookups; a client API key is sent when
    configured.
    """

    name = "hasheous"
    base_url = "https://hasheous.org/api/v1"
    supports_hash_lookup = True

    def __init__(self, api_key: Optional[str] = None, priority: int = 50, **kwargs):
        super().__init__(priority=priority, **kwargs)
        self.api_key = api_key if api_key is not None else os.environ.get(API_KEY_ENV, "")

    def describe(self) -> str:
        return "Hasheous hash signature lookup"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["X-Client-API-Key"] = self.api_key
        return headers

    def lookup_by_hash(self, hashes: HashSet, system: Optional[str] = None) -> Optional[MatchCandidate]:
        body = {key: getattr(hashes, field) for field, key in _BODY_FIELDS if getattr(hashes, field)}
        if not body:
            return None
        self.logger.debug("Looking up %s", body)
        data = self._request(
            "POST",
            "/Lookup/ByHash",
            json=body,
            params={"returnAllSources": "true", "returnFields": "Signatures,Metadata,Attributes"},
        )
        if not data or not data.get("name"):
            return None
        return self._parse(data, system)

    def _parse(self, data: dict, system: Optional[str]) -> MatchCandidate:
        external = {}
        for meta in data.get("metadata") or []:
            source = meta.get("source")
            immutable_id = meta.get("immutableId")
            if source and immutable_id:
                external[source.lower()] = str(immutable_id)

        publisher = None
        for sig in data.get("signatures") or []:
            game = sig.get("game") if isinstance(sig, dict) else None
            if isinstance(game, dict) and game.get("publisher"):
                publisher = game["publisher"]
                break

        candidate = MatchCandidate(
            source=self.name,
            title=data["name"],
            method=MatchMethod.HASH,
            source_id=str(data.get("id", "")),
            system=system,
            publisher=publisher,
            score=1.0,
            confidence=CONFIDENCE_HASH,
        )
        if external:
            self.logger.debug("%s cross references: %s", candidate.title, external)
        return candidate
