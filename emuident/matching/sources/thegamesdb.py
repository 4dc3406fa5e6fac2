from __future__ import annotations

import os
from typing import Optional

from emuident.core.models import MatchCandidate, MatchMethod
from emuident.matching.sources.base import HttpIdentitySource

API_KEY_ENV = "EMUIDENT_TGDB_API_KEY"

# TheGamesDB platform ids per system name
PLATFORM_IDS = {
    "nes": 7,
    "fds": 4936,
    "snes": 6,
    "n64": 3,
    "gamecube": 2,
    "wii": 9,
    "gb": 4,
    "gbc": 41,
    "gba": 5,
    "nds": 8,
    "3ds": 4912,
    "psx": 10,
    "ps2": 11,
    "psp": 13,
    "dreamcast": 16,
    "megadrive": 18,
    "mastersystem": 35,
    "gamegear": 20,
    "32x": 33,
    "segacd": 21,
    "saturn": 17,
    "atari2600": 22,
    "atari7800": 27,
    "lynx": 4924,
    "pce": 34,
    "pcecd": 4955,
    "3do": 25,
}


class TheGamesDBSource(HttpIdentitySource):
    """Name search and id lookup on TheGamesDB. Needs an API key."""

    name = "thegamesdb"
    base_url = "https://api.thegamesdb.net/v1"
    supports_name_search = True
    supports_id_lookup = True

    def __init__(self, api_key: Optional[str] = None, priority: int = 10, **kwargs):
        super().__init__(priority=priority, **kwargs)
        self.api_key = api_key if api_key is not None else os.environ.get(API_KEY_ENV, "")

    @property
    def requires_auth(self) -> bool:
        return not self.api_key

    def describe(self) -> str:
        state = "configured" if self.api_key else "no API key"
        return f"TheGamesDB name search ({state})"

    def _games(self, data) -> list[dict]:
        if not isinstance(data, dict):
            return []
        payload = data.get("data")
        if not isinstance(payload, dict):
            return []
        games = payload.get("games") or []
        return [g for g in games if isinstance(g, dict)]

    def _candidate(self, game: dict, system: Optional[str], score: float = 0.0) -> MatchCandidate:
        rating = game.get("rating")
        return MatchCandidate(
            source=self.name,
            title=game.get("game_title") or "",
            method=MatchMethod.NAME_FUZZY,
            source_id=str(game.get("id", "")),
            system=system,
            rating=rating if isinstance(rating, (int, float)) else None,
            release_date=game.get("release_date"),
            description=game.get("overview"),
            score=score,
        )

    def search_by_name(self, title: str, system: Optional[str] = None) -> list[MatchCandidate]:
        if not title or not self.api_key:
            return []
        params = {"apikey": self.api_key, "name": title}
        platform_id = PLATFORM_IDS.get((system or "").lower())
        if platform_id:
            params["filter[platform]"] = platform_id

        data = self._request("GET", "/Games/ByGameName", params=params)
        wanted = title.lower()
        results = []
        for game in self._games(data):
            found = (game.get("game_title") or "").lower()
            if not found:
                continue
            if found == wanted:
                score = 1.0
            elif wanted in found or found in wanted:
                score = 0.8
            else:
                score = 0.6
            results.append(self._candidate(game, system, score))
        results.sort(key=lambda c: -c.score)
        return results

    def lookup_by_id(self, source_id: str) -> Optional[MatchCandidate]:
        if not source_id or not self.api_key:
            return None
        data = self._request(
            "GET",
            "/Games",
            params={"apikey": self.api_key, "id": source_id, "fields": "overview,rating,publishers"},
        )
        games = self._games(data)
        if not games:
            return None
        return self._candidate(games[0], None, 1.0)
