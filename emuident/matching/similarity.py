from __future__ import annotations

import difflib

from emuident import config
from emuident.core.models import MatchMethod
from emuident.core.naming import title_key


class MatchEngine:
    """Title similarity and confidence grading for name-based matches."""

    @staticmethod
    def calculate_similarity(a: str, b: str) -> int:
        """Similarity score (0-100) between two titles, ignoring tags and case."""
        norm_a = title_key(a).replace(" ", "")
        norm_b = title_key(b).replace(" ", "")
        if not norm_a or not norm_b:
            return 0

        ratio = difflib.SequenceMatcher(None, norm_a, norm_b).ratio()
        return int(ratio * 100)

    def grade(self, requested: str, returned: str) -> tuple[MatchMethod, int]:
        """Match method and confidence for a title returned by a name search.

        An exact case-insensitive title scores highest, substring containment
        medium, anything else is scaled into the low band by similarity.
        """
        req = title_key(requested)
        ret = title_key(returned)
        if not req or not ret:
            return MatchMethod.NAME_FUZZY, 0
        if req == ret:
            return MatchMethod.NAME_EXACT, config.CONFIDENCE_EXACT_NAME
        if req in ret or ret in req:
            return MatchMethod.NAME_FUZZY, config.CONFIDENCE_CONTAINS
        similarity = self.calculate_similarity(requested, returned)
        if similarity == 0:
            return MatchMethod.NAME_FUZZY, 0
        span = config.CONFIDENCE_FUZZY_MAX - config.CONFIDENCE_FUZZY_MIN
        return MatchMethod.NAME_FUZZY, config.CONFIDENCE_FUZZY_MIN + span * similarity // 100
