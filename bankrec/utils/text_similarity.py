"""
Text similarity helpers built on rapidfuzz.
"""

import re
from typing import Iterable, Optional, Set, Tuple

import structlog
from rapidfuzz import fuzz

from ..config import Settings, get_settings

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")


class TextSimilarityEngine:
    """
    Compares references and free-text descriptions across the bank and
    ledger sides of a candidate.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.threshold = self.settings.description_similarity_threshold

    @staticmethod
    def normalize_reference(value: Optional[str]) -> Optional[str]:
        """Case-fold and collapse whitespace. Empty references become None."""
        if value is None:
            return None
        normalized = _WHITESPACE.sub(" ", value).strip().lower()
        return normalized or None

    def reference_keys(self, references: Iterable[Optional[str]]) -> Set[str]:
        keys = set()
        for ref in references:
            key = self.normalize_reference(ref)
            if key:
                keys.add(key)
        return keys

    def similarity(self, text1: Optional[str], text2: Optional[str]) -> float:
        """
        Token-set similarity between two descriptions.

        Returns:
            Score between 0.0 and 1.0 (0.0 when either side is blank)
        """
        if not text1 or not text2:
            return 0.0
        left = text1.strip().lower()
        right = text2.strip().lower()
        if not left or not right:
            return 0.0
        return fuzz.token_set_ratio(left, right) / 100.0

    def best_match(
        self,
        texts1: Iterable[Optional[str]],
        texts2: Iterable[Optional[str]],
    ) -> Tuple[float, Optional[str], Optional[str]]:
        """Best scoring cross pair between two groups of descriptions."""
        best = (0.0, None, None)
        right = [t for t in texts2 if t]
        for left in texts1:
            if not left:
                continue
            for candidate in right:
                score = self.similarity(left, candidate)
                if score > best[0]:
                    best = (score, left, candidate)
        return best
