"""Edit-distance similarity used for duplicate-insight suppression."""

import re
from typing import Iterable, Optional

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein


def levenshtein_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def similarity_score(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 when either is empty."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a.lower(), b.lower())


def normalize_string(text: str) -> str:
    text = re.sub(r"\s+", " ", text.lower().strip())
    return re.sub(r"[^\w\s]", "", text)


def is_similar(a: str, b: str, threshold: float = 0.85) -> bool:
    """Compare after normalization (case, whitespace, punctuation)."""
    left = normalize_string(a)
    right = normalize_string(b)
    if left == right:
        return True
    return similarity_score(left, right) >= threshold


def find_best_match(
    target: str, candidates: Iterable[str], threshold: float = 0.85
) -> Optional[tuple[str, float]]:
    """Closest candidate scoring at least ``threshold``, or ``None``."""
    match = process.extractOne(
        target,
        list(candidates),
        scorer=Levenshtein.normalized_similarity,
        processor=normalize_string,
        score_cutoff=threshold,
    )
    if match is None:
        return None
    choice, score, _ = match
    return choice, score
