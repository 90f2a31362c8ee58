"""
Name Matching — Levenshtein-based fuzzy comparison of identity names.

Names are normalized (lowercase, letters only, single spaces) before
comparison, so "John  Doe." and "john doe" are identical.
"""
import re

MATCH_THRESHOLD = 0.8
HIGH_CONFIDENCE_THRESHOLD = 0.9


def normalize_name(name: str | None) -> str:
    if not name:
        return ""
    lowered = name.lower()
    letters_only = re.sub(r"[^a-z\s]", "", lowered)
    return re.sub(r"\s+", " ", letters_only).strip()


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit costs for insert, delete and substitute."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,                 # deletion
                current[j - 1] + 1,              # insertion
                previous[j - 1] + (ca != cb),    # substitution
            ))
        previous = current
    return previous[-1]


def similarity(name1: str | None, name2: str | None) -> float:
    """(max_len - distance) / max_len over normalized names, in [0, 1].

    Two names that normalize to nothing carry no evidence and score 0.
    """
    n1, n2 = normalize_name(name1), normalize_name(name2)
    max_len = max(len(n1), len(n2))
    if max_len == 0:
        return 0.0
    return (max_len - levenshtein(n1, n2)) / max_len


def confidence(score: float) -> str:
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return "HIGH"
    if score >= MATCH_THRESHOLD:
        return "MEDIUM"
    return "LOW"


def is_match(name1: str | None, name2: str | None, threshold: float = MATCH_THRESHOLD) -> bool:
    return similarity(name1, name2) >= threshold
