from typing import List
from rapidfuzz import fuzz

import logging
logger = logging.getLogger(__name__)


def normalize_reference(ref: str) -> str:
    """'Berakhot_55a' and 'berakhot 55a' compare equal after this."""
    return " ".join(ref.replace("_", " ").lower().split())


def fuzzy_match_reference(first: str, second: str, threshold: int = 92) -> bool:
    """
    Compares two reference strings using the Token Sort Ratio from RapidFuzz.
    Word order and small spelling drift do not break a match; an extra word
    ("Rashi on ...") or a different daf or verse number does.

    Args:
        first (str): A reference or source name.
        second (str): The reference or source name to compare against.
        threshold (int): The minimum similarity score (0-100) required for a match.

    Returns:
        bool: True if the similarity score is at or above the threshold, False otherwise.
    """
    if not isinstance(first, str) or not isinstance(second, str) or not first or not second:
        logger.debug(f"Invalid input for fuzzy_match_reference: first='{first}', second='{second}'")
        return False

    first_norm, second_norm = normalize_reference(first), normalize_reference(second)
    if first_norm == second_norm:
        return True
    # Token sets must agree on every digit-bearing token (55a vs 55b is a different page)
    if sorted(t for t in first_norm.split() if any(c.isdigit() for c in t)) != \
       sorted(t for t in second_norm.split() if any(c.isdigit() for c in t)):
        return False

    score = fuzz.token_sort_ratio(first_norm, second_norm)
    logger.debug(f"Fuzzy match '{first}' vs '{second}': Score = {score} (Threshold = {threshold})")
    return score >= threshold


def dedupe_references(refs: List[str], threshold: int = 92) -> List[int]:
    """Returns the indexes of the first occurrence of each distinct reference, in order."""
    kept: List[int] = []
    for i, ref in enumerate(refs):
        if not ref:
            kept.append(i)
            continue
        if any(refs[j] and fuzzy_match_reference(ref, refs[j], threshold) for j in kept):
            logger.debug(f"Dropping near-duplicate reference '{ref}'")
            continue
        kept.append(i)
    return kept
