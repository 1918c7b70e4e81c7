from typing import Iterable, Optional, Set, Union

MIN_TOKEN_LENGTH = 3
OVERLAP_THRESHOLD = 0.6


def tokenize(label: str) -> Set[str]:
    """Whitespace tokens longer than MIN_TOKEN_LENGTH, lower-cased."""
    return {t for t in (label or "").lower().split() if len(t) > MIN_TOKEN_LENGTH}


def overlap_ratio(a: str, b: str) -> float:
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / min(len(tokens_a), len(tokens_b))


def labels_match(a: str, b: str) -> bool:
    if (a or "").strip().lower() == (b or "").strip().lower():
        return True
    return overlap_ratio(a, b) > OVERLAP_THRESHOLD


def find_duplicate(candidate: str, existing_labels: Iterable[str]) -> Optional[str]:
    """Returns the first existing label the candidate duplicates, if any."""
    for label in existing_labels:
        if labels_match(candidate, label):
            return label
    return None


def is_duplicate(candidate: str, existing_labels: Union[str, Iterable[str]]) -> bool:
    if isinstance(existing_labels, str):
        existing_labels = [existing_labels]
    return find_duplicate(candidate, existing_labels) is not None
