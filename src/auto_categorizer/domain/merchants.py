import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

# Shorter side of a substring match must be at least this long.
MIN_FUZZY_LENGTH = 3


def normalize_merchant(text: str | None) -> str:
    """
    Lower-case, drop everything outside [a-z0-9] and whitespace, collapse
    whitespace runs and trim.

    >>> normalize_merchant("McDonald's!!!")
    'mcdonalds'
    """
    if not text:
        return ""
    lowered = _NON_ALNUM.sub("", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def overlap_score(left: str, right: str) -> int:
    """
    Relevance of two normalized merchant strings.

    Length of the shorter string when one contains the other and the shorter
    one has at least MIN_FUZZY_LENGTH characters, otherwise 0.
    """
    if not left or not right:
        return 0
    shorter, longer = (left, right) if len(left) <= len(right) else (right, left)
    if len(shorter) < MIN_FUZZY_LENGTH:
        return 0
    if shorter in longer:
        return len(shorter)
    return 0
