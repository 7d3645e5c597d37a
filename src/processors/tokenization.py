"""
Tokenization and term matching utilities for trace recall and filtering.

Topic terms are produced by splitting on whitespace and common Latin and CJK
punctuation. Matching against chunk content is case-sensitive substring
containment, the same test used by the hard alias gate.
"""

import re
from typing import Iterable, List


# Whitespace plus ASCII and full-width separators
TOKEN_SEPARATORS = re.compile(r'[\s,，。；;、|/()（）]+')

MIN_TOKEN_LENGTH = 2
MAX_TOKENS_PER_TEXT = 12


def tokenize(value: str) -> List[str]:
    """
    Split free text into candidate topic terms.

    Args:
        value: Event text or keyword

    Returns:
        Up to 12 tokens of length >= 2, in original order

    Examples:
        >>> tokenize("郭文贵 案件，庭审/判决")
        ['郭文贵', '案件', '庭审', '判决']
        >>> tokenize("a bc d")
        ['bc']
    """
    tokens = [t.strip() for t in TOKEN_SEPARATORS.split(value or '')]
    tokens = [t for t in tokens if len(t) >= MIN_TOKEN_LENGTH]
    return tokens[:MAX_TOKENS_PER_TEXT]


def escape_fts(term: str) -> str:
    """Strip double quotes so a term can be wrapped as an FTS5 phrase."""
    return term.replace('"', '')


def fts_phrase_group(terms: Iterable[str]) -> str:
    """
    Build an OR-group of quoted FTS5 phrases.

    Examples:
        >>> fts_phrase_group(['Miles', 'Guo "Wengui"'])
        '"Miles" OR "Guo Wengui"'
    """
    phrases = [f'"{escape_fts(t)}"' for t in terms if escape_fts(t).strip()]
    return " OR ".join(phrases)


def clean_terms(values: Iterable) -> List[str]:
    """Stringify, strip and drop empty values while keeping order."""
    cleaned = []
    for value in values or []:
        if value is None:
            continue
        value = str(value).strip()
        if value:
            cleaned.append(value)
    return cleaned


def unique_terms(values: Iterable[str]) -> List[str]:
    """Deduplicate while preserving first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def contains_any(content: str, terms: List[str]) -> bool:
    """True if content contains at least one term (or no terms are given)."""
    if not terms:
        return True
    return any(t and t in content for t in terms)


def contains_all(content: str, terms: List[str]) -> bool:
    """True if content contains every term (or no terms are given)."""
    if not terms:
        return True
    return all(t and t in content for t in terms)
