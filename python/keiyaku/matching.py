"""
Fuzzy location of clause text inside rendered contract markup.

Suggestions from the risk-analysis service quote the clause they want to replace,
but the quote rarely survives byte-for-byte: whitespace drifts, full-width digits
come back half-width, and the user may already have edited nearby. These helpers
find the heading / paragraph / list-item fragment that best matches the quote.
"""

import re
from typing import Iterator, List, Optional, Tuple

import structlog

from keiyaku.models import MatchResult
from keiyaku.utils.text import fold_width, round_half_up, strip_tags

logger = structlog.get_logger(__name__)

# Inner text may contain inline markup (<ins>, <del>, <strong>, <br> ...) but never a block tag
_BLOCK = r"(?:p|h[1-6]|li|ul|ol|table|tr|td|th|div)\b"
_INNER = rf"((?:[^<]|<(?!/|{_BLOCK})[^>]*>|</(?!{_BLOCK})[^>]*>)*)"

# Scanned kind by kind: headings first, then paragraphs, then list items.
FRAGMENT_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("heading", re.compile(rf"<(h[1-3])\b[^>]*>{_INNER}</\1>", re.IGNORECASE)),
    ("paragraph", re.compile(rf"<(p)\b[^>]*>{_INNER}</p>", re.IGNORECASE)),
    ("list_item", re.compile(rf"<(li)\b[^>]*>{_INNER}</li>", re.IGNORECASE)),
]

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """
    Canonical form used for every comparison:
    tags removed, full-width digits/letters/brackets folded, whitespace collapsed, trimmed.
    Japanese punctuation (、。) is left as is.
    """
    text = strip_tags(text)
    text = fold_width(text)
    return _WS_RE.sub(" ", text).strip()


def extract_and_normalize(html: str) -> str:
    """Like normalize_text, but tags become spaces so adjacent blocks don't fuse."""
    return normalize_text(strip_tags(html, " "))


def levenshtein_distance(str1: str, str2: str) -> int:
    """Edit distance with a single DP row."""
    len2 = len(str2)
    row = list(range(len2 + 1))

    for i in range(1, len(str1) + 1):
        prev = i
        for j in range(1, len2 + 1):
            if str1[i - 1] == str2[j - 1]:
                current = row[j - 1]
            else:
                current = min(row[j - 1], prev, row[j]) + 1
            row[j - 1] = prev
            prev = current
        row[len2] = prev

    return row[len2]


def calculate_similarity(str1: str, str2: str) -> int:
    """0-100. 100 iff normalized forms are equal, 0 if either normalizes to empty."""
    n1 = normalize_text(str1)
    n2 = normalize_text(str2)

    if n1 == n2:
        return 100
    if not n1 or not n2:
        return 0

    distance = levenshtein_distance(n1, n2)
    max_len = max(len(n1), len(n2))
    # Unequal forms never reach 100, however long they are
    return min(99, round_half_up((max_len - distance) / max_len * 100))


def contains_normalized(haystack: str, needle: str) -> bool:
    return normalize_text(needle) in normalize_text(haystack)


def iter_fragments(html: str) -> Iterator[Tuple[str, re.Match]]:
    """Yields (fragment_kind, match) for every heading, then paragraph, then list item."""
    for kind, pattern in FRAGMENT_PATTERNS:
        for match in pattern.finditer(html):
            yield kind, match


def _to_result(kind: str, match: re.Match, similarity: int) -> MatchResult:
    full = match.group(0)
    tag_name = match.group(1).lower()
    open_tag = full[: full.index(">") + 1]
    return MatchResult(
        matched_fragment=full,
        fragment_kind=kind,
        tag_name=tag_name,
        open_tag=open_tag,
        inner_text=match.group(2),
        similarity=similarity,
        start_offset=match.start(),
        end_offset=match.end(),
    )


def find_best_match(html_content: str, target_text: str, min_similarity: int = 70) -> Optional[MatchResult]:
    """
    Finds the fragment of html_content closest to target_text.

    1. Exact normalized match: returned immediately with similarity 100.
    2. Containment: 95 if the fragment contains the target, 90 if the target contains
       the fragment. Recorded as a candidate; scanning continues.
    3. Otherwise Levenshtein similarity, kept only if >= min_similarity and strictly
       better than the current best.

    Returns None when nothing clears the threshold.
    """
    normalized_target = normalize_text(target_text)
    if not normalized_target:
        return None

    best: Optional[MatchResult] = None

    for kind, match in iter_fragments(html_content):
        normalized_inner = normalize_text(match.group(2))
        if not normalized_inner:
            # An empty fragment is "contained" in every target
            continue

        if normalized_inner == normalized_target:
            return _to_result(kind, match, 100)

        if normalized_target in normalized_inner or normalized_inner in normalized_target:
            similarity = 95 if normalized_target in normalized_inner else 90
            if best is None or similarity > best.similarity:
                best = _to_result(kind, match, similarity)
            continue

        similarity = calculate_similarity(normalized_inner, normalized_target)
        if similarity >= min_similarity and (best is None or similarity > best.similarity):
            best = _to_result(kind, match, similarity)

    if best is None:
        logger.debug(f"No fragment matched '{normalized_target[:30]}' at >= {min_similarity}")
    return best


def find_by_prefix(
    html_content: str,
    target_text: str,
    prefix_length: int = 15,
    min_similarity: int = 80,
) -> Optional[MatchResult]:
    """
    Fallback for long snippets whose tail has drifted: a fragment is only scored if its
    normalized text starts with the target's normalized prefix.
    """
    normalized_target = normalize_text(target_text)
    prefix = normalized_target[:prefix_length]

    if len(prefix) < 5:
        return None

    best: Optional[MatchResult] = None

    for kind, match in iter_fragments(html_content):
        normalized_inner = normalize_text(match.group(2))
        if not normalized_inner.startswith(prefix):
            continue

        similarity = calculate_similarity(normalized_inner, normalized_target)
        if similarity >= min_similarity and (best is None or similarity > best.similarity):
            best = _to_result(kind, match, similarity)

    return best
