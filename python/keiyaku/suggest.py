"""
Re-anchoring externally authored suggestions into the live contract markup.

A suggestion names the clause it replaces (original_text) and the replacement
(suggested_text). The clause is located with progressively looser strategies and
replaced by tracked ins/del markup so the user can review the change in place.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog

from keiyaku.diff import apply_partial_changes
from keiyaku.markup import ChangeState, finalize_changes, render_suggestion, strip_html
from keiyaku.matching import find_best_match, find_by_prefix, normalize_text
from keiyaku.models import MatchResult, Suggestion

logger = structlog.get_logger(__name__)


@dataclass
class SuggestionResult:
    applied: bool
    content: str
    strategy: Optional[str] = None  # already_applied | exact | fuzzy | prefix
    match: Optional[MatchResult] = None


@dataclass
class _Anchor:
    start: int
    end: int
    replacement: str
    strategy: str
    match: Optional[MatchResult] = None


def _suggestion_markup(original: str, suggested: str, state: ChangeState) -> str:
    return render_suggestion(apply_partial_changes(original, suggested, state=state), state)


def _locate(
    html: str,
    suggestion: Suggestion,
    min_similarity: int,
    state: ChangeState,
) -> Optional[_Anchor]:
    """
    Finds where a suggestion lands, using progressive strategies:
      1. Exact substring of the original text.
      2. Best-matching fragment (normalization + edit distance).
      3. Prefix-guarded fragment match for long clauses.
    A located span whose accepted text already reads as the suggestion is left as is
    (strategy "already_applied"). Returns None if the clause cannot be found.
    """
    original = suggestion.original_text
    suggested = normalize_text(suggestion.suggested_text)
    if not original.strip():
        return None

    # 1. Exact match
    idx = html.find(original)
    if idx != -1:
        end = idx + len(original)
        if normalize_text(original) == suggested:
            return _Anchor(idx, end, html[idx:end], "already_applied")
        markup = _suggestion_markup(original, suggestion.suggested_text, state)
        return _Anchor(idx, end, markup, "exact")

    # 2. Fuzzy fragment match, 3. prefix fallback
    match = find_best_match(html, original, min_similarity)
    strategy = "fuzzy"
    if match is None:
        match = find_by_prefix(html, original, min_similarity=max(min_similarity, 80))
        strategy = "prefix"
    if match is None:
        return None

    # Compared and diffed as the reader sees it, with earlier tracked changes accepted
    current = strip_html(finalize_changes(match.inner_text))
    if normalize_text(current) == suggested:
        return _Anchor(match.start_offset, match.end_offset, match.matched_fragment, "already_applied", match)

    markup = _suggestion_markup(current, suggestion.suggested_text, state)
    closing = match.matched_fragment[match.matched_fragment.rindex("</") :]
    return _Anchor(
        match.start_offset,
        match.end_offset,
        f"{match.open_tag}{markup}{closing}",
        strategy,
        match,
    )


def apply_suggestion(
    html: str,
    suggestion: Suggestion,
    min_similarity: int = 70,
    state: ChangeState = ChangeState.PENDING,
) -> SuggestionResult:
    """
    Applies one suggestion to the document markup.
    A located clause that already reads as the suggestion is reported as applied without changes.
    """
    anchor = _locate(html, suggestion, min_similarity, state)
    if anchor is None:
        logger.warning(f"Suggestion target not found: '{suggestion.original_text[:50]}...'")
        return SuggestionResult(applied=False, content=html)

    if anchor.strategy == "already_applied":
        return SuggestionResult(applied=True, content=html, strategy=anchor.strategy, match=anchor.match)

    logger.info(f"Suggestion applied via {anchor.strategy} match")
    content = html[: anchor.start] + anchor.replacement + html[anchor.end :]
    return SuggestionResult(applied=True, content=content, strategy=anchor.strategy, match=anchor.match)


def apply_suggestions(
    html: str,
    suggestions: List[Suggestion],
    min_similarity: int = 70,
    state: ChangeState = ChangeState.PENDING,
) -> Tuple[str, int, int]:
    """
    Applies a batch of suggestions against the same snapshot.

    Every suggestion is located first (an already-applied one still counts as applied
    and claims its span); overlapping matches are resolved in favour of
    the earlier suggestion in the list, then replacements are applied from the end of
    the document backwards so earlier offsets stay valid.

    Returns (content, applied, skipped).
    """
    if not suggestions:
        return html, 0, 0

    # Step 1: Find anchors for each suggestion
    located: List[Tuple[_Anchor, int]] = []
    skipped = 0

    for idx, suggestion in enumerate(suggestions):
        anchor = _locate(html, suggestion, min_similarity, state)
        if anchor is None:
            logger.warning(f"Skipping suggestion {idx}: target not found: '{suggestion.original_text[:50]}...'")
            skipped += 1
            continue
        if anchor.strategy == "already_applied":
            logger.debug(f"Suggestion {idx} already present")
        located.append((anchor, idx))

    # Step 2: Check for overlaps, first-in-list wins
    accepted: List[Tuple[_Anchor, int]] = []
    occupied: List[Tuple[int, int]] = []

    for anchor, idx in located:
        if any(anchor.start < occ_end and anchor.end > occ_start for occ_start, occ_end in occupied):
            logger.warning(f"Skipping suggestion {idx}: overlaps with a previously matched suggestion")
            skipped += 1
            continue
        accepted.append((anchor, idx))
        occupied.append((anchor.start, anchor.end))

    # Step 3: Apply from end to start
    accepted.sort(key=lambda x: x[0].start, reverse=True)
    result = html
    for anchor, _ in accepted:
        result = result[: anchor.start] + anchor.replacement + result[anchor.end :]

    return result, len(accepted), skipped
