import re
from typing import Dict, List, Sequence, Tuple

import structlog
from diff_match_patch import diff_match_patch

from keiyaku.markup import ChangeState, render_deletion, render_insertion
from keiyaku.models import DiffOp, DiffSegment, DiffStats, LineChangeKind, LineDiffEntry
from keiyaku.utils.text import escape_html, round_half_up

logger = structlog.get_logger(__name__)

_WS_RE = re.compile(r"\s+")


def _to_segments(diffs) -> List[DiffSegment]:
    return [DiffSegment(DiffOp(op), text) for op, text in diffs]


def compute_diff(text1: str, text2: str) -> List[DiffSegment]:
    """
    Character-level shortest edit script between two texts, with semantic cleanup
    so that boundaries fall on natural token edges instead of stray shared letters.
    """
    dmp = diff_match_patch()
    diffs = dmp.diff_main(text1, text2)
    dmp.diff_cleanupSemantic(diffs)
    return _to_segments(diffs)


def compute_word_diff(text1: str, text2: str) -> List[DiffSegment]:
    """
    Word-level diff: each token is encoded as one character before diffing,
    so a change never splits a word.
    """
    dmp = diff_match_patch()

    # 1. Word-Level Tokenization & Encoding
    chars1, chars2, token_array = _words_to_chars(text1, text2)

    # 2. Compute Diff on the Encoded Strings
    diffs = dmp.diff_main(chars1, chars2, False)

    # 3. Semantic Cleanup
    dmp.diff_cleanupSemantic(diffs)

    # 4. Decode back to Text
    dmp.diff_charsToLines(diffs, token_array)
    return _to_segments(diffs)


def _words_to_chars(text1: str, text2: str) -> Tuple[str, str, List[str]]:
    """
    Splits text into words/tokens and encodes them as unique Unicode characters.
    """
    token_array: List[str] = []
    token_hash: Dict[str, int] = {}
    split_pattern = r"(\s+|\w+|[^\w\s])"

    def encode_text(text: str) -> str:
        tokens = [t for t in re.split(split_pattern, text) if t]
        encoded_chars = []
        for token in tokens:
            if token in token_hash:
                encoded_chars.append(chr(token_hash[token]))
            else:
                code = len(token_array)
                token_hash[token] = code
                token_array.append(token)
                encoded_chars.append(chr(code))
        return "".join(encoded_chars)

    chars1 = encode_text(text1)
    chars2 = encode_text(text2)
    return chars1, chars2, token_array


def compute_diff_stats(diffs: Sequence[DiffSegment]) -> DiffStats:
    added = removed = unchanged = 0

    for op, text in diffs:
        if op == DiffOp.INSERT:
            added += len(text)
        elif op == DiffOp.DELETE:
            removed += len(text)
        else:
            unchanged += len(text)

    total = added + removed + unchanged
    change_percentage = (added + removed) / total * 100 if total > 0 else 0.0

    return DiffStats(added=added, removed=removed, unchanged=unchanged, change_percentage=change_percentage)


def calculate_similarity(text1: str, text2: str) -> int:
    """0-100 similarity derived from the diff; two empty texts are identical (100)."""
    stats = compute_diff_stats(compute_diff(text1, text2))
    similarity = round_half_up(100 - stats.change_percentage)
    return similarity if text1 == text2 else min(99, similarity)


def has_changes(text1: str, text2: str) -> bool:
    return any(op != DiffOp.EQUAL for op, _ in compute_diff(text1, text2))


def extract_changes(text1: str, text2: str) -> Dict[str, List[str]]:
    """Non-blank deleted and inserted runs, in document order."""
    deletions: List[str] = []
    insertions: List[str] = []

    for op, text in compute_diff(text1, text2):
        if op == DiffOp.DELETE and text.strip():
            deletions.append(text)
        elif op == DiffOp.INSERT and text.strip():
            insertions.append(text)

    return {"deletions": deletions, "insertions": insertions}


def diff_to_html(diffs: Sequence[DiffSegment], state: ChangeState = ChangeState.PENDING) -> str:
    """Comparison view: escaped text, line breaks as <br>, changes wrapped in <ins>/<del>."""
    parts = []
    for op, text in diffs:
        escaped = escape_html(text).replace("\n", "<br>")
        if op == DiffOp.INSERT:
            parts.append(render_insertion(escaped, state))
        elif op == DiffOp.DELETE:
            parts.append(render_deletion(escaped, state))
        else:
            parts.append(escaped)
    return "".join(parts)


def compute_line_diff(text1: str, text2: str, aligned: bool = False) -> List[LineDiffEntry]:
    """
    Line-by-line comparison.

    By default lines are compared by index: line i of text1 against line i of text2.
    A single inserted or removed line therefore shows every later line as "modified".
    Pass aligned=True to realign on the longest common line subsequence instead.
    """
    if aligned:
        return _aligned_line_diff(text1, text2)

    lines1 = text1.split("\n")
    lines2 = text2.split("\n")
    result: List[LineDiffEntry] = []

    for i in range(max(len(lines1), len(lines2))):
        line1 = lines1[i] if i < len(lines1) else None
        line2 = lines2[i] if i < len(lines2) else None

        if line1 is None:
            result.append(LineDiffEntry(kind=LineChangeKind.ADDED, content=line2))
        elif line2 is None:
            result.append(LineDiffEntry(kind=LineChangeKind.REMOVED, content=line1))
        elif line1 == line2:
            result.append(LineDiffEntry(kind=LineChangeKind.UNCHANGED, content=line1))
        else:
            result.append(LineDiffEntry(kind=LineChangeKind.MODIFIED, content=line2, old_content=line1))

    return result


def _aligned_line_diff(text1: str, text2: str) -> List[LineDiffEntry]:
    dmp = diff_match_patch()
    # Terminate every line so the last one is encoded like the others
    chars1, chars2, line_array = dmp.diff_linesToChars(text1 + "\n", text2 + "\n")
    diffs = dmp.diff_main(chars1, chars2, False)
    dmp.diff_charsToLines(diffs, line_array)

    result: List[LineDiffEntry] = []
    pending_removed: List[str] = []

    def flush_removed():
        for line in pending_removed:
            result.append(LineDiffEntry(kind=LineChangeKind.REMOVED, content=line))
        pending_removed.clear()

    for op, text in diffs:
        lines = text.split("\n")[:-1]
        if op == DiffOp.DELETE:
            pending_removed.extend(lines)
        elif op == DiffOp.INSERT:
            # A removal directly followed by an insertion pairs up as modifications
            for line in lines:
                if pending_removed:
                    old = pending_removed.pop(0)
                    result.append(LineDiffEntry(kind=LineChangeKind.MODIFIED, content=line, old_content=old))
                else:
                    result.append(LineDiffEntry(kind=LineChangeKind.ADDED, content=line))
            flush_removed()
        else:
            flush_removed()
            for line in lines:
                result.append(LineDiffEntry(kind=LineChangeKind.UNCHANGED, content=line))

    flush_removed()
    return result


def _normalize_for_comparison(text: str) -> str:
    return _WS_RE.sub(" ", text.replace("　", " ")).strip()


def apply_partial_changes(
    original_text: str,
    suggested_text: str,
    show_deletions: bool = True,
    state: ChangeState = ChangeState.PENDING,
) -> str:
    """
    Renders suggested_text as inline markup against original_text: unchanged runs stay
    plain, inserted runs are wrapped in <ins>, deleted runs in <del> (or dropped when
    show_deletions is False). Used to preview a suggestion in place instead of
    replacing the whole clause.
    """
    normalized_original = _normalize_for_comparison(original_text)
    normalized_suggested = _normalize_for_comparison(suggested_text)

    dmp = diff_match_patch()
    diffs = dmp.diff_main(normalized_original, normalized_suggested)
    dmp.diff_cleanupSemantic(diffs)
    dmp.diff_cleanupEfficiency(diffs)

    parts = []
    for op, text in diffs:
        escaped = escape_html(text)
        if op == DiffOp.EQUAL:
            parts.append(escaped)
        elif op == DiffOp.INSERT:
            parts.append(render_insertion(escaped, state))
        elif show_deletions:
            parts.append(render_deletion(escaped, state))

    return "".join(parts)
