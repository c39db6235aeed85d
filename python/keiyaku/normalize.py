"""
Text normalization for extracted contract text.

Raw text from PDF extraction or OCR carries page furniture, wrapped lines, stray
spaces between Japanese characters and tables flattened to delimiter-separated rows.
Each step below is a total str -> str transform (never raises, never returns None);
enhanced_text_processing chains them in a fixed order that later steps depend on.
"""

import re
from typing import Callable, List, Optional, Sequence

import structlog

from keiyaku.structure.signature import DATE_PATTERNS, find_signature_start
from keiyaku.utils.text import CJK_CHARS, HEADING_DIGITS, escape_html

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Shared line predicates
# ---------------------------------------------------------------------------

_ARTICLE_HEADING_LINE = re.compile(rf"^第[{HEADING_DIGITS}]+条(?:[（(][^）)]*[）)])?$")
_CONTRACT_TITLE_LINE = re.compile(r"^\S.{0,19}(?:契約書|覚書|合意書|Agreement|AGREEMENT)$")
_ROLE_MARKER_LINE = re.compile(r"^(?:甲|乙|丙)[：:]?$")

# Markers that open a new logical unit (heading, numbered paragraph, item, bullet, party label)
_UNIT_START = re.compile(
    rf"^(?:"
    rf"第[{HEADING_DIGITS}]+条"
    r"|[0-9０-９]+[.．]\s?"
    r"|[0-9０-９]+\s+(?:甲|乙|前項|その他|本|当該|相手方)"
    r"|[（(][0-9０-９]+[）)]"
    r"|[①-⑳]"
    r"|[・●○■□◆◇※]"
    r"|[-*]\s"
    r"|(?:甲|乙|丙)(?:\s*$|[：:\s])"
    r"|(?:住所|所在地|名称|商号|氏名|代表者)[：:]"
    r"|(?:令和|平成|昭和)\s*[0-9０-９元]+\s*年"
    r"|(?:以上|本契約締結の証として)"
    r")"
)

_SENTENCE_END = ("。", "．", "！", "？", "!", "?", "」", "』", ":", "：")

_TABLE_SPACE_SPLIT = re.compile(r" {3,}|　{2,}")


def _split_table_cells(line: str) -> Optional[List[str]]:
    """Returns the cells of a table-like row (>= 2 non-empty), or None."""
    stripped = line.strip()
    if not stripped:
        return None

    if "|" in stripped:
        cells = [c.strip() for c in stripped.strip("|").split("|")]
    elif "\t" in stripped:
        cells = [c.strip() for c in stripped.split("\t")]
    elif _TABLE_SPACE_SPLIT.search(stripped):
        cells = [c.strip() for c in _TABLE_SPACE_SPLIT.split(stripped)]
    else:
        return None

    if len([c for c in cells if c]) < 2:
        return None
    return cells


def is_table_row(line: str) -> bool:
    return _split_table_cells(line) is not None


# ---------------------------------------------------------------------------
# 1. Header / footer removal
# ---------------------------------------------------------------------------

_PAGE_NUMBER_PATTERNS = [
    re.compile(r"^[-－―‐—–]\s*[0-9０-９]+\s*[-－―‐—–]$"),  # - 3 -
    re.compile(r"^[0-9０-９]+\s*[/／]\s*[0-9０-９]+$"),  # 4/12
    re.compile(r"^(?:Page|PAGE|page|P\.)\s*[0-9]+(?:\s*(?:of|/)\s*[0-9]+)?$"),  # Page 5, Page 5 of 9
    re.compile(r"^[0-9０-９]+\s*ページ$"),  # 5ページ
]

_FURNITURE_PATTERNS = [
    re.compile(r"^(?:秘密|社外秘|機密|極秘|部外秘|取扱注意|関係者外秘)$"),
    re.compile(r"^(?:confidential|strictly confidential|internal use only)$", re.IGNORECASE),
    re.compile(r"^(?:©|\(c\)|\(C\)|Copyright\b).*$"),
    re.compile(r"^All rights reserved\.?$", re.IGNORECASE),
]


def _is_page_furniture(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    return any(p.match(stripped) for p in _PAGE_NUMBER_PATTERNS) or any(
        p.match(stripped) for p in _FURNITURE_PATTERNS
    )


def remove_headers_and_footers(text: str) -> str:
    """Drops lines that are exactly a page number or a confidentiality/copyright marker."""
    lines = text.split("\n")
    kept = [line for line in lines if not _is_page_furniture(line)]
    if len(kept) != len(lines):
        logger.debug(f"Removed {len(lines) - len(kept)} header/footer lines")
    return "\n".join(kept)


# ---------------------------------------------------------------------------
# 2. Space normalization
# ---------------------------------------------------------------------------

_LEADING_INDENT = re.compile(r"^(?:[ 　]{2,}|　)")
_BARE_HEADING = re.compile(rf"^(第[{HEADING_DIGITS}]+条)[ 　]+(?![（(])")
# A role marker opening the line keeps its separator ("甲 住所：...")
_CJK_GAP = re.compile(rf"(?<=[{CJK_CHARS}])(?<!^[甲乙丙])[ 　]+(?=[{CJK_CHARS}])")
_SPACE_BEFORE_CLOSE = re.compile(r"[ \t]+(?=[、。，．）」』】〕］〉》)\]])")
_SPACE_AFTER_OPEN = re.compile(r"(?<=[、。，．（「『【〔［〈《(\[])[ \t]+")
_SPACE_RUN = re.compile(r" {2,}")


def _normalize_line_spaces(line: str) -> str:
    if is_table_row(line):
        return line.strip()

    indent = "　" if _LEADING_INDENT.match(line) else ""
    body = line.strip(" \t　")
    bare = _BARE_HEADING.match(body)
    if bare:
        # A bracketless heading moves its body to the next line
        rest = _normalize_line_spaces(body[bare.end() :])
        return indent + bare.group(1) + ("\n" + rest if rest else "")
    body = _CJK_GAP.sub("", body)
    body = _SPACE_BEFORE_CLOSE.sub("", body)
    body = _SPACE_AFTER_OPEN.sub("", body)
    body = _SPACE_RUN.sub(" ", body)
    return indent + body if body else ""


def normalize_spaces(text: str) -> str:
    """
    Per line: indentation of 2+ spaces becomes one full-width space, other edge space
    is trimmed; spaces between CJK characters and next to brackets/punctuation are
    removed; ASCII space runs collapse to one. Table rows keep their inner spacing, and a
    bracketless "第N条 text" heading is split from its text.
    """
    return "\n".join(_normalize_line_spaces(line) for line in text.split("\n"))


# ---------------------------------------------------------------------------
# 3. Continuation-line joining
# ---------------------------------------------------------------------------


def _starts_unit(line: str) -> bool:
    return bool(_UNIT_START.match(line.lstrip(" 　")))


def _closes_unit(buffer: str) -> bool:
    stripped = buffer.rstrip()
    if stripped.endswith(_SENTENCE_END):
        return True
    core = stripped.lstrip(" 　")
    if _ARTICLE_HEADING_LINE.match(core) or _CONTRACT_TITLE_LINE.match(core) or _ROLE_MARKER_LINE.match(core):
        return True
    return any(p.fullmatch(core) for p in DATE_PATTERNS)


def _opens_signature_block(unit: str) -> bool:
    """A closing phrase or a bare role marker: the lines after it are records, not prose."""
    core = unit.strip(" 　")
    return bool(_ROLE_MARKER_LINE.match(core)) or find_signature_start(core) != -1


def _concat(buffer: str, line: str) -> str:
    head = buffer.rstrip()
    tail = line.strip(" 　")
    if head and tail and head[-1].isascii() and head[-1].isalnum() and tail[0].isascii() and tail[0].isalnum():
        return f"{head} {tail}"
    return head + tail


def _join_lines(lines: Sequence[str]) -> List[str]:
    out: List[str] = []
    buffer: Optional[str] = None
    in_signature = False

    def flush():
        nonlocal buffer, in_signature
        if buffer is not None:
            out.append(buffer)
            in_signature = in_signature or _opens_signature_block(buffer)
            buffer = None

    for line in lines:
        if not line.strip():
            flush()
            out.append("")
            continue

        if is_table_row(line) or line.lstrip().startswith("<"):
            flush()
            out.append(line)
            continue

        if buffer is None:
            buffer = line
        elif in_signature or _starts_unit(line) or _closes_unit(buffer):
            flush()
            buffer = line
        else:
            buffer = _concat(buffer, line)

    flush()
    return out


def join_continuation_lines(text: str) -> str:
    """
    Re-joins sentences that the source layout wrapped across lines.
    A line continues the previous one unless it opens with a heading/list marker or the
    previous line already ended the sentence. Japanese text joins with no separator.
    Once the closing phrase or a bare role marker has been seen, every line is a record
    of the signature block and stays on its own.
    """
    return "\n".join(_join_lines(text.split("\n")))


# ---------------------------------------------------------------------------
# 4. Paragraph structure detection
# ---------------------------------------------------------------------------

def _break_heading(match: re.Match) -> str:
    # Text following the heading on the same line moves to its own line
    trailing = "\n" if match.end() < len(match.string) else ""
    return f"\n\n{match.group(1)}{trailing}"


_STRUCTURE_RULES = [
    # Article heading with bracketed title: own line, blank line before
    (re.compile(rf"[ \t　]*(第[{HEADING_DIGITS}]+条[（(][^）)\n]{{1,40}}[）)])[ \t　]*"), _break_heading),
    # Numbered paragraphs "2. " after whitespace
    (re.compile(r"(?<=\S)[ \t　]+([0-9０-９]+[.．][ \t　])"), "\n\\1"),
    # "2 乙は..." style numbered paragraphs after a sentence end
    (re.compile(r"(?<=[。．])[ \t　]*([0-9０-９]+[ \t　]+(?:甲|乙|前項|その他|本|当該|相手方))"), "\n\\1"),
    # Bracketed items only after a terminator; "(1)" mid-sentence is a reference, not an item
    (re.compile(r"(?<=[。．：:])[ \t　]*([（(][0-9０-９]+[）)])"), "\n\\1"),
    # Start of the signature section
    (re.compile(r"[ \t　]*((?:以上[、,]?\s*)?(?:本契約(?:締結|の成立)を証する(?:ため|として)|本契約締結の証として))"), "\n\n\\1"),
    # Execution date after the closing sentence
    (re.compile(r"。[ \t　]*((?:令和|平成|昭和)[ \t　]*[0-9０-９元]+[ \t　]*年)"), "。\n\n\\1"),
    # Party blocks and their labelled fields
    (re.compile(r"(?<=日)[ \t　]*((?:甲|乙|丙)(?:[ \t　]|[：:]|$))"), "\n\n\\1"),
    (re.compile(r"(?<=\S)[ \t　]+((?:甲|乙|丙)[ \t　]*(?:住所|所在地)[：:]?)"), "\n\n\\1"),
    (re.compile(r"(?<=\S)[ \t　]+((?:住所|所在地|名称|商号|氏名|代表者)[：:])"), "\n\\1"),
]

_MULTI_BLANK = re.compile(r"\n{3,}")


def detect_paragraph_structure(text: str) -> str:
    """
    Inserts line breaks in front of structural markers that ended up mid-line
    (headings, numbered paragraphs, items, closing phrase, date, party fields).
    """
    lines_out = []
    for line in text.split("\n"):
        if is_table_row(line) or line.lstrip().startswith("<"):
            lines_out.append(line)
            continue
        for pattern, replacement in _STRUCTURE_RULES:
            line = pattern.sub(replacement, line)
        lines_out.append(line)

    result = "\n".join(lines_out)
    result = _MULTI_BLANK.sub("\n\n", result)
    return result.lstrip("\n")


# ---------------------------------------------------------------------------
# 5. Column layout normalization
# ---------------------------------------------------------------------------


def normalize_column_layout(text: str) -> str:
    """
    Two-column PDFs come out as many short fragments. If more than 10 non-blank lines
    exist and over 40% of them are shorter than half the mean length, the lines are
    re-joined with the continuation rule; otherwise the text is returned unchanged.
    """
    non_blank = [line for line in text.split("\n") if line.strip()]
    if len(non_blank) <= 10:
        return text

    mean_len = sum(len(line) for line in non_blank) / len(non_blank)
    short = sum(1 for line in non_blank if len(line) < mean_len / 2)
    if short / len(non_blank) <= 0.4:
        return text

    logger.info(f"Column layout detected ({short}/{len(non_blank)} short lines), re-joining")
    return "\n".join(_join_lines(non_blank))


# ---------------------------------------------------------------------------
# 6. Table detection
# ---------------------------------------------------------------------------

HEADER_KEYWORDS = (
    "項目", "内容", "備考", "名称", "金額", "数量", "単価", "日付", "期間", "区分",
    "種別", "摘要", "番号", "氏名", "料金", "費用",
    "Item", "Description", "Amount", "Qty", "Quantity", "Price", "Date", "Name", "Notes",
)  # fmt: skip

_SEPARATOR_CELL = re.compile(r"^:?-{3,}:?$")


def _is_separator_row(cells: List[str]) -> bool:
    return all(_SEPARATOR_CELL.match(c) or not c for c in cells)


def _is_header_row(cells: List[str]) -> bool:
    return any(keyword in cell for cell in cells for keyword in HEADER_KEYWORDS)


def _render_table(rows: List[List[str]]) -> str:
    width = max(len(r) for r in rows)
    html_rows = []
    for idx, cells in enumerate(rows):
        padded = cells + [""] * (width - len(cells))
        tag = "th" if idx == 0 and _is_header_row(cells) else "td"
        html_cells = "".join(f"<{tag}>{escape_html(c)}</{tag}>" for c in padded)
        html_rows.append(f"<tr>{html_cells}</tr>")
    return "<table>\n" + "\n".join(html_rows) + "\n</table>"


def detect_and_convert_tables(text: str) -> str:
    """
    Turns runs of >= 2 consecutive delimiter-separated rows (|, tab, 3+ spaces) into a
    <table> block surrounded by blank lines. A single matching row stays as plain text.
    Text without any table is returned unchanged.
    """
    lines = text.split("\n")
    out: List[str] = []
    run: List[str] = []
    converted = 0

    def flush_run():
        nonlocal converted
        if len(run) >= 2:
            rows = [cells for cells in (_split_table_cells(r) for r in run) if not _is_separator_row(cells)]
            if len(rows) >= 2:
                if out and out[-1].strip():
                    out.append("")
                out.append(_render_table(rows))
                out.append("")
                converted += 1
                run.clear()
                return
        out.extend(run)
        run.clear()

    for line in lines:
        if is_table_row(line):
            run.append(line)
            continue
        flush_run()
        if not line.strip() and out and out[-1] == "":
            # blank padding after a table already present
            continue
        out.append(line)

    flush_run()

    if not converted:
        return text

    logger.debug(f"Converted {converted} table block(s)")
    if out and out[-1] == "" and not text.endswith("\n"):
        out.pop()
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


def _finalize_whitespace(text: str) -> str:
    lines = [line.rstrip() for line in text.split("\n")]
    return _MULTI_BLANK.sub("\n\n", "\n".join(lines)).strip()


ENHANCED_STEPS: List[Callable[[str], str]] = [
    remove_headers_and_footers,
    normalize_spaces,
    join_continuation_lines,
    detect_paragraph_structure,
    normalize_column_layout,
    detect_and_convert_tables,
    _finalize_whitespace,
]


def _run_steps(text: str, steps: Sequence[Callable[[str], str]]) -> str:
    result = text or ""
    for step in steps:
        result = step(result)
    return result


def enhanced_text_processing(text: str) -> str:
    """
    Full normalization, in this order (later steps rely on earlier ones):
    header/footer removal -> spaces -> continuation lines -> paragraph structure ->
    column layout -> tables -> trailing whitespace.
    """
    return _run_steps(text, ENHANCED_STEPS)


def normalize_text_basic(text: str) -> str:
    """Header/footer removal, spaces and continuation joining only."""
    return _run_steps(text, ENHANCED_STEPS[:3] + [_finalize_whitespace])


def is_valid_extraction(text: str) -> bool:
    """
    Whether directly extracted text is usable: at least 100 characters, and containing
    Japanese characters or a run of 3+ ASCII letters. Scanned PDFs usually fail this.
    """
    if len(text) < 100:
        return False
    has_japanese = re.search(f"[{CJK_CHARS}]", text) is not None
    has_english = re.search(r"[a-zA-Z]{3,}", text) is not None
    return has_japanese or has_english
