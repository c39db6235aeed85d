"""
Normalized contract text -> ContractStructure.

There is no grammar for Japanese contracts, only conventions: 第N条（title） headings,
"1." or "2 乙は" paragraphs, （1） items, and a closing phrase before the signatures.
Each convention is a separate matcher with an explicit fallback, and the tier each one
reached is recorded in metadata.confidence. The parser never rejects input.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog

from keiyaku.models import (
    Article,
    ContractStructure,
    Item,
    Paragraph,
    StructuralConfidence,
    StructureMetadata,
)
from keiyaku.structure.numerals import kanji_to_int
from keiyaku.structure.signature import parse_signature_section, separate_signature_section
from keiyaku.utils.text import CJK_CHARS, HEADING_DIGITS, fold_digits

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "契約書"
SYNTHETIC_ARTICLE_TITLE = "本文"

# 第N条（title） anywhere, or a bare 第N条 at the start of a line
ARTICLE_HEADING = re.compile(
    rf"第(?P<num>[{HEADING_DIGITS}]+)条[（(](?P<title>[^）)\n]+)[）)]"
    rf"|^第(?P<bare>[{HEADING_DIGITS}]+)条(?=[ 　]|$)",
    re.MULTILINE,
)

_NUMBERED_PARAGRAPH = re.compile(r"^(\d+)[.．]\s*(.*)$")
_SPACED_PARAGRAPH = re.compile(r"^(\d+)\s+(甲|乙|前項|本|当該|相手方)(.*)$")
_ITEM = re.compile(r"^[（(](\d+)[）)]\s*(.*)$")

_TITLE_PATTERNS = [
    re.compile(r"^(.{2,20}契約書)", re.MULTILINE),
    re.compile(r"^(.{2,20}契約)(?:\s|$)", re.MULTILINE),
]

_BARE_HEADING_GAP = re.compile(rf"^(第[{HEADING_DIGITS}]+条)[ 　]+(?![（(])", re.MULTILINE)
_CJK_GAP = re.compile(rf"([{CJK_CHARS}])(?<!^[甲乙丙])[ 　]+(?=[{CJK_CHARS}])", re.MULTILINE)

_TIER_SCORES = {
    "contract_title": 1.0,
    "first_line": 0.5,
    "default": 0.0,
    "headings": 1.0,
    "synthetic": 0.3,
    "empty": 0.0,
    "role_markers": 1.0,
    "pattern_fallback": 0.6,
    "placeholder": 0.3,
    "absent": 0.5,
}


def _new_id() -> str:
    return str(uuid.uuid4())


def prepare_text(text: str) -> str:
    """Parser pre-pass: ASCII digits, no spaces between CJK characters, single spaces, <= 1 blank line."""
    text = fold_digits(text or "")
    text = _BARE_HEADING_GAP.sub(r"\1\n", text)
    text = _CJK_GAP.sub(r"\1", text)
    text = re.sub(r"[ 　]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_title(text: str) -> Tuple[str, str]:
    """Returns (title, tier)."""
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip(), "contract_title"

    first_line = text.split("\n", 1)[0].strip() if text else ""
    if first_line and len(first_line) <= 30:
        return first_line, "first_line"

    return DEFAULT_TITLE, "default"


def separate_preamble(text: str) -> Tuple[Optional[str], str]:
    """Splits off the text before the first article heading (minus the title line)."""
    first = ARTICLE_HEADING.search(text)
    if not first:
        return None, text

    preamble_text = text[: first.start()].strip()
    articles_text = text[first.start() :]

    if len(preamble_text) < 10:
        return None, articles_text

    lines = [line for line in preamble_text.split("\n") if line.strip() and not line.strip().endswith("契約書")]
    preamble = "\n".join(lines).strip()
    return preamble or None, articles_text


def parse_article_number(numeral: str) -> int:
    return kanji_to_int(numeral)


def parse_articles(text: str) -> Tuple[List[Article], str]:
    """Returns (articles, tier). Without any heading the whole text becomes article 1."""
    matches = list(ARTICLE_HEADING.finditer(text))

    if not matches:
        paragraphs = parse_paragraphs(text)
        if not paragraphs:
            return [], "empty"
        article = Article(id=_new_id(), number=1, title=SYNTHETIC_ARTICLE_TITLE, paragraphs=paragraphs)
        return [article], "synthetic"

    articles = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        numeral = match.group("num") or match.group("bare")
        title = (match.group("title") or "").strip()
        body = text[match.end() : end].strip()

        articles.append(
            Article(
                id=_new_id(),
                number=parse_article_number(numeral),
                title=title,
                paragraphs=parse_paragraphs(body),
            )
        )

    return articles, "headings"


def _make_paragraph(number: Optional[int], content: str, items: List[Item]) -> Paragraph:
    return Paragraph(id=_new_id(), number=number, content=content.strip(), items=items or None)


def parse_paragraphs(text: str) -> List[Paragraph]:
    """
    Splits one article body into paragraphs and items.

    "1. ..." or "2 乙は..." opens a numbered paragraph; "(1) ..." adds an item to the
    current paragraph (or opens an unnumbered one). Any other line continues the
    current item or paragraph; line breaks inside a clause are kept as "\\n".
    """
    paragraphs: List[Paragraph] = []
    number: Optional[int] = None
    content: Optional[str] = None
    items: List[Item] = []

    def flush():
        if content is not None:
            paragraphs.append(_make_paragraph(number, content, items))

    for raw in text.split("\n"):
        line = raw.strip()
        if not line:
            continue

        numbered = _NUMBERED_PARAGRAPH.match(line)
        spaced = _SPACED_PARAGRAPH.match(line)
        item = _ITEM.match(line)

        if numbered:
            flush()
            number, content, items = int(numbered.group(1)), numbered.group(2), []
        elif spaced:
            flush()
            number, content, items = int(spaced.group(1)), spaced.group(2) + spaced.group(3), []
        elif item:
            new_item = Item(id=_new_id(), number=int(item.group(1)), content=item.group(2))
            if content is None:
                number, content, items = None, "", []
            items.append(new_item)
        elif content is None:
            number, content, items = None, line, []
        elif items:
            items[-1].content += "\n" + line
        else:
            content = f"{content}\n{line}" if content else line

    flush()
    return paragraphs


def _confidence(title_tier: str, article_tier: str, signature_tier: str) -> StructuralConfidence:
    score = (
        _TIER_SCORES[title_tier] + _TIER_SCORES[article_tier] * 2 + _TIER_SCORES[signature_tier]
    ) / 4
    return StructuralConfidence(
        title=title_tier,
        articles=article_tier,
        signature=signature_tier,
        score=round(score, 2),
    )


def parse_contract_text(
    text: str,
    source_file_name: Optional[str] = None,
    extraction_method: str = "text",
    page_count: Optional[int] = None,
) -> ContractStructure:
    """
    Builds the document tree from normalized contract text.
    Always returns a tree; missing structure lowers metadata.confidence instead of raising.
    """
    prepared = prepare_text(text)

    title, title_tier = extract_title(prepared)
    main_content, signature_text = separate_signature_section(prepared)

    signature = None
    signature_tier = "absent"
    if signature_text is not None:
        signature, signature_tier = parse_signature_section(signature_text)

    preamble, articles_text = separate_preamble(main_content)
    articles, article_tier = parse_articles(articles_text)

    confidence = _confidence(title_tier, article_tier, signature_tier)
    logger.info(
        f"Parsed contract '{title}': {len(articles)} articles "
        f"(articles={article_tier}, signature={signature_tier}, score={confidence.score})"
    )

    return ContractStructure(
        title=title,
        preamble=preamble,
        articles=articles,
        signature=signature,
        metadata=StructureMetadata(
            extracted_at=datetime.now(timezone.utc).isoformat(),
            extraction_method=extraction_method,
            source_file_name=source_file_name,
            page_count=page_count,
            confidence=confidence,
        ),
    )
