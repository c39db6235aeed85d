"""
ContractStructure -> editor HTML / canonical plain text.

The HTML uses only the shared dialect (h1, h3, p, br) so that the fuzzy matcher and
the suggestion applier can find clauses in it again.
"""

import re
from typing import List

from keiyaku.models import Article, ContractStructure, Paragraph, SignatureSection
from keiyaku.structure.signature import find_signature_start
from keiyaku.utils.text import HEADING_DIGITS, escape_html


def _html_lines(text: str) -> str:
    return escape_html(text).replace("\n", "<br>")


def _paragraph_label(paragraph: Paragraph) -> str:
    return f"{paragraph.number}. " if paragraph.number is not None else ""


def _article_heading(article: Article) -> str:
    return f"第{article.number}条（{article.title}）" if article.title else f"第{article.number}条"


def _paragraph_html(paragraph: Paragraph) -> List[str]:
    parts = []
    if paragraph.content or paragraph.number is not None:
        parts.append(
            f'<p data-paragraph-id="{paragraph.id}">{_paragraph_label(paragraph)}{_html_lines(paragraph.content)}</p>'
        )
    for item in paragraph.items or []:
        parts.append(f'<p data-item-id="{item.id}">（{item.number}）{_html_lines(item.content)}</p>')
    return parts


def _signature_lines(signature: SignatureSection) -> List[str]:
    lines = []
    if signature.closing_text:
        lines.append(signature.closing_text)
    if signature.date:
        lines.append(signature.date)
    for party in signature.parties:
        lines.append(party.role)
        lines.extend(v for v in (party.address, party.name, party.representative) if v)
    return lines


def structure_to_html(structure: ContractStructure, include_signature: bool = True) -> str:
    parts = [f"<h1>{escape_html(structure.title)}</h1>"]

    if structure.preamble:
        parts.append(f"<p>{_html_lines(structure.preamble)}</p>")

    for article in structure.articles:
        parts.append(f'<h3 data-article-id="{article.id}">{escape_html(_article_heading(article))}</h3>')
        for paragraph in article.paragraphs:
            parts.extend(_paragraph_html(paragraph))

    if include_signature and structure.signature:
        parts.extend(f"<p>{escape_html(line)}</p>" for line in _signature_lines(structure.signature))

    return "\n".join(parts)


def structure_to_text(structure: ContractStructure, include_signature: bool = True) -> str:
    """Canonical plain text; parsing it again yields the same article numbering and titles."""
    blocks = [structure.title]

    if structure.preamble:
        blocks.append(structure.preamble)

    for article in structure.articles:
        lines = [_article_heading(article)]
        for paragraph in article.paragraphs:
            if paragraph.content or paragraph.number is not None:
                lines.append(f"{_paragraph_label(paragraph)}{paragraph.content}")
            lines.extend(f"({item.number}) {item.content}" for item in paragraph.items or [])
        blocks.append("\n".join(lines))

    if include_signature and structure.signature:
        blocks.append("\n".join(_signature_lines(structure.signature)))

    return "\n\n".join(blocks)


_HEADING_LINE = re.compile(rf"^第[{HEADING_DIGITS}]+条[（(]")
_TITLE_LINE = re.compile(r"^\S{2,10}契約書$")
_ROLE_LINE = re.compile(r"^(?:甲|乙|丙)$")
_ERA_DATE_LINE = re.compile(r"^(?:令和|平成|昭和)[0-9０-９元]+年")


def text_to_html(text: str) -> str:
    """
    Renders normalized text line by line without building a tree: the quick view
    used before (or instead of) structural parsing. Headings and the contract title
    are recognized by their shape; everything else becomes a paragraph, and the
    signature block is wrapped in a <div class="signature-section">.
    """
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    signature_start = find_signature_start("\n".join(lines))

    parts = []
    consumed = 0
    in_signature = False
    for line in lines:
        if not in_signature and signature_start != -1 and consumed >= signature_start:
            parts.append('<div class="signature-section">')
            in_signature = True
        consumed += len(line) + 1

        escaped = escape_html(line)
        if line.startswith("<"):
            # Table markup from normalization
            parts.append(line)
        elif _TITLE_LINE.match(line):
            parts.append(f"<h1>{escaped}</h1>")
        elif _HEADING_LINE.match(line):
            parts.append(f"<h3>{escaped}</h3>")
        elif _ROLE_LINE.match(line):
            parts.append(f'<p class="party-role">{escaped}</p>')
        elif _ERA_DATE_LINE.match(line):
            parts.append(f'<p class="signature-date">{escaped}</p>')
        else:
            parts.append(f"<p>{escaped}</p>")

    if in_signature:
        parts.append("</div>")
    return "\n".join(parts)
