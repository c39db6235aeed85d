"""
Character classes and small text helpers shared by the normalizer, parser,
diff engine and matcher.
"""

import math
import re

# Hiragana, Katakana, CJK Unified Ideographs
CJK_CHARS = "぀-ゟ゠-ヿ一-鿿"
CJK_RE = re.compile(f"[{CJK_CHARS}]")

# Digits written in article headings: ASCII, full-width, and the restricted kanji set
HEADING_DIGITS = "0-9０-９一二三四五六七八九十百"

_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")

_FULLWIDTH_ALNUM = {
    **{0xFF10 + i: 0x30 + i for i in range(10)},  # ０-９
    **{0xFF21 + i: 0x41 + i for i in range(26)},  # Ａ-Ｚ
    **{0xFF41 + i: 0x61 + i for i in range(26)},  # ａ-ｚ
}
_FULLWIDTH_BRACKETS = str.maketrans("（）［］｛｝", "()[]{}")


def fold_digits(text: str) -> str:
    """Full-width digits to ASCII."""
    return text.translate(_FULLWIDTH_DIGITS)


def fold_width(text: str) -> str:
    """Full-width digits, Latin letters, brackets and the ideographic space to ASCII."""
    return text.translate(_FULLWIDTH_ALNUM).translate(_FULLWIDTH_BRACKETS).replace("　", " ")


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for positive values (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def escape_html(text: str, quote: bool = False) -> str:
    escaped = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    if quote:
        escaped = escaped.replace('"', "&quot;").replace("'", "&#39;")
    return escaped


_TAG_RE = re.compile(r"<[^>]*>")


def strip_tags(html: str, replacement: str = "") -> str:
    return _TAG_RE.sub(replacement, html)
