"""
The HTML dialect shared by the editor, the diff/suggestion renderer and every
downstream consumer (report exporter, risk analysis).

Block tags: h1/h2/h3/p/ul/ol/li/table/tr/td/th.
Inline change markers: <ins class="track-insertion track-STATE"> and
<del class="track-deletion track-STATE">, where STATE is pending, confirmed or finalized.
"""

import html as _html
import re
from enum import Enum

import structlog

from keiyaku.utils.text import escape_html, strip_tags

logger = structlog.get_logger(__name__)

BLOCK_TAGS = ("h1", "h2", "h3", "p", "ul", "ol", "li", "table", "tr", "td", "th")

INSERTION_CLASS = "track-insertion"
DELETION_CLASS = "track-deletion"
SUGGESTION_CLASS = "ai-suggestion"

INSERTION_STYLE = "background-color: #dcfce7; text-decoration: none;"
DELETION_STYLE = "background-color: #fee2e2; text-decoration: line-through;"


class ChangeState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def css_class(self) -> str:
        return f"track-{self.value}"


def render_insertion(escaped_text: str, state: ChangeState = ChangeState.PENDING) -> str:
    """Wraps already-escaped text in an insertion marker."""
    return f'<ins class="{INSERTION_CLASS} {state.css_class}" style="{INSERTION_STYLE}">{escaped_text}</ins>'


def render_deletion(escaped_text: str, state: ChangeState = ChangeState.PENDING) -> str:
    return f'<del class="{DELETION_CLASS} {state.css_class}" style="{DELETION_STYLE}">{escaped_text}</del>'


def render_suggestion(inner_markup: str, state: ChangeState = ChangeState.PENDING) -> str:
    """Highlight wrapper around a whole applied suggestion (its inner ins/del markup is kept)."""
    return f'<mark class="{SUGGESTION_CLASS} {state.css_class}">{inner_markup}</mark>'


def strip_html(html: str) -> str:
    """Plain text of a fragment: tags removed, the usual entities decoded."""
    return _html.unescape(strip_tags(html).replace("&nbsp;", " "))


_STATE_CLASS_RE = re.compile(r"\btrack-(pending|confirmed|finalized)\b")
_CLASS_ATTR_RE = re.compile(r'class="([^"]*)"')


def set_change_state(html: str, state: ChangeState, from_state: ChangeState = ChangeState.PENDING) -> str:
    """Moves every change marker in from_state to state (e.g. pending -> confirmed on save)."""

    def _swap(match: re.Match) -> str:
        classes = match.group(1)
        if from_state.css_class not in classes.split():
            return match.group(0)
        return f'class="{_STATE_CLASS_RE.sub(state.css_class, classes)}"'

    return _CLASS_ATTR_RE.sub(_swap, html)


_DEL_RE = re.compile(r"<del\b[^>]*>.*?</del>", re.IGNORECASE | re.DOTALL)
_UNWRAP_RE = re.compile(r"</?(?:ins|mark)\b[^>]*>", re.IGNORECASE)


def finalize_changes(html: str) -> str:
    """
    Accept-all: deletions disappear with their content, insertion and suggestion
    wrappers are unwrapped. This is the form handed to the report exporter.
    """
    result = _DEL_RE.sub("", html)
    result = _UNWRAP_RE.sub("", result)
    return result


def text_to_paragraphs(text: str) -> str:
    """Plain text to <p> blocks, one per non-blank line."""
    return "\n".join(f"<p>{escape_html(line.strip())}</p>" for line in text.split("\n") if line.strip())
