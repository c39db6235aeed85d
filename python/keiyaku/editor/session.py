from typing import List, Optional, Tuple

import structlog

from keiyaku.editor.caret import CaretMap, CaretPosition, remap_offset
from keiyaku.editor.history import HistoryManager
from keiyaku.markup import ChangeState, finalize_changes, set_change_state, text_to_paragraphs
from keiyaku.models import Suggestion
from keiyaku.suggest import SuggestionResult, apply_suggestion, apply_suggestions

logger = structlog.get_logger(__name__)


class EditorSession:
    """
    One open document: its current markup plus undo/redo history.

    Single writer. Every committed mutation goes through here so that it lands in
    the history; undo/redo replace the content wholesale with the stored snapshot.
    The caret is a logical offset into the visible text and is carried across every
    content change.
    """

    def __init__(self, content: str = "", capacity: int = 50, min_similarity: int = 70):
        self.history = HistoryManager(capacity)
        self.history.initialize(content)
        self.min_similarity = min_similarity
        self._content = content
        self.caret = 0

    def get_content(self) -> str:
        return self._content

    def _set_content(self, content: str) -> None:
        self.caret = remap_offset(self._content, content, self.caret)
        self._content = content

    def _commit(self, content: str) -> bool:
        if content == self._content:
            return False
        self._set_content(content)
        self.history.push(content)
        return True

    def move_caret(self, offset: int) -> CaretPosition:
        """Places the caret at a text offset (clamped) and returns where it lands in the markup."""
        caret_map = CaretMap(self._content)
        self.caret = max(0, min(offset, len(caret_map)))
        return caret_map.to_position(self.caret)

    def caret_position(self) -> CaretPosition:
        return CaretMap(self._content).to_position(self.caret)

    def replace_content(self, content: str) -> bool:
        return self._commit(content)

    def append_content(self, text: str) -> bool:
        """Appends markup as-is; plain text is wrapped into <p> blocks first."""
        addition = text if text.lstrip().startswith("<") else text_to_paragraphs(text)
        if not addition:
            return False
        separator = "\n" if self._content and not self._content.endswith("\n") else ""
        return self._commit(f"{self._content}{separator}{addition}")

    def undo(self) -> Optional[str]:
        state = self.history.undo()
        if state is not None:
            self._set_content(state)
        return state

    def redo(self) -> Optional[str]:
        state = self.history.redo()
        if state is not None:
            self._set_content(state)
        return state

    def apply_suggestion(self, suggestion: Suggestion) -> SuggestionResult:
        result = apply_suggestion(self._content, suggestion, self.min_similarity)
        if result.applied:
            self._commit(result.content)
        return result

    def apply_suggestions(self, suggestions: List[Suggestion]) -> Tuple[int, int]:
        """Applies a batch as one history step. Returns (applied, skipped)."""
        content, applied, skipped = apply_suggestions(self._content, suggestions, self.min_similarity)
        self._commit(content)
        logger.info(f"Applied {applied} suggestion(s), skipped {skipped}")
        return applied, skipped

    def confirm_changes(self) -> bool:
        """Pending change markers become confirmed (what saving does)."""
        return self._commit(set_change_state(self._content, ChangeState.CONFIRMED))

    def export_content(self) -> str:
        """Accepted-changes markup for export. Does not modify the session."""
        return finalize_changes(self._content)
