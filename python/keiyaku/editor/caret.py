"""
Caret positions over rendered editor markup.

The editing surface re-renders the document after every mutation (suggestion
applied, undo, state change), which invalidates any DOM-bound caret. Positions
here are resolved against an immutable snapshot instead: a logical offset into the
snapshot's visible text maps to (element path, text/tail slot, offset) and back,
and remap_offset() carries a logical offset across a mutation.
"""

from typing import List, NamedTuple, Optional, Tuple

import lxml.html
from diff_match_patch import diff_match_patch


class CaretPosition(NamedTuple):
    path: Tuple[int, ...]  # child indices from the fragment root
    slot: str  # "text" (inside the element) or "tail" (after it)
    offset: int


class _Segment(NamedTuple):
    path: Tuple[int, ...]
    slot: str
    start: int
    text: str


def _parse_fragment(html: str):
    if not html.strip():
        return None
    return lxml.html.fragment_fromstring(html, create_parent="div")


class CaretMap:
    def __init__(self, html: str):
        self.html = html
        self._segments: List[_Segment] = []
        self._length = 0

        root = _parse_fragment(html)
        if root is not None:
            self._walk(root, ())

        self.text = "".join(seg.text for seg in self._segments)

    def _add(self, path, slot, text: Optional[str]) -> None:
        if text:
            self._segments.append(_Segment(path, slot, self._length, text))
            self._length += len(text)

    def _walk(self, element, path) -> None:
        self._add(path, "text", element.text)
        index = 0
        for child in element:
            if isinstance(child.tag, str):
                self._walk(child, path + (index,))
            child_path = path + (index,)
            # Comments and processing instructions still carry a tail
            self._add(child_path, "tail", child.tail)
            index += 1

    def __len__(self) -> int:
        return self._length

    def to_position(self, offset: int) -> CaretPosition:
        """Clamps to the snapshot. An offset on a boundary resolves to the end of the earlier segment."""
        if not self._segments:
            return CaretPosition((), "text", 0)

        offset = max(0, min(offset, self._length))
        for seg in self._segments:
            if offset <= seg.start + len(seg.text):
                return CaretPosition(seg.path, seg.slot, offset - seg.start)

        last = self._segments[-1]
        return CaretPosition(last.path, last.slot, len(last.text))

    def to_offset(self, position: CaretPosition) -> Optional[int]:
        """None if the position does not name a text segment of this snapshot."""
        for seg in self._segments:
            if seg.path == tuple(position.path) and seg.slot == position.slot:
                return seg.start + max(0, min(position.offset, len(seg.text)))
        return None


def remap_offset(old_html: str, new_html: str, offset: int) -> int:
    """Carries a logical caret offset from one snapshot to the next."""
    old_text = CaretMap(old_html).text
    new_text = CaretMap(new_html).text
    if old_text == new_text:
        return min(offset, len(new_text))

    dmp = diff_match_patch()
    diffs = dmp.diff_main(old_text, new_text)
    return min(dmp.diff_xIndex(diffs, min(offset, len(old_text))), len(new_text))
