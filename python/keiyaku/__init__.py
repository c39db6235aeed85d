from importlib.metadata import PackageNotFoundError, version

from keiyaku.diff import compute_diff, compute_line_diff
from keiyaku.editor.caret import CaretMap, CaretPosition, remap_offset
from keiyaku.editor.history import HistoryManager, HistoryRecorder
from keiyaku.editor.session import EditorSession
from keiyaku.errors import ExtractionError, ExtractionErrorCategory
from keiyaku.ingest import extract_and_parse, extract_document
from keiyaku.matching import find_best_match, find_by_prefix
from keiyaku.models import ContractStructure, ExtractionOptions, Suggestion
from keiyaku.normalize import enhanced_text_processing
from keiyaku.structure.editing import (
    delete_article,
    edit_article_by_number,
    insert_article,
    replace_article_content,
    update_article,
    update_paragraph,
)
from keiyaku.structure.parser import parse_contract_text
from keiyaku.structure.render import structure_to_html, structure_to_text
from keiyaku.suggest import apply_suggestion, apply_suggestions

try:
    __version__ = version("keiyaku")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "CaretMap",
    "CaretPosition",
    "ContractStructure",
    "EditorSession",
    "ExtractionError",
    "ExtractionErrorCategory",
    "ExtractionOptions",
    "HistoryManager",
    "HistoryRecorder",
    "Suggestion",
    "apply_suggestion",
    "apply_suggestions",
    "compute_diff",
    "compute_line_diff",
    "delete_article",
    "edit_article_by_number",
    "enhanced_text_processing",
    "extract_and_parse",
    "extract_document",
    "find_best_match",
    "find_by_prefix",
    "insert_article",
    "parse_contract_text",
    "remap_offset",
    "replace_article_content",
    "structure_to_html",
    "structure_to_text",
    "update_article",
    "update_paragraph",
    "__version__",
]
