import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from keiyaku.diff import compute_diff, compute_diff_stats, compute_line_diff, diff_to_html
from keiyaku.ingest import extract_document
from keiyaku.markup import finalize_changes
from keiyaku.matching import find_best_match, find_by_prefix
from keiyaku.models import ExtractionOptions, LineChangeKind, Suggestion
from keiyaku.normalize import enhanced_text_processing
from keiyaku.ocr import configure_tesseract
from keiyaku.structure.editing import edit_article_by_number
from keiyaku.structure.parser import parse_contract_text
from keiyaku.structure.render import structure_to_html, structure_to_text
from keiyaku.suggest import apply_suggestions

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio.
# CRITICAL: All logs must go to stderr. Any print to stdout will break the JSON-RPC protocol.
logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

mcp = FastMCP("Keiyaku Contract Service")


def _read_file_bytes(path: str) -> bytes:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return p.read_bytes()


@mcp.tool()
def read_contract(file_path: str, output: str = "json", force_ocr: bool = False) -> str:
    """
    Extracts a contract (PDF, DOCX or scanned image) and returns its structure.

    Args:
        file_path: Absolute path to the document.
        output: "json" (default) for the article/paragraph/signature tree,
                "html" for editor markup, or "text" for the normalized plain text.
        force_ocr: OCR every page even if the PDF has a text layer.
    """
    try:
        options = ExtractionOptions.from_env(force_ocr=force_ocr or None)
        configure_tesseract(options.tesseract_cmd)
        content = extract_document(_read_file_bytes(file_path), options, filename=Path(file_path).name)
        text = enhanced_text_processing(content.text)
        if output == "text":
            return text

        structure = parse_contract_text(
            text,
            source_file_name=Path(file_path).name,
            extraction_method=content.extraction_method,
            page_count=content.page_count,
        )
        if output == "html":
            return structure_to_html(structure)
        return json.dumps(structure.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False, indent=2)
    except Exception as e:
        return f"Error reading contract: {str(e)}"


@mcp.tool()
def compare_texts(original_text: str, modified_text: str, mode: str = "summary") -> str:
    """
    Compares two versions of a contract text.

    Args:
        original_text: The earlier version.
        modified_text: The later version.
        mode: "summary" (default): change statistics plus line-level changes.
              "html": inline tracked-change markup (<ins>/<del>).
    """
    try:
        diffs = compute_diff(original_text, modified_text)
        if mode == "html":
            return diff_to_html(diffs)

        stats = compute_diff_stats(diffs)
        output = [f"+{stats.added} -{stats.removed} chars ({stats.change_percentage:.1f}% changed)", ""]
        for entry in compute_line_diff(original_text, modified_text, aligned=True):
            if entry.kind == LineChangeKind.ADDED:
                output.append(f"+ {entry.content}")
            elif entry.kind == LineChangeKind.REMOVED:
                output.append(f"- {entry.content}")
            elif entry.kind == LineChangeKind.MODIFIED:
                output.append(f"- {entry.old_content}")
                output.append(f"+ {entry.content}")
        if len(output) == 2:
            return "No text differences found."
        return "\n".join(output)
    except Exception as e:
        return f"Error computing diff: {str(e)}"


@mcp.tool()
def locate_clause(html: str, clause_text: str, min_similarity: int = 70) -> str:
    """
    Finds the heading, paragraph or list item in `html` that best matches `clause_text`.
    Tolerates whitespace, full-width/half-width and small wording differences.
    Returns the match as JSON, or a message when nothing clears `min_similarity`.
    """
    try:
        match = find_best_match(html, clause_text, min_similarity) or find_by_prefix(
            html, clause_text, min_similarity=max(min_similarity, 80)
        )
        if match is None:
            return "No matching clause found."
        return json.dumps(match.model_dump(), ensure_ascii=False, indent=2)
    except Exception as e:
        return f"Error locating clause: {str(e)}"


@mcp.tool()
def edit_article(
    contract_text: str,
    operation: str,
    article_number: int,
    title: Optional[str] = None,
    content: Optional[str] = None,
    output: str = "text",
) -> str:
    """
    Edits one article of a contract and returns the renumbered contract.

    Args:
        contract_text: The contract as plain text (e.g. the output of read_contract with output="text").
        operation: "replace" (new content and/or title), "delete", or "insert"
                   (new article after article_number; 0 for the top).
        article_number: The article to edit, as numbered in contract_text.
        title: Article title for "replace" or "insert".
        content: Article body for "replace" or "insert". Numbered lines become paragraphs.
        output: "text" (default) or "html".
    """
    try:
        structure = parse_contract_text(contract_text)
        edited = edit_article_by_number(structure, article_number, operation, title=title, content=content)
        if output == "html":
            return structure_to_html(edited)
        return structure_to_text(edited)
    except Exception as e:
        return f"Error editing article: {str(e)}"


@mcp.tool()
def apply_suggestions_to_html(
    html: str,
    suggestions: List[Suggestion],
    min_similarity: int = 70,
    finalize: bool = False,
) -> str:
    """
    Applies replacement suggestions to contract HTML as tracked changes.

    Matching Strategy:
    - Exact substring first, then the best fuzzy fragment match, then a prefix-guarded match.
    - When two suggestions target overlapping text, the earlier one in the list wins.

    Args:
        html: Current contract markup.
        suggestions: Each replaces `original_text` with `suggested_text`.
        min_similarity: Fuzzy threshold 0-100.
        finalize: If True, returns the accepted (clean) markup instead of tracked changes.
    """
    try:
        content, applied, skipped = apply_suggestions(html, suggestions, min_similarity)
        if finalize:
            content = finalize_changes(content)
        return f"<!-- applied={applied} skipped={skipped} -->\n{content}"
    except Exception as e:
        return f"Error applying suggestions: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
