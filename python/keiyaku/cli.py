import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

import structlog

from keiyaku import __version__
from keiyaku.diff import compute_diff, compute_diff_stats, compute_line_diff, diff_to_html, extract_changes
from keiyaku.editor.session import EditorSession
from keiyaku.errors import ExtractionError
from keiyaku.ingest import extract_document
from keiyaku.matching import find_best_match, find_by_prefix
from keiyaku.models import ExtractionOptions, LineChangeKind, Suggestion
from keiyaku.normalize import enhanced_text_processing
from keiyaku.ocr import configure_tesseract
from keiyaku.structure.parser import parse_contract_text
from keiyaku.structure.render import structure_to_html, text_to_html

DOCUMENT_SUFFIXES = {".pdf", ".docx", ".png", ".jpg", ".jpeg", ".tif", ".tiff"}


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(stream=sys.stderr, level=level, force=True)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _options(args: argparse.Namespace) -> ExtractionOptions:
    options = ExtractionOptions.from_env(
        force_ocr=getattr(args, "force_ocr", False) or None,
        ocr_language=getattr(args, "lang", None),
        dpi=getattr(args, "dpi", None),
    )
    configure_tesseract(options.tesseract_cmd)
    return options


def _extract(path: Path, args: argparse.Namespace):
    if not path.exists():
        _fail(f"File not found: {path}")
    try:
        return extract_document(path.read_bytes(), _options(args), filename=path.name)
    except ExtractionError as e:
        _fail(str(e))


def _read_text(path: Path, args: argparse.Namespace) -> str:
    """Documents are extracted and normalized; anything else is read as UTF-8 text."""
    if path.suffix.lower() in DOCUMENT_SUFFIXES:
        return enhanced_text_processing(_extract(path, args).text)
    if not path.exists():
        _fail(f"File not found: {path}")
    return path.read_text(encoding="utf-8")


def _write_or_print(output, text: str, what: str) -> None:
    if output:
        output.write_text(text, encoding="utf-8")
        print(f"Wrote {what} to {output}", file=sys.stderr)
    else:
        print(text)


def _load_suggestions(path: Path) -> List[Suggestion]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        suggestions = []
        for item in data:
            original = item.get("original_text") or item.get("originalText") or item.get("original")
            suggested = item.get("suggested_text") or item.get("suggestedText") or item.get("suggestion")
            suggestions.append(
                Suggestion(original_text=original or "", suggested_text=suggested or "", comment=item.get("comment"))
            )
        return suggestions
    except Exception as e:
        _fail(f"Could not parse suggestions JSON: {e}")


def handle_extract(args: argparse.Namespace):
    content = _extract(args.input, args)
    text = content.text if args.raw else enhanced_text_processing(content.text)
    if args.html:
        text = text_to_html(text)

    print(
        f"Extracted {content.page_count or '?'} page(s) via {content.extraction_method}"
        + (f", OCR confidence {content.ocr_confidence:.1f}" if content.ocr_confidence is not None else "")
        + (f", failed pages: {content.failed_pages}" if content.failed_pages else ""),
        file=sys.stderr,
    )
    _write_or_print(args.output, text, "text")


def handle_parse(args: argparse.Namespace):
    if args.input.suffix.lower() in DOCUMENT_SUFFIXES:
        content = _extract(args.input, args)
        structure = parse_contract_text(
            enhanced_text_processing(content.text),
            source_file_name=args.input.name,
            extraction_method=content.extraction_method,
            page_count=content.page_count,
        )
    else:
        structure = parse_contract_text(_read_text(args.input, args), source_file_name=args.input.name)

    if args.html:
        output = structure_to_html(structure)
    else:
        output = json.dumps(structure.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False, indent=2)

    confidence = structure.metadata.confidence
    print(
        f"Parsed {len(structure.articles)} article(s), confidence {confidence.score} "
        f"(title={confidence.title}, articles={confidence.articles}, signature={confidence.signature})",
        file=sys.stderr,
    )
    _write_or_print(args.output, output, "structure")


_LINE_MARKERS = {
    LineChangeKind.ADDED: "+",
    LineChangeKind.REMOVED: "-",
    LineChangeKind.UNCHANGED: " ",
    LineChangeKind.MODIFIED: "~",
}


def handle_diff(args: argparse.Namespace):
    text_orig = _read_text(args.original, args)
    text_mod = _read_text(args.modified, args)

    if args.lines:
        entries = compute_line_diff(text_orig, text_mod, aligned=args.aligned)
        if args.json:
            print(json.dumps([e.model_dump(mode="json", exclude_none=True) for e in entries], ensure_ascii=False, indent=2))
            return
        for entry in entries:
            if entry.kind == LineChangeKind.MODIFIED:
                print(f"- {entry.old_content}")
                print(f"+ {entry.content}")
            else:
                print(f"{_LINE_MARKERS[entry.kind]} {entry.content}")
        return

    diffs = compute_diff(text_orig, text_mod)
    stats = compute_diff_stats(diffs)
    print(f"+{stats.added} -{stats.removed} ({stats.change_percentage:.1f}% changed)", file=sys.stderr)

    if args.html:
        print(diff_to_html(diffs))
    elif args.json:
        print(json.dumps(extract_changes(text_orig, text_mod), ensure_ascii=False, indent=2))
    else:
        changes = extract_changes(text_orig, text_mod)
        for text in changes["deletions"]:
            print(f"[-] {text}")
        for text in changes["insertions"]:
            print(f"[+] {text}")


def handle_match(args: argparse.Namespace):
    html = _read_text(args.document, args)
    target = args.target
    if args.prefix:
        match = find_by_prefix(html, target, prefix_length=args.prefix_length, min_similarity=args.min_similarity)
    else:
        match = find_best_match(html, target, min_similarity=args.min_similarity)

    if match is None:
        print("No matching fragment found.", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(match.model_dump(), ensure_ascii=False, indent=2))


def handle_apply(args: argparse.Namespace):
    html = _read_text(args.document, args)
    if not args.suggestions.exists():
        _fail(f"Suggestions file not found: {args.suggestions}")
    suggestions = _load_suggestions(args.suggestions)
    if not suggestions:
        print("Warning: No suggestions found in JSON file.", file=sys.stderr)

    print(f"Applying {len(suggestions)} suggestion(s)...", file=sys.stderr)
    session = EditorSession(html, min_similarity=args.min_similarity)
    applied, skipped = session.apply_suggestions(suggestions)
    if args.confirm:
        session.confirm_changes()
    content = session.export_content() if args.accept else session.get_content()

    output_path = args.output or args.document.with_name(f"{args.document.stem}_suggested.html")
    output_path.write_text(content, encoding="utf-8")

    print(f"Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {applied} applied, {skipped} skipped.", file=sys.stderr)
    if skipped > 0:
        sys.exit(1)


def _add_extraction_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--force-ocr", action="store_true", help="Skip the text layer and OCR every page")
    parser.add_argument("--lang", help="Tesseract language(s) (default: jpn+eng or $KEIYAKU_OCR_LANGUAGE)")
    parser.add_argument("--dpi", type=int, help="Rasterization DPI for OCR (default: 300 or $KEIYAKU_OCR_DPI)")


def main():
    parser = argparse.ArgumentParser(prog="keiyaku", description="Keiyaku: contract extraction and reconciliation")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Debug logging on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_extract = subparsers.add_parser("extract", help="Extract normalized text from a PDF, DOCX or image")
    p_extract.add_argument("input", type=Path, help="Input document")
    p_extract.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_extract.add_argument("--raw", action="store_true", help="Skip normalization")
    p_extract.add_argument("--html", action="store_true", help="Render as editor HTML")
    _add_extraction_args(p_extract)
    p_extract.set_defaults(func=handle_extract)

    p_parse = subparsers.add_parser("parse", help="Parse a contract into articles, paragraphs and signatures")
    p_parse.add_argument("input", type=Path, help="Input document or text file")
    p_parse.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_parse.add_argument("--html", action="store_true", help="Render the parsed structure as HTML instead of JSON")
    _add_extraction_args(p_parse)
    p_parse.set_defaults(func=handle_parse)

    p_diff = subparsers.add_parser("diff", help="Compare two versions (documents or text files)")
    p_diff.add_argument("original", type=Path, help="Original version")
    p_diff.add_argument("modified", type=Path, help="Modified version")
    p_diff.add_argument("--lines", action="store_true", help="Line-by-line comparison")
    p_diff.add_argument("--aligned", action="store_true", help="With --lines: realign inserted/removed lines")
    p_diff.add_argument("--json", action="store_true", help="Output JSON")
    p_diff.add_argument("--html", action="store_true", help="Output tracked-change HTML")
    _add_extraction_args(p_diff)
    p_diff.set_defaults(func=handle_diff)

    p_match = subparsers.add_parser("match", help="Locate a clause in an HTML document")
    p_match.add_argument("document", type=Path, help="HTML document")
    p_match.add_argument("target", help="Clause text to locate")
    p_match.add_argument("--min-similarity", type=int, default=70, help="Minimum similarity 0-100 (default: 70)")
    p_match.add_argument("--prefix", action="store_true", help="Use the prefix-guarded matcher")
    p_match.add_argument("--prefix-length", type=int, default=15, help="Prefix length for --prefix (default: 15)")
    p_match.set_defaults(func=handle_match)

    p_apply = subparsers.add_parser("apply", help="Apply suggestions to an HTML document as tracked changes")
    p_apply.add_argument("document", type=Path, help="HTML document")
    p_apply.add_argument("suggestions", type=Path, help="JSON list of {original_text, suggested_text, comment}")
    p_apply.add_argument("-o", "--output", type=Path, help="Output HTML path")
    p_apply.add_argument("--min-similarity", type=int, default=70, help="Minimum similarity 0-100 (default: 70)")
    p_apply.add_argument("--confirm", action="store_true", help="Mark the new changes as confirmed")
    p_apply.add_argument("--accept", action="store_true", help="Write the accepted text without change markup")
    p_apply.set_defaults(func=handle_apply)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
