"""
Extraction gateway: file bytes -> plain text plus document info.

PDFs are read directly first; when the text layer is missing or looks like garbage
the pages are rasterized and OCR'd. DOCX bodies are read with python-docx. Image
files go straight to OCR.
"""

import io
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

import fitz
import structlog
from docx import Document
from PIL import Image, ImageSequence

from keiyaku.errors import ExtractionError, ExtractionErrorCategory
from keiyaku.models import (
    ContractStructure,
    DocumentInfo,
    ExtractedContent,
    ExtractionOptions,
    ExtractionProgress,
)
from keiyaku.normalize import enhanced_text_processing, is_valid_extraction
from keiyaku.ocr import OcrPipeline, Recognizer, TesseractRecognizer, pixmap_to_image
from keiyaku.structure.parser import parse_contract_text
from keiyaku.utils.docx import docx_to_text

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ExtractionProgress], None]

_IMAGE_MAGIC = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"II*\x00",
    b"MM\x00*",
)

_PDF_DATE = re.compile(
    r"^(?:D:)?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?(?:([Zz+\-])(\d{2})?'?(\d{2})?'?)?"
)


def sniff_format(data: bytes) -> str:
    """pdf | docx | image. Unknown input is treated as PDF and fails there if it isn't one."""
    head = data[:8]
    if head.startswith(b"%PDF"):
        return "pdf"
    if head.startswith(b"PK\x03\x04"):
        return "docx"
    if any(head.startswith(magic) for magic in _IMAGE_MAGIC):
        return "image"
    return "pdf"


def parse_pdf_date(value: Optional[str]) -> Optional[datetime]:
    """Parses PDF date strings like D:20240115103000+09'00'. Returns None if unparseable."""
    if not value:
        return None
    match = _PDF_DATE.match(value.strip())
    if not match:
        return None

    year, month, day, hour, minute, second, sign, tz_h, tz_m = match.groups()
    try:
        tz = None
        if sign in ("Z", "z"):
            tz = timezone.utc
        elif sign in ("+", "-"):
            offset = timedelta(hours=int(tz_h or 0), minutes=int(tz_m or 0))
            tz = timezone(offset if sign == "+" else -offset)
        return datetime(
            int(year),
            int(month or 1),
            int(day or 1),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
            tzinfo=tz,
        )
    except ValueError:
        return None


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ExtractionError("Extraction cancelled", ExtractionErrorCategory.CANCELLED)


def _report(progress: Optional[ProgressCallback], stage: str, page: int, total: int) -> None:
    if progress:
        progress(ExtractionProgress(stage, page, total))


def _pdf_info(doc) -> DocumentInfo:
    metadata = doc.metadata or {}
    return DocumentInfo(
        title=metadata.get("title") or None,
        author=metadata.get("author") or None,
        creation_date=parse_pdf_date(metadata.get("creationDate")),
    )


def _iter_page_images(doc, dpi: int) -> Iterator[Image.Image]:
    for page in doc:
        yield pixmap_to_image(page.get_pixmap(dpi=dpi))


def _make_pipeline(options, recognizer, progress, cancel) -> OcrPipeline:
    recognizer = recognizer or TesseractRecognizer(options.ocr_language)
    return OcrPipeline(
        recognizer,
        max_workers=options.max_workers,
        on_page_error=options.on_page_error,
        progress=progress,
        cancel=cancel,
    )


def _extract_pdf(data, options, recognizer, progress, cancel) -> ExtractedContent:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        logger.error(f"PDF open failed: {e}", exc_info=True)
        raise ExtractionError(f"Could not open PDF: {e}", ExtractionErrorCategory.CORRUPT_INPUT) from e

    with doc:
        if doc.needs_pass:
            raise ExtractionError("PDF is password protected", ExtractionErrorCategory.UNREADABLE)

        total = doc.page_count
        info = _pdf_info(doc)

        # 1. Direct text layer
        pages = []
        for index, page in enumerate(doc, start=1):
            _check_cancelled(cancel)
            pages.append(page.get_text("text"))
            _report(progress, "text", index, total)
        direct_text = "\n".join(pages)

        if is_valid_extraction(direct_text) and not options.force_ocr:
            logger.info(f"Direct text extraction succeeded ({total} pages, {len(direct_text)} chars)")
            _report(progress, "done", total, total)
            return ExtractedContent(text=direct_text, page_count=total, info=info, extraction_method="text")

        # 2. OCR fallback
        reason = "forced" if options.force_ocr else "text layer missing or invalid"
        logger.info(f"Falling back to OCR ({reason}), {total} pages at {options.dpi} dpi")

        pipeline = _make_pipeline(options, recognizer, progress, cancel)
        try:
            result = pipeline.run(_iter_page_images(doc, options.dpi), total)
        except ExtractionError as e:
            if e.category == ExtractionErrorCategory.CANCELLED or not direct_text.strip():
                logger.error(f"PDF extraction failed: {e}", exc_info=True)
                raise
            logger.warning(f"OCR failed, keeping direct text: {e}")
            return ExtractedContent(text=direct_text, page_count=total, info=info, extraction_method="text")

    _report(progress, "done", total, total)
    return ExtractedContent(
        text=result.text,
        page_count=result.page_count,
        info=info,
        extraction_method="ocr",
        ocr_confidence=result.confidence,
        failed_pages=result.failed_pages,
    )


def _extract_docx(data, cancel) -> ExtractedContent:
    _check_cancelled(cancel)
    try:
        doc = Document(io.BytesIO(data))
    except Exception as e:
        logger.error(f"DOCX open failed: {e}", exc_info=True)
        raise ExtractionError(f"Could not open DOCX: {e}", ExtractionErrorCategory.CORRUPT_INPUT) from e

    text = docx_to_text(doc)
    if not text.strip():
        raise ExtractionError("DOCX contains no text", ExtractionErrorCategory.UNREADABLE)

    props = doc.core_properties
    info = DocumentInfo(title=props.title or None, author=props.author or None, creation_date=props.created)
    logger.info(f"DOCX extraction succeeded ({len(text)} chars)")
    return ExtractedContent(text=text, page_count=None, info=info, extraction_method="text")


def _extract_image(data, options, recognizer, progress, cancel) -> ExtractedContent:
    try:
        image = Image.open(io.BytesIO(data))
        frames = [frame.convert("RGB") for frame in ImageSequence.Iterator(image)]
    except Exception as e:
        logger.error(f"Image open failed: {e}", exc_info=True)
        raise ExtractionError(f"Could not open image: {e}", ExtractionErrorCategory.CORRUPT_INPUT) from e

    logger.info(f"Image input, OCR on {len(frames)} frame(s)")
    result = _make_pipeline(options, recognizer, progress, cancel).run(frames, len(frames))
    _report(progress, "done", result.page_count, result.page_count)
    return ExtractedContent(
        text=result.text,
        page_count=result.page_count,
        extraction_method="ocr",
        ocr_confidence=result.confidence,
        failed_pages=result.failed_pages,
    )


def extract_document(
    data: bytes,
    options: Optional[ExtractionOptions] = None,
    filename: Optional[str] = None,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
    recognizer: Optional[Recognizer] = None,
) -> ExtractedContent:
    """
    Extracts text from PDF, DOCX or image bytes.

    Raises ExtractionError (corrupt_input, unreadable or cancelled) when no usable
    text can be produced. A cancelled extraction never returns a partial result.
    """
    options = options or ExtractionOptions()
    if not data:
        raise ExtractionError("Empty input", ExtractionErrorCategory.CORRUPT_INPUT)

    kind = sniff_format(data)
    logger.info(f"Extracting {filename or '<bytes>'} as {kind} ({len(data)} bytes)")

    if kind == "docx":
        return _extract_docx(data, cancel)
    if kind == "image":
        return _extract_image(data, options, recognizer, progress, cancel)
    return _extract_pdf(data, options, recognizer, progress, cancel)


def extract_and_parse(
    data: bytes,
    options: Optional[ExtractionOptions] = None,
    filename: Optional[str] = None,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
    recognizer: Optional[Recognizer] = None,
) -> ContractStructure:
    """Extraction -> normalization -> document tree, in one call."""
    content = extract_document(data, options, filename, progress, cancel, recognizer)
    text = enhanced_text_processing(content.text)
    return parse_contract_text(
        text,
        source_file_name=filename,
        extraction_method=content.extraction_method,
        page_count=content.page_count,
    )
