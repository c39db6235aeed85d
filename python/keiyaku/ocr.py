"""
OCR fallback for scanned PDFs and images.

Pages are rasterized in order on the calling thread, a bounded window at a time,
and recognized on a small thread pool (tesseract runs out of process, so threads
are enough). Results are always reassembled in page order, whatever order the
workers finish in.
"""

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterable, List, Optional, Tuple

import pytesseract
import structlog
from PIL import Image

from keiyaku.errors import ExtractionError, ExtractionErrorCategory
from keiyaku.models import ExtractionProgress

logger = structlog.get_logger(__name__)

# image -> (text, mean word confidence 0..100 or None)
Recognizer = Callable[[Image.Image], Tuple[str, Optional[float]]]
ProgressCallback = Callable[[ExtractionProgress], None]

PLACEHOLDER_TEMPLATE = "[OCR failed: page {page}]"


def configure_tesseract(tesseract_cmd: Optional[str]) -> None:
    """pytesseract only reads the binary path from its module global; entry points set it once."""
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


class TesseractRecognizer:
    def __init__(self, language: str = "jpn+eng"):
        self.language = language

    def __call__(self, image: Image.Image) -> Tuple[str, Optional[float]]:
        # One tesseract run yields both the words and their confidences
        data = pytesseract.image_to_data(image, lang=self.language, output_type=pytesseract.Output.DICT)
        return data_to_text(data), page_confidence(data)


def data_to_text(data: dict) -> str:
    """Page text from an image_to_data result: words joined per line, a blank line between paragraphs."""
    paragraphs: List[List[List[str]]] = []
    last_paragraph = last_line = None
    rows = zip(data.get("block_num", []), data.get("par_num", []), data.get("line_num", []), data.get("text", []))

    for block, par, line, token in rows:
        word = str(token or "").strip()
        if not word:
            continue
        if (block, par) != last_paragraph:
            paragraphs.append([])
            last_paragraph, last_line = (block, par), None
        if line != last_line:
            paragraphs[-1].append([])
            last_line = line
        paragraphs[-1][-1].append(word)

    return "\n\n".join("\n".join(" ".join(words) for words in lines) for lines in paragraphs)


def page_confidence(data: dict) -> Optional[float]:
    """Mean of the non-negative word confidences in an image_to_data result."""
    confidences = []
    for token, raw_conf in zip(data.get("text", []), data.get("conf", [])):
        if not (token or "").strip():
            continue
        try:
            conf = float(raw_conf)
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confidences.append(conf)
    if not confidences:
        return None
    return sum(confidences) / len(confidences)


def pixmap_to_image(pixmap) -> Image.Image:
    mode = "RGBA" if pixmap.alpha else "RGB"
    return Image.frombytes(mode, (pixmap.width, pixmap.height), pixmap.samples).convert("RGB")


@dataclass
class OcrResult:
    text: str
    page_count: int
    confidence: Optional[float] = None
    failed_pages: List[int] = field(default_factory=list)


@dataclass
class _PageOutcome:
    page: int
    text: str
    confidence: Optional[float] = None
    error: Optional[str] = None


class OcrPipeline:
    """
    Recognizes a sequence of page images.

    on_page_error="placeholder" keeps going and writes PLACEHOLDER_TEMPLATE for a
    failed page; "abort" raises on the first failure. When every page fails the
    pipeline raises either way.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        max_workers: int = 2,
        on_page_error: str = "placeholder",
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.recognizer = recognizer
        self.max_workers = max_workers
        self.on_page_error = on_page_error
        self.progress = progress
        self.cancel = cancel

    def _report(self, stage: str, page: int, total: int) -> None:
        if self.progress:
            self.progress(ExtractionProgress(stage, page, total))

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise ExtractionError("Extraction cancelled", ExtractionErrorCategory.CANCELLED)

    def _recognize(self, page: int, image: Image.Image) -> _PageOutcome:
        try:
            text, confidence = self.recognizer(image)
            return _PageOutcome(page, text.strip(), confidence)
        except Exception as e:
            logger.warning(f"OCR failed on page {page}: {e}")
            return _PageOutcome(page, "", error=str(e))

    def run(self, images: Iterable[Image.Image], total: int) -> OcrResult:
        """
        `images` may be lazy; it is consumed in order on this thread. At most
        max_workers * 2 pages are in flight: the oldest is collected before the next
        page is rasterized, so memory stays bounded and results stay in page order.
        """
        outcomes: List[_PageOutcome] = []
        window = max(1, self.max_workers) * 2

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="keiyaku-ocr") as executor:
            pending: Deque[Future] = deque()
            try:
                for page, image in enumerate(images, start=1):
                    self._check_cancelled()
                    self._report("rasterize", page, total)
                    pending.append(executor.submit(self._recognize, page, image))
                    while len(pending) >= window:
                        outcomes.append(self._collect(pending.popleft(), total))

                while pending:
                    outcomes.append(self._collect(pending.popleft(), total))
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

        return self._aggregate(outcomes)

    def _collect(self, future: Future, total: int) -> _PageOutcome:
        self._check_cancelled()
        outcome = future.result()
        if outcome.error is not None and self.on_page_error == "abort":
            raise ExtractionError(
                f"OCR failed on page {outcome.page}: {outcome.error}", ExtractionErrorCategory.UNREADABLE
            )
        self._report("ocr", outcome.page, total)
        return outcome

    def _aggregate(self, outcomes: List[_PageOutcome]) -> OcrResult:
        if not outcomes:
            raise ExtractionError("No pages to recognize", ExtractionErrorCategory.UNREADABLE)

        failed = [o.page for o in outcomes if o.error is not None]
        if len(failed) == len(outcomes):
            raise ExtractionError(f"OCR failed on all {len(outcomes)} pages", ExtractionErrorCategory.UNREADABLE)

        texts = [PLACEHOLDER_TEMPLATE.format(page=o.page) if o.error is not None else o.text for o in outcomes]
        confidences = [o.confidence for o in outcomes if o.error is None and o.confidence is not None]
        confidence = sum(confidences) / len(confidences) if confidences else None

        logger.info(f"OCR recognized {len(outcomes) - len(failed)}/{len(outcomes)} pages (confidence={confidence})")
        return OcrResult(
            text="\n\n".join(texts),
            page_count=len(outcomes),
            confidence=confidence,
            failed_pages=failed,
        )
