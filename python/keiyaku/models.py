import os
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    """Base for stored records: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Document Tree ---


class Item(_Record):
    """号: enumerated sub-clause ((1), (2), ...) of a paragraph."""

    id: str
    number: int
    content: str


class Paragraph(_Record):
    """項: numbered (1. 2. ...) or unnumbered unit of an article."""

    id: str
    number: Optional[int] = None
    content: str = ""
    items: Optional[List[Item]] = None


class Article(_Record):
    """条: top-level clause (第N条)."""

    id: str
    number: int
    title: str
    paragraphs: List[Paragraph] = Field(default_factory=list)


class Party(_Record):
    role: str = Field(..., description="甲, 乙, 丙 or any other role marker.")
    address: Optional[str] = None
    name: Optional[str] = None
    representative: Optional[str] = None


class SignatureSection(_Record):
    closing_text: Optional[str] = None
    date: Optional[str] = None
    parties: List[Party] = Field(default_factory=list)


class StructuralConfidence(_Record):
    """
    Which fallback tier each parsing heuristic ended up on.
    Consumers use this instead of assuming the tree is exact.
    """

    title: Literal["contract_title", "first_line", "default"] = "default"
    articles: Literal["headings", "synthetic", "empty"] = "empty"
    signature: Literal["role_markers", "pattern_fallback", "placeholder", "absent"] = "absent"
    score: float = Field(0.0, ge=0.0, le=1.0)


class StructureMetadata(_Record):
    extracted_at: str
    extraction_method: Literal["text", "ocr"] = "text"
    source_file_name: Optional[str] = None
    page_count: Optional[int] = None
    confidence: StructuralConfidence = Field(default_factory=StructuralConfidence)


class ContractStructure(_Record):
    version: Literal[1] = 1
    title: str
    preamble: Optional[str] = None
    articles: List[Article] = Field(default_factory=list)
    signature: Optional[SignatureSection] = None
    metadata: StructureMetadata


# --- Extraction ---


class ExtractionOptions(BaseModel):
    force_ocr: bool = False
    ocr_language: str = "jpn+eng"
    dpi: int = Field(300, ge=72, le=1200)
    max_workers: int = Field(2, ge=1)
    on_page_error: Literal["placeholder", "abort"] = Field(
        "placeholder",
        description="What to do when one page fails OCR: keep going with a placeholder, or abort.",
    )
    tesseract_cmd: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "ExtractionOptions":
        """
        Builds options from KEIYAKU_* environment variables.
        Only the CLI and tool server call this; library code takes options explicitly.
        """
        values = {}
        if os.environ.get("KEIYAKU_OCR_LANGUAGE"):
            values["ocr_language"] = os.environ["KEIYAKU_OCR_LANGUAGE"]
        if os.environ.get("KEIYAKU_OCR_DPI"):
            values["dpi"] = int(os.environ["KEIYAKU_OCR_DPI"])
        if os.environ.get("KEIYAKU_TESSERACT_CMD"):
            values["tesseract_cmd"] = os.environ["KEIYAKU_TESSERACT_CMD"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class DocumentInfo(_Record):
    title: Optional[str] = None
    author: Optional[str] = None
    creation_date: Optional[datetime] = None


class ExtractionProgress(NamedTuple):
    """Reported to progress callbacks. page is 1-based; 0 before the first page."""

    stage: Literal["text", "rasterize", "ocr", "done"]
    page: int
    total: int


class ExtractedContent(_Record):
    text: str
    page_count: Optional[int] = None
    info: DocumentInfo = Field(default_factory=DocumentInfo)
    extraction_method: Literal["text", "ocr"] = "text"
    ocr_confidence: Optional[float] = None
    failed_pages: List[int] = Field(default_factory=list)


# --- Diff ---


class DiffOp(IntEnum):
    """Same integer codes diff_match_patch uses."""

    DELETE = -1
    EQUAL = 0
    INSERT = 1


class DiffSegment(NamedTuple):
    op: DiffOp
    text: str


class DiffStats(_Record):
    added: int = 0
    removed: int = 0
    unchanged: int = 0
    change_percentage: float = 0.0


class LineChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"


class LineDiffEntry(_Record):
    kind: LineChangeKind
    content: str
    old_content: Optional[str] = None


# --- Matching / suggestions ---


class MatchResult(_Record):
    matched_fragment: str = Field(..., description="Whole fragment markup, e.g. <p ...>...</p>.")
    fragment_kind: Literal["heading", "paragraph", "list_item"]
    tag_name: str
    open_tag: str
    inner_text: str
    similarity: int = Field(..., ge=0, le=100)
    start_offset: int
    end_offset: int


class Suggestion(BaseModel):
    """
    An externally authored replacement clause (e.g. from the risk-analysis service).
    Treated as a fuzzy "search and replace": original_text is located in the live
    document and replaced by tracked markup towards suggested_text.
    """

    original_text: str = Field(
        ...,
        description="Text the suggestion replaces. Whitespace or full-width drift is tolerated.",
    )
    suggested_text: str = Field(..., description="The replacement clause text (plain text, no markup).")
    comment: Optional[str] = Field(None, description="Rationale shown alongside the change.")
