from enum import Enum


class ExtractionErrorCategory(str, Enum):
    CORRUPT_INPUT = "corrupt_input"
    UNREADABLE = "unreadable"
    CANCELLED = "cancelled"


class ExtractionError(ValueError):
    """
    The only error the pipeline raises to callers. Everything downstream of
    extraction (normalization, parsing, diffing, matching) degrades instead of raising.
    """

    def __init__(self, message: str, category: ExtractionErrorCategory = ExtractionErrorCategory.UNREADABLE):
        super().__init__(message)
        self.category = category

    def __str__(self) -> str:
        return f"[{self.category.value}] {super().__str__()}"
