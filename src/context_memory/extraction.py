"""
Text extraction collaborator interface.

Non-plain-text documents (PDF, DOCX, images) are handed to an external
extractor (OCR service, document parser) that returns plain text.
"""

from typing import Optional, Protocol

from pydantic import BaseModel, Field
from typing_extensions import runtime_checkable

PLAIN_TEXT_TYPES = {"text/plain", "text/markdown", "text/csv", "application/json"}


class ExtractedText(BaseModel):
    text: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    page_count: Optional[int] = None


@runtime_checkable
class TextExtractor(Protocol):
    """
    Protocol for document text extraction.

    Example:
        >>> extracted = await extractor.extract(pdf_bytes, "application/pdf")
        >>> extracted.page_count
        3
    """

    async def extract(self, data: bytes, mime_type: str) -> ExtractedText:
        """
        Extract plain text from a document.

        Args:
            data: Raw document bytes
            mime_type: MIME type of the document

        Returns:
            Extracted text with confidence and page count
        """
        ...


def is_plain_text(mime_type: str) -> bool:
    return mime_type.split(";")[0].strip().lower() in PLAIN_TEXT_TYPES
