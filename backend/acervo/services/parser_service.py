"""
Parser Service
Extracts plain text from stored document blobs. Every result goes through the
sanitizer so downstream code only ever sees storage-safe text.
"""

import logging
from io import BytesIO

import docx
import fitz  # PyMuPDF

from acervo.core.exceptions import ExtractionError
from acervo.utils.text_sanitizer import sanitize

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {"txt", "md"}
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | {"pdf", "docx"}


def get_extension(filename: str) -> str:
    return filename.lower().rsplit(".", 1)[-1] if "." in filename else ""


def extract_text(content: bytes, filename: str) -> str:
    """
    Extract sanitized text from a document.

    Args:
        content: Raw blob as stored
        filename: Original or storage filename (used for format detection)

    Returns:
        Sanitized text, possibly empty (a scanned PDF has no text layer)

    Raises:
        ExtractionError: unsupported extension, undecodable text or corrupt container
    """
    file_ext = get_extension(filename)

    if file_ext in TEXT_EXTENSIONS:
        text = parse_txt(content)
    elif file_ext == "pdf":
        text = parse_pdf(content)
    elif file_ext == "docx":
        text = parse_docx(content)
    else:
        logger.warning(f"Unsupported file format: {file_ext or '<none>'} ({filename})")
        raise ExtractionError(f"Unsupported file format: .{file_ext}" if file_ext else "File has no extension")

    return sanitize(text)


def parse_txt(content: bytes) -> str:
    """Decodes a plain text file (UTF-8, BOM tolerated, cp1252 as a fallback)."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("Failed to decode TXT file with UTF-8, trying with cp1252.")
    try:
        return content.decode("cp1252")
    except UnicodeDecodeError as e:
        logger.error("Failed to decode TXT file with both UTF-8 and cp1252.")
        raise ExtractionError("Text file could not be decoded") from e


def parse_pdf(content: bytes) -> str:
    """Parses text from a .pdf file."""
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            return "\n".join(page.get_text() for page in doc)
    except Exception as e:
        logger.error(f"Error parsing PDF file: {e}", exc_info=True)
        raise ExtractionError("PDF file could not be read") from e


def parse_docx(content: bytes) -> str:
    """Parses text from a .docx file."""
    try:
        document = docx.Document(BytesIO(content))
    except Exception as e:
        logger.error(f"Error parsing DOCX file: {e}", exc_info=True)
        raise ExtractionError("DOCX file could not be read") from e
    return "\n".join(para.text for para in document.paragraphs)
