import os
import re
import logging
from io import BytesIO
from pathlib import Path
from urllib.parse import unquote

import docx
import fitz  # PyMuPDF
from docx.oxml.ns import qn
from pypdf import PdfReader

from quizgen.errors import ExtractionError, UnsupportedFormatError
from quizgen.schemas import DocumentFormat, ExtractedText

logger = logging.getLogger(__name__)

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

CONTENT_TYPES = {
    "application/pdf": DocumentFormat.PDF,
    DOCX_CONTENT_TYPE: DocumentFormat.DOCX,
    "text/plain": DocumentFormat.TEXT,
}

EXTENSIONS = {
    ".pdf": DocumentFormat.PDF,
    ".docx": DocumentFormat.DOCX,
    ".txt": DocumentFormat.TEXT,
}

_PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")


def detect_format(content_type: str, filename: str) -> DocumentFormat:
    """Classify an upload by declared content type, falling back to the file extension"""
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in CONTENT_TYPES:
        return CONTENT_TYPES[mime]

    extension = os.path.splitext(filename or "")[1].lower()
    if extension in EXTENSIONS:
        return EXTENSIONS[extension]

    raise UnsupportedFormatError(content_type, filename)


def _decode_run(text: str) -> str:
    if not _PERCENT_ESCAPE.search(text):
        return text
    try:
        return unquote(text, errors="strict")
    except UnicodeDecodeError:
        return text


def _page_text(page) -> str:
    lines = []
    for block in page.get_text("dict")["blocks"]:
        for line in block.get("lines", []):
            # spans are the runs of a line; they carry their own spacing
            text = "".join(_decode_run(span["text"]) for span in line["spans"]).strip()
            if text:
                lines.append(text)
    return " ".join(lines)


def _extract_pdf(content: bytes) -> str:
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            pages = [_page_text(page) for page in doc]
    except Exception as e:
        logger.error(f"PyMuPDF failed: {str(e)}. Trying pypdf...")
        try:
            reader = PdfReader(BytesIO(content))
            pages = [
                " ".join(_decode_run(token) for token in (page.extract_text() or "").split())
                for page in reader.pages
            ]
        except Exception as fallback_e:
            logger.error(f"pypdf failed: {str(fallback_e)}")
            raise ExtractionError(DocumentFormat.PDF, str(fallback_e)) from fallback_e
    return "\n".join(pages)


def _extract_docx(content: bytes) -> str:
    try:
        document = docx.Document(BytesIO(content))
    except Exception as e:
        raise ExtractionError(DocumentFormat.DOCX, str(e) or type(e).__name__) from e

    paragraphs = []
    for paragraph in document.element.body.iter(qn("w:p")):
        # text boxes are embedded objects, not body text
        if next(paragraph.iterancestors(qn("w:txbxContent")), None) is not None:
            continue
        paragraphs.append(_paragraph_text(paragraph))
    return "\n".join(paragraphs)


def _paragraph_text(paragraph) -> str:
    return "".join(
        node.text or ""
        for node in paragraph.iter(qn("w:t"))
        if next(node.iterancestors(qn("w:p"))) is paragraph
    )


def _extract_plain_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ExtractionError(DocumentFormat.TEXT, str(e)) from e


_EXTRACTORS = {
    DocumentFormat.PDF: _extract_pdf,
    DocumentFormat.DOCX: _extract_docx,
    DocumentFormat.TEXT: _extract_plain_text,
}


def extract_text_from_bytes(content: bytes, fmt: DocumentFormat) -> ExtractedText:
    """Extract plain text from document bytes of a known format"""
    text = _EXTRACTORS[fmt](content)
    if not text.strip():
        raise ExtractionError(fmt, "no extractable text found")
    logger.info(f"Extracted {len(text)} characters from {fmt.value} document")
    return ExtractedText(text=text, source_format=fmt)


def extract_text(path: Path, fmt: DocumentFormat) -> ExtractedText:
    """Extract plain text from a staged upload"""
    return extract_text_from_bytes(Path(path).read_bytes(), fmt)
