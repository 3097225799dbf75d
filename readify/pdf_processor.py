from __future__ import annotations

import logging
from typing import Dict, List, Union
from pathlib import Path

import pypdfium2 as pdfium

from readify.errors import ValidationError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


def is_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(PDF_MAGIC)


def extract_pages(source: Union[bytes, Path, str]) -> List[str]:
    """Plain text of every page, in page order."""
    if isinstance(source, (bytes, bytearray)) and not is_pdf(bytes(source)):
        raise ValidationError("File is not a PDF.")
    try:
        pdf = pdfium.PdfDocument(source if isinstance(source, (bytes, bytearray)) else str(source))
    except pdfium.PdfiumError as e:
        raise ValidationError(f"Could not open PDF: {e}")

    pages: List[str] = []
    try:
        for i in range(len(pdf)):
            page = pdf.get_page(i)
            textpage = page.get_textpage()
            try:
                text = textpage.get_text_range() or ""
            finally:
                textpage.close()
                page.close()
            # pdfium reports line breaks as \r\n
            pages.append(text.replace("\r\n", "\n").replace("\r", "\n").strip())
    finally:
        pdf.close()

    logger.info(f"[PDF] extracted {len(pages)} pages, {sum(len(p) for p in pages)} chars")
    return pages


def extract_text(source: Union[bytes, Path, str]) -> Dict[str, object]:
    pages = extract_pages(source)
    return {
        "text": "\n\n".join(p for p in pages if p),
        "pages": pages,
        "totalPages": len(pages),
    }
