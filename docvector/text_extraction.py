import io
from typing import Tuple
from pypdf import PdfReader
from docx import Document as DocxDocument

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def read_text_from_pdf(data: bytes) -> str:
    pdf = PdfReader(io.BytesIO(data))
    # blank line between pages so the paragraph chunker sees a boundary
    return "\n\n".join((page.extract_text() or "") for page in pdf.pages)


def read_text_from_docx(data: bytes) -> str:
    """
    Extract text from DOCX file including both paragraphs and tables.
    Tables are converted to readable text format.
    """
    doc = DocxDocument(io.BytesIO(data))
    parts = [para.text.strip() for para in doc.paragraphs if para.text.strip()]

    for table in doc.tables:
        table_text = extract_table_text(table)
        if table_text:
            parts.append(table_text)

    return "\n\n".join(parts)


def extract_table_text(table) -> str:
    """One line per non-empty row, cells joined with ' | '."""
    lines = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if not any(cells):
            continue
        lines.append(" | ".join(cells))
    return "\n".join(lines)


def read_text_from_txt(data: bytes, encoding="utf-8") -> str:
    return data.decode(encoding, errors="ignore")


def read_any(data: bytes, mime: str, filename: str) -> Tuple[str, str]:
    """
    Extract plain text from an uploaded file.

    Returns:
        (text, kind) where kind is "pdf", "docx" or "txt". NUL characters are
        removed since Postgres text columns cannot hold them.
    """
    name = (filename or "").lower()
    if name.endswith(".pdf") or mime == "application/pdf":
        text, kind = read_text_from_pdf(data), "pdf"
    elif name.endswith(".docx") or mime == DOCX_MIME:
        text, kind = read_text_from_docx(data), "docx"
    else:
        # default to txt
        text, kind = read_text_from_txt(data), "txt"
    return text.replace("\x00", ""), kind
