import logging
import re
from pathlib import Path

from docx import Document
from pdfminer.high_level import extract_text as pdf_extract

from cvmatch.utils.exceptions import ValidationError

logging.getLogger("pdfminer").setLevel(logging.ERROR)


def read_txt(p: Path) -> str:
    return p.read_text(errors="ignore")


def read_docx(p: Path) -> str:
    doc = Document(str(p))
    return "\n".join([para.text for para in doc.paragraphs])


def read_pdf(p: Path) -> str:
    return pdf_extract(str(p))


def clean_text(x: str) -> str:
    return re.sub(r'\s+', ' ', x).strip()


READERS = {
    "txt": read_txt,
    "pdf": read_pdf,
    "docx": read_docx,
    "doc": read_docx,
}


def file_type_for(path: str) -> str:
    return Path(path).suffix.lower().lstrip(".")


def extract_text(path: str, file_type: str = None) -> str:
    """Extract and normalise the text of a stored CV file"""
    file_type = (file_type or file_type_for(path)).lower()
    reader = READERS.get(file_type)
    if reader is None:
        raise ValidationError(f"Unsupported file type: {file_type}", field="file_type", value=file_type)
    return clean_text(reader(Path(path)))
