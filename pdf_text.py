# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import io
import os
import re
import unicodedata

# Third-Party: PDF Processing
import pdfplumber
from PyPDF2 import PdfReader


MAX_UPLOAD_CHARS = 10000


class UploadInvalid(Exception):
    status = 400
    message = "Please upload a PDF or text file."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# ============================================================================
# TEXT EXTRACTION
# ============================================================================

def extract_pdf_text_plumber(file_bytes: bytes) -> str:
    """Extract page text with pdfplumber."""
    extracted_text = ""
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        for page in pdf.pages:
            text = page.extract_text()
            if text:
                extracted_text += text + "\n"
    return extracted_text.strip()


def extract_pdf_text_pypdf(file_bytes: bytes) -> str:
    """Fallback extraction with PyPDF2."""
    reader = PdfReader(io.BytesIO(file_bytes))
    parts = [(p.extract_text() or "") for p in reader.pages]
    return "\n".join(t for t in parts if t.strip()).strip()


def extract_pdf_text(file_bytes: bytes) -> str:
    """Extract text from a PDF, trying pdfplumber first."""
    try:
        text = extract_pdf_text_plumber(file_bytes)
    except Exception as e:
        print(f"[upload] pdfplumber failed: {e}", flush=True)
        text = ""
    if text:
        return text
    try:
        return extract_pdf_text_pypdf(file_bytes)
    except Exception as e:
        print(f"[upload] PyPDF2 failed: {e}", flush=True)
        return ""


def format_readable_text(s: str) -> str:
    """Normalize extracted text: NFKC, bullets, whitespace, blank-line runs."""
    if not s:
        return s
    t = unicodedata.normalize("NFKC", s)
    lines: list[str] = []
    for ln in t.splitlines():
        raw = ln.strip()
        if not raw:
            lines.append("")
            continue
        raw = re.sub(r"^[\-•·∙◦●–—]+\s*", "- ", raw)
        raw = re.sub(r"\s+", " ", raw)
        lines.append(raw)
    t = "\n".join(lines)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def extract_upload_text(filename: str, file_bytes: bytes) -> tuple[str, str]:
    """Return (topic, content) for an uploaded PDF or text file.

    The topic is the file name without its extension; the content is labelled
    with the source file and capped at MAX_UPLOAD_CHARS.
    """
    name = (filename or "").strip()
    lower = name.lower()
    if lower.endswith(".pdf"):
        text = extract_pdf_text(file_bytes)
        label = f"[PDF Content from: {name}]"
    elif lower.endswith(".txt"):
        text = file_bytes.decode("utf-8", errors="ignore")
        label = f"[Text Content from: {name}]"
    else:
        raise UploadInvalid()

    text = format_readable_text(text or "")
    if not text:
        raise UploadInvalid("No text could be extracted from the file")

    topic = os.path.splitext(name)[0].strip()
    content = f"{label}\n{text[:MAX_UPLOAD_CHARS]}"
    return topic, content
