"""Text extraction for uploaded files.

Parsers are synchronous libraries, so ``extract_text`` runs them in a worker
thread to keep the event loop free.
"""

import asyncio
import io
import logging

import docx
import openpyxl
from bs4 import BeautifulSoup
from pypdf import PdfReader

from shared.models.errors import BadRequestError, UnsupportedFileTypeError


MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MIME_TEXT = "text/plain"
MIME_MARKDOWN = "text/markdown"
MIME_HTML = "text/html"

ALLOWED_MIME_TYPES: frozenset[str] = frozenset({
    MIME_TEXT,
    MIME_MARKDOWN,
    MIME_HTML,
    MIME_PDF,
    MIME_DOCX,
    MIME_XLSX,
})

# browsers and curl often send a generic type, so fall back on the file extension
_EXTENSION_MIME_TYPES: dict[str, str] = {
    ".txt": MIME_TEXT,
    ".md": MIME_MARKDOWN,
    ".markdown": MIME_MARKDOWN,
    ".html": MIME_HTML,
    ".htm": MIME_HTML,
    ".pdf": MIME_PDF,
    ".docx": MIME_DOCX,
    ".xlsx": MIME_XLSX,
}


def resolve_mime_type(content_type: str | None, filename: str | None) -> str:
    """Normalise the declared content type of an upload.

    Parameters such as "; charset=utf-8" are dropped. Generic types are
    replaced by the type implied by the file extension when there is one.
    """
    mime_type = (content_type or "").split(";")[0].strip().lower()
    if mime_type in ALLOWED_MIME_TYPES:
        return mime_type
    if filename and "." in filename:
        extension = "." + filename.rsplit(".", 1)[1].lower()
        if extension in _EXTENSION_MIME_TYPES:
            return _EXTENSION_MIME_TYPES[extension]
    return mime_type or "application/octet-stream"


class FileExtractor:
    """Turns uploaded bytes into plain text."""

    def __init__(self, logger: logging.Logger):
        self.logging = logger

    def validate(self, data: bytes, mime_type: str) -> None:
        """Check size and type constraints before any parsing happens.

        Raises:
            UnsupportedFileTypeError: If the MIME type is not allowed.
            BadRequestError: If the file is empty or larger than MAX_FILE_SIZE.
        """
        if mime_type not in ALLOWED_MIME_TYPES:
            raise UnsupportedFileTypeError(mime_type)
        if not data:
            raise BadRequestError("Uploaded file is empty")
        if len(data) > MAX_FILE_SIZE:
            raise BadRequestError(
                "File too large. Maximum size is 10MB",
                details={"size": len(data), "max_size": MAX_FILE_SIZE},
            )

    async def extract_text(self, data: bytes, mime_type: str) -> str:
        """Validate and extract the text content of a file.

        Args:
            data (bytes): Raw file content.
            mime_type (str): Normalised MIME type (see resolve_mime_type).

        Returns:
            str: The extracted text, stripped.

        Raises:
            UnsupportedFileTypeError: If the MIME type is not allowed.
            BadRequestError: If the file is empty, too large, unreadable or yields no text.
        """
        self.validate(data, mime_type)
        try:
            text = await asyncio.to_thread(self._extract_sync, data, mime_type)
        except UnsupportedFileTypeError:
            raise
        except Exception as exc:
            self.logging.warning("Failed to parse %s upload: %s", mime_type, exc)
            raise BadRequestError("Failed to extract text from file", details={"mime_type": mime_type}) from exc

        text = text.strip()
        if not text:
            raise BadRequestError("Could not extract text from file", details={"mime_type": mime_type})
        self.logging.debug("Extracted %d characters from %s upload", len(text), mime_type)
        return text

    ##########################################
    ############### PARSERS ##################
    ##########################################

    def _extract_sync(self, data: bytes, mime_type: str) -> str:
        if mime_type in (MIME_TEXT, MIME_MARKDOWN):
            return self._decode(data)
        if mime_type == MIME_HTML:
            return self._extract_html(data)
        if mime_type == MIME_PDF:
            return self._extract_pdf(data)
        if mime_type == MIME_DOCX:
            return self._extract_docx(data)
        if mime_type == MIME_XLSX:
            return self._extract_xlsx(data)
        raise UnsupportedFileTypeError(mime_type)

    @staticmethod
    def _decode(data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            return data.decode("latin-1")

    def _extract_html(self, data: bytes) -> str:
        soup = BeautifulSoup(self._decode(data), "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        lines = [line.strip() for line in soup.get_text(separator="\n").splitlines()]
        return "\n".join(line for line in lines if line)

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(page.strip() for page in pages if page.strip())

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        document = docx.Document(io.BytesIO(data))
        parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n\n".join(parts)

    @staticmethod
    def _extract_xlsx(data: bytes) -> str:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            sheets: list[str] = []
            for sheet in workbook.worksheets:
                rows = []
                for row in sheet.iter_rows(values_only=True):
                    cells = [str(value) for value in row if value is not None and str(value).strip()]
                    if cells:
                        rows.append(" | ".join(cells))
                if rows:
                    sheets.append(f"Sheet: {sheet.title}\n" + "\n".join(rows))
            return "\n\n".join(sheets)
        finally:
            workbook.close()
