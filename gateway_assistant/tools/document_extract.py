"""Text extraction for PDF and Office (docx/xlsx/pptx) files."""

import asyncio
import re
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Any

from pydantic import Field
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools.local_policy import get_local_file_policy, resolve_existing_path_with_fallback
from gateway_assistant.tools.registry import Tool, ToolArguments, ToolResult

log = get_logger(__name__)

OFFICE_FORMATS = {".docx": "docx", ".xlsx": "xlsx", ".pptx": "pptx"}

W_NS = {"w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main"}
X_NS = {"x": "http://schemas.openxmlformats.org/spreadsheetml/2006/main"}
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_NS = {"rel": "http://schemas.openxmlformats.org/package/2006/relationships"}
A_NS = {"a": "http://schemas.openxmlformats.org/drawingml/2006/main"}


def _normalize_text(value: str) -> str:
    """Collapse runs of whitespace per line and drop blank lines."""
    lines = [re.sub(r"\s+", " ", line).strip() for line in (value or "").splitlines()]
    return "\n".join(line for line in lines if line)


def _joined_text(element: ET.Element, path: str, ns: dict[str, str]) -> str:
    return _normalize_text("".join(node.text or "" for node in element.findall(path, ns)))


def _docx_text(path: Path) -> str:
    with zipfile.ZipFile(path, "r") as archive:
        root = ET.fromstring(archive.read("word/document.xml"))
    body = root.find("w:body", W_NS)
    if body is None:
        return ""

    lines: list[str] = []
    for child in list(body):
        tag = child.tag.split("}", 1)[-1]
        if tag == "p":
            text = _joined_text(child, ".//w:t", W_NS)
            if text:
                lines.append(text)
        elif tag == "tbl":
            for row in child.findall("./w:tr", W_NS):
                cells = [
                    " ".join(filter(None, (_joined_text(p, ".//w:t", W_NS) for p in cell.findall(".//w:p", W_NS))))
                    for cell in row.findall("./w:tc", W_NS)
                ]
                if any(cells):
                    lines.append("\t".join(cells))
    return "\n".join(lines)


def _xlsx_column(cell_ref: str) -> int:
    """Zero-based column index of a reference like ``AB12``."""
    index = 0
    for ch in "".join(c for c in cell_ref if c.isalpha()).upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return max(0, index - 1)


def _xlsx_text(path: Path) -> str:
    with zipfile.ZipFile(path, "r") as archive:
        names = set(archive.namelist())
        shared: list[str] = []
        if "xl/sharedStrings.xml" in names:
            strings_root = ET.fromstring(archive.read("xl/sharedStrings.xml"))
            shared = [_joined_text(si, ".//x:t", X_NS) for si in strings_root.findall(".//x:si", X_NS)]

        workbook = ET.fromstring(archive.read("xl/workbook.xml"))
        rels = ET.fromstring(archive.read("xl/_rels/workbook.xml.rels"))
        targets = {
            rel.get("Id", ""): rel.get("Target", "")
            for rel in rels.findall(".//rel:Relationship", REL_NS)
        }

        lines: list[str] = []
        for sheet in workbook.findall(".//x:sheets/x:sheet", X_NS):
            target = targets.get(sheet.get(f"{{{R_NS}}}id", ""), "").lstrip("/")
            sheet_path = target if target.startswith("xl/") else f"xl/{target}"
            if not target or sheet_path not in names:
                continue

            lines.append(f"[{sheet.get('name') or 'Sheet'}]")
            sheet_root = ET.fromstring(archive.read(sheet_path))
            for row in sheet_root.findall(".//x:sheetData/x:row", X_NS):
                values: dict[int, str] = {}
                for cell in row.findall("./x:c", X_NS):
                    kind = cell.get("t", "")
                    if kind == "inlineStr":
                        value = _joined_text(cell, "./x:is/x:t", X_NS)
                    else:
                        node = cell.find("./x:v", X_NS)
                        raw = (node.text or "").strip() if node is not None else ""
                        if kind == "s" and raw.isdigit() and int(raw) < len(shared):
                            value = shared[int(raw)]
                        elif kind == "b":
                            value = "TRUE" if raw == "1" else "FALSE"
                        else:
                            value = raw
                    values[_xlsx_column(cell.get("r", ""))] = value
                if any(values.values()):
                    width = max(values) + 1
                    lines.append("\t".join(values.get(col, "") for col in range(width)))
    return "\n".join(lines)


def _pptx_text(path: Path) -> str:
    slide_re = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
    with zipfile.ZipFile(path, "r") as archive:
        slides = sorted(
            (int(match.group(1)), name)
            for name in archive.namelist()
            if (match := slide_re.match(name))
        )
        lines: list[str] = []
        for index, name in slides:
            root = ET.fromstring(archive.read(name))
            texts = [text for para in root.findall(".//a:p", A_NS) if (text := _joined_text(para, ".//a:t", A_NS))]
            if texts:
                lines.append(f"[Slide {index}]")
                lines.extend(texts)
    return "\n".join(lines)


_OFFICE_EXTRACTORS = {"docx": _docx_text, "xlsx": _xlsx_text, "pptx": _pptx_text}


def extract_office_text(path: Path) -> tuple[str, str]:
    """Return ``(format, text)`` for a docx/xlsx/pptx file.

    Raises:
        GatewayError: BAD_REQUEST for other extensions, UNSUPPORTED_CONTENT
            when the package cannot be parsed or holds no text.
    """
    fmt = OFFICE_FORMATS.get(path.suffix.lower())
    if fmt is None:
        raise GatewayError(ErrorCode.BAD_REQUEST, f"Only docx/xlsx/pptx files are supported: {path}")
    try:
        text = _OFFICE_EXTRACTORS[fmt](path)
    except (zipfile.BadZipFile, KeyError, ET.ParseError) as e:
        raise GatewayError(ErrorCode.UNSUPPORTED_CONTENT, f"Failed to parse office file: {e}")
    text = text.replace("\r\n", "\n").strip()
    if not text:
        raise GatewayError(ErrorCode.UNSUPPORTED_CONTENT, "No extractable text found")
    return fmt, text


def extract_pdf_pages(path: Path, max_pages: int) -> tuple[int, int, str]:
    """Return ``(total_pages, returned_pages, text)`` for the first pages of a PDF."""
    try:
        reader = PdfReader(str(path))
        total = len(reader.pages) or 1
        returned = min(max_pages, total)
        chunks = [reader.pages[index].extract_text() or "" for index in range(returned)]
    except PdfReadError as e:
        raise GatewayError(ErrorCode.UNSUPPORTED_CONTENT, f"Failed to parse PDF: {e}")
    return total, returned, "\n\n".join(chunks).replace("\r\n", "\n").strip()


class ExtractPdfTextArgs(ToolArguments):
    path: str = Field(min_length=1, max_length=400, description="Path to the PDF file")
    max_pages: int | None = Field(default=None, ge=1, le=300)


class ExtractPdfTextTool(Tool):
    """Extract text from a PDF inside the allowed roots."""

    name = "extract_pdf_text"
    description = "Extract text from a local PDF file (text-based PDFs only, no OCR)."
    args_model = ExtractPdfTextArgs
    timeout_seconds = 120.0

    async def execute(self, path: str, max_pages: int | None = None, **kwargs: Any) -> ToolResult:
        policy = get_local_file_policy()
        limit = min(max_pages or policy.max_pdf_pages, policy.max_pdf_pages)
        resolved = resolve_existing_path_with_fallback(path, policy, kind="file")
        file_path = resolved.absolute_path

        if file_path.suffix.lower() != ".pdf":
            raise GatewayError(ErrorCode.BAD_REQUEST, f"File is not a PDF: {path}")

        total, returned, text = await asyncio.to_thread(extract_pdf_pages, file_path, limit)
        if not text:
            raise GatewayError(
                ErrorCode.UNSUPPORTED_CONTENT,
                "No extractable text found; the PDF may be scanned (OCR is not enabled)",
            )

        truncated = returned < total
        summary = f"Read PDF {file_path}\nPages: {returned}/{total}{' (truncated)' if truncated else ''}\n\n{text}"
        return ToolResult(
            content=summary,
            data={
                "path": str(file_path),
                "totalPages": total,
                "returnedPages": returned,
                "truncated": truncated,
                "text": text,
            },
        )


class ReadOfficeFileArgs(ToolArguments):
    path: str = Field(min_length=1, max_length=400, description="Path to a .docx, .xlsx or .pptx file")
    max_chars: int | None = Field(default=None, ge=100, le=200000)


class ReadOfficeFileTool(Tool):
    """Extract plain text from Office Open XML documents."""

    name = "read_office_file"
    description = "Read text from a local Word (.docx), Excel (.xlsx) or PowerPoint (.pptx) file."
    args_model = ReadOfficeFileArgs
    timeout_seconds = 120.0

    async def execute(self, path: str, max_chars: int | None = None, **kwargs: Any) -> ToolResult:
        policy = get_local_file_policy()
        limit = min(max_chars or policy.max_read_chars, policy.max_read_chars)
        resolved = resolve_existing_path_with_fallback(path, policy, kind="file")
        file_path = resolved.absolute_path

        fmt, extracted = await asyncio.to_thread(extract_office_text, file_path)
        total = len(extracted)
        truncated = total > limit
        content = extracted[:limit] if truncated else extracted
        log.debug("Office file extracted", path=str(file_path), format=fmt, chars=total)

        header = f"Read {fmt} file {file_path}\nChars: {len(content)}"
        if truncated:
            header += f" / {total} (truncated)"
        return ToolResult(
            content=f"{header}\n\n{content}",
            data={
                "path": str(file_path),
                "format": fmt,
                "truncated": truncated,
                "totalChars": total,
                "returnedChars": len(content),
                "content": content,
            },
        )
