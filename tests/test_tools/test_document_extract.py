from pathlib import Path
import zipfile

import pytest
from pypdf import PdfWriter

from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.tools.document_extract import (
    ExtractPdfTextTool,
    ReadOfficeFileTool,
    extract_office_text,
)
from gateway_assistant.tools.registry import ToolRegistry


def _write_minimal_docx(path: Path) -> None:
    document_xml = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">
  <w:body>
    <w:p><w:r><w:t>Quarterly Report</w:t></w:r></w:p>
    <w:p><w:r><w:t>Revenue grew 20%.</w:t></w:r></w:p>
    <w:tbl>
      <w:tr>
        <w:tc><w:p><w:r><w:t>Name</w:t></w:r></w:p></w:tc>
        <w:tc><w:p><w:r><w:t>Score</w:t></w:r></w:p></w:tc>
      </w:tr>
      <w:tr>
        <w:tc><w:p><w:r><w:t>Ana</w:t></w:r></w:p></w:tc>
        <w:tc><w:p><w:r><w:t>95</w:t></w:r></w:p></w:tc>
      </w:tr>
    </w:tbl>
  </w:body>
</w:document>
"""
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("word/document.xml", document_xml)


def _write_minimal_xlsx(path: Path) -> None:
    workbook_xml = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<workbook xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main"
          xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships">
  <sheets>
    <sheet name="Summary" sheetId="1" r:id="rId1"/>
  </sheets>
</workbook>
"""
    workbook_rels = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
  <Relationship Id="rId1"
                Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/worksheet"
                Target="worksheets/sheet1.xml"/>
</Relationships>
"""
    shared_strings = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<sst xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main" count="2" uniqueCount="2">
  <si><t>City</t></si>
  <si><t>Population</t></si>
</sst>
"""
    sheet_xml = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<worksheet xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main">
  <sheetData>
    <row r="1">
      <c r="A1" t="s"><v>0</v></c>
      <c r="B1" t="s"><v>1</v></c>
    </row>
    <row r="2">
      <c r="A2" t="inlineStr"><is><t>Zagreb</t></is></c>
      <c r="B2"><v>767131</v></c>
    </row>
  </sheetData>
</worksheet>
"""
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("xl/workbook.xml", workbook_xml)
        archive.writestr("xl/_rels/workbook.xml.rels", workbook_rels)
        archive.writestr("xl/sharedStrings.xml", shared_strings)
        archive.writestr("xl/worksheets/sheet1.xml", sheet_xml)


def _write_minimal_pptx(path: Path) -> None:
    slide_xml = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<p:sld xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main"
       xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main">
  <p:cSld>
    <p:spTree>
      <p:sp>
        <p:txBody>
          <a:p><a:r><a:t>Launch Plan</a:t></a:r></a:p>
          <a:p><a:r><a:t>Ship by Q3</a:t></a:r></a:p>
        </p:txBody>
      </p:sp>
    </p:spTree>
  </p:cSld>
</p:sld>
"""
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("ppt/slides/slide1.xml", slide_xml)


@pytest.fixture
def root(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOCAL_FILE_ALLOWED_ROOTS", str(tmp_path))
    return tmp_path


def test_docx_text_includes_paragraphs_and_table_rows(tmp_path: Path):
    doc_path = tmp_path / "sample.docx"
    _write_minimal_docx(doc_path)

    fmt, text = extract_office_text(doc_path)

    assert fmt == "docx"
    assert "Quarterly Report" in text
    assert "Revenue grew 20%." in text
    assert "Name\tScore" in text
    assert "Ana\t95" in text


def test_xlsx_text_resolves_shared_and_inline_strings(tmp_path: Path):
    xlsx_path = tmp_path / "metrics.xlsx"
    _write_minimal_xlsx(xlsx_path)

    fmt, text = extract_office_text(xlsx_path)

    assert fmt == "xlsx"
    assert "[Summary]" in text
    assert "City\tPopulation" in text
    assert "Zagreb\t767131" in text


def test_pptx_text_is_grouped_by_slide(tmp_path: Path):
    pptx_path = tmp_path / "deck.pptx"
    _write_minimal_pptx(pptx_path)

    fmt, text = extract_office_text(pptx_path)

    assert fmt == "pptx"
    assert text.splitlines() == ["[Slide 1]", "Launch Plan", "Ship by Q3"]


def test_office_rejects_other_extensions(tmp_path: Path):
    with pytest.raises(GatewayError) as exc:
        extract_office_text(tmp_path / "notes.doc")
    assert exc.value.code == ErrorCode.BAD_REQUEST


def test_office_broken_archive_is_unsupported(tmp_path: Path):
    broken = tmp_path / "broken.docx"
    broken.write_bytes(b"not a zip")

    with pytest.raises(GatewayError) as exc:
        extract_office_text(broken)
    assert exc.value.code == ErrorCode.UNSUPPORTED_CONTENT


@pytest.mark.asyncio
async def test_read_office_file_truncates_to_max_chars(root: Path):
    doc_path = root / "long.docx"
    body = "".join(f"<w:p><w:r><w:t>Line {index} of the document</w:t></w:r></w:p>" for index in range(40))
    with zipfile.ZipFile(doc_path, "w") as archive:
        archive.writestr(
            "word/document.xml",
            '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
            f"<w:body>{body}</w:body></w:document>",
        )

    registry = ToolRegistry()
    registry.register(ReadOfficeFileTool())
    result = await registry.execute("read_office_file", {"path": "long.docx", "max_chars": 100})

    assert result.success is True
    assert result.data["format"] == "docx"
    assert result.data["truncated"] is True
    assert result.data["returnedChars"] == 100
    assert result.data["totalChars"] > 100


@pytest.mark.asyncio
async def test_pdf_without_text_is_unsupported_content(root: Path):
    pdf_path = root / "blank.pdf"
    writer = PdfWriter()
    writer.add_blank_page(width=300, height=144)
    with pdf_path.open("wb") as stream:
        writer.write(stream)

    registry = ToolRegistry()
    registry.register(ExtractPdfTextTool())
    result = await registry.execute("extract_pdf_text", {"path": str(pdf_path)})

    assert result.success is False
    assert result.code == ErrorCode.UNSUPPORTED_CONTENT


@pytest.mark.asyncio
async def test_pdf_tool_rejects_non_pdf(root: Path):
    (root / "notes.txt").write_text("hello", encoding="utf-8")

    registry = ToolRegistry()
    registry.register(ExtractPdfTextTool())
    result = await registry.execute("extract_pdf_text", {"path": "notes.txt"})

    assert result.code == ErrorCode.BAD_REQUEST
