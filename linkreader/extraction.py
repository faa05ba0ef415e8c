from __future__ import annotations

import csv
import importlib
import importlib.util
import io
import logging
import re
import string
import zipfile
from dataclasses import asdict, dataclass, field
from xml.etree import ElementTree as ET

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

WEBPAGE_MAX_CHARS = 5000
TRUNCATION_MARKER = "... [truncated]"
SPREADSHEET_MAX_ROWS = 20
QUICK_PDF_MAX_PAGES = 3
QUICK_PDF_MAX_CHARS = 2000
SHORT_VIDEO_EXCERPT_CHARS = 500

BOILERPLATE_TAGS = ("script", "style", "nav", "footer", "aside", "noscript")
MAIN_CONTENT_SELECTORS = (
    "article",
    '[role="main"]',
    ".content",
    ".post-content",
    ".entry-content",
    ".article-content",
    "main",
)
WORD_NAMESPACE = {"w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main"}


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    metadata: dict = field(default_factory=dict)
    succeeded: bool = True
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return asdict(self)


def truncate_text(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cap text at `limit` characters plus a marker; truncating twice changes nothing."""
    if len(text) <= limit or (len(text) == limit + len(marker) and text.endswith(marker)):
        return text
    return text[:limit] + marker


def _format_size(content: bytes) -> str:
    return f"{len(content) / 1024 / 1024:.2f}MB"


def _decode_text(content: bytes, content_type: str) -> str:
    match = re.search(r"charset=([\w\-]+)", content_type or "", flags=re.IGNORECASE)
    encoding = match.group(1) if match else "utf-8"
    try:
        return content.decode(encoding, errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


def detect_image_mime_type(content: bytes, fallback: str = "image/jpeg") -> str:
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if content.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if content.startswith(b"RIFF") and content[8:12] == b"WEBP":
        return "image/webp"
    if content.startswith(b"BM"):
        return "image/bmp"
    return fallback


class Extractor:
    """Converts raw bytes into text; failures become placeholder text, never exceptions."""

    name = "base"
    document_label = "content"

    def extract(self, content: bytes, metadata: dict | None = None) -> ExtractionResult:
        context = dict(metadata or {})
        try:
            return self._extract(content, context)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s extractor failed: %s", self.name, exc)
            return ExtractionResult(
                text=(
                    f"The {self.document_label} could not be parsed: {exc}. "
                    f"File size: {_format_size(content)}."
                ),
                metadata={"file_size": len(content), "error": str(exc)},
                succeeded=False,
                warnings=(f"{self.name} extraction failed: {exc}",),
            )

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        raise NotImplementedError


class WebpageExtractor(Extractor):
    name = "webpage"
    document_label = "webpage"

    def __init__(self, max_chars: int = WEBPAGE_MAX_CHARS):
        self.max_chars = max_chars

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        soup = BeautifulSoup(_decode_text(content, metadata.get("content_type", "")), "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        description_tag = soup.find("meta", attrs={"name": "description"})
        description = (description_tag.get("content") or "").strip() if description_tag else ""

        for element in soup.find_all(BOILERPLATE_TAGS):
            element.decompose()

        main_text = ""
        for selector in MAIN_CONTENT_SELECTORS:
            element = soup.select_one(selector)
            if element is None:
                continue
            candidate_text = element.get_text(" ", strip=True)
            if len(candidate_text) > 100:
                main_text = candidate_text
                break

        if not main_text:
            body = soup.body or soup
            main_text = body.get_text(" ", strip=True)

        cleaned = " ".join(main_text.split())
        truncated = truncate_text(cleaned, self.max_chars)

        return ExtractionResult(
            text=f"Page title: {title or 'Untitled'}\n\nPage content:\n{truncated}",
            metadata={
                "title": title or None,
                "description": description or None,
                "content_length": len(cleaned),
                "truncated": truncated != cleaned,
            },
        )


class BinaryPayloadExtractor(Extractor):
    """Describes a payload that is forwarded as bytes (vision or upload providers)."""

    def __init__(self, name: str, document_label: str):
        self.name = name
        self.document_label = document_label

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        if not content:
            raise ValueError("payload is empty")
        content_type = metadata.get("content_type") or "application/octet-stream"
        if self.name == "image":
            declared = content_type.split(";")[0].strip().lower()
            content_type = detect_image_mime_type(content, fallback=declared if declared.startswith("image/") else "image/jpeg")
        return ExtractionResult(
            text=f"{self.document_label.capitalize()} payload ({content_type}, {_format_size(content)})",
            metadata={"content_type": content_type, "file_size": len(content), "file_size_mb": _format_size(content)},
        )


class OcrImageExtractor(Extractor):
    name = "ocr"
    document_label = "image"

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        if importlib.util.find_spec("PIL") is None or importlib.util.find_spec("pytesseract") is None:
            raise RuntimeError("OCR dependencies (Pillow + pytesseract) are not installed")

        pil_image = importlib.import_module("PIL.Image")
        pytesseract = importlib.import_module("pytesseract")

        image = pil_image.open(io.BytesIO(content))
        text = (pytesseract.image_to_string(image) or "").strip()
        return ExtractionResult(
            text=text,
            metadata={"width": image.width, "height": image.height, "text_length": len(text)},
        )


def _looks_like_unreadable_pdf_text(text: str) -> bool:
    normalized = (text or "").strip()
    if not normalized:
        return True

    printable = sum(1 for char in normalized if char in string.printable or char.isalpha())
    printable_ratio = printable / max(1, len(normalized))
    replacement_char_ratio = normalized.count("�") / max(1, len(normalized))
    return printable_ratio < 0.75 or replacement_char_ratio > 0.05


class PdfExtractor(Extractor):
    document_label = "PDF document"

    def __init__(self, name: str = "pdf", max_pages: int | None = None, max_chars: int | None = None):
        self.name = name
        self.max_pages = max_pages
        self.max_chars = max_chars

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        if importlib.util.find_spec("pypdf") is None:
            raise RuntimeError("PDF parsing dependency 'pypdf' is not installed")

        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(content))
        total_pages = len(reader.pages)
        pages_to_process = total_pages if self.max_pages is None else min(self.max_pages, total_pages)

        page_texts = [(reader.pages[index].extract_text() or "").strip() for index in range(pages_to_process)]
        text = "\n".join(item for item in page_texts if item).strip()

        warnings: list[str] = []
        if _looks_like_unreadable_pdf_text(text):
            warnings.append("PDF text layer is empty or unreadable; the file may be scanned or encrypted.")
            text = ""

        full_length = len(text)
        if self.max_chars is not None:
            text = truncate_text(text, self.max_chars)

        return ExtractionResult(
            text=text,
            metadata={
                "total_pages": total_pages,
                "processed_pages": pages_to_process,
                "text_length": full_length,
                "file_size": len(content),
                "file_size_mb": _format_size(content),
                "partial": pages_to_process < total_pages or len(text) < full_length,
            },
            warnings=tuple(warnings),
        )


class WordExtractor(Extractor):
    name = "word"
    document_label = "Word document"

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        try:
            with zipfile.ZipFile(io.BytesIO(content)) as archive:
                xml_payload = archive.read("word/document.xml")
                has_images = any(name.startswith("word/media/") for name in archive.namelist())
        except zipfile.BadZipFile as exc:
            raise ValueError("not a .docx file (legacy .doc documents are not supported)") from exc
        except KeyError as exc:
            raise ValueError("word/document.xml is missing") from exc

        root = ET.fromstring(xml_payload)
        paragraphs: list[str] = []
        for paragraph in root.findall(".//w:p", WORD_NAMESPACE):
            line = "".join(node.text or "" for node in paragraph.findall(".//w:t", WORD_NAMESPACE)).strip()
            if line:
                paragraphs.append(line)

        text = "\n".join(paragraphs)
        return ExtractionResult(
            text=text,
            metadata={"paragraphs": len(paragraphs), "text_length": len(text), "has_images": has_images},
        )


def format_sheets_as_text(sheets: list[tuple[str, list[list[str]]]], max_rows: int = SPREADSHEET_MAX_ROWS) -> str:
    """Render each sheet as a header line plus at most `max_rows` data rows."""
    blocks: list[str] = []
    for index, (sheet_name, rows) in enumerate(sheets, start=1):
        lines = [f"=== Sheet {index}: {sheet_name} ==="]
        if not rows:
            lines.append("(empty sheet)")
            blocks.append("\n".join(lines))
            continue

        lines.append("Header: " + " | ".join(rows[0]))
        data_rows = rows[1:]
        for row_number, row in enumerate(data_rows[:max_rows], start=1):
            lines.append(f"Row {row_number}: " + " | ".join(row))
        if len(data_rows) > max_rows:
            lines.append(f"... ({len(data_rows) - max_rows} more rows)")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _clean_rows(rows) -> list[list[str]]:
    cleaned: list[list[str]] = []
    for row in rows:
        cells = [_cell_text(value) for value in row]
        while cells and not cells[-1]:
            cells.pop()
        if cells:
            cleaned.append(cells)
    return cleaned


class SpreadsheetExtractor(Extractor):
    name = "spreadsheet"
    document_label = "spreadsheet"

    def __init__(self, max_rows: int = SPREADSHEET_MAX_ROWS):
        self.max_rows = max_rows

    def _read_workbook(self, content: bytes) -> list[tuple[str, list[list[str]]]]:
        import openpyxl

        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            return [
                (worksheet.title, _clean_rows(worksheet.iter_rows(values_only=True)))
                for worksheet in workbook.worksheets
            ]
        finally:
            workbook.close()

    def _read_delimited(self, content: bytes, metadata: dict) -> list[tuple[str, list[list[str]]]]:
        text = _decode_text(content, metadata.get("content_type", ""))
        delimiter = "\t" if "tab-separated" in metadata.get("content_type", "") else ","
        try:
            delimiter = csv.Sniffer().sniff(text[:4096], delimiters=",;\t|").delimiter
        except csv.Error:
            pass
        return [("Sheet1", _clean_rows(csv.reader(text.splitlines(), delimiter=delimiter)))]

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        if content.startswith(b"PK\x03\x04"):
            sheets = self._read_workbook(content)
        elif content.startswith(b"\xd0\xcf\x11\xe0"):
            raise ValueError("legacy .xls workbooks are not supported, save the file as .xlsx")
        else:
            sheets = self._read_delimited(content, metadata)

        row_counts = {name: max(0, len(rows) - 1) for name, rows in sheets}
        return ExtractionResult(
            text=format_sheets_as_text(sheets, max_rows=self.max_rows),
            metadata={
                "sheet_count": len(sheets),
                "sheet_names": [name for name, _rows in sheets],
                "row_counts": row_counts,
                "total_rows": sum(row_counts.values()),
            },
        )


class VideoStubExtractor(Extractor):
    name = "video"
    document_label = "video file"

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        content_type = (metadata.get("content_type") or "").split(";")[0].strip()
        video_format = (metadata.get("extension") or content_type.split("/")[-1] or "video").upper()
        text = (
            f"This is a {video_format} video file of about {_format_size(content)}.\n\n"
            "Video content analysis is not supported. Suggestions:\n"
            "1. If the video has subtitles, provide the subtitle file\n"
            "2. To analyse frames, provide key frame images\n"
            "3. For speech, provide an audio transcript"
        )
        return ExtractionResult(
            text=text,
            metadata={"format": video_format, "file_size": len(content), "file_size_mb": _format_size(content)},
        )


def _first_meta(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find("meta", attrs=attrs)
    return (tag.get("content") or "").strip() if tag else ""


class ShortVideoPageExtractor(Extractor):
    name = "short_video"
    document_label = "short-video page"
    platform = "Douyin"
    platform_markers = ("douyin", "抖音")

    def _mentions_platform_only(self, value: str) -> bool:
        lowered = value.lower()
        return any(marker in lowered for marker in self.platform_markers)

    def _extract(self, content: bytes, metadata: dict) -> ExtractionResult:
        soup = BeautifulSoup(_decode_text(content, metadata.get("content_type", "")), "html.parser")

        info = {
            "platform": self.platform,
            "title": f"{self.platform} short video",
            "description": f"{self.platform} platform video content",
            "keywords": f"{self.platform.lower()},short video,social media",
            "url": metadata.get("source") or "",
            "excerpt": "",
        }

        title_element = soup.find("h1")
        class_title = soup.find(attrs={"class": re.compile("title", re.IGNORECASE)})
        for candidate in (
            soup.title.get_text(strip=True) if soup.title else "",
            _first_meta(soup, property="og:title"),
            _first_meta(soup, name="title"),
            title_element.get_text(strip=True) if title_element else "",
            class_title.get_text(strip=True) if class_title else "",
        ):
            if len(candidate) > 3 and not self._mentions_platform_only(candidate):
                info["title"] = candidate[:100]
                break

        first_paragraph = soup.find("p")
        class_desc = soup.find(attrs={"class": re.compile("desc", re.IGNORECASE)})
        for candidate in (
            _first_meta(soup, name="description"),
            _first_meta(soup, property="og:description"),
            _first_meta(soup, name="twitter:description"),
            class_desc.get_text(strip=True) if class_desc else "",
            first_paragraph.get_text(strip=True) if first_paragraph else "",
        ):
            if len(candidate) > 5:
                info["description"] = candidate[:200]
                break

        keywords = _first_meta(soup, name="keywords")
        if keywords:
            info["keywords"] = keywords

        for element in soup.find_all(("script", "style")):
            element.decompose()
        body_text = " ".join((soup.body or soup).get_text(" ", strip=True).split())
        if len(body_text) > 10:
            info["excerpt"] = body_text[:SHORT_VIDEO_EXCERPT_CHARS]

        text = (
            f"Platform: {info['platform']}\n"
            f"Title: {info['title']}\n"
            f"Description: {info['description']}\n"
            f"Keywords: {info['keywords']}\n"
            f"Link: {info['url']}\n\n"
            f"Page excerpt: {info['excerpt'] or 'none'}"
        )
        return ExtractionResult(text=text, metadata=info)


def default_extractors() -> dict[str, Extractor]:
    extractors: list[Extractor] = [
        WebpageExtractor(),
        BinaryPayloadExtractor("image", "image"),
        BinaryPayloadExtractor("document_upload", "document"),
        OcrImageExtractor(),
        PdfExtractor(),
        PdfExtractor(name="pdf_quick", max_pages=QUICK_PDF_MAX_PAGES, max_chars=QUICK_PDF_MAX_CHARS),
        WordExtractor(),
        SpreadsheetExtractor(),
        VideoStubExtractor(),
        ShortVideoPageExtractor(),
    ]
    return {extractor.name: extractor for extractor in extractors}
