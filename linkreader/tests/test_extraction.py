import io
import zipfile

from linkreader.extraction import (
    TRUNCATION_MARKER,
    PdfExtractor,
    ShortVideoPageExtractor,
    SpreadsheetExtractor,
    VideoStubExtractor,
    WebpageExtractor,
    WordExtractor,
    default_extractors,
    format_sheets_as_text,
    truncate_text,
)


def _docx_bytes(paragraphs: list[str]) -> bytes:
    body = "".join(f"<w:p><w:r><w:t>{text}</w:t></w:r></w:p>" for text in paragraphs)
    document = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body}</w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("word/document.xml", document)
    return buffer.getvalue()


def test_truncate_text_caps_length_and_is_idempotent():
    text = "a" * 6000

    once = truncate_text(text, 5000)
    twice = truncate_text(once, 5000)

    assert once == "a" * 5000 + TRUNCATION_MARKER
    assert twice == once
    assert truncate_text("short", 5000) == "short"


def test_webpage_extractor_strips_boilerplate():
    html = (
        "<html><head><title>Release notes</title><style>body{color:red}</style>"
        "<script>var tracking = 1;</script></head><body>"
        "<nav>Menu Home About</nav><p>Hello   there,\n reader.</p><aside>Ads</aside>"
        "<footer>Copyright</footer></body></html>"
    ).encode("utf-8")

    result = WebpageExtractor().extract(html, {"content_type": "text/html; charset=utf-8"})

    assert result.succeeded
    assert "Page title: Release notes" in result.text
    assert "Hello there, reader." in result.text
    for boilerplate in ("Menu Home", "tracking", "Ads", "Copyright", "color:red"):
        assert boilerplate not in result.text


def test_webpage_extractor_prefers_article_and_truncates_long_content():
    article = "word " * 2000
    html = f"<html><body><div>Sidebar text</div><article>{article}</article></body></html>".encode("utf-8")

    result = WebpageExtractor().extract(html, {})
    content = result.text.split("Page content:\n", 1)[1]

    assert content.endswith(TRUNCATION_MARKER)
    assert len(content) == 5000 + len(TRUNCATION_MARKER)
    assert "Sidebar" not in content
    assert result.metadata["truncated"] is True
    assert truncate_text(content, 5000) == content


def test_spreadsheet_text_renders_twenty_rows_and_remainder_marker():
    rows = [["id", "name"]] + [[str(index), f"item-{index}"] for index in range(25)]

    text = format_sheets_as_text([("Inventory", rows)])
    rendered_rows = [line for line in text.splitlines() if line.startswith("Row ")]

    assert text.startswith("=== Sheet 1: Inventory ===")
    assert "Header: id | name" in text
    assert len(rendered_rows) == 20
    assert rendered_rows[-1] == "Row 20: 19 | item-19"
    assert "... (5 more rows)" in text


def test_spreadsheet_text_without_overflow_has_no_marker():
    text = format_sheets_as_text([("Small", [["a"], ["1"], ["2"]]), ("Empty", [])])

    assert "more rows" not in text
    assert "=== Sheet 2: Empty ===\n(empty sheet)" in text


def test_spreadsheet_extractor_reads_csv():
    lines = ["id,name"] + [f"{index},item-{index}" for index in range(23)]
    content = "\n".join(lines).encode("utf-8")

    result = SpreadsheetExtractor().extract(content, {"content_type": "text/csv"})

    assert result.succeeded
    assert result.metadata["row_counts"] == {"Sheet1": 23}
    assert "... (3 more rows)" in result.text


def test_spreadsheet_extractor_reads_every_xlsx_sheet():
    import openpyxl

    workbook = openpyxl.Workbook()
    first = workbook.active
    first.title = "Orders"
    first.append(["order", "amount"])
    for index in range(22):
        first.append([f"A-{index}", index * 10])
    second = workbook.create_sheet("Notes")
    second.append(["note"])
    second.append(["checked"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    result = SpreadsheetExtractor().extract(buffer.getvalue(), {})

    assert result.succeeded
    assert result.metadata["sheet_names"] == ["Orders", "Notes"]
    assert result.metadata["row_counts"] == {"Orders": 22, "Notes": 1}
    assert "... (2 more rows)" in result.text
    assert "=== Sheet 2: Notes ===" in result.text


def test_word_extractor_reads_paragraphs():
    result = WordExtractor().extract(_docx_bytes(["Dear team,", "", "The budget was approved."]), {})

    assert result.succeeded
    assert result.text == "Dear team,\nThe budget was approved."
    assert result.metadata["paragraphs"] == 2


def test_extractors_return_placeholders_instead_of_raising():
    legacy_doc = b"\xd0\xcf\x11\xe0" + b"\x00" * 64

    word = WordExtractor().extract(legacy_doc, {})
    pdf = PdfExtractor().extract(b"not a pdf at all", {})
    sheet = SpreadsheetExtractor().extract(legacy_doc, {})

    for result in (word, pdf, sheet):
        assert result.succeeded is False
        assert "could not be parsed" in result.text
        assert result.warnings
    assert "Word document" in word.text


def test_video_stub_describes_file():
    result = VideoStubExtractor().extract(b"\x00" * 2048, {"content_type": "video/mp4", "extension": "mp4"})

    assert result.succeeded
    assert "MP4" in result.text
    assert "not supported" in result.text
    assert result.metadata["format"] == "MP4"


def test_short_video_extractor_skips_platform_only_titles():
    html = (
        "<html><head><title>抖音-记录美好生活</title>"
        '<meta property="og:title" content="Cooking noodles at home">'
        '<meta name="description" content="A quick weeknight noodle recipe.">'
        '<meta name="keywords" content="noodles,cooking">'
        "</head><body><p>Step one: boil water.</p></body></html>"
    ).encode("utf-8")

    result = ShortVideoPageExtractor().extract(html, {"source": "https://www.douyin.com/video/1"})

    assert result.metadata["title"] == "Cooking noodles at home"
    assert result.metadata["description"] == "A quick weeknight noodle recipe."
    assert result.metadata["keywords"] == "noodles,cooking"
    assert "Link: https://www.douyin.com/video/1" in result.text
    assert "Step one: boil water." in result.text


def test_default_extractors_cover_every_candidate_name():
    names = set(default_extractors())

    assert {
        "webpage",
        "image",
        "ocr",
        "pdf",
        "pdf_quick",
        "word",
        "spreadsheet",
        "video",
        "short_video",
        "document_upload",
    } <= names
    assert default_extractors()["pdf_quick"].max_pages == 3
