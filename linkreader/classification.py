from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from urllib.parse import parse_qs, unquote, urlsplit


class ContentCategory(str, Enum):
    WEBPAGE = "webpage"
    IMAGE = "image"
    PDF = "pdf"
    WORD = "word"
    SPREADSHEET = "spreadsheet"
    VIDEO = "video"
    SHORT_VIDEO_LINK = "short_video_link"
    UNSUPPORTED = "unsupported"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    ContentCategory.WEBPAGE: "webpage",
    ContentCategory.IMAGE: "image",
    ContentCategory.PDF: "PDF document",
    ContentCategory.WORD: "Word document",
    ContentCategory.SPREADSHEET: "spreadsheet",
    ContentCategory.VIDEO: "video file",
    ContentCategory.SHORT_VIDEO_LINK: "short-video link",
    ContentCategory.UNSUPPORTED: "unsupported content",
}

SHORT_VIDEO_DOMAINS = ("douyin.com", "iesdouyin.com")

# Order matters: the OOXML media types contain "xml", so office formats are
# matched before the generic text entries.
MEDIA_TYPE_TABLE: tuple[tuple[str, ContentCategory], ...] = (
    ("application/pdf", ContentCategory.PDF),
    ("wordprocessingml", ContentCategory.WORD),
    ("application/msword", ContentCategory.WORD),
    ("spreadsheetml", ContentCategory.SPREADSHEET),
    ("application/vnd.ms-excel", ContentCategory.SPREADSHEET),
    ("text/csv", ContentCategory.SPREADSHEET),
    ("text/tab-separated-values", ContentCategory.SPREADSHEET),
    ("image/", ContentCategory.IMAGE),
    ("video/", ContentCategory.VIDEO),
    ("text/html", ContentCategory.WEBPAGE),
    ("application/xhtml", ContentCategory.WEBPAGE),
    ("text/plain", ContentCategory.WEBPAGE),
)

EXTENSION_TABLE: dict[str, ContentCategory] = {
    ".pdf": ContentCategory.PDF,
    ".doc": ContentCategory.WORD,
    ".docx": ContentCategory.WORD,
    ".xls": ContentCategory.SPREADSHEET,
    ".xlsx": ContentCategory.SPREADSHEET,
    ".csv": ContentCategory.SPREADSHEET,
    ".tsv": ContentCategory.SPREADSHEET,
    ".jpg": ContentCategory.IMAGE,
    ".jpeg": ContentCategory.IMAGE,
    ".png": ContentCategory.IMAGE,
    ".gif": ContentCategory.IMAGE,
    ".bmp": ContentCategory.IMAGE,
    ".webp": ContentCategory.IMAGE,
    ".svg": ContentCategory.IMAGE,
    ".tif": ContentCategory.IMAGE,
    ".tiff": ContentCategory.IMAGE,
    ".ico": ContentCategory.IMAGE,
    ".mp4": ContentCategory.VIDEO,
    ".avi": ContentCategory.VIDEO,
    ".mov": ContentCategory.VIDEO,
    ".mkv": ContentCategory.VIDEO,
    ".html": ContentCategory.WEBPAGE,
    ".htm": ContentCategory.WEBPAGE,
    ".txt": ContentCategory.WEBPAGE,
}

CONTENT_TYPE_TABLE: tuple[tuple[str, ContentCategory], ...] = (
    ("pdf", ContentCategory.PDF),
    ("wordprocessingml", ContentCategory.WORD),
    ("msword", ContentCategory.WORD),
    ("spreadsheetml", ContentCategory.SPREADSHEET),
    ("excel", ContentCategory.SPREADSHEET),
    ("text/csv", ContentCategory.SPREADSHEET),
    ("image/", ContentCategory.IMAGE),
    ("video/", ContentCategory.VIDEO),
    ("html", ContentCategory.WEBPAGE),
    ("text/", ContentCategory.WEBPAGE),
    ("json", ContentCategory.WEBPAGE),
    ("xml", ContentCategory.WEBPAGE),
)


def is_data_url(target: str) -> bool:
    return target[:5].lower() == "data:"


def data_url_media_type(target: str) -> str:
    header = target.split(",", 1)[0]
    return header[5:].split(";", 1)[0].strip().lower()


def _hostname(target: str) -> str:
    try:
        return (urlsplit(target).hostname or "").lower()
    except ValueError:
        return ""


def is_short_video_url(target: str) -> bool:
    if is_data_url(target):
        return False
    host = _hostname(target)
    return any(host == domain or host.endswith(f".{domain}") for domain in SHORT_VIDEO_DOMAINS)


def unwrap_image_search_link(target: str) -> str:
    """Return the media URL behind a Bing image-search link, or the target unchanged."""
    if is_data_url(target):
        return target
    try:
        parts = urlsplit(target)
    except ValueError:
        return target

    host = (parts.hostname or "").lower()
    if not (host == "bing.com" or host.endswith(".bing.com")) or "/images/search" not in parts.path:
        return target

    media_urls = parse_qs(parts.query).get("mediaurl") or []
    if not media_urls or not media_urls[0].strip():
        return target
    return unquote(media_urls[0].strip())


def _match_table(value: str, table: tuple[tuple[str, ContentCategory], ...]) -> ContentCategory | None:
    for needle, category in table:
        if needle in value:
            return category
    return None


def _path_extension(target: str) -> str:
    try:
        path = urlsplit(target).path
    except ValueError:
        path = target
    return PurePosixPath(path).suffix.lower()


def classify(target: str, declared_content_type: str | None = None) -> ContentCategory:
    """Map a URL or inline-data descriptor to a content category; never raises."""
    if not isinstance(target, str) or not target.strip():
        return ContentCategory.UNSUPPORTED

    normalized = target.strip()
    content_type = (declared_content_type or "").strip().lower() if isinstance(declared_content_type, str) else ""

    if is_short_video_url(normalized):
        return ContentCategory.SHORT_VIDEO_LINK

    if is_data_url(normalized):
        media_type = data_url_media_type(normalized)
        matched = _match_table(media_type, MEDIA_TYPE_TABLE) if media_type else None
        if matched is not None:
            return matched
    else:
        matched = EXTENSION_TABLE.get(_path_extension(normalized))
        if matched is not None:
            return matched

    if content_type:
        matched = _match_table(content_type, CONTENT_TYPE_TABLE)
        if matched is not None:
            return matched
        return ContentCategory.UNSUPPORTED

    if normalized.lower().startswith(("http://", "https://")):
        return ContentCategory.WEBPAGE
    return ContentCategory.UNSUPPORTED
