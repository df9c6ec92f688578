"""
Content Formatter for social media posts.

Turns a blog's structured fields into the plain-text body posted to a
platform. The body is assembled from fixed sections separated by a blank
line:

    Title

    Type label

    Short description

    Excerpt of the long body (markup stripped)

    Watch video: <video url>

    Download document: <absolute document url>

    Read full article: <canonical url>

Empty sections are omitted. The result never exceeds the platform's
character limit; only the long-body excerpt is shortened to make room, and
it is cut at a paragraph break, a sentence end or, failing both, a word
boundary followed by an ellipsis.
"""
import html
import ipaddress
import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import List, Optional
from urllib.parse import urljoin, urlparse

logger = logging.getLogger(__name__)

# Hard character limits per platform
PLATFORM_LIMITS = {
    "facebook": 63000,
    "instagram": 2200,
    "linkedin": 3000,
}
DEFAULT_LIMIT = 63000

SECTION_SEPARATOR = "\n\n"
TRUNCATION_MARKER = "…"

# Host names that only resolve on a developer machine
LOOPBACK_HOSTS = {"localhost", "0.0.0.0"}
DEVELOPMENT_SUFFIXES = (".localhost", ".local", ".test")

BLOCK_TAGS = {
    "p", "div", "section", "article", "header", "footer", "blockquote", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "table", "tr", "figure",
}
SKIPPED_TAGS = {"script", "style", "head", "title", "noscript"}

_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00a0]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_SENTENCE_END = re.compile(r"[.!?…](?=[\"')\]]*(\s|$))")


@dataclass
class BlogContent:
    """Structured fields a post body is built from."""

    title: str
    type: str = ""
    short_description: str = ""
    long_description: str = ""
    video_url: Optional[str] = None
    document_url: Optional[str] = None
    article_url: Optional[str] = None
    image_url: Optional[str] = None


class TextExtractor(HTMLParser):
    """HTML parser that collects text and turns block elements into line breaks."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag == "br":
            self.parts.append("\n")
        elif tag == "li":
            self.parts.append("\n- ")
        elif tag in BLOCK_TAGS:
            self.parts.append("\n\n")

    def handle_startendtag(self, tag, attrs):
        if tag == "br":
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in BLOCK_TAGS:
            self.parts.append("\n\n")

    def handle_data(self, data):
        if not self._skip_depth:
            self.parts.append(data)

    def text(self) -> str:
        return "".join(self.parts)


def decode_escape_sequences(text: str) -> str:
    """Replace literal escape sequences such as a backslash followed by ``n``."""
    return (
        text.replace("\\r\\n", "\n")
        .replace("\\n", "\n")
        .replace("\\r", "\n")
        .replace("\\t", " ")
    )


def normalize_text(text: Optional[str]) -> str:
    """Normalize whitespace in plain text.

    Line endings become ``\\n``, runs of horizontal whitespace become a single
    space, trailing spaces on each line are dropped and three or more
    newlines collapse to exactly two. The function is idempotent.
    """
    if not text:
        return ""
    text = decode_escape_sequences(text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WS.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def html_to_text(markup: Optional[str]) -> str:
    """Strip markup from a rich-text body and normalize the result.

    Entities are decoded. A body consisting only of markup yields an empty
    string.
    """
    if not markup:
        return ""
    extractor = TextExtractor()
    try:
        extractor.feed(decode_escape_sequences(markup))
        extractor.close()
        text = extractor.text()
    except Exception as e:
        logger.warning(f"Failed to parse HTML body, falling back to tag stripping: {e}")
        text = html.unescape(re.sub(r"<[^>]+>", "", markup))
    return normalize_text(text)


def is_public_url(url: Optional[str]) -> bool:
    """Return False for loopback or development-only URLs."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    if not host or host in LOOPBACK_HOSTS or host.endswith(DEVELOPMENT_SUFFIXES):
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    return not (address.is_loopback or address.is_unspecified)


def absolute_url(reference: Optional[str], site_url: Optional[str]) -> Optional[str]:
    """Turn an uploaded-file path into an absolute URL against ``site_url``."""
    if not reference:
        return None
    reference = reference.strip()
    if urlparse(reference).scheme in ("http", "https"):
        return reference
    if not site_url:
        return reference
    return urljoin(site_url.rstrip("/") + "/", reference.lstrip("/"))


def trim_to_words(text: str, max_length: int) -> str:
    """Trim text to max_length, cutting at word boundaries and adding an ellipsis.

    Args:
        text: Text to trim
        max_length: Maximum length for the trimmed text, marker included

    Returns:
        Trimmed text with the truncation marker if needed
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(TRUNCATION_MARKER):
        return text[:max_length]

    max_length -= len(TRUNCATION_MARKER)
    trimmed = text[:max_length]
    last_space = max(trimmed.rfind(" "), trimmed.rfind("\n"))

    if last_space > 0:
        return trimmed[:last_space].rstrip() + TRUNCATION_MARKER
    return trimmed + TRUNCATION_MARKER


def truncate_excerpt(text: str, max_length: int) -> str:
    """Shorten an excerpt, preferring a paragraph break, then a sentence end.

    Args:
        text: Normalized excerpt text
        max_length: Maximum length of the result

    Returns:
        The excerpt unchanged if it fits, otherwise a shortened version
        whose length never exceeds ``max_length``
    """
    if len(text) <= max_length:
        return text
    if max_length <= 0:
        return ""

    window = text[:max_length]

    paragraph_break = window.rfind("\n\n")
    if paragraph_break > 0:
        return window[:paragraph_break].rstrip()

    sentence_end = None
    for match in _SENTENCE_END.finditer(text):
        if match.end() > max_length:
            break
        sentence_end = match.end()
    if sentence_end:
        return window[:sentence_end].rstrip()

    return trim_to_words(text, max_length)


class ContentFormatter:
    """Build platform post bodies from blog content.

    Attributes:
        site_url: Public base URL used to make relative document paths absolute

    Example:
        >>> formatter = ContentFormatter(site_url="https://example.com")
        >>> body = formatter.format(BlogContent(title="Launch Day"), limit=63000)
    """

    def __init__(self, site_url: Optional[str] = None):
        self.site_url = site_url

    @staticmethod
    def limit_for(platform: str) -> int:
        return PLATFORM_LIMITS.get(platform, DEFAULT_LIMIT)

    def _split_sections(self, content: BlogContent):
        type_label = normalize_text(content.type)
        if type_label:
            type_label = type_label[:1].upper() + type_label[1:]

        head = [
            normalize_text(content.title),
            type_label,
            normalize_text(content.short_description),
        ]

        tail = []
        if content.video_url and content.video_url.strip():
            tail.append(f"Watch video: {content.video_url.strip()}")

        document_url = absolute_url(content.document_url, self.site_url)
        if document_url:
            tail.append(f"Download document: {document_url}")

        if content.article_url and is_public_url(content.article_url):
            tail.append(f"Read full article: {content.article_url.strip()}")
        elif content.article_url:
            logger.debug(f"Omitting development article URL from post body: {content.article_url}")

        return [s for s in head if s], [s for s in tail if s]

    def format(self, content: BlogContent, limit: int = DEFAULT_LIMIT) -> str:
        """Assemble the post body for a platform.

        Args:
            content: Blog fields to format
            limit: Platform's hard character limit

        Returns:
            The formatted body, never longer than ``limit``
        """
        head, tail = self._split_sections(content)
        excerpt = html_to_text(content.long_description)

        fixed = head + tail
        fixed_length = len(SECTION_SEPARATOR.join(fixed))

        if excerpt:
            separators = len(SECTION_SEPARATOR) if fixed else 0
            budget = limit - fixed_length - separators
            excerpt = truncate_excerpt(excerpt, budget)

        body = SECTION_SEPARATOR.join(head + ([excerpt] if excerpt else []) + tail)

        if len(body) > limit:
            logger.warning(f"Post body exceeds {limit} characters without excerpt, hard truncating")
            body = trim_to_words(body, limit)

        return body
