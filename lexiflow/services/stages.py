import json
import logging
import re
from html import unescape

import httpx

logger = logging.getLogger(__name__)

_DROP_BLOCKS = re.compile(r"<(script|style|noscript|head)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TITLE = re.compile(r"<title\b[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_HEADING = re.compile(r"<h([1-6])\b[^>]*>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_BREAK = re.compile(r"</?(p|div|br|li|tr|section|article)\b[^>]*>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_SPACES = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


class StageError(Exception):
    """A pipeline stage could not produce its artifact."""


class HttpFetcher:
    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    async def fetch(self, url: str) -> str:
        """GET url and return the body text. Raises StageError on any failure."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            # ValueError covers IDNA host encoding failures (UnicodeError)
            raise StageError(f"fetch failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise StageError(f"fetch failed: HTTP {response.status_code}")
        logger.debug("[fetch] ok | url=%s | bytes=%d", url, len(response.text))
        return response.text


class MarkdownCleaner:
    def clean(self, raw: str) -> str:
        """
        Reduce an HTML document to plain Markdown-ish text.
        Keeps the <title> as a top-level heading and <hN> as heading lines.
        """
        title_match = _TITLE.search(raw)
        title = _collapse(unescape(_TAG.sub("", title_match.group(1)))) if title_match else ""

        body = _DROP_BLOCKS.sub("", raw)
        body = _HEADING.sub(lambda m: f"\n\n{'#' * int(m.group(1))} {m.group(2)}\n\n", body)
        body = _BLOCK_BREAK.sub("\n\n", body)
        body = unescape(_TAG.sub("", body))

        lines = [_collapse(line) for line in body.split("\n")]
        text = _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()
        if not text and not title:
            raise StageError("clean failed: no text content")
        if title and not text.startswith(f"# {title}"):
            text = f"# {title}\n\n{text}".strip()
        return text


class WordCountAnalyzer:
    def analyze(self, markdown: str) -> str:
        words = [w for w in re.split(r"\s+", markdown) if w and not set(w) <= set("#*-_>`")]
        headings = [line for line in markdown.splitlines() if line.startswith("#")]
        return json.dumps({"words": len(words), "headings": len(headings)})


def _collapse(text: str) -> str:
    return _SPACES.sub(" ", text).strip()
