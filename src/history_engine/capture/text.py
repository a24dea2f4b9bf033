"""Build the text that represents a visit for embedding."""

from __future__ import annotations

import hashlib

from bs4 import BeautifulSoup

DEFAULT_MAX_CHARS = 8000


def html_to_text(html: str) -> str:
    """Visible text of an HTML document (scripts, styles and chrome removed)."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript", "nav", "footer", "header"]):
        element.decompose()
    return soup.get_text(separator=" ", strip=True)


def build_embedding_text(title: str, url: str, page_text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Title, url and page text (capped) on separate lines."""
    text = " ".join((page_text or "").split())[:max_chars]
    return f"{title or ''}\n{url or ''}\n{text}"


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
