"""Interface to the browser-engine view of a tab."""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod


class PageView(ABC):
    """What the capture pipeline needs from the host browser for one tab.

    All methods are awaited on the capture loop; a slow or failing call only
    delays or skips the capture that made it.
    """

    @abstractmethod
    async def capture_screenshot(self, quality: str = "medium") -> str | bytes:
        """Rendered page, as a data URL or raw PNG bytes."""
        ...

    @abstractmethod
    async def get_page_text(self) -> str:
        """Visible text of the page."""
        ...

    @abstractmethod
    async def get_page_html(self) -> str:
        """Serialized DOM of the page."""
        ...


def to_data_url(image: str | bytes, mime_type: str = "image/png") -> str:
    """Normalize a screenshot to a data URL for storage."""
    if isinstance(image, (bytes, bytearray)):
        encoded = base64.b64encode(bytes(image)).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"
    if image.startswith("data:"):
        return image
    return f"data:{mime_type};base64,{image}"
