"""URL fetching tool."""

from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field, field_validator

from wsagent.tools.base import ToolDefinition
from wsagent.utils.html import extract_text, extract_title, meta_content
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
MAX_CONTENT_CHARS = 5000
MAX_REDIRECTS = 5


class FetchUrlInput(BaseModel):
    """Input schema for the fetch_url tool."""

    url: str = Field(..., description="The URL to fetch", examples=["https://example.com/article"])

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("URL must be an absolute http(s) URL")
        return v.strip()


async def fetch_url(
    url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None
) -> dict[str, Any]:
    """Fetch a page and extract its title, description and main text."""
    logger.info(f"Fetching URL: {url}")

    async with httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=timeout,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        transport=transport,
    ) as http:
        response = await http.get(url)
        response.raise_for_status()

    document = response.text
    content = extract_text(document, limit=MAX_CONTENT_CHARS)
    logger.debug(f"Extracted {len(content)} chars from {url}")

    return {
        "url": url,
        "title": extract_title(document),
        "excerpt": meta_content(document, "description", "og:description"),
        "content": content or "Could not extract content",
        "site_name": urlparse(str(response.url)).hostname,
    }


def create_fetch_url_tool(timeout: float = 30.0) -> ToolDefinition:
    async def fetch_url_handler(params: FetchUrlInput) -> dict[str, Any]:
        return await fetch_url(params.url, timeout=timeout)

    return ToolDefinition(
        name="fetch_url",
        description="Fetch and extract content from a URL",
        input_schema_class=FetchUrlInput,
        handler=fetch_url_handler,
    )
