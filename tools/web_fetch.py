"""Web fetch tool -- retrieve a URL and return readable text."""

import asyncio
import ipaddress
import json
import re
from typing import Literal, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

from tools.base import EXTENDED, Tool

USER_AGENT = "Clarissa/1.0 (AI Assistant)"
MAX_REDIRECTS = 5

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def _is_private_address(host: str) -> bool:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast


async def check_public_url(url: str) -> None:
    """Reject non-http(s) URLs and hosts that resolve to private addresses."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Only http(s) URLs are allowed, got {parsed.scheme or 'none'!r}")
    host = parsed.hostname
    if not host:
        raise ValueError(f"URL has no host: {url}")
    if host.lower() == "localhost" or _is_private_address(host):
        raise PermissionError(f"Refusing to fetch private address: {host}")

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, parsed.port or (443 if parsed.scheme == "https" else 80))
    except OSError as e:
        raise ValueError(f"Could not resolve host {host}: {e}") from e
    for info in infos:
        if _is_private_address(info[4][0]):
            raise PermissionError(f"Refusing to fetch private address: {host}")


class WebFetchTool(Tool):
    name = "web_fetch"
    description = (
        "Fetch content from a URL and return it as text. Useful for reading web "
        "pages, APIs, or documentation."
    )
    priority = EXTENDED

    class Arguments(BaseModel):
        url: str = Field(..., description="The URL to fetch")
        format: Literal["text", "json", "html"] = Field("text", description="Response format")
        max_length: int = Field(10000, ge=100, le=200000, description="Maximum response length in characters")

    def __init__(self, timeout: float = 20.0, client: Optional[httpx.AsyncClient] = None, allow_private: bool = False):
        self.timeout = timeout
        self._client = client
        self.allow_private = allow_private

    async def _follow(self, client: httpx.AsyncClient, url: str, headers: dict) -> httpx.Response:
        # Redirects are followed by hand so every hop passes the public-address check.
        for _ in range(MAX_REDIRECTS + 1):
            if not self.allow_private:
                await check_public_url(url)
            response = await client.get(url, headers=headers, follow_redirects=False)
            location = response.headers.get("location")
            if not response.is_redirect or not location:
                return response
            url = str(response.url.join(location))
        raise ValueError(f"Too many redirects (max {MAX_REDIRECTS})")

    async def _get(self, url: str, accept: str) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT, "Accept": accept}
        if self._client is not None:
            return await self._follow(self._client, url, headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._follow(client, url, headers)

    async def execute(self, args: "WebFetchTool.Arguments") -> str:
        accept = "application/json" if args.format == "json" else "text/html,text/plain,*/*"
        response = await self._get(args.url, accept)
        response.raise_for_status()

        if args.format == "json":
            content = json.dumps(response.json(), indent=2, ensure_ascii=False)
        else:
            content = response.text
            if args.format == "text" and "<" in content:
                content = html_to_text(content)

        if len(content) > args.max_length:
            content = content[: args.max_length] + f"\n\n[Truncated - {len(content)} total characters]"
        return content
