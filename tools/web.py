"""Web fetching for the fetch_webpage and fetch_transcript tools."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from agent.exceptions import ToolExecutionError

logger = logging.getLogger(__name__)

CAPTION_TRACKS_RE = re.compile(r'"captionTracks"\s*:\s*(\[[^\]]+\])')
USER_AGENT = "Mozilla/5.0 (compatible; vault-agents/0.1)"
YOUTUBE_DOMAINS = ("youtube.com", "youtu.be")


class WebFetcher:
    """Fetch pages over HTTP and reduce them to readable text."""

    def __init__(self, connect_timeout: float = 5.0, read_timeout: float = 30.0):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    async def fetch_text(self, url: str) -> str:
        """Return the body text of a page, one text node per line."""
        html = await self._get(url)
        return self.extract_text(html)

    async def fetch_transcript(self, url: str) -> str | None:
        """Return a YouTube video's captions as text, or None when unavailable."""
        if not self.is_youtube_url(url):
            return None

        page = await self._get(url)
        track_url = self.find_caption_track(page)
        if track_url is None:
            return None

        xml = await self._get(track_url)
        transcript = self.extract_transcript(xml)
        return transcript or None

    @staticmethod
    def extract_text(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        root = soup.body or soup
        lines = [s.strip() for s in root.stripped_strings]
        return "\n".join(line for line in lines if line) + ("\n" if lines else "")

    @staticmethod
    def is_youtube_url(url: str) -> bool:
        try:
            host = urlparse(url).hostname or ""
        except ValueError:
            return False
        return any(host == domain or host.endswith("." + domain) for domain in YOUTUBE_DOMAINS)

    @staticmethod
    def find_caption_track(page: str) -> str | None:
        match = CAPTION_TRACKS_RE.search(page)
        if not match:
            return None
        try:
            tracks = json.loads(match.group(1))
        except json.JSONDecodeError:
            return None
        if not tracks or not isinstance(tracks[0], dict):
            return None
        base_url = tracks[0].get("baseUrl")
        if not isinstance(base_url, str):
            return None
        return base_url.replace("\\u0026", "&")

    @staticmethod
    def extract_transcript(xml: str) -> str:
        soup = BeautifulSoup(xml, "html.parser")
        lines = []
        for node in soup.find_all("text"):
            text = node.get_text().strip()
            if text:
                lines.append(text)
        return "\n".join(lines)

    async def _get(self, url: str) -> str:
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )
        try:
            async with aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            ) as session:
                async with session.get(url, max_redirects=10) as resp:
                    if resp.status != 200:
                        raise ToolExecutionError(f"HTTP {resp.status} fetching {url}")
                    return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.info("Fetch failed for %s: %s", url, e)
            raise ToolExecutionError(f"Failed to fetch {url}: {e}") from e
