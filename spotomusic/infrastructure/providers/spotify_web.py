import re
import logging
from pathlib import Path
from typing import Iterable, List, Optional

import requests

from spotomusic.domain.errors import FetchError


logger = logging.getLogger(__name__)

EMBED_BASE_URL = "https://open.spotify.com/embed/playlist/"
PAGE_BASE_URL = "https://open.spotify.com/playlist/"

# Mimic a regular browser; the embed page is served differently to unknown clients
BROWSER_HEADERS = {
    "User-Agent": ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                   "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

_WEB_URL_MARKER = "open.spotify.com/playlist/"
_URI_MARKER = "spotify:playlist:"
_PLAYLIST_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{10,}$")


def parse_playlist_id(link: str) -> str:
    """Extract the playlist id from a share link, a ``spotify:`` URI or a bare id.

    Raises:
        ValueError: If the link is not a recognised playlist reference
    """
    link = (link or "").strip()

    if _WEB_URL_MARKER in link:
        playlist_id = link.split("/playlist/", 1)[1].split("?", 1)[0].split("#", 1)[0].strip("/")
    elif _URI_MARKER in link:
        playlist_id = link.split(_URI_MARKER, 1)[1]
    else:
        playlist_id = link

    if not _PLAYLIST_ID_PATTERN.match(playlist_id):
        raise ValueError(f"unsupported playlist reference: {link!r}")
    return playlist_id


def playlists_from_links(links: Iterable[str]) -> List[str]:
    """Convert configured links to playlist ids, skipping invalid ones."""
    playlist_ids = []
    for link in links:
        try:
            playlist_ids.append(parse_playlist_id(link))
        except ValueError as e:
            logger.warning(f"Invalid playlist URL {link}: {e}")
    return playlist_ids


class SpotifyWebSource:
    """Reads public Spotify playlist pages without API credentials."""

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 timeout: float = 15,
                 base_url: str = EMBED_BASE_URL):
        """Initialize web source.

        Args:
            session: HTTP session, a new one is created when omitted
            timeout: Request timeout in seconds
            base_url: Prefix the playlist id is appended to
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url

    def _get(self, url: str) -> bytes:
        try:
            response = self.session.get(url, headers=BROWSER_HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"playlist request failed: {e}")

        if response.status_code != 200:
            raise FetchError(f"playlist request failed: HTTP {response.status_code}",
                             status_code=response.status_code)
        return response.content

    def fetch_markup(self, source_id: str) -> bytes:
        """Fetch the embed page of a playlist.

        Raises:
            FetchError: On transport failure or a non-200 response
        """
        url = f"{self.base_url}{source_id}"
        logger.debug(f"Fetching playlist page: {url}")
        body = self._get(url)
        logger.debug(f"Fetched {len(body)} bytes for playlist {source_id}")
        return body

    def save_markup(self, playlist_id: str, path: str = "debug.html") -> Path:
        """Save the full playlist page for offline analysis."""
        body = self._get(f"{PAGE_BASE_URL}{playlist_id}")
        target = Path(path)
        target.write_bytes(body)
        logger.info(f"Saved playlist page to {target}")
        return target
