import logging
from typing import Any, List, Optional, Tuple

import httplib2
from google.auth.exceptions import TransportError
from googleapiclient.errors import HttpError

from spotomusic.domain.entities import CandidateResult, DestinationPlaylist
from spotomusic.domain.errors import AddError, CreateError, PlaylistLookupError, SearchError


logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
DEFAULT_MAX_RESULTS = 5
PLAYLIST_PAGE_SIZE = 50
DEFAULT_PRIVACY_STATUS = "private"

_DUPLICATE_MARKERS = ("already exists", "videoalreadyinplaylist")

# Failures below the API layer: timeouts, refused connections, token refresh
_TRANSPORT_ERRORS = (OSError, TransportError, httplib2.HttpLib2Error)
_API_ERRORS = (HttpError,) + _TRANSPORT_ERRORS


def _http_status(error: HttpError) -> Optional[int]:
    return getattr(error.resp, "status", None)


def _error_text(error: HttpError) -> str:
    content = getattr(error, "content", b"") or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return f"{error} {content}".lower()


def is_duplicate_error(error: HttpError) -> bool:
    """Whether an insert failed only because the video is already in the playlist."""
    if _http_status(error) == 409:
        return True
    text = _error_text(error)
    return any(marker in text for marker in _DUPLICATE_MARKERS)


class YouTubeCatalog:
    """YouTube Data API v3 implementation of the destination catalog."""

    def __init__(self, service: Any, max_results: int = DEFAULT_MAX_RESULTS):
        """Initialize YouTube catalog.

        Args:
            service: Resource built by ``googleapiclient.discovery.build("youtube", "v3")``
            max_results: Number of search results requested per query
        """
        self.service = service
        self.max_results = max_results

    def search(self, query: str) -> List[CandidateResult]:
        """Search videos for a query, in relevance order.

        Raises:
            SearchError: If the API call fails
        """
        try:
            response = self.service.search().list(
                q=query,
                part="snippet",
                type="video",
                maxResults=self.max_results,
            ).execute()
        except _API_ERRORS as e:
            raise SearchError(f"search failed: {e}")

        candidates = []
        for item in response.get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet") or {}
            candidates.append(CandidateResult(
                id=video_id,
                title=snippet.get("title", ""),
                channel=snippet.get("channelTitle", ""),
                url=WATCH_URL.format(video_id=video_id),
            ))

        logger.debug(f"Search '{query}' returned {len(candidates)} videos")
        return candidates

    def list_playlists(self) -> List[DestinationPlaylist]:
        """List playlists owned by the authorized account.

        Raises:
            PlaylistLookupError: If the API call fails
        """
        playlists = []
        playlists_api = self.service.playlists()
        request = playlists_api.list(part="snippet,contentDetails", mine=True, maxResults=PLAYLIST_PAGE_SIZE)
        while request is not None:
            try:
                response = request.execute()
            except _API_ERRORS as e:
                raise PlaylistLookupError(f"failed to list playlists: {e}")

            for item in response.get("items", []):
                snippet = item.get("snippet") or {}
                playlists.append(DestinationPlaylist(
                    title=snippet.get("title", ""),
                    id=item.get("id", ""),
                    description=snippet.get("description", ""),
                ))
            request = playlists_api.list_next(request, response)

        return playlists

    def playlist_exists(self, title: str) -> Tuple[bool, Optional[DestinationPlaylist]]:
        """Find an owned playlist whose title equals ``title`` ignoring case."""
        wanted = title.casefold()
        for playlist in self.list_playlists():
            if playlist.title.casefold() == wanted:
                return True, playlist
        return False, None

    def create_playlist(self, title: str, description: str) -> DestinationPlaylist:
        """Create a private playlist.

        Raises:
            CreateError: If the API call fails
        """
        body = {
            "snippet": {
                "title": title,
                "description": description,
            },
            "status": {
                "privacyStatus": DEFAULT_PRIVACY_STATUS,
            },
        }
        try:
            response = self.service.playlists().insert(part="snippet,status", body=body).execute()
        except _API_ERRORS as e:
            raise CreateError(f"failed to create playlist '{title}': {e}")

        snippet = response.get("snippet") or {}
        return DestinationPlaylist(
            title=snippet.get("title", title),
            id=response.get("id", ""),
            description=snippet.get("description", description),
        )

    def add_to_playlist(self, playlist_id: str, candidate_id: str) -> None:
        """Append a video to a playlist. A duplicate is not an error.

        Raises:
            AddError: If the API call fails for any other reason
        """
        body = {
            "snippet": {
                "playlistId": playlist_id,
                "resourceId": {
                    "kind": "youtube#video",
                    "videoId": candidate_id,
                },
            },
        }
        try:
            self.service.playlistItems().insert(part="snippet", body=body).execute()
        except HttpError as e:
            if is_duplicate_error(e):
                logger.debug(f"Video {candidate_id} already in playlist {playlist_id}")
                return
            raise AddError(f"failed to add video {candidate_id}: {e}")
        except _TRANSPORT_ERRORS as e:
            raise AddError(f"failed to add video {candidate_id}: {e}")
