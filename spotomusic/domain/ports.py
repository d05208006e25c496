from __future__ import annotations

from typing import List, Optional, Protocol, Tuple

from .entities import CandidateResult, DestinationPlaylist


class MarkupSource(Protocol):
    """Port for reading raw playlist page markup from the source service."""

    def fetch_markup(self, source_id: str) -> bytes:
        """Return the page body for the playlist. Raises FetchError."""


class VideoCatalog(Protocol):
    """Port defining the minimal contract for the destination video service.

    Implementations map provider-specific payloads into domain entities and
    report failures with the matching ``TransferError`` subclass.
    """

    def search(self, query: str) -> List[CandidateResult]:
        """Return candidates ordered by relevance. Raises SearchError."""

    def playlist_exists(self, title: str) -> Tuple[bool, Optional[DestinationPlaylist]]:
        """Look up an owned playlist by case-insensitive title. Raises PlaylistLookupError."""

    def create_playlist(self, title: str, description: str) -> DestinationPlaylist:
        """Create a new playlist. Raises CreateError."""

    def add_to_playlist(self, playlist_id: str, candidate_id: str) -> None:
        """Append a video to a playlist; duplicates count as success. Raises AddError."""
