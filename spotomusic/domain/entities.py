from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


UNKNOWN_PLAYLIST_NAME = "Unknown Playlist"


@dataclass(frozen=True)
class SourceTrack:
    """Track record extracted from a source playlist page."""

    name: str
    artist: str = ""
    album: str = ""
    duration_ms: int = 0
    external_id: str = ""

    def __post_init__(self):
        if self.duration_ms < 0:
            object.__setattr__(self, 'duration_ms', 0)

    @property
    def label(self) -> str:
        return f"{self.artist} - {self.name}"


@dataclass(frozen=True)
class SourcePlaylist:
    """Playlist summary read from the source page.

    ``track_count`` is provisional until track extraction has completed.
    """

    id: str
    name: str
    description: str = ""
    is_public: bool = False
    owner_name: str = ""
    track_count: int = 0


@dataclass(frozen=True)
class CandidateResult:
    """Video search hit returned by the destination catalog."""

    id: str
    title: str
    channel: str = ""
    url: str = ""


@dataclass(frozen=True)
class DestinationPlaylist:
    """Playlist on the destination service. ``id`` is empty until created."""

    title: str
    id: str = ""
    description: str = ""


@dataclass
class TransferOutcome:
    """Tally of a single playlist transfer."""

    playlist_name: str
    total_tracks: int = 0
    matched_count: int = 0
    failed_count: int = 0
    errors: List[str] = field(default_factory=list)
    # Matches produced only by the positional fallback
    fallback_count: int = 0
    destination: Optional[DestinationPlaylist] = None
    dry_run: bool = False
    cancelled: bool = False
    duration_ms: int = 0
    # Last pipeline stage this transfer reached
    stage: str = ""

    def record_match(self, fallback: bool = False) -> None:
        self.matched_count += 1
        if fallback:
            self.fallback_count += 1

    def record_failure(self, reason: str) -> None:
        self.failed_count += 1
        self.errors.append(reason)

    @property
    def processed_count(self) -> int:
        return self.matched_count + self.failed_count

    @property
    def is_complete(self) -> bool:
        return self.processed_count == self.total_tracks


@dataclass
class BatchSummary:
    """Aggregate of every playlist transferred in one batch run."""

    outcomes: List[TransferOutcome] = field(default_factory=list)
    # Playlists that could not be transferred at all
    failures: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_playlists(self) -> int:
        return len(self.outcomes)

    @property
    def total_tracks(self) -> int:
        return sum(o.total_tracks for o in self.outcomes)

    @property
    def total_matched(self) -> int:
        return sum(o.matched_count for o in self.outcomes)

    @property
    def total_failed(self) -> int:
        return sum(o.failed_count for o in self.outcomes)
