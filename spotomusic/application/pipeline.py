import time
import logging
import threading
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Any, Tuple

from spotomusic.application.extraction import extract_playlist_summary, extract_tracks
from spotomusic.application.matching import TrackMatcher, MatchResult
from spotomusic.crosscutting.logging import CorrelationContext, stage_var
from spotomusic.domain.entities import (
    BatchSummary, DestinationPlaylist, SourcePlaylist, SourceTrack, TransferOutcome, UNKNOWN_PLAYLIST_NAME,
)
from spotomusic.domain.errors import TransferError
from spotomusic.domain.normalization import build_query
from spotomusic.domain.ports import MarkupSource, VideoCatalog


logger = logging.getLogger(__name__)

DEFAULT_TRACK_DELAY_SEC = 0.1
PROGRESS_EVERY_TRACKS = 10
DESCRIPTION_TEMPLATE = "Transferred from Spotify playlist: {playlist_id}"


class TransferState(str, Enum):
    """Stages of a single playlist transfer."""

    INIT = "init"
    NAME_RESOLVED = "name_resolved"
    TRACKS_FETCHED = "tracks_fetched"
    DESTINATION_RESOLVED = "destination_resolved"
    TRANSFERRING = "transferring"
    DONE = "done"


class CancellationToken:
    """Cooperative cancellation signal shared between the CLI and the pipeline."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProgressTracker:
    """Counts per-track results of one playlist and logs periodic progress.

    A progress line is written every ``PROGRESS_EVERY_TRACKS`` tracks and
    whenever ``progress_interval_sec`` passed since the previous line.
    """

    def __init__(self, total_tracks: int, progress_interval_sec: int = 60):
        self.total_tracks = total_tracks
        self.progress_interval_sec = progress_interval_sec
        self.processed_tracks = 0
        self.matched_tracks = 0
        self.fallback_tracks = 0
        self.failed_tracks = 0
        self._started = time.monotonic()
        self._last_report = self._started

    def update(self, track_index: int, match_result: Optional[MatchResult]) -> None:
        """Record the result of the track at ``track_index``; None means it failed."""
        self.processed_tracks = track_index + 1
        if match_result is None or match_result.candidate is None:
            self.failed_tracks += 1
        else:
            self.matched_tracks += 1
            self.fallback_tracks += int(match_result.is_fallback)

        now = time.monotonic()
        if (self.processed_tracks % PROGRESS_EVERY_TRACKS == 0
                or now - self._last_report >= self.progress_interval_sec):
            self._log_progress(now)

    def _log_progress(self, now: float) -> None:
        percent = 100.0 * self.processed_tracks / self.total_tracks if self.total_tracks else 100.0
        logger.info(f"Progress: {self.processed_tracks}/{self.total_tracks} ({percent:.1f}%) "
                    f"after {now - self._started:.1f}s; matched {self.matched_tracks} "
                    f"(fallback {self.fallback_tracks}), failed {self.failed_tracks}")
        self._last_report = now

    def get_final_summary(self) -> Dict[str, Any]:
        return {
            "total_tracks": self.total_tracks,
            "processed_tracks": self.processed_tracks,
            "matched_tracks": self.matched_tracks,
            "fallback_tracks": self.fallback_tracks,
            "failed_tracks": self.failed_tracks,
            "match_rate": self.matched_tracks / self.total_tracks if self.total_tracks else 0.0,
            "elapsed_sec": round(time.monotonic() - self._started, 3),
        }


class TransferPipeline:
    """Transfers Spotify playlist pages to YouTube playlists.

    Tracks are processed strictly in order. A failure of one track is recorded
    in the outcome and never aborts the playlist; in batch mode a failure of one
    playlist never aborts the batch.
    """

    def __init__(self,
                 source: MarkupSource,
                 catalog: VideoCatalog,
                 matcher: Optional[TrackMatcher] = None,
                 track_delay_sec: float = DEFAULT_TRACK_DELAY_SEC,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize transfer pipeline.

        Args:
            source: Source of playlist page markup
            catalog: Destination video catalog
            matcher: Track matching algorithm
            track_delay_sec: Pause after each successfully processed track
            sleep: Sleep function, replaceable in tests
        """
        self.source = source
        self.catalog = catalog
        self.matcher = matcher or TrackMatcher()
        self.track_delay_sec = track_delay_sec
        self._sleep = sleep

    def _enter(self, state: TransferState) -> None:
        # Scoped by the CorrelationContext of the running transfer
        stage_var.set(state.value)
        logger.debug(f"Transfer state: {state.value}")

    def _fetch_markup(self, source_id: str) -> str:
        body = self.source.fetch_markup(source_id)
        if isinstance(body, bytes):
            return body.decode("utf-8", errors="replace")
        return body

    def resolve_source(self, source_id: str, explicit_name: str = "") -> Tuple[SourcePlaylist, list]:
        """Resolve the playlist name and extract its tracks.

        Returns:
            Tuple of the playlist summary (with the extracted track count) and the tracks
        """
        markup: Optional[str] = None
        if explicit_name and explicit_name != UNKNOWN_PLAYLIST_NAME:
            playlist = extract_playlist_summary("", explicit_name, playlist_id=source_id)
        else:
            markup = self._fetch_markup(source_id)
            playlist = extract_playlist_summary(markup, UNKNOWN_PLAYLIST_NAME, playlist_id=source_id)
        self._enter(TransferState.NAME_RESOLVED)

        if markup is None:
            markup = self._fetch_markup(source_id)
        tracks = extract_tracks(markup)
        playlist = replace(playlist, track_count=len(tracks))
        self._enter(TransferState.TRACKS_FETCHED)

        if not tracks:
            logger.warning(f"No tracks found in playlist {source_id}")
        return playlist, tracks

    def resolve_destination(self, playlist: SourcePlaylist, dry_run: bool = False) -> DestinationPlaylist:
        """Reuse a destination playlist with the same title or create one."""
        exists, existing = self.catalog.playlist_exists(playlist.name)
        if exists and existing is not None:
            logger.info(f"Playlist '{playlist.name}' already exists on YouTube. Using existing playlist.")
            destination = existing
        else:
            description = DESCRIPTION_TEMPLATE.format(playlist_id=playlist.id)
            if dry_run:
                logger.info(f"DRY-RUN: Would create playlist: {playlist.name}")
                destination = DestinationPlaylist(title=playlist.name, description=description)
            else:
                destination = self.catalog.create_playlist(playlist.name, description)
                logger.info(f"Created YouTube playlist: {destination.title}")

        self._enter(TransferState.DESTINATION_RESOLVED)
        return destination

    def transfer_playlist(self,
                          source_id: str,
                          explicit_name: str = "",
                          dry_run: bool = False,
                          cancel_token: Optional[CancellationToken] = None) -> TransferOutcome:
        """Transfer a single playlist.

        Args:
            source_id: Source playlist identifier
            explicit_name: Playlist name to use instead of reading it from the page
            dry_run: Skip every mutating call on the destination
            cancel_token: Stops processing of the remaining tracks when cancelled

        Returns:
            TransferOutcome with transfer statistics

        Raises:
            TransferError: If the playlist could not be read or the destination resolved
        """
        start_time = datetime.now()

        with CorrelationContext(playlist_id=source_id, stage=TransferState.INIT.value):
            self._enter(TransferState.INIT)
            playlist, tracks = self.resolve_source(source_id, explicit_name)
            logger.info(f"Transferring playlist: {playlist.name} ({playlist.track_count} tracks)")

            destination = self.resolve_destination(playlist, dry_run)

            outcome = TransferOutcome(
                playlist_name=destination.title,
                total_tracks=len(tracks),
                destination=destination,
                dry_run=dry_run,
            )
            self._transfer_tracks(tracks, destination, outcome, dry_run, cancel_token)

            outcome.duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)
            self._enter(TransferState.DONE)
            outcome.stage = TransferState.DONE.value

            prefix = "DRY-RUN completed" if dry_run else "Transfer completed"
            logger.info(f"{prefix}: {outcome.matched_count}/{outcome.total_tracks} tracks matched, "
                        f"{outcome.failed_count} failed")
        return outcome

    def _transfer_tracks(self,
                         tracks: list,
                         destination: DestinationPlaylist,
                         outcome: TransferOutcome,
                         dry_run: bool,
                         cancel_token: Optional[CancellationToken]) -> None:
        self._enter(TransferState.TRANSFERRING)
        progress_tracker = ProgressTracker(len(tracks))

        for i, track in enumerate(tracks):
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning(f"Transfer cancelled after {i}/{len(tracks)} tracks")
                outcome.cancelled = True
                break

            match_result = self._transfer_track(i, track, destination, outcome, dry_run, len(tracks))
            progress_tracker.update(i, match_result)

            if match_result is not None and self.track_delay_sec > 0:
                self._sleep(self.track_delay_sec)

        logger.debug(f"Final matching summary: {progress_tracker.get_final_summary()}")

    def _transfer_track(self,
                        index: int,
                        track: SourceTrack,
                        destination: DestinationPlaylist,
                        outcome: TransferOutcome,
                        dry_run: bool,
                        total: int) -> Optional[MatchResult]:
        """Process one track. Returns the match on success, None when the track failed."""
        position = f"[{index + 1}/{total}] {track.label}"
        query = build_query(track)

        try:
            candidates = self.catalog.search(query)
        except Exception as e:
            logger.error(f"{position} search failed: {e}")
            outcome.record_failure(f"{track.label}: {e}")
            return None

        if not candidates:
            logger.warning(f"{position} not found")
            outcome.record_failure(f"{track.label}: No matching video found")
            return None

        match_result = self.matcher.match(track, candidates)
        if match_result.candidate is None:
            outcome.record_failure(f"{track.label}: No good match found")
            return None

        if not dry_run:
            try:
                self.catalog.add_to_playlist(destination.id, match_result.candidate.id)
            except Exception as e:
                logger.error(f"{position} could not be added: {e}")
                outcome.record_failure(f"{track.label}: {e}")
                return None

        outcome.record_match(fallback=match_result.is_fallback)
        logger.info(f"{position} matched ({match_result.rule.value}): {match_result.candidate.title}")
        return match_result

    def transfer_all(self,
                     playlists: Iterable[Tuple[str, str]],
                     dry_run: bool = False,
                     cancel_token: Optional[CancellationToken] = None) -> BatchSummary:
        """Transfer several playlists, keeping going when one of them fails.

        Args:
            playlists: ``(source_id, explicit_name)`` pairs in transfer order
            dry_run: Skip every mutating call on the destination
            cancel_token: Stops the batch when cancelled; finished outcomes are kept

        Returns:
            BatchSummary with one outcome per transferred playlist
        """
        summary = BatchSummary()
        playlists = list(playlists)
        logger.info(f"Found {len(playlists)} playlists to transfer")

        for i, (source_id, explicit_name) in enumerate(playlists):
            if cancel_token is not None and cancel_token.cancelled:
                summary.cancelled = True
                break

            logger.info(f"[{i + 1}/{len(playlists)}] Processing: {explicit_name or source_id}")
            try:
                outcome = self.transfer_playlist(source_id, explicit_name, dry_run, cancel_token)
            except TransferError as e:
                logger.error(f"Failed to transfer playlist {explicit_name or source_id}: {e}")
                summary.failures.append(f"{explicit_name or source_id}: {e}")
                continue
            except Exception as e:
                logger.exception(f"Unexpected error transferring playlist {explicit_name or source_id}")
                summary.failures.append(f"{explicit_name or source_id}: {type(e).__name__}: {e}")
                continue

            summary.outcomes.append(outcome)
            if outcome.cancelled:
                summary.cancelled = True
                break

        return summary
