import argparse
import sys
import logging
import signal
import time
from typing import List, Optional, Tuple
from datetime import datetime

from spotomusic.application.extraction import (
    count_track_rows, extract_playlist_summary, extract_tracks, summarize_strategies,
)
from spotomusic.application.pipeline import CancellationToken, TransferPipeline
from spotomusic.crosscutting.config import ConfigError, LOG_LEVELS, Settings, load_settings
from spotomusic.crosscutting.logging import log_run_complete, log_run_start, setup_logging
from spotomusic.crosscutting.reporting import format_outcome, format_summary, write_report
from spotomusic.domain.entities import BatchSummary, SourcePlaylist, UNKNOWN_PLAYLIST_NAME
from spotomusic.domain.errors import AuthorizationError, TransferError
from spotomusic.infrastructure.auth.youtube_oauth import YouTubeAuthenticator
from spotomusic.infrastructure.providers.spotify_web import (
    SpotifyWebSource, parse_playlist_id, playlists_from_links,
)
from spotomusic.infrastructure.providers.youtube import YouTubeCatalog


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


class CLI:
    """Command Line Interface for SpotoMusic."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self.cancel_token = CancellationToken()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='spotomusic',
            description='Transfer public Spotify playlists to YouTube'
        )
        parser.add_argument(
            '--config',
            help='Path to an env file with configuration'
        )
        parser.add_argument(
            '--log-level',
            choices=list(LOG_LEVELS),
            help='Logging level (overrides SPOTOMUSIC_LOG_LEVEL)'
        )
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='Enable debug logging'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Search and match without creating or modifying YouTube playlists'
        )
        parser.add_argument(
            '--report-path',
            help='Directory for the JSON run report'
        )
        parser.add_argument(
            '--structured-logs',
            action='store_true',
            help='Emit JSON log records'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Transfer command
        transfer_parser = subparsers.add_parser('transfer', help='Transfer playlists to YouTube')
        transfer_parser.add_argument(
            'playlist',
            nargs='?',
            help='Playlist URL, spotify: URI or id'
        )
        transfer_parser.add_argument(
            '--name',
            default='',
            help='Playlist name to use instead of the one on the page'
        )
        transfer_parser.add_argument(
            '--all',
            action='store_true',
            help='Transfer every playlist from SPOTIFY_PLAYLIST_LINKS'
        )
        transfer_parser.add_argument(
            '--interactive',
            action='store_true',
            help='Choose playlists from SPOTIFY_PLAYLIST_LINKS interactively'
        )

        # List command
        subparsers.add_parser('list', help='List configured Spotify playlists')

        # Debug command
        debug_parser = subparsers.add_parser('debug', help='Show what is extracted from a playlist page')
        debug_parser.add_argument(
            'playlist',
            help='Playlist URL, spotify: URI or id'
        )
        debug_parser.add_argument(
            '--name',
            default='',
            help='Playlist name to use instead of the one on the page'
        )
        debug_parser.add_argument(
            '--output',
            default='debug.html',
            help='Where to save the page markup'
        )

        return parser

    def _install_signal_handlers(self) -> dict:
        """Route SIGINT/SIGTERM to the cancellation token. Returns previous handlers."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            if self.cancel_token.cancelled:
                raise KeyboardInterrupt
            logger.warning(f"Received signal {signum}, stopping after the current track...")
            self.cancel_token.cancel()

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, signal_handler)
        return previous

    def _restore_signal_handlers(self, previous: dict) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def _cleanup_resources(self) -> None:
        """Clean up resources on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.debug(f"CLI execution time: {duration:.2f}s")

    def _create_run_id(self) -> str:
        """Create unique run identifier."""
        return f"spotomusic_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _setup_logging(self, args: argparse.Namespace, settings: Settings, run_id: str) -> None:
        """Setup logging configuration."""
        if args.verbose:
            level = 'DEBUG'
        else:
            level = args.log_level or settings.effective_log_level
        setup_logging(level, log_file=str(settings.log_file), structured=args.structured_logs, run_id=run_id)
        logging.getLogger(__name__).debug(f"Configuration: {settings.summary()}")

    def _create_source(self) -> SpotifyWebSource:
        """Create source of playlist pages."""
        return SpotifyWebSource()

    def _create_catalog(self, settings: Settings) -> YouTubeCatalog:
        """Create authorized destination catalog."""
        credentials_file = settings.validate_destination()
        authenticator = YouTubeAuthenticator(
            credentials_file,
            settings.token_file,
            port=settings.oauth_port,
        )
        return YouTubeCatalog(authenticator.build_service(), max_results=settings.search_limit)

    def _load_playlists(self, source: SpotifyWebSource, playlist_ids: List[str]) -> List[SourcePlaylist]:
        """Read name and provisional track count of each playlist; unreadable ones are skipped."""
        logger = logging.getLogger(__name__)
        playlists = []
        for playlist_id in playlist_ids:
            try:
                markup = source.fetch_markup(playlist_id).decode('utf-8', errors='replace')
            except TransferError as e:
                logger.warning(f"Failed to get playlist {playlist_id}: {e}")
                continue
            summary = extract_playlist_summary(markup, UNKNOWN_PLAYLIST_NAME, playlist_id=playlist_id)
            track_count = count_track_rows(markup) or len(extract_tracks(markup))
            playlists.append(SourcePlaylist(
                id=summary.id,
                name=summary.name,
                is_public=summary.is_public,
                track_count=track_count,
            ))
        return playlists

    def _configured_playlist_ids(self, settings: Settings) -> List[str]:
        links = settings.playlist_links()
        if not links:
            raise ConfigError("SPOTIFY_PLAYLIST_LINKS is required (comma-separated playlist URLs)")
        return playlists_from_links(links)

    def _select_interactively(self, playlists: List[SourcePlaylist]) -> List[SourcePlaylist]:
        """Numbered menu on stdin. Accepts numbers separated by commas, or 'a' for all."""
        print("Available playlists:")
        for i, playlist in enumerate(playlists, 1):
            print(f"{i}. {playlist.name} ({playlist.track_count} tracks)")

        while True:
            answer = input("Select playlists (e.g. 1,3 or 'a' for all, empty to cancel): ").strip().lower()
            if not answer:
                return []
            if answer == 'a':
                return list(playlists)
            try:
                indexes = [int(part) for part in answer.split(',') if part.strip()]
            except ValueError:
                print("Please enter numbers separated by commas.")
                continue
            if indexes and all(1 <= index <= len(playlists) for index in indexes):
                return [playlists[index - 1] for index in indexes]
            print(f"Please enter numbers between 1 and {len(playlists)}.")

    def _resolve_targets(self, args: argparse.Namespace, settings: Settings,
                         source: SpotifyWebSource) -> List[Tuple[str, str]]:
        """Work out which ``(playlist_id, explicit_name)`` pairs to transfer."""
        if args.playlist:
            try:
                return [(parse_playlist_id(args.playlist), args.name)]
            except ValueError as e:
                raise ConfigError(f"Invalid playlist: {e}")

        if args.all:
            return [(playlist_id, '') for playlist_id in self._configured_playlist_ids(settings)]

        if args.interactive:
            playlists = self._load_playlists(source, self._configured_playlist_ids(settings))
            if not playlists:
                raise ConfigError("None of the configured playlists could be read")
            return [(p.id, p.name) for p in self._select_interactively(playlists)]

        raise ConfigError("Specify a playlist, --all or --interactive")

    def _transfer_playlists(self, args: argparse.Namespace, settings: Settings, run_id: str) -> int:
        """Transfer playlists to YouTube."""
        logger = logging.getLogger(__name__)
        dry_run = args.dry_run or settings.dry_run

        source = self._create_source()
        targets = self._resolve_targets(args, settings, source)
        if not targets:
            logger.warning("No playlists to transfer")
            return EXIT_OK

        if dry_run:
            logger.info(f"Starting DRY-RUN transfer (run: {run_id})")
        else:
            logger.info(f"Starting transfer (run: {run_id})")
        log_run_start(logger, run_id, len(targets), dry_run)

        catalog = self._create_catalog(settings)
        pipeline = TransferPipeline(source, catalog, track_delay_sec=settings.track_delay_sec)

        previous_handlers = self._install_signal_handlers()
        try:
            if len(targets) == 1:
                playlist_id, name = targets[0]
                summary = BatchSummary()
                try:
                    outcome = pipeline.transfer_playlist(playlist_id, name, dry_run, self.cancel_token)
                except TransferError as e:
                    logger.error(f"Failed to transfer playlist {name or playlist_id}: {e}")
                    return EXIT_ERROR
                summary.outcomes.append(outcome)
                summary.cancelled = outcome.cancelled
            else:
                summary = pipeline.transfer_all(targets, dry_run, self.cancel_token)
        finally:
            self._restore_signal_handlers(previous_handlers)

        for outcome in summary.outcomes:
            print(format_outcome(outcome))
        if len(targets) > 1 or summary.failures:
            print(format_summary(summary))

        report_dir = args.report_path or settings.report_dir
        if report_dir:
            try:
                path = write_report(summary, report_dir, run_id, dry_run)
                logger.info(f"Report saved to: {path}")
            except OSError as e:
                logger.error(f"Failed to write report: {e}")

        log_run_complete(logger, run_id, summary.total_playlists, summary.total_tracks,
                         matched=summary.total_matched, failed=summary.total_failed,
                         cancelled=summary.cancelled)

        if summary.cancelled:
            logger.warning("Transfer cancelled; summary above is partial")
            return EXIT_CANCELLED
        return EXIT_OK

    def _list_playlists(self, args: argparse.Namespace, settings: Settings) -> int:
        """List configured playlists."""
        source = self._create_source()
        playlists = self._load_playlists(source, self._configured_playlist_ids(settings))

        print(f"Found {len(playlists)} playlists:\n")
        for i, playlist in enumerate(playlists, 1):
            print(f"{i}. {playlist.name} ({playlist.track_count} tracks)")
            print(f"   ID: {playlist.id}\n")
        return EXIT_OK

    def _debug_playlist(self, args: argparse.Namespace, settings: Settings) -> int:
        """Print what the extractor sees on a playlist page and save the markup."""
        logger = logging.getLogger(__name__)
        try:
            playlist_id = parse_playlist_id(args.playlist)
        except ValueError as e:
            raise ConfigError(f"Invalid playlist: {e}")

        source = self._create_source()
        print(f"Debugging playlist: {playlist_id}")
        try:
            markup = source.fetch_markup(playlist_id).decode('utf-8', errors='replace')
        except TransferError as e:
            logger.error(f"Failed to fetch playlist {playlist_id}: {e}")
            return EXIT_ERROR

        summary = extract_playlist_summary(markup, args.name or UNKNOWN_PLAYLIST_NAME, playlist_id=playlist_id)
        tracks = extract_tracks(markup)

        print(f"Playlist Name: {summary.name}")
        print(f"Track Count: {len(tracks)}")
        print(f"Public: {summary.is_public}")
        print("Strategies:")
        for name, count in summarize_strategies(markup).items():
            print(f"  {name}: {count}")

        print(f"\nFound {len(tracks)} tracks:")
        for i, track in enumerate(tracks, 1):
            print(f"{i}. {track.label}")

        try:
            path = source.save_markup(playlist_id, args.output)
        except (TransferError, OSError) as e:
            print(f"Warning: Could not save HTML for analysis: {e}")
        else:
            print(f"\nHTML saved to {path} for analysis")
        return EXIT_OK

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            sys.exit(EXIT_ERROR)

        try:
            settings = load_settings(args.config)
        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        run_id = self._create_run_id()
        self._setup_logging(args, settings, run_id)
        logger = logging.getLogger(__name__)

        try:
            if args.command == 'transfer':
                code = self._transfer_playlists(args, settings, run_id)
            elif args.command == 'list':
                code = self._list_playlists(args, settings)
            elif args.command == 'debug':
                code = self._debug_playlist(args, settings)
            else:
                self.parser.print_help()
                code = EXIT_ERROR
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            code = EXIT_CANCELLED
        except (ConfigError, AuthorizationError) as e:
            logger.error(str(e))
            code = EXIT_ERROR
        except Exception as e:
            logger.error(f"CLI error: {e}")
            code = EXIT_ERROR
        finally:
            self._cleanup_resources()

        sys.exit(code)


def main():
    """Main entry point."""
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
