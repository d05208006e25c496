"""Track and playlist extraction from Spotify playlist page markup.

The page format is not a stable contract, so extraction is an ordered cascade
of independent strategies. Each strategy is a pure function ``markup -> list``
and the first one that returns a non-empty list wins; partial hits from
different strategies are never merged.
"""
from __future__ import annotations

import html
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from spotomusic.domain.entities import SourcePlaylist, SourceTrack, UNKNOWN_PLAYLIST_NAME
from spotomusic.domain.normalization import join_artists


logger = logging.getLogger(__name__)

Strategy = Callable[[str], List[SourceTrack]]

_INITIAL_STATE_PATTERN = re.compile(r"window\.__spotify_initial_state = ([^;]+);")
_TRACK_ROW_PATTERN = re.compile(r'<li[^>]*data-testid="tracklist-row-\d+"[^>]*>(.*?)</li>', re.DOTALL)
_ROW_NAME_PATTERN = re.compile(r'<h3[^>]*data-encore-id="text"[^>]*>([^<]+)</h3>')
_ROW_ARTIST_PATTERN = re.compile(r'<h4[^>]*data-encore-id="text"[^>]*>([^<]+)</h4>')
_ROW_DURATION_PATTERN = re.compile(r'<div[^>]*data-testid="duration-cell"[^>]*>(\d+:\d+)</div>')
_ROW_MARKER_PATTERN = re.compile(r'data-testid="tracklist-row')
_JSON_LD_PATTERN = re.compile(r'<script[^>]*type="application/ld\+json"[^>]*>(.*?)</script>', re.DOTALL)
_OG_TITLE_PATTERN = re.compile(r'<meta property="og:title" content="([^"]+)"\s*/?>')
_TITLE_PATTERN = re.compile(r"<title>([^<]+)</title>")

FREE_TEXT_SEPARATOR = " - "
FREE_TEXT_MIN_LENGTH = 10
FREE_TEXT_MAX_LENGTH = 200
TITLE_BRANDING_SUFFIXES = (" | Spotify", " Spotify")


def clean_text(value: Any) -> str:
    """Unescape HTML entities and trim surrounding whitespace."""
    if not isinstance(value, str):
        return ""
    return html.unescape(value).strip()


def parse_duration(text: str) -> int:
    """Convert ``M:SS`` text into milliseconds."""
    minutes, seconds = text.strip().split(":", 1)
    return (int(minutes) * 60 + int(seconds)) * 1000


def _load_json(payload: str) -> Optional[Any]:
    try:
        return json.loads(payload)
    except ValueError:
        return None


def extract_from_initial_state(markup: str) -> List[SourceTrack]:
    """Project tracks out of the embedded ``__spotify_initial_state`` object."""
    match = _INITIAL_STATE_PATTERN.search(markup)
    if not match:
        return []

    state = _load_json(match.group(1))
    if not isinstance(state, dict):
        return []

    data: Any = state
    for key in ("entities", "tracks", "data"):
        data = data.get(key) if isinstance(data, dict) else None
    if not isinstance(data, dict):
        return []

    tracks = []
    for item in data.values():
        if not isinstance(item, dict):
            continue
        artists = [clean_text(a.get("name")) for a in item.get("artists") or [] if isinstance(a, dict)]
        album = item.get("album") if isinstance(item.get("album"), dict) else {}
        duration = item.get("duration_ms")
        tracks.append(SourceTrack(
            name=clean_text(item.get("name")),
            artist=join_artists(artists),
            album=clean_text(album.get("name")),
            duration_ms=duration if isinstance(duration, int) and not isinstance(duration, bool) else 0,
            external_id=clean_text(item.get("uri")),
        ))
    return tracks


def extract_from_track_rows(markup: str) -> List[SourceTrack]:
    """Read ``tracklist-row`` list items; rows missing a field are skipped."""
    tracks = []
    for row_html in _TRACK_ROW_PATTERN.findall(markup):
        name = _ROW_NAME_PATTERN.search(row_html)
        artist = _ROW_ARTIST_PATTERN.search(row_html)
        duration = _ROW_DURATION_PATTERN.search(row_html)
        if not (name and artist and duration):
            continue
        tracks.append(SourceTrack(
            name=clean_text(name.group(1)),
            artist=clean_text(artist.group(1)),
            duration_ms=parse_duration(duration.group(1)),
        ))
    return tracks


def extract_from_structured_data(markup: str) -> List[SourceTrack]:
    """Read JSON-LD blocks: a ``@graph`` of MusicRecording entries or a flat item list."""
    tracks = []
    for block in _JSON_LD_PATTERN.findall(markup):
        data = _load_json(block)
        if not isinstance(data, dict):
            continue

        graph = data.get("@graph")
        items = data.get("itemListElement")
        if isinstance(graph, list):
            for entry in graph:
                if not isinstance(entry, dict) or entry.get("@type") != "MusicRecording":
                    continue
                by_artist = entry.get("byArtist")
                artist = by_artist.get("name") if isinstance(by_artist, dict) else ""
                tracks.append(SourceTrack(
                    name=clean_text(entry.get("name")),
                    artist=clean_text(artist),
                ))
        elif isinstance(items, list):
            for entry in items:
                if isinstance(entry, dict) and isinstance(entry.get("name"), str):
                    tracks.append(SourceTrack(name=clean_text(entry["name"])))
    return tracks


def extract_from_text_lines(markup: str) -> List[SourceTrack]:
    """Last resort: ``Artist - Song`` lines of plain text."""
    tracks = []
    for raw_line in markup.split("\n"):
        line = raw_line.strip()
        if FREE_TEXT_SEPARATOR not in line:
            continue
        if not FREE_TEXT_MIN_LENGTH < len(line) < FREE_TEXT_MAX_LENGTH:
            continue
        parts = line.split(FREE_TEXT_SEPARATOR)
        if len(parts) != 2:
            continue
        artist, name = parts[0].strip(), parts[1].strip()
        if not artist or not name or "<" in artist or "<" in name:
            continue
        tracks.append(SourceTrack(name=clean_text(name), artist=clean_text(artist)))
    return tracks


# Priority order matters: the first strategy with a non-empty result wins.
STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("initial_state", extract_from_initial_state),
    ("track_rows", extract_from_track_rows),
    ("structured_data", extract_from_structured_data),
    ("text_lines", extract_from_text_lines),
)


def extract_tracks(markup: str, strategies: Tuple[Tuple[str, Strategy], ...] = STRATEGIES) -> List[SourceTrack]:
    """Run the strategy cascade and return the first non-empty result.

    Args:
        markup: Raw page markup
        strategies: Ordered ``(name, function)`` pairs

    Returns:
        Extracted tracks, or an empty list when nothing was recognized
    """
    if not markup:
        return []

    for name, strategy in strategies:
        try:
            tracks = strategy(markup)
        except Exception as e:
            logger.warning(f"Extraction strategy {name} failed: {e}")
            continue
        if tracks:
            logger.debug(f"Extraction strategy {name} produced {len(tracks)} tracks")
            return tracks
        logger.debug(f"Extraction strategy {name} found nothing")

    return []


def _strip_branding(title: str) -> str:
    for suffix in TITLE_BRANDING_SUFFIXES:
        if title.endswith(suffix):
            return title[: -len(suffix)].strip()
    return title


def extract_playlist_summary(markup: str, explicit_name: str = "", playlist_id: str = "") -> SourcePlaylist:
    """Build the playlist summary.

    A usable explicit name is taken verbatim without reading the markup.
    Otherwise the ``og:title`` meta field is used, then the ``<title>``
    element, each with the trailing site branding stripped.
    """
    if explicit_name and explicit_name != UNKNOWN_PLAYLIST_NAME:
        return SourcePlaylist(id=playlist_id, name=explicit_name, is_public=True)

    name = UNKNOWN_PLAYLIST_NAME
    og_title = _OG_TITLE_PATTERN.search(markup or "")
    title = _TITLE_PATTERN.search(markup or "")
    if og_title:
        name = _strip_branding(clean_text(og_title.group(1))) or UNKNOWN_PLAYLIST_NAME
    elif title:
        name = _strip_branding(clean_text(title.group(1))) or UNKNOWN_PLAYLIST_NAME

    return SourcePlaylist(id=playlist_id, name=name, is_public=True)


def count_track_rows(markup: str) -> int:
    """Provisional track count from ``tracklist-row`` markers."""
    return len(_ROW_MARKER_PATTERN.findall(markup or ""))


def summarize_strategies(markup: str) -> Dict[str, int]:
    """Track count per strategy, evaluated independently (diagnostics only)."""
    return {name: len(strategy(markup)) for name, strategy in STRATEGIES}
