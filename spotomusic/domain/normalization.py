from __future__ import annotations

import re
from typing import Iterable

from .entities import SourceTrack


FEATURE_TOKENS = ("ft.", "feat.", "featuring")
ARTIST_SEPARATOR = " ft. "
_MULTISPACE_PATTERN = re.compile(r"\s+")


def collapse_whitespace(value: str) -> str:
    return _MULTISPACE_PATTERN.sub(" ", value or "").strip()


def join_artists(names: Iterable[str]) -> str:
    """Render artist names as ``"A ft. B"``.

    Only the first two non-empty names are kept; the rest are dropped.
    """
    kept = [n for n in names if n][:2]
    return ARTIST_SEPARATOR.join(kept)


def build_query(track: SourceTrack) -> str:
    """Build the destination search query for a track.

    Feature tokens are removed as literal, case-sensitive substrings. No other
    normalization is applied; match tolerance belongs to the selector.

    Each token is removed in a single pass, so a token that only forms once
    another is cut out survives: ``"fefeat.at."`` becomes ``"feat."``.
    """
    query = f"{track.artist} {track.name}"
    for token in FEATURE_TOKENS:
        query = query.replace(token, "")
    return collapse_whitespace(query)
