from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from spotomusic.domain.entities import CandidateResult, SourceTrack


class MatchRule(str, Enum):
    """Which selection rule produced a match."""

    NAME_AND_ARTIST = "name_and_artist"
    NAME_ONLY = "name_only"
    POSITIONAL_FALLBACK = "positional_fallback"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MatchResult:
    """Result of track matching operation."""

    candidate: Optional[CandidateResult]
    rule: MatchRule

    @property
    def is_fallback(self) -> bool:
        return self.rule is MatchRule.POSITIONAL_FALLBACK


class TrackMatcher:
    """Selects the best candidate for a source track.

    Candidates are evaluated in the order the search returned them:
    1. Title contains both the track name and the artist
    2. Title contains the track name
    3. Otherwise the first candidate (search relevance order)

    The positional fallback still selects a candidate; ``MatchResult.rule``
    tells callers that no substring rule fired.
    """

    def match(self, track: SourceTrack, candidates: Sequence[CandidateResult]) -> MatchResult:
        """Find the best match for a source track among candidates.

        Args:
            track: Source track to find match for
            candidates: Search results in relevance order

        Returns:
            MatchResult with the selected candidate and the rule that selected it
        """
        if not candidates:
            return MatchResult(candidate=None, rule=MatchRule.NOT_FOUND)

        name = track.name.casefold()
        artist = track.artist.casefold()

        for candidate in candidates:
            title = candidate.title.casefold()
            if name in title and artist in title:
                return MatchResult(candidate=candidate, rule=MatchRule.NAME_AND_ARTIST)
            if name in title:
                return MatchResult(candidate=candidate, rule=MatchRule.NAME_ONLY)

        return MatchResult(candidate=candidates[0], rule=MatchRule.POSITIONAL_FALLBACK)


def select_best_match(track: SourceTrack, candidates: Sequence[CandidateResult]) -> Optional[CandidateResult]:
    """Return the selected candidate, or None only when there are no candidates."""
    return TrackMatcher().match(track, candidates).candidate
