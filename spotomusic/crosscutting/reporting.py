import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Any, Optional

from spotomusic.domain.entities import BatchSummary, TransferOutcome


OUTCOME_RULE_WIDTH = 50
SUMMARY_RULE_WIDTH = 60


@dataclass
class ReportHeader:
    """Header information for a transfer report."""

    run_id: str
    created_at: datetime
    dry_run: bool = False
    cancelled: bool = False

    def to_json(self) -> Dict[str, Any]:
        """Serialize header to JSON."""
        return {
            "runId": self.run_id,
            "createdAt": self.created_at.isoformat(),
            "dryRun": self.dry_run,
            "cancelled": self.cancelled,
        }


@dataclass
class PlaylistReport:
    """Per-playlist section of a transfer report."""

    name: str
    destination_id: str = ""
    totals: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @classmethod
    def from_outcome(cls, outcome: TransferOutcome) -> "PlaylistReport":
        return cls(
            name=outcome.playlist_name,
            destination_id=outcome.destination.id if outcome.destination else "",
            totals={
                "total": outcome.total_tracks,
                "matched": outcome.matched_count,
                "failed": outcome.failed_count,
                "fallback": outcome.fallback_count,
                "durationMs": outcome.duration_ms,
            },
            errors=list(outcome.errors),
            cancelled=outcome.cancelled,
        )

    def to_json(self) -> Dict[str, Any]:
        """Serialize playlist section to JSON."""
        return {
            "name": self.name,
            "destinationId": self.destination_id,
            "totals": self.totals,
            "errors": self.errors,
            "cancelled": self.cancelled,
        }


def format_outcome(outcome: TransferOutcome) -> str:
    """Render the result block printed after each playlist."""
    lines = [
        "=" * OUTCOME_RULE_WIDTH,
        f"Transfer Result: {outcome.playlist_name}",
        f"Total Tracks: {outcome.total_tracks}",
        f"Matched: {outcome.matched_count}",
        f"Failed: {outcome.failed_count}",
    ]
    if outcome.fallback_count:
        lines.append(f"Fallback matches: {outcome.fallback_count}")
    if outcome.dry_run:
        lines.append("Mode: DRY-RUN (no changes made)")
    if outcome.cancelled:
        lines.append(f"Cancelled after {outcome.processed_count} tracks")

    if outcome.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {error}" for error in outcome.errors)

    lines.append("=" * OUTCOME_RULE_WIDTH)
    return "\n".join(lines)


def format_summary(summary: BatchSummary) -> str:
    """Render the batch table with one row per playlist and a TOTAL line."""
    lines = [
        "=" * SUMMARY_RULE_WIDTH,
        "TRANSFER SUMMARY",
        "=" * SUMMARY_RULE_WIDTH,
    ]
    for outcome in summary.outcomes:
        lines.append(f"{outcome.playlist_name:<30} | {outcome.matched_count}/{outcome.total_tracks} "
                     f"| {outcome.failed_count} failed")

    for failure in summary.failures:
        lines.append(f"FAILED: {failure}")

    lines.append("-" * SUMMARY_RULE_WIDTH)
    lines.append(f"TOTAL: {summary.total_playlists} playlists, {summary.total_tracks} tracks, "
                 f"{summary.total_matched} matched, {summary.total_failed} failed")
    if summary.cancelled:
        lines.append("Run was cancelled; totals are partial")
    lines.append("=" * SUMMARY_RULE_WIDTH)
    return "\n".join(lines)


def summary_to_json(summary: BatchSummary, dry_run: bool = False,
                    run_id: str = "", created_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Serialize a batch summary to a JSON-compatible dict."""
    header = ReportHeader(
        run_id=run_id,
        created_at=created_at or datetime.now(timezone.utc),
        dry_run=dry_run,
        cancelled=summary.cancelled,
    )
    return {
        "header": header.to_json(),
        "playlists": [PlaylistReport.from_outcome(o).to_json() for o in summary.outcomes],
        "failures": list(summary.failures),
        "totals": {
            "playlists": summary.total_playlists,
            "tracks": summary.total_tracks,
            "matched": summary.total_matched,
            "failed": summary.total_failed,
        },
    }


def write_report(summary: BatchSummary, report_dir: Path, run_id: str, dry_run: bool = False) -> Path:
    """Write ``report_<run_id>.json`` into ``report_dir`` and return its path."""
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"report_{run_id}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary_to_json(summary, dry_run, run_id), f, indent=2, ensure_ascii=False)
    return path
