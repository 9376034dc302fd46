"""
Domain-level scan history kept in two CSV files.

``scan-history.csv`` holds per-domain counters of scans with and without
free items; ``scan-summary.csv`` adds the free-item hit rate. Both are
updated best-effort after each completed scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from utils.data_paths import ensure_parent

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = [
    "Domain",
    "Timestamp",
    "Free Items Count",
    "No Free Items Count",
    "Total Scans",
    "Last Scan Date",
]

SUMMARY_COLUMNS = [
    "Domain",
    "Free Items Found",
    "No Free Items Found",
    "Total Scans",
    "Success Rate",
    "Last Scan",
]


@dataclass
class DomainCounters:
    domain: str
    scans_with_free_items: int = 0
    scans_without_free_items: int = 0
    total_scans: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_scans == 0:
            return 0.0
        return self.scans_with_free_items / self.total_scans * 100


def _read_frame(path: Path, columns) -> pd.DataFrame:
    if not path.exists():
        return pd.DataFrame(columns=columns)
    frame = pd.read_csv(path, dtype={"Domain": str})
    for column in columns:
        if column not in frame.columns:
            frame[column] = None
    return frame[columns]


def _as_int(value) -> int:
    number = pd.to_numeric(value, errors="coerce")
    return 0 if pd.isna(number) else int(number)


def _upsert(frame: pd.DataFrame, domain: str, row: dict) -> pd.DataFrame:
    mask = frame["Domain"] == domain
    if mask.any():
        for column, value in row.items():
            frame.loc[mask, column] = value
        return frame
    if frame.empty:
        return pd.DataFrame([row], columns=frame.columns)
    return pd.concat([frame, pd.DataFrame([row], columns=frame.columns)], ignore_index=True)


class ScanTracker:
    """Reads and updates the per-domain history and summary CSV files."""

    def __init__(self, history_csv: Path, summary_csv: Path):
        self.history_csv = Path(history_csv)
        self.summary_csv = Path(summary_csv)

    def counters_for(self, domain: str) -> DomainCounters:
        counters = DomainCounters(domain=domain)
        frame = _read_frame(self.history_csv, HISTORY_COLUMNS)
        match = frame[frame["Domain"] == domain]
        if not match.empty:
            row = match.iloc[0]
            counters.scans_with_free_items = _as_int(row["Free Items Count"])
            counters.scans_without_free_items = _as_int(row["No Free Items Count"])
            counters.total_scans = _as_int(row["Total Scans"])
        return counters

    def record_scan(
        self,
        domain: str,
        has_free_items: bool,
        when: Optional[datetime] = None,
    ) -> Optional[DomainCounters]:
        """Bump the counters for ``domain``; returns ``None`` if the files could not be updated."""
        timestamp = (when or datetime.now(timezone.utc)).isoformat()
        try:
            counters = self.counters_for(domain)
            if has_free_items:
                counters.scans_with_free_items += 1
            else:
                counters.scans_without_free_items += 1
            counters.total_scans += 1

            history = _read_frame(self.history_csv, HISTORY_COLUMNS)
            history = _upsert(
                history,
                domain,
                {
                    "Domain": domain,
                    "Timestamp": timestamp,
                    "Free Items Count": counters.scans_with_free_items,
                    "No Free Items Count": counters.scans_without_free_items,
                    "Total Scans": counters.total_scans,
                    "Last Scan Date": timestamp,
                },
            )
            history.to_csv(ensure_parent(self.history_csv), index=False, lineterminator="\n")

            summary = _read_frame(self.summary_csv, SUMMARY_COLUMNS)
            summary = _upsert(
                summary,
                domain,
                {
                    "Domain": domain,
                    "Free Items Found": counters.scans_with_free_items,
                    "No Free Items Found": counters.scans_without_free_items,
                    "Total Scans": counters.total_scans,
                    "Success Rate": f"{counters.success_rate:.1f}%",
                    "Last Scan": timestamp,
                },
            )
            summary.to_csv(ensure_parent(self.summary_csv), index=False, lineterminator="\n")
        except (OSError, ValueError) as exc:
            logger.warning("Failed to update scan tracking for %s: %s", domain, exc)
            return None

        logger.debug(
            "Tracking updated for %s: %d/%d scans with free items",
            domain,
            counters.scans_with_free_items,
            counters.total_scans,
        )
        return counters
