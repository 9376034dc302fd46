"""Centralised path resolution for scan artefacts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

SCAN_RESULTS_ROOT = Path("data/scanner-results")
TRACKING_ROOT = Path("data/tracking")

FREE_PREFIX = "FREE_"
HISTORY_FILE_NAME = "scan-history.csv"
SUMMARY_FILE_NAME = "scan-summary.csv"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]+")


@dataclass(frozen=True)
class ScanArtifacts:
    """Report and tabular export paths for one finished scan."""

    report_path: Path
    csv_path: Path


@dataclass(frozen=True)
class ScanPaths:
    """Resolved paths for all artefacts belonging to a single scan.

    Nothing is created on disk here; writers call :func:`ensure_parent` right
    before they write so an aborted scan leaves no files behind.
    """

    domain: str
    output_dir: Path
    base_name: str
    checkpoint_path: Path
    history_csv: Path
    summary_csv: Path

    def artifacts(self, has_free_items: bool) -> ScanArtifacts:
        """Pick report names; scans that found free items get the ``FREE_`` prefix."""
        stem = f"{FREE_PREFIX}{self.base_name}" if has_free_items else self.base_name
        return ScanArtifacts(
            report_path=self.output_dir / f"{stem}.txt",
            csv_path=self.output_dir / f"{stem}.csv",
        )


def sanitize_domain(domain: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", domain.strip().lower())
    return cleaned.strip("_") or "unknown"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


def get_scan_paths(
    domain: str,
    started_at: datetime,
    output_dir: Optional[Path] = None,
    tracking_dir: Optional[Path] = None,
) -> ScanPaths:
    sanitized = sanitize_domain(domain)
    root = Path(output_dir) if output_dir is not None else SCAN_RESULTS_ROOT
    tracking_root = Path(tracking_dir) if tracking_dir is not None else TRACKING_ROOT
    return ScanPaths(
        domain=sanitized,
        output_dir=root,
        base_name=f"{sanitized}_{format_timestamp(started_at)}",
        checkpoint_path=root / f"{sanitized}_checkpoint.json",
        history_csv=tracking_root / HISTORY_FILE_NAME,
        summary_csv=tracking_root / SUMMARY_FILE_NAME,
    )


def ensure_parent(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
