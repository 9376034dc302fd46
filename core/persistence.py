"""Final result persistence: report, tabular export and tracking side channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from core.scan_state import ScanState
from utils.data_paths import ScanPaths
from utils.export_writers import write_scan_exports
from utils.scan_tracking import ScanTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistedResults:
    report_path: Optional[Path]
    csv_path: Optional[Path]
    excel_path: Optional[Path]
    tracking_updated: bool


class ResultPersistence:
    """Writes the artefacts of one finished scan.

    The artefact names depend only on ``state.has_free_items``; the
    classifier never touches file names.
    """

    def __init__(
        self,
        paths: ScanPaths,
        *,
        tracker: Optional[ScanTracker] = None,
        include_analysis: bool = True,
        excel: bool = False,
    ):
        self.paths = paths
        self.tracker = tracker
        self.include_analysis = include_analysis
        self.excel = excel

    def save_all_results(
        self, state: ScanState, *, started_at: Optional[datetime] = None
    ) -> PersistedResults:
        artifacts = self.paths.artifacts(state.has_free_items)
        exports = write_scan_exports(
            state,
            artifacts,
            started_at=started_at,
            include_analysis=self.include_analysis,
            excel=self.excel,
        )
        if exports.report_path is not None:
            logger.info("Results saved to %s", exports.report_path)

        tracking_updated = False
        if self.tracker is not None:
            tracking_updated = self.tracker.record_scan(state.domain, state.has_free_items) is not None

        return PersistedResults(
            report_path=exports.report_path,
            csv_path=exports.csv_path,
            excel_path=exports.excel_path,
            tracking_updated=tracking_updated,
        )
