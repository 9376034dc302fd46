from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from core.scan_state import ScanState
from core.types import ScanItem
from utils.data_paths import ScanArtifacts, ensure_parent

logger = logging.getLogger(__name__)

__all__ = [
    "ITEM_CSV_COLUMNS",
    "ExportResult",
    "apply_tabular_style",
    "build_items_dataframe",
    "render_report",
    "write_scan_exports",
]

ITEM_CSV_COLUMNS: Tuple[str, ...] = (
    "Title",
    "Variant",
    "Price",
    "Available",
    "Cart URL",
    "Product URL",
    "Source",
    "Found At",
)

_THIN_SIDE = Side(style="thin", color="D1D5DB")
GRID_BORDER = Border(top=_THIN_SIDE, bottom=_THIN_SIDE, left=_THIN_SIDE, right=_THIN_SIDE)
HEADER_FILL = PatternFill(fill_type="solid", fgColor="E5E7EB")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="1F2937")
BODY_FONT = Font(name="Calibri", size=11, color="111827")
ALIGN_LEFT = Alignment(vertical="center", horizontal="left", wrap_text=True)
ALIGN_RIGHT = Alignment(vertical="center", horizontal="right")
ALIGN_CENTER = Alignment(vertical="center", horizontal="center", wrap_text=True)


@dataclass(frozen=True)
class ExportResult:
    report_path: Optional[Path]
    csv_path: Optional[Path]
    excel_path: Optional[Path] = None


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _format_price(item: ScanItem) -> str:
    return f"{item.price:.2f}"


def _item_row(item: ScanItem, label: str) -> Dict[str, Any]:
    return {
        "Title": item.title,
        "Variant": item.variant,
        "Price": _format_price(item),
        "Available": _yes_no(item.available),
        "Cart URL": item.cart_url,
        "Product URL": item.product_url,
        "Source": label,
        "Found At": item.found_at,
    }


def build_items_dataframe(state: ScanState) -> pd.DataFrame:
    """One row per listed item: ranked lowest-priced rows first, then free items."""
    rows: List[Dict[str, Any]] = []
    for index, item in enumerate(state.lowest_priced, start=1):
        rows.append(_item_row(item, f"LOWEST PRICED #{index}"))
    for item in state.free_items:
        rows.append(_item_row(item, "FREE ITEM"))
    if not rows:
        return pd.DataFrame(columns=ITEM_CSV_COLUMNS)
    return pd.DataFrame(rows, columns=ITEM_CSV_COLUMNS)


def _describe_item(heading: str, item: ScanItem) -> List[str]:
    return [
        f"{heading}: {item.title} - ${_format_price(item)}",
        f"  Variant: {item.variant}",
        f"  Available: {_yes_no(item.available)}",
        f"  Cart URL: {item.cart_url}",
        f"  Product URL: {item.product_url}",
        f"  Source: {item.source}",
        f"  Found At: {item.found_at}",
        "",
    ]


def render_report(
    state: ScanState,
    *,
    started_at: Optional[datetime] = None,
    include_analysis: bool = True,
) -> str:
    """Human-readable text report of a finished (or stopped) scan."""
    lines: List[str] = [
        f"Storefront scan for {state.domain}",
        f"Working URL: {state.base_url}",
    ]
    if started_at is not None:
        lines.append(f"Started: {started_at.isoformat()}")
    lines.append(f"Finished: {datetime.now().isoformat()}")
    lines.append("")

    stats = state.stats
    lines.extend(
        [
            f"Products found: {stats.products_found}",
            f"Variants processed: {stats.variants_processed}",
            f"Collections found: {stats.collections_found}",
            f"Sitemap URLs found: {stats.sitemap_urls_found}",
            f"Requests made: {stats.total_requests}",
            "",
        ]
    )

    if state.lowest_priced:
        lines.append(f"LOWEST PRICED ITEMS ({len(state.lowest_priced)} found):")
        lines.append("")
        for index, item in enumerate(state.lowest_priced, start=1):
            lines.extend(_describe_item(f"LOWEST PRICED #{index}", item))

    if state.free_items:
        lines.append(f"FREE ITEMS FOUND ({len(state.free_items)}):")
        lines.append("")
        for index, item in enumerate(state.free_items, start=1):
            lines.extend(_describe_item(f"FREE ITEM #{index}", item))
    else:
        lines.append("No free items found.")
        lines.append("")

    analysis = state.analysis
    if include_analysis and analysis.variant_combinations:
        lines.extend(
            [
                "VARIANT ANALYSIS:",
                f"Total products analyzed: {len(analysis.variant_combinations)}",
                f"Total variant combinations: {stats.variant_combinations_analyzed}",
                f"Price points found: {len(analysis.price_patterns)}",
                f"Variants with inventory data: {len(analysis.inventory)}",
                f"Discontinued products: {stats.discontinued_products_found}",
            ]
        )
        common = analysis.top_price_patterns(5)
        if common:
            lines.append(
                "Most common prices: "
                + ", ".join(f"${price} x{count}" for price, count in common)
            )
        lines.append("")

    return "\n".join(lines)


def apply_tabular_style(ws) -> None:
    """Apply consistent styling to an openpyxl worksheet."""

    if ws.max_row == 0 or ws.max_column == 0:
        return

    ws.freeze_panes = "A2"

    header_cells = next(ws.iter_rows(min_row=1, max_row=1))
    for cell in header_cells:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = ALIGN_CENTER
        cell.border = GRID_BORDER

    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.font = BODY_FONT
            cell.border = GRID_BORDER
            if isinstance(cell.value, (int, float)):
                cell.alignment = ALIGN_RIGHT
            else:
                cell.alignment = ALIGN_LEFT

    for column_index in range(1, ws.max_column + 1):
        letter = get_column_letter(column_index)
        width = max(
            (len(str(cell.value)) for cell in ws[letter] if cell.value is not None),
            default=10,
        )
        ws.column_dimensions[letter].width = min(max(width + 2, 10), 60)
    ws.auto_filter.ref = f"A1:{get_column_letter(ws.max_column)}{ws.max_row}"


def _write_excel(state: ScanState, items: pd.DataFrame, excel_path: Path) -> None:
    patterns = pd.DataFrame(
        [
            {"Price": float(price), "Variants": count}
            for price, count in state.analysis.top_price_patterns(limit=len(state.analysis.price_patterns))
        ],
        columns=["Price", "Variants"],
    )
    with pd.ExcelWriter(excel_path, engine="openpyxl") as writer:
        items.to_excel(writer, sheet_name="items", index=False)
        patterns.to_excel(writer, sheet_name="price_patterns", index=False)
        for sheet_name in writer.sheets:
            apply_tabular_style(writer.book[sheet_name])


def write_scan_exports(
    state: ScanState,
    artifacts: ScanArtifacts,
    *,
    started_at: Optional[datetime] = None,
    include_analysis: bool = True,
    excel: bool = False,
) -> ExportResult:
    """Write the text report and CSV (optionally Excel) for ``state``.

    Each artefact is written independently; a failing writer is logged and
    its path comes back as ``None``.
    """
    report_path: Optional[Path] = None
    csv_path: Optional[Path] = None
    excel_path: Optional[Path] = None

    try:
        text = render_report(state, started_at=started_at, include_analysis=include_analysis)
        ensure_parent(artifacts.report_path).write_text(text, encoding="utf-8")
        report_path = artifacts.report_path
    except OSError as exc:
        logger.warning("Failed to write report %s: %s", artifacts.report_path, exc)

    items = build_items_dataframe(state)
    try:
        items.to_csv(
            ensure_parent(artifacts.csv_path),
            index=False,
            encoding="utf-8",
            lineterminator="\n",
        )
        csv_path = artifacts.csv_path
    except OSError as exc:
        logger.warning("Failed to write CSV export %s: %s", artifacts.csv_path, exc)

    if excel:
        target = artifacts.csv_path.with_suffix(".xlsx")
        try:
            _write_excel(state, items, ensure_parent(target))
            excel_path = target
        except (OSError, ValueError) as exc:
            logger.warning("Failed to write Excel export for %s: %s", target, exc)

    return ExportResult(report_path=report_path, csv_path=csv_path, excel_path=excel_path)
