"""Excel export of the latest stats snapshot."""

from __future__ import annotations

import logging
from os import PathLike
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from .config import (
    EXCEL_AUTOSIZE_COLUMNS,
    EXCEL_AUTOSIZE_MAX_WIDTH,
    EXCEL_AUTOSIZE_MIN_WIDTH,
    EXCEL_AUTOSIZE_PADDING,
)
from .models import KM_TO_MILES, StatsSnapshot

LEADERBOARD_SHEET = "Leaderboard"
ACTIVITY_TYPES_SHEET = "Activity Types"
SUMMARY_SHEET = "Summary"

LEADERBOARD_COLUMNS = [
    "Rank",
    "Athlete",
    "Activities",
    "Total Distance (km)",
    "Total Distance (mi)",
]
ACTIVITY_TYPE_COLUMNS = ["Activity Type", "Activities", "Distance (km)", "Distance (mi)"]

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(patternType="solid", fgColor="FFFC4C02")
HEADER_BORDER = Border(
    left=Side(style="thin", color="000000"),
    right=Side(style="thin", color="000000"),
    top=Side(style="thin", color="000000"),
    bottom=Side(style="thin", color="000000"),
)

LOGGER = logging.getLogger(__name__)

PathInput = str | Path | PathLike[str]


def _autosize(ws: Worksheet) -> None:
    if not EXCEL_AUTOSIZE_COLUMNS:
        return
    for col_cells in ws.columns:
        max_len = 0
        col_letter = getattr(col_cells[0], "column_letter", None)
        for cell in col_cells:
            if cell.value is None:
                continue
            max_len = max(max_len, len(str(cell.value)))
        width = min(
            EXCEL_AUTOSIZE_MAX_WIDTH,
            max(EXCEL_AUTOSIZE_MIN_WIDTH, max_len + EXCEL_AUTOSIZE_PADDING),
        )
        if col_letter:
            ws.column_dimensions[col_letter].width = width


def _style_header_row(ws: Worksheet, max_col: int) -> None:
    for col_idx in range(1, max_col + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = HEADER_BORDER


def _leaderboard_rows(snapshot: StatsSnapshot) -> List[Dict[str, Any]]:
    return [
        {
            "Rank": idx,
            "Athlete": stat.display_name,
            "Activities": stat.activity_count,
            "Total Distance (km)": round(stat.total_distance_km, 2),
            "Total Distance (mi)": round(stat.total_distance_km * KM_TO_MILES, 2),
        }
        for idx, stat in enumerate(snapshot.athletes, start=1)
    ]


def _activity_type_rows(snapshot: StatsSnapshot) -> List[Dict[str, Any]]:
    ordered = sorted(
        snapshot.activity_types.items(), key=lambda item: -item[1].distance_km
    )
    return [
        {
            "Activity Type": activity_type,
            "Activities": totals.count,
            "Distance (km)": round(totals.distance_km, 2),
            "Distance (mi)": round(totals.distance_km * KM_TO_MILES, 2),
        }
        for activity_type, totals in ordered
    ]


def _summary_rows(snapshot: StatsSnapshot) -> List[Dict[str, Any]]:
    period = snapshot.tracking_period
    return [
        {"Metric": "Total Distance (km)", "Value": round(snapshot.total_distance_km, 2)},
        {
            "Metric": "Total Distance (mi)",
            "Value": round(snapshot.total_distance_miles, 2),
        },
        {"Metric": "Athletes", "Value": snapshot.athlete_count},
        {
            "Metric": "Tracking Period",
            "Value": f"{period.start} to {period.end}" if period else "",
        },
        {
            "Metric": "Last Updated",
            "Value": snapshot.last_updated.isoformat() if snapshot.last_updated else "",
        },
    ]


def write_stats_workbook(filepath: PathInput, snapshot: StatsSnapshot) -> Path:
    """Write summary, leaderboard and activity-type sheets to ``filepath``."""

    path = Path(filepath)
    sheets = [
        (SUMMARY_SHEET, pd.DataFrame(_summary_rows(snapshot), columns=["Metric", "Value"])),
        (
            LEADERBOARD_SHEET,
            pd.DataFrame(_leaderboard_rows(snapshot), columns=LEADERBOARD_COLUMNS),
        ),
        (
            ACTIVITY_TYPES_SHEET,
            pd.DataFrame(_activity_type_rows(snapshot), columns=ACTIVITY_TYPE_COLUMNS),
        ),
    ]
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, df in sheets:
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            ws = writer.sheets[sheet_name]
            _style_header_row(ws, len(df.columns))
            _autosize(ws)
            LOGGER.info("Wrote sheet %s rows=%s", sheet_name, len(df))
    return path


__all__ = ["write_stats_workbook"]
