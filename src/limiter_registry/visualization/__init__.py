"""
Formatters for displaying limiter views.

Provides two output formats:
- TABLE: Bordered text table (default)
- JSON: One JSON array, for scripting

Example:
    from limiter_registry.visualization import ViewFormat, format_views

    views = await registry.list_for_context("app1")
    print(format_views(views, ViewFormat.JSON))
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING

from .table import TableRenderer

if TYPE_CHECKING:
    from ..models import LimiterView

VIEW_HEADERS = ["Name", "Apps", "Max Permits", "Curr Permits", "Rate", "Last Permit (ms)"]


class ViewFormat(Enum):
    """Output format for limiter views."""

    TABLE = "table"
    JSON = "json"


def format_views(views: list[LimiterView], fmt: ViewFormat = ViewFormat.TABLE) -> str:
    """
    Format limiter views for display.

    Args:
        views: Views to render, in display order
        fmt: Output format

    Returns:
        Formatted string ready for printing. An empty TABLE renders as a
        short notice rather than an empty frame.
    """
    if fmt is ViewFormat.JSON:
        return json.dumps([v.as_dict() for v in views], indent=2)

    if not views:
        return "No limiters found."

    rows = [
        [
            v.name,
            ",".join(sorted(v.apps)),
            str(v.max_permits),
            str(v.curr_permits),
            str(v.rate),
            v.last_permit_timestamp,
        ]
        for v in views
    ]
    return TableRenderer(alignments=["l", "l", "r", "r", "r", "r"]).render(VIEW_HEADERS, rows)


__all__ = ["TableRenderer", "ViewFormat", "format_views"]
