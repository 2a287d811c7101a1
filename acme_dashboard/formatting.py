"""Display helpers registered as Jinja filters."""

from __future__ import annotations

import math
from datetime import date
from typing import List, Sequence, Tuple, Union

from .models import Revenue

PageItem = Union[int, str]


def format_currency(amount: int) -> str:
    """Render an amount in cents as US dollars, e.g. ``$1,234.56``."""

    sign = "-" if amount < 0 else ""
    dollars, cents = divmod(abs(int(amount)), 100)
    return f"{sign}${dollars:,}.{cents:02d}"


def format_date(value: str) -> str:
    """Render an ISO date (``2022-12-06``) as ``Dec 6, 2022``."""

    parsed = date.fromisoformat(value[:10])
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


def generate_y_axis(revenue: Sequence[Revenue]) -> Tuple[List[str], int]:
    """Return the y-axis labels and the rounded-up top value for the chart."""

    highest = max((entry.revenue for entry in revenue), default=0)
    top_label = int(math.ceil(highest / 1000) * 1000)
    labels = [f"${value // 1000}K" for value in range(top_label, -1, -1000)]
    return labels, top_label


def generate_pagination(current_page: int, total_pages: int) -> List[PageItem]:
    if total_pages <= 7:
        return list(range(1, total_pages + 1))

    if current_page <= 3:
        return [1, 2, 3, "...", total_pages - 1, total_pages]

    if current_page >= total_pages - 2:
        return [1, 2, "...", total_pages - 2, total_pages - 1, total_pages]

    return [
        1,
        "...",
        current_page - 1,
        current_page,
        current_page + 1,
        "...",
        total_pages,
    ]


__all__ = ["format_currency", "format_date", "generate_pagination", "generate_y_axis"]
