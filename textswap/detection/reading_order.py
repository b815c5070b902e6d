"""
Reading-order sorting for detected regions

Rows are formed greedily top-to-bottom: a region joins the current row
when its vertical center is less than `row_tolerance` pixels from the
center of the row's first region. Within a row regions are ordered
left-to-right.
"""

from typing import List, Sequence

from ..models import Region


def group_rows(regions: Sequence[Region], row_tolerance: float = 20) -> List[List[Region]]:
    """Group regions into rows, rows ordered top-to-bottom"""
    ordered = sorted(regions, key=lambda r: (r.center[1], r.x, r.y, r.w, r.h))

    rows: List[List[Region]] = []
    anchor_y = None
    for region in ordered:
        cy = region.center[1]
        if anchor_y is None or cy - anchor_y >= row_tolerance:
            rows.append([region])
            anchor_y = cy
        else:
            rows[-1].append(region)

    return [sorted(row, key=lambda r: (r.x, r.y)) for row in rows]


def sort_reading_order(regions: Sequence[Region], row_tolerance: float = 20) -> List[Region]:
    """Flatten rows into one reading-order sequence"""
    return [region for row in group_rows(regions, row_tolerance) for region in row]
