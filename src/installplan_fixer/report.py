from __future__ import annotations

from typing import Sequence

from .detector import is_staging_image
from .models import FaultRecord

RED_COLOR = "\033[0;31m"
NO_COLOR = "\033[0m"
ELLIPSIS = "..."
NO_FAULTS_MESSAGE = "No faulty install plans found."

DEFAULT_MAX_WIDTHS = {
    "namespace": 30,
    "name": 13,
    "status": 10,
    "image": 80,
}


def truncate_to_width(value: str, width: int) -> str:
    """Cut ``value`` to ``width`` characters, ending in an ellipsis when cut.

    Widths of three or less leave no room for the ellipsis; the value is
    clipped to ``width`` instead so the result never exceeds the column.
    """
    if len(value) <= width:
        return value
    if width <= len(ELLIPSIS):
        return value[:width]
    return value[: width - len(ELLIPSIS)] + ELLIPSIS


def column_widths(records: Sequence[FaultRecord], max_widths: dict[str, int] | None = None) -> dict[str, int]:
    limits = {**DEFAULT_MAX_WIDTHS, **(max_widths or {})}
    columns = {
        "namespace": [record.namespace for record in records],
        "name": [record.name for record in records],
        "status": [record.phase for record in records],
        "image": [record.image for record in records],
    }
    return {
        column: min(max((len(value) for value in values), default=0), limits[column])
        for column, values in columns.items()
    }


def render_fault_row(record: FaultRecord, widths: dict[str, int], *, color: bool = False) -> str:
    plan_width = widths["namespace"] + widths["name"] + 1
    install_plan = truncate_to_width(f"{record.namespace}/{record.name}", plan_width)
    status = truncate_to_width(record.phase, widths["status"])
    image = truncate_to_width(record.image, widths["image"])

    status_text = f"{status:<{widths['status']}}"
    image_text = f"{image:<{widths['image']}}"
    if color and status.lower() == "failed":
        status_text = f"{RED_COLOR}{status_text}{NO_COLOR}"
    if color and is_staging_image(image):
        image_text = f"{RED_COLOR}{image_text}{NO_COLOR}"

    return f"* {install_plan:<{plan_width}} [{status_text}] (bundle image: {image_text})"


def render_fault_table(
    records: Sequence[FaultRecord],
    max_widths: dict[str, int] | None = None,
    *,
    color: bool = False,
) -> list[str]:
    if not records:
        return [NO_FAULTS_MESSAGE]

    widths = column_widths(records, max_widths)
    lines = [f"Found {len(records)} faulty install plan(s):"]
    lines.extend(render_fault_row(record, widths, color=color) for record in records)
    return lines
