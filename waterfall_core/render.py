"""
Matplotlib rendering of a waterfall dataset.

Each entry is drawn as a column of its segments stacked from the running total
left by the previous entry, so the top of column i sits at cumulative_totals()[i].
Highlight opacities from the selection engine are applied per entry.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

# Select a non-interactive backend before pyplot is imported anywhere
import matplotlib

matplotlib.use("Agg", force=True)
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.colors import is_color_like
from matplotlib.figure import Figure
from matplotlib.lines import Line2D

from .models import Entry, as_entry
from .selection import Highlight
from .validation import ShapeMismatch, validate

logger = logging.getLogger(__name__)

FALLBACK_COLOR = "#7f7f7f"

_CSS_RGB_RE = re.compile(
    r"^rgba?\(\s*([\d.]+%?)\s*,\s*([\d.]+%?)\s*,\s*([\d.]+%?)\s*(?:,\s*([\d.]+)\s*)?\)$",
    re.IGNORECASE,
)


@dataclass
class RenderParams:
    """
    Figure controls.

    bar_width: Fraction of the category step covered by a column.
    show_connectors: Draw a dashed line between consecutive column tops.
    show_total: Append a final column holding the grand total.
    """

    bar_width: float = 0.8
    show_connectors: bool = True
    show_total: bool = False
    total_color: str = "#95a5a6"
    title: Optional[str] = None
    x_label: str = ""
    y_label: str = "Value"
    figsize: tuple = (10.0, 5.0)


def to_mpl_color(color: str) -> Any:
    """
    Translate a segment color for matplotlib. Named and hex colors pass through,
    CSS rgb()/rgba() strings become RGBA tuples, and anything else falls back
    to FALLBACK_COLOR with a warning.
    """
    if is_color_like(color):
        return color
    m = _CSS_RGB_RE.match(color.strip())
    if m:
        channels = []
        for part in m.groups()[:3]:
            if part.endswith("%"):
                channels.append(float(part[:-1]) / 100.0)
            else:
                channels.append(float(part) / 255.0)
        alpha = 1.0 if m.group(4) is None else float(m.group(4))
        rgba = tuple(min(max(c, 0.0), 1.0) for c in (*channels, alpha))
        if is_color_like(rgba):
            return rgba
    logger.warning("Unrecognized color %r, drawing with %s", color, FALLBACK_COLOR)
    return FALLBACK_COLOR


def render_waterfall(
    dataset: Sequence[Any],
    highlights: Optional[Sequence[Highlight]] = None,
    output_path: Optional[Union[str, Path]] = None,
    params: Optional[RenderParams] = None,
) -> Figure:
    """
    Draw `dataset` as a stacked waterfall.

    Args:
        dataset: Canonical entries (Entry objects or mappings)
        highlights: One Highlight per entry; None draws everything opaque
        output_path: When set, the figure is saved there (format from suffix)
        params: Figure controls

    Returns:
        Figure: The matplotlib figure

    Raises:
        ValidationError: If the dataset is malformed
        ShapeMismatch: If highlights do not have one item per entry
    """
    params = params or RenderParams()
    validate(dataset)
    entries: List[Entry] = [as_entry(e) for e in dataset]

    if highlights is not None and len(highlights) != len(entries):
        raise ShapeMismatch(
            f"Expected {len(entries)} highlights, got {len(highlights)}"
        )
    opacities = [1.0] * len(entries) if highlights is None else [h.opacity for h in highlights]

    # kept out of pyplot's figure registry
    fig = Figure(figsize=params.figsize)
    FigureCanvasAgg(fig)
    ax = fig.add_subplot()

    running = 0.0
    tops: List[float] = []
    for i, entry in enumerate(entries):
        for seg in entry.stacks:
            ax.bar(
                i,
                seg.value,
                bottom=running,
                width=params.bar_width,
                color=to_mpl_color(seg.color),
                alpha=opacities[i],
                edgecolor="white",
                linewidth=0.5,
            )
            running += seg.value
        tops.append(running)

    labels = [e.label for e in entries]
    if params.show_total:
        ax.bar(
            len(entries),
            running,
            width=params.bar_width,
            color=to_mpl_color(params.total_color),
        )
        labels.append("Total")

    if params.show_connectors and len(tops) > 1:
        half = params.bar_width / 2
        for i in range(len(tops) - 1 + int(params.show_total)):
            ax.add_line(
                Line2D(
                    [i + half, i + 1 - half],
                    [tops[i], tops[i]],
                    linestyle="--",
                    linewidth=0.8,
                    color="#7f8c8d",
                )
            )

    ax.axhline(0, color="black", linewidth=0.8)
    ax.set_xticks(range(len(labels)))
    if len(labels) > 8:
        ax.set_xticklabels(labels, rotation=45, ha="right")
    else:
        ax.set_xticklabels(labels)
    ax.set_xlabel(params.x_label)
    ax.set_ylabel(params.y_label)
    if params.title:
        ax.set_title(params.title)
    fig.tight_layout()

    if output_path is not None:
        fig.savefig(output_path)
        logger.debug("Wrote waterfall figure to %s", output_path)

    return fig
