from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Optional, Sequence, Tuple

import matplotlib
matplotlib.use("Agg")  # pragma: no cover - enforce non-interactive backend
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle
import numpy as np

from .colors import ColorSpec, ContinuousColorSpec, DiscreteColorSpec
from .layout import BatchLayout, LegendBox

DEFAULT_DPI = 100


@dataclass(frozen=True)
class LegendEntry:
    """One item of the display legend.

    Continuous entries show their ramp between ``value_range``; discrete
    entries show a swatch per category.
    """

    title: str
    spec: ColorSpec
    section: str = "colour_by"
    value_range: Optional[Tuple[float, float]] = None
    categories: Optional[Sequence[Hashable]] = None


def _px_to_pt(value: float, dpi: float) -> float:
    return value * 72.0 / dpi


def assemble_display(
    rasters: Sequence[np.ndarray],
    layout: BatchLayout,
    *,
    legend_entries: Sequence[LegendEntry] = (),
    interpolate: bool = False,
    background: str = "white",
    dpi: int = DEFAULT_DPI,
) -> plt.Figure:
    """Draw ``rasters`` into one figure following ``layout``.

    The figure measures ``layout.canvas_width x layout.canvas_height`` pixels at
    ``dpi``; one axes spans the whole canvas with pixel coordinates so that the
    layout geometry can be used as-is.
    """
    if len(rasters) != len(layout.tiles):
        raise ValueError(f"Layout holds {len(layout.tiles)} tiles but {len(rasters)} rasters were given")

    fig = plt.figure(
        figsize=(max(layout.canvas_width, 1.0) / dpi, max(layout.canvas_height, 1.0) / dpi),
        dpi=dpi,
    )
    fig.patch.set_facecolor(background)
    ax = fig.add_axes([0.0, 0.0, 1.0, 1.0])
    ax.set_xlim(0, max(layout.canvas_width, 1.0))
    ax.set_ylim(max(layout.canvas_height, 1.0), 0)
    ax.set_facecolor(background)
    ax.axis("off")

    origins = {}
    for tile, raster in zip(layout.tiles, rasters):
        origins[tile.index] = (tile.x0, tile.y0)
        ax.imshow(
            np.clip(raster, 0.0, 1.0),
            extent=(tile.x0, tile.x0 + tile.width, tile.y0 + tile.height, tile.y0),
            interpolation="bilinear" if interpolate else "nearest",
            aspect="auto",
        )

    for bar in layout.scale_bars:
        x_off, y_off = origins[bar.tile]
        ax.plot(
            [x_off + bar.x0, x_off + bar.x1],
            [y_off + bar.y, y_off + bar.y],
            color=bar.colour,
            linewidth=_px_to_pt(bar.line_width, dpi),
            solid_capstyle="butt",
        )
        if bar.label:
            ax.text(
                x_off + bar.label_x,
                y_off + bar.label_y,
                bar.label,
                color=bar.colour,
                fontsize=_px_to_pt(bar.font_size, dpi),
                ha="center",
                va=bar.label_va,
            )

    for title in layout.titles:
        x_off, y_off = origins[title.tile]
        ax.text(
            x_off + title.x,
            y_off + title.y,
            title.text,
            color=title.colour,
            fontsize=_px_to_pt(title.font_size, dpi),
            fontweight=title.font_weight,
            ha=title.ha,
            va=title.va,
        )

    if layout.legend is not None:
        for box, entry in zip(layout.legend.boxes, legend_entries):
            _draw_legend_entry(ax, box, entry, colour=layout.legend.colour, dpi=dpi)

    return fig


def _draw_legend_entry(ax: plt.Axes, box: LegendBox, entry: LegendEntry, *, colour: str, dpi: int) -> None:
    ax.text(
        box.x0,
        box.y0,
        entry.title,
        color=colour,
        fontsize=_px_to_pt(box.title_size, dpi),
        fontweight=box.title_weight,
        ha="left",
        va="top",
    )
    top = box.y0 + box.title_size * 1.5
    available = max(1.0, box.y0 + box.height - top)
    label_pt = _px_to_pt(box.label_size, dpi)

    if isinstance(entry.spec, ContinuousColorSpec):
        bar_width = min(box.width * 0.25, max(2.0, box.label_size * 1.5))
        gradient = entry.spec.map(np.linspace(1.0, 0.0, 64))[:, np.newaxis, :]
        ax.imshow(
            gradient,
            extent=(box.x0, box.x0 + bar_width, top + available, top),
            interpolation="bilinear",
            aspect="auto",
        )
        low, high = entry.value_range if entry.value_range is not None else (0.0, 1.0)
        for value, y, va in ((high, top, "top"), (low, top + available, "bottom")):
            ax.text(
                box.x0 + bar_width + box.label_size * 0.5,
                y,
                f"{value:.3g}",
                color=colour,
                fontsize=label_pt,
                fontweight=box.label_weight,
                ha="left",
                va=va,
            )
        return

    if isinstance(entry.spec, DiscreteColorSpec):
        categories = list(entry.categories) if entry.categories is not None else list(entry.spec.mapping)
        if not categories:
            return
        step = min(available / len(categories), box.label_size * 1.6)
        swatch = step * 0.8
        for position, category in enumerate(categories):
            y = top + position * step
            ax.add_patch(
                Rectangle(
                    (box.x0, y),
                    swatch,
                    swatch,
                    facecolor=entry.spec.lookup(category),
                    edgecolor="none",
                )
            )
            ax.text(
                box.x0 + swatch * 1.5,
                y + swatch / 2.0,
                str(category),
                color=colour,
                fontsize=label_pt,
                fontweight=box.label_weight,
                ha="left",
                va="center",
            )


def figure_to_array(fig: plt.Figure) -> np.ndarray:
    """Render ``fig`` and return its pixels as a ``[h, w, 3]`` uint8 array."""
    fig.canvas.draw()
    rgba = np.asarray(fig.canvas.buffer_rgba())
    return np.array(rgba[..., :3], copy=True)


__all__ = ["LegendEntry", "assemble_display", "figure_to_array", "DEFAULT_DPI"]
