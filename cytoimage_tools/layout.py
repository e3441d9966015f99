"""Layout arithmetic for displaying one or more composite rasters together.

Everything here is plain geometry in pixel units of the composed display:
tiles are placed on a grid whose cells are as large as the largest image, and
text sizes, line widths and the legend panel scale with that largest image so
that a batch looks the same whether it is shown as one grid or image by image.
Drawing happens in :mod:`cytoimage_tools.rendering`.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

ANCHORS = ("topleft", "top", "topright", "bottomleft", "bottom", "bottomright")
REFERENCE_SIZE = 100.0
LEGEND_SECTIONS = ("colour_by", "outline_by")

Shape = Tuple[int, int]


@dataclass(frozen=True)
class ScaleBarOptions:
    """Scale bar settings.

    ``length`` is given in real-world units; ``pixel_size`` is the number of
    those units per pixel. ``frame`` selects which images get a bar: ``"all"``
    or the batch index (or indices) of the images.
    """

    length: float = 20.0
    pixel_size: float = 1.0
    label: Optional[str] = None
    unit: str = ""
    position: str = "bottomright"
    margin: Tuple[float, float] = (10.0, 10.0)
    line_width: float = 2.0
    colour: str = "white"
    font_size: float = 6.0
    frame: Union[str, int, Sequence[int]] = "all"

    def __post_init__(self) -> None:
        _check_anchor(self.position)
        if self.length <= 0 or self.pixel_size <= 0:
            raise ValueError("Scale bar length and pixel size must be positive")

    @property
    def length_px(self) -> float:
        return self.length / self.pixel_size

    @property
    def text(self) -> str:
        if self.label is not None:
            return self.label
        return f"{self.length:g} {self.unit}".strip()

    def applies_to(self, index: int) -> bool:
        if isinstance(self.frame, str):
            if self.frame != "all":
                raise ValueError(f"Unknown scale bar frame {self.frame!r}")
            return True
        if isinstance(self.frame, int):
            return index == self.frame
        return index in set(self.frame)


@dataclass(frozen=True)
class TitleOptions:
    text: Optional[Sequence[str]] = None
    position: str = "top"
    colour: str = "white"
    margin: Tuple[float, float] = (10.0, 10.0)
    font_size: float = 8.0
    font_weight: str = "normal"

    def __post_init__(self) -> None:
        _check_anchor(self.position)


@dataclass(frozen=True)
class LegendOptions:
    """Legend sizing; font sizes are given per 100 pixels of the largest image."""

    colour_by_title_size: float = 7.0
    colour_by_title_weight: str = "bold"
    colour_by_label_size: float = 5.0
    colour_by_label_weight: str = "normal"
    outline_by_title_size: float = 7.0
    outline_by_title_weight: str = "bold"
    outline_by_label_size: float = 5.0
    outline_by_label_weight: str = "normal"
    width_fraction: float = 0.35
    margin: float = 5.0
    colour: str = "black"

    def fonts(self, section: str) -> Tuple[float, str, float, str]:
        if section not in LEGEND_SECTIONS:
            raise ValueError(f"Unknown legend section {section!r}")
        return (
            getattr(self, f"{section}_title_size"),
            getattr(self, f"{section}_title_weight"),
            getattr(self, f"{section}_label_size"),
            getattr(self, f"{section}_label_weight"),
        )


@dataclass(frozen=True)
class TilePlacement:
    index: int
    row: int
    col: int
    y0: float
    x0: float
    height: int
    width: int


@dataclass(frozen=True)
class ScaleBarGeometry:
    """Scale bar in tile-local pixel coordinates (x to the right, y down)."""

    tile: int
    x0: float
    x1: float
    y: float
    line_width: float
    colour: str
    label: str
    label_x: float
    label_y: float
    label_va: str
    font_size: float


@dataclass(frozen=True)
class TitleGeometry:
    tile: int
    text: str
    x: float
    y: float
    ha: str
    va: str
    colour: str
    font_size: float
    font_weight: str


@dataclass(frozen=True)
class LegendBox:
    section: str
    x0: float
    y0: float
    width: float
    height: float
    title_size: float
    title_weight: str
    label_size: float
    label_weight: str


@dataclass(frozen=True)
class LegendGeometry:
    x0: float
    y0: float
    width: float
    height: float
    colour: str
    boxes: Tuple[LegendBox, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BatchLayout:
    tiles: Tuple[TilePlacement, ...]
    nrows: int
    ncols: int
    cell_height: int
    cell_width: int
    canvas_height: float
    canvas_width: float
    text_scale: float
    scale_bars: Tuple[ScaleBarGeometry, ...] = ()
    titles: Tuple[TitleGeometry, ...] = ()
    legend: Optional[LegendGeometry] = None


def _check_anchor(anchor: str) -> None:
    if anchor not in ANCHORS:
        raise ValueError(f"Unknown anchor {anchor!r}; expected one of {', '.join(ANCHORS)}")


def _horizontal(anchor: str) -> str:
    if anchor.endswith("left"):
        return "left"
    if anchor.endswith("right"):
        return "right"
    return "center"


def grid_shape(count: int, ncols: Optional[int] = None) -> Tuple[int, int]:
    """Return ``(nrows, ncols)`` for ``count`` tiles, as square as possible by default."""
    if count < 1:
        raise ValueError("At least one image is needed for a layout")
    if ncols is None:
        ncols = math.ceil(math.sqrt(count))
    if ncols < 1:
        raise ValueError("ncols must be at least 1")
    ncols = min(ncols, count)
    return math.ceil(count / ncols), ncols


def scale_bar_geometry(
    options: ScaleBarOptions,
    tile: int,
    shape: Shape,
    *,
    text_scale: float,
) -> ScaleBarGeometry:
    height, width = shape
    margin_x, margin_y = options.margin
    length = options.length_px
    if length > width - 2 * margin_x:
        raise ValueError(
            f"A {options.text!r} scale bar is {length:g} px long and does not fit an image "
            f"{width} px wide with {margin_x:g} px margins; use a shorter length or scale_bar=None"
        )
    line_width = options.line_width * text_scale
    horizontal = _horizontal(options.position)
    if horizontal == "left":
        x0 = margin_x
    elif horizontal == "right":
        x0 = width - margin_x - length
    else:
        x0 = (width - length) / 2.0
    if options.position.startswith("top"):
        y = margin_y
        label_y = y + line_width
        label_va = "top"
    else:
        y = height - margin_y
        label_y = y - line_width
        label_va = "bottom"
    return ScaleBarGeometry(
        tile=tile,
        x0=x0,
        x1=x0 + length,
        y=y,
        line_width=line_width,
        colour=options.colour,
        label=options.text,
        label_x=x0 + length / 2.0,
        label_y=label_y,
        label_va=label_va,
        font_size=options.font_size * text_scale,
    )


def title_geometry(
    options: TitleOptions,
    tile: int,
    text: str,
    shape: Shape,
    *,
    text_scale: float,
) -> TitleGeometry:
    height, width = shape
    margin_x, margin_y = options.margin
    horizontal = _horizontal(options.position)
    if horizontal == "left":
        x, ha = margin_x, "left"
    elif horizontal == "right":
        x, ha = width - margin_x, "right"
    else:
        x, ha = width / 2.0, "center"
    if options.position.startswith("top"):
        y, va = margin_y, "top"
    else:
        y, va = height - margin_y, "bottom"
    return TitleGeometry(
        tile=tile,
        text=text,
        x=x,
        y=y,
        ha=ha,
        va=va,
        colour=options.colour,
        font_size=options.font_size * text_scale,
        font_weight=options.font_weight,
    )


def legend_geometry(
    options: LegendOptions,
    sections: Sequence[str],
    *,
    x0: float,
    height: float,
    cell_width: int,
    text_scale: float,
) -> LegendGeometry:
    """Stack one box per legend entry in a panel proportional to the largest image."""
    width = max(1.0, options.width_fraction * cell_width)
    inner_x = x0 + options.margin
    inner_width = max(1.0, width - 2 * options.margin)
    boxes: List[LegendBox] = []
    if sections:
        box_height = max(1.0, (height - options.margin * (len(sections) + 1)) / len(sections))
        y = options.margin
        for section in sections:
            title_size, title_weight, label_size, label_weight = options.fonts(section)
            boxes.append(
                LegendBox(
                    section=section,
                    x0=inner_x,
                    y0=y,
                    width=inner_width,
                    height=box_height,
                    title_size=title_size * text_scale,
                    title_weight=title_weight,
                    label_size=label_size * text_scale,
                    label_weight=label_weight,
                )
            )
            y += box_height + options.margin
    return LegendGeometry(
        x0=x0,
        y0=0.0,
        width=width,
        height=height,
        colour=options.colour,
        boxes=tuple(boxes),
    )


def compute_layout(
    shapes: Sequence[Shape],
    *,
    margin: float = 0.0,
    ncols: Optional[int] = None,
    reference_shape: Optional[Shape] = None,
    indices: Optional[Sequence[int]] = None,
    names: Optional[Sequence[str]] = None,
    scale_bar: Optional[ScaleBarOptions] = None,
    image_title: Optional[TitleOptions] = None,
    legend: Optional[LegendOptions] = None,
    legend_sections: Sequence[str] = (),
) -> BatchLayout:
    """Compute the complete layout for ``shapes`` (``(height, width)`` per image).

    Parameters
    ----------
    reference_shape:
        Dimensions that text and legend sizes scale with. Defaults to the
        largest height and width among ``shapes``; pass the batch maximum when
        laying out images one at a time.
    indices:
        Batch index of every shape, used to pick title text and scale bar
        frames. Defaults to ``0 .. n-1``.
    names:
        Fallback titles indexed by batch index when ``image_title.text`` is unset.
    legend_sections:
        One entry (``"colour_by"`` or ``"outline_by"``) per legend item.
    """
    if not shapes:
        raise ValueError("At least one image is needed for a layout")
    if margin < 0:
        raise ValueError("margin must not be negative")
    indices = list(range(len(shapes))) if indices is None else list(indices)
    if len(indices) != len(shapes):
        raise ValueError("indices must have one entry per shape")

    cell_height = max(int(s[0]) for s in shapes)
    cell_width = max(int(s[1]) for s in shapes)
    ref_height, ref_width = reference_shape or (cell_height, cell_width)
    text_scale = max(ref_height, ref_width) / REFERENCE_SIZE

    nrows, ncols = grid_shape(len(shapes), ncols)
    tiles: List[TilePlacement] = []
    for position, (index, shape) in enumerate(zip(indices, shapes)):
        row, col = divmod(position, ncols)
        tiles.append(
            TilePlacement(
                index=index,
                row=row,
                col=col,
                y0=row * (cell_height + margin),
                x0=col * (cell_width + margin),
                height=int(shape[0]),
                width=int(shape[1]),
            )
        )

    grid_height = nrows * cell_height + (nrows - 1) * margin
    grid_width = ncols * cell_width + (ncols - 1) * margin

    scale_bars: List[ScaleBarGeometry] = []
    if scale_bar is not None:
        for tile in tiles:
            if scale_bar.applies_to(tile.index):
                scale_bars.append(
                    scale_bar_geometry(
                        scale_bar, tile.index, (tile.height, tile.width), text_scale=text_scale
                    )
                )

    titles: List[TitleGeometry] = []
    if image_title is not None:
        texts = image_title.text if image_title.text is not None else names
        if texts is not None:
            for tile in tiles:
                if tile.index >= len(texts):
                    raise ValueError(
                        f"No title text for image {tile.index}; {len(texts)} titles given"
                    )
                titles.append(
                    title_geometry(
                        image_title,
                        tile.index,
                        str(texts[tile.index]),
                        (tile.height, tile.width),
                        text_scale=text_scale,
                    )
                )

    legend_geo: Optional[LegendGeometry] = None
    canvas_width = float(grid_width)
    if legend is not None and legend_sections:
        legend_geo = legend_geometry(
            legend,
            legend_sections,
            x0=grid_width + margin,
            height=grid_height,
            cell_width=max(ref_width, cell_width),
            text_scale=text_scale,
        )
        canvas_width = legend_geo.x0 + legend_geo.width

    return BatchLayout(
        tiles=tuple(tiles),
        nrows=nrows,
        ncols=ncols,
        cell_height=cell_height,
        cell_width=cell_width,
        canvas_height=float(grid_height),
        canvas_width=canvas_width,
        text_scale=text_scale,
        scale_bars=tuple(scale_bars),
        titles=tuple(titles),
        legend=legend_geo,
    )


__all__ = [
    "ANCHORS",
    "ScaleBarOptions",
    "TitleOptions",
    "LegendOptions",
    "TilePlacement",
    "ScaleBarGeometry",
    "TitleGeometry",
    "LegendBox",
    "LegendGeometry",
    "BatchLayout",
    "grid_shape",
    "scale_bar_geometry",
    "title_geometry",
    "legend_geometry",
    "compute_layout",
]
