"""Entry points that turn image collections and cell tables into composites.

* :func:`plot_pixels` – blend selected channels of multi-channel images and
  optionally outline the cells of matching label masks.
* :func:`plot_cells` – colour the cells of label masks by per-cell features or
  metadata and optionally outline them by another column.

Both return a :class:`PlotResult` carrying the composite rasters and/or the
assembled matplotlib display, and can save the display to disk.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .cells import CellTable
from .collection import ImageCollection, ImageKind
from .colors import (
    RGB,
    ContinuousColorSpec,
    DiscreteColorSpec,
    build_color_spec,
    default_discrete_spec,
    ramp_from_black,
    to_rgb,
)
from .compositor import (
    BCG,
    blend_channels,
    check_channel_count,
    colour_cells_by_category,
    colour_cells_by_features,
    paint_cells,
)
from .config import DEFAULTS, PlotDefaults
from .errors import NotFoundError, SchemaError
from .io import save_plot as _write_plot
from .layout import LegendOptions, ScaleBarOptions, TitleOptions, compute_layout
from .normalize import InputRange, Range, channel_bounds, normalize
from .outline import outline_cells
from .rendering import DEFAULT_DPI, LegendEntry, assemble_display

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Key = Union[str, int]
OUTLINE_COLOUR: RGB = (1.0, 1.0, 1.0)
CELL_COLOUR: RGB = (1.0, 1.0, 1.0)
DISPLAY_MODES = ("all", "single")


@dataclass
class PlotResult:
    """Rasters and/or displays produced by a plotting call, in input order."""

    names: List[str]
    images: Optional[List[np.ndarray]] = None
    plot: Optional[Union[plt.Figure, List[plt.Figure]]] = None
    saved: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class _DisplayOptions:
    display: str
    margin: float
    ncols: Optional[int]
    interpolate: bool
    scale_bar: Optional[ScaleBarOptions]
    image_title: Optional[TitleOptions]
    legend: Optional[LegendOptions]
    return_plot: bool
    return_images: bool
    save_plot: Optional[PathLike]
    save_scale: float
    dpi: int


def plot_pixels(
    images: ImageCollection,
    mask: Optional[ImageCollection] = None,
    cell_table: Optional[CellTable] = None,
    *,
    colour_by: Optional[Sequence[Key]] = None,
    outline_by: Optional[str] = None,
    bcg: Optional[Mapping[str, BCG]] = None,
    colour: Optional[Mapping[str, Any]] = None,
    exprs_values: Optional[str] = None,
    img_id: Optional[str] = None,
    cell_id: Optional[str] = None,
    subset_images: Optional[Union[Key, Sequence[Key]]] = None,
    scale: bool = True,
    per_image: bool = False,
    percentile_range: Optional[Range] = None,
    input_range: Optional[InputRange] = None,
    thick: int = 1,
    missing_colour: Any = None,
    saturation: Optional[str] = None,
    defaults: Optional[PlotDefaults] = None,
    display: str = "all",
    margin: float = 0.0,
    ncols: Optional[int] = None,
    interpolate: bool = False,
    scale_bar: Optional[ScaleBarOptions] = ScaleBarOptions(),
    image_title: Optional[TitleOptions] = TitleOptions(),
    legend: Optional[LegendOptions] = LegendOptions(),
    return_plot: bool = False,
    return_images: bool = True,
    save_plot: Optional[PathLike] = None,
    save_scale: float = 1.0,
    dpi: int = DEFAULT_DPI,
) -> PlotResult:
    """Blend the ``colour_by`` channels of ``images`` into RGB composites.

    Parameters
    ----------
    images:
        Intensity collection holding the channels to display.
    mask:
        Optional label masks, matched to ``images`` by the id column. Without
        ``outline_by`` every cell is outlined in white.
    cell_table:
        Per-cell records used when ``outline_by`` is set.
    colour_by:
        Channel names (or indices), at most ``defaults.max_channels``. Defaults
        to the first channel.
    bcg:
        Mapping of channel name to a ``(brightness, contrast, gamma)`` triple.
    colour:
        Mapping of channel name or ``outline_by`` column to a colour
        specification (a ramp of colours, or a category -> colour mapping).
    img_id, cell_id:
        Columns joining images, masks and the cell table. Default to the
        collection id column and the cell table's own key columns.
    scale:
        Normalise the selected channels to ``[0, 1]`` before blending (across the
        batch, or per image with ``per_image``). ``False`` uses the values as
        they are.
    display:
        ``"all"`` assembles one grid; ``"single"`` one display per image.
    """
    defaults = defaults or DEFAULTS
    saturation = saturation or defaults.saturation
    missing = to_rgb(missing_colour) if missing_colour is not None else defaults.missing_colour
    options = _display_options(
        display, margin, ncols, interpolate, scale_bar, image_title, legend,
        return_plot, return_images, save_plot, save_scale, dpi,
    )

    if images.kind is not ImageKind.INTENSITY:
        raise SchemaError("plot_pixels needs an intensity collection as images")
    if colour_by is None:
        colour_by = list(images.channel_names[:1])
    elif isinstance(colour_by, (str, int)):
        colour_by = [colour_by]
    check_channel_count(len(colour_by), limit=defaults.max_channels)
    channel_indices = images.resolve_channels(colour_by)
    channel_names = [images.channel_names[i] for i in channel_indices]
    colour = dict(colour or {})
    bcg = dict(bcg or {})
    unknown_bcg = [name for name in bcg if name not in channel_names]
    if unknown_bcg:
        raise NotFoundError(
            f"bcg given for channels not in colour_by: {', '.join(map(repr, unknown_bcg))}"
        )

    if subset_images is not None:
        images = images.get(subset_images)
    image_ids = images.ids(img_id)
    masks = _match_masks(images, mask, img_id)
    cell_table = _rekey(cell_table, img_id, cell_id)
    if cell_table is not None and outline_by is not None:
        _check_cell_columns(cell_table, [outline_by], exprs_values)

    input_range = _selected_input_range(input_range, images.channel_names, channel_names)
    selected = images.get_channels(channel_names)
    if scale:
        value_ranges = channel_bounds(
            selected,
            per_image=per_image,
            percentile_range=percentile_range,
            input_range=input_range,
        )
        selected = normalize(
            selected,
            per_image=per_image,
            percentile_range=percentile_range,
            input_range=input_range,
        )
    else:
        value_ranges = {name: (0.0, 1.0) for name in channel_names}

    specs: List[ContinuousColorSpec] = []
    for position, name in enumerate(channel_names):
        if name in colour:
            spec = build_color_spec(colour[name])
            if not isinstance(spec, ContinuousColorSpec):
                raise ValueError(f"Channel {name!r} needs a colour ramp, not a category mapping")
        else:
            spec = ramp_from_black(defaults.channel_palette[position % len(defaults.channel_palette)])
        specs.append(spec)
    triples = [bcg.get(name) for name in channel_names]

    if outline_by is not None and masks is None:
        raise SchemaError("outline_by needs label masks")
    outline = _OutlineColours.build(cell_table, outline_by, colour, exprs_values, defaults, missing)

    rasters: List[np.ndarray] = []
    for index, (name, array) in enumerate(selected.items()):
        raster = blend_channels(
            [array[..., c] for c in range(array.shape[-1])],
            specs,
            bcg=triples,
            saturation=saturation,
            limit=defaults.max_channels,
        )
        if masks is not None:
            raster = outline.apply(raster, masks.images[index], image_ids[index], thick)
        rasters.append(raster)
    logger.debug("Composed %d images from channels %s", len(rasters), channel_names)

    entries = [
        LegendEntry(title=name, spec=spec, value_range=value_ranges[name])
        for name, spec in zip(channel_names, specs)
    ]
    entries.extend(outline.legend_entries())
    return _finish(images.names, rasters, entries, options)


def plot_cells(
    mask: ImageCollection,
    cell_table: Optional[CellTable] = None,
    *,
    colour_by: Optional[Union[str, Sequence[str]]] = None,
    outline_by: Optional[str] = None,
    exprs_values: Optional[str] = None,
    img_id: Optional[str] = None,
    cell_id: Optional[str] = None,
    colour: Optional[Mapping[str, Any]] = None,
    subset_images: Optional[Union[Key, Sequence[Key]]] = None,
    scale: bool = True,
    thick: int = 1,
    background_colour: Any = None,
    missing_colour: Any = None,
    saturation: Optional[str] = None,
    defaults: Optional[PlotDefaults] = None,
    display: str = "all",
    margin: float = 0.0,
    ncols: Optional[int] = None,
    interpolate: bool = False,
    scale_bar: Optional[ScaleBarOptions] = ScaleBarOptions(),
    image_title: Optional[TitleOptions] = TitleOptions(),
    legend: Optional[LegendOptions] = LegendOptions(),
    return_plot: bool = False,
    return_images: bool = True,
    save_plot: Optional[PathLike] = None,
    save_scale: float = 1.0,
    dpi: int = DEFAULT_DPI,
) -> PlotResult:
    """Colour the cells of ``mask`` by columns of ``cell_table``.

    A single categorical ``colour_by`` column paints each cell with its
    category colour. Continuous columns (features of the ``exprs_values`` layer
    or numeric metadata) are ramped and, when several are given, blended
    additively. Cells without a record are painted with the missing colour,
    background pixels with the background colour.
    """
    defaults = defaults or DEFAULTS
    saturation = saturation or defaults.saturation
    background = to_rgb(background_colour) if background_colour is not None else defaults.background_colour
    missing = to_rgb(missing_colour) if missing_colour is not None else defaults.missing_colour
    options = _display_options(
        display, margin, ncols, interpolate, scale_bar, image_title, legend,
        return_plot, return_images, save_plot, save_scale, dpi,
    )

    if mask.kind is not ImageKind.LABEL:
        raise SchemaError("plot_cells needs a label mask collection")
    if isinstance(colour_by, str):
        colour_by = [colour_by]
    colour_by = list(colour_by or [])
    check_channel_count(len(colour_by), limit=defaults.max_channels)
    if (colour_by or outline_by is not None) and cell_table is None:
        raise SchemaError("colour_by and outline_by need a cell table")
    colour = dict(colour or {})

    if subset_images is not None:
        mask = mask.get(subset_images)
    cell_table = _rekey(cell_table, img_id, cell_id)
    if cell_table is not None:
        _check_cell_columns(cell_table, colour_by + ([outline_by] if outline_by else []), exprs_values)

    entries: List[LegendEntry] = []
    painter: _CellPainter
    if not colour_by:
        painter = _CellPainter.uniform()
    else:
        continuous = [cell_table.is_continuous(c, layer=exprs_values) for c in colour_by]
        if len(colour_by) == 1 and not continuous[0]:
            painter = _CellPainter.categorical(cell_table, colour_by[0], colour, exprs_values, defaults)
        elif all(continuous):
            painter = _CellPainter.continuous(cell_table, colour_by, colour, exprs_values, defaults, scale)
        else:
            raise ValueError("Several colour_by columns can only be blended when all are continuous")
        entries.extend(painter.legend_entries)

    outline = _OutlineColours.build(cell_table, outline_by, colour, exprs_values, defaults, missing)

    rasters: List[np.ndarray] = []
    unmatched = 0
    for (name, labels), image_id in zip(mask.items(), mask.ids(img_id)):
        raster = painter.paint(
            labels,
            image_id,
            background=background,
            missing=missing,
            saturation=saturation,
            limit=defaults.max_channels,
        )
        if cell_table is not None and colour_by:
            present = np.unique(labels[labels != 0])
            unmatched += int(np.setdiff1d(present, cell_table.cell_ids_for_image(image_id)).size)
        if outline_by is not None:
            raster = outline.apply(raster, labels, image_id, thick)
        rasters.append(raster)
    logger.debug("Coloured %d masks by %s (%d cells without records)", len(rasters), colour_by, unmatched)

    entries.extend(outline.legend_entries())
    return _finish(mask.names, rasters, entries, options)


# ----------------------------------------------------------------------
# Helpers


def _display_options(
    display, margin, ncols, interpolate, scale_bar, image_title, legend,
    return_plot, return_images, save_plot, save_scale, dpi,
) -> _DisplayOptions:
    if display not in DISPLAY_MODES:
        raise ValueError(f"display must be one of {DISPLAY_MODES}, got {display!r}")
    if save_scale <= 0:
        raise ValueError("save_scale must be positive")
    return _DisplayOptions(
        display=display,
        margin=margin,
        ncols=ncols,
        interpolate=interpolate,
        scale_bar=scale_bar,
        image_title=image_title,
        legend=legend,
        return_plot=return_plot,
        return_images=return_images,
        save_plot=save_plot,
        save_scale=save_scale,
        dpi=dpi,
    )


def _match_masks(
    images: ImageCollection,
    mask: Optional[ImageCollection],
    img_id: Optional[str] = None,
) -> Optional[ImageCollection]:
    """Return the masks of ``images`` in image order, joined on the id column."""
    if mask is None:
        return None
    if mask.kind is not ImageKind.LABEL:
        raise SchemaError("mask must be a label mask collection")
    matched = mask.get_by_id(images.ids(img_id), column=img_id)
    for (name, image), labels in zip(images.items(), matched.images):
        if image.shape[:2] != labels.shape:
            raise SchemaError(
                f"Mask for {name!r} is {labels.shape}, image is {image.shape[:2]}"
            )
    return matched


def _rekey(
    cell_table: Optional[CellTable],
    img_id: Optional[str],
    cell_id: Optional[str],
) -> Optional[CellTable]:
    if cell_table is None or (img_id is None and cell_id is None):
        return cell_table
    return cell_table.rekeyed(image_id_column=img_id, cell_id_column=cell_id)


def _check_cell_columns(
    cell_table: CellTable,
    columns: Sequence[str],
    exprs_values: Optional[str],
) -> None:
    if exprs_values is not None and exprs_values not in cell_table.layer_names:
        raise NotFoundError(
            f"Expression layer {exprs_values!r} not found; available: {cell_table.layer_names}"
        )
    missing = [c for c in columns if not cell_table.has_column(c, layer=exprs_values)]
    if missing:
        raise NotFoundError(
            f"Columns not found: {', '.join(map(repr, missing))}; features in "
            f"{exprs_values!r}: {cell_table.features(exprs_values)}"
        )


def _selected_input_range(
    input_range: Optional[InputRange],
    available: Sequence[str],
    selected: Sequence[str],
) -> Optional[InputRange]:
    """Keep the per-channel ranges of the selected channels only."""
    if not isinstance(input_range, Mapping):
        return input_range
    unknown = [name for name in input_range if name not in available]
    if unknown:
        raise NotFoundError(f"input_range given for unknown channels: {', '.join(map(repr, unknown))}")
    return {name: bounds for name, bounds in input_range.items() if name in selected}


def _scaled_column(values: pd.Series, scale: bool) -> pd.Series:
    data = values.astype(np.float64)
    if not scale:
        return data.clip(0.0, 1.0)
    low, high = data.min(), data.max()
    if not np.isfinite(low) or high <= low:
        return data.where(data.isna(), 0.0)
    return (data - low) / (high - low)


def _category_spec(
    cell_table: CellTable,
    column: str,
    colour: Mapping[str, Any],
    exprs_values: Optional[str],
    defaults: PlotDefaults,
) -> Tuple[DiscreteColorSpec, List[Any]]:
    values = cell_table.column(column, layer=exprs_values).dropna()
    categories = sorted(values.unique(), key=lambda c: (str(type(c)), str(c)))
    if column in colour:
        spec = build_color_spec(colour[column])
        if not isinstance(spec, DiscreteColorSpec):
            raise ValueError(f"Column {column!r} is categorical and needs a category mapping")
    else:
        spec = default_discrete_spec(categories, palette=defaults.discrete_palette)
    return spec, categories


class _CellPainter:
    """Paints one mask according to the ``colour_by`` selection of :func:`plot_cells`."""

    def __init__(self, mode: str, **state: Any) -> None:
        self.mode = mode
        self.state = state
        self.legend_entries: List[LegendEntry] = state.pop("legend_entries", [])

    @classmethod
    def uniform(cls) -> "_CellPainter":
        return cls("uniform")

    @classmethod
    def categorical(cls, cell_table, column, colour, exprs_values, defaults) -> "_CellPainter":
        spec, categories = _category_spec(cell_table, column, colour, exprs_values, defaults)
        # Fail before rendering when a present category has no colour.
        spec.map(categories)
        return cls(
            "categorical",
            cell_table=cell_table,
            column=column,
            exprs_values=exprs_values,
            spec=spec,
            legend_entries=[LegendEntry(title=column, spec=spec, categories=categories)],
        )

    @classmethod
    def continuous(cls, cell_table, columns, colour, exprs_values, defaults, scale) -> "_CellPainter":
        specs: List[ContinuousColorSpec] = []
        scaled: List[pd.Series] = []
        entries: List[LegendEntry] = []
        palette = defaults.channel_palette
        for position, column in enumerate(columns):
            if column in colour:
                spec = build_color_spec(colour[column])
                if not isinstance(spec, ContinuousColorSpec):
                    raise ValueError(f"Column {column!r} is continuous and needs a colour ramp")
            elif len(columns) == 1:
                spec = ContinuousColorSpec(defaults.continuous_ramp)
            else:
                spec = ramp_from_black(palette[position % len(palette)])
            raw = cell_table.column(column, layer=exprs_values).astype(np.float64)
            specs.append(spec)
            scaled.append(_scaled_column(raw, scale))
            value_range = (float(raw.min()), float(raw.max())) if scale else (0.0, 1.0)
            entries.append(LegendEntry(title=column, spec=spec, value_range=value_range))
        return cls(
            "continuous",
            cell_table=cell_table,
            columns=list(columns),
            exprs_values=exprs_values,
            specs=specs,
            scaled=scaled,
            legend_entries=entries,
        )

    def paint(self, labels, image_id, *, background, missing, saturation, limit) -> np.ndarray:
        if self.mode == "uniform":
            cell_ids = np.unique(labels[labels != 0])
            return paint_cells(
                labels,
                {int(i): CELL_COLOUR for i in cell_ids},
                background_colour=background,
                missing_colour=missing,
            )
        table: CellTable = self.state["cell_table"]
        if self.mode == "categorical":
            values = table.values_for_image(
                image_id, self.state["column"], layer=self.state["exprs_values"]
            )
            return colour_cells_by_category(
                labels,
                values,
                self.state["spec"],
                background_colour=background,
                missing_colour=missing,
            )
        features = [
            table.values_for_image(image_id, column, layer=self.state["exprs_values"], values=values)
            for column, values in zip(self.state["columns"], self.state["scaled"])
        ]
        return colour_cells_by_features(
            labels,
            features,
            self.state["specs"],
            background_colour=background,
            missing_colour=missing,
            saturation=saturation,
            limit=limit,
        )


class _OutlineColours:
    """Per-cell outline colours for the ``outline_by`` column (or plain white outlines)."""

    def __init__(
        self,
        *,
        cell_table: Optional[CellTable] = None,
        column: Optional[str] = None,
        exprs_values: Optional[str] = None,
        spec: Optional[Union[ContinuousColorSpec, DiscreteColorSpec]] = None,
        scaled: Optional[pd.Series] = None,
        missing: RGB = (0.5, 0.5, 0.5),
        entry: Optional[LegendEntry] = None,
    ) -> None:
        self.cell_table = cell_table
        self.column = column
        self.exprs_values = exprs_values
        self.spec = spec
        self.scaled = scaled
        self.missing = missing
        self.entry = entry

    @classmethod
    def build(cls, cell_table, column, colour, exprs_values, defaults, missing) -> "_OutlineColours":
        if column is None:
            return cls()
        if cell_table is None:
            raise SchemaError("outline_by needs a cell table")
        if cell_table.is_continuous(column, layer=exprs_values):
            raw = cell_table.column(column, layer=exprs_values).astype(np.float64)
            spec = build_color_spec(colour[column]) if column in colour else ContinuousColorSpec(defaults.continuous_ramp)
            if not isinstance(spec, ContinuousColorSpec):
                raise ValueError(f"Column {column!r} is continuous and needs a colour ramp")
            entry = LegendEntry(
                title=column,
                spec=spec,
                section="outline_by",
                value_range=(float(raw.min()), float(raw.max())),
            )
            return cls(
                cell_table=cell_table,
                column=column,
                exprs_values=exprs_values,
                spec=spec,
                scaled=_scaled_column(raw, True),
                missing=missing,
                entry=entry,
            )
        spec, categories = _category_spec(cell_table, column, colour, exprs_values, defaults)
        spec.map(categories)
        entry = LegendEntry(title=column, spec=spec, section="outline_by", categories=categories)
        return cls(
            cell_table=cell_table,
            column=column,
            exprs_values=exprs_values,
            spec=spec,
            missing=missing,
            entry=entry,
        )

    def colours_for_image(self, image_id) -> Dict[int, RGB]:
        values = self.cell_table.values_for_image(
            image_id, self.column, layer=self.exprs_values, values=self.scaled
        )
        colours: Dict[int, RGB] = {}
        if isinstance(self.spec, ContinuousColorSpec):
            mapped = self.spec.map(values.to_numpy(dtype=np.float64))
            for cell_id, rgb in zip(values.index, mapped):
                colours[int(cell_id)] = self.missing if np.isnan(rgb).any() else tuple(rgb)
        else:
            for cell_id, category in values.items():
                colours[int(cell_id)] = self.missing if pd.isna(category) else self.spec.lookup(category)
        return colours

    def apply(self, raster: np.ndarray, labels: np.ndarray, image_id, thick: int) -> np.ndarray:
        if self.column is None:
            cell_ids = np.unique(labels[labels != 0])
            colours = {int(i): OUTLINE_COLOUR for i in cell_ids}
        else:
            colours = self.colours_for_image(image_id)
        return outline_cells(raster, labels, colours, thickness=thick)

    def legend_entries(self) -> List[LegendEntry]:
        return [self.entry] if self.entry is not None else []


def _finish(
    names: Sequence[str],
    rasters: List[np.ndarray],
    entries: Sequence[LegendEntry],
    options: _DisplayOptions,
) -> PlotResult:
    result = PlotResult(names=list(names))
    if options.return_images:
        result.images = rasters
    if not (options.return_plot or options.save_plot is not None):
        return result

    shapes = [r.shape[:2] for r in rasters]
    reference = (max(s[0] for s in shapes), max(s[1] for s in shapes))
    sections = [entry.section for entry in entries]

    def _layout(indices: Sequence[int]):
        return compute_layout(
            [shapes[i] for i in indices],
            margin=options.margin,
            ncols=options.ncols,
            reference_shape=reference,
            indices=indices,
            names=names,
            scale_bar=options.scale_bar,
            image_title=options.image_title,
            legend=options.legend,
            legend_sections=sections,
        )

    if options.display == "all":
        figure = assemble_display(
            rasters,
            _layout(list(range(len(rasters)))),
            legend_entries=entries,
            interpolate=options.interpolate,
            dpi=options.dpi,
        )
        figures: List[plt.Figure] = [figure]
    else:
        figures = [
            assemble_display(
                [raster],
                _layout([index]),
                legend_entries=entries,
                interpolate=options.interpolate,
                dpi=options.dpi,
            )
            for index, raster in enumerate(rasters)
        ]

    if options.save_plot is not None:
        target = Path(options.save_plot)
        if options.display == "all":
            result.saved.append(_write_plot(figures[0], target, scale=options.save_scale))
        else:
            for name, figure in zip(names, figures):
                single_path = target.with_name(f"{target.stem}_{name}{target.suffix}")
                result.saved.append(_write_plot(figure, single_path, scale=options.save_scale))

    if options.return_plot:
        result.plot = figures[0] if options.display == "all" else figures
    else:
        for figure in figures:
            plt.close(figure)
    return result


__all__ = ["PlotResult", "plot_pixels", "plot_cells"]
