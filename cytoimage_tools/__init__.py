"""
Compose multi-channel imaging data and label masks into RGB visualisations.

The package normalises and colour-maps channel intensities, blends them into a
single raster, paints or outlines segmented cells by per-cell metadata and lays
out scale bars, titles and legends for one image or a batch. The core entry
points are:

* :func:`plot_pixels` – blend selected channels of an :class:`ImageCollection`
  and outline the cells of matching label masks.
* :func:`plot_cells` – colour label masks by features or metadata of a
  :class:`CellTable`.
* :func:`normalize` – rescale intensities per image or across a collection.
* :func:`merge_channels` – concatenate the channels of two collections.
* :func:`load_images` / :func:`save_plot` – read TIFF stacks and write
  rendered composites.
"""

from .cells import CellTable
from .collection import ImageCollection, ImageKind, merge_channels
from .colors import (
    ContinuousColorSpec,
    DiscreteColorSpec,
    build_color_spec,
    default_discrete_spec,
    to_rgb,
)
from .compositor import adjust_channel, blend_channels, colour_cells_by_features, paint_cells
from .config import DEFAULTS, PlotDefaults, load_plot_defaults
from .errors import (
    CytoImageError,
    MissingMappingError,
    NotFoundError,
    SchemaError,
    TooManyChannelsError,
)
from .io import load_images, save_plot
from .layout import LegendOptions, ScaleBarOptions, TitleOptions, compute_layout
from .normalize import normalize
from .outline import find_cell_boundaries, outline_cells
from .plotting import PlotResult, plot_cells, plot_pixels

__all__ = [
    "CellTable",
    "ImageCollection",
    "ImageKind",
    "merge_channels",
    "ContinuousColorSpec",
    "DiscreteColorSpec",
    "build_color_spec",
    "default_discrete_spec",
    "to_rgb",
    "adjust_channel",
    "blend_channels",
    "colour_cells_by_features",
    "paint_cells",
    "DEFAULTS",
    "PlotDefaults",
    "load_plot_defaults",
    "CytoImageError",
    "MissingMappingError",
    "NotFoundError",
    "SchemaError",
    "TooManyChannelsError",
    "load_images",
    "save_plot",
    "LegendOptions",
    "ScaleBarOptions",
    "TitleOptions",
    "compute_layout",
    "normalize",
    "find_cell_boundaries",
    "outline_cells",
    "PlotResult",
    "plot_cells",
    "plot_pixels",
]
