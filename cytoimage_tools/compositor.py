"""Blend channels and paint cells into RGB composite rasters.

All functions return new float arrays of shape ``[h, w, 3]`` with values in
``[0, 1]``; inputs are never modified.
"""
from __future__ import annotations

from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .colors import RGB, ContinuousColorSpec, DiscreteColorSpec
from .errors import TooManyChannelsError

BCG = Tuple[float, float, float]
MAX_CHANNELS = 6


def check_channel_count(count: int, *, limit: int = MAX_CHANNELS) -> None:
    """Raise :class:`TooManyChannelsError` when ``count`` exceeds ``limit``."""
    if count > limit:
        raise TooManyChannelsError(
            f"{count} channels/features requested, at most {limit} can be blended"
        )


def adjust_channel(
    values: np.ndarray,
    brightness: float = 0.0,
    contrast: float = 1.0,
    gamma: float = 1.0,
) -> np.ndarray:
    """Apply ``((v + brightness) * contrast) ** gamma``.

    Negative intermediate values are clamped to 0 before the gamma step.
    """
    data = np.asarray(values, dtype=np.float64)
    adjusted = (data + brightness) * contrast
    if gamma != 1.0:
        adjusted = np.power(np.clip(adjusted, 0.0, None), gamma)
    return adjusted


def finalize_composite(composite: np.ndarray, *, saturation: str = "clip") -> np.ndarray:
    """Bring an accumulated composite back into ``[0, 1]``.

    ``"clip"`` clips every subchannel at 1 so brighter combinations stay
    distinguishable. ``"rescale"`` divides the whole image by its maximum when
    that exceeds 1.
    """
    composite = np.nan_to_num(composite, nan=0.0)
    if saturation == "rescale":
        peak = float(composite.max()) if composite.size else 0.0
        if peak > 1.0:
            composite = composite / peak
    elif saturation != "clip":
        raise ValueError(f"Unknown saturation policy {saturation!r}")
    return np.clip(composite, 0.0, 1.0)


def blend_channels(
    channels: Sequence[np.ndarray],
    colors: Sequence[ContinuousColorSpec],
    *,
    bcg: Optional[Sequence[Optional[BCG]]] = None,
    saturation: str = "clip",
    limit: int = MAX_CHANNELS,
) -> np.ndarray:
    """Additively blend ``channels`` (each ``[h, w]``, scaled to ``[0, 1]``).

    Every channel is adjusted with its brightness/contrast/gamma triple, mapped
    through its colour ramp and summed per RGB subchannel.
    """
    if len(channels) != len(colors):
        raise ValueError("Every channel needs exactly one colour specification")
    if not channels:
        raise ValueError("At least one channel must be provided")
    check_channel_count(len(channels), limit=limit)
    if bcg is None:
        bcg = [None] * len(channels)

    height, width = np.asarray(channels[0]).shape[:2]
    composite = np.zeros((height, width, 3), dtype=np.float64)
    for values, spec, triple in zip(channels, colors, bcg):
        data = np.asarray(values, dtype=np.float64)
        if data.shape[:2] != (height, width):
            raise ValueError("All channels must share the same pixel dimensions")
        if triple is not None:
            data = adjust_channel(data, *triple)
        composite += np.nan_to_num(spec.map(data), nan=0.0)
    return finalize_composite(composite, saturation=saturation)


def paint_cells(
    mask: np.ndarray,
    cell_colors: Mapping[int, RGB],
    *,
    background_colour: RGB = (0.0, 0.0, 0.0),
    missing_colour: RGB = (0.5, 0.5, 0.5),
) -> np.ndarray:
    """Paint every cell of ``mask`` with its colour.

    Background pixels get ``background_colour``; cells without an entry in
    ``cell_colors`` get ``missing_colour``.
    """
    labels = np.asarray(mask)
    raster = np.empty(labels.shape + (3,), dtype=np.float64)
    raster[...] = missing_colour
    raster[labels == 0] = background_colour
    if cell_colors:
        ids = np.fromiter(cell_colors.keys(), dtype=np.int64, count=len(cell_colors))
        table = np.asarray([cell_colors[i] for i in cell_colors], dtype=np.float64)
        present = np.isin(labels, ids) & (labels != 0)
        order = np.argsort(ids)
        positions = np.searchsorted(ids[order], labels[present])
        raster[present] = table[order][positions]
    return np.clip(raster, 0.0, 1.0)


def colour_cells_by_category(
    mask: np.ndarray,
    values: pd.Series,
    spec: DiscreteColorSpec,
    *,
    background_colour: RGB = (0.0, 0.0, 0.0),
    missing_colour: RGB = (0.5, 0.5, 0.5),
) -> np.ndarray:
    """Paint cells by the category in ``values`` (indexed by cell id)."""
    present = values.dropna()
    colours = {
        int(cell_id): spec.lookup(category) for cell_id, category in present.items()
    }
    return paint_cells(
        mask,
        colours,
        background_colour=background_colour,
        missing_colour=missing_colour,
    )


def colour_cells_by_features(
    mask: np.ndarray,
    features: Sequence[pd.Series],
    colors: Sequence[ContinuousColorSpec],
    *,
    background_colour: RGB = (0.0, 0.0, 0.0),
    missing_colour: RGB = (0.5, 0.5, 0.5),
    saturation: str = "clip",
    limit: int = MAX_CHANNELS,
) -> np.ndarray:
    """Colour cells by one or more continuous features and blend them additively.

    ``features`` are Series indexed by cell id with values already scaled to
    ``[0, 1]``. Cells lacking a record (or with a missing value) in any feature
    are painted with ``missing_colour``; background keeps ``background_colour``.
    """
    if len(features) != len(colors):
        raise ValueError("Every feature needs exactly one colour specification")
    if not features:
        raise ValueError("At least one feature must be provided")
    check_channel_count(len(features), limit=limit)

    labels = np.asarray(mask)
    composite = np.zeros(labels.shape + (3,), dtype=np.float64)
    known = np.ones(labels.shape, dtype=bool)
    for series, spec in zip(features, colors):
        series = series.dropna()
        value_image = np.full(labels.shape, np.nan, dtype=np.float64)
        if not series.empty:
            ids = series.index.to_numpy(dtype=np.int64)
            order = np.argsort(ids)
            sorted_ids = ids[order]
            sorted_values = series.to_numpy(dtype=np.float64)[order]
            present = np.isin(labels, sorted_ids)
            value_image[present] = sorted_values[np.searchsorted(sorted_ids, labels[present])]
        known &= ~np.isnan(value_image)
        composite += np.nan_to_num(spec.map(value_image), nan=0.0)

    raster = finalize_composite(composite, saturation=saturation)
    raster[~known] = missing_colour
    raster[labels == 0] = background_colour
    return raster


__all__ = [
    "MAX_CHANNELS",
    "check_channel_count",
    "adjust_channel",
    "finalize_composite",
    "blend_channels",
    "paint_cells",
    "colour_cells_by_category",
    "colour_cells_by_features",
]
