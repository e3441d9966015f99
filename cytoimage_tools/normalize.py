"""Rescale raw intensities of an image collection to the display range ``[0, 1]``."""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .collection import ImageCollection, ImageKind
from .errors import NotFoundError, SchemaError

Range = Tuple[float, float]
InputRange = Union[Range, Mapping[str, Range]]


def normalize(
    collection: ImageCollection,
    *,
    per_image: bool = False,
    percentile_range: Optional[Range] = None,
    input_range: Optional[InputRange] = None,
) -> ImageCollection:
    """Return a copy of ``collection`` with every channel linearly scaled to ``[0, 1]``.

    Parameters
    ----------
    collection:
        Intensity collection. Label masks cannot be normalised.
    per_image:
        Compute the channel extremes separately for every image instead of
        across the whole collection.
    percentile_range:
        ``(lo, hi)`` percentiles in ``[0, 100]``. The channel extremes are
        replaced by these percentiles of the pixel distribution, so outliers are
        clipped instead of stretching the range. Each bound is the pixel value
        at or just beyond its percentile, so normalising twice changes nothing.
    input_range:
        Explicit ``(min, max)`` for every channel, or a mapping of channel name
        to ``(min, max)``. Channels with an explicit range ignore the computed
        extremes; values outside the range clip to 0 or 1.
    """
    if collection.kind is not ImageKind.INTENSITY:
        raise SchemaError("Label masks cannot be normalised")
    _check_percentile_range(percentile_range)
    fixed = _resolve_input_range(input_range, collection.channel_names)

    if per_image:
        return collection.map(
            lambda name, array: _rescale(
                array, _channel_bounds([array], percentile_range, fixed)
            )
        )

    bounds = _channel_bounds(collection.images, percentile_range, fixed)
    return collection.map(lambda name, array: _rescale(array, bounds))


def channel_bounds(
    collection: ImageCollection,
    *,
    per_image: bool = False,
    percentile_range: Optional[Range] = None,
    input_range: Optional[InputRange] = None,
) -> Dict[str, Range]:
    """Return the ``(low, high)`` intensities that :func:`normalize` maps to 0 and 1.

    With ``per_image`` every image has bounds of its own; the returned range per
    channel then runs from the lowest to the highest of them.
    """
    if collection.kind is not ImageKind.INTENSITY:
        raise SchemaError("Label masks have no intensity bounds")
    _check_percentile_range(percentile_range)
    channel_names = collection.channel_names
    fixed = _resolve_input_range(input_range, channel_names)
    if per_image:
        scopes = [_channel_bounds([array], percentile_range, fixed) for array in collection.images]
    else:
        scopes = [_channel_bounds(collection.images, percentile_range, fixed)]

    envelope: Dict[str, Range] = {}
    for index, name in enumerate(channel_names):
        found = [bounds[index] for bounds in scopes if index in bounds]
        if not found:
            envelope[name] = fixed.get(index, (0.0, 0.0))
            continue
        envelope[name] = (min(low for low, _ in found), max(high for _, high in found))
    return envelope


def _check_percentile_range(percentile_range: Optional[Range]) -> None:
    if percentile_range is None:
        return
    lo, hi = (float(v) for v in percentile_range)
    if not 0.0 <= lo < hi <= 100.0:
        raise ValueError(f"percentile_range must satisfy 0 <= lo < hi <= 100, got {percentile_range}")


def _resolve_input_range(
    input_range: Optional[InputRange],
    channel_names: Sequence[str],
) -> Dict[int, Range]:
    if input_range is None:
        return {}
    if isinstance(input_range, Mapping):
        unknown = [name for name in input_range if name not in channel_names]
        if unknown:
            raise NotFoundError(f"Channels not found: {', '.join(map(repr, unknown))}")
        pairs = {channel_names.index(name): value for name, value in input_range.items()}
    else:
        pairs = {index: input_range for index in range(len(channel_names))}
    resolved: Dict[int, Range] = {}
    for index, (low, high) in pairs.items():
        low, high = float(low), float(high)
        if not high > low:
            raise ValueError(
                f"Input range for channel {channel_names[index]!r} must have max > min"
            )
        resolved[index] = (low, high)
    return resolved


def _channel_bounds(
    arrays: Sequence[np.ndarray],
    percentile_range: Optional[Range],
    fixed: Mapping[int, Range],
) -> Dict[int, Range]:
    if not arrays:
        return {}
    channel_count = arrays[0].shape[-1]
    bounds: Dict[int, Range] = {}
    for channel in range(channel_count):
        if channel in fixed:
            bounds[channel] = fixed[channel]
            continue
        values = np.concatenate([array[..., channel].ravel() for array in arrays])
        values = values[np.isfinite(values)]
        if values.size == 0:
            bounds[channel] = (0.0, 0.0)
        elif percentile_range is not None:
            # Bounds are actual samples so a second pass maps them to exactly 0 and 1.
            low = np.percentile(values, percentile_range[0], method="lower")
            high = np.percentile(values, percentile_range[1], method="higher")
            bounds[channel] = (float(low), float(high))
        else:
            bounds[channel] = (float(values.min()), float(values.max()))
    return bounds


def _rescale(array: np.ndarray, bounds: Mapping[int, Range]) -> np.ndarray:
    scaled = np.zeros(array.shape, dtype=np.float64)
    for channel, (low, high) in bounds.items():
        span = high - low
        if span <= 0:
            # A flat channel carries no contrast.
            continue
        scaled[..., channel] = np.clip((array[..., channel] - low) / span, 0.0, 1.0)
    return np.nan_to_num(scaled, nan=0.0)


__all__ = ["normalize", "channel_bounds", "Range", "InputRange"]
