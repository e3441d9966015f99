"""Map continuous values and discrete categories to RGB colours.

Two colour specifications are supported:

* :class:`ContinuousColorSpec` – an ordered ramp of two or more control
  colours. A value in ``[0, 1]`` is placed at ``v * (k - 1)`` along the ramp
  and interpolated linearly in RGB between the bracketing control colours.
* :class:`DiscreteColorSpec` – a direct lookup from category label to colour,
  with an optional fallback colour for unmapped labels.

Background and missing-record colours are not part of either specification;
the compositor and outliner apply those.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Tuple, Union

import matplotlib
import matplotlib.colors as mcolors
import numpy as np

from .errors import MissingMappingError

RGB = Tuple[float, float, float]
ColorLike = Union[str, Sequence[float]]


def to_rgb(color: ColorLike) -> RGB:
    """Return ``color`` as an ``(r, g, b)`` tuple of floats in ``[0, 1]``.

    Accepts matplotlib colour names, hex strings and RGB(A) tuples. Tuples
    with components above 1 are treated as 8-bit values.
    """
    if isinstance(color, str):
        return tuple(float(c) for c in mcolors.to_rgb(color))  # type: ignore[return-value]
    values = [float(c) for c in color]
    if len(values) not in (3, 4):
        raise ValueError(f"Expected an RGB or RGBA colour, got {color!r}")
    if any(v > 1.0 for v in values[:3]):
        values = [v / 255.0 for v in values]
    r, g, b = (min(1.0, max(0.0, v)) for v in values[:3])
    return (r, g, b)


@dataclass(frozen=True)
class ContinuousColorSpec:
    """Linear colour ramp through ``colors`` (at least two control colours)."""

    colors: Tuple[RGB, ...]

    def __post_init__(self) -> None:
        if len(self.colors) < 2:
            raise ValueError("A continuous colour ramp needs at least two colours")

    @classmethod
    def from_colors(cls, colors: Iterable[ColorLike]) -> "ContinuousColorSpec":
        return cls(tuple(to_rgb(c) for c in colors))

    def map(self, values: Union[float, np.ndarray]) -> np.ndarray:
        """Return an array of shape ``values.shape + (3,)`` of interpolated colours.

        Values are clipped to ``[0, 1]``. ``NaN`` values map to ``NaN`` colours
        so that callers can substitute their missing colour.
        """
        data = np.asarray(values, dtype=np.float64)
        ramp = np.asarray(self.colors, dtype=np.float64)
        k = ramp.shape[0]
        nan_mask = np.isnan(data)
        position = np.clip(np.where(nan_mask, 0.0, data), 0.0, 1.0) * (k - 1)
        lower = np.minimum(np.floor(position).astype(np.intp), k - 2)
        frac = (position - lower)[..., np.newaxis]
        rgb = ramp[lower] * (1.0 - frac) + ramp[lower + 1] * frac
        rgb[nan_mask] = np.nan
        return rgb


@dataclass(frozen=True)
class DiscreteColorSpec:
    """Exact lookup from category label to colour."""

    mapping: Dict[Hashable, RGB] = field(default_factory=dict)
    default: Optional[RGB] = None

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[Hashable, ColorLike],
        *,
        default: Optional[ColorLike] = None,
    ) -> "DiscreteColorSpec":
        return cls(
            {key: to_rgb(value) for key, value in mapping.items()},
            to_rgb(default) if default is not None else None,
        )

    def lookup(self, label: Hashable) -> RGB:
        try:
            return self.mapping[label]
        except KeyError:
            # Labels read from a table may be numpy scalars or strings of numbers.
            for key, value in self.mapping.items():
                if str(key) == str(label):
                    return value
            if self.default is not None:
                return self.default
            raise MissingMappingError(f"No colour is mapped to category {label!r}") from None

    def map(self, labels: Iterable[Hashable]) -> np.ndarray:
        """Return an ``(n, 3)`` array with one colour per label."""
        colours = [self.lookup(label) for label in labels]
        if not colours:
            return np.zeros((0, 3), dtype=np.float64)
        return np.asarray(colours, dtype=np.float64)


ColorSpec = Union[ContinuousColorSpec, DiscreteColorSpec]


def build_color_spec(value: Any) -> ColorSpec:
    """Build a colour specification from user input.

    A mapping produces a :class:`DiscreteColorSpec`; a sequence of two or more
    colours produces a :class:`ContinuousColorSpec`. Existing specifications
    are returned unchanged.
    """
    if isinstance(value, (ContinuousColorSpec, DiscreteColorSpec)):
        return value
    if isinstance(value, Mapping):
        return DiscreteColorSpec.from_mapping(value)
    if isinstance(value, str):
        raise ValueError(
            f"A single colour {value!r} is not a colour specification; "
            "give a ramp of at least two colours or a category mapping"
        )
    return ContinuousColorSpec.from_colors(value)


def default_discrete_spec(
    categories: Iterable[Hashable],
    *,
    palette: str = "tab20",
    default: Optional[RGB] = None,
) -> DiscreteColorSpec:
    """Assign palette colours to ``categories`` in sorted order."""
    unique = sorted({c for c in categories}, key=lambda c: (str(type(c)), str(c)))
    cmap = matplotlib.colormaps[palette]
    count = getattr(cmap, "N", 256)
    mapping: Dict[Hashable, RGB] = {}
    for index, category in enumerate(unique):
        if count <= 20:
            rgba = cmap(index % count)
        else:
            rgba = cmap(index / max(1, len(unique) - 1))
        mapping[category] = (float(rgba[0]), float(rgba[1]), float(rgba[2]))
    return DiscreteColorSpec(mapping, default)


def ramp_from_black(color: ColorLike) -> ContinuousColorSpec:
    """Return a two-colour ramp running from black to ``color``."""
    return ContinuousColorSpec(((0.0, 0.0, 0.0), to_rgb(color)))


__all__ = [
    "RGB",
    "ColorSpec",
    "to_rgb",
    "ContinuousColorSpec",
    "DiscreteColorSpec",
    "build_color_spec",
    "default_discrete_spec",
    "ramp_from_black",
]
