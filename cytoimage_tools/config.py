"""Immutable plotting defaults.

A single :class:`PlotDefaults` value is created at import time
(:data:`DEFAULTS`) and handed to the rendering calls. Callers wanting other
colours build their own value with :func:`dataclasses.replace` or load one
from JSON with :func:`load_plot_defaults`; nothing mutates the defaults while
images are being rendered.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Tuple, Union

import matplotlib

from .colors import RGB, to_rgb

PathLike = Union[str, Path]

_SATURATION_POLICIES = ("clip", "rescale")


def _sample_colormap(name: str, count: int = 9) -> Tuple[RGB, ...]:
    cmap = matplotlib.colormaps[name]
    if count < 2:
        raise ValueError("A colour ramp needs at least two samples")
    return tuple(
        tuple(float(c) for c in cmap(i / (count - 1))[:3])  # type: ignore[misc]
        for i in range(count)
    )


@dataclass(frozen=True)
class PlotDefaults:
    """Colours and limits used when a rendering call does not override them."""

    background_colour: RGB = (0.0, 0.0, 0.0)
    missing_colour: RGB = (0.5, 0.5, 0.5)
    channel_palette: Tuple[RGB, ...] = (
        (1.0, 0.0, 0.0),  # red
        (0.0, 1.0, 0.0),  # green
        (0.0, 0.0, 1.0),  # blue
        (0.0, 1.0, 1.0),  # cyan
        (1.0, 0.0, 1.0),  # magenta
        (1.0, 1.0, 0.0),  # yellow
    )
    continuous_ramp: Tuple[RGB, ...] = _sample_colormap("viridis")
    discrete_palette: str = "tab20"
    max_channels: int = 6
    saturation: str = "clip"

    def __post_init__(self) -> None:
        if self.saturation not in _SATURATION_POLICIES:
            raise ValueError(
                f"saturation must be one of {_SATURATION_POLICIES}, got {self.saturation!r}"
            )
        if self.max_channels < 1:
            raise ValueError("max_channels must be at least 1")
        if len(self.continuous_ramp) < 2:
            raise ValueError("continuous_ramp needs at least two colours")
        if not self.channel_palette:
            raise ValueError("channel_palette must not be empty")


DEFAULTS = PlotDefaults()


def load_plot_defaults(path: PathLike, *, base: PlotDefaults = DEFAULTS) -> PlotDefaults:
    """Return ``base`` updated with the overrides stored in the JSON file ``path``.

    Colours may be given in any form :func:`matplotlib.colors.to_rgb` accepts.
    ``continuous_ramp`` may also be the name of a matplotlib colormap.
    """
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"{config_path} does not exist")

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Expected object at top level of {config_path}")

    known = {field.name for field in fields(PlotDefaults)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown plot defaults in {config_path}: {', '.join(unknown)}")

    overrides = {}
    for key, value in data.items():
        if key in ("background_colour", "missing_colour"):
            overrides[key] = to_rgb(value)
        elif key == "channel_palette":
            overrides[key] = tuple(to_rgb(item) for item in value)
        elif key == "continuous_ramp":
            if isinstance(value, str):
                overrides[key] = _sample_colormap(value)
            else:
                overrides[key] = tuple(to_rgb(item) for item in value)
        elif key == "max_channels":
            overrides[key] = int(value)
        else:
            overrides[key] = str(value)
    return replace(base, **overrides)


__all__ = ["PlotDefaults", "DEFAULTS", "load_plot_defaults"]
