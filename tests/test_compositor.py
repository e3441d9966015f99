import numpy as np
import pandas as pd
import pytest

from cytoimage_tools import (
    ContinuousColorSpec,
    TooManyChannelsError,
    adjust_channel,
    blend_channels,
    colour_cells_by_features,
    paint_cells,
)
from cytoimage_tools.colors import ramp_from_black
from cytoimage_tools.compositor import finalize_composite

PALETTE = ["red", "green", "blue", "cyan", "magenta", "yellow"]


def test_adjust_channel_applies_brightness_contrast_then_gamma() -> None:
    result = adjust_channel(np.array([0.5]), brightness=0.1, contrast=2.0, gamma=2.0)
    np.testing.assert_allclose(result, [1.44])


def test_adjust_channel_clamps_negative_values_before_gamma() -> None:
    result = adjust_channel(np.array([0.1]), brightness=-0.5, contrast=1.0, gamma=0.5)
    np.testing.assert_allclose(result, [0.0])


def test_blend_stays_in_unit_range_with_six_channels() -> None:
    rng = np.random.default_rng(0)
    channels = [rng.random((10, 10)) for _ in PALETTE]
    composite = blend_channels(channels, [ramp_from_black(c) for c in PALETTE])
    assert composite.shape == (10, 10, 3)
    assert composite.min() >= 0.0
    assert composite.max() <= 1.0


def test_blend_is_sum_of_single_channel_composites_below_saturation() -> None:
    rng = np.random.default_rng(1)
    channels = [rng.random((8, 8)) * 0.3 for _ in range(3)]
    specs = [ramp_from_black(c) for c in PALETTE[:3]]
    combined = blend_channels(channels, specs)
    separate = sum(blend_channels([c], [s]) for c, s in zip(channels, specs))
    np.testing.assert_allclose(combined, separate)


def test_blend_rejects_seven_channels() -> None:
    channels = [np.zeros((2, 2)) for _ in range(7)]
    specs = [ramp_from_black("white") for _ in range(7)]
    with pytest.raises(TooManyChannelsError):
        blend_channels(channels, specs)


def test_saturation_policies() -> None:
    composite = np.array([[[2.0, 1.0, 0.5]]])
    np.testing.assert_allclose(finalize_composite(composite), [[[1.0, 1.0, 0.5]]])
    np.testing.assert_allclose(
        finalize_composite(composite, saturation="rescale"), [[[1.0, 0.5, 0.25]]]
    )
    with pytest.raises(ValueError):
        finalize_composite(composite, saturation="wrap")


def test_paint_cells_uses_background_and_missing_colours() -> None:
    mask = np.array([[0, 1], [2, 5]])
    raster = paint_cells(
        mask,
        {1: (1.0, 0.0, 0.0), 2: (0.0, 1.0, 0.0)},
        background_colour=(0.0, 0.0, 0.0),
        missing_colour=(0.2, 0.3, 0.4),
    )
    np.testing.assert_array_equal(raster[0, 0], (0.0, 0.0, 0.0))
    np.testing.assert_array_equal(raster[0, 1], (1.0, 0.0, 0.0))
    np.testing.assert_array_equal(raster[1, 0], (0.0, 1.0, 0.0))
    np.testing.assert_array_equal(raster[1, 1], (0.2, 0.3, 0.4))


def test_colour_cells_by_features_marks_unknown_cells_missing() -> None:
    mask = np.array([[0, 1, 1], [2, 2, 3]])
    feature = pd.Series([0.0, 1.0, np.nan], index=[1, 2, 3])
    spec = ContinuousColorSpec.from_colors(["black", "white"])
    raster = colour_cells_by_features(
        mask,
        [feature],
        [spec],
        background_colour=(0.0, 0.0, 1.0),
        missing_colour=(0.5, 0.5, 0.5),
    )
    np.testing.assert_array_equal(raster[0, 0], (0.0, 0.0, 1.0))
    np.testing.assert_array_equal(raster[0, 1], (0.0, 0.0, 0.0))
    np.testing.assert_array_equal(raster[1, 0], (1.0, 1.0, 1.0))
    np.testing.assert_array_equal(raster[1, 2], (0.5, 0.5, 0.5))
