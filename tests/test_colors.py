import numpy as np
import pytest

from cytoimage_tools import (
    ContinuousColorSpec,
    DiscreteColorSpec,
    MissingMappingError,
    build_color_spec,
    default_discrete_spec,
    to_rgb,
)


def test_to_rgb_accepts_names_hex_and_8bit_tuples() -> None:
    assert to_rgb("red") == (1.0, 0.0, 0.0)
    assert to_rgb("#00ff00") == (0.0, 1.0, 0.0)
    assert to_rgb((0, 0, 255)) == (0.0, 0.0, 1.0)
    assert to_rgb((0.5, 0.5, 0.5, 1.0)) == (0.5, 0.5, 0.5)
    with pytest.raises(ValueError):
        to_rgb((1.0, 0.0))


def test_continuous_ramp_interpolates_between_control_colours() -> None:
    spec = ContinuousColorSpec.from_colors(["red", "green", "blue"])
    np.testing.assert_allclose(spec.map(0.5), to_rgb("green"))
    np.testing.assert_allclose(spec.map(0.0), (1.0, 0.0, 0.0))
    np.testing.assert_allclose(spec.map(1.0), (0.0, 0.0, 1.0))
    np.testing.assert_allclose(spec.map(0.25), np.add(to_rgb("red"), to_rgb("green")) / 2)


def test_continuous_ramp_clips_and_propagates_nan() -> None:
    spec = ContinuousColorSpec.from_colors(["black", "white"])
    mapped = spec.map(np.array([[-1.0, 2.0, np.nan]]))
    assert mapped.shape == (1, 3, 3)
    np.testing.assert_allclose(mapped[0, 0], (0.0, 0.0, 0.0))
    np.testing.assert_allclose(mapped[0, 1], (1.0, 1.0, 1.0))
    assert np.isnan(mapped[0, 2]).all()


def test_continuous_ramp_needs_two_colours() -> None:
    with pytest.raises(ValueError):
        ContinuousColorSpec.from_colors(["red"])


def test_discrete_lookup_uses_default_or_raises() -> None:
    spec = DiscreteColorSpec.from_mapping({"alpha": "red", 2: "blue"})
    assert spec.lookup("alpha") == (1.0, 0.0, 0.0)
    assert spec.lookup("2") == (0.0, 0.0, 1.0)
    with pytest.raises(MissingMappingError):
        spec.lookup("gamma")

    with_default = DiscreteColorSpec.from_mapping({"alpha": "red"}, default="white")
    assert with_default.lookup("gamma") == (1.0, 1.0, 1.0)
    assert with_default.map(["alpha", "gamma"]).shape == (2, 3)


def test_build_color_spec_dispatches_on_input() -> None:
    assert isinstance(build_color_spec({"a": "red"}), DiscreteColorSpec)
    assert isinstance(build_color_spec(["black", "red"]), ContinuousColorSpec)
    with pytest.raises(ValueError):
        build_color_spec("red")


def test_default_discrete_spec_assigns_distinct_colours() -> None:
    spec = default_discrete_spec(["beta", "alpha", "delta", "alpha"])
    assert sorted(spec.mapping) == ["alpha", "beta", "delta"]
    assert len(set(spec.mapping.values())) == 3
