import pytest

from cytoimage_tools import LegendOptions, ScaleBarOptions, TitleOptions, compute_layout
from cytoimage_tools.layout import grid_shape, scale_bar_geometry


@pytest.mark.parametrize(
    "count, ncols, expected",
    [(1, None, (1, 1)), (3, None, (2, 2)), (4, None, (2, 2)), (5, None, (2, 3)), (3, 1, (3, 1)), (2, 5, (1, 2))],
)
def test_grid_shape(count, ncols, expected) -> None:
    assert grid_shape(count, ncols) == expected


def test_grid_shape_rejects_empty_batch() -> None:
    with pytest.raises(ValueError):
        grid_shape(0)


def test_tiles_are_offset_by_largest_image_plus_margin() -> None:
    layout = compute_layout([(100, 80), (60, 100), (100, 100)], margin=10, ncols=2)
    assert (layout.cell_height, layout.cell_width) == (100, 100)
    offsets = [(tile.row, tile.col, tile.y0, tile.x0) for tile in layout.tiles]
    assert offsets == [(0, 0, 0, 0), (0, 1, 0, 110), (1, 0, 110, 0)]
    assert layout.canvas_width == 210
    assert layout.canvas_height == 210


def test_scale_bar_bottom_right_coordinates() -> None:
    options = ScaleBarOptions(length=20, pixel_size=2, unit="um", margin=(10, 5), line_width=2)
    geometry = scale_bar_geometry(options, 0, (100, 200), text_scale=1.0)
    assert geometry.x1 == 190
    assert geometry.x0 == 180
    assert geometry.y == 95
    assert geometry.label == "20 um"
    assert geometry.label_va == "bottom"
    assert geometry.label_y < geometry.y


def test_scale_bar_top_left_coordinates() -> None:
    options = ScaleBarOptions(length=30, position="topleft", margin=(4, 6), label="30 px")
    geometry = scale_bar_geometry(options, 0, (50, 50), text_scale=0.5)
    assert (geometry.x0, geometry.x1, geometry.y) == (4, 34, 6)
    assert geometry.label_va == "top"
    assert geometry.font_size == pytest.approx(3.0)
    assert geometry.line_width == pytest.approx(1.0)


def test_text_scales_with_largest_image() -> None:
    small = compute_layout([(100, 100)], scale_bar=ScaleBarOptions())
    large = compute_layout([(400, 200)], scale_bar=ScaleBarOptions())
    assert small.text_scale == 1.0
    assert large.text_scale == 4.0
    assert large.scale_bars[0].font_size == 4 * small.scale_bars[0].font_size


def test_reference_shape_keeps_single_images_consistent_with_batch() -> None:
    single = compute_layout([(50, 50)], reference_shape=(200, 200), indices=[2], names=["a", "b", "c"], image_title=TitleOptions())
    assert single.text_scale == 2.0
    assert single.titles[0].text == "c"


def test_scale_bar_frame_selects_images() -> None:
    layout = compute_layout([(50, 50)] * 3, scale_bar=ScaleBarOptions(frame=1))
    assert [bar.tile for bar in layout.scale_bars] == [1]


def test_titles_default_to_names_and_respect_explicit_text() -> None:
    layout = compute_layout([(50, 50)] * 2, names=["a", "b"], image_title=TitleOptions())
    assert [title.text for title in layout.titles] == ["a", "b"]
    custom = compute_layout([(50, 50)] * 2, names=["a", "b"], image_title=TitleOptions(text=["x", "y"]))
    assert [title.text for title in custom.titles] == ["x", "y"]
    with pytest.raises(ValueError):
        compute_layout([(50, 50)] * 2, image_title=TitleOptions(text=["only one"]))


def test_legend_panel_extends_canvas() -> None:
    layout = compute_layout(
        [(100, 100)] * 2,
        margin=5,
        legend=LegendOptions(width_fraction=0.5),
        legend_sections=["colour_by", "outline_by"],
    )
    assert layout.legend is not None
    assert layout.legend.x0 == 210
    assert layout.legend.width == 50
    assert layout.canvas_width == 260
    assert [box.section for box in layout.legend.boxes] == ["colour_by", "outline_by"]


def test_no_legend_without_entries() -> None:
    layout = compute_layout([(100, 100)], legend=LegendOptions())
    assert layout.legend is None
    assert layout.canvas_width == 100


def test_invalid_anchor_raises() -> None:
    with pytest.raises(ValueError):
        ScaleBarOptions(position="middle")
    with pytest.raises(ValueError):
        TitleOptions(position="left")


def test_scale_bar_longer_than_image_is_rejected() -> None:
    with pytest.raises(ValueError, match="200 um"):
        compute_layout([(100, 100)], scale_bar=ScaleBarOptions(length=200, unit="um"))
    with pytest.raises(ValueError):
        scale_bar_geometry(ScaleBarOptions(length=81), 0, (100, 100), text_scale=1.0)
    fitting = scale_bar_geometry(ScaleBarOptions(length=80), 0, (100, 100), text_scale=1.0)
    assert fitting.x1 - fitting.x0 == 80
