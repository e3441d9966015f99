import matplotlib.pyplot as plt
import numpy as np
import pytest
import tifffile as tiff  # type: ignore

from cytoimage_tools import ImageKind, load_images, save_plot


def test_load_images_moves_channel_axis_last(tmp_path) -> None:
    stack = np.arange(2 * 4 * 5, dtype=np.uint16).reshape(2, 4, 5)
    tiff.imwrite(tmp_path / "E1_imc.tiff", stack)
    tiff.imwrite(tmp_path / "E2_imc.tiff", stack * 2)

    collection = load_images(tmp_path, channel_names=["H3", "SMA"])
    assert collection.names == ["E1_imc", "E2_imc"]
    assert collection["E1_imc"].shape == (4, 5, 2)
    np.testing.assert_array_equal(collection["E2_imc"][..., 1], stack[1] * 2)
    assert collection.image_ids == ["E1_imc", "E2_imc"]


def test_load_label_masks(tmp_path) -> None:
    mask = np.array([[0, 1], [2, 2]], dtype=np.uint16)
    tiff.imwrite(tmp_path / "E1_mask.tif", mask)
    masks = load_images(tmp_path / "E1_mask.tif", kind=ImageKind.LABEL)
    assert masks.kind is ImageKind.LABEL
    np.testing.assert_array_equal(masks["E1_mask"], mask)


def test_load_images_missing_inputs(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_images(tmp_path / "nowhere")
    with pytest.raises(ValueError):
        load_images(tmp_path)


def test_save_raster_as_tiff_with_scale(tmp_path) -> None:
    raster = np.zeros((4, 4, 3))
    raster[0, 0] = (1.0, 0.0, 0.0)
    out_path = save_plot(raster, tmp_path / "composite.tiff", scale=2)
    written = tiff.imread(out_path)
    assert written.shape == (8, 8, 3)
    assert written.dtype == np.uint8
    np.testing.assert_array_equal(written[:2, :2, 0], 255)
    assert np.all(written[2:, 2:] == 0)


def test_save_raster_as_png(tmp_path) -> None:
    out_path = save_plot(np.ones((3, 5, 3)) * 0.5, tmp_path / "nested" / "composite.png")
    assert out_path.exists()
    assert plt.imread(out_path).shape[:2] == (3, 5)


def test_save_figure_scales_resolution(tmp_path) -> None:
    fig = plt.figure(figsize=(1, 1), dpi=50)
    try:
        out_path = save_plot(fig, tmp_path / "display.png", scale=2)
    finally:
        plt.close(fig)
    assert plt.imread(out_path).shape[:2] == (100, 100)


def test_save_plot_rejects_unknown_extension(tmp_path) -> None:
    with pytest.raises(ValueError):
        save_plot(np.zeros((2, 2, 3)), tmp_path / "composite.gif")
    with pytest.raises(ValueError):
        save_plot(np.zeros((2, 2)), tmp_path / "composite.png")
