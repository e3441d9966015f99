"""Load image collections from TIFF files and save rendered composites."""
from __future__ import annotations

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import tifffile as tiff  # type: ignore
from skimage.transform import rescale

from .collection import ImageCollection, ImageKind

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
SAVE_FORMATS = {
    ".png": "png",
    ".tif": "tiff",
    ".tiff": "tiff",
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
}


def load_images(
    path: PathLike,
    pattern: str = "*.tif*",
    *,
    kind: ImageKind = ImageKind.INTENSITY,
    channel_names: Optional[Sequence[str]] = None,
    channel_axis: int = 0,
    recursive: bool = False,
    id_column: str = "image_id",
) -> ImageCollection:
    """Read one TIFF file or every file in ``path`` matching ``pattern``.

    Multi-channel TIFFs are expected with the channel axis at ``channel_axis``
    (``0`` for the usual one-page-per-channel layout) and are stored
    ``[height, width, channel]``. Entries are named by file stem and the stem is
    recorded in the ``id_column`` metadata column.
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"{source} does not exist")

    files = [source] if source.is_file() else list(_iter_image_files(source, pattern=pattern, recursive=recursive))
    if not files:
        raise ValueError(f"No files matching '{pattern}' were found in {source}")

    images: "OrderedDict[str, np.ndarray]" = OrderedDict()
    for file_path in files:
        array = tiff.imread(file_path)
        if kind is ImageKind.LABEL:
            array = np.squeeze(array)
        elif array.ndim == 3:
            array = np.moveaxis(array, channel_axis, -1)
        if file_path.stem in images:
            raise ValueError(f"Two files share the name {file_path.stem!r}")
        images[file_path.stem] = array
        logger.debug("Read %s with shape %s", file_path, array.shape)

    metadata = pd.DataFrame({id_column: list(images)}, index=list(images))
    collection = ImageCollection(
        images,
        kind=kind,
        channel_names=channel_names,
        metadata=metadata,
        id_column=id_column,
    )
    logger.info("Loaded %d %s images from %s", len(collection), kind.value, source)
    return collection


def _iter_image_files(directory: Path, *, pattern: str, recursive: bool) -> Iterable[Path]:
    iterator = directory.rglob(pattern) if recursive else directory.glob(pattern)
    for path in sorted(iterator):
        if path.is_file():
            yield path


def _raster_to_uint8(raster: np.ndarray) -> np.ndarray:
    data = np.clip(np.asarray(raster, dtype=np.float64), 0.0, 1.0)
    return np.round(data * 255.0).astype(np.uint8)


def save_plot(
    target: Union[np.ndarray, plt.Figure],
    path: PathLike,
    *,
    scale: float = 1.0,
    dpi: Optional[float] = None,
) -> Path:
    """Write a composite raster or an assembled display to ``path``.

    The format follows the file extension (png, tif/tiff, jpg/jpeg). ``scale``
    multiplies the output resolution: rasters are upscaled with
    nearest-neighbour sampling, figures are saved at ``dpi * scale``.
    """
    out_path = Path(path)
    fmt = SAVE_FORMATS.get(out_path.suffix.lower())
    if fmt is None:
        raise ValueError(
            f"Unsupported file extension {out_path.suffix!r}; use one of {', '.join(sorted(SAVE_FORMATS))}"
        )
    if scale <= 0:
        raise ValueError("scale must be positive")
    out_path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(target, plt.Figure):
        base_dpi = dpi if dpi is not None else target.dpi
        target.savefig(out_path, format=fmt, dpi=base_dpi * scale, facecolor=target.get_facecolor())
        logger.debug("Saved display to %s", out_path)
        return out_path

    raster = np.asarray(target)
    if raster.ndim != 3 or raster.shape[-1] != 3:
        raise ValueError(f"Expected an RGB raster [h, w, 3], got shape {raster.shape}")
    if scale != 1.0:
        raster = rescale(raster, scale, order=0, channel_axis=-1, preserve_range=True, anti_aliasing=False)
    pixels = _raster_to_uint8(raster)
    if fmt == "tiff":
        tiff.imwrite(out_path, pixels, photometric="rgb")
    else:
        plt.imsave(out_path, pixels, format=fmt)
    logger.debug("Saved raster to %s", out_path)
    return out_path


__all__ = ["load_images", "save_plot", "SAVE_FORMATS"]
