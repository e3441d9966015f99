import sys
from collections import OrderedDict
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

# Ensure the repository root is on the import path so tests can import the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cytoimage_tools import CellTable, ImageCollection, ImageKind  # noqa: E402

CHANNELS = ["H3", "CD99", "PIN", "CD8a", "SMA"]
IMAGE_IDS = [1, 2, 3]


def _blocky_mask(seed: int, shape=(100, 100), block: int = 20) -> np.ndarray:
    """Label mask tiled with ``block x block`` cells, with gaps of background."""
    rng = np.random.default_rng(seed)
    mask = np.zeros(shape, dtype=np.int64)
    label = 1
    for y in range(0, shape[0], block):
        for x in range(0, shape[1], block):
            if rng.random() < 0.2:
                continue
            mask[y + 1:y + block - 1, x + 1:x + block - 1] = label
            label += 1
    return mask


@pytest.fixture
def pancreas_images() -> ImageCollection:
    rng = np.random.default_rng(42)
    images = OrderedDict(
        (f"E{i}_imc", rng.gamma(2.0, 5.0, size=(100, 100, len(CHANNELS)))) for i in IMAGE_IDS
    )
    metadata = pd.DataFrame({"ImageNb": IMAGE_IDS}, index=list(images))
    return ImageCollection(images, channel_names=CHANNELS, metadata=metadata, id_column="ImageNb")


@pytest.fixture
def pancreas_masks() -> ImageCollection:
    masks = OrderedDict((f"E{i}_mask", _blocky_mask(i)) for i in IMAGE_IDS)
    metadata = pd.DataFrame({"ImageNb": IMAGE_IDS}, index=list(masks))
    return ImageCollection(masks, kind=ImageKind.LABEL, metadata=metadata, id_column="ImageNb")


@pytest.fixture
def pancreas_cells(pancreas_masks: ImageCollection) -> CellTable:
    rng = np.random.default_rng(7)
    rows = []
    for image_id, labels in zip(pancreas_masks.image_ids, pancreas_masks.images):
        for cell_id in np.unique(labels[labels != 0]):
            rows.append(
                {
                    "ImageNb": image_id,
                    "CellNb": int(cell_id),
                    "CellType": ["alpha", "beta", "delta"][int(cell_id) % 3],
                    "Area": float(rng.integers(50, 400)),
                }
            )
    obs = pd.DataFrame(rows)
    counts = pd.DataFrame(
        rng.gamma(2.0, 1.0, size=(len(obs), len(CHANNELS))), columns=CHANNELS
    )
    return CellTable(
        obs,
        layers={"counts": counts},
        image_id_column="ImageNb",
        cell_id_column="CellNb",
    )
