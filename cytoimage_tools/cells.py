"""Read-only view over per-cell metadata and expression values.

The table is consumed, never modified: rendering only asks it for the values
of one column for the cells of one image, keyed by cell id.
"""
from __future__ import annotations

from typing import Dict, Hashable, List, Mapping, Optional

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

from .errors import NotFoundError, SchemaError


class CellTable:
    """Per-cell records keyed by ``(image_id, cell_id)``.

    Parameters
    ----------
    obs:
        One row per cell. Must contain ``image_id_column`` and
        ``cell_id_column``; all other columns are metadata.
    layers:
        Named expression matrices, each aligned row-by-row with ``obs`` and
        holding one column per feature (marker).
    """

    def __init__(
        self,
        obs: pd.DataFrame,
        layers: Optional[Mapping[str, pd.DataFrame]] = None,
        *,
        image_id_column: str = "image_id",
        cell_id_column: str = "cell_id",
    ) -> None:
        for column in (image_id_column, cell_id_column):
            if column not in obs.columns:
                raise SchemaError(f"Cell table has no {column!r} column")

        cell_ids = obs[cell_id_column]
        if is_bool_dtype(cell_ids) or not is_numeric_dtype(cell_ids):
            raise SchemaError(f"{cell_id_column!r} must hold integer cell ids")
        if cell_ids.isna().any() or not np.all(np.equal(np.mod(cell_ids.to_numpy(), 1), 0)):
            raise SchemaError(f"{cell_id_column!r} must hold integer cell ids")

        frame = obs.reset_index(drop=True).copy()
        frame[cell_id_column] = frame[cell_id_column].astype(np.int64)
        duplicated = frame.duplicated(subset=[image_id_column, cell_id_column])
        if duplicated.any():
            first = frame.loc[duplicated].iloc[0]
            raise SchemaError(
                f"Duplicate cell record ({first[image_id_column]!r}, {first[cell_id_column]})"
            )

        aligned_layers: Dict[str, pd.DataFrame] = {}
        for name, layer in (layers or {}).items():
            if len(layer) != len(frame):
                raise SchemaError(
                    f"Layer {name!r} has {len(layer)} rows, expected {len(frame)}"
                )
            aligned_layers[name] = layer.reset_index(drop=True)

        self._obs = frame
        self._layers = aligned_layers
        self.image_id_column = image_id_column
        self.cell_id_column = cell_id_column

    @property
    def obs(self) -> pd.DataFrame:
        return self._obs.copy()

    @property
    def layer_names(self) -> List[str]:
        return list(self._layers)

    def features(self, layer: Optional[str] = None) -> List[str]:
        if layer is None:
            return []
        return list(self._layer(layer).columns)

    def has_column(self, column: str, *, layer: Optional[str] = None) -> bool:
        if layer is not None and layer in self._layers and column in self._layers[layer].columns:
            return True
        return column in self._obs.columns

    def column(self, column: str, *, layer: Optional[str] = None) -> pd.Series:
        """Return ``column`` for every cell, searching ``layer`` first and then metadata."""
        if layer is not None:
            values = self._layer(layer)
            if column in values.columns:
                return values[column]
        if column in self._obs.columns:
            return self._obs[column]
        where = f"layer {layer!r} or the metadata" if layer is not None else "the metadata"
        raise NotFoundError(f"Column {column!r} not found in {where}")

    def is_continuous(self, column: str, *, layer: Optional[str] = None) -> bool:
        values = self.column(column, layer=layer)
        return is_numeric_dtype(values) and not is_bool_dtype(values)

    def values_for_image(
        self,
        image_id: Hashable,
        column: str,
        *,
        layer: Optional[str] = None,
        values: Optional[pd.Series] = None,
    ) -> pd.Series:
        """Return ``column`` for the cells of ``image_id`` as a Series indexed by cell id.

        ``values`` may carry a pre-transformed copy of the full column (for
        example scaled across all cells) aligned with the table rows.
        """
        data = self.column(column, layer=layer) if values is None else values
        ids = self._obs[self.image_id_column]
        selected = (ids == image_id) | (ids.astype(str) == str(image_id))
        series = data[selected.to_numpy()]
        series.index = pd.Index(self._obs.loc[selected, self.cell_id_column].to_numpy(), name="cell_id")
        return series

    def cell_ids_for_image(self, image_id: Hashable) -> np.ndarray:
        ids = self._obs[self.image_id_column]
        selected = (ids == image_id) | (ids.astype(str) == str(image_id))
        return self._obs.loc[selected, self.cell_id_column].to_numpy()

    def rekeyed(
        self,
        *,
        image_id_column: Optional[str] = None,
        cell_id_column: Optional[str] = None,
    ) -> "CellTable":
        """Return the same records joined on other image/cell id columns."""
        return CellTable(
            self._obs,
            self._layers,
            image_id_column=image_id_column or self.image_id_column,
            cell_id_column=cell_id_column or self.cell_id_column,
        )

    def _layer(self, name: str) -> pd.DataFrame:
        try:
            return self._layers[name]
        except KeyError:
            raise NotFoundError(f"Expression layer {name!r} not found") from None

    def __len__(self) -> int:
        return len(self._obs)


__all__ = ["CellTable"]
