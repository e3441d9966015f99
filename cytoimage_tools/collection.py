"""Ordered, uniquely named containers of multi-channel images or label masks.

An :class:`ImageCollection` holds either intensity images (``[h, w, c]``
float arrays sharing one channel layout) or label masks (``[h, w]`` integer
arrays, ``0`` = background). The kind is fixed per collection
(:class:`ImageKind`) and every operation branches on it explicitly.

Every mutating operation revalidates the collection and only commits its new
state once validation passed, so a failed call leaves the collection as it was.
Stored arrays are read-only; transforms return new collections.
"""
from __future__ import annotations

import enum
from collections import OrderedDict
from typing import (
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import numpy as np
import pandas as pd

from .errors import NotFoundError, SchemaError

Key = Union[str, int]
ChannelKey = Union[str, int]


class ImageKind(enum.Enum):
    INTENSITY = "intensity"
    LABEL = "label"


def _prepare_array(array: np.ndarray, kind: ImageKind, name: str) -> np.ndarray:
    data = np.asarray(array)
    if kind is ImageKind.INTENSITY:
        if data.ndim == 2:
            data = data[..., np.newaxis]
        if data.ndim != 3:
            raise SchemaError(
                f"Image {name!r} must be [height, width, channel], got shape {data.shape}"
            )
        if not np.issubdtype(data.dtype, np.number) or np.issubdtype(data.dtype, np.complexfloating):
            raise SchemaError(f"Image {name!r} must hold real numeric values, got {data.dtype}")
        data = data.astype(np.float64, copy=True)
    else:
        if data.ndim == 3 and data.shape[-1] == 1:
            data = data[..., 0]
        if data.ndim != 2:
            raise SchemaError(f"Mask {name!r} must be [height, width], got shape {data.shape}")
        if np.issubdtype(data.dtype, np.bool_):
            data = data.astype(np.int64)
        elif not np.issubdtype(data.dtype, np.integer):
            if not np.issubdtype(data.dtype, np.floating):
                raise SchemaError(f"Mask {name!r} must hold integer labels, got {data.dtype}")
            if not np.all(np.isfinite(data)) or not np.all(np.equal(np.mod(data, 1), 0)):
                raise SchemaError(f"Mask {name!r} contains non-integer values")
            data = data.astype(np.int64)
        else:
            data = data.astype(np.int64, copy=True)
        if data.size and data.min() < 0:
            raise SchemaError(f"Mask {name!r} contains negative labels")
    data.setflags(write=False)
    return data


class ImageCollection:
    """Ordered mapping from unique name to image or mask, with per-entry metadata.

    Parameters
    ----------
    images:
        Mapping of name -> array, or a sequence of arrays (named ``image_1``,
        ``image_2``, ... in order).
    kind:
        :class:`ImageKind` of every entry.
    channel_names:
        Names of the channels of intensity images. Defaults to ``ch1 .. chN``.
        Ignored for label masks.
    metadata:
        DataFrame with one row per entry, indexed by entry name. Missing rows
        are created empty. When the id column is absent it is filled with the
        entry names.
    id_column:
        Metadata column used for id lookup and for joining to cell tables.
    """

    def __init__(
        self,
        images: Union[Mapping[str, np.ndarray], Sequence[np.ndarray], None] = None,
        *,
        kind: ImageKind = ImageKind.INTENSITY,
        channel_names: Optional[Sequence[str]] = None,
        metadata: Optional[pd.DataFrame] = None,
        id_column: str = "image_id",
    ) -> None:
        if images is None:
            images = OrderedDict()
        if not isinstance(images, Mapping):
            images = OrderedDict((f"image_{i + 1}", array) for i, array in enumerate(images))

        self._kind = ImageKind(kind)
        self._id_column = id_column
        entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
        for name, array in images.items():
            if name in entries:
                raise SchemaError(f"Duplicate image name {name!r}")
            entries[name] = _prepare_array(array, self._kind, str(name))
        self._entries = entries

        if self._kind is ImageKind.INTENSITY:
            if channel_names is None:
                count = next(iter(entries.values())).shape[-1] if entries else 0
                channel_names = [f"ch{i + 1}" for i in range(count)]
            self._channel_names: List[str] = [str(c) for c in channel_names]
        else:
            self._channel_names = []

        self._metadata = self._align_metadata(metadata, list(entries))
        self.validate()

    # ------------------------------------------------------------------
    # Basic accessors

    @property
    def kind(self) -> ImageKind:
        return self._kind

    @property
    def id_column(self) -> str:
        return self._id_column

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    @property
    def images(self) -> List[np.ndarray]:
        return list(self._entries.values())

    @property
    def metadata(self) -> pd.DataFrame:
        return self._metadata.copy()

    @property
    def channel_names(self) -> List[str]:
        return list(self._channel_names)

    @property
    def image_ids(self) -> List[Hashable]:
        return self.ids()

    def ids(self, column: Optional[str] = None) -> List[Hashable]:
        """Return the values of ``column`` (the id column by default) in entry order."""
        column = self._id_column if column is None else column
        if column not in self._metadata.columns:
            if column == self._id_column:
                return list(self._entries)
            raise NotFoundError(f"Metadata column {column!r} not found")
        return list(self._metadata[column])

    def shapes(self) -> List[Tuple[int, int]]:
        """Return ``(height, width)`` of every entry in order."""
        return [tuple(array.shape[:2]) for array in self._entries.values()]  # type: ignore[misc]

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __getitem__(self, key: Key) -> np.ndarray:
        subset = self.get(key)
        return subset.images[0]

    def __setitem__(self, key: Key, value) -> None:
        self.set_entry(key, value)

    def __delitem__(self, key: Key) -> None:
        self.set_entry(key, None)

    def __repr__(self) -> str:
        return (
            f"ImageCollection(kind={self._kind.value}, n={len(self)}, "
            f"channels={self._channel_names})"
        )

    # ------------------------------------------------------------------
    # Validation

    def validate(self) -> None:
        """Raise :class:`SchemaError` describing the first violated invariant."""
        _validate_state(
            self._entries,
            self._kind,
            self._channel_names,
            self._metadata,
            self._id_column,
        )

    # ------------------------------------------------------------------
    # Lookup

    def resolve(self, keys: Union[Key, Sequence[Key]]) -> List[str]:
        """Return the entry names addressed by ``keys``.

        Strings match entry names first and then values of the id column;
        integers are positional indices.
        """
        if isinstance(keys, (str, int, np.integer)):
            keys = [keys]
        names = list(self._entries)
        ids = (
            [str(v) for v in self._metadata[self._id_column]]
            if self._id_column in self._metadata.columns
            else []
        )
        resolved: List[str] = []
        missing: List[Key] = []
        for key in keys:
            if isinstance(key, (bool, np.bool_)):
                raise TypeError("Boolean keys are not supported")
            if isinstance(key, (int, np.integer)):
                if 0 <= int(key) < len(names):
                    resolved.append(names[int(key)])
                else:
                    missing.append(key)
                continue
            if key in self._entries:
                resolved.append(str(key))
            elif str(key) in ids:
                resolved.append(names[ids.index(str(key))])
            else:
                missing.append(key)
        if missing:
            raise NotFoundError(
                f"Entries not found: {', '.join(repr(k) for k in missing)}"
            )
        return resolved

    def get(self, keys: Union[Key, Sequence[Key]]) -> "ImageCollection":
        """Return a new collection holding the entries addressed by ``keys``."""
        names = self.resolve(keys)
        if len(set(names)) != len(names):
            raise SchemaError("The same entry was requested more than once")
        return self._derive(
            OrderedDict((name, self._entries[name]) for name in names),
            metadata=self._metadata.loc[names],
        )

    def get_by_id(
        self,
        ids: Union[Hashable, Sequence[Hashable]],
        *,
        column: Optional[str] = None,
    ) -> "ImageCollection":
        """Return the entries whose id column (or ``column``) matches ``ids``."""
        if isinstance(ids, str) or not isinstance(ids, Sequence):
            ids = [ids]
        id_values = self.ids(column)
        names = list(self._entries)
        selected: List[str] = []
        missing = []
        for value in ids:
            matches = [names[i] for i, v in enumerate(id_values) if v == value or str(v) == str(value)]
            if not matches:
                missing.append(value)
            selected.extend(matches[:1])
        if missing:
            raise NotFoundError(f"Image ids not found: {', '.join(repr(v) for v in missing)}")
        return self.get(selected)

    # ------------------------------------------------------------------
    # Mutation

    def set_entry(self, key: Key, value: Union[np.ndarray, "ImageCollection", None]) -> None:
        """Replace, add or delete one entry.

        ``value=None`` deletes the entry. Assigning by name replaces only that
        entry (and its metadata row when ``value`` is a one-entry collection) or
        appends a new entry. Assigning by position takes over the name and
        metadata of a one-entry collection; a bare array keeps the existing name.
        """
        entries = OrderedDict(self._entries)
        metadata = self._metadata.copy()

        if value is None:
            (name,) = self.resolve(key)
            del entries[name]
            metadata = metadata.drop(index=name)
            self._commit(entries, metadata)
            return

        source_row: Optional[pd.Series] = None
        source_name: Optional[str] = None
        if isinstance(value, ImageCollection):
            if len(value) != 1:
                raise SchemaError("Only a single-entry collection can be assigned to one key")
            if value.kind is not self._kind:
                raise SchemaError(
                    f"Cannot assign a {value.kind.value} entry to a {self._kind.value} collection"
                )
            if self._kind is ImageKind.INTENSITY and value.channel_names != self._channel_names:
                raise SchemaError("Assigned image has a different channel layout")
            source_name = value.names[0]
            array = value.images[0]
            source_row = value._metadata.iloc[0]
        else:
            array = _prepare_array(value, self._kind, str(key))

        if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
            (old_name,) = self.resolve(key)
            new_name = source_name if source_name is not None else old_name
            if new_name != old_name and new_name in entries:
                raise SchemaError(f"Duplicate image name {new_name!r}")
            rebuilt: "OrderedDict[str, np.ndarray]" = OrderedDict()
            for name, existing in entries.items():
                if name == old_name:
                    rebuilt[new_name] = array
                else:
                    rebuilt[name] = existing
            entries = rebuilt
            metadata = metadata.rename(index={old_name: new_name})
            target = new_name
        else:
            target = str(key)
            entries[target] = array
            if target not in metadata.index:
                metadata = pd.concat([metadata, pd.DataFrame(index=pd.Index([target], dtype=object))])
                if self._id_column in metadata.columns and source_row is None:
                    metadata.loc[target, self._id_column] = target

        if source_row is not None:
            for column, cell in source_row.items():
                if column not in metadata.columns:
                    metadata[column] = pd.Series(index=metadata.index, dtype=object)
                metadata.loc[target, column] = cell

        metadata = metadata.loc[list(entries)]
        self._commit(entries, metadata)

    def set_metadata(self, metadata: pd.DataFrame) -> None:
        """Replace the metadata table; it must be indexed by the entry names."""
        aligned = self._align_metadata(metadata, list(self._entries))
        self._commit(OrderedDict(self._entries), aligned)

    def set_channel_names(self, names: Sequence[str]) -> None:
        """Rename all channels of an intensity collection."""
        self._require_intensity("rename channels")
        new_names = [str(n) for n in names]
        if len(new_names) != len(self._channel_names):
            raise SchemaError(
                f"Expected {len(self._channel_names)} channel names, got {len(new_names)}"
            )
        _validate_channel_names(new_names)
        self._channel_names = new_names

    # ------------------------------------------------------------------
    # Channel operations

    def resolve_channels(self, channels: Union[ChannelKey, Sequence[ChannelKey]]) -> List[int]:
        """Return channel indices for channel names or indices."""
        self._require_intensity("select channels")
        if isinstance(channels, (str, int, np.integer)):
            channels = [channels]
        indices: List[int] = []
        missing: List[ChannelKey] = []
        for channel in channels:
            if isinstance(channel, (int, np.integer)) and not isinstance(channel, bool):
                if 0 <= int(channel) < len(self._channel_names):
                    indices.append(int(channel))
                else:
                    missing.append(channel)
            elif channel in self._channel_names:
                indices.append(self._channel_names.index(channel))
            else:
                missing.append(channel)
        if missing:
            raise NotFoundError(f"Channels not found: {', '.join(repr(c) for c in missing)}")
        return indices

    def get_channels(self, channels: Union[ChannelKey, Sequence[ChannelKey]]) -> "ImageCollection":
        """Return a new collection holding only ``channels`` in the requested order."""
        indices = self.resolve_channels(channels)
        if len(set(indices)) != len(indices):
            raise SchemaError("The same channel was requested more than once")
        entries = OrderedDict(
            (name, array[..., indices]) for name, array in self._entries.items()
        )
        return self._derive(entries, channel_names=[self._channel_names[i] for i in indices])

    def set_channels(
        self,
        channels: Union[ChannelKey, Sequence[ChannelKey]],
        source: "ImageCollection",
    ) -> "ImageCollection":
        """Return a copy whose ``channels`` are replaced by the channels of ``source``."""
        indices = self.resolve_channels(channels)
        source._require_intensity("provide channels")
        if len(source) != len(self):
            raise SchemaError("Both collections must hold the same number of images")
        if len(source.channel_names) != len(indices):
            raise SchemaError(
                f"{len(indices)} channels selected but the replacement holds "
                f"{len(source.channel_names)}"
            )
        new_channel_names = list(self._channel_names)
        for position, index in enumerate(indices):
            new_channel_names[index] = source.channel_names[position]
        entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
        for (name, array), replacement in zip(self._entries.items(), source.images):
            if replacement.shape[:2] != array.shape[:2]:
                raise SchemaError(f"Replacement for {name!r} has different pixel dimensions")
            updated = array.copy()
            updated[..., indices] = replacement
            entries[name] = updated
        return self._derive(entries, channel_names=new_channel_names)

    # ------------------------------------------------------------------
    # Transforms

    def map(
        self,
        func: Callable[[str, np.ndarray], np.ndarray],
        *,
        kind: Optional[ImageKind] = None,
        channel_names: Optional[Sequence[str]] = None,
    ) -> "ImageCollection":
        """Apply ``func(name, array)`` to every entry and return a validated collection."""
        target_kind = self._kind if kind is None else ImageKind(kind)
        entries = OrderedDict(
            (name, func(name, array)) for name, array in self._entries.items()
        )
        if channel_names is None and target_kind is ImageKind.INTENSITY:
            if self._kind is ImageKind.INTENSITY:
                channel_names = self._channel_names
        return ImageCollection(
            entries,
            kind=target_kind,
            channel_names=channel_names,
            metadata=self._metadata,
            id_column=self._id_column,
        )

    def scale_images(self, value: Union[float, Sequence[float]]) -> "ImageCollection":
        """Multiply every entry by ``value`` (a scalar or one factor per entry).

        Label masks are rounded back to integer labels.
        """
        if np.ndim(value) == 0:
            factors = [float(value)] * len(self)  # type: ignore[arg-type]
        else:
            factors = [float(v) for v in value]  # type: ignore[union-attr]
            if len(factors) != len(self):
                raise SchemaError(
                    f"Expected {len(self)} scaling factors, got {len(factors)}"
                )
        lookup = dict(zip(self._entries, factors))
        if self._kind is ImageKind.LABEL:
            return self.map(lambda name, array: np.rint(array * lookup[name]).astype(np.int64))
        return self.map(lambda name, array: array * lookup[name])

    def copy(self) -> "ImageCollection":
        return self._derive(OrderedDict(self._entries))

    # ------------------------------------------------------------------
    # Internals

    def _derive(
        self,
        entries: "OrderedDict[str, np.ndarray]",
        *,
        channel_names: Optional[Sequence[str]] = None,
        metadata: Optional[pd.DataFrame] = None,
    ) -> "ImageCollection":
        return ImageCollection(
            entries,
            kind=self._kind,
            channel_names=self._channel_names if channel_names is None else channel_names,
            metadata=self._metadata if metadata is None else metadata,
            id_column=self._id_column,
        )

    def _commit(self, entries: "OrderedDict[str, np.ndarray]", metadata: pd.DataFrame) -> None:
        _validate_state(entries, self._kind, self._channel_names, metadata, self._id_column)
        self._entries = entries
        self._metadata = metadata

    def _align_metadata(self, metadata: Optional[pd.DataFrame], names: List[str]) -> pd.DataFrame:
        if metadata is None:
            frame = pd.DataFrame(index=pd.Index(names, dtype=object))
        else:
            frame = metadata.copy()
            unknown = [n for n in frame.index if n not in names]
            if unknown:
                raise SchemaError(
                    f"Metadata rows do not match any image: {', '.join(map(repr, unknown))}"
                )
            frame = frame.reindex(names)
        if self._id_column not in frame.columns:
            frame[self._id_column] = names
        return frame

    def _require_intensity(self, action: str) -> None:
        if self._kind is not ImageKind.INTENSITY:
            raise SchemaError(f"Cannot {action} on a label mask collection")


def _validate_channel_names(names: Sequence[str]) -> None:
    if any(not name for name in names):
        raise SchemaError("Channel names must be non-empty")
    seen: Dict[str, int] = {}
    for name in names:
        seen[name] = seen.get(name, 0) + 1
    duplicates = [name for name, count in seen.items() if count > 1]
    if duplicates:
        raise SchemaError(f"Duplicate channel names: {', '.join(duplicates)}")


def _validate_state(
    entries: Mapping[str, np.ndarray],
    kind: ImageKind,
    channel_names: Sequence[str],
    metadata: pd.DataFrame,
    id_column: str,
) -> None:
    names = list(entries)
    if any(not isinstance(name, str) or not name for name in names):
        raise SchemaError("Image names must be non-empty strings")
    if len(set(names)) != len(names):
        raise SchemaError("Image names must be unique")

    if kind is ImageKind.INTENSITY:
        _validate_channel_names(channel_names)
        for name, array in entries.items():
            if array.ndim != 3:
                raise SchemaError(f"Image {name!r} is not [height, width, channel]")
            if array.shape[-1] != len(channel_names):
                raise SchemaError(
                    f"Image {name!r} has {array.shape[-1]} channels, "
                    f"expected {len(channel_names)} ({', '.join(channel_names)})"
                )
    else:
        for name, array in entries.items():
            if array.ndim != 2:
                raise SchemaError(f"Mask {name!r} is not [height, width]")
            if not np.issubdtype(array.dtype, np.integer):
                raise SchemaError(f"Mask {name!r} contains non-integer values")

    if list(metadata.index) != names:
        raise SchemaError("Metadata rows are not aligned with the image entries")
    if id_column in metadata.columns:
        ids = metadata[id_column].dropna()
        duplicated = ids[ids.duplicated()]
        if not duplicated.empty:
            raise SchemaError(
                f"Duplicate values in id column {id_column!r}: "
                f"{', '.join(map(str, duplicated.unique()))}"
            )


def merge_channels(first: ImageCollection, second: ImageCollection) -> ImageCollection:
    """Concatenate the channels of two intensity collections entry by entry.

    Names and metadata come from ``first``. Both collections must hold the same
    number of entries with matching pixel dimensions, and channel names must not
    collide.
    """
    for collection in (first, second):
        if collection.kind is not ImageKind.INTENSITY:
            raise SchemaError("Only intensity collections can be merged")
    if len(first) != len(second):
        raise SchemaError(
            f"Cannot merge collections of length {len(first)} and {len(second)}"
        )
    collisions = [name for name in second.channel_names if name in first.channel_names]
    if collisions:
        raise SchemaError(f"Channel names collide: {', '.join(collisions)}")

    entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
    for (name, a), (other_name, b) in zip(first.items(), second.items()):
        if a.shape[:2] != b.shape[:2]:
            raise SchemaError(
                f"Pixel dimensions differ between {name!r} {a.shape[:2]} "
                f"and {other_name!r} {b.shape[:2]}"
            )
        entries[name] = np.concatenate([a, b], axis=-1)

    return ImageCollection(
        entries,
        kind=ImageKind.INTENSITY,
        channel_names=first.channel_names + second.channel_names,
        metadata=first.metadata,
        id_column=first.id_column,
    )


__all__ = ["ImageKind", "ImageCollection", "merge_channels"]
