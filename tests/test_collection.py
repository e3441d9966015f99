from collections import OrderedDict

import numpy as np
import pandas as pd
import pytest

from cytoimage_tools import (
    ImageCollection,
    ImageKind,
    NotFoundError,
    SchemaError,
    merge_channels,
)


def _images(count: int = 3, channels=("ch1", "ch2"), shape=(4, 5)) -> ImageCollection:
    rng = np.random.default_rng(0)
    images = OrderedDict(
        (f"img{i}", rng.random((*shape, len(channels)))) for i in range(count)
    )
    metadata = pd.DataFrame(
        {"image_id": [f"ID{i}" for i in range(count)], "condition": ["a", "b", "c"][:count]},
        index=list(images),
    )
    return ImageCollection(images, channel_names=list(channels), metadata=metadata)


def test_get_resolves_names_ids_and_positions() -> None:
    collection = _images()
    assert collection.get("img1").names == ["img1"]
    assert collection.get("ID2").names == ["img2"]
    assert collection.get(0).names == ["img0"]
    subset = collection.get(["img2", 0])
    assert subset.names == ["img2", "img0"]
    assert list(subset.metadata["condition"]) == ["c", "a"]


def test_get_raises_not_found_for_any_missing_key() -> None:
    collection = _images()
    with pytest.raises(NotFoundError):
        collection.get(["img0", "nope"])
    with pytest.raises(NotFoundError):
        collection.get(7)


def test_get_by_id_accepts_non_string_ids() -> None:
    images = OrderedDict((f"img{i}", np.zeros((2, 2, 1))) for i in range(2))
    metadata = pd.DataFrame({"image_id": [10, 20]}, index=list(images))
    collection = ImageCollection(images, metadata=metadata)
    assert collection.get_by_id([20, 10]).names == ["img1", "img0"]
    with pytest.raises(NotFoundError):
        collection.get_by_id(30)


def test_set_entry_none_deletes_entry_and_metadata() -> None:
    collection = _images()
    collection.set_entry("img1", None)
    assert collection.names == ["img0", "img2"]
    assert list(collection.metadata.index) == ["img0", "img2"]


def test_set_entry_by_name_replaces_only_that_entry() -> None:
    collection = _images()
    before = [array.copy() for array in collection.images]
    replacement = np.ones((4, 5, 2))
    collection["img1"] = replacement

    np.testing.assert_array_equal(collection["img1"], replacement)
    np.testing.assert_array_equal(collection["img0"], before[0])
    np.testing.assert_array_equal(collection["img2"], before[2])
    assert list(collection.metadata["condition"]) == ["a", "b", "c"]


def test_set_entry_by_name_appends_new_entry() -> None:
    collection = _images()
    collection.set_entry("img9", np.zeros((3, 3, 2)))
    assert collection.names[-1] == "img9"
    assert collection.image_ids[-1] == "img9"


def test_set_entry_by_position_transfers_name() -> None:
    collection = _images()
    other = ImageCollection(
        {"fresh": np.zeros((4, 5, 2))},
        channel_names=["ch1", "ch2"],
        metadata=pd.DataFrame({"image_id": ["ID9"], "condition": ["z"]}, index=["fresh"]),
    )
    collection.set_entry(1, other)
    assert collection.names == ["img0", "fresh", "img2"]
    assert collection.image_ids == ["ID0", "ID9", "ID2"]
    assert collection.metadata.loc["fresh", "condition"] == "z"


def test_failed_mutation_leaves_collection_unchanged() -> None:
    collection = _images()
    with pytest.raises(SchemaError):
        collection["img0"] = np.zeros((4, 5, 3))
    assert collection.names == ["img0", "img1", "img2"]
    assert collection["img0"].shape == (4, 5, 2)


def test_stored_arrays_are_read_only() -> None:
    collection = _images()
    with pytest.raises(ValueError):
        collection["img0"][0, 0, 0] = 5.0


@pytest.mark.parametrize(
    "channel_names",
    [["ch1", "ch1"], ["ch1", ""]],
)
def test_invalid_channel_names_raise(channel_names) -> None:
    with pytest.raises(SchemaError):
        ImageCollection({"a": np.zeros((2, 2, 2))}, channel_names=channel_names)


def test_channel_count_mismatch_raises() -> None:
    with pytest.raises(SchemaError):
        ImageCollection(
            {"a": np.zeros((2, 2, 2)), "b": np.zeros((2, 2, 3))},
            channel_names=["x", "y"],
        )


def test_duplicate_image_ids_raise() -> None:
    metadata = pd.DataFrame({"image_id": ["same", "same"]}, index=["a", "b"])
    with pytest.raises(SchemaError):
        ImageCollection({"a": np.zeros((2, 2)), "b": np.zeros((2, 2))}, metadata=metadata)


def test_label_masks_require_integer_values() -> None:
    with pytest.raises(SchemaError):
        ImageCollection({"m": np.array([[0.0, 1.5]])}, kind=ImageKind.LABEL)
    masks = ImageCollection({"m": np.array([[0.0, 2.0]])}, kind=ImageKind.LABEL)
    assert masks["m"].dtype.kind == "i"
    assert masks["m"].tolist() == [[0, 2]]


def test_merge_channels_concatenates_in_order() -> None:
    first = _images(channels=("ch1", "ch2"))
    second = _images(channels=("ch3",))
    merged = merge_channels(first, second)
    assert merged.channel_names == ["ch1", "ch2", "ch3"]
    assert merged.names == first.names
    np.testing.assert_array_equal(merged["img0"][..., 2], second["img0"][..., 0])


def test_merge_channels_rejects_collisions_and_mismatches() -> None:
    first = _images(channels=("ch1", "ch2"))
    with pytest.raises(SchemaError):
        merge_channels(first, _images(channels=("ch2",)))
    with pytest.raises(SchemaError):
        merge_channels(first, _images(count=2, channels=("ch3",)))
    with pytest.raises(SchemaError):
        merge_channels(first, _images(channels=("ch3",), shape=(4, 6)))


def test_get_and_set_channels() -> None:
    collection = _images(channels=("a", "b", "c"))
    subset = collection.get_channels(["c", "a"])
    assert subset.channel_names == ["c", "a"]
    np.testing.assert_array_equal(subset["img0"][..., 0], collection["img0"][..., 2])

    replacement = collection.get_channels("a").map(lambda name, array: array * 0 + 7)
    replacement.set_channel_names(["z"])
    updated = collection.set_channels("b", replacement)
    assert updated.channel_names == ["a", "z", "c"]
    assert np.all(updated["img1"][..., 1] == 7)
    assert collection.channel_names == ["a", "b", "c"]

    with pytest.raises(NotFoundError):
        collection.get_channels("missing")


def test_scale_images_rounds_label_masks() -> None:
    fractions = ImageCollection({"m": np.array([[0.0, 0.5], [1.0, 0.0]])})
    scaled = fractions.scale_images(4)
    np.testing.assert_array_equal(scaled["m"][..., 0], [[0.0, 2.0], [4.0, 0.0]])

    labels = ImageCollection({"m": np.array([[0, 1], [2, 0]])}, kind=ImageKind.LABEL)
    doubled = labels.scale_images([2.0])
    assert doubled.kind is ImageKind.LABEL
    np.testing.assert_array_equal(doubled["m"], [[0, 2], [4, 0]])


def test_map_rebuilds_validated_collection() -> None:
    collection = _images()
    doubled = collection.map(lambda name, array: array * 2)
    assert doubled.names == collection.names
    assert doubled.channel_names == collection.channel_names
    with pytest.raises(SchemaError):
        collection.map(lambda name, array: array[..., :1])
