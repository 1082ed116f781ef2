"""
Tests for the similarity-weighted fusion algorithm (STARFM).
"""

import numpy as np
import pytest

from stfusion.core.exceptions import (
    ConfigurationError,
    ImageTypeError,
    NotFoundError,
    SizeError,
)
from stfusion.core.options import EstarfmOptions, StarfmOptions, TempDiffWeighting
from stfusion.core.raster import Raster, Rectangle
from stfusion.core.store import MultiResStore
from stfusion.fusion.starfm import StarfmFusor


def make_options(**kwargs):
    kwargs.setdefault("window_size", 5)
    kwargs.setdefault("number_classes", 4)
    options = StarfmOptions(high_tag="high", low_tag="low", **kwargs)
    options.set_single_pair_date(1)
    return options


def make_fusor(store, options):
    fusor = StarfmFusor()
    fusor.set_source_store(store)
    fusor.configure(options)
    return fusor


class TestStarfmBasics:
    """Tests for the basic prediction behavior."""

    def test_output_geometry(self, store, scene):
        """The output covers the prediction area with the high resolution type."""
        fusor = make_fusor(store, make_options())
        assert fusor.output_image is None
        result = fusor.predict(2)
        assert result is fusor.output_image
        assert result.size == (scene["high1"].shape[2], scene["high1"].shape[1])
        assert result.dtype == np.float64
        assert np.all(np.isfinite(result.data))

    def test_uniform_change_is_added(self, make_scene, make_store):
        """A spatially uniform low resolution change is added to the reference."""
        scene = make_scene()
        scene["low2"] = scene["low1"] + 12.5
        fusor = make_fusor(make_store(scene), make_options())
        result = fusor.predict(2)
        np.testing.assert_allclose(result.data, scene["high1"] + 12.5, rtol=0, atol=1e-9)

    def test_window_size_one(self, scene, store):
        """With a single pixel window each pixel only uses its own change."""
        fusor = make_fusor(store, make_options(window_size=1))
        result = fusor.predict(2)
        expected = scene["high1"] + scene["low2"] - scene["low1"]
        np.testing.assert_allclose(result.data, expected, rtol=0, atol=1e-9)

    def test_prediction_improves_on_reference(self, scene, store):
        """The prediction is closer to the truth than the reference image."""
        fusor = make_fusor(store, make_options())
        result = fusor.predict(2)
        error_prediction = np.abs(result.data - scene["high2"]).mean()
        error_reference = np.abs(scene["high1"] - scene["high2"]).mean()
        assert error_prediction < error_reference

    def test_weighting_variants_run(self, scene, store):
        """Log weighting, non-strict filtering and disabled temporal weighting work."""
        for kwargs in (
            {"log_scale_factor": 0.5},
            {"use_strict_filtering": False},
            {"temporal_weighting": TempDiffWeighting.DISABLE},
            {"spectral_uncertainty": 0, "temporal_uncertainty": 0},
        ):
            result = make_fusor(store, make_options(**kwargs)).predict(2)
            assert np.all(np.isfinite(result.data))

    def test_integer_output_is_rounded_and_saturated(self):
        """Integer results are rounded and clipped to the type's range."""
        high = np.full((1, 4, 4), 250, dtype=np.uint8)
        low1 = np.full((1, 4, 4), 100, dtype=np.uint8)
        low2 = np.full((1, 4, 4), 120, dtype=np.uint8)
        low2[0, 0, 0] = 101
        store = MultiResStore()
        store.set("high", 1, Raster(high))
        store.set("low", 1, Raster(low1))
        store.set("low", 2, Raster(low2))

        result = make_fusor(store, make_options(window_size=1)).predict(2)
        assert result.dtype == np.uint8
        assert result.at(1, 1) == 255
        assert result.at(0, 0) == 251


class TestZeroDifferenceShortcut:
    """Tests for copying unchanged pixels."""

    def test_unchanged_low_reproduces_reference(self, make_scene, make_store):
        """If nothing changed the reference high image is reproduced exactly."""
        scene = make_scene(dtype=np.uint16)
        scene["low2"] = scene["low1"].copy()
        fusor = make_fusor(make_store(scene), make_options(copy_on_zero_diff=True))
        result = fusor.predict(2)
        np.testing.assert_array_equal(result.data, scene["high1"])

    def test_shortcut_only_where_unchanged(self, make_scene, make_store):
        """Changed pixels are still predicted normally."""
        scene = make_scene()
        scene["low2"] = scene["low1"].copy()
        scene["low2"][0, 5:, :] += 10.0
        fusor = make_fusor(make_store(scene), make_options(copy_on_zero_diff=True, window_size=1))
        result = fusor.predict(2)
        np.testing.assert_array_equal(result.data[0, :5], scene["high1"][0, :5])
        np.testing.assert_allclose(result.data[0, 5:], scene["high1"][0, 5:] + 10.0)

    def test_double_pair_both_unchanged_averages(self, make_scene, make_store):
        """With two unchanged dates the average of both references is used."""
        scene = make_scene()
        scene["low2"] = scene["low1"].copy()
        scene["low3"] = scene["low1"].copy()
        options = make_options(copy_on_zero_diff=True)
        options.set_double_pair_dates(1, 3)
        result = make_fusor(make_store(scene), options).predict(2)
        np.testing.assert_allclose(result.data, (scene["high1"] + scene["high3"]) / 2)

    def test_equal_high_and_low_copies_target_low(self, make_scene, make_store):
        """Where the reference high value equals its low value the target low value is taken."""
        scene = make_scene()
        scene["high1"][0, 3, 3] = scene["low1"][0, 3, 3]
        scene["low2"] = scene["low1"] + 7.0
        scene["low2"][0, 3, 3] += 5.0
        store = make_store(scene)

        copied = make_fusor(store, make_options(copy_on_zero_diff=True)).predict(2)
        assert copied.data[0, 3, 3] == scene["low2"][0, 3, 3]

        # Without the flag the block neighbors' smaller change pulls the value down
        regular = make_fusor(store, make_options(use_strict_filtering=False)).predict(2)
        assert regular.data[0, 3, 3] < scene["low2"][0, 3, 3] - 0.1

    def test_unchanged_low_wins_over_equal_high_and_low(self, make_scene, make_store):
        """An unchanged date copies its high value even where another date's high equals its low."""
        scene = make_scene()
        scene["high1"][0, 3, 3] = scene["low1"][0, 3, 3]
        scene["low3"] = scene["low2"].copy()
        options = make_options(copy_on_zero_diff=True)
        options.set_double_pair_dates(1, 3)
        result = make_fusor(make_store(scene), options).predict(2)
        np.testing.assert_array_equal(result.data, scene["high3"])


class TestDoublePair:
    """Tests for double-pair mode."""

    def test_double_pair_error_not_above_single_pair(self, make_scene, make_store):
        """Combining both dates is at least as good as either date alone."""
        scene = make_scene()
        change, offset = 10.0, 4.0
        scene["low2"] = scene["low1"] + change
        scene["low3"] = scene["low1"] + 2 * change
        scene["high3"] = scene["high1"] + 2 * change + 2 * offset
        truth = scene["high1"] + change + offset
        store = make_store(scene)

        errors = {}
        for dates in ((1,), (3,), (1, 3)):
            options = make_options()
            if len(dates) == 1:
                options.set_single_pair_date(dates[0])
            else:
                options.set_double_pair_dates(*dates)
            result = make_fusor(store, options).predict(2)
            errors[dates] = np.sqrt(np.mean((result.data - truth) ** 2))

        assert errors[(1, 3)] <= errors[(1,)]
        assert errors[(1, 3)] <= errors[(3,)]
        assert errors[(1, 3)] == pytest.approx(0.0, abs=1e-9)

    def test_double_pair_on_realistic_scene(self, scene, store):
        """Double-pair predictions on the synthetic scene stay finite."""
        options = make_options()
        options.set_double_pair_dates(1, 3)
        result = make_fusor(store, options).predict(2)
        assert np.all(np.isfinite(result.data))

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_double_pair_beats_single_pair_on_scene(self, make_scene, make_store, seed):
        """On a scene changing steadily over time both dates together predict best."""
        scene = make_scene(width=20, height=20, seed=seed)
        store = make_store(scene)

        errors = {}
        for dates in ((1,), (3,), (1, 3)):
            options = make_options(window_size=7, number_classes=4)
            if len(dates) == 1:
                options.set_single_pair_date(dates[0])
            else:
                options.set_double_pair_dates(*dates)
            result = make_fusor(store, options).predict(2)
            errors[dates] = np.sqrt(np.mean((result.data - scene["high2"]) ** 2))

        assert errors[(1, 3)] <= errors[(1,)]
        assert errors[(1, 3)] <= errors[(3,)]

    def test_date_with_less_change_dominates(self, make_scene, make_store):
        """The date whose low resolution change is smaller gets most of the weight."""
        scene = make_scene()
        scene["low2"] = scene["low1"] + 2.0
        scene["low3"] = scene["low1"] + 20.0
        scene["high3"] = scene["high1"] + 30.0
        options = make_options()
        options.set_double_pair_dates(1, 3)
        result = make_fusor(make_store(scene), options).predict(2)

        # Estimates are high1 + 2 and high1 + 12; weights 1/4 and 1/324
        expected = scene["high1"] + 2.0 + 10.0 * (1 / 324) / (1 / 4 + 1 / 324)
        np.testing.assert_allclose(result.data, expected, rtol=0, atol=1e-6)


class TestStarfmEquivalence:
    """Tests for sub-rectangle and multi-channel equivalence."""

    def test_sub_rectangle_equivalence(self, scene, store):
        """Predicting a sub-rectangle equals cropping the full prediction."""
        full = make_fusor(store, make_options()).predict(2)
        area = Rectangle(3, 2, 6, 5)
        part = make_fusor(store, make_options(prediction_area=area)).predict(2)
        rows, cols = area.to_slice()
        np.testing.assert_array_equal(part.data, full.data[:, rows, cols])

    def test_multi_channel_equivalence(self, make_scene, make_store):
        """Each channel gives the same values as predicting it alone."""
        scene = make_scene(channels=3, dtype=np.int16)
        mask = np.ones((3, scene["high1"].shape[1], scene["high1"].shape[2]), dtype=bool)
        mask[0, ::2, :] = False
        mask[2, :, 1::3] = False

        options = make_options(window_size=7)
        options.set_double_pair_dates(1, 3)
        combined = make_fusor(make_store(scene), options).predict(2, mask)

        for c in range(3):
            single_scene = {k: v[c : c + 1] for k, v in scene.items()}
            single = make_fusor(make_store(single_scene), options).predict(2, mask[c])
            valid = mask[c]
            np.testing.assert_array_equal(combined.data[c][valid], single.data[0][valid])


class TestStarfmMasking:
    """Tests for masked prediction."""

    def test_masked_pixels_keep_previous_value(self, scene, store):
        """Pixels outside the mask are not written."""
        fusor = make_fusor(store, make_options())
        height, width = scene["high1"].shape[1:]
        fusor.output_image = Raster(np.full((1, height, width), -1.0))
        mask = np.zeros((height, width), dtype=np.uint8)
        mask[2:6, 3:9] = 1

        result = fusor.predict(2, mask)
        full = make_fusor(store, make_options()).predict(2)
        assert np.all(result.data[0][mask == 0] == -1.0)
        np.testing.assert_array_equal(result.data[0][mask == 1], full.data[0][mask == 1])

    def test_output_buffer_is_reused(self, store):
        """A fitting output buffer is reused, a different one is replaced."""
        fusor = make_fusor(store, make_options())
        first = fusor.predict(2)
        assert fusor.predict(3) is first

        fusor.configure(make_options(prediction_area=Rectangle(0, 0, 4, 4)))
        assert fusor.predict(2) is not first

    def test_mask_size_mismatch(self, store):
        """A mask of the wrong size raises SizeError before predicting."""
        fusor = make_fusor(store, make_options(prediction_area=Rectangle(0, 0, 5, 5)))
        with pytest.raises(SizeError):
            fusor.predict(2, np.ones((5, 6), dtype=bool))
        assert fusor.output_image is None

    def test_mask_type_mismatch(self, store):
        """Float masks and wrong channel counts raise ImageTypeError."""
        fusor = make_fusor(store, make_options())
        height, width = store.get("high", 1).height, store.get("high", 1).width
        with pytest.raises(ImageTypeError):
            fusor.predict(2, np.ones((height, width), dtype=np.float32))
        with pytest.raises(ImageTypeError):
            fusor.predict(2, np.ones((2, height, width), dtype=bool))


def masked_store(scene, tag, date, row, col, fill):
    """Store of ``scene`` with one pixel of an image set to ``fill`` and masked out."""
    store = MultiResStore()
    for key in ("high1", "low1", "low2"):
        array = scene[key]
        mask = None
        if key == f"{tag}{date}":
            array = array.copy()
            array[0, row, col] = fill
            mask = np.ones(array.shape, dtype=bool)
            mask[0, row, col] = False
        store.set("high" if key.startswith("high") else "low", int(key[-1]), Raster(array, mask=mask))
    return store


class TestSourceMasks:
    """Tests for validity masks carried by the source images."""

    @pytest.mark.parametrize("strict", [True, False])
    def test_nodata_pixel_does_not_influence_neighbors(self, make_scene, strict):
        """A masked nodata value in the target low image leaves a uniform change intact."""
        scene = make_scene()
        scene["low2"] = scene["low1"] + 12.5
        store = masked_store(scene, "low", 2, 4, 4, -9999.0)
        fusor = make_fusor(store, make_options(use_strict_filtering=strict))
        fusor.output_image = Raster(np.full(scene["high1"].shape, -1.0))
        result = fusor.predict(2)

        valid = np.ones(result.data.shape, dtype=bool)
        valid[0, 4, 4] = False
        np.testing.assert_allclose(result.data[valid], (scene["high1"] + 12.5)[valid], rtol=0, atol=1e-9)

    def test_invalid_center_keeps_previous_value(self, make_scene):
        scene = make_scene()
        store = masked_store(scene, "low", 2, 4, 4, -9999.0)
        fusor = make_fusor(store, make_options())
        fusor.output_image = Raster(np.full(scene["high1"].shape, -1.0))
        result = fusor.predict(2)
        assert result.data[0, 4, 4] == -1.0
        assert np.count_nonzero(result.data == -1.0) == 1

    def test_masked_value_is_irrelevant(self, scene):
        """Whatever value a masked pixel holds, the prediction is the same."""
        first = make_fusor(masked_store(scene, "high", 1, 6, 2, -9999.0), make_options()).predict(2)
        second = make_fusor(masked_store(scene, "high", 1, 6, 2, 1e6), make_options()).predict(2)
        valid = np.ones(first.data.shape, dtype=bool)
        valid[0, 6, 2] = False
        np.testing.assert_array_equal(first.data[valid], second.data[valid])

    def test_masked_sub_rectangle_equivalence(self, scene):
        store = masked_store(scene, "low", 1, 5, 6, -9999.0)
        options = make_options()
        full = make_fusor(store, options).predict(2)
        area = Rectangle(4, 3, 6, 5)
        part = make_fusor(store, make_options(prediction_area=area)).predict(2)
        rows, cols = area.to_slice()
        valid = np.ones(part.data.shape, dtype=bool)
        valid[0, 5 - 3, 6 - 4] = False
        np.testing.assert_array_equal(part.data[valid], full.data[:, rows, cols][valid])


class TestStarfmErrors:
    """Tests for configuration and lookup errors."""

    def test_wrong_options_type(self):
        """Options of another algorithm are rejected."""
        options = EstarfmOptions(high_tag="high", low_tag="low", pair_dates=(1,))
        with pytest.raises(ConfigurationError):
            StarfmFusor().configure(options)

    def test_invalid_options(self):
        """Incomplete options are rejected and the old options stay."""
        fusor = StarfmFusor()
        valid = make_options()
        fusor.configure(valid)
        with pytest.raises(ConfigurationError):
            fusor.configure(StarfmOptions(high_tag="high", low_tag="low"))
        assert fusor.options == valid

    def test_configure_copies_options(self, store):
        """Changing the options after configure has no effect."""
        options = make_options()
        fusor = make_fusor(store, options)
        options.window_size = 9
        assert fusor.options.window_size == 5
        assert fusor.options is not options

    def test_predict_unconfigured(self, store):
        fusor = StarfmFusor()
        fusor.set_source_store(store)
        with pytest.raises(ConfigurationError):
            fusor.predict(2)

    def test_missing_images(self, store):
        """Missing store entries raise NotFoundError."""
        fusor = make_fusor(store, make_options())
        with pytest.raises(NotFoundError):
            fusor.predict(7)
        with pytest.raises(NotFoundError):
            make_fusor(MultiResStore(), make_options()).predict(2)

        unbound = StarfmFusor()
        unbound.configure(make_options())
        with pytest.raises(NotFoundError):
            unbound.predict(2)

    def test_store_is_reread(self, make_scene, make_store):
        """Changes to the store between predictions are picked up."""
        scene = make_scene()
        store = make_store(scene)
        fusor = make_fusor(store, make_options())
        before = fusor.predict(2).copy()
        store.set("low", 2, Raster(scene["low1"] + 50.0))
        after = fusor.predict(2)
        assert not np.array_equal(before.data, after.data)

    def test_prediction_area_outside_image(self, store):
        fusor = make_fusor(store, make_options(prediction_area=Rectangle(10, 0, 20, 3)))
        with pytest.raises(SizeError):
            fusor.predict(2)

    def test_inconsistent_image_sizes(self, make_scene):
        """Images of different size cannot be fused."""
        scene = make_scene()
        store = MultiResStore()
        store.set("high", 1, Raster(scene["high1"]))
        store.set("low", 1, Raster(scene["low1"]))
        store.set("low", 2, Raster(scene["low2"][:, :-1, :]))
        with pytest.raises(SizeError):
            make_fusor(store, make_options()).predict(2)
