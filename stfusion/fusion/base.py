"""
Base Class for Fusion Algorithms.

A fusor predicts a high resolution image at a target date from the images
in a MultiResStore. The shared flow lives here; concrete algorithms only
implement the prediction of an area in ``_predict_area``, one output row at
a time on top of ``ChannelWindows``.

Lifecycle:
    fusor = StarfmFusor()
    fusor.set_source_store(store)
    fusor.configure(options)       # validated, deep-copied
    fusor.predict(date, mask)      # writes into fusor.output_image
    result = fusor.output_image

Predicting a sub-rectangle gives exactly the corresponding part of the
prediction for a larger rectangle, since every pixel only depends on its
(image-clipped) window of the source images. The parallel driver relies
on this.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Type

import numpy as np

from stfusion.core.exceptions import (
    ConfigurationError,
    ImageTypeError,
    NotFoundError,
    SizeError,
)
from stfusion.core.options import FusionOptions
from stfusion.core.raster import MaskLike, Raster, Rectangle
from stfusion.core.store import MultiResStore

logger = logging.getLogger(__name__)


@dataclass
class FusionInputs:
    """
    Source images of one prediction, cropped to the sample area.

    Arrays are float64 with shape (bands, rows, cols) of the sample area.

    Attributes:
        sample_area: Prediction area grown by the window radius, clipped to the image
        high: High resolution images per pair date
        low: Low resolution images per pair date
        low_target: Low resolution image at the target date
        valid: Pixels valid in every source image (bands, rows, cols), None if
            no source image carries a mask
    """

    sample_area: Rectangle
    high: Dict[int, np.ndarray] = field(default_factory=dict)
    low: Dict[int, np.ndarray] = field(default_factory=dict)
    low_target: Optional[np.ndarray] = None
    valid: Optional[np.ndarray] = None

    def valid_plane(self, channel: int) -> np.ndarray:
        """Validity of ``channel`` as a (rows, cols) bool array."""
        if self.valid is None:
            return np.ones(self.low_target.shape[1:], dtype=bool)
        return self.valid[channel]


class DataFusor(ABC):
    """
    Abstract fusion algorithm.

    Subclasses set ``options_type`` and implement ``_predict_area``.
    """

    options_type: Type[FusionOptions] = FusionOptions

    def __init__(self):
        self._store: Optional[MultiResStore] = None
        self._options: Optional[FusionOptions] = None
        self._output: Optional[Raster] = None

    @property
    def source_store(self) -> Optional[MultiResStore]:
        return self._store

    def set_source_store(self, store: MultiResStore) -> None:
        """Bind the store; it is read again on every prediction."""
        self._store = store

    @property
    def options(self) -> Optional[FusionOptions]:
        """The configured options (a private copy)."""
        return self._options

    def configure(self, options: FusionOptions) -> None:
        """
        Validate and store a private copy of ``options``.

        Raises:
            ConfigurationError: If the options are of the wrong type or invalid
        """
        if not isinstance(options, self.options_type):
            raise ConfigurationError(
                f"{type(self).__name__} needs {self.options_type.__name__}, "
                f"got {type(options).__name__}",
                "options",
                type(options).__name__,
            )
        options.validate()
        self._options = options.copy()
        logger.debug(f"{type(self).__name__} configured with {self._options.to_dict()}")

    @property
    def output_image(self) -> Optional[Raster]:
        """Result of the most recent prediction (None before the first)."""
        return self._output

    @output_image.setter
    def output_image(self, raster: Optional[Raster]) -> None:
        # Used to hand in a buffer to write into, e.g. a view of a shared output
        self._output = raster

    def clone(self) -> "DataFusor":
        """Independent instance with the same store and options, but its own output."""
        other = type(self)()
        other._store = self._store
        if self._options is not None:
            other._options = self._options.copy()
        return other

    def predict(self, date: int, mask: Optional[MaskLike] = None) -> Raster:
        """
        Predict the high resolution image at ``date``.

        Only pixels where ``mask`` is set are written; all others keep the
        value they had in the output buffer.

        Args:
            date: Target date, must have a low resolution image in the store
            mask: Optional bool / unsigned integer mask of the prediction
                area's size with one channel or one per image channel

        Returns:
            The output image (also available as ``output_image``)

        Raises:
            ConfigurationError: If the fusor is not configured
            NotFoundError: If the store or a required image is missing
            ShapeMismatchError: If images or the mask do not fit together
        """
        options = self._options
        if options is None:
            raise ConfigurationError(f"{type(self).__name__} is not configured")
        if self._store is None:
            raise NotFoundError("No source store set")

        reference = self._store.get(options.high_tag, options.pair_dates[0])
        area = self._resolve_area(reference)
        mask_array = self.check_mask(mask, area, reference.channels)
        inputs = self._collect_inputs(date, area, reference)

        output = self._prepare_output(area, reference)
        if not area.is_empty:
            self._predict_area(inputs, area, mask_array, output.data)
        return output

    def _resolve_area(self, reference: Raster) -> Rectangle:
        area = self._options.prediction_area
        if area is None:
            return reference.bounds
        if not reference.bounds.contains(area):
            raise SizeError(
                "Prediction area does not fit into the source images",
                expected=reference.bounds,
                found=area,
            )
        return area

    @staticmethod
    def check_mask(mask: Optional[MaskLike], area: Rectangle, channels: int) -> Optional[np.ndarray]:
        """
        Check ``mask`` against the prediction area and return it as a bool array.

        Accepts a Raster or an array of shape (rows, cols) or
        (1 or channels, rows, cols).

        Raises:
            SizeError: If the mask size differs from the prediction area
            ImageTypeError: If the mask type or channel count is invalid
        """
        if mask is None:
            return None
        mask_raster = mask if isinstance(mask, Raster) else Raster(np.asarray(mask))
        if mask_raster.size != (area.width, area.height):
            raise SizeError(
                "Mask size does not match the prediction area",
                expected=(area.width, area.height),
                found=mask_raster.size,
            )
        target = Raster(np.broadcast_to(np.zeros((1, 1, 1)), (channels, area.height, area.width)))
        if not mask_raster.is_mask_for(target):
            raise ImageTypeError(
                "Mask must be bool or unsigned integer with 1 or one channel per image channel",
                expected=(1, channels),
                found=(mask_raster.channels, str(mask_raster.dtype)),
            )
        return mask_raster.data.astype(bool)

    def _collect_inputs(self, date: int, area: Rectangle, reference: Raster) -> FusionInputs:
        options = self._options
        sample_area = area.grown(options.window_radius, reference.bounds)
        inputs = FusionInputs(sample_area=sample_area)

        masks = []
        for pair_date in options.pair_dates:
            inputs.high[pair_date] = self._load(options.high_tag, pair_date, reference, sample_area, masks)
            inputs.low[pair_date] = self._load(options.low_tag, pair_date, reference, sample_area, masks)
        inputs.low_target = self._load(options.low_tag, date, reference, sample_area, masks)

        if masks:
            valid = np.logical_and.reduce(np.broadcast_arrays(*masks))
            inputs.valid = np.broadcast_to(valid, inputs.low_target.shape).copy()
            logger.debug(f"{int((~inputs.valid).sum())} invalid source pixels in the sample area")
        return inputs

    def _load(
        self,
        tag: str,
        date: int,
        reference: Raster,
        sample_area: Rectangle,
        masks: List[np.ndarray],
    ) -> np.ndarray:
        raster = self._store.get(tag, date)
        if raster.size != reference.size:
            raise SizeError(
                f"Image ({tag}, {date}) differs in size from the reference",
                expected=reference.size,
                found=raster.size,
            )
        if raster.channels != reference.channels:
            raise ImageTypeError(
                f"Image ({tag}, {date}) differs in channel count from the reference",
                expected=reference.channels,
                found=raster.channels,
            )
        if tag == self._options.high_tag and raster.dtype != reference.dtype:
            raise ImageTypeError(
                f"Image ({tag}, {date}) differs in type from the reference",
                expected=str(reference.dtype),
                found=str(raster.dtype),
            )
        rows, cols = sample_area.to_slice()
        if raster.mask is not None:
            if raster.mask.shape[0] not in (1, raster.channels):
                raise ImageTypeError(
                    f"Mask of image ({tag}, {date}) needs 1 or {raster.channels} channels",
                    expected=(1, raster.channels),
                    found=raster.mask.shape[0],
                )
            masks.append(raster.mask[:, rows, cols])
        return raster.data[:, rows, cols].astype(np.float64)

    def _prepare_output(self, area: Rectangle, reference: Raster) -> Raster:
        output = self._output
        if (
            output is not None
            and output.size == (area.width, area.height)
            and output.channels == reference.channels
            and output.dtype == reference.dtype
        ):
            return output
        self._output = Raster.zeros(area.width, area.height, reference.channels, reference.dtype)
        return self._output

    @abstractmethod
    def _predict_area(
        self,
        inputs: FusionInputs,
        area: Rectangle,
        mask: Optional[np.ndarray],
        out: np.ndarray,
    ) -> None:
        """
        Write predictions for ``area`` into ``out``.

        Args:
            inputs: Source images cropped to the sample area
            area: Prediction area in image coordinates
            mask: Bool array (1 or bands, rows, cols) or None
            out: Output array (bands, rows, cols) of the prediction area
        """


class ChannelWindows:
    """
    Windows of one channel of the source images, taken one output row at a time.

    The sample area planes are padded so that every pixel of the prediction
    area has a full ``window_size`` x ``window_size`` window. Padded pixels
    are invalid, so windows at the image border behave like windows clipped
    to the image. Invalid pixels are zeroed and must be excluded through
    ``valid``.

    Windows come back as contiguous (pixels, window_size**2) arrays in
    row-major window order, so the sums for a pixel do not depend on the
    prediction area it belongs to.
    """

    def __init__(self, inputs: FusionInputs, area: Rectangle, channel: int, window_size: int):
        radius = window_size // 2
        sample = inputs.sample_area
        pad = (
            (radius - (area.y - sample.y), radius - (sample.bottom - area.bottom)),
            (radius - (area.x - sample.x), radius - (sample.right - area.right)),
        )
        valid = inputs.valid_plane(channel)

        self.window_size = window_size
        self.radius = radius
        self.width = area.width
        self.center = radius * window_size + radius
        self.valid = np.pad(valid, pad, mode="constant", constant_values=False)
        self.target = self._pad(inputs.low_target[channel], valid, pad)
        self.pairs = [
            (self._pad(inputs.high[d][channel], valid, pad), self._pad(inputs.low[d][channel], valid, pad))
            for d in inputs.high
        ]

    @staticmethod
    def _pad(plane: np.ndarray, valid: np.ndarray, pad) -> np.ndarray:
        return np.pad(np.where(valid, plane, 0.0), pad, mode="constant", constant_values=0.0)

    def active_columns(self, row: int, plane_mask: Optional[np.ndarray]) -> np.ndarray:
        """Columns of output row ``row`` to predict: masked in and valid at the center."""
        r = self.radius
        active = self.valid[row + r, r : r + self.width]
        if plane_mask is not None:
            active = active & plane_mask[row]
        return np.flatnonzero(active)

    def windows(self, plane: np.ndarray, row: int, cols: np.ndarray) -> np.ndarray:
        """Windows of ``plane`` around the pixels ``cols`` of output row ``row``."""
        size = self.window_size
        views = np.lib.stride_tricks.sliding_window_view(plane[row : row + size], (size, size))[0]
        return np.ascontiguousarray(views[cols]).reshape(len(cols), size * size)


def distance_weights(window_size: int) -> np.ndarray:
    """
    Relative spatial distance ``1 + d / (window_size / 2)`` of all window pixels.

    Returned flattened in row-major order of the window.
    """
    offsets = np.arange(window_size, dtype=np.float64) - window_size // 2
    dist = np.sqrt(offsets[:, np.newaxis] ** 2 + offsets[np.newaxis, :] ** 2)
    return (1.0 + dist / (window_size / 2.0)).ravel()


def valid_range(windows: Sequence[np.ndarray], valid: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-window minimum and maximum over the valid pixels of all ``windows``, as columns."""
    low = np.min([np.where(valid, w, np.inf).min(axis=1) for w in windows], axis=0)
    high = np.max([np.where(valid, w, -np.inf).max(axis=1) for w in windows], axis=0)
    return low[:, np.newaxis], high[:, np.newaxis]


def classify(values: np.ndarray, number_classes: float, low, high) -> np.ndarray:
    """
    Bin ``values`` linearly into ``number_classes`` classes over [low, high].

    ``low`` and ``high`` broadcast against ``values``. Values land in class 0
    where the range is empty.
    """
    low = np.asarray(low, dtype=np.float64)
    span = np.asarray(high, dtype=np.float64) - low
    empty = ~(span > 0)
    top = int(np.ceil(number_classes)) - 1
    scale = number_classes / np.where(empty, 1.0, span)
    classes = np.clip(np.floor((values - low) * scale), 0, top).astype(np.int64)
    return np.where(empty, 0, classes)


def apply_zero_difference(
    prediction: np.ndarray,
    pairs: Sequence[Tuple[np.ndarray, np.ndarray]],
    target: np.ndarray,
) -> np.ndarray:
    """
    Zero-difference shortcut for the center pixels of one row.

    Where a reference date's high and low values are equal, the target low
    value is taken. Where the low value did not change since a reference
    date, that date's high value is taken (averaged over both dates if both
    are unchanged). The second rule wins.

    Args:
        prediction: Regular predictions
        pairs: (high, low) center values per reference date
        target: Target low center values
    """
    spectral_zero = np.zeros(prediction.shape, dtype=bool)
    count = np.zeros(prediction.shape)
    total = np.zeros(prediction.shape)
    for high, low in pairs:
        spectral_zero |= high == low
        unchanged = low == target
        count += unchanged
        total += np.where(unchanged, high, 0.0)
    result = np.where(spectral_zero, target, prediction)
    return np.where(count > 0, total / np.maximum(count, 1.0), result)


def store_row(out: np.ndarray, channel: int, row: int, cols: np.ndarray, values: np.ndarray) -> None:
    """Write ``values`` to ``out``, rounding and saturating for integer types."""
    if np.issubdtype(out.dtype, np.integer):
        info = np.iinfo(out.dtype)
        values = np.clip(np.rint(values), info.min, info.max)
    out[channel, row, cols] = values


def mask_for_channel(mask: Optional[np.ndarray], channel: int) -> Optional[np.ndarray]:
    """The (rows, cols) mask plane that applies to ``channel``."""
    if mask is None:
        return None
    return mask[0] if mask.shape[0] == 1 else mask[channel]
