"""
Regression-Enhanced Fusion (ESTARFM).

Like the similarity-weighted algorithm, but the low resolution change is
converted to high resolution change with a locally fitted, quality-gated
regression slope.

For every pixel and channel:

1. The valid low resolution values of all reference dates in the window
   are binned into classes over one common value range. Candidates are
   valid and have the center's class at every reference date; the center
   is always one.
2. For each reference date k a line h_k = a + b * l_k is fitted over the
   candidates and the slope is gated (see ``regression.regress``).
3. Candidates are weighted by 1 / (D * (1 + |residual|)) with the spatial
   distance D and their residual to the fitted line.
4. p_k = h_k(center) + b * sum(w * (l_target - l_k)).

In double-pair mode the estimates are combined with weights inversely
proportional to the residual variance of each date's fit.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from stfusion.core.options import EstarfmOptions
from stfusion.core.raster import Rectangle
from stfusion.fusion.base import (
    ChannelWindows,
    DataFusor,
    FusionInputs,
    apply_zero_difference,
    classify,
    distance_weights,
    mask_for_channel,
    store_row,
    valid_range,
)
from stfusion.fusion.regression import fit_lines

logger = logging.getLogger(__name__)

# Added to the residual variance before inverting it
RESIDUAL_VARIANCE_EPSILON = 1e-10


class EstarfmFusor(DataFusor):
    """
    Regression-enhanced spatiotemporal fusion.

    Supports single-pair and double-pair mode, correlation-smoothed slopes
    and an optional valid data range for the output.
    """

    options_type = EstarfmOptions

    def _predict_area(
        self,
        inputs: FusionInputs,
        area: Rectangle,
        mask: Optional[np.ndarray],
        out: np.ndarray,
    ) -> None:
        options = self._options
        distance = distance_weights(options.window_size)

        logger.debug(
            f"ESTARFM predicting {area.width}x{area.height} at ({area.x}, {area.y}) "
            f"from pair dates {options.pair_dates}"
        )
        for c in range(out.shape[0]):
            plane_mask = mask_for_channel(mask, c)
            windows = ChannelWindows(inputs, area, c, options.window_size)
            for y in range(area.height):
                cols = windows.active_columns(y, plane_mask)
                if cols.size:
                    store_row(out, c, y, cols, self._predict_row(windows, y, cols, distance))

    def _predict_row(
        self,
        windows: ChannelWindows,
        row: int,
        cols: np.ndarray,
        distance: np.ndarray,
    ) -> np.ndarray:
        options = self._options
        center = windows.center
        valid = windows.windows(windows.valid, row, cols)
        target = windows.windows(windows.target, row, cols)
        pairs = [
            (windows.windows(high, row, cols), windows.windows(low, row, cols))
            for high, low in windows.pairs
        ]

        selected = self._select_candidates([low for _, low in pairs], valid, center)
        enough = np.sum(selected, axis=1) >= options.min_candidates
        selected[~enough] = False
        selected[~enough, center] = True

        estimates: List[np.ndarray] = []
        variances: List[np.ndarray] = []
        fallbacks: List[np.ndarray] = []
        centers: List[Tuple[np.ndarray, np.ndarray]] = []
        for high, low in pairs:
            fit = fit_lines(low, high, selected, smooth=options.use_smooth_regression)
            slope = np.where(enough, fit.slope, 1.0)

            residuals = np.abs(high - (fit.intercept[:, np.newaxis] + fit.slope[:, np.newaxis] * low))
            weights = np.where(selected, 1.0 / (distance * (1.0 + residuals)), 0.0)
            weights /= np.sum(weights, axis=1, keepdims=True)

            change = target - low
            estimates.append(high[:, center] + slope * np.sum(weights * change, axis=1))
            variances.append(fit.residual_variance)
            fallbacks.append(np.sum(weights * high, axis=1))
            centers.append((high[:, center], low[:, center]))

        if len(estimates) == 1:
            date_weights = np.ones((1, len(cols)))
        else:
            date_weights = 1.0 / (np.asarray(variances) + RESIDUAL_VARIANCE_EPSILON)
            date_weights /= np.sum(date_weights, axis=0)
        prediction = np.sum(date_weights * np.asarray(estimates), axis=0)

        if options.data_range is not None:
            low_limit, high_limit = options.data_range
            outside = (prediction < low_limit) | (prediction > high_limit)
            prediction = np.where(outside, np.sum(date_weights * np.asarray(fallbacks), axis=0), prediction)

        if options.copy_on_zero_diff:
            prediction = apply_zero_difference(prediction, centers, target[:, center])
        return prediction

    def _select_candidates(self, lows: List[np.ndarray], valid: np.ndarray, center: int) -> np.ndarray:
        """Valid pixels with the center's class at every reference date."""
        number_classes = self._options.number_classes
        range_low, range_high = valid_range(lows, valid)
        selected = valid.copy()
        for low in lows:
            classes = classify(low, number_classes, range_low, range_high)
            selected &= classes == classes[:, center : center + 1]
        return selected
