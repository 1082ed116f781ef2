"""
Similarity-Weighted Fusion (STARFM).

Predicts each high resolution pixel from the low resolution change
between reference date and target date, averaged over similar pixels in a
window around it.

For every pixel, channel and reference date k:

1. Window of ``window_size`` pixels around the pixel, clipped to the image.
   Pixels masked out in any source image are never used.
2. Low resolution values in the window are binned into ``number_classes``
   classes over the window's value range.
3. Candidates share the center's class and have a spectral difference
   S = |h_k - l_k| and temporal difference T = |l_k - l_target| within
   the center's differences plus their uncertainty (times a small safety
   factor). If no pixel passes, the whole window is used.
4. Weights are 1 / (D * max((1 + S)(1 + T), sigma_c)) with the spatial
   distance D = 1 + d / (window_size / 2), normalized to sum 1.
5. Prediction p_k = h_k(center) + sum(w * (l_target - l_k)).

In double-pair mode both p_k are combined with weights inversely
proportional to the mean squared low resolution change of the candidates,
so the date with less change dominates.

A whole output row is computed at once, so the work runs in numpy.
"""

import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from stfusion.core.options import StarfmOptions
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

logger = logging.getLogger(__name__)

# Tolerance on candidate thresholds, keeps near-threshold pixels of good quality
THRESHOLD_SAFETY_FACTOR = 1.0001

# Added to the change variance before inverting it
CHANGE_VARIANCE_EPSILON = 1e-10


class StarfmFusor(DataFusor):
    """
    Similarity-weighted spatiotemporal fusion.

    Supports single-pair and double-pair mode. With ``copy_on_zero_diff``
    pixels whose low resolution value did not change since a reference
    date are copied from that date's high resolution image, and pixels
    whose reference high and low values agree take the target low value.
    """

    options_type = StarfmOptions

    def _predict_area(
        self,
        inputs: FusionInputs,
        area: Rectangle,
        mask: Optional[np.ndarray],
        out: np.ndarray,
    ) -> None:
        options = self._options
        sigma_t = options.temporal_uncertainty
        sigma_s = options.spectral_uncertainty
        self._sigma_dt = sigma_t * math.sqrt(2)
        self._sigma_ds = math.sqrt(sigma_t * sigma_t + sigma_s * sigma_s)
        self._sigma_combined = math.sqrt(self._sigma_ds ** 2 + self._sigma_dt ** 2)
        self._use_temporal = options.uses_temporal_weighting()
        distance = distance_weights(options.window_size)

        logger.debug(
            f"STARFM predicting {area.width}x{area.height} at ({area.x}, {area.y}) "
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
        """Predictions for the pixels ``cols`` of output row ``row``."""
        center = windows.center
        valid = windows.windows(windows.valid, row, cols)
        target = windows.windows(windows.target, row, cols)

        estimates: List[np.ndarray] = []
        variances: List[np.ndarray] = []
        centers: List[Tuple[np.ndarray, np.ndarray]] = []
        for high_plane, low_plane in windows.pairs:
            high = windows.windows(high_plane, row, cols)
            low = windows.windows(low_plane, row, cols)
            change = target - low
            spectral = np.abs(high - low)
            temporal = np.abs(change)

            selected = self._select_candidates(low, spectral, temporal, valid, center)
            weights = self._weights(spectral, temporal, distance, selected)
            estimates.append(high[:, center] + np.sum(weights * change, axis=1))
            squared = np.where(selected, change * change, 0.0)
            variances.append(np.sum(squared, axis=1) / np.sum(selected, axis=1))
            centers.append((high[:, center], low[:, center]))

        if len(estimates) == 1:
            prediction = estimates[0]
        else:
            date_weights = 1.0 / (np.asarray(variances) + CHANGE_VARIANCE_EPSILON)
            date_weights /= np.sum(date_weights, axis=0)
            prediction = np.sum(date_weights * np.asarray(estimates), axis=0)

        if self._options.copy_on_zero_diff:
            prediction = apply_zero_difference(prediction, centers, target[:, center])
        return prediction

    def _select_candidates(
        self,
        low: np.ndarray,
        spectral: np.ndarray,
        temporal: np.ndarray,
        valid: np.ndarray,
        center: int,
    ) -> np.ndarray:
        """Boolean selection of the candidate pixels, one window per row."""
        options = self._options
        range_low, range_high = valid_range([low], valid)
        classes = classify(low, options.number_classes, range_low, range_high)

        spectral_limit = (spectral[:, center : center + 1] + self._sigma_ds) * THRESHOLD_SAFETY_FACTOR
        temporal_limit = (temporal[:, center : center + 1] + self._sigma_dt) * THRESHOLD_SAFETY_FACTOR
        spectral_ok = spectral <= spectral_limit
        temporal_ok = temporal <= temporal_limit
        if options.use_strict_filtering:
            similar = spectral_ok & temporal_ok
        else:
            similar = spectral_ok | temporal_ok

        selected = (classes == classes[:, center : center + 1]) & similar & valid
        empty = ~selected.any(axis=1)
        selected[empty] = valid[empty]
        return selected

    def _weights(
        self,
        spectral: np.ndarray,
        temporal: np.ndarray,
        distance: np.ndarray,
        selected: np.ndarray,
    ) -> np.ndarray:
        """Candidate weights, normalized per window."""
        if not self._use_temporal:
            temporal = np.zeros_like(temporal)
        log_scale = self._options.log_scale_factor
        if log_scale > 0:
            combined = np.log(2.0 + spectral * log_scale) * np.log(2.0 + temporal * log_scale)
        else:
            combined = np.maximum((1.0 + spectral) * (1.0 + temporal), self._sigma_combined)
        weights = np.where(selected, 1.0 / (distance * combined), 0.0)
        return weights / np.sum(weights, axis=1, keepdims=True)
