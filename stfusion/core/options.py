"""
Options for Fusion Algorithms and the Parallel Driver.

Each algorithm has its own options dataclass derived from FusionOptions.
Fusors keep a private deep copy of the options they were configured with,
so later changes to an options object never affect a configured fusor.

Example Usage:
    from stfusion.core.options import StarfmOptions

    options = StarfmOptions(high_tag="high", low_tag="low", window_size=31)
    options.set_double_pair_dates(1, 3)
    options.validate()
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from stfusion.core.exceptions import ConfigurationError
from stfusion.core.raster import Rectangle

logger = logging.getLogger(__name__)


def _as_rectangle(value: Any) -> Any:
    """Turn a ``{"x", "y", "width", "height"}`` dict into a Rectangle."""
    if not isinstance(value, dict):
        return value
    try:
        return Rectangle.from_dict(value)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid prediction area: {e}", "prediction_area", value) from e


class TempDiffWeighting(Enum):
    """Whether the temporal difference enters the candidate weights."""

    ENABLE = "enable"
    DISABLE = "disable"
    ON_DOUBLE_PAIR = "on_double_pair"  # only in double-pair mode


@dataclass
class FusionOptions:
    """
    Options shared by all fusion algorithms.

    Attributes:
        high_tag: Store tag of the high resolution images
        low_tag: Store tag of the low resolution images
        prediction_area: Output rectangle; None predicts the whole image
        window_size: Full width of the square search window (odd, >= 1)
        number_classes: Number of brightness classes for candidate selection
        copy_on_zero_diff: Copy the reference high value where the low
            resolution value did not change
        pair_dates: One (single-pair) or two (double-pair) reference dates
    """

    high_tag: str = "high"
    low_tag: str = "low"
    prediction_area: Optional[Rectangle] = None
    window_size: int = 51
    number_classes: float = 40
    copy_on_zero_diff: bool = False
    pair_dates: Tuple[int, ...] = ()

    def __post_init__(self):
        self.prediction_area = _as_rectangle(self.prediction_area)
        self.pair_dates = tuple(int(d) for d in self.pair_dates)
        self._check_values()

    def _check_values(self) -> None:
        if isinstance(self.window_size, bool) or int(self.window_size) != self.window_size:
            raise ConfigurationError("Window size must be an integer", "window_size", self.window_size)
        if self.window_size < 1 or self.window_size % 2 == 0:
            raise ConfigurationError(
                "Window size must be odd and at least 1", "window_size", self.window_size
            )
        if not self.number_classes > 0:
            raise ConfigurationError(
                "Number of classes must be positive", "number_classes", self.number_classes
            )
        if self.prediction_area is not None and not isinstance(self.prediction_area, Rectangle):
            raise ConfigurationError(
                "Prediction area must be a Rectangle or None",
                "prediction_area",
                self.prediction_area,
            )
        if len(self.pair_dates) > 2:
            raise ConfigurationError("At most two pair dates are supported", "pair_dates", self.pair_dates)
        if len(self.pair_dates) == 2 and self.pair_dates[0] == self.pair_dates[1]:
            raise ConfigurationError("Pair dates must differ", "pair_dates", self.pair_dates)

    @property
    def window_radius(self) -> int:
        """Half size of the window, not counting the center pixel."""
        return self.window_size // 2

    def set_single_pair_date(self, date: int) -> None:
        self.pair_dates = (int(date),)

    def set_double_pair_dates(self, date1: int, date3: int) -> None:
        if date1 == date3:
            raise ConfigurationError(
                "Double pair mode needs two different dates", "pair_dates", (date1, date3)
            )
        self.pair_dates = (int(date1), int(date3))

    @property
    def is_single_pair_mode(self) -> bool:
        return len(self.pair_dates) == 1

    @property
    def is_double_pair_mode(self) -> bool:
        return len(self.pair_dates) == 2

    def validate(self) -> None:
        """
        Check the options for completeness and consistency.

        Raises:
            ConfigurationError: If tags or dates are missing or any value
                is out of range
        """
        self._check_values()
        if not self.high_tag or not self.low_tag:
            raise ConfigurationError(
                "High and low resolution tags must be set",
                "tags",
                (self.high_tag, self.low_tag),
            )
        if self.high_tag == self.low_tag:
            raise ConfigurationError(
                "High and low resolution tags must differ", "tags", (self.high_tag, self.low_tag)
            )
        if not self.pair_dates:
            raise ConfigurationError("No pair date set", "pair_dates", self.pair_dates)

    def copy(self) -> "FusionOptions":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary."""
        return {
            "high_tag": self.high_tag,
            "low_tag": self.low_tag,
            "prediction_area": None if self.prediction_area is None else self.prediction_area.to_dict(),
            "window_size": self.window_size,
            "number_classes": self.number_classes,
            "copy_on_zero_diff": self.copy_on_zero_diff,
            "pair_dates": list(self.pair_dates),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FusionOptions":
        """Create options from dictionary, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "temporal_weighting" in kwargs and not isinstance(kwargs["temporal_weighting"], Enum):
            kwargs["temporal_weighting"] = TempDiffWeighting(kwargs["temporal_weighting"])
        if kwargs.get("data_range") is not None:
            kwargs["data_range"] = tuple(kwargs["data_range"])
        return cls(**kwargs)


@dataclass
class StarfmOptions(FusionOptions):
    """
    Options of the similarity-weighted algorithm.

    Attributes:
        spectral_uncertainty: Uncertainty of the high/low difference (sigma_s)
        temporal_uncertainty: Uncertainty of the low/low difference (sigma_t)
        use_strict_filtering: Reject a candidate if either threshold is
            exceeded (otherwise only if both are)
        temporal_weighting: Whether the temporal difference is part of the weight
        log_scale_factor: If > 0, weights use ln(b * diff + 2) instead of (1 + diff)
    """

    spectral_uncertainty: float = 1.0
    temporal_uncertainty: float = 1.0
    use_strict_filtering: bool = True
    temporal_weighting: TempDiffWeighting = TempDiffWeighting.ENABLE
    log_scale_factor: float = 0.0

    def _check_values(self) -> None:
        super()._check_values()
        if self.spectral_uncertainty < 0:
            raise ConfigurationError(
                "Spectral uncertainty must not be negative",
                "spectral_uncertainty",
                self.spectral_uncertainty,
            )
        if self.temporal_uncertainty < 0:
            raise ConfigurationError(
                "Temporal uncertainty must not be negative",
                "temporal_uncertainty",
                self.temporal_uncertainty,
            )
        if self.log_scale_factor < 0:
            raise ConfigurationError(
                "Log scale factor must not be negative", "log_scale_factor", self.log_scale_factor
            )
        if not isinstance(self.temporal_weighting, TempDiffWeighting):
            raise ConfigurationError(
                "Invalid temporal weighting", "temporal_weighting", self.temporal_weighting
            )

    def uses_temporal_weighting(self) -> bool:
        if self.temporal_weighting == TempDiffWeighting.ON_DOUBLE_PAIR:
            return self.is_double_pair_mode
        return self.temporal_weighting == TempDiffWeighting.ENABLE

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "spectral_uncertainty": self.spectral_uncertainty,
                "temporal_uncertainty": self.temporal_uncertainty,
                "use_strict_filtering": self.use_strict_filtering,
                "temporal_weighting": self.temporal_weighting.value,
                "log_scale_factor": self.log_scale_factor,
            }
        )
        return result


@dataclass
class EstarfmOptions(FusionOptions):
    """
    Options of the regression-enhanced algorithm.

    Attributes:
        use_smooth_regression: Blend the slope toward 1 by the squared
            correlation instead of the hard F-test fallback
        data_range: Optional (min, max) of valid output values; predictions
            outside fall back to the weighted high resolution average
        min_candidates: Below this number of candidates only the center
            pixel's own change is used
    """

    use_smooth_regression: bool = False
    data_range: Optional[Tuple[float, float]] = None
    min_candidates: int = 6

    def _check_values(self) -> None:
        super()._check_values()
        if self.data_range is not None:
            if len(self.data_range) != 2 or not self.data_range[0] < self.data_range[1]:
                raise ConfigurationError(
                    "Data range must be (min, max) with min < max", "data_range", self.data_range
                )
        if self.min_candidates < 1:
            raise ConfigurationError(
                "Minimum number of candidates must be at least 1",
                "min_candidates",
                self.min_candidates,
            )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "use_smooth_regression": self.use_smooth_regression,
                "data_range": None if self.data_range is None else list(self.data_range),
                "min_candidates": self.min_candidates,
            }
        )
        return result


def _default_thread_count() -> int:
    return os.cpu_count() or 1


@dataclass
class ParallelizerOptions:
    """
    Options of the partition-parallel driver.

    Attributes:
        alg_options: Options of the wrapped algorithm; their prediction area
            is replaced by the driver's
        number_of_threads: Number of worker threads (>= 1)
        prediction_area: Output rectangle; None predicts the whole image
    """

    alg_options: Optional[FusionOptions] = None
    number_of_threads: int = field(default_factory=_default_thread_count)
    prediction_area: Optional[Rectangle] = None

    def __post_init__(self):
        self.prediction_area = _as_rectangle(self.prediction_area)

    def validate(self) -> None:
        if isinstance(self.number_of_threads, bool) or int(self.number_of_threads) != self.number_of_threads:
            raise ConfigurationError(
                "Number of threads must be an integer", "number_of_threads", self.number_of_threads
            )
        if self.number_of_threads < 1:
            raise ConfigurationError(
                "Number of threads must be at least 1", "number_of_threads", self.number_of_threads
            )
        if self.prediction_area is not None and not isinstance(self.prediction_area, Rectangle):
            raise ConfigurationError(
                "Prediction area must be a Rectangle or None", "prediction_area", self.prediction_area
            )
        if self.alg_options is None:
            raise ConfigurationError("Algorithm options are not set", "alg_options", None)
        self.alg_options.validate()

    def copy(self) -> "ParallelizerOptions":
        return copy.deepcopy(self)
