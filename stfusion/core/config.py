"""
Configuration for Fusion Runs.

Provides dataclasses and utilities for configuring fusion runs from YAML
files and environment variables, and for turning the configuration into
algorithm and driver options.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from stfusion.core.exceptions import ConfigurationError
from stfusion.core.options import (
    EstarfmOptions,
    FusionOptions,
    ParallelizerOptions,
    StarfmOptions,
    TempDiffWeighting,
)
from stfusion.core.raster import Rectangle

logger = logging.getLogger(__name__)

ALGORITHMS = ("starfm", "estarfm")


@dataclass
class StarfmSettings:
    """
    Settings of the similarity-weighted algorithm.

    Attributes:
        spectral_uncertainty: sigma_s, suggested 1 for 8 bit and 50 for 16 bit data
        temporal_uncertainty: sigma_t, suggested 1 for 8 bit and 50 for 16 bit data
        use_strict_filtering: Reject candidates failing either threshold
        temporal_weighting: "enable", "disable" or "on_double_pair"
        log_scale_factor: Logarithmic weighting if > 0
    """

    spectral_uncertainty: float = 1.0
    temporal_uncertainty: float = 1.0
    use_strict_filtering: bool = True
    temporal_weighting: str = "enable"
    log_scale_factor: float = 0.0


@dataclass
class EstarfmSettings:
    """
    Settings of the regression-enhanced algorithm.

    Attributes:
        use_smooth_regression: Correlation-smoothed instead of F-test gated slopes
        data_range: Optional [min, max] of valid output values
        min_candidates: Minimum number of candidates for a local regression
    """

    use_smooth_regression: bool = False
    data_range: Optional[list] = None
    min_candidates: int = 6


@dataclass
class ParallelSettings:
    """
    Settings of the parallel driver.

    Attributes:
        number_of_threads: Worker threads; None uses the CPU count
    """

    number_of_threads: Optional[int] = None


@dataclass
class FusionConfig:
    """
    Complete fusion configuration.

    Attributes:
        algorithm: "starfm" or "estarfm"
        high_tag: Store tag of high resolution images
        low_tag: Store tag of low resolution images
        window_size: Full search window width (odd)
        number_classes: Number of brightness classes
        copy_on_zero_diff: Copy reference values where the low resolution image did not change
        starfm: Similarity-weighted algorithm settings
        estarfm: Regression-enhanced algorithm settings
        parallel: Parallel driver settings
    """

    algorithm: str = "starfm"
    high_tag: str = "high"
    low_tag: str = "low"
    window_size: int = 51
    number_classes: float = 40
    copy_on_zero_diff: bool = False
    starfm: StarfmSettings = field(default_factory=StarfmSettings)
    estarfm: EstarfmSettings = field(default_factory=EstarfmSettings)
    parallel: ParallelSettings = field(default_factory=ParallelSettings)

    def __post_init__(self):
        if self.algorithm not in ALGORITHMS:
            raise ConfigurationError(
                f"Unknown algorithm, choose one of {list(ALGORITHMS)}", "algorithm", self.algorithm
            )

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "FusionConfig":
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary (e.g., from YAML)

        Returns:
            FusionConfig instance
        """
        starfm_dict = config_dict.get("starfm", {}) or {}
        estarfm_dict = config_dict.get("estarfm", {}) or {}
        parallel_dict = config_dict.get("parallel", {}) or {}

        return cls(
            algorithm=config_dict.get("algorithm", "starfm"),
            high_tag=config_dict.get("high_tag", "high"),
            low_tag=config_dict.get("low_tag", "low"),
            window_size=config_dict.get("window_size", 51),
            number_classes=config_dict.get("number_classes", 40),
            copy_on_zero_diff=config_dict.get("copy_on_zero_diff", False),
            starfm=StarfmSettings(
                spectral_uncertainty=starfm_dict.get("spectral_uncertainty", 1.0),
                temporal_uncertainty=starfm_dict.get("temporal_uncertainty", 1.0),
                use_strict_filtering=starfm_dict.get("use_strict_filtering", True),
                temporal_weighting=starfm_dict.get("temporal_weighting", "enable"),
                log_scale_factor=starfm_dict.get("log_scale_factor", 0.0),
            ),
            estarfm=EstarfmSettings(
                use_smooth_regression=estarfm_dict.get("use_smooth_regression", False),
                data_range=estarfm_dict.get("data_range"),
                min_candidates=estarfm_dict.get("min_candidates", 6),
            ),
            parallel=ParallelSettings(
                number_of_threads=parallel_dict.get("number_of_threads"),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "FusionConfig":
        """
        Load configuration from YAML file.

        The settings may be nested under a top-level ``fusion`` key.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            FusionConfig instance
        """
        path = Path(yaml_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}

        if "fusion" in config_dict:
            config_dict = config_dict["fusion"] or {}

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls) -> "FusionConfig":
        """
        Create configuration from environment variables.

        Environment variables override default values:
        - STFUSION_ALGORITHM
        - STFUSION_THREADS
        - STFUSION_WINDOW_SIZE
        - STFUSION_NUMBER_CLASSES

        Returns:
            FusionConfig instance
        """
        config = cls()
        config.apply_environment()
        return config

    def apply_environment(self) -> None:
        """Override values set in the environment, ignoring malformed numbers."""
        if os.environ.get("STFUSION_ALGORITHM"):
            algorithm = os.environ["STFUSION_ALGORITHM"].lower()
            if algorithm in ALGORITHMS:
                self.algorithm = algorithm
            else:
                logger.warning(f"Ignoring unknown STFUSION_ALGORITHM={algorithm}")

        if os.environ.get("STFUSION_THREADS"):
            try:
                self.parallel.number_of_threads = int(os.environ["STFUSION_THREADS"])
            except ValueError:
                logger.warning(f"Ignoring malformed STFUSION_THREADS={os.environ['STFUSION_THREADS']}")

        if os.environ.get("STFUSION_WINDOW_SIZE"):
            try:
                self.window_size = int(os.environ["STFUSION_WINDOW_SIZE"])
            except ValueError:
                logger.warning(
                    f"Ignoring malformed STFUSION_WINDOW_SIZE={os.environ['STFUSION_WINDOW_SIZE']}"
                )

        if os.environ.get("STFUSION_NUMBER_CLASSES"):
            try:
                self.number_classes = float(os.environ["STFUSION_NUMBER_CLASSES"])
            except ValueError:
                logger.warning(
                    f"Ignoring malformed STFUSION_NUMBER_CLASSES={os.environ['STFUSION_NUMBER_CLASSES']}"
                )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "algorithm": self.algorithm,
            "high_tag": self.high_tag,
            "low_tag": self.low_tag,
            "window_size": self.window_size,
            "number_classes": self.number_classes,
            "copy_on_zero_diff": self.copy_on_zero_diff,
            "starfm": {
                "spectral_uncertainty": self.starfm.spectral_uncertainty,
                "temporal_uncertainty": self.starfm.temporal_uncertainty,
                "use_strict_filtering": self.starfm.use_strict_filtering,
                "temporal_weighting": self.starfm.temporal_weighting,
                "log_scale_factor": self.starfm.log_scale_factor,
            },
            "estarfm": {
                "use_smooth_regression": self.estarfm.use_smooth_regression,
                "data_range": None if self.estarfm.data_range is None else list(self.estarfm.data_range),
                "min_candidates": self.estarfm.min_candidates,
            },
            "parallel": {
                "number_of_threads": self.parallel.number_of_threads,
            },
        }

    def build_options(
        self,
        pair_dates: Sequence[int],
        prediction_area: Optional[Rectangle] = None,
    ) -> FusionOptions:
        """
        Create the options of the configured algorithm.

        Args:
            pair_dates: One or two reference dates
            prediction_area: Output rectangle, None for the whole image

        Returns:
            StarfmOptions or EstarfmOptions
        """
        common = dict(
            high_tag=self.high_tag,
            low_tag=self.low_tag,
            prediction_area=prediction_area,
            window_size=self.window_size,
            number_classes=self.number_classes,
            copy_on_zero_diff=self.copy_on_zero_diff,
        )
        if self.algorithm == "starfm":
            try:
                weighting = TempDiffWeighting(self.starfm.temporal_weighting)
            except ValueError:
                raise ConfigurationError(
                    "Invalid temporal weighting", "temporal_weighting", self.starfm.temporal_weighting
                ) from None
            options = StarfmOptions(
                spectral_uncertainty=self.starfm.spectral_uncertainty,
                temporal_uncertainty=self.starfm.temporal_uncertainty,
                use_strict_filtering=self.starfm.use_strict_filtering,
                temporal_weighting=weighting,
                log_scale_factor=self.starfm.log_scale_factor,
                **common,
            )
        else:
            data_range = self.estarfm.data_range
            options = EstarfmOptions(
                use_smooth_regression=self.estarfm.use_smooth_regression,
                data_range=None if data_range is None else tuple(data_range),
                min_candidates=self.estarfm.min_candidates,
                **common,
            )

        pair_dates = list(pair_dates)
        if len(pair_dates) == 1:
            options.set_single_pair_date(pair_dates[0])
        elif len(pair_dates) == 2:
            options.set_double_pair_dates(pair_dates[0], pair_dates[1])
        else:
            raise ConfigurationError("One or two pair dates are required", "pair_dates", pair_dates)
        return options

    def build_parallel_options(
        self,
        pair_dates: Sequence[int],
        prediction_area: Optional[Rectangle] = None,
    ) -> ParallelizerOptions:
        """Create driver options wrapping the algorithm options."""
        parallel_options = ParallelizerOptions(
            alg_options=self.build_options(pair_dates),
            prediction_area=prediction_area,
        )
        if self.parallel.number_of_threads is not None:
            parallel_options.number_of_threads = self.parallel.number_of_threads
        return parallel_options


def load_config(
    yaml_path: Optional[str] = None,
    use_environment: bool = True,
) -> FusionConfig:
    """
    Load fusion configuration with fallbacks.

    Attempts to load configuration in order:
    1. From specified YAML path (if provided)
    2. From default config paths
    3. Fall back to defaults
    Environment variables are applied on top.

    Args:
        yaml_path: Optional explicit path to YAML config
        use_environment: Whether to apply environment variable overrides

    Returns:
        FusionConfig instance
    """
    config = None

    # Try explicit path first
    if yaml_path:
        config = FusionConfig.from_yaml(yaml_path)

    # Try default paths
    if config is None:
        default_paths = [
            Path("stfusion.yaml"),
            Path("config/stfusion.yaml"),
            Path("~/.stfusion/config.yaml").expanduser(),
        ]
        for path in default_paths:
            if path.exists():
                try:
                    config = FusionConfig.from_yaml(str(path))
                    logger.debug(f"Loaded config from {path}")
                    break
                except (yaml.YAMLError, ConfigurationError) as e:
                    logger.warning(f"Failed to load config from {path}: {e}")

    # Use defaults if no config found
    if config is None:
        config = FusionConfig()

    if use_environment:
        config.apply_environment()

    return config
