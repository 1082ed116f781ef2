"""
stfusion - Spatiotemporal Image Fusion.

Predicts high resolution images at dates where only low resolution images
are available, from one or two reference dates with both resolutions.

Basic Usage:

    from stfusion import MultiResStore, Raster, StarfmFusor, StarfmOptions

    store = MultiResStore()
    store.set("high", 1, Raster(high_1))
    store.set("low", 1, Raster(low_1))
    store.set("low", 2, Raster(low_2))

    options = StarfmOptions(high_tag="high", low_tag="low", window_size=31)
    options.set_single_pair_date(1)

    fusor = StarfmFusor()
    fusor.set_source_store(store)
    fusor.configure(options)
    predicted = fusor.predict(2)

Parallel Execution:

    from stfusion import Parallelizer, ParallelizerOptions

    driver = Parallelizer(StarfmFusor())
    driver.set_source_store(store)
    driver.configure(ParallelizerOptions(alg_options=options, number_of_threads=4))
    predicted = driver.predict(2)
"""

__version__ = "0.1.0"

from stfusion.core.exceptions import (
    AmbiguousLookupError,
    ConfigurationError,
    FusionError,
    ImageTypeError,
    NotFoundError,
    ShapeMismatchError,
    SizeError,
    WorkerError,
)
from stfusion.core.options import (
    EstarfmOptions,
    FusionOptions,
    ParallelizerOptions,
    StarfmOptions,
    TempDiffWeighting,
)
from stfusion.core.raster import Raster, Rectangle
from stfusion.core.store import MultiResStore
from stfusion.execution.parallelizer import BandResult, Parallelizer, ParallelizerState
from stfusion.fusion.base import DataFusor
from stfusion.fusion.estarfm import EstarfmFusor
from stfusion.fusion.regression import correlate, regress
from stfusion.fusion.starfm import StarfmFusor

__all__ = [
    "__version__",
    # Errors
    "FusionError",
    "ConfigurationError",
    "NotFoundError",
    "AmbiguousLookupError",
    "ShapeMismatchError",
    "SizeError",
    "ImageTypeError",
    "WorkerError",
    # Data
    "Raster",
    "Rectangle",
    "MultiResStore",
    # Options
    "FusionOptions",
    "StarfmOptions",
    "EstarfmOptions",
    "ParallelizerOptions",
    "TempDiffWeighting",
    # Algorithms
    "DataFusor",
    "StarfmFusor",
    "EstarfmFusor",
    "regress",
    "correlate",
    # Execution
    "Parallelizer",
    "ParallelizerState",
    "BandResult",
]
