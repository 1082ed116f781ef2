"""
Partition-Parallel Driver for Fusion Algorithms.

Runs any DataFusor concurrently over horizontal bands of the prediction
area. Every band is predicted by its own fusor instance straight into a
view of one shared output raster; bands never overlap, so no locking is
needed. The merged result is identical to a single run over the whole
area.

Key Components:
- ParallelizerState: Lifecycle state of the driver
- BandResult: Outcome of one worker (success or captured exception)
- Parallelizer: The driver itself

Example Usage:
    from stfusion.execution.parallelizer import Parallelizer
    from stfusion.core.options import ParallelizerOptions, StarfmOptions
    from stfusion.fusion.starfm import StarfmFusor

    options = StarfmOptions(high_tag="high", low_tag="low")
    options.set_single_pair_date(1)

    driver = Parallelizer(StarfmFusor())
    driver.set_source_store(store)
    driver.configure(ParallelizerOptions(alg_options=options, number_of_threads=4))
    result = driver.predict(2)
"""

import concurrent.futures
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from stfusion.core.exceptions import ConfigurationError, NotFoundError, SizeError, WorkerError
from stfusion.core.options import ParallelizerOptions
from stfusion.core.raster import MaskLike, Raster, Rectangle
from stfusion.core.store import MultiResStore
from stfusion.fusion.base import DataFusor

logger = logging.getLogger(__name__)


class ParallelizerState(Enum):
    """Lifecycle of the driver."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    RUNNING = "running"


@dataclass
class BandResult:
    """
    Outcome of predicting one band.

    Attributes:
        band_index: Index of the band, top to bottom
        rectangle: Band rectangle in image coordinates
        error: Exception raised by the worker, None on success
        processing_time_seconds: Wall time of the worker
    """

    band_index: int
    rectangle: Rectangle
    error: Optional[BaseException] = None
    processing_time_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_worker_error(self) -> Optional[WorkerError]:
        """Describe a failure as WorkerError (None on success)."""
        if self.error is None:
            return None
        return WorkerError(self.band_index, self.rectangle, self.error)


class Parallelizer:
    """
    Drives copies of a fusor over row bands of the prediction area.

    The fusor passed to the constructor serves as a template; the driver
    owns one clone per thread, indexed by band. Re-configuring with the
    same thread count reuses these clones.
    """

    def __init__(self, fusor: DataFusor):
        if not isinstance(fusor, DataFusor):
            raise TypeError(f"Expected DataFusor, got {type(fusor).__name__}")
        self._template = fusor
        self._fusors: List[DataFusor] = []
        self._options: Optional[ParallelizerOptions] = None
        self._store: Optional[MultiResStore] = fusor.source_store
        self._output: Optional[Raster] = None
        self._bands: List[Rectangle] = []
        self._results: List[BandResult] = []
        self._state = ParallelizerState.UNCONFIGURED

    @property
    def state(self) -> ParallelizerState:
        return self._state

    @property
    def options(self) -> Optional[ParallelizerOptions]:
        return self._options

    @property
    def fusors(self) -> Tuple[DataFusor, ...]:
        """The owned worker instances, indexed by band."""
        return tuple(self._fusors)

    @property
    def bands(self) -> List[Rectangle]:
        """Band rectangles of the most recent prediction."""
        return list(self._bands)

    @property
    def results(self) -> List[BandResult]:
        """Per-band outcomes of the most recent prediction."""
        return list(self._results)

    @property
    def output_image(self) -> Optional[Raster]:
        return self._output

    @output_image.setter
    def output_image(self, raster: Optional[Raster]) -> None:
        self._output = raster

    @property
    def source_store(self) -> Optional[MultiResStore]:
        return self._store

    def set_source_store(self, store: MultiResStore) -> None:
        self._store = store
        self._template.set_source_store(store)
        for fusor in self._fusors:
            fusor.set_source_store(store)

    def configure(self, options: ParallelizerOptions) -> None:
        """
        Validate ``options`` and propagate them into the worker instances.

        Raises:
            ConfigurationError: If the options are invalid or the algorithm
                options do not belong to the wrapped fusor
        """
        if self._state == ParallelizerState.RUNNING:
            raise ConfigurationError("Cannot configure while a prediction is running")
        if not isinstance(options, ParallelizerOptions):
            raise ConfigurationError(
                f"Expected ParallelizerOptions, got {type(options).__name__}",
                "options",
                type(options).__name__,
            )
        options.validate()
        expected = self._template.options_type
        if not isinstance(options.alg_options, expected):
            raise ConfigurationError(
                f"{type(self._template).__name__} needs {expected.__name__}, "
                f"got {type(options.alg_options).__name__}",
                "alg_options",
                type(options.alg_options).__name__,
            )
        if options.alg_options.prediction_area is not None:
            logger.warning(
                "Prediction area of the algorithm options is ignored, "
                "the parallelizer's prediction area is used instead"
            )

        options = options.copy()
        alg_options = options.alg_options.copy()
        alg_options.prediction_area = options.prediction_area

        n_threads = options.number_of_threads
        if len(self._fusors) != n_threads:
            logger.info(f"Creating {n_threads} instances of {type(self._template).__name__}")
            self._fusors = [self._template.clone() for _ in range(n_threads)]
        for fusor in self._fusors:
            fusor.set_source_store(self._store)
            fusor.configure(alg_options)

        self._options = options
        self._state = ParallelizerState.CONFIGURED

    def predict(self, date: int, mask: Optional[MaskLike] = None) -> Raster:
        """
        Predict the image at ``date`` with all worker instances.

        Args:
            date: Target date
            mask: Optional mask for the whole prediction area; each worker
                gets the rows of its band

        Returns:
            The merged output raster

        Raises:
            The first exception in band order raised by any worker, after
            all workers have finished. Configuration, lookup and mask
            errors are raised before any worker starts.
        """
        if self._state == ParallelizerState.UNCONFIGURED:
            raise ConfigurationError("Parallelizer is not configured")
        if self._store is None:
            raise NotFoundError("No source store set")

        alg_options = self._fusors[0].options
        reference = self._store.get(alg_options.high_tag, alg_options.pair_dates[0])
        area = self._options.prediction_area or reference.bounds
        if not reference.bounds.contains(area):
            raise SizeError(
                "Prediction area does not fit into the source images",
                expected=reference.bounds,
                found=area,
            )
        mask_array = DataFusor.check_mask(mask, area, reference.channels)
        output = self._prepare_output(area, reference)
        self._bands = area.split_rows(self._options.number_of_threads)
        if not self._bands:
            return self._predict_empty(date, area, mask_array, output)

        self._state = ParallelizerState.RUNNING
        try:
            self._results = self._run_bands(date, area, mask_array, output)
        finally:
            self._state = ParallelizerState.CONFIGURED

        failures = [r for r in self._results if not r.succeeded]
        for result in failures:
            logger.error(f"Error predicting band {result.band_index} {result.rectangle}: {result.error}")
        if failures:
            raise failures[0].error
        return output

    def _predict_empty(
        self,
        date: int,
        area: Rectangle,
        mask: Optional[np.ndarray],
        output: Raster,
    ) -> Raster:
        """An area without rows has no bands; one instance still checks the images."""
        logger.info(f"Prediction area {area.width}x{area.height} is empty, no bands to run")
        fusor = self._fusors[0]
        options = fusor.options.copy()
        options.prediction_area = area
        fusor.configure(options)
        fusor.output_image = output
        self._results = []
        fusor.predict(date, mask)
        return output

    def _prepare_output(self, area: Rectangle, reference: Raster) -> Raster:
        output = self._output
        if (
            output is None
            or output.size != (area.width, area.height)
            or output.channels != reference.channels
            or output.dtype != reference.dtype
        ):
            output = Raster.zeros(area.width, area.height, reference.channels, reference.dtype)
            self._output = output
        return output

    def _run_bands(
        self,
        date: int,
        area: Rectangle,
        mask: Optional[np.ndarray],
        output: Raster,
    ) -> List[BandResult]:
        """Run one worker per band and collect all outcomes in band order."""
        for index, band in enumerate(self._bands):
            fusor = self._fusors[index]
            options = fusor.options.copy()
            options.prediction_area = band
            fusor.configure(options)
            fusor.output_image = output.shared_copy(band.relative_to(area))

        band_masks = []
        for band in self._bands:
            if mask is None:
                band_masks.append(None)
            else:
                rows, _ = band.relative_to(area).to_slice()
                band_masks.append(mask[:, rows, :])

        start_time = time.time()
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(self._bands)) as executor:
            futures = [
                executor.submit(self._predict_band, index, date, band_masks[index])
                for index in range(len(self._bands))
            ]
            concurrent.futures.wait(futures)

        results = []
        for index, (band, future) in enumerate(zip(self._bands, futures)):
            error = future.exception()
            if error is None:
                results.append(BandResult(index, band, processing_time_seconds=future.result()))
                self._merge_band(index, band, area, output, band_masks[index])
            else:
                results.append(BandResult(index, band, error=error))

        logger.info(
            f"Predicted {area.width}x{area.height} pixels at date {date} in "
            f"{len(self._bands)} bands ({time.time() - start_time:.2f}s)"
        )
        return results

    def _predict_band(self, index: int, date: int, mask: Optional[np.ndarray]) -> float:
        """Worker function, returns its processing time."""
        band_start = time.time()
        self._fusors[index].predict(date, mask)
        logger.debug(f"Band {index} done in {time.time() - band_start:.2f}s")
        return time.time() - band_start

    def _merge_band(
        self,
        index: int,
        band: Rectangle,
        area: Rectangle,
        output: Raster,
        mask: Optional[np.ndarray],
    ) -> None:
        """Copy a band back if the worker did not write into the shared output."""
        result = self._fusors[index].output_image
        if result is None or result.is_shared_with(output):
            return
        target = output.shared_copy(band.relative_to(area))
        target.copy_values_from(result, mask)
