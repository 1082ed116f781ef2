"""
Quality-Gated Linear Regression.

Least-squares slope estimation between low and high resolution values with
the plausibility checks used by the regression-enhanced fusion algorithm.
Degenerate input never raises; it resolves to the documented fallback.
"""

from dataclasses import dataclass

import numpy as np
from scipy import stats

# Slopes outside this range are treated as implausible
MIN_SLOPE = 0.0
MAX_SLOPE = 5.0

# Required confidence of the F-test in hard gating mode
F_TEST_CONFIDENCE = 0.95


@dataclass
class RegressionFit:
    """
    Gated fit of y = intercept + slope * x.

    Fields are scalars from ``fit_line`` and arrays with one entry per fit
    from ``fit_lines``.

    Attributes:
        slope: Slope after gating / smoothing
        intercept: Intercept matching ``slope`` through the sample means
        residual_variance: Mean squared residual of the gated line
        n_samples: Number of samples used
    """

    slope: float
    intercept: float
    residual_variance: float
    n_samples: int


def correlate(x: np.ndarray, y: np.ndarray) -> float:
    """
    Pearson correlation coefficient of two series.

    Returns 0 if either series has zero variance.
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    if x.size != y.size:
        raise ValueError(f"Series differ in length: {x.size} != {y.size}")
    if x.size == 0:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.dot(dx, dx))
    syy = float(np.dot(dy, dy))
    if sxx <= 0 or syy <= 0:
        return 0.0
    r = float(np.dot(dx, dy)) / np.sqrt(sxx * syy)
    return float(min(max(r, -1.0), 1.0))


def regress(x: np.ndarray, y: np.ndarray, smooth: bool = False) -> float:
    """
    Quality-gated least-squares slope of y over x.

    The raw slope falls back to 1 when x has zero variance, when there are
    fewer than 3 samples or when it lies outside [0, 5]. Then:

    * without ``smooth`` an F-test on the fit is done; if its confidence is
      below 95 % the slope falls back to 1. Fits of undefined quality (for
      example a constant y or a perfect fit) keep their slope.
    * with ``smooth`` the slope is moved toward 1 by the squared
      correlation: ``1 + r**2 * (slope - 1)``.

    Args:
        x: Predictor values (low resolution)
        y: Response values (high resolution)
        smooth: Use correlation smoothing instead of the F-test gate

    Returns:
        The gated slope
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    if x.size != y.size:
        raise ValueError(f"Series differ in length: {x.size} != {y.size}")

    n = x.size
    if n - 2 <= 0 or np.ptp(x) == 0:
        return 1.0

    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.dot(dx, dx))
    if sxx <= 0:
        return 1.0
    slope = float(np.dot(dx, dy)) / sxx
    if slope < MIN_SLOPE or slope > MAX_SLOPE:
        return 1.0

    if smooth:
        r = correlate(x, y)
        return 1.0 + r * r * (slope - 1.0)

    syy = float(np.dot(dy, dy))
    if syy <= 0:
        return slope
    residuals = dy - slope * dx
    sse = float(np.dot(residuals, residuals))
    r_squared = 1.0 - sse / syy
    if r_squared >= 1.0:
        return slope
    r_squared = max(r_squared, 0.0)
    f_value = (n - 2) * r_squared / (1.0 - r_squared)
    if not np.isfinite(f_value):
        return slope
    confidence = stats.f.cdf(f_value, 1, n - 2)
    if confidence < F_TEST_CONFIDENCE:
        return 1.0
    return slope


def fit_line(x: np.ndarray, y: np.ndarray, smooth: bool = False) -> RegressionFit:
    """Gated fit with intercept and residual variance for the given samples."""
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    slope = regress(x, y, smooth=smooth)
    if x.size == 0:
        return RegressionFit(slope=slope, intercept=0.0, residual_variance=0.0, n_samples=0)
    intercept = float(y.mean() - slope * x.mean())
    residuals = y - (intercept + slope * x)
    return RegressionFit(
        slope=slope,
        intercept=intercept,
        residual_variance=float(np.mean(residuals * residuals)),
        n_samples=int(x.size),
    )


def fit_lines(x: np.ndarray, y: np.ndarray, selected: np.ndarray, smooth: bool = False) -> RegressionFit:
    """
    Gated fits of many sample sets at once.

    Row i of ``x`` and ``y`` holds the samples of fit i where ``selected`` is
    set. The gating matches ``regress``; the returned fit holds one array per
    field instead of scalars.
    """
    weights = selected.astype(np.float64)
    n = np.sum(weights, axis=1)
    safe_n = np.maximum(n, 1.0)
    mean_x = np.sum(weights * x, axis=1) / safe_n
    mean_y = np.sum(weights * y, axis=1) / safe_n
    dx = weights * (x - mean_x[:, np.newaxis])
    dy = weights * (y - mean_y[:, np.newaxis])
    sxx = np.sum(dx * dx, axis=1)
    syy = np.sum(dy * dy, axis=1)
    sxy = np.sum(dx * dy, axis=1)

    spread = np.where(selected, x, -np.inf).max(axis=1) - np.where(selected, x, np.inf).min(axis=1)
    defined = (n > 2) & (spread > 0) & (sxx > 0)
    slope = np.where(defined, sxy / np.where(defined, sxx, 1.0), 1.0)
    defined &= (slope >= MIN_SLOPE) & (slope <= MAX_SLOPE)

    if smooth:
        both = defined & (syy > 0)
        r = np.where(both, sxy / np.sqrt(np.where(both, sxx * syy, 1.0)), 0.0)
        r = np.clip(r, -1.0, 1.0)
        gated = 1.0 + r * r * (slope - 1.0)
    else:
        residuals = dy - slope[:, np.newaxis] * dx
        sse = np.sum(residuals * residuals, axis=1)
        r_squared = 1.0 - sse / np.where(syy > 0, syy, 1.0)
        testable = defined & (syy > 0) & (r_squared < 1.0)
        r_squared = np.clip(r_squared, 0.0, None)
        f_value = (n - 2) * r_squared / np.where(testable, 1.0 - r_squared, 1.0)
        confidence = stats.f.cdf(f_value, 1, np.maximum(n - 2, 1.0))
        gated = np.where(testable & (confidence < F_TEST_CONFIDENCE), 1.0, slope)
    slope = np.where(defined, gated, 1.0)

    intercept = mean_y - slope * mean_x
    residuals = weights * (y - (intercept[:, np.newaxis] + slope[:, np.newaxis] * x))
    residual_variance = np.sum(residuals * residuals, axis=1) / safe_n
    return RegressionFit(
        slope=slope,
        intercept=intercept,
        residual_variance=residual_variance,
        n_samples=n.astype(np.int64),
    )
