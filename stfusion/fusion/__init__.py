"""
Fusion algorithms.

- StarfmFusor: similarity-weighted blending
- EstarfmFusor: regression-enhanced blending
"""

from stfusion.fusion.base import DataFusor
from stfusion.fusion.estarfm import EstarfmFusor
from stfusion.fusion.regression import RegressionFit, correlate, fit_line, fit_lines, regress
from stfusion.fusion.starfm import StarfmFusor

__all__ = [
    "DataFusor",
    "StarfmFusor",
    "EstarfmFusor",
    "RegressionFit",
    "correlate",
    "fit_line",
    "fit_lines",
    "regress",
]
