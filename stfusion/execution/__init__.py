"""
Parallel execution of fusion algorithms over row bands.
"""

from stfusion.execution.parallelizer import BandResult, Parallelizer, ParallelizerState

__all__ = ["BandResult", "Parallelizer", "ParallelizerState"]
