"""
Time-distribution fitting for leaderboard normalization.

A filter's completion times are modelled with a parametric curve; the points
calculator maps a time through the curve's survival function to a quantile in
[0, 1]. The fitter sits behind the small `DistributionFitter` interface so the
statistical routine can be swapped (in-process scipy, an external service)
without touching scoring logic.
"""

import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy import stats

from kzpoints.utils.points_exceptions import FitError


@dataclass(frozen=True)
class DistributionParams:
    """Fitted Normal-Inverse-Gaussian parameters for one leaderboard."""
    a: float
    b: float
    loc: float
    scale: float
    top_scale: float  # Survival at the world-record time; quantiles saturate above it
    wr_time: float
    leaderboard_size: int

    def sf(self, time: float) -> float:
        """Share of the fitted population slower than `time`."""
        return float(stats.norminvgauss.sf(time, self.a, self.b, loc=self.loc, scale=self.scale))

    def quantile(self, time: float) -> float:
        """
        Normalized completion quantile for a time.

        Returns a value in [0, 1], with 1 for times at or better than the
        world record the parameters were fitted against.
        """
        if time <= self.wr_time or self.top_scale <= 0:
            return 1.0
        fraction = self.sf(time) / self.top_scale
        if not math.isfinite(fraction):
            return 0.0
        return min(max(fraction, 0.0), 1.0)

    @classmethod
    def from_row(cls, row) -> "DistributionParams":
        """Build parameters from a `DistributionParameters` row."""
        return cls(
            a=row.a,
            b=row.b,
            loc=row.loc,
            scale=row.scale,
            top_scale=row.top_scale,
            wr_time=row.wr_time,
            leaderboard_size=row.leaderboard_size,
        )


class DistributionFitter(ABC):
    """
    Abstract base class for distribution fitters.

    Implementations receive the leaderboard's times sorted ascending and
    either return fitted parameters or raise `FitError`.
    """

    @abstractmethod
    def fit(self, times: Sequence[float]) -> DistributionParams:
        """
        Fit a distribution to a leaderboard's times.

        Args:
            times: Completion times sorted ascending (best first)

        Returns:
            Fitted distribution parameters

        Raises:
            FitError: If the sample is too small, degenerate, or the fit fails
        """
        pass

    @abstractmethod
    def get_fitter_name(self) -> str:
        """Get human-readable name of this fitter"""
        pass


class NormInvGaussFitter(DistributionFitter):
    """
    Fits a Normal-Inverse-Gaussian distribution with scipy.

    The NIG family handles the heavy right tail of run times well: most
    players finish near the typical time, a few take far longer.
    """

    def __init__(self, min_samples: int = 5):
        self.min_samples = max(min_samples, 2)

    def fit(self, times: Sequence[float]) -> DistributionParams:
        sample = np.asarray(times, dtype=float)

        if sample.size < self.min_samples:
            raise FitError(FitError.TOO_FEW_SAMPLES, f"{sample.size} < {self.min_samples}")
        if not np.all(np.isfinite(sample)) or np.any(sample <= 0):
            raise FitError(FitError.DEGENERATE, "times must be finite and positive")
        if np.ptp(sample) == 0:
            raise FitError(FitError.DEGENERATE, "all times are identical")

        sample = np.sort(sample)

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", RuntimeWarning)
                a, b, loc, scale = stats.norminvgauss.fit(sample)
        except (ValueError, RuntimeError, FloatingPointError) as e:
            raise FitError(FitError.DID_NOT_CONVERGE, str(e)) from e

        fitted = (a, b, loc, scale)
        # NIG requires |b| < a and a positive scale
        if not all(math.isfinite(value) for value in fitted) or scale <= 0 or abs(b) >= a:
            raise FitError(FitError.DID_NOT_CONVERGE, f"invalid parameters {fitted}")

        wr_time = float(sample[0])
        top_scale = float(stats.norminvgauss.sf(wr_time, a, b, loc=loc, scale=scale))
        if not math.isfinite(top_scale) or top_scale <= 0:
            raise FitError(FitError.DEGENERATE, f"survival at world record is {top_scale}")

        return DistributionParams(
            a=float(a),
            b=float(b),
            loc=float(loc),
            scale=float(scale),
            top_scale=top_scale,
            wr_time=wr_time,
            leaderboard_size=int(sample.size),
        )

    def get_fitter_name(self) -> str:
        return "Normal-Inverse-Gaussian (scipy)"
