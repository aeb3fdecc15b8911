"""
Result Summaries

Reduces the replicate distribution to the numbers a report needs: win
probability, percentiles, a histogram of totals, and credible intervals of
the popular-margin posteriors.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from scipy import stats

from config.forecast_config import ConfigurationError, Side
from models.bayesian_updater import PosteriorEstimate
from models.simulation import SimulationResult

logger = logging.getLogger(__name__)


def majority_threshold(total_weight: int) -> float:
    """
    Half of the total weight. A total strictly above it is a majority
    (18 or more of 35, 270 or more of 538).
    """
    return total_weight / 2


@dataclass
class ForecastSummary:
    """Reportable summary of one forecast run."""
    win_probability: float
    threshold: float
    expected_total: float
    total_percentiles: Dict[int, float]
    histogram: List[Tuple[float, int]]
    n_replicates: int
    national_interval: Optional[Tuple[float, float]] = None
    national_estimate: Optional[PosteriorEstimate] = None
    region_probabilities: Dict[str, Dict[str, float]] = field(default_factory=dict)
    unmodeled: List[str] = field(default_factory=list)
    imputed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        national = None
        if self.national_estimate is not None:
            national = {
                'mean': round(self.national_estimate.mean, 4),
                'se': round(self.national_estimate.se, 4),
                'interval': [round(v, 4) for v in self.national_interval],
            }

        return {
            'win_probability': round(self.win_probability, 4),
            'threshold': self.threshold,
            'expected_total': round(self.expected_total, 2),
            'total_percentiles': {str(k): v for k, v in self.total_percentiles.items()},
            'histogram': [[start, count] for start, count in self.histogram],
            'n_replicates': self.n_replicates,
            'national': national,
            'regions': {
                region: {k: round(v, 4) for k, v in probs.items()}
                for region, probs in sorted(self.region_probabilities.items())
            },
            'unmodeled': self.unmodeled,
            'imputed': self.imputed,
        }


class ResultSummarizer:
    """
    Summaries over simulated totals.

    Args:
        threshold: A replicate is a win when its total strictly exceeds this
        z: Credible interval multiplier (1.96 for ~95%)
        bin_width: Histogram bin width
        tie_break: Side awarded a zero margin, used by the closed-form probabilities
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        z: float = 1.96,
        bin_width: float = 1,
        tie_break: Side = Side.B
    ):
        if not math.isfinite(z) or z <= 0:
            raise ConfigurationError(f"z must be positive, got {z}")
        if bin_width <= 0:
            raise ConfigurationError(f"bin_width must be positive, got {bin_width}")
        self.threshold = threshold
        self.z = z
        self.bin_width = bin_width
        self.tie_break = tie_break

    def _threshold_for(self, result: Optional[SimulationResult]) -> float:
        if self.threshold is not None:
            return self.threshold
        if result is None or not result.total_weight:
            raise ConfigurationError("A threshold is required when the total weight is unknown")
        return majority_threshold(result.total_weight)

    def win_probability(self, totals, threshold: Optional[float] = None) -> float:
        """Fraction of replicates whose total strictly exceeds the threshold."""
        totals = np.asarray(totals)
        if totals.size == 0:
            raise ConfigurationError("Cannot summarize an empty set of replicates")
        if threshold is None:
            threshold = self.threshold
        if threshold is None:
            raise ConfigurationError("No win threshold configured")
        return float(np.mean(totals > threshold))

    def histogram(self, totals) -> List[Tuple[float, int]]:
        """
        (bin_start, count) pairs covering the observed totals.

        Bins start at multiples of the bin width; empty bins inside the range
        are kept so the output can be plotted directly.
        """
        totals = np.asarray(totals)
        if totals.size == 0:
            return []

        width = self.bin_width
        first = math.floor(totals.min() / width) * width
        last = math.floor(totals.max() / width) * width
        n_bins = int(round((last - first) / width)) + 1

        index = np.floor((totals - first) / width).astype(np.int64)
        counts = np.bincount(index, minlength=n_bins)
        return [(first + i * width, int(c)) for i, c in enumerate(counts)]

    def credible_interval(self, posterior: PosteriorEstimate) -> Tuple[float, float]:
        return posterior.credible_interval(self.z)

    def region_win_probabilities(
        self,
        posteriors: Iterable[PosteriorEstimate]
    ) -> Dict[str, float]:
        """Closed-form P(candidate A carries the region) = Φ(mean / se)."""
        if isinstance(posteriors, Mapping):
            posteriors = posteriors.values()

        probabilities = {}
        for estimate in posteriors:
            if estimate.se == 0:
                if estimate.mean == 0:
                    probabilities[estimate.region] = 1.0 if self.tie_break is Side.A else 0.0
                else:
                    probabilities[estimate.region] = 1.0 if estimate.mean > 0 else 0.0
            else:
                probabilities[estimate.region] = float(stats.norm.cdf(estimate.mean / estimate.se))
        return probabilities

    def summarize(
        self,
        result: SimulationResult,
        posteriors: Iterable[PosteriorEstimate] = (),
        national: Optional[PosteriorEstimate] = None,
        unmodeled: Iterable[str] = (),
        imputed: Iterable[str] = ()
    ) -> ForecastSummary:
        """Full summary of a simulation run."""
        threshold = self._threshold_for(result)
        totals = result.totals

        analytic = self.region_win_probabilities(posteriors)
        region_probabilities = {
            region: {
                'analytic': probability,
                'simulated': result.region_win_fraction(region),
            }
            for region, probability in analytic.items()
            if region in result.region_wins
        }

        summary = ForecastSummary(
            win_probability=self.win_probability(totals, threshold),
            threshold=threshold,
            expected_total=float(np.mean(totals)),
            total_percentiles={
                q: float(np.percentile(totals, q)) for q in (5, 50, 95)
            },
            histogram=self.histogram(totals),
            n_replicates=result.n_replicates,
            national_interval=self.credible_interval(national) if national is not None else None,
            national_estimate=national,
            region_probabilities=region_probabilities,
            unmodeled=sorted(unmodeled),
            imputed=sorted(imputed),
        )

        logger.info(
            f"Win probability {summary.win_probability:.3f} "
            f"(threshold {threshold}, expected total {summary.expected_total:.1f})"
        )
        return summary
