"""
Bayesian Updater

Conjugate normal-normal update of each region's spread.

Model:
    true spread d ~ N(μ₀, τ²)                  (prior)
    observed mean Y | d ~ N(d, σ²)              (σ² = s²/n + σ_b²)

Posterior:
    B    = σ² / (σ² + τ²)
    mean = B·μ₀ + (1 − B)·Y
    se   = sqrt(1 / (1/σ² + 1/τ²))

B is the shrinkage factor: the weight given to the prior. Because σ_b² is
not divided by n, se never falls below sqrt(1 / (1/σ_b² + 1/τ²)) no matter
how many polls a region has.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from config.forecast_config import PriorSpec
from models.bias_model import BiasModel
from models.poll_aggregator import RegionSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PosteriorEstimate:
    """Posterior distribution of a region's spread. Read-only once computed."""
    region: str
    mean: float
    se: float
    shrinkage: float = 0.0

    def credible_interval(self, z: float = 1.96) -> Tuple[float, float]:
        return (self.mean - z * self.se, self.mean + z * self.se)

    def to_dict(self) -> Dict:
        return {
            'region': self.region,
            'mean': self.mean,
            'se': self.se,
            'shrinkage': self.shrinkage,
        }


def posterior_se_floor(bias_sd: float, prior_sd: float) -> float:
    """Limit of the posterior standard error as the number of polls grows."""
    if bias_sd == 0:
        return 0.0
    return math.sqrt(1 / (1 / bias_sd ** 2 + 1 / prior_sd ** 2))


def normal_update(
    prior_mean: float,
    prior_sd: float,
    observed: float,
    variance: float
) -> Tuple[float, float, float]:
    """
    Combine a normal prior with one normal observation.

    Returns:
        Tuple of (posterior mean, posterior se, shrinkage factor B)
    """
    if variance == 0:
        # Noise-free observation: the data determine the posterior exactly
        return observed, 0.0, 0.0

    tau_sq = prior_sd ** 2
    shrinkage = variance / (variance + tau_sq)
    mean = shrinkage * prior_mean + (1 - shrinkage) * observed
    se = math.sqrt(1 / (1 / variance + 1 / tau_sq))
    return mean, se, shrinkage


class BayesianUpdater:
    """
    Turns region summaries into posterior estimates.

    Args:
        prior: Prior on each region's spread
        bias_model: Source of the systematic bias variance
    """

    def __init__(self, prior: PriorSpec, bias_model: Optional[BiasModel] = None):
        self.prior = prior
        self.bias_model = bias_model if bias_model is not None else BiasModel()

    def update(self, summary: RegionSummary) -> PosteriorEstimate:
        """Posterior for one region. The summary's sd must be defined."""
        variance = self.bias_model.total_variance(summary)
        mean, se, shrinkage = normal_update(
            self.prior.mean, self.prior.sd, summary.mean_spread, variance
        )
        if se == 0:
            logger.info(f"Region {summary.region} has zero observation variance; posterior is exact")

        return PosteriorEstimate(
            region=summary.region,
            mean=mean,
            se=se,
            shrinkage=shrinkage,
        )

    def update_all(self, summaries: Iterable[RegionSummary]) -> Dict[str, PosteriorEstimate]:
        """Posteriors for every region, keyed by region identifier."""
        posteriors = {s.region: self.update(s) for s in summaries}
        logger.info(f"Computed {len(posteriors)} posterior estimates")
        return posteriors
