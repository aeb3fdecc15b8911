"""
Systematic Bias Model

Supplies σ_b, the standard deviation of an unobserved offset shared by every
poll of an election cycle. The offset is drawn once per real-world election,
so averaging more polls cannot reduce it. It enters each region's total
observation variance as a fixed additive term:

    σ² = s²/n + σ_b²

Pollster house effects and region-specific offsets are not separately
observable from a single cycle and are folded into the same term.
"""

import logging
from typing import Optional

from config.forecast_config import BiasSpec
from models.poll_aggregator import InsufficientDataError, RegionSummary

logger = logging.getLogger(__name__)


class BiasModel:
    """Region-aware lookup of the systematic bias term."""

    def __init__(self, spec: Optional[BiasSpec] = None):
        self.spec = spec if spec is not None else BiasSpec()

    @classmethod
    def constant(cls, sd: float) -> 'BiasModel':
        return cls(BiasSpec(sd=sd))

    def sd_for(self, region: str) -> float:
        return self.spec.overrides.get(region, self.spec.sd)

    def variance_for(self, region: str) -> float:
        return self.sd_for(region) ** 2

    def total_variance(self, summary: RegionSummary) -> float:
        """
        Sampling variance of the region's mean spread plus the bias variance.

        Raises:
            InsufficientDataError: if the summary's sd was never imputed
        """
        if summary.needs_imputation:
            raise InsufficientDataError(
                f"Region {summary.region} has an undefined standard deviation; "
                "impute it before computing the observation variance"
            )
        return summary.sd ** 2 / summary.count + self.variance_for(summary.region)

    def __repr__(self) -> str:
        return f"BiasModel(sd={self.spec.sd}, overrides={len(self.spec.overrides)})"
