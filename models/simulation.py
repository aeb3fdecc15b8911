"""
Monte Carlo Electoral Simulation

Draws simulated margins for each modeled region from its posterior and
tallies the electoral weight won by candidate A in every replicate.

Random streams:
    Each region gets its own generator seeded from
    SeedSequence(seed, spawn_key=<UTF-8 bytes of the region>). Replicate r
    of region i is therefore fixed by (seed, region identifier, r) alone, and the order
    in which regions are supplied or processed never changes the totals.
    Per-replicate totals are plain sums, so regions can also be simulated
    separately and combined afterwards.

The systematic bias is already part of every posterior se; it is not
resampled here.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

import numpy as np

from config.forecast_config import ConfigurationError, ElectoralMap, Side
from models.bayesian_updater import PosteriorEstimate

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """Aggregate totals of every replicate plus per-region tallies."""
    totals: np.ndarray
    region_wins: Dict[str, int] = field(default_factory=dict)
    fixed_total: int = 0
    total_weight: int = 0
    seed: int = 0

    @property
    def n_replicates(self) -> int:
        return len(self.totals)

    @property
    def totals_b(self) -> np.ndarray:
        """Electoral weight won by candidate B in each replicate."""
        return self.total_weight - self.totals

    def region_win_fraction(self, region: str) -> float:
        return self.region_wins[region] / self.n_replicates


def region_stream(seed: int, region: str) -> np.random.Generator:
    """Independent, reproducible random generator for one region."""
    # Keyed on every byte of the identifier
    key = tuple(region.encode('utf-8'))
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=key))


class MonteCarloSimulator:
    """
    Simulates the aggregate electoral outcome.

    Args:
        electoral_map: Region -> winner-take-all weight
        n_replicates: Number of replicates R
        seed: Seed of the run
        tie_break: Side awarded a region whose simulated margin is exactly 0
    """

    def __init__(
        self,
        electoral_map: ElectoralMap,
        n_replicates: int = 10000,
        seed: int = 1,
        tie_break: Side = Side.B
    ):
        if isinstance(n_replicates, bool) or int(n_replicates) != n_replicates or n_replicates < 1:
            raise ConfigurationError(f"n_replicates must be a positive integer, got {n_replicates!r}")
        if int(seed) != seed or seed < 0:
            raise ConfigurationError(f"seed must be a non-negative integer, got {seed!r}")

        self.electoral_map = electoral_map
        self.n_replicates = int(n_replicates)
        self.seed = int(seed)
        self.tie_break = tie_break

    def _validate(
        self,
        posteriors: Mapping[str, PosteriorEstimate],
        fixed_outcomes: Mapping[str, Side]
    ) -> None:
        unknown = sorted((set(posteriors) | set(fixed_outcomes)) - set(self.electoral_map))
        if unknown:
            raise ConfigurationError(f"Regions missing from the electoral map: {', '.join(unknown)}")

        both = sorted(set(posteriors) & set(fixed_outcomes))
        if both:
            raise ConfigurationError(
                f"Regions both modeled and given a fixed outcome: {', '.join(both)}"
            )

        uncovered = sorted(set(self.electoral_map) - set(posteriors) - set(fixed_outcomes))
        if uncovered:
            raise ConfigurationError(
                f"Regions without a posterior need a fixed outcome: {', '.join(uncovered)}"
            )

        for estimate in posteriors.values():
            if not np.isfinite(estimate.mean) or not np.isfinite(estimate.se) or estimate.se < 0:
                raise ConfigurationError(
                    f"Invalid posterior for {estimate.region}: mean={estimate.mean}, se={estimate.se}"
                )

    def simulate_region(self, estimate: PosteriorEstimate) -> np.ndarray:
        """Boolean array: True where candidate A carries the region."""
        rng = region_stream(self.seed, estimate.region)
        margins = rng.normal(loc=estimate.mean, scale=estimate.se, size=self.n_replicates)

        wins = margins > 0
        if self.tie_break is Side.A:
            wins |= margins == 0
        return wins

    def run(
        self,
        posteriors: Iterable[PosteriorEstimate],
        fixed_outcomes: Optional[Mapping[str, Side]] = None
    ) -> SimulationResult:
        """
        Simulate R replicates.

        Args:
            posteriors: One estimate per modeled region
            fixed_outcomes: Deterministic winner of every region without a posterior

        Returns:
            SimulationResult with candidate A's total per replicate
        """
        if isinstance(posteriors, Mapping):
            posteriors = posteriors.values()
        by_region: Dict[str, PosteriorEstimate] = {}
        for estimate in posteriors:
            if estimate.region in by_region:
                raise ConfigurationError(f"Duplicate posterior for region {estimate.region}")
            by_region[estimate.region] = estimate

        fixed_outcomes = dict(fixed_outcomes or {})
        self._validate(by_region, fixed_outcomes)

        fixed_total = sum(
            self.electoral_map[region]
            for region, side in fixed_outcomes.items()
            if side is Side.A
        )

        logger.info(
            f"Simulating {self.n_replicates} replicates over {len(by_region)} modeled regions "
            f"(seed={self.seed}, fixed A weight={fixed_total})"
        )

        totals = np.full(self.n_replicates, fixed_total, dtype=np.int64)
        region_wins = {}
        for region in sorted(by_region):
            wins = self.simulate_region(by_region[region])
            totals += wins * self.electoral_map[region]
            region_wins[region] = int(wins.sum())

        return SimulationResult(
            totals=totals,
            region_wins=region_wins,
            fixed_total=fixed_total,
            total_weight=self.electoral_map.total_weight,
            seed=self.seed,
        )
