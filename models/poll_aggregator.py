"""
Poll Aggregation

Collapses raw poll observations into one statistical summary per region.

Aggregation runs in two passes:
    1. One pass over the records builds an explicit region -> spreads map
       and produces mean, sample standard deviation and count per region.
    2. Regions with a single poll have no sample standard deviation; the
       median over every region with two or more polls is computed first
       and then substituted, so the result never depends on record order.

Regions of the electoral map without any accepted poll are reported as
unmodeled. The caller must give them a deterministic outcome.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from config.forecast_config import ConfigurationError, ElectoralMap

logger = logging.getLogger(__name__)


class InsufficientDataError(ValueError):
    """Raised when the polls cannot support the requested computation."""


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass(frozen=True)
class PollRecord:
    """A single cleaned poll result."""
    region: str
    pollster: str
    end_date: date
    share_a: float
    share_b: float
    sample_size: int
    grade: Optional[str] = None

    def __post_init__(self):
        for name in ('share_a', 'share_b'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"{name} must be a fraction in [0, 1], got {value} "
                    f"({self.pollster}, {self.region})"
                )
        if isinstance(self.sample_size, bool) or int(self.sample_size) != self.sample_size \
                or self.sample_size < 1:
            raise ConfigurationError(
                f"sample_size must be a positive integer, got {self.sample_size!r} "
                f"({self.pollster}, {self.region})"
            )

    @property
    def spread(self) -> float:
        """share_a - share_b"""
        return self.share_a - self.share_b


@dataclass(frozen=True)
class RegionSummary:
    """
    Aggregated polls of one region.

    ``sd`` is None when the region has a single poll, until imputation fills
    it in and sets ``sd_imputed``.
    """
    region: str
    mean_spread: float
    sd: Optional[float]
    count: int
    electoral_weight: Optional[int] = None
    sd_imputed: bool = False

    @property
    def needs_imputation(self) -> bool:
        return self.sd is None

    def to_dict(self) -> Dict:
        return {
            'region': self.region,
            'mean_spread': self.mean_spread,
            'sd': self.sd,
            'count': self.count,
            'electoral_weight': self.electoral_weight,
            'sd_imputed': self.sd_imputed,
        }


@dataclass
class AggregationResult:
    """Output of PollAggregator.aggregate()."""
    summaries: Dict[str, RegionSummary] = field(default_factory=dict)
    unmodeled: List[str] = field(default_factory=list)
    imputed_sd: Optional[float] = None
    n_accepted: int = 0
    n_rejected: int = 0

    @property
    def imputed_regions(self) -> List[str]:
        return sorted(r for r, s in self.summaries.items() if s.sd_imputed)

    def to_frame(self) -> pd.DataFrame:
        """Summaries as a DataFrame, one row per region."""
        columns = ['region', 'mean_spread', 'sd', 'count', 'electoral_weight', 'sd_imputed']
        rows = [self.summaries[r].to_dict() for r in sorted(self.summaries)]
        return pd.DataFrame(rows, columns=columns)


# =============================================================================
# AGGREGATOR
# =============================================================================

class PollAggregator:
    """
    Filters polls and summarizes them per region.

    Args:
        cutoff: Polls whose end date is before this date are dropped
        accepted_grades: Grades to keep; polls without a grade are always kept.
                         None disables grade filtering.
    """

    def __init__(
        self,
        cutoff: Optional[date] = None,
        accepted_grades: Optional[Iterable[str]] = None
    ):
        self.cutoff = cutoff
        self.accepted_grades = frozenset(accepted_grades) if accepted_grades is not None else None

    def accepts(self, record: PollRecord) -> bool:
        """Whether a poll passes the recency and grade policy."""
        if self.cutoff is not None and record.end_date < self.cutoff:
            return False
        if record.grade is not None and self.accepted_grades is not None:
            return record.grade in self.accepted_grades
        return True

    def aggregate(
        self,
        records: Iterable[PollRecord],
        electoral_map: Optional[ElectoralMap] = None,
        impute: bool = True,
        exclude: Iterable[str] = ()
    ) -> AggregationResult:
        """
        Summarize accepted polls per region.

        Args:
            records: Poll records for the cycle
            electoral_map: Used to attach weights and to report regions with no polls
            impute: Run the median imputation pass for single-poll regions
            exclude: Region identifiers to leave out entirely (e.g. national polls)

        Returns:
            AggregationResult with summaries and the list of unmodeled regions
        """
        excluded = set(exclude)
        spreads: Dict[str, List[float]] = {}
        seen = set()
        result = AggregationResult()

        for record in records:
            if record.region in excluded:
                continue
            seen.add(record.region)
            if not self.accepts(record):
                result.n_rejected += 1
                continue
            spreads.setdefault(record.region, []).append(record.spread)
            result.n_accepted += 1

        for region, values in spreads.items():
            weight = electoral_map.get(region) if electoral_map is not None else None
            if electoral_map is not None and weight is None:
                logger.warning(f"Region {region} has polls but no electoral weight")

            result.summaries[region] = RegionSummary(
                region=region,
                mean_spread=float(np.mean(values)),
                sd=float(np.std(values, ddof=1)) if len(values) > 1 else None,
                count=len(values),
                electoral_weight=weight,
            )

        unmodeled = seen - set(spreads)
        if electoral_map is not None:
            unmodeled |= set(electoral_map.regions) - set(spreads)
        result.unmodeled = sorted(unmodeled - excluded)

        if result.unmodeled:
            logger.warning(
                f"{len(result.unmodeled)} region(s) have no accepted polls and are unmodeled: "
                f"{', '.join(result.unmodeled)}"
            )

        logger.info(
            f"Aggregated {result.n_accepted} polls into {len(result.summaries)} regions "
            f"({result.n_rejected} rejected)"
        )

        if impute:
            result.summaries, result.imputed_sd = self.impute_missing_sd(result.summaries)

        return result

    @staticmethod
    def impute_missing_sd(
        summaries: Dict[str, RegionSummary]
    ) -> Tuple[Dict[str, RegionSummary], Optional[float]]:
        """
        Fill in the standard deviation of single-poll regions.

        The median is taken over every region with two or more polls before
        any value is substituted.

        Returns:
            Tuple of (new summaries dict, imputed value or None if nothing to impute)
        """
        missing = sorted(r for r, s in summaries.items() if s.needs_imputation)
        if not missing:
            return dict(summaries), None

        defined = [s.sd for s in summaries.values() if s.count >= 2 and s.sd is not None]
        if not defined:
            raise InsufficientDataError(
                f"Cannot impute standard deviation for {', '.join(missing)}: "
                "no region has two or more polls"
            )

        median_sd = float(np.median(defined))
        imputed = dict(summaries)
        for region in missing:
            logger.warning(
                f"Region {region} has a single poll; imputing sd={median_sd:.4f} "
                f"(median of {len(defined)} regions)"
            )
            imputed[region] = replace(summaries[region], sd=median_sd, sd_imputed=True)

        return imputed, median_sd
