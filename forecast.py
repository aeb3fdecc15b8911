"""
Electoral Forecast - Poll Aggregation and Monte Carlo Simulation

Runs the full forecast for one configuration:

    polls -> PollAggregator -> RegionSummary
          -> BayesianUpdater (prior + BiasModel) -> PosteriorEstimate
          -> MonteCarloSimulator -> aggregate totals
          -> ResultSummarizer -> win probability, intervals, histogram

Usage:
    python forecast.py --config config/forecasts/example.json
    python forecast.py --config config/forecasts/example.json --seed 7 --print-json
    python forecast.py --config config/forecasts/example.json --export --output-dir ./output
"""

# =============================================================================
# IMPORTS
# =============================================================================
import sys
import json
import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

import pandas as pd

from config.forecast_config import (
    ConfigurationError,
    ElectoralMap,
    ForecastConfig,
    ForecastConfigLoader,
)
from data_loader import load_electoral_map, load_poll_records
from models.bayesian_updater import BayesianUpdater, PosteriorEstimate
from models.bias_model import BiasModel
from models.poll_aggregator import (
    AggregationResult,
    InsufficientDataError,
    PollAggregator,
    PollRecord,
)
from models.simulation import MonteCarloSimulator, SimulationResult
from models.summary import ForecastSummary, ResultSummarizer

# =============================================================================
# CONFIGURATION
# =============================================================================
logger = logging.getLogger(__name__)

# Output directory for exports
OUTPUT_DIR = './output/forecast'


# =============================================================================
# PIPELINE
# =============================================================================
class ForecastPipeline:
    """
    Runs aggregation, posterior updates, simulation and summaries for one
    forecast configuration.
    """

    def __init__(self, config: ForecastConfig):
        self.config = config.validate()

        self.aggregator = PollAggregator(
            cutoff=config.cutoff,
            accepted_grades=config.accepted_grades
        )
        self.updater = BayesianUpdater(config.prior, BiasModel(config.bias))
        self.national_updater = BayesianUpdater(
            config.prior, BiasModel.constant(config.national_bias_sd)
        )
        self.summarizer = ResultSummarizer(
            threshold=config.threshold,
            z=config.z,
            bin_width=config.bin_width,
            tie_break=config.tie_break
        )

        self.aggregation: Optional[AggregationResult] = None
        self.posteriors: Dict[str, PosteriorEstimate] = {}
        self.national: Optional[PosteriorEstimate] = None
        self.simulation: Optional[SimulationResult] = None
        self.summary: Optional[ForecastSummary] = None

    def national_posterior(self, records: List[PollRecord]) -> Optional[PosteriorEstimate]:
        """Posterior of the national popular-vote spread, if national polls exist."""
        region = self.config.national_region
        if region is None:
            return None

        national_records = [r for r in records if r.region == region]
        if not national_records:
            logger.info(f"No national polls under region '{region}'")
            return None

        result = self.aggregator.aggregate(national_records, impute=False)
        summary = result.summaries.get(region)
        if summary is None:
            logger.warning("All national polls were filtered out")
            return None
        if summary.needs_imputation:
            # Same median as the single-poll states, taken over states with two or more polls
            states = self.aggregation.summaries if self.aggregation else {}
            donors = {r: s for r, s in states.items() if s.count >= 2}
            try:
                imputed, _ = PollAggregator.impute_missing_sd({**donors, region: summary})
            except InsufficientDataError as e:
                logger.warning(f"National interval not computed: {e}")
                return None
            summary = imputed[region]

        return self.national_updater.update(summary)

    def run(self, records: List[PollRecord], electoral_map: ElectoralMap) -> ForecastSummary:
        """
        Run the forecast.

        Args:
            records: Cleaned poll records
            electoral_map: Region weights

        Returns:
            ForecastSummary for the run

        Raises:
            ConfigurationError: invalid inputs or unmodeled regions without a fixed outcome
            InsufficientDataError: single-poll regions with nothing to impute from
        """
        config = self.config
        logger.info("=" * 60)
        logger.info("RUNNING FORECAST")
        logger.info("=" * 60)

        exclude = [config.national_region] if config.national_region else []
        self.aggregation = self.aggregator.aggregate(records, electoral_map, exclude=exclude)

        missing_outcomes = sorted(set(self.aggregation.unmodeled) - set(config.fixed_outcomes))
        if missing_outcomes:
            raise ConfigurationError(
                f"Unmodeled regions need a fixed outcome: {', '.join(missing_outcomes)}"
            )

        modeled = [s for s in self.aggregation.summaries.values() if s.region in electoral_map]
        self.posteriors = self.updater.update_all(modeled)
        self.national = self.national_posterior(records)

        # Fixed outcomes only apply to regions without polls
        fixed = {
            region: side for region, side in config.fixed_outcomes.items()
            if region not in self.posteriors
        }
        overridden = sorted(set(config.fixed_outcomes) - set(fixed))
        if overridden:
            logger.info(f"Polled regions ignore their fixed outcome: {', '.join(overridden)}")

        simulator = MonteCarloSimulator(
            electoral_map,
            n_replicates=config.n_replicates,
            seed=config.seed,
            tie_break=config.tie_break
        )
        self.simulation = simulator.run(self.posteriors.values(), fixed)

        self.summary = self.summarizer.summarize(
            self.simulation,
            self.posteriors.values(),
            national=self.national,
            unmodeled=self.aggregation.unmodeled,
            imputed=self.aggregation.imputed_regions,
        )

        logger.info("=" * 60)
        logger.info("FORECAST COMPLETE")
        logger.info("=" * 60)
        return self.summary

    def posterior_frame(self) -> pd.DataFrame:
        """Posteriors joined with their region summaries."""
        summaries = self.aggregation.to_frame() if self.aggregation else pd.DataFrame()
        posteriors = pd.DataFrame(
            [p.to_dict() for p in self.posteriors.values()],
            columns=['region', 'mean', 'se', 'shrinkage']
        )
        if summaries.empty:
            return posteriors
        return summaries.merge(posteriors, on='region', how='left')

    def results(self) -> Dict[str, Any]:
        """All outputs as a JSON-serializable dict."""
        return {
            'config': self.config.to_dict(),
            'summary': self.summary.to_dict() if self.summary else None,
            'regions': [s.to_dict() for s in self.aggregation.summaries.values()]
            if self.aggregation else [],
            'posteriors': [p.to_dict() for p in self.posteriors.values()],
        }

    def print_summary(self) -> None:
        """Print a formatted summary of the run."""
        if self.summary is None:
            print("No forecast has been run")
            return

        summary = self.summary
        print("\n" + "=" * 70)
        print("ELECTORAL FORECAST SUMMARY")
        print("=" * 70)
        print(f"  Replicates: {summary.n_replicates:,} (seed {self.config.seed})")
        print(f"  Win Probability (A): {summary.win_probability:.1%}")
        print(f"  Expected Total (A): {summary.expected_total:.1f} (threshold > {summary.threshold})")
        print(f"  5th-95th Percentile: {summary.total_percentiles[5]:.0f} - "
              f"{summary.total_percentiles[95]:.0f}")

        if summary.national_estimate is not None:
            lower, upper = summary.national_interval
            print(f"  National Spread: {summary.national_estimate.mean:+.3f} "
                  f"[{lower:+.3f}, {upper:+.3f}]")

        if summary.unmodeled:
            print(f"  Unmodeled Regions: {', '.join(summary.unmodeled)}")
        if summary.imputed:
            print(f"  Imputed SD Regions: {', '.join(summary.imputed)}")

        print("\n" + "-" * 50)
        print("REGION POSTERIORS")
        print("-" * 50)
        frame = self.posterior_frame()
        if not frame.empty:
            print(frame.to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    def export_results(self, output_dir: str = OUTPUT_DIR) -> Dict[str, str]:
        """
        Export results to files.

        Args:
            output_dir: Output directory

        Returns:
            Dictionary of output file paths
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        output_files = {}
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')

        json_file = output_path / f'forecast_{stamp}.json'
        with open(json_file, 'w') as f:
            json.dump(self.results(), f, indent=2, default=str)
        output_files['json'] = str(json_file)
        logger.info(f"Exported JSON: {json_file}")

        posterior_file = output_path / f'posteriors_{stamp}.csv'
        self.posterior_frame().to_csv(posterior_file, index=False)
        output_files['posteriors'] = str(posterior_file)
        logger.info(f"Exported posteriors: {posterior_file}")

        if self.simulation is not None:
            totals_file = output_path / f'totals_{stamp}.csv'
            pd.DataFrame({'total': self.simulation.totals}).to_csv(totals_file, index_label='replicate')
            output_files['totals'] = str(totals_file)
            logger.info(f"Exported totals: {totals_file}")

        return output_files


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================
def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Electoral forecast from aggregated polls'
    )
    parser.add_argument(
        '--config', '-c',
        required=True,
        help='Path to a forecast configuration JSON file'
    )
    parser.add_argument(
        '--seed', '-s',
        type=int,
        help='Override the random seed'
    )
    parser.add_argument(
        '--replicates', '-r',
        type=int,
        help='Override the number of Monte Carlo replicates'
    )
    parser.add_argument(
        '--no-env',
        action='store_true',
        help='Ignore FORECAST_* environment overrides'
    )
    parser.add_argument(
        '--export',
        action='store_true',
        help='Export results to files'
    )
    parser.add_argument(
        '--output-dir',
        default=OUTPUT_DIR,
        help=f'Output directory (default: {OUTPUT_DIR})'
    )
    parser.add_argument(
        '--print-json',
        action='store_true',
        help='Print results as JSON'
    )

    args = parser.parse_args(argv)

    try:
        config = ForecastConfigLoader(use_env=not args.no_env).load(args.config)
        if args.seed is not None:
            config.seed = args.seed
        if args.replicates is not None:
            config.n_replicates = args.replicates

        if not config.polls_path or not config.electoral_map_path:
            raise ConfigurationError("Configuration must set polls_path and electoral_map_path")

        records = load_poll_records(config.polls_path)
        electoral_map = load_electoral_map(config.electoral_map_path, config.expected_total)

        pipeline = ForecastPipeline(config)
        pipeline.run(records, electoral_map)
    except (ConfigurationError, InsufficientDataError) as e:
        logger.error(f"Forecast failed: {e}")
        return 1

    pipeline.print_summary()

    if args.print_json:
        print(json.dumps(pipeline.results(), indent=2, default=str))

    if args.export:
        pipeline.export_results(args.output_dir)
        print(f"\nResults exported to: {args.output_dir}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
