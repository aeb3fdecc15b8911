"""
Forecast Configuration Module

This module defines the configuration system for the poll aggregation and
electoral simulation engine. Every statistical knob of a forecast run lives
here: the prior, the systematic bias term, poll filtering policy, the
simulation size and seed, and the summary settings.

Configuration sources (later sources win):
    1. Dataclass defaults
    2. JSON run configuration (config/forecasts/*.json)
    3. Environment variables (.env supported through python-dotenv)
"""

import os
import json
import math
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Invalid configuration or input records. Fatal, raised before computation."""


class Side(Enum):
    """Which candidate a region is awarded to."""
    A = "a"  # First candidate, positive spread
    B = "b"  # Second candidate, negative spread


def _check_sd(name: str, value: float, allow_zero: bool) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value}")
    if value < 0 or (value == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise ConfigurationError(f"{name} must be {bound}, got {value}")
    return value


@dataclass(frozen=True)
class PriorSpec:
    """
    Normal prior on a region's true spread.

    Attributes:
        mean: Prior mean μ₀ (0 means "no information")
        sd: Prior standard deviation τ
    """
    mean: float = 0.0
    sd: float = 0.05

    def __post_init__(self):
        if not math.isfinite(self.mean):
            raise ConfigurationError(f"prior mean must be finite, got {self.mean}")
        object.__setattr__(self, 'sd', _check_sd('prior sd', self.sd, allow_zero=False))


@dataclass(frozen=True)
class BiasSpec:
    """
    Systematic (per-cycle) bias standard deviation σ_b.

    Attributes:
        sd: Bias standard deviation shared by every region
        overrides: Optional region -> bias sd replacing the shared value
    """
    sd: float = 0.0
    overrides: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'sd', _check_sd('bias sd', self.sd, allow_zero=True))
        checked = {
            region: _check_sd(f"bias sd override for {region}", value, allow_zero=True)
            for region, value in dict(self.overrides).items()
        }
        object.__setattr__(self, 'overrides', MappingProxyType(checked))


class ElectoralMap:
    """
    Immutable region -> electoral weight mapping.

    Weights are awarded winner-take-all. When ``expected_total`` is given the
    weights must sum to it exactly.
    """

    def __init__(self, weights: Mapping[str, int], expected_total: Optional[int] = None):
        if not weights:
            raise ConfigurationError("Electoral map must contain at least one region")

        checked = {}
        for region, weight in weights.items():
            if not isinstance(weight, (int, float)) or isinstance(weight, bool) \
                    or not math.isfinite(weight) or int(weight) != weight or weight <= 0:
                raise ConfigurationError(
                    f"Electoral weight for {region} must be a positive integer, got {weight!r}"
                )
            checked[str(region)] = int(weight)

        self._weights = MappingProxyType(checked)
        self.total_weight = sum(checked.values())

        if expected_total is not None and self.total_weight != expected_total:
            raise ConfigurationError(
                f"Electoral weights sum to {self.total_weight}, expected {expected_total}"
            )

    @property
    def weights(self) -> Mapping[str, int]:
        return self._weights

    @property
    def regions(self) -> List[str]:
        return sorted(self._weights)

    def __getitem__(self, region: str) -> int:
        return self._weights[region]

    def __contains__(self, region) -> bool:
        return region in self._weights

    def __iter__(self):
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    def get(self, region: str, default=None):
        return self._weights.get(region, default)

    def __repr__(self) -> str:
        return f"ElectoralMap(regions={len(self)}, total_weight={self.total_weight})"


# =============================================================================
# RUN CONFIGURATION
# =============================================================================

@dataclass
class ForecastConfig:
    """
    Configuration for a single forecast run.

    Attributes:
        prior: Prior on each region's spread
        bias: Systematic bias for region-level posteriors
        national_bias_sd: Systematic bias for the national popular-vote posterior
        cutoff: Polls ending before this date are ignored
        accepted_grades: Pollster grades to keep (None keeps everything)
        n_replicates: Number of Monte Carlo replicates R
        seed: Random seed for the simulation
        threshold: Win threshold on the aggregate total (None = half of total weight)
        z: Credible interval multiplier
        bin_width: Histogram bin width (electoral votes)
        tie_break: Side awarded a region whose simulated margin is exactly zero
        national_region: Region identifier of national popular-vote polls
        fixed_outcomes: Deterministic winners of regions without polls
        polls_path: Poll CSV location (CLI only)
        electoral_map_path: Electoral map CSV/JSON location (CLI only)
        expected_total: Expected sum of electoral weights
    """
    prior: PriorSpec = field(default_factory=PriorSpec)
    bias: BiasSpec = field(default_factory=BiasSpec)
    national_bias_sd: float = 0.0
    cutoff: Optional[date] = None
    accepted_grades: Optional[frozenset] = None
    n_replicates: int = 10000
    seed: int = 1
    threshold: Optional[float] = None
    z: float = 1.96
    bin_width: int = 1
    tie_break: Side = Side.B
    national_region: Optional[str] = "U.S."
    fixed_outcomes: Dict[str, Side] = field(default_factory=dict)
    polls_path: Optional[str] = None
    electoral_map_path: Optional[str] = None
    expected_total: Optional[int] = None

    def __post_init__(self):
        if self.accepted_grades is not None:
            self.accepted_grades = frozenset(self.accepted_grades)
        self.fixed_outcomes = {
            region: side if isinstance(side, Side) else Side(str(side).lower())
            for region, side in self.fixed_outcomes.items()
        }
        if not isinstance(self.tie_break, Side):
            self.tie_break = Side(str(self.tie_break).lower())

    def validate(self) -> 'ForecastConfig':
        """Reject invalid settings before any computation starts."""
        _check_sd('national bias sd', self.national_bias_sd, allow_zero=True)

        if isinstance(self.n_replicates, bool) or int(self.n_replicates) != self.n_replicates:
            raise ConfigurationError(f"n_replicates must be an integer, got {self.n_replicates!r}")
        if self.n_replicates < 1:
            raise ConfigurationError(f"n_replicates must be at least 1, got {self.n_replicates}")
        if int(self.seed) != self.seed or self.seed < 0:
            raise ConfigurationError(f"seed must be a non-negative integer, got {self.seed!r}")
        if not math.isfinite(self.z) or self.z <= 0:
            raise ConfigurationError(f"z must be positive, got {self.z}")
        if self.bin_width <= 0:
            raise ConfigurationError(f"bin_width must be positive, got {self.bin_width}")
        if self.threshold is not None and not math.isfinite(self.threshold):
            raise ConfigurationError(f"threshold must be finite, got {self.threshold}")
        return self

    @classmethod
    def from_dict(cls, data: Dict) -> 'ForecastConfig':
        """Build a configuration from a parsed JSON document."""
        prior = data.get('prior', {})
        bias = data.get('bias', {})
        cutoff = data.get('cutoff')
        grades = data.get('accepted_grades')

        try:
            return cls(
                prior=PriorSpec(mean=prior.get('mean', 0.0), sd=prior.get('sd', 0.05)),
                bias=BiasSpec(sd=bias.get('sd', 0.0), overrides=bias.get('overrides', {})),
                national_bias_sd=data.get('national_bias_sd', 0.0),
                cutoff=date.fromisoformat(cutoff) if cutoff else None,
                accepted_grades=frozenset(grades) if grades is not None else None,
                n_replicates=data.get('n_replicates', 10000),
                seed=data.get('seed', 1),
                threshold=data.get('threshold'),
                z=data.get('z', 1.96),
                bin_width=data.get('bin_width', 1),
                tie_break=data.get('tie_break', 'b'),
                national_region=data.get('national_region', 'U.S.'),
                fixed_outcomes=data.get('fixed_outcomes', {}),
                polls_path=data.get('polls_path'),
                electoral_map_path=data.get('electoral_map_path'),
                expected_total=data.get('expected_total'),
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid forecast configuration: {e}") from e

    def to_dict(self) -> Dict:
        return {
            'prior': {'mean': self.prior.mean, 'sd': self.prior.sd},
            'bias': {'sd': self.bias.sd, 'overrides': dict(self.bias.overrides)},
            'national_bias_sd': self.national_bias_sd,
            'cutoff': self.cutoff.isoformat() if self.cutoff else None,
            'accepted_grades': sorted(self.accepted_grades) if self.accepted_grades is not None else None,
            'n_replicates': self.n_replicates,
            'seed': self.seed,
            'threshold': self.threshold,
            'z': self.z,
            'bin_width': self.bin_width,
            'tie_break': self.tie_break.value,
            'national_region': self.national_region,
            'fixed_outcomes': {r: s.value for r, s in self.fixed_outcomes.items()},
            'polls_path': self.polls_path,
            'electoral_map_path': self.electoral_map_path,
            'expected_total': self.expected_total,
        }


# =============================================================================
# CONFIGURATION LOADER
# =============================================================================

ENV_OVERRIDES = {
    'FORECAST_SEED': ('seed', int),
    'FORECAST_REPLICATES': ('n_replicates', int),
    'FORECAST_BIAS_SD': ('bias_sd', float),
}


class ForecastConfigLoader:
    """
    Loads forecast run configurations from JSON files.

    Expected directory structure:
    config/
        forecasts/
            example.json
            president_2016.json

    Relative input paths inside a config file are resolved against the
    directory containing that file.
    """

    def __init__(self, config_dir: str = './config/forecasts', use_env: bool = True):
        self.config_dir = Path(config_dir)
        self.use_env = use_env
        self.configs: Dict[str, ForecastConfig] = {}

    def load(self, path) -> ForecastConfig:
        """Load and validate a configuration file."""
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_file}")

        with open(config_file, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Malformed configuration file {config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must hold a JSON object: {config_file}")

        for key in ('polls_path', 'electoral_map_path'):
            if data.get(key) and not Path(data[key]).is_absolute():
                data[key] = str(config_file.parent / data[key])

        config = ForecastConfig.from_dict(data)
        if self.use_env:
            config = self.apply_env_overrides(config)

        config.validate()
        self.configs[config_file.stem] = config
        logger.info(f"Loaded forecast configuration from {config_file}")
        return config

    def load_named(self, name: str) -> Optional[ForecastConfig]:
        """Load a configuration by name from the config directory."""
        config_file = self.config_dir / f"{name.lower()}.json"
        if not config_file.exists():
            return None
        return self.load(config_file)

    def apply_env_overrides(self, config: ForecastConfig) -> ForecastConfig:
        """Apply FORECAST_* environment variables (and .env) on top of a config."""
        load_dotenv()

        for env_name, (attr, cast) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == '':
                continue
            try:
                value = cast(raw)
            except ValueError:
                raise ConfigurationError(f"{env_name} must be {cast.__name__}, got {raw!r}")

            logger.info(f"Overriding {attr} from {env_name}={raw}")
            if attr == 'bias_sd':
                config.bias = BiasSpec(sd=value, overrides=config.bias.overrides)
            else:
                setattr(config, attr, value)

        return config

    def list_configs(self) -> List[str]:
        """Names of the configuration files available in the config directory."""
        if not self.config_dir.exists():
            return []
        return sorted(p.stem for p in self.config_dir.glob('*.json'))


# =============================================================================
# EXAMPLE CONFIGURATION
# =============================================================================

def create_example_config() -> ForecastConfig:
    """
    Example presidential configuration.

    State-level posteriors carry a 3 point systematic bias while the national
    popular vote uses a smaller 2.5 point term.
    """
    return ForecastConfig(
        prior=PriorSpec(mean=0.0, sd=0.05),
        bias=BiasSpec(sd=0.03),
        national_bias_sd=0.025,
        cutoff=date(2016, 10, 31),
        accepted_grades=frozenset({'A+', 'A', 'A-', 'B+'}),
        n_replicates=10000,
        seed=2016,
    )
