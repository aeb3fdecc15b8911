"""Shared fixtures for the forecast engine tests."""

from datetime import date
from pathlib import Path

import pytest

from config.forecast_config import ElectoralMap
from models.poll_aggregator import PollRecord

REPO_ROOT = Path(__file__).resolve().parent.parent
EXAMPLE_CONFIG = REPO_ROOT / 'config' / 'forecasts' / 'example.json'


def make_poll(region, spread, pollster='Pollster', end_date=date(2016, 11, 1),
              sample_size=800, grade=None):
    """Poll with the given spread around a 45% baseline."""
    share_b = 0.45
    return PollRecord(
        region=region,
        pollster=pollster,
        end_date=end_date,
        share_a=share_b + spread,
        share_b=share_b,
        sample_size=sample_size,
        grade=grade,
    )


@pytest.fixture(autouse=True)
def clean_forecast_env(monkeypatch):
    for name in ('FORECAST_SEED', 'FORECAST_REPLICATES', 'FORECAST_BIAS_SD'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def three_region_map():
    return ElectoralMap({'A': 10, 'B': 20, 'C': 5}, expected_total=35)


@pytest.fixture
def five_region_polls():
    """Four regions with several polls and one region with a single poll."""
    spreads = {
        'R1': [0.01, 0.03, 0.02],
        'R2': [-0.02, 0.04],
        'R3': [0.05, 0.00, 0.01, 0.03],
        'R4': [-0.06, -0.01],
        'R5': [0.02],
    }
    return [
        make_poll(region, spread, pollster=f'P{i}')
        for region, values in spreads.items()
        for i, spread in enumerate(values)
    ]
