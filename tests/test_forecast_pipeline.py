"""End-to-end tests of the forecast pipeline and CLI."""

import json
from datetime import date

import pytest

from config.forecast_config import (
    BiasSpec,
    ConfigurationError,
    ElectoralMap,
    ForecastConfig,
    ForecastConfigLoader,
    PriorSpec,
    Side,
)
from data_loader import load_electoral_map, load_poll_records
from forecast import ForecastPipeline, main
from conftest import EXAMPLE_CONFIG, make_poll


@pytest.fixture
def example_run():
    config = ForecastConfigLoader(use_env=False).load(EXAMPLE_CONFIG)
    config.n_replicates = 2000
    records = load_poll_records(config.polls_path)
    electoral_map = load_electoral_map(config.electoral_map_path, config.expected_total)
    return config, records, electoral_map


def test_example_forecast(example_run):
    config, records, electoral_map = example_run
    pipeline = ForecastPipeline(config)

    summary = pipeline.run(records, electoral_map)

    assert summary.unmodeled == ['Vermont', 'Wyoming']
    assert summary.imputed == ['New Hampshire']
    assert summary.n_replicates == 2000
    assert summary.threshold == electoral_map.total_weight / 2
    assert 0.0 <= summary.win_probability <= 1.0
    assert summary.national_estimate is not None
    assert summary.national_interval[0] < summary.national_estimate.mean < summary.national_interval[1]
    assert 'U.S.' not in pipeline.posteriors
    # Vermont is fixed to A in the example configuration
    assert pipeline.simulation.totals.min() >= 3


def test_example_forecast_is_reproducible(example_run):
    config, records, electoral_map = example_run

    first = ForecastPipeline(config).run(records, electoral_map)
    second = ForecastPipeline(config).run(records, electoral_map)

    assert first.to_dict() == second.to_dict()


def test_unmodeled_region_needs_fixed_outcome():
    config = ForecastConfig(prior=PriorSpec(sd=0.05), bias=BiasSpec(sd=0.02), n_replicates=100)
    electoral_map = ElectoralMap({'FL': 29, 'WY': 3})
    records = [make_poll('FL', 0.01), make_poll('FL', 0.02)]

    with pytest.raises(ConfigurationError, match='WY'):
        ForecastPipeline(config).run(records, electoral_map)


def test_polled_region_ignores_fixed_outcome():
    config = ForecastConfig(
        prior=PriorSpec(sd=0.05),
        bias=BiasSpec(sd=0.02),
        n_replicates=200,
        fixed_outcomes={'FL': Side.A, 'WY': Side.B},
        cutoff=date(2016, 10, 1),
    )
    electoral_map = ElectoralMap({'FL': 29, 'WY': 3})
    records = [make_poll('FL', -0.05), make_poll('FL', -0.04)]

    pipeline = ForecastPipeline(config)
    pipeline.run(records, electoral_map)

    assert 'FL' in pipeline.posteriors
    assert pipeline.simulation.fixed_total == 0


def test_posterior_frame_joins_summaries(example_run):
    config, records, electoral_map = example_run
    pipeline = ForecastPipeline(config)
    pipeline.run(records, electoral_map)

    frame = pipeline.posterior_frame()

    assert {'mean_spread', 'sd', 'mean', 'se', 'shrinkage'} <= set(frame.columns)
    assert len(frame) == len(pipeline.posteriors)


def test_cli_exports_results(tmp_path, capsys):
    exit_code = main([
        '--config', str(EXAMPLE_CONFIG),
        '--replicates', '500',
        '--no-env',
        '--export',
        '--output-dir', str(tmp_path),
        '--print-json',
    ])

    assert exit_code == 0
    assert len(list(tmp_path.glob('forecast_*.json'))) == 1
    assert len(list(tmp_path.glob('posteriors_*.csv'))) == 1
    assert len(list(tmp_path.glob('totals_*.csv'))) == 1

    exported = json.loads(next(tmp_path.glob('forecast_*.json')).read_text())
    assert exported['summary']['n_replicates'] == 500
    assert 'ELECTORAL FORECAST SUMMARY' in capsys.readouterr().out


def test_cli_reports_configuration_errors(tmp_path):
    assert main(['--config', str(tmp_path / 'missing.json'), '--no-env']) == 1


def test_single_national_poll_uses_state_median_sd():
    config = ForecastConfig(
        prior=PriorSpec(sd=0.05),
        bias=BiasSpec(sd=0.02),
        national_bias_sd=0.0,
        n_replicates=200,
    )
    electoral_map = ElectoralMap({'FL': 29, 'OH': 18})
    records = [
        make_poll('FL', 0.01), make_poll('FL', 0.03),
        make_poll('OH', 0.00), make_poll('OH', 0.04),
        make_poll('U.S.', 0.02),
    ]

    summary = ForecastPipeline(config).run(records, electoral_map)

    # FL sd = 0.014142, OH sd = 0.028284, median = 0.021213
    # sigma^2 = 0.00045, tau^2 = 0.0025
    national = summary.national_estimate
    assert national is not None
    assert national.se == pytest.approx(0.0195283, abs=1e-6)
    assert national.mean == pytest.approx(0.016949, abs=1e-6)
    assert summary.national_interval[0] < national.mean < summary.national_interval[1]
    assert summary.imputed == []


def test_cli_reports_malformed_config(tmp_path):
    config_file = tmp_path / 'broken.json'
    config_file.write_text('{"seed": 3,')

    assert main(['--config', str(config_file), '--no-env']) == 1


def test_cli_reports_non_numeric_sample_size(tmp_path):
    (tmp_path / 'polls.csv').write_text(
        "region,pollster,end_date,share_a,share_b,sample_size\n"
        "FL,Pollster,2016-11-01,0.46,0.45,about 800\n"
    )
    (tmp_path / 'map.csv').write_text("region,weight\nFL,29\n")
    config_file = tmp_path / 'run.json'
    config_file.write_text(json.dumps({
        'polls_path': 'polls.csv',
        'electoral_map_path': 'map.csv',
    }))

    assert main(['--config', str(config_file), '--no-env']) == 1
