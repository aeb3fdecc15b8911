"""Tests for the conjugate normal update and the systematic bias term."""

import math

import numpy as np
import pytest

from config.forecast_config import BiasSpec, PriorSpec
from models.bayesian_updater import BayesianUpdater, normal_update, posterior_se_floor
from models.bias_model import BiasModel
from models.poll_aggregator import InsufficientDataError, RegionSummary


def summary(mean=0.02, sd=0.02, count=4, region='FL'):
    return RegionSummary(region=region, mean_spread=mean, sd=sd, count=count)


def test_known_posterior():
    updater = BayesianUpdater(PriorSpec(mean=0.0, sd=0.05), BiasModel.constant(0.0))

    posterior = updater.update(summary())

    shrinkage = 0.0001 / (0.0001 + 0.0025)
    assert posterior.shrinkage == pytest.approx(shrinkage)
    assert posterior.mean == pytest.approx((1 - shrinkage) * 0.02)
    assert posterior.se == pytest.approx(math.sqrt(1 / (10000 + 400)))


def test_posterior_mean_between_prior_and_data():
    rng = np.random.default_rng(11)
    for _ in range(500):
        prior = PriorSpec(mean=rng.uniform(-0.1, 0.1), sd=rng.uniform(0.001, 0.2))
        bias = BiasModel.constant(rng.uniform(0, 0.05))
        obs = summary(mean=rng.uniform(-0.2, 0.2), sd=rng.uniform(0.001, 0.1),
                      count=int(rng.integers(1, 50)))

        posterior = BayesianUpdater(prior, bias).update(obs)

        low, high = sorted((prior.mean, obs.mean_spread))
        assert low - 1e-12 <= posterior.mean <= high + 1e-12
        assert posterior.se > 0


def test_vanishing_variance_recovers_observed_mean():
    updater = BayesianUpdater(PriorSpec(mean=0.0, sd=0.05), BiasModel.constant(0.0))

    posterior = updater.update(summary(mean=0.03, sd=1e-6, count=10 ** 6))

    assert posterior.mean == pytest.approx(0.03, abs=1e-9)
    assert posterior.se == pytest.approx(0.0, abs=1e-8)


def test_zero_variance_is_exact():
    updater = BayesianUpdater(PriorSpec(mean=0.01, sd=0.05), BiasModel.constant(0.0))

    posterior = updater.update(summary(mean=0.03, sd=0.0, count=3))

    assert posterior.mean == 0.03
    assert posterior.se == 0.0
    assert posterior.shrinkage == 0.0
    assert normal_update(0.0, 0.05, -0.02, 0.0) == (-0.02, 0.0, 0.0)


def test_bias_floor_independent_of_poll_count():
    prior = PriorSpec(mean=0.0, sd=0.05)
    updater = BayesianUpdater(prior, BiasModel.constant(0.03))
    floor = posterior_se_floor(0.03, 0.05)

    se = [updater.update(summary(sd=0.05, count=n)).se for n in (10, 1000, 10 ** 8)]

    assert floor > 0
    assert se[0] > se[1] > se[2] > floor
    assert se[2] == pytest.approx(floor, rel=1e-6)
    assert floor == pytest.approx(math.sqrt(1 / (1 / 0.03 ** 2 + 1 / 0.05 ** 2)))


def test_no_bias_means_no_floor():
    assert posterior_se_floor(0.0, 0.05) == 0.0


def test_bias_override_per_region():
    bias = BiasModel(BiasSpec(sd=0.03, overrides={'OH': 0.01}))

    assert bias.sd_for('FL') == 0.03
    assert bias.sd_for('OH') == 0.01
    assert bias.total_variance(summary(region='OH', sd=0.02, count=4)) == pytest.approx(0.0001 + 0.0001)


def test_unimputed_summary_rejected():
    updater = BayesianUpdater(PriorSpec(), BiasModel.constant(0.02))

    with pytest.raises(InsufficientDataError):
        updater.update(summary(sd=None, count=1))


def test_update_all_keys_by_region():
    updater = BayesianUpdater(PriorSpec(), BiasModel.constant(0.02))

    posteriors = updater.update_all([summary(region='FL'), summary(region='OH', mean=-0.01)])

    assert set(posteriors) == {'FL', 'OH'}
    assert posteriors['OH'].mean < 0 < posteriors['FL'].mean


def test_credible_interval():
    updater = BayesianUpdater(PriorSpec(), BiasModel.constant(0.02))
    posterior = updater.update(summary())

    lower, upper = posterior.credible_interval(1.96)

    assert lower == pytest.approx(posterior.mean - 1.96 * posterior.se)
    assert upper == pytest.approx(posterior.mean + 1.96 * posterior.se)
