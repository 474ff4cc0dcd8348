"""
Pytest configuration and shared fixtures for chainrun tests.
"""

import pytest
import numpy as np

from chainrun.mcmc.config import build_run_config, configure_precision
from chainrun.mcmc.types import Chain, MergedChainSet


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def restore_precision():
    """Put JAX back to float32 after a test that enables float64."""
    yield
    configure_precision(False)


@pytest.fixture
def normal_data(rng_seed):
    """50 observations from N(3, 1) for the normal mean model."""
    rng = np.random.default_rng(rng_seed)
    return {'y': rng.normal(3.0, 1.0, 50)}


@pytest.fixture
def fixed_inits():
    """Separated starting points for up to four chains."""
    return [{'mu': -4.0}, {'mu': 4.0}, {'mu': 0.0}, {'mu': 8.0}]


@pytest.fixture
def base_config():
    """Scenario B/C settings: n_burn=100, n_draw=50, n_rburn=10, extra on."""
    return build_run_config(
        params=['mu'],
        n_chain=2,
        n_burn=100,
        n_draw=50,
        n_rburn=10,
        extra=True,
        rhat_max=1.05,
    )


def make_chain_set(means, n_samples=200, sd=1.0, seed=0, var_names=('mu',)):
    """MergedChainSet with one Gaussian chain per entry of means."""
    rng = np.random.default_rng(seed)
    chains = []
    for m in means:
        samples = m + sd * rng.standard_normal((n_samples, len(var_names)))
        chains.append(Chain(samples=samples, var_names=tuple(var_names)))
    return MergedChainSet(chains=tuple(chains))


@pytest.fixture
def mixed_chains():
    """Four well-mixed chains around 0."""
    return make_chain_set([0.0, 0.0, 0.0, 0.0], n_samples=500)


@pytest.fixture
def separated_chains():
    """Four chains with very different means."""
    return make_chain_set([-10.0, -3.0, 3.0, 10.0], n_samples=500)
