"""
Tests for convergence diagnostics.

Tests R-hat (nested and per-chain), ESS, convergence classification and
the parameter summary table.
Run with: pytest tests/test_diagnostics.py -v
"""

import numpy as np
import pytest
import jax.numpy as jnp
import jax.random as random

from chainrun.error_handling import EvaluationError
from chainrun.mcmc.diagnostics import (
    compute_nested_rhat,
    compute_rhat,
    effective_sample_size,
    evaluate_convergence,
    format_summary_table,
    summarize_chains,
)
from chainrun.mcmc.types import Chain, MergedChainSet

from conftest import make_chain_set


class TestComputeNestedRhat:
    """Test the compute_nested_rhat function with synthetic data."""

    def test_well_mixed_below_threshold(self):
        """Well-mixed chains from the same distribution pass the nested threshold."""
        K, M = 4, 10
        history = random.normal(random.PRNGKey(42), (100, K * M, 3))

        nrhat = compute_nested_rhat(history, K, M)

        # Threshold for convergence (Margossian et al., 2022)
        threshold = jnp.sqrt(1 + 1 / M + 1e-4)
        assert nrhat.shape == (3,)
        assert jnp.all(nrhat < threshold)

    def test_detects_divergent_superchains(self):
        K, M = 4, 5
        key = random.PRNGKey(42)
        offsets = jnp.repeat(jnp.array([-10.0, -3.0, 3.0, 10.0]), M)
        history = random.normal(key, (50, K * M, 1)) + offsets[None, :, None]

        nrhat = compute_nested_rhat(history, K, M)

        assert float(nrhat[0]) > 2.0

    def test_m1_matches_gelman_rubin(self):
        """With M=1 the statistic is the classic potential scale reduction factor."""
        history = np.asarray(random.normal(random.PRNGKey(0), (200, 4, 1)))
        n = history.shape[0]
        chain_means = history.mean(axis=0)[:, 0]
        W = history.var(axis=0, ddof=1)[:, 0].mean()
        B = n * chain_means.var(ddof=1)
        V_hat = (n - 1) / n * W + B / n + B / (4 * n)
        expected = np.sqrt(V_hat / W)

        rhat = compute_nested_rhat(jnp.asarray(history), 4, 1)

        assert float(rhat[0]) == pytest.approx(expected, rel=1e-4)


class TestComputeRhat:
    """Test per-column R-hat on merged chain sets."""

    def test_mixed_chains_near_one(self, mixed_chains):
        rhat = compute_rhat(mixed_chains)
        assert rhat.shape == (1,)
        assert rhat[0] < 1.05

    def test_separated_chains_large(self, separated_chains):
        assert compute_rhat(separated_chains)[0] > 2.0

    def test_single_chain_undefined(self):
        merged = make_chain_set([0.0])
        assert np.isnan(compute_rhat(merged)[0])

    def test_constant_column_undefined(self):
        samples = np.ones((50, 1))
        merged = MergedChainSet(chains=(Chain(samples, ('mu',)), Chain(samples.copy(), ('mu',))))
        assert np.isnan(compute_rhat(merged)[0])

    def test_constant_per_chain_undefined(self):
        """Chains stuck at different constants have no within-chain variance."""
        merged = MergedChainSet(chains=(
            Chain(np.full((40, 1), 1.5), ('mu',)),
            Chain(np.full((40, 1), 2.5), ('mu',)),
            Chain(np.full((40, 1), 0.1), ('mu',)),
        ))
        assert np.isnan(compute_rhat(merged)[0])

    def test_column_selection(self):
        merged = make_chain_set([0.0, 0.0], var_names=('a', 'b[0]', 'b[1]'))
        assert compute_rhat(merged, merged.select(['b'])).shape == (2,)


class TestEffectiveSampleSize:
    """Test bulk ESS over all chains."""

    def test_independent_draws_near_total(self, mixed_chains):
        ess = effective_sample_size(mixed_chains)
        total = len(mixed_chains) * mixed_chains.n_samples
        assert 0.5 * total < ess[0] <= 1.5 * total

    def test_autocorrelated_draws_reduced(self):
        rng = np.random.default_rng(1)
        chains = []
        for _ in range(2):
            x = np.zeros(2000)
            for t in range(1, 2000):
                x[t] = 0.95 * x[t - 1] + rng.standard_normal()
            chains.append(Chain(x[:, None], ('mu',)))
        ess = effective_sample_size(MergedChainSet(chains=tuple(chains)))
        assert ess[0] < 0.2 * 4000

    def test_constant_column_nan(self):
        samples = np.zeros((30, 1))
        merged = MergedChainSet(chains=(Chain(samples, ('mu',)), Chain(samples.copy(), ('mu',))))
        assert np.isnan(effective_sample_size(merged)[0])

    def test_separated_chains_small(self, separated_chains):
        """Chains that disagree count as few effective draws, not as many."""
        ess = effective_sample_size(separated_chains)
        assert ess[0] < 0.05 * len(separated_chains) * separated_chains.n_samples

    def test_per_column(self):
        merged = make_chain_set([0.0, 0.0], var_names=('a', 'b'))
        ess = effective_sample_size(merged, merged.select(['b']))
        assert ess.shape == (1,)
        assert np.isfinite(ess[0])


class TestEvaluateConvergence:
    """Test convergence classification against a threshold."""

    def test_converged(self, mixed_chains):
        state = evaluate_convergence(mixed_chains, ['mu'], 1.05)
        assert state.converged
        assert state.max_rhat <= 1.05
        assert set(state.rhat) == {'mu'}

    def test_not_converged(self, separated_chains):
        state = evaluate_convergence(separated_chains, ['mu'], 1.05)
        assert not state.converged
        assert state.max_rhat > 1.05

    def test_threshold_is_inclusive(self, separated_chains):
        max_rhat = evaluate_convergence(separated_chains, ['mu'], 1.05).max_rhat
        assert evaluate_convergence(separated_chains, ['mu'], max_rhat).converged

    def test_all_undefined_raises(self):
        merged = make_chain_set([0.0])
        with pytest.raises(EvaluationError):
            evaluate_convergence(merged, ['mu'], 1.05)

    def test_undefined_columns_excluded(self):
        rng = np.random.default_rng(3)
        chains = []
        for _ in range(3):
            samples = np.column_stack([rng.standard_normal(200), np.full(200, 2.0)])
            chains.append(Chain(samples, ('mu', 'fixed')))
        state = evaluate_convergence(MergedChainSet(chains=tuple(chains)), ['mu', 'fixed'], 1.1)
        assert np.isnan(state.rhat['fixed'])
        assert np.isfinite(state.max_rhat)

    def test_constant_column_does_not_change_decision(self):
        """A fixed node tracked next to mu leaves max R-hat and the decision unchanged."""
        rng = np.random.default_rng(11)
        chains = []
        for _ in range(3):
            samples = np.column_stack([rng.standard_normal(500), np.full(500, 2.0)])
            chains.append(Chain(samples, ('mu', 'fixed')))
        merged = MergedChainSet(chains=tuple(chains))

        mu_only = evaluate_convergence(merged, ['mu'], 1.05)
        with_fixed = evaluate_convergence(merged, ['mu', 'fixed'], 1.05)

        assert with_fixed.converged == mu_only.converged
        assert with_fixed.max_rhat == pytest.approx(mu_only.max_rhat, rel=1e-6)

    def test_unknown_parameter(self, mixed_chains):
        with pytest.raises(KeyError, match="sigma"):
            evaluate_convergence(mixed_chains, ['sigma'], 1.05)


class TestSummary:
    """Test the parameter summary table."""

    def test_rows(self):
        merged = make_chain_set([5.0, 5.0, 5.0], n_samples=1000, var_names=('beta[0]', 'beta[1]'))
        rows = summarize_chains(merged, ['beta'])
        assert [r['param'] for r in rows] == ['beta[0]', 'beta[1]']
        for r in rows:
            assert r['mean'] == pytest.approx(5.0, abs=0.1)
            assert r['sd'] == pytest.approx(1.0, abs=0.1)
            assert r['2.5%'] < r['50%'] < r['97.5%']
            assert r['Rhat'] <= 1.05
            assert r['n_eff'] > 0

    def test_format_table(self, mixed_chains):
        table = format_summary_table(summarize_chains(mixed_chains, ['mu']))
        header, line = table.splitlines()
        assert 'Rhat' in header and 'n_eff' in header
        assert line.startswith('mu')

    def test_format_undefined_as_na(self):
        table = format_summary_table(summarize_chains(make_chain_set([0.0]), ['mu']))
        assert 'NA' in table

    def test_empty_table(self):
        assert format_summary_table([]) == ""
