"""
Convergence Diagnostics.

Diagnostics computed on a MergedChainSet:
- compute_nested_rhat: Nested R-hat (Margossian et al., 2022); M=1 is Gelman-Rubin
- compute_rhat: Per-column R-hat of a merged chain set
- effective_sample_size: Per-column bulk ESS (arviz)
- evaluate_convergence: Converged / not converged against a threshold
- summarize_chains / format_summary_table: Parameter summary for reports
"""

import time
from functools import partial
from typing import Dict, List, Optional, Sequence

import arviz as az
import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import EvaluationError
from .types import ConvergenceState, MergedChainSet

import logging
logger = logging.getLogger('chainrun')

SUMMARY_COLUMNS = ('mean', 'sd', '2.5%', '50%', '97.5%', 'Rhat', 'n_eff')


@partial(jax.jit, static_argnums=(1, 2))
def compute_nested_rhat(history: jnp.ndarray, K: int, M: int) -> jnp.ndarray:
    """
    Nested R-hat over K superchains of M subchains each.

    With M=1 every chain is its own superchain and the statistic reduces to
    the standard Gelman-Rubin potential scale reduction factor.

    Args:
        history: Sample array (n_samples, K*M, n_params)
        K: Number of superchains
        M: Number of subchains per superchain

    Returns:
        (n_params,) array of R-hat values. Columns with zero within-chain
        variance yield NaN or Inf.
    """
    n_samples, n_chains, n_params = history.shape
    nested = history.reshape(n_samples, K, M, n_params)

    # Superchain mean at each time step, then over time
    superchain_means = jnp.mean(jnp.mean(nested, axis=2), axis=0)  # (K, n_params)

    # Between-superchain variance, B = n * var(means)
    B = n_samples * jnp.var(superchain_means, axis=0, ddof=1)

    # Within-superchain variance: spread between subchains plus spread over time
    if M > 1:
        B_within = jnp.var(jnp.mean(nested, axis=0), axis=1, ddof=1)  # (K, n_params)
    else:
        B_within = jnp.zeros((K, n_params))

    if n_samples > 1:
        W_within = jnp.mean(jnp.var(nested, axis=0, ddof=1), axis=1)  # (K, n_params)
    else:
        W_within = jnp.zeros((K, n_params))

    W = jnp.mean(B_within + W_within, axis=0)

    # V_hat = (n-1)/n * W + B/n + B/(m*n)
    n = n_samples
    V_hat = ((n - 1) / n) * W + B / n + B / (K * n)
    return jnp.sqrt(V_hat / W)


def compute_rhat(merged: MergedChainSet, columns: Optional[Sequence[int]] = None) -> np.ndarray:
    """
    R-hat per column of a merged chain set (one superchain per chain).

    Undefined values (single chain, single sample, a column that is constant
    within every chain) are NaN.
    """
    history = merged.as_array(columns)
    n_samples, n_chains, n_params = history.shape
    if n_chains < 2 or n_samples < 2:
        return np.full(n_params, np.nan)

    rhat = np.asarray(jax.device_get(compute_nested_rhat(jnp.asarray(history), n_chains, 1)),
                      dtype=np.float64)
    # Zero within-chain variance; float32 rounding leaves W tiny but nonzero
    constant = np.all(np.ptp(history, axis=0) == 0, axis=0)
    return np.where(np.isfinite(rhat) & ~constant, rhat, np.nan)


def effective_sample_size(merged: MergedChainSet, columns: Optional[Sequence[int]] = None) -> np.ndarray:
    """
    Bulk effective sample size per column over all chains (arviz.ess).

    A column that is constant within every chain gets NaN, as does one with
    too few draws for arviz to estimate.
    """
    history = merged.as_array(columns)
    constant = np.all(np.ptp(history, axis=0) == 0, axis=0)
    ess = np.full(history.shape[2], np.nan)
    for j in np.flatnonzero(~constant):
        # arviz expects (chain, draw)
        ess[j] = float(az.ess(np.ascontiguousarray(history[:, :, j].T), method="bulk"))
    return ess


def evaluate_convergence(merged: MergedChainSet, params_subset: Sequence[str], threshold: float) -> ConvergenceState:
    """
    Classify a merged chain set as converged or not.

    Converged iff max R-hat over the selected columns is <= threshold.
    Undefined R-hat values are excluded from the max.

    Raises:
        EvaluationError: If every selected column has an undefined R-hat
    """
    start = time.perf_counter()
    columns = merged.select(params_subset)
    rhat = compute_rhat(merged, columns)
    names = [merged.var_names[i] for i in columns]

    defined = np.isfinite(rhat)
    if not np.any(defined):
        raise EvaluationError(
            f"R-hat is undefined for every monitored column {names}; "
            f"cannot decide convergence"
        )

    n_undefined = int(np.sum(~defined))
    if n_undefined:
        undefined = [n for n, ok in zip(names, defined) if not ok]
        logger.warning(f"  R-hat undefined for {n_undefined} column(s), excluded: {undefined}")

    max_rhat = float(np.max(rhat[defined]))
    converged = max_rhat <= threshold
    logger.debug(f"R-hat over {len(names)} columns in {time.perf_counter() - start:.4f}s")

    return ConvergenceState(
        converged=converged,
        max_rhat=max_rhat,
        rhat={n: float(r) for n, r in zip(names, rhat)},
    )


def summarize_chains(merged: MergedChainSet, params: Sequence[str], digits: int = 4) -> List[Dict[str, float]]:
    """
    Per-column posterior summary pooled over chains.

    Returns:
        One row per selected column: {'param', 'mean', 'sd', '2.5%', '50%',
        '97.5%', 'Rhat', 'n_eff'}. Rhat/n_eff may be NaN.
    """
    columns = merged.select(params)
    history = merged.as_array(columns)
    pooled = history.reshape(-1, history.shape[2])
    rhat = compute_rhat(merged, columns)
    ess = effective_sample_size(merged, columns)
    q = np.percentile(pooled, [2.5, 50.0, 97.5], axis=0)
    sd = np.std(pooled, axis=0, ddof=1) if pooled.shape[0] > 1 else np.full(len(columns), np.nan)

    rows = []
    for j, col in enumerate(columns):
        rows.append({
            'param': merged.var_names[col],
            'mean': round(float(np.mean(pooled[:, j])), digits),
            'sd': round(float(sd[j]), digits),
            '2.5%': round(float(q[0, j]), digits),
            '50%': round(float(q[1, j]), digits),
            '97.5%': round(float(q[2, j]), digits),
            'Rhat': round(float(rhat[j]), 2),
            'n_eff': float(np.floor(ess[j])) if np.isfinite(ess[j]) else np.nan,
        })
    return rows


def format_summary_table(rows: List[Dict[str, float]]) -> str:
    """Render summarize_chains rows as a fixed-width text table."""
    if not rows:
        return ""
    name_width = max(len('param'), max(len(r['param']) for r in rows))
    cells = [[f"{r[c]:g}" if np.isfinite(r[c]) else "NA" for c in SUMMARY_COLUMNS] for r in rows]
    widths = [max(len(c), max(len(row[i]) for row in cells)) for i, c in enumerate(SUMMARY_COLUMNS)]

    header = " " * name_width + "  " + "  ".join(c.rjust(w) for c, w in zip(SUMMARY_COLUMNS, widths))
    lines = [header]
    for r, row in zip(rows, cells):
        lines.append(r['param'].ljust(name_width) + "  " + "  ".join(v.rjust(w) for v, w in zip(row, widths)))
    return "\n".join(lines)
