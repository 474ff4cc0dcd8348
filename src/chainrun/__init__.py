"""
chainrun - Parallel MCMC chains with convergence-driven extension

Public API:
    Running:
        run_chains - Run one chain per worker process, check R-hat, extend, report
        debug_compile - Check that model, data and inits build a session

    Engines:
        SamplingEngine / SamplingSession - Interface for sampling engines
        MetropolisEngine - Built-in adaptive random-walk Metropolis engine (JAX)
        register_engine - Register an engine under a name
        get_engine - Retrieve a registered engine
        list_engines - List all registered engines

    Results:
        RunResult - Final chains, convergence flag, accounting and summary
        MergedChainSet / Chain - Per-round chain containers
        ControllerState - Terminal state of the extension loop

    Diagnostics:
        compute_rhat - R-hat per column of a chain set
        effective_sample_size - ESS per column of a chain set
        summarize_chains - Parameter summary table

    Persistence:
        save_chain_set / load_chain_set - Read and write chain sets (.npz)

    Errors:
        ConfigurationError, ModelConstructionError, EvaluationError, WorkerError

Example:
    import jax.numpy as jnp
    from chainrun import run_chains

    def log_density(params, data):
        mu = params['mu']
        return -0.5 * mu ** 2 / 100.0 - 0.5 * jnp.sum((data['y'] - mu) ** 2)

    result = run_chains(
        {'y': y}, log_density, [{'mu': -1.0}, {'mu': 1.0}], params=['mu'],
        n_chain=2, n_adapt=500, n_burn=1000, n_draw=1000,
        extra=True, n_rburn=500, report=False,
    )
    print(result.converged, result.accounting.n_total)

Note: workers are spawned processes, so models, engines and init generators
must be importable top-level functions/classes (not lambdas or closures).
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .error_handling import (
    ChainRunError,
    ConfigurationError,
    ModelConstructionError,
    EvaluationError,
    WorkerError,
)
from .registry import register_engine, get_engine, list_engines

# Main entry points (loads the engines package and registers the built-in engine)
from .mcmc import (
    run_chains,
    debug_compile,
)

from .engines import SamplingEngine, SamplingSession, MetropolisEngine
from .mcmc.types import Chain, MergedChainSet, ControllerState, RunResult
from .mcmc.diagnostics import compute_rhat, effective_sample_size, summarize_chains
from .checkpoint_io import save_chain_set, load_chain_set
