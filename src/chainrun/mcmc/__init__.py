"""
MCMC Subpackage - Parallel chain orchestration.

This package contains the core run logic:
- backend: Entry point (run_chains) and debug compilation
- controller: Convergence / extension state machine
- pool: One worker process per chain
- session: Worker-side session driver
- inits: Routing of initial values to workers
- merge: Merging per-worker chains
- diagnostics: R-hat, ESS and parameter summaries
- config: RunConfig and defaults
- types: Core data structures (Chain, MergedChainSet, RunResult)
"""

# Import types first (needed by other modules)
from .types import (
    Chain,
    MergedChainSet,
    ConvergenceState,
    ControllerState,
    RunAccounting,
    RunResult,
)

# Import main entry points
from .backend import run_chains, debug_compile

from .config import RunConfig, build_run_config, default_n_max
from .controller import ExtensionController
from .diagnostics import (
    compute_nested_rhat,
    compute_rhat,
    effective_sample_size,
    evaluate_convergence,
    summarize_chains,
    format_summary_table,
)
from .merge import merge_chains
from .pool import WorkerPool, worker_pool

__all__ = [
    # Main entry points
    'run_chains',
    'debug_compile',
    # Types
    'Chain',
    'MergedChainSet',
    'ConvergenceState',
    'ControllerState',
    'RunAccounting',
    'RunResult',
    # Config
    'RunConfig',
    'build_run_config',
    'default_n_max',
    # Loop
    'ExtensionController',
    'WorkerPool',
    'worker_pool',
    'merge_chains',
    # Diagnostics
    'compute_nested_rhat',
    'compute_rhat',
    'effective_sample_size',
    'evaluate_convergence',
    'summarize_chains',
    'format_summary_table',
]
