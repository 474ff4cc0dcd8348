"""
Run Backend - Main Entry Point.

This module provides run_chains(), which runs one chain per worker process,
checks convergence and optionally extends sampling. The implementation is
split across several modules:

- config: RunConfig and defaults
- pool: Worker processes and per-round dispatch
- inits: Routing of initial values to workers
- session: Worker-side session building, burn-in and drawing
- merge: Merging per-worker chains
- diagnostics: R-hat, ESS and parameter summaries
- controller: Convergence / extension state machine
"""

import time
from typing import Any, Optional, Sequence

from ..error_handling import diagnose_chain_set, log_diagnostics, validate_run_config
from ..output_management import write_run_report
from ..registry import resolve_engine
from .config import RunConfig, build_run_config, configure_precision
from .controller import ExtensionController
from .diagnostics import evaluate_convergence, summarize_chains
from .inits import InitSource, assign_inits, resolve_inits
from .merge import merge_chains
from .pool import worker_pool
from .session import ExtensionTask, InitialTask, build_session
from .types import RunResult

import logging
logger = logging.getLogger('chainrun')

__all__ = [
    'run_chains',
    'debug_compile',
]

# Adaptation length used to check that a model compiles
DEBUG_N_ADAPT = 2


def debug_compile(data, model, inits, config: RunConfig) -> None:
    """
    Build one single-chain session in this process to check that model,
    data and inits fit together. No worker pool is created.

    Raises:
        ModelConstructionError: If the session cannot be built
    """
    configure_precision(config.use_double)
    engine_cls = resolve_engine(config.engine)
    source = InitSource(generator=inits) if config.random_inits else InitSource(values=dict(inits[0]))
    start_values = resolve_inits(source, data)

    build_session(engine_cls, data, model, start_values, n_adapt=DEBUG_N_ADAPT,
                  extensions=config.extensions, seed=config.chain_seed(0))
    logger.info("Successful compilation!")


def _run_parallel(data, model, inits, config: RunConfig) -> RunResult:
    """Initial pass plus extension rounds on a worker pool."""
    engine_cls = resolve_engine(config.engine)

    with worker_pool(config.n_chain) as pool:
        sources = assign_inits(pool.identities, inits, config.random_inits)
        tasks = [
            InitialTask(
                engine=engine_cls,
                data=data,
                model=model,
                init_source=source,
                params=config.params,
                n_adapt=config.n_adapt,
                n_burn=config.n_burn,
                n_draw=config.n_draw,
                n_thin=config.n_thin,
                extensions=config.extensions,
                seed=config.chain_seed(i),
                use_double=config.use_double,
            )
            for i, source in enumerate(sources)
        ]

        logger.info(f"\n--- Initial pass: {config.n_chain} chains, n_adapt={config.n_adapt}, "
                    f"n_burn={config.n_burn}, n_draw={config.n_draw} ---")
        started = time.perf_counter()
        merged = merge_chains(pool.dispatch(tasks))

        extension = ExtensionTask(
            params=config.params,
            n_rburn=config.n_rburn,
            n_draw=config.n_draw,
            n_thin=config.n_thin,
        )
        controller = ExtensionController(
            config,
            dispatch_extension=lambda: pool.dispatch([extension] * config.n_chain),
            evaluate=lambda m, params: evaluate_convergence(m, params, config.rhat_max),
        )
        return controller.run(merged, started)


def run_chains(
    data: Any,
    model: Any,
    inits: Any,
    params: Sequence[str],
    *,
    n_burn: int,
    n_draw: int,
    run_id: Optional[str] = None,
    description: Optional[str] = None,
    db_hash: Optional[str] = None,
    n_chain: int = 3,
    n_adapt: int = 5000,
    n_thin: int = 1,
    debug: bool = False,
    extra: bool = False,
    random_inits: bool = False,
    rhat_max: float = 1.05,
    n_rburn: int = 0,
    n_max: Optional[int] = None,
    params_extra: Optional[Sequence[str]] = None,
    params_report: Optional[Sequence[str]] = None,
    ppc: Optional[Sequence[str]] = None,
    obj_out: bool = False,
    save_data: bool = False,
    report: bool = True,
    engine: Any = 'metropolis',
    extensions: Sequence[str] = (),
    rng_seed: Optional[int] = None,
    use_double: bool = False,
    output_dir: str = '.',
) -> Optional[RunResult]:
    """
    Run chains in parallel, one worker process per chain, and report them.

    Args:
        data: Input data passed unchanged to the engine (e.g. dict of arrays)
        model: Model reference understood by the engine; for 'metropolis' a
            log_density(params, data) callable, 'module:function', or a .py path
        inits: List of per-chain init dicts (len >= n_chain), or a generator
            fn(data) -> dict when random_inits=True
        params: Parameter names to track
        n_burn: Burn-in iterations after adaptation
        n_draw: Iterations drawn per round (every n_thin-th is kept)
        run_id: Name of the output directory (default 'chainrun_output')
        description: Free-text description printed in the report
        db_hash: Data version (e.g. a git commit hash) printed in the report
        n_chain: Number of chains, and of worker processes
        n_adapt: Adaptation iterations
        n_thin: Thinning interval
        debug: Only check that a single-chain session builds; no pool, no output
        extra: Run extension rounds until convergence or n_max
        random_inits: Call inits(data) in every worker instead of using a list
        rhat_max: Convergence threshold on max R-hat
        n_rburn: Extra burn-in before each extension round's draws
        n_max: Iteration budget (default n_burn + (n_rburn + n_draw) * 2)
        params_extra: Parameters checked for convergence in extension rounds
        params_report: Parameters reported (and checked after the first pass)
        ppc: Posterior predictive check columns whose means go in the report
        obj_out: Return the RunResult even when a report is written
        save_data: Save the input data alongside the report
        report: Write the output directory; when False the RunResult is returned
        engine: Registered engine name or engine class
        extensions: Modules each worker imports before building its session
        rng_seed: Base seed; chain i uses rng_seed + i
        use_double: Run the engine in float64 (jax_enable_x64) instead of float32
        output_dir: Parent directory of the run directory

    Returns:
        RunResult when obj_out=True or report=False, otherwise None.

    Raises:
        ConfigurationError: Invalid configuration (nothing is started)
        ModelConstructionError: A session could not be built
        EvaluationError: Convergence could not be evaluated
        WorkerError: A worker failed during a round
    """
    config = build_run_config(
        params=params,
        params_extra=params_extra,
        params_report=params_report,
        ppc=ppc,
        extensions=extensions,
        n_burn=n_burn,
        n_draw=n_draw,
        n_chain=n_chain,
        n_adapt=n_adapt,
        n_thin=n_thin,
        debug=debug,
        extra=extra,
        random_inits=random_inits,
        rhat_max=rhat_max,
        n_rburn=n_rburn,
        n_max=n_max,
        obj_out=obj_out,
        save_data=save_data,
        report=report,
        engine=engine,
        rng_seed=rng_seed,
        use_double=use_double,
    )
    validate_run_config(config, inits)

    if config.debug:
        debug_compile(data, model, inits, config)
        return None

    result = _run_parallel(data, model, inits, config)

    log_diagnostics(diagnose_chain_set(result.chains.as_array(), result.chains.var_names))
    result.summary = summarize_chains(result.chains, config.params_report)

    if config.report:
        result.output_dir = str(write_run_report(
            result, config, data=data, model=model, inits=inits,
            run_id=run_id, description=description, db_hash=db_hash,
            output_dir=output_dir,
        ))
        return result if config.obj_out else None
    return result
