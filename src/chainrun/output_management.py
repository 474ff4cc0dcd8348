"""
Output directory and report management.

This module provides functions for:
- Creating the per-run output directory
- Writing the human-readable results.txt report
- Saving the merged chains (and optionally the input data) next to it
"""

import shutil
from pathlib import Path
from typing import Any, Optional

from .checkpoint_io import save_chain_set, save_input_data
from .engines.base import model_file
from .hardware_info import get_hardware_info
from .mcmc.diagnostics import format_summary_table, summarize_chains

import logging
logger = logging.getLogger('chainrun')

DEFAULT_RUN_ID = 'chainrun_output'
NONE_GIVEN = 'NONE GIVEN'


def describe_inits(inits) -> str:
    """Short description of the inits object for the report."""
    if callable(inits):
        module = getattr(inits, '__module__', None)
        name = getattr(inits, '__qualname__', type(inits).__name__)
        return f"{module}.{name}" if module else name
    return f"list of {len(inits)} init sets"


def get_run_paths(output_dir: str, run_id: str):
    """
    Get file paths for a run.

    Returns:
        Dict with paths:
            - base: {output_dir}/{run_id}/
            - report: {base}/results.txt
            - chains: {base}/{run_id}.npz
            - data: {base}/data.npz
    """
    base = Path(output_dir) / run_id
    return {
        'base': base,
        'report': base / 'results.txt',
        'chains': base / f'{run_id}.npz',
        'data': base / 'data.npz',
    }


def format_report(result, config, run_id: str, description: Optional[str], db_hash: Optional[str],
                  inits_label: str) -> str:
    """Render the results.txt text for a finished run."""
    acc = result.accounting
    lines = [
        f"run_id: {run_id}",
        f"description: {description or NONE_GIVEN}",
        f"db_hash: {db_hash or NONE_GIVEN}",
        f"Random inits: {config.random_inits}",
        f"Inits object: {inits_label}",
        f"Total minutes: {round(acc.elapsed_minutes, 2)}",
        f"Total iterations: {acc.n_total}",
        f"n_chain: {config.n_chain}",
        f"n_adapt: {config.n_adapt}",
        f"n_burn: {config.n_burn}",
        f"n_draw: {config.n_draw}",
        f"n_thin: {config.n_thin}",
        f"Total samples kept: {acc.samples_kept(config.n_chain, config.n_thin)}",
        f"Extended burnin: {config.extra}",
    ]
    if config.extra:
        lines += [
            f"rhat_max: {config.rhat_max}",
            f"n_max: {result.n_max}",
            f"n_rburn: {config.n_rburn}",
            f"n_extra: {acc.n_extra}",
        ]
    lines.append(f"convergence: {result.converged}")

    if config.ppc:
        for row in summarize_chains(result.chains, config.ppc, digits=4):
            lines.append(f"ppc: {row['param']} {row['mean']}")

    host = get_hardware_info()
    lines.append(f"host: {host['host']} ({host['cpu_cores']} cores, jax {host['jax_version']} "
                 f"on {host['jax_backend']})")
    lines.append("")
    lines.append(format_summary_table(result.summary))
    return "\n".join(lines) + "\n"


def write_run_report(
    result,
    config,
    data: Any,
    model: Any,
    inits: Any,
    run_id: Optional[str] = None,
    description: Optional[str] = None,
    db_hash: Optional[str] = None,
    output_dir: str = '.',
) -> Path:
    """
    Write the report, chains and (optionally) input data of a run.

    Creates {output_dir}/{run_id}/ containing results.txt and {run_id}.npz,
    plus data.npz when config.save_data is set. A model given as a file path
    is copied into the directory.

    Returns:
        Path of the run directory
    """
    run_id = run_id or DEFAULT_RUN_ID
    paths = get_run_paths(output_dir, run_id)
    if paths['base'].exists():
        logger.warning(f"Output directory {paths['base']} already exists; files will be overwritten")
    paths['base'].mkdir(parents=True, exist_ok=True)

    src = model_file(model)
    if src is not None:
        shutil.copy2(src, paths['base'] / src.name)

    text = format_report(result, config, run_id, description, db_hash, describe_inits(inits))
    with open(paths['report'], 'w', encoding='utf-8') as f:
        f.write(text)
    logger.info(f"Report written to {paths['report']}")

    save_chain_set(paths['chains'], result.chains, metadata={
        'run_id': run_id,
        'converged': bool(result.converged),
        'max_rhat': float(result.convergence.max_rhat),
        'n_total': int(result.accounting.n_total),
        'state': result.state.value,
    })

    if config.save_data:
        save_input_data(paths['data'], data)

    return paths['base']
