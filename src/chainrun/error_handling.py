"""
Error Handling and Validation Utilities for the Run Backend

This module defines the error taxonomy of a run and provides validation
functions and diagnostic tools for multi-chain sampling.

Error taxonomy:
    ConfigurationError     - invalid run configuration, raised before any worker starts
    ModelConstructionError - the engine could not build a session (bad model, data or inits)
    EvaluationError        - convergence could not be decided (every R-hat undefined)
    WorkerError            - any other failure inside a worker process

Budget exhaustion is NOT an error: it is reported through RunResult.converged.
"""

from typing import Any, Dict, List

import numpy as np

from .hardware_info import available_cores

import logging
logger = logging.getLogger('chainrun')


class ChainRunError(Exception):
    """Base class for all chainrun errors."""


class ConfigurationError(ChainRunError, ValueError):
    """Raised when a run is configured inconsistently."""


class ModelConstructionError(ChainRunError):
    """Raised when a sampling session cannot be built from model, data and inits."""


class EvaluationError(ChainRunError):
    """Raised when no monitored parameter has a defined convergence diagnostic."""


class WorkerError(ChainRunError):
    """Raised when a worker process fails or dies during a round."""


def _not_subset(subset, params) -> List[str]:
    return [p for p in subset if p not in params]


def validate_run_config(config, inits) -> None:
    """
    Validates that a run configuration is sensible.

    Every problem is collected first so the caller sees all of them at once.

    Args:
        config: RunConfig instance
        inits: Per-chain list of initial-value dicts, or a generator
            callable when config.random_inits is True

    Raises:
        ConfigurationError: If configuration is invalid
    """
    errors = []

    if not config.params:
        errors.append("params must name at least one parameter to track")

    if config.n_chain < 1:
        errors.append("n_chain must be >= 1")
    elif config.n_chain < 2 and not config.debug:
        errors.append("n_chain must be >= 2 for a parallel run (R-hat needs several chains)")

    for key in ('n_adapt', 'n_burn', 'n_rburn'):
        if getattr(config, key) < 0:
            errors.append(f"{key} must be >= 0, got {getattr(config, key)}")

    if config.n_thin < 1:
        errors.append(f"n_thin must be >= 1, got {config.n_thin}")

    if config.n_draw < 1:
        errors.append(f"n_draw must be >= 1, got {config.n_draw}")
    elif config.n_thin >= 1 and config.n_draw < config.n_thin:
        errors.append(f"n_draw ({config.n_draw}) must be >= n_thin ({config.n_thin}) to keep any samples")

    if config.rhat_max < 1.0:
        errors.append(f"rhat_max must be >= 1, got {config.rhat_max}")

    if config.n_max is not None and config.n_max < config.n_burn + config.n_draw:
        errors.append(
            f"n_max ({config.n_max}) must be >= n_burn + n_draw ({config.n_burn + config.n_draw})"
        )

    for label, subset in (('params_extra', config.params_extra),
                          ('params_report', config.params_report),
                          ('ppc', config.ppc or ())):
        missing = _not_subset(subset, config.params)
        if missing:
            errors.append(f"{label} must be a subset of params; not tracked: {missing}")

    if config.random_inits:
        if not callable(inits):
            errors.append("random_inits=True requires inits to be a callable generator fn(data)")
    else:
        if callable(inits) or isinstance(inits, dict):
            errors.append("inits must be a list of per-chain dicts when random_inits=False")
        elif config.debug:
            # Debug builds a single session from inits[0]
            if len(inits) < 1:
                errors.append("inits must hold at least one init set for a debug run")
        elif len(inits) < config.n_chain:
            errors.append(
                f"inits has {len(inits)} entries but n_chain is {config.n_chain}; "
                f"each chain needs its own initial values"
            )

    if errors:
        raise ConfigurationError("Invalid run configuration:\n  " + "\n  ".join(errors))

    if not config.random_inits and not config.debug and len(inits) > config.n_chain:
        logger.warning(
            f"inits has {len(inits)} entries but n_chain is {config.n_chain}; "
            f"only the first {config.n_chain} are used"
        )

    n_cores = available_cores()
    if not config.debug and config.n_chain > n_cores:
        logger.warning(
            f"n_chain ({config.n_chain}) exceeds available cores ({n_cores}); "
            f"chains will compete for CPU time"
        )


def diagnose_chain_set(history: np.ndarray, var_names, diagnostics: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Analyzes a merged chain set to identify common issues.

    Args:
        history: Sample array (n_samples, n_chains, n_columns)
        var_names: Column names matching the last axis of history
        diagnostics: Existing diagnostics dict to extend

    Returns:
        diagnostics: Dictionary with issues, warnings, and info
    """
    diagnostics = (diagnostics or {}) | {
        'issues': [],
        'warnings': [],
        'info': []
    }

    # Check for NaN/Inf in history
    if not np.all(np.isfinite(history)):
        diagnostics['issues'].append(
            "Chains contain NaN or Inf values - sampler became unstable"
        )

    # Stuck chains: every column has near-zero variance over time
    chain_vars = np.var(history, axis=0)
    stuck = np.where(np.all(chain_vars < 1e-10, axis=1))[0]
    if stuck.size > 0:
        diagnostics['warnings'].append(
            f"{stuck.size} chain(s) appear stuck (near-zero variance): {stuck.tolist()}"
        )

    diagnostics['info'].append(f"Samples per chain: {history.shape[0]}")
    diagnostics['info'].append(f"Number of chains: {history.shape[1]}")
    diagnostics['info'].append(f"Number of columns: {len(var_names)}")

    return diagnostics


def log_diagnostics(diagnostics: Dict[str, Any]) -> None:
    """Log diagnostics from diagnose_chain_set."""
    if diagnostics['issues']:
        logger.warning("[ERROR] ISSUES:")
        for issue in diagnostics['issues']:
            logger.warning(f"  - {issue}")

    if diagnostics['warnings']:
        logger.warning("[WARN] WARNINGS:")
        for warning in diagnostics['warnings']:
            logger.warning(f"  - {warning}")

    if diagnostics['info']:
        logger.info("[INFO] INFO:")
        for info in diagnostics['info']:
            logger.info(f"  - {info}")

    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("[OK] No issues detected")
