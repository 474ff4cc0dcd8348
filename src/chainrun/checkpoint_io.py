"""
Chain set I/O utilities.

This module provides functions for:
- Saving a merged chain set to disk (.npz) after a run
- Loading a saved chain set back into a MergedChainSet
- Saving the input data of a run alongside its results
"""

from typing import Any, Dict, Optional

import numpy as np
from pathlib import Path

from .mcmc.types import Chain, MergedChainSet

import logging
logger = logging.getLogger('chainrun')


def save_chain_set(filepath: str, merged: MergedChainSet, metadata: Optional[Dict[str, Any]] = None) -> None:
    """
    Save a merged chain set to disk.

    Args:
        filepath: Path to save to (.npz file)
        merged: Chain set to save
        metadata: Optional dict of additional metadata (run id, convergence, ...)

    Saves:
        - samples: (n_chains, n_samples, n_columns) array
        - var_names: column names
        - thin: thinning interval of the retained draws
    """
    record = {
        'samples': np.stack([c.samples[:merged.n_samples] for c in merged.chains], axis=0),
        'var_names': np.array(merged.var_names),
        'thin': int(merged[0].thin),
    }
    if metadata:
        record['metadata'] = metadata

    filepath = Path(filepath)
    np.savez_compressed(filepath, **record)
    logger.info(f"Chains saved to {filepath}")


def load_chain_set(filepath: str) -> MergedChainSet:
    """
    Load a chain set written by save_chain_set.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Chain file not found: {filepath}")

    # Copy arrays so no reference to the NpzFile outlives the context
    with np.load(filepath, allow_pickle=True) as data:
        samples = data['samples'].copy()
        var_names = tuple(str(v) for v in data['var_names'])
        thin = int(data['thin'])

    return MergedChainSet(chains=tuple(
        Chain(samples=samples[i], var_names=var_names, thin=thin) for i in range(samples.shape[0])
    ))


def load_chain_metadata(filepath: str) -> Dict[str, Any]:
    """Metadata stored with a chain set, or an empty dict."""
    with np.load(Path(filepath), allow_pickle=True) as data:
        if 'metadata' in data:
            return data['metadata'].item()
    return {}


def save_input_data(filepath: str, data: Any) -> None:
    """
    Save the input data of a run.

    Dict data is stored one array per key; anything else is stored as a
    single pickled object under 'data'.
    """
    filepath = Path(filepath)
    if isinstance(data, dict):
        arrays = {str(k): np.asarray(v) for k, v in data.items()}
    else:
        arrays = {'data': np.array(data, dtype=object)}
    np.savez_compressed(filepath, **arrays)
    logger.info(f"Input data saved to {filepath}")
