"""
Chain merging.

Collects the per-worker results of one round into a MergedChainSet.
"""

from typing import Sequence

from .types import Chain, MergedChainSet


def merge_chains(results: Sequence[Chain]) -> MergedChainSet:
    """
    Merge one round of worker results, preserving worker-index order.

    Raises:
        ValueError: If results is empty or the chains track different columns
    """
    if not results:
        raise ValueError("Cannot merge an empty set of chains")

    var_names = results[0].var_names
    for i, chain in enumerate(results[1:], start=1):
        if chain.var_names != var_names:
            raise ValueError(
                f"Chain {i} tracks {list(chain.var_names)} but chain 0 tracks {list(var_names)}"
            )
    return MergedChainSet(chains=tuple(results))
