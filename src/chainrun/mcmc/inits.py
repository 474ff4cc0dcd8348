"""
Chain Initialization.

Maps initial values onto workers:
- build_identity_map: {worker identity -> init list index}, built once per run
- assign_inits: One InitSource per worker, in worker-index order
- resolve_inits: Worker-side materialization of an InitSource

With random inits every worker calls the generator itself at session-build
time, so draws come from each worker's own RNG state. With fixed inits the
i-th init set is routed to worker i through the identity map, independent
of the order in which workers pick up tasks.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..error_handling import ConfigurationError


@dataclass(frozen=True)
class InitSource:
    """Initial values for one worker: a fixed dict or a generator fn(data)."""
    values: Optional[Dict[str, Any]] = None
    generator: Optional[Callable[[Any], Dict[str, Any]]] = None


def build_identity_map(identities: Sequence[int]) -> Dict[int, int]:
    """Map each worker identity token to the init list index it owns."""
    identity_map = {token: i for i, token in enumerate(identities)}
    if len(identity_map) != len(identities):
        raise ConfigurationError(f"Worker identities are not unique: {list(identities)}")
    return identity_map


def assign_inits(identities: Sequence[int], inits, random_inits: bool) -> List[InitSource]:
    """
    Build the per-worker init sources, in worker-index order.

    Args:
        identities: Worker identity tokens in worker-index order
        inits: List of per-chain init dicts, or a generator when random_inits
        random_inits: Whether every worker generates its own inits

    Raises:
        ConfigurationError: If a worker has no matching init set
    """
    if random_inits:
        return [InitSource(generator=inits) for _ in identities]

    identity_map = build_identity_map(identities)
    sources = []
    for token in identities:
        idx = identity_map[token]
        if idx >= len(inits):
            raise ConfigurationError(
                f"No initial values for worker {idx}: only {len(inits)} init sets supplied"
            )
        sources.append(InitSource(values=dict(inits[idx])))
    return sources


def resolve_inits(source: InitSource, data) -> Dict[str, Any]:
    """Materialize an InitSource inside the worker."""
    if source.generator is not None:
        return source.generator(data)
    return source.values
