"""
Run Configuration.

This module turns the keyword arguments of run_chains() into an immutable
RunConfig:
- build_run_config: Fill defaults (params_extra, params_report, n_max)
- default_n_max: Default iteration budget for extension rounds
- configure_precision: Switch JAX between float32 and float64

The model, data and inits are NOT part of RunConfig; they are opaque inputs
forwarded to the workers.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp


def default_n_max(n_burn: int, n_draw: int, n_rburn: int) -> int:
    """Budget allowing two extension rounds after the initial pass."""
    return n_burn + (n_rburn + n_draw) * 2


def configure_precision(use_double: bool):
    """
    Set JAX floating point precision for this process.

    Must run before any session arrays are created; JAX keeps float32
    unless jax_enable_x64 is set. Returns the float dtype now in effect.
    """
    if use_double:
        jax.config.update("jax_enable_x64", True)
        return jnp.float64
    jax.config.update("jax_enable_x64", False)
    return jnp.float32


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable run parameters.

    Lengths are in sampler iterations. n_max is the cap on n_total
    (burn-in plus draws over all rounds) once extension rounds are enabled.
    """
    params: Tuple[str, ...]
    n_burn: int
    n_draw: int
    n_chain: int = 3
    n_adapt: int = 5000
    n_thin: int = 1
    debug: bool = False
    extra: bool = False
    random_inits: bool = False
    rhat_max: float = 1.05
    n_rburn: int = 0
    n_max: Optional[int] = None
    params_extra: Tuple[str, ...] = ()
    params_report: Tuple[str, ...] = ()
    ppc: Optional[Tuple[str, ...]] = None
    obj_out: bool = False
    save_data: bool = False
    report: bool = True
    engine: Any = 'metropolis'
    extensions: Tuple[str, ...] = ()
    rng_seed: Optional[int] = None
    use_double: bool = False

    @property
    def budget(self) -> int:
        """n_max, or its default when none was configured."""
        if self.n_max is None:
            return default_n_max(self.n_burn, self.n_draw, self.n_rburn)
        return self.n_max

    def chain_seed(self, index: int) -> Optional[int]:
        """Seed for chain `index`; None lets the worker draw fresh entropy."""
        if self.rng_seed is None:
            return None
        return self.rng_seed + index


def _as_names(params) -> Tuple[str, ...]:
    if params is None:
        return ()
    if isinstance(params, str):
        return (params,)
    return tuple(params)


def build_run_config(
    params: Sequence[str],
    params_extra: Optional[Sequence[str]] = None,
    params_report: Optional[Sequence[str]] = None,
    ppc: Optional[Sequence[str]] = None,
    extensions: Sequence[str] = (),
    **kwargs,
) -> RunConfig:
    """
    Build a RunConfig from run_chains() keyword arguments.

    params_extra and params_report default to params. A single string is
    accepted wherever a list of names is.
    """
    params = _as_names(params)
    return RunConfig(
        params=params,
        params_extra=_as_names(params_extra) or params,
        params_report=_as_names(params_report) or params,
        ppc=_as_names(ppc) or None,
        extensions=_as_names(extensions),
        **kwargs,
    )
