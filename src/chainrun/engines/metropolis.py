"""
Adaptive Random-Walk Metropolis Engine

Built-in sampling engine driving a single chain per session with JAX.

Model:
    A log-density callable log_density(params, data) -> scalar, where params
    maps each initial-value name to a jnp array of the same shape as its
    initial value. See resolve_model() for the accepted references.

Proposal: x' ~ N(x, step^2 * I) over the flattened parameter vector.
Hastings ratio: 0 (symmetric proposal).

Adaptation (n_adapt iterations): Robbins-Monro update of log(step) toward
the 0.234 acceptance rate that is optimal for random-walk proposals in
moderate dimension. The step is frozen afterwards, so burn-in and sampling
are a valid Markov chain.

Columns are named after the init entries: a scalar 'mu' gives column 'mu',
a length-3 vector 'beta' gives 'beta[0]', 'beta[1]', 'beta[2]', and a
matrix 'S' gives 'S[0,0]', 'S[0,1]', ...
"""

from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from ..error_handling import ModelConstructionError
from ..mcmc.types import Chain, select_columns
from .base import SamplingEngine, SamplingSession, resolve_model

import logging
logger = logging.getLogger('chainrun')

TARGET_ACCEPTANCE = 0.234
# Robbins-Monro gain decay: gain_t = (t + 1) ** -ADAPT_DECAY
ADAPT_DECAY = 0.6


def flatten_inits(inits: Dict[str, Any]) -> Tuple[np.ndarray, List[str], List[Tuple[str, Tuple[int, ...]]]]:
    """
    Flatten an init dict into a parameter vector.

    Returns:
        x0: Flat float vector
        var_names: One column name per vector entry
        layout: (name, shape) per init entry, in vector order
    """
    if not inits:
        raise ModelConstructionError("Initial values are empty")

    pieces, var_names, layout = [], [], []
    for name, value in inits.items():
        arr = np.asarray(value, dtype=np.float64)
        layout.append((name, arr.shape))
        pieces.append(arr.ravel())
        if arr.ndim == 0:
            var_names.append(name)
        else:
            for idx in np.ndindex(*arr.shape):
                var_names.append(f"{name}[{','.join(str(i) for i in idx)}]")
    return np.concatenate(pieces), var_names, layout


def unflatten(x: jnp.ndarray, layout) -> Dict[str, jnp.ndarray]:
    """Inverse of flatten_inits for a (traced) parameter vector."""
    params = {}
    offset = 0
    for name, shape in layout:
        size = int(np.prod(shape, dtype=int))
        params[name] = x[offset:offset + size].reshape(shape)
        offset += size
    return params


def _rw_step(log_density_fn, carry):
    """One random-walk Metropolis step. carry = (x, lp, key, log_step)."""
    x, lp, key, log_step = carry
    key, prop_key, accept_key = random.split(key, 3)

    proposal = x + jnp.exp(log_step) * random.normal(prop_key, x.shape, dtype=x.dtype)
    lp_proposed = jnp.nan_to_num(log_density_fn(proposal), nan=-jnp.inf, posinf=-jnp.inf).astype(lp.dtype)

    log_ratio = lp_proposed - lp
    accept = jnp.log(random.uniform(accept_key, shape=())) < log_ratio
    accept_prob = jnp.minimum(1.0, jnp.exp(jnp.minimum(log_ratio, 0.0)))

    x = jnp.where(accept, proposal, x)
    lp = jnp.where(accept, lp_proposed, lp)
    return (x, lp, key, log_step), accept, accept_prob


def _adapt(log_density_fn, carry, n_iter):
    def body(t, c):
        c, _, accept_prob = _rw_step(log_density_fn, c)
        x, lp, key, log_step = c
        gain = (t + 1.0) ** -ADAPT_DECAY
        return (x, lp, key, log_step + gain * (accept_prob - TARGET_ACCEPTANCE))
    return jax.lax.fori_loop(0, n_iter, body, carry)


def _advance(log_density_fn, carry, n_iter):
    # No accumulated outputs: draws are discarded
    def body(_, state):
        c, n_accept = state
        c, accept, _ = _rw_step(log_density_fn, c)
        return c, n_accept + accept.astype(jnp.int32)
    return jax.lax.fori_loop(0, n_iter, body, (carry, jnp.int32(0)))


def _draw(log_density_fn, carry, n_iter):
    def body(c, _):
        c, accept, _ = _rw_step(log_density_fn, c)
        return c, (c[0], accept)
    carry, (xs, accepts) = jax.lax.scan(body, carry, None, length=n_iter)
    return carry, xs, jnp.sum(accepts)


class MetropolisSession(SamplingSession):
    """Single-chain adaptive random-walk Metropolis sampler."""

    def __init__(self, log_density, data, inits: Dict[str, Any], seed: Optional[int] = None):
        x0, self.var_names, self.layout = flatten_inits(inits)
        self.iteration = 0
        self.n_accept = 0

        def log_density_fn(x):
            return log_density(unflatten(x, self.layout), data)

        x0 = jnp.asarray(x0)
        try:
            lp0 = float(log_density_fn(x0))
        except Exception as e:
            raise ModelConstructionError(f"Log density failed at initial values: {e}") from e
        if not np.isfinite(lp0):
            raise ModelConstructionError(
                f"Log density is not finite at initial values (got {lp0}); "
                f"check that inits lie inside the support of the model"
            )

        if seed is None:
            seed = int(np.random.SeedSequence().entropy % (2 ** 31))
        self.seed = seed

        log_step = jnp.log(2.38 / np.sqrt(x0.shape[0])).astype(x0.dtype)
        self._carry = (x0, jnp.asarray(lp0, dtype=x0.dtype), random.PRNGKey(seed), log_step)

        self._adapt = jax.jit(partial(_adapt, log_density_fn), static_argnums=(1,))
        self._advance = jax.jit(partial(_advance, log_density_fn), static_argnums=(1,))
        self._draw = jax.jit(partial(_draw, log_density_fn), static_argnums=(1,))

    @property
    def dtype(self):
        """Float dtype of the chain state (float64 only under jax_enable_x64)."""
        return self._carry[0].dtype

    @property
    def position(self) -> np.ndarray:
        return np.asarray(self._carry[0])

    @property
    def step_size(self) -> float:
        return float(jnp.exp(self._carry[3]))

    @property
    def acceptance_rate(self) -> float:
        return self.n_accept / self.iteration if self.iteration else 0.0

    def adapt(self, n_iter: int) -> None:
        if n_iter <= 0:
            return
        self._carry = self._adapt(self._carry, n_iter)
        logger.debug(f"Adapted step size to {self.step_size:.4g} over {n_iter} iterations")

    def update(self, n_iter: int) -> None:
        if n_iter <= 0:
            return
        self._carry, n_accept = self._advance(self._carry, n_iter)
        self.iteration += n_iter
        self.n_accept += int(n_accept)

    def sample(self, n_iter: int, variable_names: Sequence[str], thin: int = 1) -> Chain:
        columns = select_columns(self.var_names, variable_names)
        self._carry, xs, n_accept = self._draw(self._carry, n_iter)
        self.iteration += n_iter
        self.n_accept += int(n_accept)

        kept = np.asarray(jax.device_get(xs))[thin - 1::thin, columns]
        return Chain(
            samples=kept.astype(np.float64),
            var_names=tuple(self.var_names[i] for i in columns),
            thin=thin,
        )


class MetropolisEngine(SamplingEngine):
    """Engine building MetropolisSession objects."""

    def build_session(self, data, model, inits, n_chains=1, n_adapt=1000, seed=None):
        if n_chains != 1:
            raise ValueError(f"MetropolisEngine sessions hold exactly one chain, got n_chains={n_chains}")
        log_density = resolve_model(model)
        session = MetropolisSession(log_density, data, inits, seed=seed)
        session.adapt(n_adapt)
        return session
