"""
Run Data Structures and Type Definitions.

This module contains the core data structures passed between the pieces of
a run:
- Chain: One worker's retained draws for one round
- MergedChainSet: All chains of a round, in worker-index order
- ControllerState: States of the extension loop
- ConvergenceState: Result of one convergence evaluation
- RunAccounting: Cumulative iteration and timing totals for a run
- RunResult: Final state handed to reporting and returned to the caller
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np


_BASE_NAME = re.compile(r'^([^\[]+)')


def base_name(var_name: str) -> str:
    """Strip the index suffix from a column name ('beta[0]' -> 'beta')."""
    return _BASE_NAME.match(var_name).group(1)


def select_columns(var_names: Sequence[str], params: Sequence[str]) -> List[int]:
    """
    Resolve parameter names to column indices.

    A parameter matches a column when it equals the full column name
    ('beta[1]') or the column's base name ('beta' selects every beta[i]).
    Columns are returned in var_names order.

    Raises:
        KeyError: If a parameter matches no column
    """
    selected = []
    for p in params:
        hits = [i for i, name in enumerate(var_names) if name == p or base_name(name) == p]
        if not hits:
            raise KeyError(f"Parameter '{p}' not found in chains. Available: {list(var_names)}")
        selected.extend(hits)
    # Keep column order stable and drop duplicates from overlapping params
    return sorted(set(selected))


@dataclass(frozen=True)
class Chain:
    """
    Retained draws produced by one worker for one round.

    samples has shape (n_kept, n_columns); var_names labels the columns.
    """
    samples: np.ndarray
    var_names: Tuple[str, ...]
    thin: int = 1

    def __post_init__(self):
        if self.samples.ndim != 2 or self.samples.shape[1] != len(self.var_names):
            raise ValueError(
                f"Chain samples must be (n_kept, {len(self.var_names)}), got {self.samples.shape}"
            )

    @property
    def n_samples(self) -> int:
        return self.samples.shape[0]


@dataclass(frozen=True)
class MergedChainSet:
    """
    Ordered collection of chains, one per worker.

    Index i always holds the chain of worker i. A new set is built every
    round; older rounds are never concatenated in.
    """
    chains: Tuple[Chain, ...]

    def __len__(self) -> int:
        return len(self.chains)

    def __getitem__(self, i) -> Chain:
        return self.chains[i]

    def __iter__(self):
        return iter(self.chains)

    @property
    def var_names(self) -> Tuple[str, ...]:
        return self.chains[0].var_names

    @property
    def n_samples(self) -> int:
        return min(c.n_samples for c in self.chains)

    def as_array(self, columns: Optional[Sequence[int]] = None) -> np.ndarray:
        """
        Stack chains into a (n_samples, n_chains, n_columns) array.

        Chains are truncated to the shortest one so the result is rectangular.
        """
        n = self.n_samples
        history = np.stack([c.samples[:n] for c in self.chains], axis=1)
        if columns is not None:
            history = history[:, :, list(columns)]
        return history

    def select(self, params: Sequence[str]) -> List[int]:
        return select_columns(self.var_names, params)


class ControllerState(Enum):
    """States of the extension loop. BUDGET_EXHAUSTED and DONE are terminal."""
    INITIAL_CONVERGED = "initial_converged"
    INITIAL_NOT_CONVERGED = "initial_not_converged"
    EXTENDING = "extending"
    BUDGET_EXHAUSTED = "budget_exhausted"
    DONE = "done"


@dataclass(frozen=True)
class ConvergenceState:
    """R-hat evaluation over a monitored parameter subset."""
    converged: bool
    max_rhat: float
    rhat: Dict[str, float]


@dataclass
class RunAccounting:
    """
    Cumulative totals for one run.

    n_total counts every iteration consumed after adaptation: the initial
    burn-in and draws plus every extension round's burn-in and draws.
    """
    n_total: int = 0
    n_extra: int = 0
    n_draw_total: int = 0
    n_rounds: int = 0
    elapsed_seconds: float = 0.0

    @property
    def elapsed_minutes(self) -> float:
        return self.elapsed_seconds / 60.0

    def samples_kept(self, n_chain: int, n_thin: int) -> int:
        return n_chain * (self.n_draw_total // n_thin)


@dataclass
class RunResult:
    """Final state of a run."""
    chains: MergedChainSet
    converged: bool
    state: ControllerState
    convergence: ConvergenceState
    accounting: RunAccounting
    n_max: int
    summary: List[Dict[str, float]] = field(default_factory=list)
    output_dir: Optional[str] = None
