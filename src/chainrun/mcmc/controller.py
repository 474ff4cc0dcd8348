"""
Extension Loop Controller.

Decides, after the initial pass, whether more sampling is needed and drives
extension rounds until convergence or until the iteration budget would be
exceeded.

State machine:

    INITIAL_CONVERGED ------------------------------------> DONE
    INITIAL_NOT_CONVERGED --(extra disabled)--------------> DONE
    INITIAL_NOT_CONVERGED --(extra enabled)--> EXTENDING
    EXTENDING --(converged)--------------------------------> DONE
    EXTENDING --(next round would exceed n_max)-----------> BUDGET_EXHAUSTED

Budget accounting (all in sampler iterations, adaptation excluded):
    n_total      = n_burn + n_draw + rounds * (n_rburn + n_draw)
    n_extra      = rounds * (n_rburn + n_draw)
    n_draw_total = n_draw * (1 + rounds)

A round runs only if n_total + n_rburn + n_draw <= n_max; the check is made
before the round, so n_total never exceeds n_max.

The controller talks to the workers only through dispatch_extension() and
to the diagnostics only through evaluate(), so it can be driven without a
process pool.
"""

import time
from typing import Callable, List, Sequence

from ..error_handling import WorkerError
from .config import RunConfig
from .merge import merge_chains
from .types import (
    Chain,
    ControllerState,
    ConvergenceState,
    MergedChainSet,
    RunAccounting,
    RunResult,
)

import logging
logger = logging.getLogger('chainrun')


class ExtensionController:
    """
    Drives the convergence check and extension rounds of one run.

    Args:
        config: Run configuration
        dispatch_extension: Runs one extension pass on every worker and
            returns the new chains in worker-index order
        evaluate: evaluate(merged, params_subset) -> ConvergenceState
        clock: Time source in seconds
    """

    def __init__(
        self,
        config: RunConfig,
        dispatch_extension: Callable[[], List[Chain]],
        evaluate: Callable[[MergedChainSet, Sequence[str]], ConvergenceState],
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config
        self.dispatch_extension = dispatch_extension
        self.evaluate = evaluate
        self.clock = clock
        self.state = None

    def _check_chain_count(self, merged: MergedChainSet) -> None:
        if len(merged) != self.config.n_chain:
            raise WorkerError(f"Expected {self.config.n_chain} chains, merged {len(merged)}")

    def _finish(self, merged, convergence, converged, accounting, n_max) -> RunResult:
        logger.info(f"Final state: {self.state.name} (converged={converged}, "
                    f"n_total={accounting.n_total}, rounds={accounting.n_rounds})")
        return RunResult(
            chains=merged,
            converged=converged,
            state=self.state,
            convergence=convergence,
            accounting=accounting,
            n_max=n_max,
        )

    def run(self, initial: MergedChainSet, started: float) -> RunResult:
        """
        Evaluate the first-pass chains and extend them as configured.

        Args:
            initial: Merged chains from the initial pass
            started: clock() value taken when sampling began

        Returns:
            RunResult with the latest chains and final accounting
        """
        cfg = self.config
        self._check_chain_count(initial)

        accounting = RunAccounting(
            n_total=cfg.n_burn + cfg.n_draw,
            n_draw_total=cfg.n_draw,
            elapsed_seconds=self.clock() - started,
        )
        n_max = cfg.budget
        merged = initial

        convergence = self.evaluate(merged, cfg.params_report)
        converged = convergence.converged
        self.state = (ControllerState.INITIAL_CONVERGED if converged
                      else ControllerState.INITIAL_NOT_CONVERGED)
        logger.info(f"Initial pass: max R-hat {convergence.max_rhat:.4f} "
                    f"({'converged' if converged else 'not converged'}, threshold {cfg.rhat_max})")

        if converged or not cfg.extra:
            self.state = ControllerState.DONE
            return self._finish(merged, convergence, converged, accounting, n_max)

        self.state = ControllerState.EXTENDING
        round_cost = cfg.n_rburn + cfg.n_draw
        logger.info(f"\n--- Extending chains (n_max={n_max}, {round_cost} iterations per round) ---")

        extra_state = self.evaluate(merged, cfg.params_extra)
        while not extra_state.converged and accounting.n_total + round_cost <= n_max:
            merged = merge_chains(self.dispatch_extension())
            self._check_chain_count(merged)
            extra_state = self.evaluate(merged, cfg.params_extra)

            accounting.n_extra += round_cost
            accounting.n_draw_total += cfg.n_draw
            accounting.n_total += round_cost
            accounting.n_rounds += 1
            accounting.elapsed_seconds = self.clock() - started

            convergence = extra_state
            converged = extra_state.converged
            logger.info(f"  Round {accounting.n_rounds}: max R-hat {extra_state.max_rhat:.4f}, "
                        f"n_total {accounting.n_total}/{n_max}")

        if converged:
            self.state = ControllerState.DONE
        elif extra_state.converged:
            # Loop never ran: params_extra already pass but params_report did not
            logger.warning("params_extra meet the R-hat threshold but params_report do not; "
                           "no extension rounds were run")
            self.state = ControllerState.DONE
        else:
            self.state = ControllerState.BUDGET_EXHAUSTED
            logger.warning(f"Iteration budget exhausted before convergence "
                           f"(max R-hat {extra_state.max_rhat:.4f} > {cfg.rhat_max})")
        return self._finish(merged, convergence, converged, accounting, n_max)
