"""
Session Driver.

Worker-side execution of the two per-round tasks:
- InitialTask: set precision, build a session (extensions, model, inits,
  adaptation), burn in, draw
- ExtensionTask: optional extra burn-in, then draw again from the SAME session

A SessionDriver lives in each worker process for the whole run and owns
that worker's SamplingSession. The controller never sees the session; it
only receives the Chain each task returns.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from ..error_handling import ModelConstructionError, WorkerError
from .types import Chain
from .config import configure_precision
from .inits import InitSource, resolve_inits

import logging
logger = logging.getLogger('chainrun')


@dataclass(frozen=True)
class InitialTask:
    """Everything a worker needs to build its session and run the first pass."""
    engine: Any
    data: Any
    model: Any
    init_source: InitSource
    params: Tuple[str, ...]
    n_adapt: int
    n_burn: int
    n_draw: int
    n_thin: int
    extensions: Tuple[str, ...] = ()
    seed: Optional[int] = None
    use_double: bool = False


@dataclass(frozen=True)
class ExtensionTask:
    """One extension round against an existing session."""
    params: Tuple[str, ...]
    n_rburn: int
    n_draw: int
    n_thin: int


def build_session(engine_cls, data, model, inits, n_adapt, extensions=(), seed=None):
    """
    Load extensions and build a single-chain session.

    Raises:
        ModelConstructionError: If the engine cannot construct the session
    """
    engine = engine_cls()
    try:
        engine.load_extensions(extensions)
        return engine.build_session(data, model, inits, n_chains=1, n_adapt=n_adapt, seed=seed)
    except ModelConstructionError:
        raise
    except Exception as e:
        raise ModelConstructionError(f"Could not build sampling session: {e}") from e


class SessionDriver:
    """Owns one worker's session across rounds."""

    def __init__(self, index: int):
        self.index = index
        self.session = None

    def run(self, task) -> Chain:
        if isinstance(task, InitialTask):
            return self.initial_pass(task)
        if isinstance(task, ExtensionTask):
            return self.extension_pass(task)
        raise TypeError(f"Unknown task type: {type(task).__name__}")

    def initial_pass(self, task: InitialTask) -> Chain:
        configure_precision(task.use_double)
        inits = resolve_inits(task.init_source, task.data)
        self.session = build_session(
            task.engine, task.data, task.model, inits,
            n_adapt=task.n_adapt, extensions=task.extensions, seed=task.seed,
        )
        logger.debug(f"Worker {self.index}: session built, burning in {task.n_burn} iterations")
        self.session.update(task.n_burn)
        return self.session.sample(task.n_draw, task.params, task.n_thin)

    def extension_pass(self, task: ExtensionTask) -> Chain:
        if self.session is None:
            raise WorkerError(f"Worker {self.index} has no session; run the initial pass first")
        if task.n_rburn > 0:
            self.session.update(task.n_rburn)
        return self.session.sample(task.n_draw, task.params, task.n_thin)
