"""
Sampling Engine Interface

A sampling engine turns (data, model, initial values) into a stateful
session that can be advanced repeatedly:

    engine = MyEngine()
    engine.load_extensions(['my_package.distributions'])
    session = engine.build_session(data, model, inits, n_chains=1, n_adapt=1000)
    session.update(500)                        # burn-in, draws discarded
    chain = session.sample(1000, ['mu'], 2)    # 500 retained draws

The run backend only ever talks to engines through this interface. Sessions
live inside worker processes and keep their sampler state between calls, so
a later sample() resumes where the previous one stopped.
"""

import importlib
import importlib.util
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from ..error_handling import ModelConstructionError
from ..mcmc.types import Chain

import logging
logger = logging.getLogger('chainrun')

# Function looked up in a model file when none is named
DEFAULT_MODEL_FUNCTION = 'log_density'


class SamplingSession(ABC):
    """Stateful sampler for one chain."""

    iteration: int = 0

    @abstractmethod
    def update(self, n_iter: int) -> None:
        """Advance the sampler n_iter iterations without keeping draws."""

    @abstractmethod
    def sample(self, n_iter: int, variable_names: Sequence[str], thin: int = 1) -> Chain:
        """Advance n_iter iterations, keeping every thin-th draw of variable_names."""


class SamplingEngine(ABC):
    """Factory for sampling sessions."""

    def load_extensions(self, names: Sequence[str]) -> None:
        """
        Import extension modules the model depends on.

        Importing is idempotent: a module already in sys.modules is reused.
        """
        for name in names:
            importlib.import_module(name)
            logger.debug(f"Loaded extension module '{name}'")

    @abstractmethod
    def build_session(
        self,
        data: Any,
        model: Any,
        inits: Dict[str, Any],
        n_chains: int = 1,
        n_adapt: int = 1000,
        seed: Optional[int] = None,
    ) -> SamplingSession:
        """Construct a session and run its adaptation phase."""


def _load_from_file(path: Path, fn_name: str) -> Callable:
    if not path.is_file():
        raise ModelConstructionError(f"Model file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"chainrun_model_{path.stem}", path)
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ModelConstructionError(f"Could not load model file {path}: {e}") from e
    if not hasattr(module, fn_name):
        raise ModelConstructionError(f"Model file {path} defines no function '{fn_name}'")
    return getattr(module, fn_name)


def resolve_model(model) -> Callable:
    """
    Resolve a model reference to a log-density callable.

    Accepted forms:
        callable                  - used as is
        'path/to/model.py'        - function 'log_density' in that file
        'path/to/model.py:fn'     - function 'fn' in that file
        'package.module:fn'       - function 'fn' in an importable module

    Raises:
        ModelConstructionError: If the reference cannot be resolved to a callable
    """
    if callable(model):
        return model
    if not isinstance(model, (str, Path)):
        raise ModelConstructionError(f"Unsupported model reference: {model!r}")

    ref = str(model)
    target, _, fn_name = ref.rpartition(':') if ':' in ref else (ref, '', '')

    if target.endswith('.py'):
        fn = _load_from_file(Path(target), fn_name or DEFAULT_MODEL_FUNCTION)
    elif fn_name:
        try:
            module = importlib.import_module(target)
        except ImportError as e:
            raise ModelConstructionError(f"Could not import model module '{target}': {e}") from e
        if not hasattr(module, fn_name):
            raise ModelConstructionError(f"Module '{target}' defines no function '{fn_name}'")
        fn = getattr(module, fn_name)
    else:
        raise ModelConstructionError(
            f"Model reference '{ref}' is neither a .py file nor 'module:function'"
        )

    if not callable(fn):
        raise ModelConstructionError(f"Model reference '{ref}' does not name a callable")
    return fn


def model_file(model) -> Optional[Path]:
    """Path of the file behind a model reference, if it names one."""
    if callable(model) or not isinstance(model, (str, Path)):
        return None
    ref = str(model)
    target = ref.rpartition(':')[0] if ':' in ref else ref
    path = Path(target)
    if path.suffix == '.py' and path.is_file():
        return path
    return None
