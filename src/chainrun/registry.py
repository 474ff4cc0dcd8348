"""
Sampling Engine Registration System

This module provides a registry for sampling engines that can drive the
chains of a run. Engines are registered under a name and looked up by the
backend when run_chains() receives engine='name'.

The registry stores engine CLASSES, not instances. The class is sent to each
worker process inside its task descriptor (pickled by reference), so an
engine defined in user code must live at module top level.

Example usage:
    from chainrun import register_engine, SamplingEngine

    class MyEngine(SamplingEngine):
        def build_session(self, data, model, inits, n_chains, n_adapt, seed=None):
            ...

    register_engine('my_engine', MyEngine)
    run_chains(data, model, inits, params=['mu'], engine='my_engine', ...)
"""

_REGISTRY = {}


def register_engine(name, engine_cls):
    """
    Register a sampling engine with the run system.

    Args:
        name: Unique engine identifier string (e.g., 'metropolis')
        engine_cls: Class implementing the SamplingEngine interface. Must
            define build_session(data, model, inits, n_chains, n_adapt, seed)
            and load_extensions(names).

    Raises:
        ValueError: If required methods are missing or name is already registered.
    """
    if name in _REGISTRY:
        raise ValueError(f"Engine '{name}' is already registered")

    required_methods = ['build_session', 'load_extensions']
    missing = [m for m in required_methods if not callable(getattr(engine_cls, m, None))]
    if missing:
        raise ValueError(f"Missing required methods for engine '{name}': {missing}")

    _REGISTRY[name] = engine_cls


def get_engine(name):
    """
    Get a registered engine class by name.

    Raises:
        KeyError: If the engine is not registered
    """
    if name not in _REGISTRY:
        available = list(_REGISTRY.keys())
        raise KeyError(f"Unknown engine '{name}'. Available: {available}")
    return _REGISTRY[name]


def resolve_engine(engine):
    """Return an engine class from a registered name or a class."""
    if isinstance(engine, str):
        return get_engine(engine)
    return engine


def list_engines():
    """
    List all registered engine names.

    Returns:
        List of registered engine name strings
    """
    return list(_REGISTRY.keys())
