"""
Sampling engines.

This package contains the engine interface and the built-in engines:
- base: SamplingEngine / SamplingSession interface and model resolution
- metropolis: Adaptive random-walk Metropolis engine (JAX), registered as 'metropolis'
"""

from ..registry import register_engine
from .base import SamplingEngine, SamplingSession, resolve_model, model_file
from .metropolis import MetropolisEngine, MetropolisSession

register_engine('metropolis', MetropolisEngine)

__all__ = [
    'SamplingEngine',
    'SamplingSession',
    'MetropolisEngine',
    'MetropolisSession',
    'resolve_model',
    'model_file',
]
