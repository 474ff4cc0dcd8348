"""
Hardware Info - Host capacity checks for parallel runs.

Every chain gets its own worker process, so the number of usable cores
bounds how many chains can actually run in parallel.

Functions:
- available_cores: CPU cores usable by this process
- get_hardware_info: Host and JAX backend fingerprint for run reports
"""

import os
import platform
from typing import Dict, Any

import jax


def available_cores() -> int:
    """Number of CPU cores this process may schedule on."""
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        # sched_getaffinity is Linux-only
        return os.cpu_count() or 1


def get_hardware_info() -> Dict[str, Any]:
    """
    Collect host information for the run report.

    Lets a reader tell whether two reports were produced on comparable
    machines before comparing their timings.
    """
    return {
        'host': platform.node(),
        'cpu_cores': available_cores(),
        'jax_backend': str(jax.default_backend()),
        'jax_version': jax.__version__,
    }
