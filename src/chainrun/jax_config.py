"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- GPU memory preallocation (disabled: one process per chain shares a device)
- Persistent compilation cache directory
- Minimum compile time threshold for caching

Worker processes are started with the 'spawn' method, so each one imports
the chainrun package (and therefore this module) before touching JAX.
"""
import os
from pathlib import Path

# --- GPU MEMORY ALLOCATOR ---
# Every chain runs in its own process; preallocation would let the first
# worker grab most of the device memory.
os.environ.setdefault("XLA_PYTHON_CLIENT_PREALLOCATE", "false")

# Suppress CUDA/XLA C++ warnings
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")

# --- PERSISTENT COMPILATION CACHE ---
# Workers compile the same sampling kernels; share them across processes
_JAX_CACHE_DIR = Path.home() / ".cache" / "jax" / "chainrun_cache"
_JAX_CACHE_DIR.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("JAX_COMPILATION_CACHE_DIR", str(_JAX_CACHE_DIR))
os.environ.setdefault("JAX_PERSISTENT_CACHE_MIN_COMPILE_TIME_SECS", "1.0")
