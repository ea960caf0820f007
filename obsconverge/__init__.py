"""
obsconverge - Staged convergence loop for an observability stack

Installs the Prometheus operator, removes resources left under legacy names
and keeps the stack's workloads in sync, one non-blocking tick at a time.
"""

__version__ = "0.1.0"


__all__ = ["OperatorConfig", "load_config", "load_spec", "get_obsconverge_home"]

from .config import OperatorConfig, load_config, load_spec, get_obsconverge_home
