"""
Object store clients.

- ObjectStore: Abstract boundary (get/create/update/delete/list)
- InMemoryObjectStore: For testing and dry runs
- KubernetesObjectStore: Real cluster (imported lazily; needs the kubernetes package)
"""

from .base import ObjectStore
from .memory import InMemoryObjectStore

__all__ = ["ObjectStore", "InMemoryObjectStore"]
