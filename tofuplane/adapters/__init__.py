"""Adapters — bindings to external systems.

Public re-exports for convenient access.
"""

from tofuplane.adapters.kubectl import KubectlStore, kubectl_available

__all__ = [
    "KubectlStore",
    "kubectl_available",
]
