"""Workload provisioning for SiteKeeper.

Submodules:
    backend -- WorkloadBackend protocol used by the reconciler.
    kube    -- KubeWorkloadBackend: Deployment + Service per Website.
"""

from sitekeeper.workload.backend import WorkloadBackend

__all__ = ["WorkloadBackend"]
