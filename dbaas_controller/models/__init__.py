from dbaas_controller.models.cluster import (
    ClusterState,
    ClusterSummary,
    Credentials,
    DatabaseCluster,
    Engine,
    KubernetesClusterType,
    OperatorVersions,
    PSMDBClusterResource,
    PXCClusterResource,
)
from dbaas_controller.models.params import PSMDBParams, PXCParams

__all__ = [
    "ClusterState",
    "ClusterSummary",
    "Credentials",
    "DatabaseCluster",
    "Engine",
    "KubernetesClusterType",
    "OperatorVersions",
    "PSMDBClusterResource",
    "PXCClusterResource",
    "PSMDBParams",
    "PXCParams",
]
