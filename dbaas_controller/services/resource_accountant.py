"""
Resource accounting for the Kubernetes cluster hosting the databases.

Capacity comes from worker nodes' allocatable figures (already net of system
overhead); consumption from pod requests, since requests are what the
scheduler reserves. Pods that finished (Succeeded or Failed) hold nothing and
are skipped. Every quantity is parsed to millicores or bytes when the
snapshot models are built, so arithmetic here is plain integer math.
"""
from typing import Any, Dict, Iterable, List

from dbaas_controller.config.logging import get_logger
from dbaas_controller.exceptions import PlatformError
from dbaas_controller.models.cluster import KubernetesClusterType
from dbaas_controller.models.resources import (
    NodeResources,
    PersistentVolume,
    PodResourceFootprint,
    ResourceTotals,
)

logger = get_logger(__name__)

# Taints that keep regular workloads off a node.
FORBIDDEN_TAINTS = {
    "node.cloudprovider.kubernetes.io/uninitialized": "NoSchedule",
    "node.kubernetes.io/unschedulable": "NoSchedule",
    "node-role.kubernetes.io/master": "NoSchedule",
}

EKS_INSTANCE_TYPE_LABEL = "beta.kubernetes.io/instance-type"
EKS_DEFAULT_VOLUME_LIMIT = 39
EKS_LIMITED_VOLUME_LIMIT = 25
EKS_LIMITED_FAMILIES = frozenset({"m5", "c5", "r5", "t3", "z1d"})
# Largest EBS volume.
EKS_MAX_VOLUME_BYTES = 16 * 1024 ** 4

MINIKUBE_PROVISIONERS = ("minikube", "kubevirt.io/hostpath-provisioner", "standard")


def worker_nodes(nodes: Iterable[NodeResources]) -> List[NodeResources]:
    """Nodes that accept database pods."""
    workers = []
    for node in nodes:
        blocked = any(
            FORBIDDEN_TAINTS.get(taint.key) == taint.effect
            for taint in node.taints
        )
        if not blocked:
            workers.append(node)
    return workers


def detect_cluster_type(storage_classes: Iterable[Dict[str, Any]]) -> KubernetesClusterType:
    """Classify the cluster from the provisioners of its storage classes."""
    for storage_class in storage_classes:
        provisioner = storage_class.get("provisioner") or ""
        if "aws" in provisioner:
            return KubernetesClusterType.EKS
        if any(marker in provisioner for marker in MINIKUBE_PROVISIONERS):
            return KubernetesClusterType.MINIKUBE
    return KubernetesClusterType.UNKNOWN


def _eks_volume_limit(node: NodeResources) -> int:
    instance_type = node.labels.get(EKS_INSTANCE_TYPE_LABEL)
    if not instance_type:
        raise PlatformError(
            f"EKS node '{node.name}' does not have label '{EKS_INSTANCE_TYPE_LABEL}'",
            details={"node": node.name},
        )
    family, _, size = instance_type.lower().partition(".")
    if not size:
        raise PlatformError(
            f"failed to parse EKS node type '{instance_type}', expected format 'type.size'",
            details={"node": node.name},
        )
    if family in EKS_LIMITED_FAMILIES:
        return EKS_LIMITED_VOLUME_LIMIT
    return EKS_DEFAULT_VOLUME_LIMIT


def allocatable(
    nodes: Iterable[NodeResources],
    cluster_type: KubernetesClusterType = KubernetesClusterType.UNKNOWN,
    volumes: Iterable[PersistentVolume] = (),
) -> ResourceTotals:
    """
    Sum allocatable CPU, memory and storage of the given worker nodes.

    Storage depends on where the cluster runs. On EKS it is bounded by how
    many EBS volumes the nodes can still attach, plus what existing volumes
    already hold. Elsewhere it is the nodes' ephemeral storage.
    """
    volumes = list(volumes)
    totals = ResourceTotals()
    volume_limit = 0

    for node in nodes:
        totals.cpu_millis += node.cpu_millis
        totals.memory_bytes += node.memory_bytes

        if cluster_type == KubernetesClusterType.EKS:
            # Nodes under disk pressure do not get new pods scheduled.
            if node.in_condition("DiskPressure"):
                continue
            volume_limit += _eks_volume_limit(node)
        else:
            if node.ephemeral_storage_bytes is None:
                raise PlatformError(
                    f"could not get storage size of node '{node.name}'",
                    details={"node": node.name},
                )
            totals.disk_bytes += node.ephemeral_storage_bytes

    if cluster_type == KubernetesClusterType.EKS:
        free_slots = max(0, volume_limit - len(volumes))
        totals.disk_bytes = free_slots * EKS_MAX_VOLUME_BYTES + sum(v.capacity_bytes for v in volumes)

    logger.debug(
        "allocatable_resources_summed",
        cluster_type=cluster_type.value,
        cpu_millis=totals.cpu_millis,
        memory_bytes=totals.memory_bytes,
        disk_bytes=totals.disk_bytes,
    )
    return totals


def consumed(pods: Iterable[PodResourceFootprint]) -> ResourceTotals:
    """
    Sum CPU and memory requests of pods still holding resources.

    Init containers that have not terminated yet count alongside the
    regular containers.
    """
    totals = ResourceTotals()
    for pod in pods:
        if pod.is_terminal:
            continue
        for container in list(pod.containers) + list(pod.init_containers):
            totals.cpu_millis += container.cpu_millis
            totals.memory_bytes += container.memory_bytes
    return totals


def consumed_disk(volumes: Iterable[PersistentVolume]) -> int:
    """Bytes held by bound persistent volumes."""
    return sum(volume.capacity_bytes for volume in volumes if volume.is_bound)


def available(total: ResourceTotals, used: ResourceTotals) -> ResourceTotals:
    """Per-dimension difference, never below zero."""
    return ResourceTotals(
        cpu_millis=max(0, total.cpu_millis - used.cpu_millis),
        memory_bytes=max(0, total.memory_bytes - used.memory_bytes),
        disk_bytes=max(0, total.disk_bytes - used.disk_bytes),
    )
