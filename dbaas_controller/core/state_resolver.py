"""
Cluster state resolution.

Collapses a cluster's CR (desired pause flag, declared image, operator-reported
status) and a probe of its running pods into one ClusterState. The function
performs no I/O; callers take the pod snapshot and hand it over as a probe, so
the result depends only on the snapshots and never on polling cadence.

Rules, first match wins:

1. CR absent, or its spec absent        -> INVALID
2. image probe failed                    -> INVALID
3. paused, status ready or paused        -> PAUSED
4. paused, any other status              -> CHANGING
5. running pods do not match CR image    -> UPGRADING
6. status ready                          -> READY
7. anything else                         -> CHANGING

Usage:
    >>> cluster = cluster_from_document(Engine.PXC, document)
    >>> probe = PodImageProbe(pods, cluster.container_names)
    >>> resolve(cluster, probe)
    <ClusterState.READY: 'ready'>
"""
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from dbaas_controller.config.logging import get_logger
from dbaas_controller.exceptions import DBaaSException
from dbaas_controller.models.cluster import (
    ClusterState,
    PSMDBClusterResource,
    PXCClusterResource,
)

logger = get_logger(__name__)

# Status strings the operators are known to report. Anything else is a newer
# operator's vocabulary and is treated as still converging.
STATUS_READY = "ready"
STATUS_PAUSED = "paused"
KNOWN_STATUSES = frozenset({"initializing", STATUS_READY, STATUS_PAUSED, "stopping", "error", "unknown"})

Cluster = Union[PXCClusterResource, PSMDBClusterResource]


class ImageMatchProbe(Protocol):
    """Reports whether the running pods carry the CR-declared image."""

    def matches(self, image: Optional[str]) -> bool:
        """
        Raises:
            DBaaSException: If the pod snapshot could not be taken
        """
        ...


class PodImageProbe:
    """
    Image probe over a snapshot of a cluster's pods.

    With no pods there is nothing to disagree with the CR, so the probe
    reports a match. Otherwise the images of the named containers across all
    pods must collapse to exactly one image, equal to the CR image.
    """

    def __init__(self, pods: Iterable[Dict[str, Any]], container_names: Sequence[str]):
        self.pods: List[Dict[str, Any]] = list(pods)
        self.container_names = tuple(container_names)

    def images(self) -> set:
        found = set()
        for pod in self.pods:
            for container in (pod.get("spec") or {}).get("containers") or []:
                if container.get("name") in self.container_names and container.get("image"):
                    found.add(container["image"])
        return found

    def matches(self, image: Optional[str]) -> bool:
        if not self.pods:
            return True
        images = self.images()
        return len(images) == 1 and image in images


class FailedProbe:
    """A probe whose pod snapshot could not be taken."""

    def __init__(self, error: DBaaSException):
        self.error = error

    def matches(self, image: Optional[str]) -> bool:
        raise self.error


def resolve(cluster: Optional[Cluster], probe: ImageMatchProbe) -> ClusterState:
    """
    Derive the externally visible state of a cluster.

    Args:
        cluster: The cluster's CR, or None when it does not exist
        probe: Image probe over the cluster's running pods

    Returns:
        Exactly one ClusterState; never raises for probe failures
    """
    if cluster is None or cluster.spec is None:
        return ClusterState.INVALID

    try:
        image_matches = probe.matches(cluster.image)
    except DBaaSException as e:
        logger.warning(
            "image_probe_failed",
            cluster=cluster.name,
            error=e.message,
        )
        return ClusterState.INVALID

    status = (cluster.state or "").lower()

    if cluster.pause:
        if status in (STATUS_READY, STATUS_PAUSED):
            return ClusterState.PAUSED
        return ClusterState.CHANGING

    if not image_matches:
        return ClusterState.UPGRADING

    if status == STATUS_READY:
        return ClusterState.READY

    if status and status not in KNOWN_STATUSES:
        logger.warning("unrecognized_cluster_status", cluster=cluster.name, status=cluster.state)
    return ClusterState.CHANGING
