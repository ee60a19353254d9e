"""
Read-only snapshots of node, pod and volume resources used for accounting.

Quantities are parsed into canonical integers (millicores, bytes) when the
snapshot is built, so accounting code never sees suffixed strings.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dbaas_controller.utils.quantity import str_to_bytes, str_to_milli_cpu


class PodPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


TERMINAL_PHASES = {PodPhase.SUCCEEDED, PodPhase.FAILED}


class Taint(BaseModel):
    key: str
    effect: str = ""


class NodeResources(BaseModel):
    """Allocatable figures of a single node."""

    name: str
    cpu_millis: int = 0
    memory_bytes: int = 0
    ephemeral_storage_bytes: Optional[int] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    taints: List[Taint] = Field(default_factory=list)
    conditions: Dict[str, str] = Field(default_factory=dict, description="Condition type -> status")

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "NodeResources":
        """Build a snapshot from a Node object as returned by the platform."""
        metadata = node.get("metadata") or {}
        spec = node.get("spec") or {}
        status = node.get("status") or {}
        allocatable = status.get("allocatable") or {}

        storage = allocatable.get("ephemeral-storage")
        return cls(
            name=metadata.get("name", ""),
            cpu_millis=str_to_milli_cpu(allocatable["cpu"]) if "cpu" in allocatable else 0,
            memory_bytes=str_to_bytes(allocatable["memory"]) if "memory" in allocatable else 0,
            ephemeral_storage_bytes=str_to_bytes(storage) if storage is not None else None,
            labels=metadata.get("labels") or {},
            taints=[Taint(key=t.get("key", ""), effect=t.get("effect", "")) for t in spec.get("taints") or []],
            conditions={
                c.get("type", ""): c.get("status", "")
                for c in status.get("conditions") or []
            },
        )

    def in_condition(self, condition: str) -> bool:
        return self.conditions.get(condition) == "True"


class ContainerRequests(BaseModel):
    name: str
    cpu_millis: int = 0
    memory_bytes: int = 0


class PodResourceFootprint(BaseModel):
    """Requests of a single pod and the facts needed to decide whether they count."""

    name: str
    phase: PodPhase = PodPhase.UNKNOWN
    containers: List[ContainerRequests] = Field(default_factory=list)
    # Init containers that have not terminated yet; terminated ones hold nothing.
    init_containers: List[ContainerRequests] = Field(default_factory=list)
    claim_names: List[str] = Field(default_factory=list, description="Persistent volume claims mounted")
    ephemeral_volumes: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @classmethod
    def from_pod(cls, pod: Dict[str, Any]) -> "PodResourceFootprint":
        """Build a footprint from a Pod object as returned by the platform."""
        metadata = pod.get("metadata") or {}
        spec = pod.get("spec") or {}
        status = pod.get("status") or {}

        terminated_init = {
            s.get("name")
            for s in status.get("initContainerStatuses") or []
            if (s.get("state") or {}).get("terminated") is not None
        }

        claims: List[str] = []
        ephemeral: List[str] = []
        for volume in spec.get("volumes") or []:
            claim = volume.get("persistentVolumeClaim")
            if claim:
                claims.append(claim.get("claimName", ""))
            else:
                ephemeral.append(volume.get("name", ""))

        try:
            phase = PodPhase(status.get("phase", "Unknown"))
        except ValueError:
            phase = PodPhase.UNKNOWN

        return cls(
            name=metadata.get("name", ""),
            phase=phase,
            containers=[_requests(c) for c in spec.get("containers") or []],
            init_containers=[
                _requests(c) for c in spec.get("initContainers") or []
                if c.get("name") not in terminated_init
            ],
            claim_names=claims,
            ephemeral_volumes=ephemeral,
        )


def _requests(container: Dict[str, Any]) -> ContainerRequests:
    requests = (container.get("resources") or {}).get("requests") or {}
    return ContainerRequests(
        name=container.get("name", ""),
        cpu_millis=str_to_milli_cpu(requests["cpu"]) if "cpu" in requests else 0,
        memory_bytes=str_to_bytes(requests["memory"]) if "memory" in requests else 0,
    )


class PersistentVolume(BaseModel):
    """Capacity of a persistent volume."""

    name: str
    capacity_bytes: int = 0
    phase: str = ""

    @property
    def is_bound(self) -> bool:
        return self.phase == "Bound"

    @classmethod
    def from_volume(cls, volume: Dict[str, Any]) -> "PersistentVolume":
        capacity = ((volume.get("spec") or {}).get("capacity") or {}).get("storage")
        return cls(
            name=(volume.get("metadata") or {}).get("name", ""),
            capacity_bytes=str_to_bytes(capacity) if capacity else 0,
            phase=(volume.get("status") or {}).get("phase", ""),
        )


class ResourceTotals(BaseModel):
    """Aggregated CPU, memory and disk figures."""

    cpu_millis: int = 0
    memory_bytes: int = 0
    disk_bytes: int = 0


class ResourceReport(BaseModel):
    """Capacity of the Kubernetes cluster, what is used of it and what is left."""

    allocatable: ResourceTotals
    consumed: ResourceTotals
    available: ResourceTotals
