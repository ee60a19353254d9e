"""
Building blocks shared by the PXC and PSMDB custom resource builders.
"""
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field

from dbaas_controller.models.cluster import Engine, KubernetesClusterType
from dbaas_controller.models.params import BackupSchedule, ComputeResources, PMMParams, StorageTarget
from dbaas_controller.utils.documents import Replace
from dbaas_controller.utils.version import Version

PULL_POLICY = "IfNotPresent"
AFFINITY_OFF = "none"
AFFINITY_HOSTNAME = "kubernetes.io/hostname"

SERVICE_CLUSTER_IP = "ClusterIP"
SERVICE_NODE_PORT = "NodePort"
SERVICE_LOAD_BALANCER = "LoadBalancer"

PMM_REQUESTS = {"memory": "300M", "cpu": "500m"}
UPGRADE_SCHEDULE = "0 4 * * *"


class BuildOptions(BaseModel):
    """Inputs to the builder that come from the environment rather than the caller."""

    cluster_type: KubernetesClusterType = KubernetesClusterType.UNKNOWN
    pmm_client_image: str = Field(default="percona/pmm-client:2", min_length=1)
    template: Optional[Dict[str, Any]] = Field(
        default=None, description="CR document layered between defaults and parameters"
    )
    backup_image: Optional[str] = Field(
        default=None, description="Backup image resolved from the version service"
    )


class Generation(NamedTuple):
    """One CR schema generation: a half-open operator version range and its builders."""

    engine: Engine
    name: str
    min_version: Version
    max_version: Optional[Version]
    skeleton: Callable[..., Dict[str, Any]]
    patch: Callable[..., Dict[str, Any]]

    def covers(self, version: Version) -> bool:
        if version < self.min_version:
            return False
        return self.max_version is None or version < self.max_version


def topology_key(cluster_type: KubernetesClusterType) -> str:
    # Minikube has a single node, so pods must be allowed to share it.
    if cluster_type == KubernetesClusterType.MINIKUBE:
        return AFFINITY_OFF
    return AFFINITY_HOSTNAME


def service_type(expose: Optional[bool], cluster_type: KubernetesClusterType) -> str:
    """Service type of the client-facing endpoint."""
    if not expose:
        return SERVICE_CLUSTER_IP
    if cluster_type == KubernetesClusterType.MINIKUBE:
        return SERVICE_NODE_PORT
    return SERVICE_LOAD_BALANCER


def volume_spec(disk_size: Optional[str]) -> Optional[Dict[str, Any]]:
    if not disk_size:
        return None
    return {"persistentVolumeClaim": {"resources": {"requests": {"storage": disk_size}}}}


def resources(compute: Optional[ComputeResources]) -> Optional[Dict[str, Any]]:
    """Resource limits of a role; limits the caller leaves unset keep their current value."""
    if compute is None:
        return None
    return {"limits": {"cpu": compute.cpu_m or None, "memory": compute.memory_bytes or None}}


def pmm_section(pmm: Optional[PMMParams], options: BuildOptions, with_user: bool) -> Optional[Replace]:
    if pmm is None:
        return None
    section: Dict[str, Any] = {
        "enabled": True,
        "serverHost": pmm.public_address,
        "image": options.pmm_client_image,
        "resources": {"requests": dict(PMM_REQUESTS)},
    }
    if with_user:
        section["serverUser"] = pmm.login
        section["imagePullPolicy"] = PULL_POLICY
    return Replace(section)


def storage_section(storage: StorageTarget) -> Dict[str, Any]:
    if storage.type == "s3":
        return {
            "type": "s3",
            "s3": {
                "bucket": storage.bucket,
                "region": storage.region,
                "endpointUrl": storage.endpoint_url,
                "credentialsSecret": storage.credentials_secret,
            },
        }
    return {"type": "filesystem", "volume": volume_spec(storage.disk_size)}


def storages_section(storages: Optional[Dict[str, StorageTarget]]) -> Optional[Replace]:
    if storages is None:
        return None
    return Replace({name: storage_section(target) for name, target in sorted(storages.items())})


def schedules(schedule_list: Optional[List[BackupSchedule]], enabled_flag: bool) -> Optional[Replace]:
    """Backup schedules; PSMDB tasks carry an extra ``enabled`` flag."""
    if schedule_list is None:
        return None
    items = []
    for item in schedule_list:
        entry: Dict[str, Any] = {
            "name": item.name,
            "schedule": item.schedule,
            "keep": item.keep,
            "storageName": item.storage_name,
        }
        if enabled_flag:
            entry["enabled"] = True
        items.append(entry)
    return Replace(items)


def pause_flag(suspend: bool, resume: bool) -> Optional[bool]:
    if suspend:
        return True
    if resume:
        return False
    return None
