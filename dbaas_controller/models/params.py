"""
Pydantic models for create/update parameters of database clusters.

Optional fields default to None, meaning "not set": the CR builder writes only
non-None values over an existing CR on update, so None must never stand in for
a zero-value.
"""
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# RFC 1035 label: the operators derive service names from the cluster name.
CLUSTER_NAME_PATTERN = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")


class ComputeResources(BaseModel):
    """CPU and memory limits of a cluster role."""

    cpu_m: Optional[str] = Field(default=None, description="CPU quantity, e.g. '600m' or '1'")
    memory_bytes: Optional[str] = Field(default=None, description="Memory quantity, e.g. '1G' or '2Gi'")


class PXCComponent(BaseModel):
    """Database pods of a Percona XtraDB cluster."""

    image: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None
    disk_size: Optional[str] = Field(default=None, description="Volume size, e.g. '25G'")


class ProxySQLComponent(BaseModel):
    """ProxySQL pods of a Percona XtraDB cluster."""

    image: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None
    disk_size: Optional[str] = None


class HAProxyComponent(BaseModel):
    """HAProxy pods of a Percona XtraDB cluster."""

    image: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None


class Replicaset(BaseModel):
    """Replica set pods of a MongoDB cluster."""

    compute_resources: Optional[ComputeResources] = None
    disk_size: Optional[str] = None


class PMMParams(BaseModel):
    """Monitoring (PMM) server the cluster reports to."""

    public_address: str = Field(..., min_length=1, description="PMM server public address")
    login: str = Field(default="api_key", description="PMM server login")
    password: str = Field(default="", description="PMM server password or API key")


class BackupSchedule(BaseModel):
    """A scheduled backup."""

    name: str = Field(..., min_length=1)
    schedule: str = Field(..., description="Cron expression")
    keep: int = Field(default=3, ge=1)
    storage_name: str = Field(..., min_length=1)


class StorageTarget(BaseModel):
    """A backup storage target."""

    type: Literal["filesystem", "s3"] = "filesystem"
    disk_size: Optional[str] = Field(default=None, description="Volume size for filesystem storage")
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    credentials_secret: Optional[str] = None


class _ClusterParams(BaseModel):
    name: str = Field(..., min_length=1, max_length=63)
    size: Optional[int] = Field(default=None, description="Number of database pods")
    suspend: bool = False
    resume: bool = False
    expose: Optional[bool] = Field(default=None, description="Expose the cluster outside Kubernetes")
    version_service_url: Optional[str] = None
    pmm: Optional[PMMParams] = None
    backup_schedules: Optional[List[BackupSchedule]] = None
    storages: Optional[Dict[str, StorageTarget]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Cluster names become Kubernetes object names."""
        if not CLUSTER_NAME_PATTERN.fullmatch(v):
            raise ValueError("Name must be a lowercase ASCII DNS label starting with a letter")
        return v


class PXCParams(_ClusterParams):
    """Parameters to create or update a Percona XtraDB cluster."""

    pxc: Optional[PXCComponent] = None
    proxysql: Optional[ProxySQLComponent] = None
    haproxy: Optional[HAProxyComponent] = None


class PSMDBParams(_ClusterParams):
    """Parameters to create or update a Percona Server for MongoDB cluster."""

    image: Optional[str] = None
    backup_image: Optional[str] = None
    replicaset: Optional[Replicaset] = None
