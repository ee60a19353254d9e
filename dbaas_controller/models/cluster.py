"""
Models describing database clusters as stored on the platform and as reported to callers.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Protocol, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from dbaas_controller.models.params import ComputeResources


class Engine(str, Enum):
    """Supported database engines."""

    PXC = "pxc"  # Percona XtraDB Cluster (MySQL)
    PSMDB = "psmdb"  # Percona Server for MongoDB


class ClusterState(str, Enum):
    """Externally visible cluster state, recomputed on every status call."""

    INVALID = "invalid"
    CHANGING = "changing"
    READY = "ready"
    UPGRADING = "upgrading"
    PAUSED = "paused"
    # Only produced by listings for clusters whose CR is gone but pods remain.
    DELETING = "deleting"


class KubernetesClusterType(str, Enum):
    """Flavour of the target Kubernetes cluster, derived from storage provisioners."""

    UNKNOWN = "unknown"
    EKS = "eks"
    MINIKUBE = "minikube"


class CustomResourceKind(BaseModel):
    """Coordinates of an operator CRD."""

    model_config = ConfigDict(frozen=True)

    kind: str
    group: str
    plural: str
    operator: str = Field(description="Value of app.kubernetes.io/managed-by on operator pods")


CR_KINDS: Dict[Engine, CustomResourceKind] = {
    Engine.PXC: CustomResourceKind(
        kind="PerconaXtraDBCluster",
        group="pxc.percona.com",
        plural="perconaxtradbclusters",
        operator="percona-xtradb-cluster-operator",
    ),
    Engine.PSMDB: CustomResourceKind(
        kind="PerconaServerMongoDB",
        group="psmdb.percona.com",
        plural="perconaservermongodbs",
        operator="percona-server-mongodb-operator",
    ),
}


class ClusterView(Protocol):
    """The four accessors the state resolver relies on."""

    @property
    def name(self) -> str: ...

    @property
    def pause(self) -> bool: ...

    @property
    def image(self) -> Optional[str]: ...

    @property
    def state(self) -> Optional[str]: ...


def _section(document: Optional[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    if not document:
        return None
    value = document.get(key)
    return value if isinstance(value, dict) else None


class PXCClusterResource(BaseModel):
    """A PerconaXtraDBCluster document as read from the platform."""

    model_config = ConfigDict(frozen=True)

    engine: Literal[Engine.PXC] = Engine.PXC
    document: Optional[Dict[str, Any]] = None

    container_names: Tuple[str, ...] = ("pxc",)

    @property
    def spec(self) -> Optional[Dict[str, Any]]:
        spec = _section(self.document, "spec")
        # A PXC spec without its pxc section describes nothing runnable.
        if spec is None or not isinstance(spec.get("pxc"), dict):
            return None
        return spec

    @property
    def name(self) -> str:
        return (_section(self.document, "metadata") or {}).get("name", "")

    @property
    def pause(self) -> bool:
        return bool((self.spec or {}).get("pause", False))

    @property
    def image(self) -> Optional[str]:
        return ((self.spec or {}).get("pxc") or {}).get("image")

    @property
    def state(self) -> Optional[str]:
        return (_section(self.document, "status") or {}).get("status")

    @property
    def pod_selector(self) -> str:
        return f"app.kubernetes.io/instance={self.name},app.kubernetes.io/component=pxc"


class PSMDBClusterResource(BaseModel):
    """A PerconaServerMongoDB document as read from the platform."""

    model_config = ConfigDict(frozen=True)

    engine: Literal[Engine.PSMDB] = Engine.PSMDB
    document: Optional[Dict[str, Any]] = None

    container_names: Tuple[str, ...] = ("mongod",)

    @property
    def spec(self) -> Optional[Dict[str, Any]]:
        return _section(self.document, "spec")

    @property
    def name(self) -> str:
        return (_section(self.document, "metadata") or {}).get("name", "")

    @property
    def pause(self) -> bool:
        return bool((self.spec or {}).get("pause", False))

    @property
    def image(self) -> Optional[str]:
        return (self.spec or {}).get("image")

    @property
    def state(self) -> Optional[str]:
        return (_section(self.document, "status") or {}).get("state")

    @property
    def pod_selector(self) -> str:
        return f"app.kubernetes.io/instance={self.name},app.kubernetes.io/component=mongod"


DatabaseCluster = Annotated[
    Union[PXCClusterResource, PSMDBClusterResource],
    Field(discriminator="engine"),
]


def cluster_from_document(engine: Engine, document: Optional[Dict[str, Any]]) -> Union[
    PXCClusterResource, PSMDBClusterResource
]:
    """Wrap a raw CR document in the variant matching its engine."""
    if engine == Engine.PXC:
        return PXCClusterResource(document=document)
    return PSMDBClusterResource(document=document)


class AppStatus(BaseModel):
    """Pod counts of a single cluster role."""

    size: int = Field(default=0, ge=0)
    ready: int = Field(default=0, ge=0)


class ClusterSummary(BaseModel):
    """A cluster as reported by list/status queries."""

    engine: Engine
    name: str
    state: ClusterState
    size: int = 0
    pause: bool = False
    exposed: bool = False
    image: Optional[str] = None
    images: Dict[str, str] = Field(default_factory=dict, description="Image per role")
    disk_size: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None
    proxy: Optional[Literal["proxysql", "haproxy"]] = None
    message: str = ""
    detailed_state: List[AppStatus] = Field(default_factory=list)

    @property
    def ready_pods(self) -> int:
        return sum(app.ready for app in self.detailed_state)

    @property
    def total_pods(self) -> int:
        return sum(app.size for app in self.detailed_state)


class Credentials(BaseModel):
    """Connection credentials of a database cluster."""

    username: str
    password: str
    host: str
    port: int
    replicaset: Optional[str] = None


class OperatorVersions(BaseModel):
    """Operator versions per engine; None means not installed or unknown."""

    pxc: Optional[str] = None
    psmdb: Optional[str] = None

    def for_engine(self, engine: Engine) -> Optional[str]:
        return self.pxc if engine == Engine.PXC else self.psmdb
