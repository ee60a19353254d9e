"""
Cluster lifecycle service.

Ties the platform port, the CR builder, the state resolver, the resource
accountant and the version service together into the operations callers
use: create, update, delete, restart, list and credentials, per engine.

Nothing is cached between calls: every operation re-reads the CR, pods and
nodes it needs, since the platform is the only source of truth.
"""
import copy
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Union

import yaml

from dbaas_controller.config.logging import cluster_context, get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.core.state_resolver import FailedProbe, ImageMatchProbe, PodImageProbe, resolve
from dbaas_controller.exceptions import (
    AlreadyExistsError,
    BuildValidationError,
    DBaaSException,
    NotFoundError,
    NotReadyError,
)
from dbaas_controller.models.cluster import (
    CR_KINDS,
    AppStatus,
    ClusterState,
    ClusterSummary,
    Credentials,
    Engine,
    KubernetesClusterType,
    OperatorVersions,
    PSMDBClusterResource,
    PXCClusterResource,
    cluster_from_document,
)
from dbaas_controller.models.params import ComputeResources, PSMDBParams, PXCParams
from dbaas_controller.models.resources import (
    NodeResources,
    PersistentVolume,
    PodResourceFootprint,
    ResourceReport,
)
from dbaas_controller.services import cr_builder, psmdb_spec, pxc_spec, resource_accountant
from dbaas_controller.services.cr_common import SERVICE_CLUSTER_IP, UPGRADE_SCHEDULE, BuildOptions
from dbaas_controller.services.platform_port import PatchType, PlatformPort
from dbaas_controller.services.version_service import VersionServiceClient
from dbaas_controller.utils.documents import get_path, prune
from dbaas_controller.utils.security import generate_psmdb_secret, generate_pxc_secret
from dbaas_controller.utils.version import latest_api_version, parse_version

logger = get_logger(__name__)

Cluster = Union[PXCClusterResource, PSMDBClusterResource]

RESTART_ANNOTATION = "kubectl.kubernetes.io/restartedAt"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
INSTANCE_LABEL = "app.kubernetes.io/instance"

PXC_PORT = 3306
PSMDB_PORT = 27017

# The backup image of PSMDB 1.12+ no longer follows a naming template.
PSMDB_OPERATOR_PRODUCT = "psmdb-operator"
PSMDB_BACKUP_COMPONENT = "backup"
PSMDB_RECOMMENDED_BACKUP_SINCE = (1, 12, 0)

ENGINE_TITLES = {Engine.PXC: "XtraDB", Engine.PSMDB: "PSMDB"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _compute_resources(section: Optional[Dict[str, Any]]) -> Optional[ComputeResources]:
    limits = get_path(section or {}, "resources", "limits")
    if not limits:
        return None
    return ComputeResources(cpu_m=limits.get("cpu"), memory_bytes=limits.get("memory"))


def _disk_size(section: Optional[Dict[str, Any]]) -> Optional[str]:
    return get_path(section or {}, "volumeSpec", "persistentVolumeClaim", "resources", "requests", "storage")


def _is_exposed(expose: Optional[Dict[str, Any]]) -> bool:
    if not isinstance(expose, dict):
        return False
    if expose.get("enabled") is False:
        return False
    return expose.get("exposeType", SERVICE_CLUSTER_IP) != SERVICE_CLUSTER_IP


class ClusterService:
    """
    Lifecycle operations on PXC and PSMDB clusters.

    Concurrent create/update calls against the same cluster name are not
    serialized here; callers that need it must serialize them.
    """

    def __init__(
        self,
        platform: PlatformPort,
        versions: Optional[VersionServiceClient] = None,
        clock: Callable[[], datetime] = _utcnow,
        pmm_client_image: Optional[str] = None,
        template_paths: Optional[Dict[Engine, str]] = None,
    ):
        self.platform = platform
        self.versions = versions
        self.clock = clock
        self.pmm_client_image = pmm_client_image or settings.pmm_client_image
        self.template_paths = template_paths if template_paths is not None else {
            Engine.PXC: settings.pxc_cr_template_path,
            Engine.PSMDB: settings.psmdb_cr_template_path,
        }

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    async def check_operators(self) -> OperatorVersions:
        """Installed operator versions, derived from the served API versions."""
        api_versions = await self.platform.api_versions()
        operators = OperatorVersions(
            pxc=latest_api_version(api_versions, CR_KINDS[Engine.PXC].group),
            psmdb=latest_api_version(api_versions, CR_KINDS[Engine.PSMDB].group),
        )
        logger.debug("operators_checked", pxc=operators.pxc, psmdb=operators.psmdb)
        return operators

    async def _operator_version(self, engine: Engine) -> str:
        version = (await self.check_operators()).for_engine(engine)
        if not version:
            raise NotFoundError("operator", CR_KINDS[engine].operator)
        return version

    async def get_cluster_type(self) -> KubernetesClusterType:
        storage_classes = await self.platform.get("StorageClass")
        return resource_accountant.detect_cluster_type(storage_classes["items"])

    def load_template(self, engine: Engine) -> Optional[Dict[str, Any]]:
        """
        Read the optional CR template file of an engine.

        Returns:
            The parsed document, or None when no template file exists

        Raises:
            BuildValidationError: If the file is not a YAML mapping
        """
        path = self.template_paths.get(engine)
        if not path or not os.path.exists(path):
            return None
        try:
            with open(path, "r") as f:
                template = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise BuildValidationError(f"cannot parse CR template {path}: {e}", details={"path": path})
        if template is None:
            return None
        if not isinstance(template, dict):
            raise BuildValidationError(f"CR template {path} is not a mapping", details={"path": path})
        logger.info("cr_template_loaded", engine=engine.value, path=path)
        return template

    async def get_resources(self) -> ResourceReport:
        """
        Allocatable, consumed and available CPU, memory and disk of the cluster.

        Nodes are filtered down to workers; pods that finished hold nothing.
        """
        cluster_type = await self.get_cluster_type()
        nodes = [NodeResources.from_node(n) for n in (await self.platform.get("Node"))["items"]]
        volumes = [PersistentVolume.from_volume(v) for v in (await self.platform.get("PersistentVolume"))["items"]]
        pods = [PodResourceFootprint.from_pod(p) for p in (await self.platform.get("Pod"))["items"]]

        total = resource_accountant.allocatable(
            resource_accountant.worker_nodes(nodes), cluster_type, volumes
        )
        used = resource_accountant.consumed(pods)
        used.disk_bytes = resource_accountant.consumed_disk(volumes)

        report = ResourceReport(
            allocatable=total,
            consumed=used,
            available=resource_accountant.available(total, used),
        )
        logger.info(
            "cluster_resources_computed",
            cluster_type=cluster_type.value,
            available_cpu_millis=report.available.cpu_millis,
            available_memory_bytes=report.available.memory_bytes,
            available_disk_bytes=report.available.disk_bytes,
        )
        return report

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def _probe(self, cluster: Cluster) -> ImageMatchProbe:
        try:
            pods = await self.platform.get("Pod", label_selector=cluster.pod_selector)
        except DBaaSException as e:
            return FailedProbe(e)
        return PodImageProbe(pods["items"], cluster.container_names)

    async def cluster_state(self, cluster: Cluster) -> ClusterState:
        return resolve(cluster, await self._probe(cluster))

    async def _get_cluster(self, engine: Engine, name: str) -> Cluster:
        document = await self.platform.get(CR_KINDS[engine].kind, name)
        return cluster_from_document(engine, document)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def _exists(self, engine: Engine, name: str) -> bool:
        try:
            await self.platform.get(CR_KINDS[engine].kind, name)
        except NotFoundError:
            return False
        return True

    async def _build_options(self, engine: Engine, version: str, params: Union[PXCParams, PSMDBParams]) -> BuildOptions:
        backup_image = None
        if (
            engine == Engine.PSMDB
            and not params.backup_image
            and self.versions is not None
            and parse_version(version) >= PSMDB_RECOMMENDED_BACKUP_SINCE
        ):
            backup_image = await self.versions.recommended_image(
                PSMDB_OPERATOR_PRODUCT, version, PSMDB_BACKUP_COMPONENT
            )

        return BuildOptions(
            cluster_type=await self.get_cluster_type(),
            pmm_client_image=self.pmm_client_image,
            template=self.load_template(engine),
            backup_image=backup_image,
        )

    async def _create(self, engine: Engine, params: Union[PXCParams, PSMDBParams]) -> Dict[str, Any]:
        with cluster_context(engine.value, params.name):
            if await self._exists(engine, params.name):
                raise AlreadyExistsError(CR_KINDS[engine].kind, params.name)

            version = await self._operator_version(engine)
            options = await self._build_options(engine, version, params)
            document = cr_builder.build(engine, version, params, options=options)

            if engine == Engine.PXC:
                secret = generate_pxc_secret(params.pmm)
            else:
                secret = generate_psmdb_secret(params.pmm)
            secret_name = cr_builder.secret_name(engine, document)
            await self.platform.create_secret(secret_name, secret)

            try:
                await self.platform.apply(document)
            except DBaaSException:
                await self._delete_secret(secret_name)
                raise
            logger.info("cluster_created", operator_version=version, size=params.size)
            return document

    async def create_pxc_cluster(self, params: PXCParams) -> Dict[str, Any]:
        """
        Create a Percona XtraDB cluster.

        Args:
            params: Cluster parameters; size and exactly one proxy are required

        Returns:
            The applied CR document

        Raises:
            AlreadyExistsError: If a cluster with the same name exists
            NotFoundError: If the PXC operator is not installed
            BuildValidationError: If the parameters are inconsistent
        """
        return await self._create(Engine.PXC, params)

    async def create_psmdb_cluster(self, params: PSMDBParams) -> Dict[str, Any]:
        """Create a Percona Server for MongoDB cluster; see create_pxc_cluster."""
        return await self._create(Engine.PSMDB, params)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def _update(self, engine: Engine, params: Union[PXCParams, PSMDBParams]) -> Dict[str, Any]:
        kind = CR_KINDS[engine].kind
        with cluster_context(engine.value, params.name):
            cluster = await self._get_cluster(engine, params.name)
            state = await self.cluster_state(cluster)

            # A paused cluster only accepts being resumed.
            if params.resume and state == ClusterState.PAUSED:
                await self.platform.patch(kind, params.name, PatchType.MERGE, {
                    "apiVersion": cluster.document.get("apiVersion"),
                    "spec": {"pause": False},
                })
                logger.info("cluster_resumed")
                return cluster.document

            if state != ClusterState.READY:
                raise NotReadyError(
                    f"{ENGINE_TITLES[engine]} cluster '{params.name}' is not ready, state is {state.value}",
                    details={"name": params.name, "state": state.value},
                )

            existing = copy.deepcopy(cluster.document)
            existing.pop("status", None)
            version = get_path(existing, "spec", "crVersion") or await self._operator_version(engine)
            options = BuildOptions(
                cluster_type=await self.get_cluster_type(),
                pmm_client_image=self.pmm_client_image,
            )
            document = cr_builder.build(engine, version, params, existing=existing, options=options)

            await self.platform.patch(kind, params.name, PatchType.MERGE, {
                "apiVersion": document.get("apiVersion"),
                "kind": kind,
                "metadata": {"name": params.name},
                "spec": document["spec"],
            })
            logger.info("cluster_updated", schema_version=version)
            return document

    async def update_pxc_cluster(self, params: PXCParams) -> Dict[str, Any]:
        """
        Change size, resources or image of a PXC cluster, or pause/resume it.

        Raises:
            NotFoundError: If the cluster does not exist
            NotReadyError: If the cluster is not Ready (and not a resume of a paused one)
            BuildValidationError: If the parameters or the image change are invalid
        """
        return await self._update(Engine.PXC, params)

    async def update_psmdb_cluster(self, params: PSMDBParams) -> Dict[str, Any]:
        """Change a PSMDB cluster; see update_pxc_cluster."""
        return await self._update(Engine.PSMDB, params)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _delete(self, engine: Engine, name: str, secret_names: List[str]) -> None:
        kind = CR_KINDS[engine]
        with cluster_context(engine.value, name):
            await self.platform.delete({
                "apiVersion": f"{kind.group}/v1",
                "kind": kind.kind,
                "metadata": {"name": name},
            })
            logger.info("cluster_deleted")

            for secret in secret_names:
                await self._delete_secret(secret)

    async def _delete_secret(self, name: str) -> None:
        """Best-effort secret removal."""
        try:
            await self.platform.delete({"apiVersion": "v1", "kind": "Secret", "metadata": {"name": name}})
        except DBaaSException as e:
            logger.error("cluster_secret_delete_failed", secret=name, error=e.message)

    async def delete_pxc_cluster(self, name: str) -> None:
        """Delete a PXC cluster and, best-effort, its secrets."""
        await self._delete(Engine.PXC, name, [
            pxc_spec.SECRET_NAME_TEMPLATE.format(name=name),
            pxc_spec.INTERNAL_SECRET_TEMPLATE.format(name=name),
        ])

    async def delete_psmdb_cluster(self, name: str) -> None:
        """Delete a PSMDB cluster and, best-effort, its secrets."""
        await self._delete(Engine.PSMDB, name, psmdb_spec.secret_names(name))

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------

    def _restart_annotations(self, section: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        annotations = dict((section or {}).get("annotations") or {})
        annotations[RESTART_ANNOTATION] = self.clock().isoformat()
        return annotations

    async def restart_pxc_cluster(self, name: str) -> None:
        """Roll the pxc and proxy pods by stamping their pod annotations."""
        with cluster_context(Engine.PXC.value, name):
            cluster = await self._get_cluster(Engine.PXC, name)
            spec = cluster.spec
            if spec is None:
                raise NotFoundError(CR_KINDS[Engine.PXC].kind, name)

            patch: Dict[str, Any] = {"pxc": {"annotations": self._restart_annotations(spec.get("pxc"))}}
            proxy = pxc_spec.active_proxy(cluster.document)
            if proxy is not None:
                patch[proxy] = {"annotations": self._restart_annotations(spec.get(proxy))}

            await self.platform.patch(CR_KINDS[Engine.PXC].kind, name, PatchType.MERGE, {
                "apiVersion": cluster.document.get("apiVersion"),
                "spec": patch,
            })
            logger.info("cluster_restarted", roles=sorted(patch))

    async def restart_psmdb_cluster(self, name: str) -> None:
        """Roll the replset pods by stamping their pod annotations."""
        with cluster_context(Engine.PSMDB.value, name):
            cluster = await self._get_cluster(Engine.PSMDB, name)
            spec = cluster.spec
            if spec is None:
                raise NotFoundError(CR_KINDS[Engine.PSMDB].kind, name)

            # Merge patches replace lists, so the whole replset list is sent back.
            replsets = copy.deepcopy(spec.get("replsets") or [])
            for replset in replsets:
                replset["annotations"] = self._restart_annotations(replset)

            await self.platform.patch(CR_KINDS[Engine.PSMDB].kind, name, PatchType.MERGE, {
                "apiVersion": cluster.document.get("apiVersion"),
                "spec": {"replsets": replsets},
            })
            logger.info("cluster_restarted", replsets=[rs.get("name") for rs in replsets])

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    def _pxc_summary(self, cluster: PXCClusterResource, state: ClusterState) -> ClusterSummary:
        spec = cluster.spec or {}
        status = cluster.document.get("status") or {}
        pxc = spec.get("pxc") or {}
        proxy = pxc_spec.active_proxy(cluster.document)
        proxy_section = (spec.get(proxy) or {}) if proxy else {}

        images = {"pxc": pxc.get("image")}
        if proxy:
            images[proxy] = proxy_section.get("image")
        images["backup"] = get_path(spec, "backup", "image")

        exposed = proxy_section.get("serviceType", SERVICE_CLUSTER_IP) != SERVICE_CLUSTER_IP
        exposed = exposed or bool(get_path(pxc, "expose", "enabled"))

        detailed: List[AppStatus] = []
        message = ""
        if status.get("conditions"):
            for role in ("haproxy", "proxysql", "pxc"):
                role_status = status.get(role) or {}
                detailed.append(AppStatus(size=role_status.get("size", 0), ready=role_status.get("ready", 0)))
            message = ";".join(status.get("messages") or [])

        return ClusterSummary(
            engine=Engine.PXC,
            name=cluster.name,
            state=state,
            size=pxc.get("size", 0),
            pause=cluster.pause,
            exposed=exposed,
            image=cluster.image,
            images={role: image for role, image in images.items() if image},
            disk_size=_disk_size(pxc),
            compute_resources=_compute_resources(pxc),
            proxy=proxy,
            message=message,
            detailed_state=detailed,
        )

    def _psmdb_summary(self, cluster: PSMDBClusterResource, state: ClusterState) -> ClusterSummary:
        spec = cluster.spec or {}
        status = cluster.document.get("status") or {}
        replsets = spec.get("replsets") or [{}]
        replset = replsets[0]
        size = replset.get("size", 0)

        exposed = _is_exposed(get_path(spec, "sharding", "mongos", "expose")) or any(
            bool(get_path(rs, "expose", "enabled")) for rs in replsets
        )

        images = {"mongod": cluster.image, "backup": get_path(spec, "backup", "image")}

        detailed: List[AppStatus] = []
        message = ""
        conditions = status.get("conditions") or []
        if conditions:
            message = status.get("message") or conditions[-1].get("message") or ""
            for rs_name in sorted(status.get("replsets") or {}):
                rs_status = status["replsets"][rs_name] or {}
                detailed.append(AppStatus(size=rs_status.get("size", 0), ready=rs_status.get("ready", 0)))
            if size != 1:
                mongos = status.get("mongos") or {}
                detailed.append(AppStatus(size=mongos.get("size", 0), ready=mongos.get("ready", 0)))

        return ClusterSummary(
            engine=Engine.PSMDB,
            name=cluster.name,
            state=state,
            size=size,
            pause=cluster.pause,
            exposed=exposed,
            image=cluster.image,
            images={role: image for role, image in images.items() if image},
            disk_size=_disk_size(replset),
            compute_resources=_compute_resources(replset),
            message=message,
            detailed_state=detailed,
        )

    async def _deleting_clusters(self, engine: Engine, running: Set[str]) -> List[ClusterSummary]:
        """Clusters whose CR is gone while operator-managed pods still exist."""
        selector = f"{MANAGED_BY_LABEL}={CR_KINDS[engine].operator}"
        pods = await self.platform.get("Pod", label_selector=selector)

        deleting: List[ClusterSummary] = []
        seen = set(running)
        for pod in pods["items"]:
            labels = get_path(pod, "metadata", "labels") or {}
            if labels.get(MANAGED_BY_LABEL) != CR_KINDS[engine].operator:
                continue
            name = labels.get(INSTANCE_LABEL)
            if not name or name in seen:
                continue
            seen.add(name)
            deleting.append(ClusterSummary(engine=engine, name=name, state=ClusterState.DELETING))
        return deleting

    async def list_clusters(self, engine: Engine, name: Optional[str] = None) -> List[ClusterSummary]:
        """
        Summaries of every cluster of an engine, including ones still being deleted.

        Args:
            engine: Engine to list
            name: Only report the cluster with this name

        Returns:
            One summary per cluster; states are resolved afresh
        """
        documents = (await self.platform.get(CR_KINDS[engine].kind))["items"]

        summaries: List[ClusterSummary] = []
        for document in documents:
            cluster = cluster_from_document(engine, document)
            if name is not None and cluster.name != name:
                continue
            state = await self.cluster_state(cluster)
            if engine == Engine.PXC:
                summaries.append(self._pxc_summary(cluster, state))
            else:
                summaries.append(self._psmdb_summary(cluster, state))

        running = {cluster_from_document(engine, d).name for d in documents}
        deleting = await self._deleting_clusters(engine, running)
        summaries.extend(s for s in deleting if name is None or s.name == name)

        logger.debug("clusters_listed", engine=engine.value, count=len(summaries))
        return summaries

    async def list_pxc_clusters(self, name: Optional[str] = None) -> List[ClusterSummary]:
        return await self.list_clusters(Engine.PXC, name)

    async def list_psmdb_clusters(self, name: Optional[str] = None) -> List[ClusterSummary]:
        return await self.list_clusters(Engine.PSMDB, name)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def _credentials_cluster(self, engine: Engine, name: str) -> Cluster:
        try:
            return await self._get_cluster(engine, name)
        except NotFoundError:
            raise NotFoundError(
                CR_KINDS[engine].kind,
                name,
                details={"reason": f"cannot get {ENGINE_TITLES[engine]} cluster credentials"},
            )

    async def get_pxc_credentials(self, name: str) -> Credentials:
        """
        Root credentials of a PXC cluster.

        Raises:
            NotFoundError: If the cluster does not exist
            NotReadyError: If the cluster is neither Ready nor Changing
        """
        with cluster_context(Engine.PXC.value, name):
            cluster = await self._credentials_cluster(Engine.PXC, name)
            state = await self.cluster_state(cluster)
            if state not in (ClusterState.READY, ClusterState.CHANGING):
                raise NotReadyError(
                    f"cannot get XtraDB cluster credentials: state is {state.value}, ready or changing is expected",
                    details={"name": name, "state": state.value},
                )

            secret = await self.platform.get_secret(pxc_spec.SECRET_NAME_TEMPLATE.format(name=name))
            return Credentials(
                username="root",
                password=secret.get("root", ""),
                host=get_path(cluster.document, "status", "host", default=""),
                port=PXC_PORT,
            )

    async def get_psmdb_credentials(self, name: str) -> Credentials:
        """
        User-admin credentials of a PSMDB cluster.

        Raises:
            NotFoundError: If the cluster does not exist
            NotReadyError: If the cluster is not Ready
        """
        with cluster_context(Engine.PSMDB.value, name):
            cluster = await self._credentials_cluster(Engine.PSMDB, name)
            state = await self.cluster_state(cluster)
            if state != ClusterState.READY:
                raise NotReadyError(
                    f"cannot get PSMDB cluster credentials: state is {state.value}, ready is expected",
                    details={"name": name, "state": state.value},
                )

            secret = await self.platform.get_secret(psmdb_spec.SECRET_NAME_TEMPLATE.format(name=name))
            return Credentials(
                username=secret.get("MONGODB_USER_ADMIN_USER", ""),
                password=secret.get("MONGODB_USER_ADMIN_PASSWORD", ""),
                host=get_path(cluster.document, "status", "host", default=""),
                port=PSMDB_PORT,
                replicaset=psmdb_spec.REPLSET_NAME,
            )

    # ------------------------------------------------------------------
    # Operator upgrades
    # ------------------------------------------------------------------

    @staticmethod
    def _bump(image: Optional[str], old: str, new: str) -> Optional[str]:
        return image.replace(old, new, 1) if image else None

    def _operator_patch(self, engine: Engine, document: Dict[str, Any], old: str, new: str) -> Dict[str, Any]:
        spec = document.get("spec") or {}
        if engine == Engine.PXC:
            patch: Dict[str, Any] = {
                "crVersion": new,
                "pxc": {"image": self._bump(get_path(spec, "pxc", "image"), old, new)},
                "backup": {"image": self._bump(get_path(spec, "backup", "image"), old, new)},
            }
            proxy = pxc_spec.active_proxy(document)
            if proxy is not None:
                patch[proxy] = {"image": self._bump(get_path(spec, proxy, "image"), old, new)}
        else:
            patch = {
                "crVersion": new,
                "image": self._bump(spec.get("image"), old, new),
                "upgradeOptions": {"apply": "recommended", "schedule": UPGRADE_SCHEDULE},
            }
        return {"apiVersion": document.get("apiVersion"), "spec": patch}

    async def patch_all_clusters(self, engine: Engine, old_version: str, new_version: str) -> int:
        """
        Move every cluster of an engine onto a newly installed operator version.

        Returns:
            Number of clusters patched
        """
        kind = CR_KINDS[engine].kind
        documents = (await self.platform.get(kind))["items"]
        for document in documents:
            name = get_path(document, "metadata", "name")
            patch = self._operator_patch(engine, document, old_version, new_version)
            await self.platform.patch(kind, name, PatchType.MERGE, prune(patch))
            logger.info(
                "cluster_operator_version_patched",
                engine=engine.value,
                cluster=name,
                old_version=old_version,
                new_version=new_version,
            )
        return len(documents)
