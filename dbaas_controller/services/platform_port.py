"""
Platform access port.

Every Kubernetes call the controller makes goes through a PlatformPort:
get/apply/patch/delete of the custom resources and the core objects the
controller reads (pods, nodes, volumes, storage classes, secrets). Objects are
plain JSON-shaped dicts in both directions.

A missing object is always reported as NotFoundError; anything else that
goes wrong is a PlatformError carrying the attempted command and the API
server's response body.
"""
import asyncio
import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiException

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import NotFoundError, PlatformError
from dbaas_controller.models.cluster import CR_KINDS, CustomResourceKind
from dbaas_controller.services.session_manager import ProxySession, SessionManager
from dbaas_controller.utils.retry import retry_on_k8s_error

logger = get_logger(__name__)

# Both operators keep serving the unversioned v1 API next to per-release ones.
SERVED_VERSION = "v1"

CUSTOM_KINDS: Dict[str, CustomResourceKind] = {cr.kind: cr for cr in CR_KINDS.values()}


class PatchType(str, Enum):
    MERGE = "merge"
    JSON = "json"
    STRATEGIC = "strategic"

    @property
    def content_type(self) -> str:
        return {
            PatchType.MERGE: "application/merge-patch+json",
            PatchType.JSON: "application/json-patch+json",
            PatchType.STRATEGIC: "application/strategic-merge-patch+json",
        }[self]


class PlatformPort(Protocol):
    """What the controller needs from the platform."""

    async def get(
        self, kind: str, name: Optional[str] = None, label_selector: Optional[str] = None
    ) -> Dict[str, Any]:
        """One object, or ``{"items": [...]}`` when no name is given."""
        ...

    async def apply(self, document: Dict[str, Any]) -> None: ...

    async def patch(self, kind: str, name: str, patch_type: PatchType, document: Any) -> None: ...

    async def delete(self, document: Dict[str, Any]) -> None: ...

    async def create_secret(self, name: str, data: Dict[str, str]) -> None:
        """Create or replace an Opaque secret."""
        ...

    async def get_secret(self, name: str) -> Dict[str, str]: ...

    async def api_versions(self) -> List[str]: ...


def _kind_and_name(document: Dict[str, Any]) -> Tuple[str, str]:
    kind = document.get("kind")
    name = (document.get("metadata") or {}).get("name")
    if not kind or not name:
        raise PlatformError("document must carry kind and metadata.name", details={"kind": kind, "name": name})
    return kind, name


def _api_version(document: Dict[str, Any], default_group: str) -> Tuple[str, str]:
    api_version = document.get("apiVersion") or f"{default_group}/{SERVED_VERSION}"
    group, _, version = api_version.partition("/")
    return group, version or SERVED_VERSION


class KubernetesClientSet:
    """Container for the Kubernetes API clients bound to one bridge session."""

    def __init__(self, api_client: client.ApiClient, session: ProxySession):
        self.api_client = api_client
        self.session = session
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.storage_api = client.StorageV1Api(api_client)
        self.apis_api = client.ApisApi(api_client)

    async def close(self):
        """Close all API clients."""
        if self.api_client:
            await self.api_client.close()


class KubernetesPlatformPort:
    """
    PlatformPort backed by kubernetes_asyncio.

    The API server is reached through a bridge session opened lazily on the
    first call and kept until ``close``.
    """

    def __init__(self, sessions: SessionManager, namespace: Optional[str] = None):
        self.sessions = sessions
        self.namespace = namespace or settings.k8s_namespace
        self._clients: Optional[KubernetesClientSet] = None
        self._lock = asyncio.Lock()

    async def _client_set(self) -> KubernetesClientSet:
        async with self._lock:
            if self._clients is None:
                session = await self.sessions.open()
                configuration = client.Configuration()
                configuration.host = session.url
                self._clients = KubernetesClientSet(client.ApiClient(configuration=configuration), session)
                logger.info("kubernetes_client_created", host=session.url, namespace=self.namespace)
            return self._clients

    async def close(self) -> None:
        async with self._lock:
            if self._clients is None:
                return
            clients, self._clients = self._clients, None
            try:
                await clients.close()
            finally:
                await self.sessions.close(clients.session)

    async def __aenter__(self) -> "KubernetesPlatformPort":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _translate(self, e: ApiException, verb: str, kind: str, name: Optional[str]) -> Exception:
        if e.status == 404:
            return NotFoundError(kind, name or "")
        target = f"{kind}/{name}" if name else kind
        logger.error("platform_call_failed", verb=verb, target=target, status_code=e.status, error=e.reason)
        return PlatformError(
            f"Failed to {verb} {target}: {e.reason}",
            command=f"{verb} {target} -n {self.namespace}",
            stderr=e.body if isinstance(e.body, str) else None,
            details={"status_code": e.status},
        )

    @retry_on_k8s_error(max_retries=3, initial_delay=0.5, max_delay=5.0)
    async def _read(self, kind: str, name: Optional[str], label_selector: Optional[str]) -> Dict[str, Any]:
        clients = await self._client_set()
        ns = self.namespace

        if kind in CUSTOM_KINDS:
            cr = CUSTOM_KINDS[kind]
            if name:
                return await clients.custom_api.get_namespaced_custom_object(
                    group=cr.group, version=SERVED_VERSION, namespace=ns, plural=cr.plural, name=name,
                )
            kwargs = {"label_selector": label_selector} if label_selector else {}
            return await clients.custom_api.list_namespaced_custom_object(
                group=cr.group, version=SERVED_VERSION, namespace=ns, plural=cr.plural, **kwargs,
            )

        kwargs = {"label_selector": label_selector} if label_selector and not name else {}
        if kind == "Pod":
            result = await (
                clients.core_api.read_namespaced_pod(name, ns) if name
                else clients.core_api.list_namespaced_pod(ns, **kwargs)
            )
        elif kind == "Node":
            result = await (clients.core_api.read_node(name) if name else clients.core_api.list_node(**kwargs))
        elif kind == "PersistentVolume":
            result = await (
                clients.core_api.read_persistent_volume(name) if name
                else clients.core_api.list_persistent_volume(**kwargs)
            )
        elif kind == "StorageClass":
            result = await (
                clients.storage_api.read_storage_class(name) if name
                else clients.storage_api.list_storage_class(**kwargs)
            )
        elif kind == "Secret":
            result = await (
                clients.core_api.read_namespaced_secret(name, ns) if name
                else clients.core_api.list_namespaced_secret(ns, **kwargs)
            )
        else:
            raise PlatformError(f"Unsupported kind '{kind}'", details={"kind": kind})

        return clients.api_client.sanitize_for_serialization(result)

    async def get(
        self, kind: str, name: Optional[str] = None, label_selector: Optional[str] = None
    ) -> Dict[str, Any]:
        try:
            result = await self._read(kind, name, label_selector)
        except ApiException as e:
            raise self._translate(e, "get", kind, name)
        if not name:
            result.setdefault("items", [])
        return result

    async def apply(self, document: Dict[str, Any]) -> None:
        """Create the object, or merge-patch it when it already exists."""
        kind, name = _kind_and_name(document)
        cr = CUSTOM_KINDS.get(kind)
        if cr is None:
            raise PlatformError(f"Cannot apply kind '{kind}'", details={"kind": kind})

        clients = await self._client_set()
        group, version = _api_version(document, cr.group)
        try:
            await clients.custom_api.create_namespaced_custom_object(
                group=group, version=version, namespace=self.namespace, plural=cr.plural, body=document,
            )
            logger.info("custom_resource_created", kind=kind, name=name)
            return
        except ApiException as e:
            if e.status != 409:
                raise self._translate(e, "apply", kind, name)

        logger.info("custom_resource_exists_patching", kind=kind, name=name)
        await self.patch(kind, name, PatchType.MERGE, document)

    async def patch(self, kind: str, name: str, patch_type: PatchType, document: Any) -> None:
        clients = await self._client_set()
        content_type = PatchType(patch_type).content_type
        try:
            if kind in CUSTOM_KINDS:
                cr = CUSTOM_KINDS[kind]
                group, version = cr.group, SERVED_VERSION
                if isinstance(document, dict):
                    group, version = _api_version(document, cr.group)
                await clients.custom_api.patch_namespaced_custom_object(
                    group=group, version=version, namespace=self.namespace, plural=cr.plural,
                    name=name, body=document, _content_type=content_type,
                )
            elif kind == "Secret":
                await clients.core_api.patch_namespaced_secret(
                    name, self.namespace, document, _content_type=content_type,
                )
            else:
                raise PlatformError(f"Cannot patch kind '{kind}'", details={"kind": kind})
        except ApiException as e:
            raise self._translate(e, "patch", kind, name)
        logger.info("platform_object_patched", kind=kind, name=name, patch_type=PatchType(patch_type).value)

    async def delete(self, document: Dict[str, Any]) -> None:
        kind, name = _kind_and_name(document)
        clients = await self._client_set()
        try:
            if kind in CUSTOM_KINDS:
                cr = CUSTOM_KINDS[kind]
                group, version = _api_version(document, cr.group)
                await clients.custom_api.delete_namespaced_custom_object(
                    group=group, version=version, namespace=self.namespace, plural=cr.plural, name=name,
                )
            elif kind == "Secret":
                await clients.core_api.delete_namespaced_secret(name, self.namespace)
            else:
                raise PlatformError(f"Cannot delete kind '{kind}'", details={"kind": kind})
        except ApiException as e:
            raise self._translate(e, "delete", kind, name)
        logger.info("platform_object_deleted", kind=kind, name=name)

    async def create_secret(self, name: str, data: Dict[str, str]) -> None:
        """Create the secret, or replace its data when it already exists."""
        clients = await self._client_set()
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=name),
            type="Opaque",
            string_data=data,
        )
        try:
            await clients.core_api.create_namespaced_secret(self.namespace, body)
            logger.info("secret_created", name=name)
            return
        except ApiException as e:
            if e.status != 409:
                raise self._translate(e, "create", "Secret", name)

        logger.info("secret_exists_replacing", name=name)
        try:
            await clients.core_api.replace_namespaced_secret(name, self.namespace, body)
        except ApiException as e:
            raise self._translate(e, "replace", "Secret", name)

    async def get_secret(self, name: str) -> Dict[str, str]:
        """Secret data, base64-decoded."""
        secret = await self.get("Secret", name)
        return {
            key: base64.b64decode(value).decode()
            for key, value in (secret.get("data") or {}).items()
        }

    @retry_on_k8s_error(max_retries=3, initial_delay=0.5, max_delay=5.0)
    async def _read_api_groups(self) -> Any:
        clients = await self._client_set()
        return await clients.apis_api.get_api_versions()

    async def api_versions(self) -> List[str]:
        """Every served "<group>/<version>" of the API server's named groups."""
        try:
            groups = await self._read_api_groups()
        except ApiException as e:
            raise self._translate(e, "get", "APIVersions", None)
        return [
            version.group_version
            for group in groups.groups or []
            for version in group.versions or []
        ]
