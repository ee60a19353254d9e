"""
Pytest configuration and fixtures.
"""
import asyncio
import copy
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

from dbaas_controller.config.settings import Settings, settings
from dbaas_controller.exceptions import NotFoundError
from dbaas_controller.main import app
from dbaas_controller.services.cluster_service import ClusterService
from dbaas_controller.services.platform_port import PatchType
from dbaas_controller.services.session_manager import PortRegistry, SessionManager

DEFAULT_API_VERSIONS = [
    "pxc.percona.com/v1",
    "pxc.percona.com/v1-10-0",
    "pxc.percona.com/v1-11-0",
    "psmdb.percona.com/v1",
    "psmdb.percona.com/v1-12-0",
]

MINIKUBE_STORAGE_CLASS = {
    "kind": "StorageClass",
    "metadata": {"name": "standard"},
    "provisioner": "k8s.io/minikube-hostpath",
}


def merge_patch(target: Any, patch: Any) -> Any:
    """JSON merge patch (RFC 7386): dicts merge, null deletes, everything else replaces."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def _matches(labels: Dict[str, str], selector: Optional[str]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakePlatformPort:
    """In-memory PlatformPort keyed by (kind, name)."""

    def __init__(self, api_versions: Optional[List[str]] = None):
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.versions: List[str] = list(DEFAULT_API_VERSIONS if api_versions is None else api_versions)
        self.patches: List[Tuple[str, str, PatchType, Any]] = []
        self.applied: List[Dict[str, Any]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}

    def add(self, document: Dict[str, Any]) -> Dict[str, Any]:
        key = (document["kind"], document["metadata"]["name"])
        self.objects[key] = copy.deepcopy(document)
        return self.objects[key]

    def stored(self, kind: str, name: str) -> Dict[str, Any]:
        return self.objects[(kind, name)]

    def set_status(self, kind: str, name: str, status: Dict[str, Any]) -> None:
        self.objects[(kind, name)]["status"] = status

    async def get(self, kind: str, name: Optional[str] = None, label_selector: Optional[str] = None) -> Dict[str, Any]:
        if kind in self.failures:
            raise self.failures[kind]
        if name is not None:
            if (kind, name) not in self.objects:
                raise NotFoundError(kind, name)
            return copy.deepcopy(self.objects[(kind, name)])
        items = [
            copy.deepcopy(doc)
            for (doc_kind, _), doc in sorted(self.objects.items())
            if doc_kind == kind and _matches((doc.get("metadata") or {}).get("labels") or {}, label_selector)
        ]
        return {"items": items}

    async def apply(self, document: Dict[str, Any]) -> None:
        self.applied.append(copy.deepcopy(document))
        key = (document["kind"], document["metadata"]["name"])
        if key in self.objects:
            self.objects[key] = merge_patch(self.objects[key], document)
        else:
            self.objects[key] = copy.deepcopy(document)

    async def patch(self, kind: str, name: str, patch_type: PatchType, document: Any) -> None:
        if (kind, name) not in self.objects:
            raise NotFoundError(kind, name)
        self.patches.append((kind, name, patch_type, copy.deepcopy(document)))
        self.objects[(kind, name)] = merge_patch(self.objects[(kind, name)], document)

    async def delete(self, document: Dict[str, Any]) -> None:
        key = (document["kind"], document["metadata"]["name"])
        if key not in self.objects:
            raise NotFoundError(*key)
        del self.objects[key]
        self.deleted.append(key)

    async def create_secret(self, name: str, data: Dict[str, str]) -> None:
        self.add({"apiVersion": "v1", "kind": "Secret", "metadata": {"name": name}, "stringData": dict(data)})

    async def get_secret(self, name: str) -> Dict[str, str]:
        secret = await self.get("Secret", name)
        return dict(secret.get("stringData") or {})

    async def api_versions(self) -> List[str]:
        return list(self.versions)


def make_pod(
    name: str,
    phase: str = "Running",
    cpu: Optional[str] = None,
    memory: Optional[str] = None,
    labels: Optional[Dict[str, str]] = None,
    containers: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """A Pod object shaped like the API server returns it."""
    requests = {}
    if cpu is not None:
        requests["cpu"] = cpu
    if memory is not None:
        requests["memory"] = memory
    if containers is None:
        containers = [{"name": "main", "image": "busybox:1", "resources": {"requests": requests}}]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "labels": labels or {}},
        "spec": {"containers": containers},
        "status": {"phase": phase},
    }


def make_node(
    name: str,
    cpu: str = "4",
    memory: str = "8Gi",
    storage: Optional[str] = "100Gi",
    labels: Optional[Dict[str, str]] = None,
    taints: Optional[List[Dict[str, str]]] = None,
    conditions: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """A Node object shaped like the API server returns it."""
    allocatable = {"cpu": cpu, "memory": memory}
    if storage is not None:
        allocatable["ephemeral-storage"] = storage
    return {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {"name": name, "labels": labels or {}},
        "spec": {"taints": taints or []},
        "status": {
            "allocatable": allocatable,
            "conditions": [{"type": t, "status": s} for t, s in (conditions or {}).items()],
        },
    }


def make_volume(name: str, size: str, phase: str = "Bound") -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {"name": name},
        "spec": {"capacity": {"storage": size}},
        "status": {"phase": phase},
    }


class FakeProcess:
    """
    Stand-in for a kubectl proxy child process.

    When a server is given, the process "listens" as long as the server is
    open; terminating the process closes it.
    """

    def __init__(
        self,
        server: Optional[asyncio.AbstractServer] = None,
        returncode: Optional[int] = None,
        stderr: bytes = b"",
        stubborn: bool = False,
    ):
        self.server = server
        self.returncode = returncode
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.stubborn = stubborn
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()
        if returncode is not None:
            self._exited.set()

    def _exit(self, code: int) -> None:
        if self.server is not None:
            self.server.close()
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self._exit(-15)

    def kill(self) -> None:
        self.killed = True
        self._exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


async def _accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    writer.close()


async def listening_launcher(port: int, command) -> FakeProcess:
    """Launcher whose processes accept connections on their port."""
    server = await asyncio.start_server(_accept, "127.0.0.1", port)
    return FakeProcess(server=server)


@pytest.fixture(scope="session")
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    settings.debug = True
    return settings


@pytest.fixture
def session_settings() -> Settings:
    """Settings with short bridge timeouts."""
    return Settings(
        proxy_port_min=38100,
        proxy_port_max=38199,
        proxy_start_attempts=3,
        proxy_dial_attempts=5,
        proxy_dial_interval=0.01,
        proxy_dial_timeout=0.5,
        proxy_open_timeout=5,
        proxy_stop_timeout=0.5,
    )


@pytest_asyncio.fixture
async def test_client(session_settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """Create test client."""
    sessions = SessionManager(
        registry=PortRegistry(session_settings.proxy_port_min, session_settings.proxy_port_max),
        launcher=listening_launcher,
        config=session_settings,
    )
    app.state.sessions = sessions
    transport = httpx.ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await sessions.aclose()
    del app.state.sessions


@pytest.fixture
def platform() -> FakePlatformPort:
    """Platform holding a minikube storage class and nothing else."""
    port = FakePlatformPort()
    port.add(MINIKUBE_STORAGE_CLASS)
    return port


@pytest.fixture
def service(platform: FakePlatformPort) -> ClusterService:
    return ClusterService(platform, template_paths={})
