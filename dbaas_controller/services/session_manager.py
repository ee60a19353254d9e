"""
Short-lived bridge sessions to the Kubernetes API server.

Every session runs its own ``kubectl proxy`` on a local port. Ports come from
a PortRegistry owned by the SessionManager: a claim is an atomic
check-then-set, so concurrent callers always end up on distinct ports, and a
port returns to the pool only when its session is closed or fails to open.

Usage:
    async with SessionManager() as manager:
        session = await manager.open()
        try:
            ...  # talk to session.url
        finally:
            await manager.close(session)
"""
import asyncio
import random
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from prometheus_client import Gauge
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import Settings, settings as default_settings
from dbaas_controller.exceptions import NotFoundError, PlatformError, SessionError

logger = get_logger(__name__)

PROXY_HOST = "127.0.0.1"

SESSIONS_OPEN = Gauge(
    "dbaas_proxy_sessions_open",
    "Number of open Kubernetes API bridge sessions",
)


class BridgeProcess(Protocol):
    """The subset of asyncio.subprocess.Process a session relies on."""

    returncode: Optional[int]
    stderr: Optional[asyncio.StreamReader]

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


Launcher = Callable[[int, Sequence[str]], Awaitable[BridgeProcess]]


async def spawn_process(port: int, command: Sequence[str]) -> BridgeProcess:
    """Start the bridge as a child process; stderr is kept for diagnostics."""
    return await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )


class PortRegistry:
    """
    Claims of local ports in [port_min, port_max], keyed by port.

    Safe to share between threads and tasks; each claim picks a random port
    and retries on collision until it finds a free one.
    """

    def __init__(self, port_min: int, port_max: int, rng: Optional[random.Random] = None):
        if port_min > port_max:
            raise ValueError("port_min must not exceed port_max")
        self.port_min = port_min
        self.port_max = port_max
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._claims: Dict[int, Optional[BridgeProcess]] = {}

    @property
    def capacity(self) -> int:
        return self.port_max - self.port_min + 1

    def claim(self) -> int:
        """
        Reserve a free port.

        Raises:
            SessionError: If every port of the range is taken
        """
        with self._lock:
            if len(self._claims) >= self.capacity:
                raise SessionError(
                    "no free bridge port left",
                    details={"port_min": self.port_min, "port_max": self.port_max},
                )
            while True:
                port = self._rng.randint(self.port_min, self.port_max)
                if port not in self._claims:
                    self._claims[port] = None
                    return port

    def attach(self, port: int, process: BridgeProcess) -> None:
        with self._lock:
            if port not in self._claims:
                raise SessionError(f"port {port} is not reserved", details={"port": port})
            self._claims[port] = process

    def lookup(self, port: int) -> Optional[BridgeProcess]:
        with self._lock:
            if port not in self._claims:
                raise SessionError(
                    f"trying to release bridge port {port} that is not reserved by any bridge process",
                    details={"port": port},
                )
            return self._claims[port]

    def release(self, port: int) -> Optional[BridgeProcess]:
        with self._lock:
            return self._claims.pop(port, None)

    def ports(self) -> List[int]:
        with self._lock:
            return sorted(self._claims)

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)

    def __contains__(self, port: object) -> bool:
        with self._lock:
            return port in self._claims


class ProxySession:
    """An open bridge: the API server is reachable at ``url``."""

    def __init__(self, port: int, process: BridgeProcess):
        self.port = port
        self.process = process

    @property
    def url(self) -> str:
        return f"http://{PROXY_HOST}:{self.port}"

    def __repr__(self) -> str:
        return f"ProxySession(port={self.port})"


def _is_retryable(error: BaseException) -> bool:
    # Exhausted port ranges do not heal by retrying.
    return isinstance(error, PlatformError) and not isinstance(error, SessionError)


class SessionManager:
    """
    Opens and closes bridge sessions.

    The manager owns its PortRegistry; tests inject their own registry and
    launcher to run without kubectl.
    """

    def __init__(
        self,
        registry: Optional[PortRegistry] = None,
        launcher: Optional[Launcher] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        # An empty registry is falsy; compare against None.
        if registry is None:
            registry = PortRegistry(self.settings.proxy_port_min, self.settings.proxy_port_max)
        self.registry = registry
        self._launcher = launcher or spawn_process
        self._closed = False

    @property
    def is_running(self) -> bool:
        return not self._closed

    def command(self, port: int) -> List[str]:
        args = [self.settings.kubectl_binary]
        if self.settings.kubeconfig_path:
            args += ["--kubeconfig", self.settings.kubeconfig_path]
        args += ["proxy", f"--port={port}"]
        return args

    async def open(self) -> ProxySession:
        """
        Start a bridge and wait until it accepts connections.

        Failed starts are retried on a fresh port within the configured
        attempt and time budget. Whatever a failed or cancelled attempt
        acquired (port claim, child process) is released before returning.

        Raises:
            NotFoundError: If kubectl reports the target as not found
            SessionError: If no port is free
            PlatformError: If the bridge never became reachable
        """
        if self._closed:
            raise SessionError("session manager is closed")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.proxy_start_attempts)
            | stop_after_delay(self.settings.proxy_open_timeout),
            wait=wait_fixed(self.settings.proxy_dial_interval),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                session = await self._start()

        SESSIONS_OPEN.set(len(self.registry))
        logger.info("proxy_session_opened", port=session.port)
        return session

    async def _start(self) -> ProxySession:
        port = self.registry.claim()
        command = self.command(port)
        process: Optional[BridgeProcess] = None
        try:
            try:
                process = await self._launcher(port, command)
            except OSError as e:
                raise PlatformError(
                    f"failed to start kubectl proxy: {e}",
                    command=" ".join(command),
                )
            self.registry.attach(port, process)
            await self._wait_until_reachable(port, process, command)
        except BaseException:
            if process is not None:
                await self._stop_process(process, port)
            self.registry.release(port)
            raise
        return ProxySession(port, process)

    async def _wait_until_reachable(self, port: int, process: BridgeProcess, command: Sequence[str]) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.proxy_dial_attempts),
                wait=wait_fixed(self.settings.proxy_dial_interval),
                retry=retry_if_exception_type((OSError, asyncio.TimeoutError)),
                reraise=True,
            ):
                with attempt:
                    if process.returncode is not None:
                        await self._raise_exited(process, command)
                    _, writer = await asyncio.wait_for(
                        asyncio.open_connection(PROXY_HOST, port),
                        timeout=self.settings.proxy_dial_timeout,
                    )
                    writer.close()
                    await writer.wait_closed()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("proxy_session_unreachable", port=port, error=str(e))
            raise PlatformError(
                "failed to reach Kubernetes API",
                command=" ".join(command),
                details={"port": port, "error": str(e)},
            )

    async def _raise_exited(self, process: BridgeProcess, command: Sequence[str]) -> None:
        stderr = ""
        if process.stderr is not None:
            stderr = (await process.stderr.read()).decode(errors="replace")
        if "NotFound" in stderr:
            raise NotFoundError("Kubernetes resource", "kubectl proxy", details={"stderr": stderr})
        raise PlatformError(
            f"kubectl proxy exited with code {process.returncode}",
            command=" ".join(command),
            stderr=stderr,
        )

    async def _stop_process(self, process: BridgeProcess, port: int) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.proxy_stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("proxy_session_kill", port=port)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def close(self, session: Union[ProxySession, int]) -> None:
        """
        Stop a bridge and release its port.

        The port is released even when stopping the process fails.

        Raises:
            SessionError: If the port is not held by any session
        """
        port = session.port if isinstance(session, ProxySession) else session
        process = self.registry.lookup(port)
        try:
            if process is not None:
                await self._stop_process(process, port)
        finally:
            self.registry.release(port)
            SESSIONS_OPEN.set(len(self.registry))
        logger.info("proxy_session_closed", port=port)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ProxySession]:
        """Open a session for the duration of a block."""
        opened = await self.open()
        try:
            yield opened
        finally:
            await self.close(opened)

    async def aclose(self) -> None:
        """Close every session still open; the manager refuses new ones afterwards."""
        self._closed = True
        for port in self.registry.ports():
            try:
                await self.close(port)
            except PlatformError as e:
                logger.error("proxy_session_close_failed", port=port, error=e.message)

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
