"""Application bootstrap for KubeDoctor.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → cluster client → classifiers
              → coordinator → MCP → REST

Shutdown is graceful: components are stopped in reverse startup order and
each stop is guarded independently so one failing teardown does not block
the rest.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubedoctor import __version__
from kubedoctor.config import load_config
from kubedoctor.models.config import KubeDoctorConfig
from kubedoctor.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubedoctor.analyst.coordinator import DiagnosticsCoordinator
    from kubedoctor.collector.client import KubernetesClusterClient
    from kubedoctor.mcp.server import MCPServer
    from kubedoctor.rules.base import ClassifierRegistry

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeDoctorApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: KubeDoctorConfig | None = None) -> None:
        self.config = config
        self._cluster_client: KubernetesClusterClient | None = None
        self._registry: ClassifierRegistry | None = None
        self._coordinator: DiagnosticsCoordinator | None = None
        self._mcp_server: MCPServer | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def coordinator(self) -> DiagnosticsCoordinator | None:
        return self._coordinator

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        if self.config is None:
            self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubedoctor_starting", version=__version__)

        await self._start_k8s_client()
        self._start_classifiers()
        self._start_coordinator()

        if self.config.mcp.enabled:
            await self._start_mcp()
        if self.config.api.enabled:
            await self._start_rest()
        if not self._background_tasks:
            raise _ComponentError("surfaces", RuntimeError("both MCP and REST are disabled"))

        self._running = True
        self._log.info(
            "kubedoctor_started",
            mcp=self._mcp_server is not None,
            rest=self._rest_server is not None,
            port=self.config.api.port,
        )

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config, falling back to kubeconfig, and build the ClusterClient."""
        assert self._log is not None
        assert self.config is not None
        try:
            import kubernetes_asyncio.config as k8s_config

            from kubedoctor.collector.client import KubernetesClusterClient

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s_client_configured", source="incluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config(context=self.config.kube_context or None)
                self._log.info("k8s_client_configured", source="kubeconfig", context=self.config.kube_context or None)

            self._cluster_client = KubernetesClusterClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _start_classifiers(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubedoctor.rules import build_registry

            self._registry = build_registry(self.config.thresholds)
        except Exception as exc:
            raise _ComponentError("classifiers", exc) from exc

    def _start_coordinator(self) -> None:
        assert self.config is not None
        assert self._cluster_client is not None
        assert self._registry is not None
        try:
            from kubedoctor.analyst.coordinator import DiagnosticsCoordinator

            self._coordinator = DiagnosticsCoordinator(
                client=self._cluster_client,
                registry=self._registry,
                config=self.config.collector,
            )
        except Exception as exc:
            raise _ComponentError("coordinator", exc) from exc

    async def _start_mcp(self) -> None:
        """Start the MCP stdio server. Failure is non-fatal while REST is enabled."""
        assert self._log is not None
        assert self.config is not None
        try:
            from kubedoctor.mcp import MCPServer

            mcp = MCPServer(coordinator=self._coordinator)
            task = asyncio.create_task(mcp.start(), name="mcp-server")
            self._background_tasks.append(task)
            self._mcp_server = mcp
        except Exception as exc:
            if not self.config.api.enabled:
                raise _ComponentError("mcp", exc) from exc
            self._log.warning("mcp_start_failed", error=str(exc))
            self._mcp_server = None

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        try:
            import uvicorn

            from kubedoctor.api import create_app

            fastapi_app = create_app(coordinator=self._coordinator, registry=self._registry)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def wait(self) -> None:
        """Block until any surface exits (stdin closed, server stopped) or stop() is called."""
        if self._background_tasks:
            await asyncio.wait(self._background_tasks, return_when=asyncio.FIRST_COMPLETED)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubedoctor_stopping")
        self._running = False

        rest = self._rest_server
        if rest is not None:
            rest.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        self._rest_server = None
        self._mcp_server = None
        self._coordinator = None
        self._registry = None
        await self._stop_cluster_client()

        log.info("kubedoctor_stopped")

    async def _stop_cluster_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        client = self._cluster_client
        self._cluster_client = None
        if client is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(client.close(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component="k8s_client", timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component="k8s_client", error=str(exc))


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: KubeDoctorConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeDoctorApp(config)
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await app.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
