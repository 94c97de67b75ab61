"""Application bootstrap for SiteKeeper.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> K8s client -> store + workload backend
              -> controller (constructed) -> health API -> controller start
              (cache sync, workers)

The health API starts before the initial cache sync so liveness probes pass
while a large list is still loading; readiness stays 503 until synced.

Shutdown is graceful: the controller drains in-flight reconciles, then the
API server and the Kubernetes client are stopped.  Each component's stop
error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from sitekeeper.config import load_config
from sitekeeper.models.config import SiteKeeperConfig
from sitekeeper.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from sitekeeper.controller.manager import Controller

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class SiteKeeperApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already
    stopped) is safe.
    """

    def __init__(self) -> None:
        self.config: SiteKeeperConfig | None = None

        self._api_client: object | None = None
        self._store: object | None = None
        self._workloads: object | None = None
        self._controller: Controller | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = load_config()
        except ValueError as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("sitekeeper starting", version=_sitekeeper_version(), target=str(self.config.target))

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Store client + workload backend --------------------------
        await self._start_clients()

        # --- 5. Controller (constructed, not yet started) ----------------
        self._build_controller()

        # --- 6. Health API -----------------------------------------------
        await self._start_rest()

        # --- 7. Cache sync + workers -------------------------------------
        await self._start_controller()

        self._running = True
        self._log.info("sitekeeper started", port=self.config.api.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config or kubeconfig and open an ApiClient."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                # load_kube_config() is async in kubernetes-asyncio
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_clients(self) -> None:
        """Build the resource store client and the workload backend."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting store clients")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            from sitekeeper.store.kube import KubeResourceStore
            from sitekeeper.workload.kube import KubeWorkloadBackend

            api_client = self._api_client
            self._store = KubeResourceStore(
                k8s_client.CustomObjectsApi(api_client),
                self.config.target,
                watch_timeout_seconds=self.config.cache.watch_timeout_seconds,
            )
            self._workloads = KubeWorkloadBackend(
                k8s_client.AppsV1Api(api_client),
                k8s_client.CoreV1Api(api_client),
                self.config.target,
            )
            self._log.info("store clients started")
        except Exception as exc:
            raise _ComponentError("store_clients", exc) from exc

    def _build_controller(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from sitekeeper.controller.manager import Controller

            self._controller = Controller(
                self._store,  # type: ignore[arg-type]
                self._workloads,  # type: ignore[arg-type]
                self.config,
            )
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn server for health, readiness and metrics."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting health api")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from sitekeeper.api import build_app

            fastapi_app = build_app(controller=self._controller, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="health-api")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("health api started", port=self.config.api.port)
        except Exception as exc:
            # Probes will fail but reconciliation still works.
            self._log.warning("health api failed to start", error=str(exc))
            self._rest_server = None

    async def _start_controller(self) -> None:
        """Run the initial list sync and start the worker pool.  Fatal on failure."""
        assert self._log is not None
        assert self._controller is not None
        self._log.debug("starting controller")
        try:
            await self._controller.start()
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("sitekeeper shutting down")
        self._running = False

        # Controller first: workers finish their current identity.
        await self._stop_component("controller", self._controller)

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        if self._background_tasks:
            _, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_k8s_client()
        log.info("sitekeeper stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()  # type: ignore[attr-defined]
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None


def _sitekeeper_version() -> str:
    from sitekeeper import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = SiteKeeperApp()
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        start = asyncio.create_task(app.start(), name="startup")
        stop_wait = asyncio.create_task(stop_requested.wait(), name="stop-wait")
        await asyncio.wait({start, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        if start.done():
            start.result()
            await stop_wait
        else:
            # Signal arrived during startup (e.g. a long initial sync).
            start.cancel()
            await asyncio.gather(start, return_exceptions=True)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        raise SystemExit(1) from exc
    finally:
        await app.stop()
