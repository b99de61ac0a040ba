"""Hearth operator main application."""

import asyncio
import logging
import signal
from typing import Optional

from prometheus_client import start_http_server

from hearth_k8s import (
    ChildResourceManager,
    ClusterConfig,
    ClusterConnection,
    OwnerIndex,
    ResourceWatcher,
    ServerWorkloadClient,
)

from . import __version__
from .config import Settings, get_settings
from .controller import Controller
from .events import EventPublisher
from .reconciler import ServerWorkloadReconciler
from .sessions import RconSessionRegistry

logger = logging.getLogger(__name__)


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.publisher: Optional[EventPublisher] = None
        self.sessions: Optional[RconSessionRegistry] = None
        self.controller: Optional[Controller] = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        """Start the application and run until a shutdown signal."""
        logger.info("🚀 Starting Hearth Operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Namespace: {self.settings.watch_namespace or 'all'}")
        logger.info(f"   Kafka: {self.settings.kafka_bootstrap_servers}")
        if not self.settings.operator_namespace:
            logger.warning(
                "OPERATOR_NAMESPACE is unset and no service account namespace was found; "
                "control ports will only admit operator pods in each server's namespace"
            )

        start_http_server(self.settings.metrics_port)
        logger.info(f"✓ Metrics served on :{self.settings.metrics_port}")

        self.cluster = ClusterConnection(
            ClusterConfig(
                kubeconfig_path=self.settings.kubeconfig_path,
                context=self.settings.kube_context,
            )
        )
        workloads = ServerWorkloadClient(
            self.cluster,
            namespace=self.settings.watch_namespace,
            group=self.settings.crd_group,
            version=self.settings.crd_version,
            plural=self.settings.crd_plural,
        )
        owner_index = OwnerIndex()
        children = ChildResourceManager(self.cluster, owner_index)
        logger.info("✓ Connected to cluster")

        self.publisher = EventPublisher(self.settings)
        await self.publisher.start()

        self.sessions = RconSessionRegistry(
            connect_timeout=self.settings.rcon_connect_timeout_seconds,
            command_timeout=self.settings.rcon_command_timeout_seconds,
        )

        reconciler = ServerWorkloadReconciler(
            self.settings,
            workloads,
            children,
            self.publisher,
            self.sessions,
            owner_index,
        )
        watcher = ResourceWatcher(self.cluster, timeout_seconds=self.settings.watch_timeout_seconds)

        self.controller = Controller(self.settings, reconciler, workloads, watcher)
        await self.controller.start()

        logger.info("✓ Hearth Operator started successfully")

        await self._shutdown.wait()

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("🛑 Shutting down Hearth Operator...")
        self._shutdown.set()

        if self.controller:
            await self.controller.stop()

        if self.sessions:
            await self.sessions.close_all()

        if self.publisher:
            await self.publisher.stop()

        if self.cluster:
            self.cluster.close()

        logger.info("✓ Hearth Operator stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown.set()


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Application(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
