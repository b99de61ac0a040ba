"""Hearth sync service - Main application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from hearth_common import PersistenceError
from hearth_k8s import ClusterConfig, ClusterConnection, ServerWorkloadClient

from . import __version__
from .cache import ServerCache
from .config import Settings, get_settings
from .consumer import EventConsumer
from .database import Database
from .live import LiveChannel
from .security import get_current_tenant, tenant_from_token
from .service import SyncService
from .store import StatusStore

logger = logging.getLogger(__name__)

# Close code for a missing or invalid live channel token
CLOSE_UNAUTHORIZED = 4001

T = TypeVar("T")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup and shutdown events."""
    settings: Settings = app.state.settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Startup
    logger.info("🚀 Starting Hearth Sync Service...")
    logger.info(f"   Version: {__version__}")
    logger.info(f"   Kafka: {settings.kafka_bootstrap_servers}")

    database = Database(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    await database.init_db()

    cluster = ClusterConnection(
        ClusterConfig(kubeconfig_path=settings.kubeconfig_path, context=settings.kube_context)
    )
    workloads = ServerWorkloadClient(
        cluster,
        namespace=settings.watch_namespace,
        group=settings.crd_group,
        version=settings.crd_version,
        plural=settings.crd_plural,
    )
    logger.info("✓ Connected to cluster")

    store = StatusStore(database)
    app.state.store = store
    sync = SyncService(
        settings,
        workloads,
        store,
        EventConsumer(settings),
        app.state.cache,
    )
    app.state.sync = sync
    await sync.start()
    logger.info(f"✓ Hearth Sync Service started ({sync.mode})")

    yield

    # Shutdown
    logger.info("🛑 Shutting down Hearth Sync Service...")
    await sync.stop()
    await database.close_db()
    cluster.close()
    logger.info("✓ Hearth Sync Service stopped")


def _warming_store(request: Request) -> Optional[StatusStore]:
    """The store, while the initial listing has not been loaded into the cache."""
    sync: Optional[SyncService] = request.app.state.sync
    if sync is not None and sync.ready:
        return None
    return request.app.state.store


async def _read_store(read: Awaitable[T]) -> T:
    try:
        return await read
    except PersistenceError as e:
        logger.error(f"Status store unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server status is not available yet",
        ) from e


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The cache and live channel exist from construction; the sync service is
    attached by the lifespan.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hearth Sync Service",
        description="Server status cache, store and live channel",
        version=settings.version,
        lifespan=lifespan,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    app.state.settings = settings
    app.state.cache = ServerCache()
    app.state.live = LiveChannel(app.state.cache, queue_size=settings.live_queue_size)
    app.state.sync = None
    app.state.store = None
    app.state.cache.register_callback(app.state.live.notify)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount Prometheus metrics
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint."""
        return {
            "service": settings.service_name,
            "version": settings.version,
            "status": "operational",
            "endpoints": {
                "servers": f"{settings.api_prefix}/servers",
                "live": "/ws",
                "metrics": "/metrics",
            },
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.service_name}

    @app.get("/ready")
    async def ready(request: Request):
        """Readiness probe: ready once the initial listing is loaded."""
        sync: Optional[SyncService] = request.app.state.sync
        if sync is None or not sync.ready:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready"},
            )
        return {"status": "ready", "mode": sync.mode, "servers": len(request.app.state.cache)}

    @app.get(f"{settings.api_prefix}/servers")
    async def list_servers(
        request: Request, tenant_id: str = Depends(get_current_tenant)
    ) -> list[dict[str, Any]]:
        """List the status of the caller's servers."""
        store = _warming_store(request)
        if store is not None:
            records = await _read_store(store.list_all(tenant_id))
            return [record.to_dict() for record in records]
        return [entry.to_dict() for entry in request.app.state.cache.for_tenant(tenant_id)]

    @app.get(f"{settings.api_prefix}/servers/{{server_id}}")
    async def get_server(
        server_id: str, request: Request, tenant_id: str = Depends(get_current_tenant)
    ) -> dict[str, Any]:
        """Get the status of one of the caller's servers."""
        store = _warming_store(request)
        if store is not None:
            found = await _read_store(store.get(server_id, tenant_id))
        else:
            found = request.app.state.cache.find(server_id, tenant_id)
        if found is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Server not found")
        return found.to_dict()

    @app.websocket("/ws")
    async def live(websocket: WebSocket) -> None:
        """Live status channel, authenticated with ``?token=<JWT>``."""
        try:
            tenant_id = tenant_from_token(websocket.query_params.get("token"), settings)
        except HTTPException:
            await websocket.close(code=CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        await websocket.app.state.live.serve(websocket, tenant_id)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "hearth_sync.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
