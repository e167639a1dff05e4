"""FastAPI application entry point for the order vector sync API."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
from server.api.routers.HealthRouter import health_router
from server.api.routers.SyncRouter import sync_router
from services.vector_sync.SyncOrchestrator import SyncOrchestrator
from services.vector_sync.SyncQueue import SyncQueue
from services.vector_sync.vector_sync import build_orchestrator
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

app_version = os.getenv("APP_VERSION", "unknown")


async def _boot_orchestrator(app: FastAPI) -> SyncOrchestrator:
    orchestrator = build_orchestrator(app.state.config)
    for client in orchestrator.clients:
        await client.boot()

    # unreachable providers are reported by /health, they do not block startup
    for client in orchestrator.clients:
        try:
            await client.do_healthcheck()
        except Exception as e:
            app.state.logging.warning("%s client %s is not reachable at startup: %s", client.get_client_type(), client.get_engine_name(), e)
    try:
        await orchestrator.prepare_index()
    except Exception as e:
        app.state.logging.error("Could not prepare the vector index: %s", e)
    return orchestrator


def create_app(orchestrator: SyncOrchestrator | None = None, config: HelperConfig | None = None) -> FastAPI:
    """Build the API application.

    Args:
        orchestrator (SyncOrchestrator | None): Pre-built orchestrator with booted clients. When omitted,
            the clients configured in the environment are built and booted on startup.
        config (HelperConfig | None): Shared configuration, created from the environment when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown."""
        app.state.config = config or HelperConfig(logger=setup_logging())
        app.state.logging = app.state.config.get_logger()

        owns_clients = orchestrator is None
        app.state.orchestrator = await _boot_orchestrator(app) if owns_clients else orchestrator
        app.state.orchestrator.load_state()

        # single worker draining sync requests
        app.state.sync_queue = SyncQueue(helper_config=app.state.config, orchestrator=app.state.orchestrator)
        app.state.sync_queue.start()

        app.state.logging.info("Vector sync API ready.")
        yield

        # Shutdown
        await app.state.sync_queue.stop()
        if owns_clients:
            for client in app.state.orchestrator.clients:
                await client.close()
        app.state.logging.info("Vector sync API shut down.")

    app = FastAPI(
        title="Order Vector Sync",
        description="Keeps the order vector index in line with the order management system.",
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync_router)
    app.include_router(health_router)
    return app


app = create_app()


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    setup_logging().info(f"Starting vector sync API v{app_version} from root dir: {os.getenv('ROOT_DIR', os.getcwd())} on port 8000...")
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("APP_PORT", "8000")))
