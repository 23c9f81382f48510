from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from . import config
from .dependencies import Services, build_services
from .errors import BlockVaultError

# Configure basic logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from .routers import access, audit, files

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Builds the relay app.

    When ``services`` is given it is used as-is and left open on shutdown;
    otherwise the clients are built from the environment on startup and
    closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return
        app.state.services = build_services()
        await app.state.services.ledger.connect()
        try:
            yield
        finally:
            await app.state.services.aclose()
            logger.info("Services closed.")

    app = FastAPI(
        title="BlockVault Relay",
        description="Registers file custody events on a smart-contract ledger with IPFS-pinned payloads.",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials="*" not in config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BlockVaultError)
    async def blockvault_error_handler(request: Request, exc: BlockVaultError):
        logger.warning(f"{exc.kind}: {exc.message} path={request.url.path}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    app.include_router(files.router)
    app.include_router(access.router)
    app.include_router(audit.router)

    @app.get("/", tags=["Health Check"])
    def read_root():
        """Root endpoint for health check."""
        return {"status": "ok", "message": "BlockVault relay is running"}

    return app


def run():
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=config.PORT)


# --- Server Startup (for local development) ---
if __name__ == "__main__":
    run()
