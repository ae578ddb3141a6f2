from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import health, prices
from .config import Settings, settings as default_settings
from .errors import NotInitialized, UnsupportedChain
from .storage import StorageFacade


def create_app(storage: Optional[StorageFacade] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the read API around a storage facade.

    When no facade is passed one is created and initialized from settings
    on startup.
    """
    cfg = app_settings or default_settings
    facade = storage or StorageFacade()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if storage is None:
            await facade.initialize(
                cfg.storage_type,
                ttl_seconds=cfg.cache_ttl_seconds,
                backup_dir=cfg.backup_dir,
                redis_url=cfg.redis_url,
                redis_key_prefix=cfg.redis_key_prefix,
            )
        yield
        if storage is None:
            await facade.close()

    app = FastAPI(
        title="Token Price API",
        description="Cached USD token prices per chain",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.storage = facade

    @app.exception_handler(UnsupportedChain)
    async def unsupported_chain_handler(request: Request, exc: UnsupportedChain):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotInitialized)
    async def not_initialized_handler(request: Request, exc: NotInitialized):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(health.router, tags=["Health"])
    app.include_router(prices.router, tags=["Prices"])
    return app


if __name__ == "__main__":
    import uvicorn

    from .logging_config import setup_logging

    setup_logging()
    uvicorn.run(
        create_app(),
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )
