# app.py
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import aiohttp
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gallery import __version__
from gallery.collection_friends import CollectionFriendsService
from gallery.config import Settings, configure_logging, settings
from gallery.data_aggregator import DataAggregator
from gallery.errors import GalleryError
from gallery.identity import IdentityResolver
from gallery.media_proxy import MediaProxy
from gallery.routers import api_router
from gallery.services import AlchemyService, NeynarService, RPCService, ZapperService

logger = logging.getLogger(__name__)


def build_services(session: aiohttp.ClientSession, config: Settings) -> Dict[str, Any]:
    """Wire the upstream clients and engines around one shared session."""
    alchemy = AlchemyService(session, config)
    neynar = NeynarService(session, config)
    zapper = ZapperService(session, config)
    resolver = IdentityResolver(zapper, neynar, config)
    return {
        "alchemy": alchemy,
        "neynar": neynar,
        "zapper": zapper,
        "resolver": resolver,
        "aggregator": DataAggregator(alchemy, config, resolver=resolver),
        "collection_friends": CollectionFriendsService(neynar, alchemy),
        "media_proxy": MediaProxy(session, config),
        "rpc": RPCService(session, config),
    }


def create_app(config: Optional[Settings] = None, services: Optional[Dict[str, Any]] = None) -> FastAPI:
    """Application factory; ``services`` replaces individual wired components (tests)."""
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session = aiohttp.ClientSession()
        for name, service in build_services(session, config).items():
            setattr(app.state, name, service)
        for name, service in (services or {}).items():
            setattr(app.state, name, service)
        if not config.ALCHEMY_API_KEY:
            logger.warning("ALCHEMY_API_KEY is not set; NFT endpoints will answer 500")
        try:
            yield
        finally:
            await session.close()

    app = FastAPI(title="NFT Gallery API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.title, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'request'}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "Invalid argument", "message": problems})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "message": "unexpected error"})

    app.include_router(api_router)
    app.include_router(api_router, prefix="/api")
    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()


if __name__ == "__main__":
    uvicorn.run("app:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
