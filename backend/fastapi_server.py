"""
FastAPI Server for the Spellbook Rules Engine
- In-memory spell repository and persistence registered as shared services
- Core errors translated to JSON error bodies by global handlers
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

from loguru import logger

from character.adapters import InMemoryPersistence, InMemorySpellRepository, Persistence, SpellRepository
from character.exceptions import SpellbookError
from character.spellbook_manager import SpellbookManager
from config.logging_config import configure_logging
from config.spellbook_settings import SpellbookSettings, get_settings
from fastapi_core.exceptions import SpellbookAPIException, to_api_exception
from fastapi_core.shared_services import clear_shared_services, register_shared_service
from spell_search.search_manager import SearchManager

# Keep standard logging for libraries that use it
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def build_services(settings: SpellbookSettings, repository: Optional[SpellRepository] = None,
                   persistence: Optional[Persistence] = None):
    """Create the rules engine and the search manager over shared adapters"""
    repository = repository or InMemorySpellRepository()
    persistence = persistence or InMemoryPersistence()
    spellbook = SpellbookManager(repository, persistence, settings=settings)
    search = SearchManager.create(repository, persistence, clock=spellbook.clock, settings=settings)
    register_shared_service('spell_repository', repository)
    register_shared_service('persistence', persistence)
    register_shared_service('spellbook_manager', spellbook)
    register_shared_service('search_manager', search)
    return spellbook, search


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request ID and timing for better error tracking"""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(f"Request {request_id}: {request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(SpellbookAPIException)
    def spellbook_api_exception_handler(request: Request, exc: SpellbookAPIException):
        if exc.status_code >= 500:
            logger.error(f"{exc.error} on {request.url}: {exc.message}")
        else:
            logger.warning(f"{exc.error} on {request.url}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_content())

    @app.exception_handler(SpellbookError)
    def spellbook_error_handler(request: Request, exc: SpellbookError):
        """Translate core errors raised inside routers"""
        return spellbook_api_exception_handler(request, to_api_exception(exc))

    @app.exception_handler(RequestValidationError)
    def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "validation_error",
                "detail": "Invalid request data",
                "errors": jsonable_errors(exc)
            }
        )

    @app.exception_handler(StarletteHTTPException)
    def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP {exc.status_code} on {request.url}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "http_error",
                "detail": exc.detail
            }
        )

    @app.exception_handler(Exception)
    def global_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"Unhandled exception on {request.url}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_server_error",
                "detail": "An unexpected error occurred",
                "request_id": getattr(request.state, 'request_id', 'unknown')
            }
        )


def jsonable_errors(exc: RequestValidationError):
    return [{key: value for key, value in error.items() if key in ('loc', 'msg', 'type')} for error in exc.errors()]


def create_app(settings: Optional[SpellbookSettings] = None, repository: Optional[SpellRepository] = None,
               persistence: Optional[Persistence] = None) -> FastAPI:
    """
    Build the API application

    Args:
        settings: Configuration; read from the environment when omitted
        repository: Spell repository adapter; in-memory when omitted
        persistence: Key/value adapter; in-memory when omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Spellbook API starting up...")
        spellbook, search = build_services(settings, repository, persistence)
        app.state.spellbook = spellbook
        app.state.search = search
        yield
        logger.info("Spellbook API shutting down...")
        clear_shared_services()

    app = FastAPI(
        title="Spellbook Rules Engine API",
        description="Spell preparation rules and advanced spell search",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(RequestTrackingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/api/health/")
    def health_check():
        return {"status": "healthy", "service": "spellbook-rules-engine"}

    from fastapi_routers import characters, spells, rules, preparation, search
    app.include_router(characters.router, prefix="/api", tags=["characters"])
    app.include_router(spells.router, prefix="/api", tags=["spells"])
    app.include_router(rules.router, prefix="/api", tags=["rules"])
    app.include_router(preparation.router, prefix="/api", tags=["preparation"])
    app.include_router(search.router, prefix="/api", tags=["search"])
    return app


def main():
    """Main entry point for the API server"""
    configure_logging()
    settings = get_settings()
    logger.info(f"Starting Spellbook API on {settings.host}:{settings.port}")

    config = uvicorn.Config(
        app=create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="warning",
        reload=False
    )
    server = uvicorn.Server(config)
    try:
        server.run()
    except Exception as e:
        logger.error(f"Failed to start API server: {e}")
        raise


if __name__ == "__main__":
    main()
