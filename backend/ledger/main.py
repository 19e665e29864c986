import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledger import config
from ledger.db import init_db
from ledger.errors import LedgerError
from ledger.routers import dashboard, health, imports, transactions, upload, users

logger = logging.getLogger(__name__)

API_VERSION = "v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    logger.info("Ledger API started (database %s)", config.DATABASE_URL.split("@")[-1])
    yield


def _error_location(error: dict) -> str:
    return ".".join(str(part) for part in error.get("loc", ()) if part != "body")


def register_error_handlers(app: FastAPI) -> None:
    """Every failure leaves the API as {"error": "<message>"} plus optional details."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [f"{_error_location(error)}: {error.get('msg')}" for error in exc.errors()]
        return JSONResponse(status_code=422, content={"error": "invalid request", "details": details})


def create_app() -> FastAPI:
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Ledger Import Service",
        description="Users, transactions and ZIP archive imports for the admin dashboard.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # /api/v1 is canonical; /api keeps the paths the dashboard already calls.
    for prefix, in_schema in ((f"/api/{API_VERSION}", True), ("/api", False)):
        app.include_router(users.router, prefix=f"{prefix}/users", tags=["users"], include_in_schema=in_schema)
        app.include_router(
            transactions.router, prefix=f"{prefix}/transactions", tags=["transactions"], include_in_schema=in_schema
        )
        app.include_router(upload.router, prefix=f"{prefix}/upload", tags=["upload"], include_in_schema=in_schema)
        app.include_router(imports.router, prefix=f"{prefix}/imports", tags=["imports"], include_in_schema=in_schema)
        app.include_router(
            dashboard.router, prefix=f"{prefix}/dashboard", tags=["dashboard"], include_in_schema=in_schema
        )
        app.include_router(health.router, prefix=f"{prefix}/health", tags=["health"], include_in_schema=in_schema)

    return app


app = create_app()
