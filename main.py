import logging
import secrets
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.exc import SQLAlchemyError

from app.api.endpoints import auth, blockchain, health, orders, timeslots
from app.core.config import settings
from app.core.errors import AppError, BlockchainError, TransientStoreError
from app.core.logging_cfg import configure_logging
from app.db.retry import is_transient_error
from app.db.session import Database
from app.services.blockchain import SolanaRpcClient

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = Database(settings.DATABASE_URL)
    database.connect(create_tables=settings.AUTO_CREATE_TABLES)
    app.state.database = database

    ledger = SolanaRpcClient.from_settings()
    if settings.SOLANA_CHECK_ON_STARTUP:
        try:
            ledger.connect()
        except BlockchainError as exc:
            # the API still serves; /health reports the ledger as unhealthy
            logger.warning("Solana RPC not reachable at startup: %s", exc.message)
    app.state.ledger = ledger

    yield

    ledger.close()
    database.disconnect()


# Define the FastAPI application instance
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    error = {"code": code, "message": message}
    error.update(extra)
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request", details=details)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    error_id = str(uuid.uuid4())
    if is_transient_error(exc):
        logger.error("Store unavailable [%s] on %s %s: %s", error_id, request.method, request.url.path, exc)
        return _error_response(
            TransientStoreError.status_code,
            TransientStoreError.code,
            "Service temporarily unavailable",
            errorId=error_id,
        )
    logger.exception("Store error [%s] on %s %s", error_id, request.method, request.url.path)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error", errorId=error_id
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = str(uuid.uuid4())
    logger.exception("Unhandled error [%s] on %s %s", error_id, request.method, request.url.path)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error", errorId=error_id
    )


security = HTTPBasic()
def doc_auth(credentials: HTTPBasicCredentials = Depends(security)):
    correct_password = secrets.compare_digest(credentials.password, settings.DOC_PASSWORD)
    if not (correct_password) or not settings.DOC_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username

@app.get("/docs", include_in_schema=False)
async def get_swagger_documentation(username: str = Depends(doc_auth)):
    return get_swagger_ui_html(openapi_url="/openapi.json", title="docs")

@app.get("/redoc", include_in_schema=False)
async def get_redoc_documentation(username: str = Depends(doc_auth)):
    return get_redoc_html(openapi_url="/openapi.json", title="docs")

@app.get("/openapi.json", include_in_schema=False)
async def openapi(username: str = Depends(doc_auth)):
    return get_openapi(title=app.title, version=app.version, routes=app.routes)

# Include your API routers
app.include_router(health.router)

g_prefix = "/api"
app.include_router(auth.router, prefix=g_prefix + "/auth")
app.include_router(orders.bids_router, prefix=g_prefix + "/bids")
app.include_router(orders.supplies_router, prefix=g_prefix + "/supplies")
app.include_router(orders.my_orders_router, prefix=g_prefix + "/my")
app.include_router(timeslots.router, prefix=g_prefix + "/timeslots")
app.include_router(orders.timeslot_orders_router, prefix=g_prefix + "/timeslots")
app.include_router(blockchain.router, prefix=g_prefix + "/blockchain")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        ssl_keyfile=settings.SSL_KEY,
        ssl_certfile=settings.SSL_CERT,
        reload=settings.DEBUG
    )
