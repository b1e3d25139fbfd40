"""FastAPI app entry point"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from investkaps.api.admin import router as admin_router
from investkaps.api.esign import router as esign_router
from investkaps.api.kyc import router as kyc_router
from investkaps.api.ltp import router as ltp_router
from investkaps.api.newsletter import router as newsletter_router
from investkaps.api.payment_requests import router as payment_requests_router
from investkaps.api.phone import router as phone_router
from investkaps.api.recommendations import router as recommendations_router
from investkaps.api.settings import router as settings_router
from investkaps.api.stocks import router as stocks_router
from investkaps.api.strategies import router as strategies_router
from investkaps.api.subscriptions import router as subscriptions_router
from investkaps.api.symbols import router as symbols_router
from investkaps.api.users import router as users_router
from investkaps.config import settings
from investkaps.database import create_db_and_tables
from investkaps.errors import InvestKapsError
from investkaps.logging_config import setup_logging
from investkaps.scheduler.jobs import start_scheduler, stop_scheduler

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """App startup/shutdown"""
    # startup: tables + scheduler
    create_db_and_tables()
    start_scheduler()
    yield
    # shutdown
    stop_scheduler()


app = FastAPI(
    title="InvestKaps API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- error envelope ---

@app.exception_handler(InvestKapsError)
async def investkaps_error_handler(request: Request, exc: InvestKapsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"success": False, "error": exc.message, **exc.extra}),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "details": details},
    )


# routers
app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
app.include_router(
    recommendations_router,
    prefix="/api/stock-recommendations",
    tags=["recommendations"],
)
app.include_router(strategies_router, prefix="/api/strategies", tags=["strategies"])
app.include_router(subscriptions_router, prefix="/api/subscriptions", tags=["subscriptions"])
app.include_router(
    payment_requests_router,
    prefix="/api/payment-requests",
    tags=["payment-requests"],
)
app.include_router(newsletter_router, prefix="/api/newsletter", tags=["newsletter"])
app.include_router(phone_router, prefix="/api/phone", tags=["phone"])
app.include_router(kyc_router, prefix="/api/kyc", tags=["kyc"])
app.include_router(esign_router, prefix="/api/esign", tags=["esign"])
app.include_router(symbols_router, prefix="/api/symbols", tags=["symbols"])
app.include_router(ltp_router, prefix="/api/ltp", tags=["ltp"])
app.include_router(stocks_router, prefix="/api/stocks", tags=["stocks"])
app.include_router(settings_router, prefix="/api/settings", tags=["settings"])

# stored reports and uploads
app.mount("/files", StaticFiles(directory=settings.storage_path, check_dir=False), name="files")


@app.get("/api/health")
def health_check() -> dict:
    """Health check"""
    return {"status": "ok"}
