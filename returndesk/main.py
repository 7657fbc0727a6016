"""ReturnDesk: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from returndesk.api import returns
from returndesk.config import get_settings
from returndesk.errors import ReturnError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "NotFound": 404,
    "InvalidTransition": 409,
    "TerminalState": 409,
    "Conflict": 409,
    "SlotNoLongerAvailable": 409,
    "MissingRefundAmount": 422,
    "ValidationError": 422,
    "ProviderUnavailable": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.store_backend == "sql":
        from returndesk.database import Base, engine
        import returndesk.models  # noqa: F401  (registers tables)

        # Create tables on startup (use Alembic in production)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        await _drain_events()
        await engine.dispose()
    else:
        yield
        await _drain_events()


async def _drain_events() -> None:
    if returns._workflow is not None:
        await returns._workflow.aclose()


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Return & refund lifecycle: approval, courier pickup, processing and refund",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReturnError)
async def return_error_handler(request: Request, exc: ReturnError):
    status_code = ERROR_STATUS.get(exc.code, 400)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return JSONResponse(
        status_code=422,
        content={
            "code": "ValidationError",
            "message": first.get("msg", "Invalid request"),
            "field": ".".join(loc) or None,
            "retryable": False,
        },
    )


app.include_router(returns.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.app_name, "version": "1.0.0"}
