"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.context import build_context
from app.dependencies import get_db
from app.schemas.common import ErrorResponse
from app.services.errors import DropError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and core components on startup, start the expiry sweeper."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    ctx = await build_context(settings)
    app.state.ctx = ctx
    logger.info(f"Storage backends: {ctx.storage.tags} (default: {ctx.storage.default_tag})")

    sweeper_task = asyncio.create_task(ctx.sweeper.run_forever())

    yield

    # Cleanup
    sweeper_task.cancel()
    await ctx.close()


app = FastAPI(
    title="Drop & Shorten API",
    version="1.0.0",
    description="Anonymous file drop and URL shortener.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DropError)
async def drop_error_handler(request: Request, exc: DropError):
    """Map core errors to their HTTP status with a client-safe message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.detail, error=type(exc).__name__).model_dump(),
    )


@app.get("/", response_class=PlainTextResponse)
async def main_page(request: Request):
    """Usage banner for curl users."""
    base_url = request.app.state.ctx.settings.BASE_URL
    return (
        "Drop a file:    curl -F 'file=@photo.jpg' " + base_url + "/api/files\n"
        "Stream a file:  curl --upload-file ./big.iso " + base_url + "/api/files/big.iso\n"
        "Shorten a URL:  curl -H 'Content-Type: application/json' "
        "-d '{\"url\": \"https://example.com\"}' " + base_url + "/api/urls\n"
    )


@app.get("/api/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Verify API and database connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from app.routes.files import router as files_router, download_router
from app.routes.urls import router as urls_router, redirect_router
app.include_router(files_router)
app.include_router(download_router)
app.include_router(urls_router)
app.include_router(redirect_router)
